import logging

import typer

from swarmctl.commands.common import build_context, env_file_option, ensure_root, load_config
from swarmctl.models import Role
from swarmctl.modules.firewall import FirewallPolicy, FirewallPolicyError
from swarmctl.modules.shell import CommandError

logger = logging.getLogger("swarmctl.firewall")

app = typer.Typer()


def _policy(role: Role, env_file: str) -> FirewallPolicy:
    config = load_config(env_file)
    policy = FirewallPolicy(role, config)
    try:
        policy.rules()
    except FirewallPolicyError as e:
        logger.error(f"❌ {e}")
        raise typer.Exit(code=1)
    return policy


@app.command("plan")
def firewall_plan(
    role: Role = typer.Option(..., "--role", "-r", help="Cluster role"),
    env_file: str = env_file_option(),
):
    """Print the UFW commands for a role without running them."""
    typer.echo(_policy(role, env_file).render())


@app.command("apply")
def firewall_apply(
    role: Role = typer.Option(..., "--role", "-r", help="Cluster role"),
    env_file: str = env_file_option(),
):
    """Apply the UFW policy for a role."""
    policy = _policy(role, env_file)
    ensure_root()
    ctx = build_context(policy.config)

    if policy.is_applied(ctx.runner):
        logger.info("⏭️  Firewall already configured, nothing to do")
        return
    try:
        policy.apply(ctx.runner)
    except FirewallPolicyError as e:
        logger.error(f"❌ {e}")
        raise typer.Exit(code=1)
    except CommandError as e:
        logger.error(f"❌ {e}")
        raise typer.Exit(code=e.returncode or 1)
