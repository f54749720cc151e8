"""
Provisioning commands.

Each command validates the configuration, checks it runs as root, then
runs the stage's steps in order. Running a command again only applies the
steps whose state is not already in place.
"""
import logging
from typing import Callable, List, Optional

import typer

from swarmctl.commands.common import build_context, env_file_option, ensure_root, load_config
from swarmctl.models import Role
from swarmctl.modules.context import HostContext
from swarmctl.modules.roles import bootstrap_plan, hardening_plan, role_plan
from swarmctl.modules.steps import ProvisioningAborted, ProvisioningStep, StepRunner

logger = logging.getLogger("swarmctl.provision")

app = typer.Typer()


def run_plan(
    stage: str,
    env_file: str,
    plan: Callable[[HostContext], List[ProvisioningStep]],
    role: Optional[Role] = None,
    require_ssh_key: bool = True,
) -> None:
    config = load_config(env_file, role=role, require_ssh_key=require_ssh_key)
    ensure_root()
    ctx = build_context(config)

    logger.info(f"🚀 Starting {stage} provisioning for user '{config.username}'")
    try:
        StepRunner(plan(ctx)).run()
    except ProvisioningAborted as e:
        logger.error(f"❌ {e}")
        raise typer.Exit(code=e.exit_code)

    logger.info(f"🎉 {stage} provisioning complete")


@app.command("hardening")
def provision_hardening(env_file: str = env_file_option()):
    """Harden the server: user, sudo, SSH and fail2ban."""
    run_plan("hardening", env_file, hardening_plan)


@app.command("bootstrap")
def provision_bootstrap(env_file: str = env_file_option()):
    """Install and configure Docker Engine and Compose v2."""
    run_plan("bootstrap", env_file, bootstrap_plan, require_ssh_key=False)


@app.command("control-plane")
def provision_control_plane(env_file: str = env_file_option()):
    """Provision a Docker Swarm control plane node."""
    run_plan("control-plane", env_file, lambda ctx: role_plan(Role.CONTROL_PLANE, ctx), role=Role.CONTROL_PLANE)


@app.command("worker")
def provision_worker(env_file: str = env_file_option()):
    """Provision a Docker Swarm worker node."""
    run_plan("worker", env_file, lambda ctx: role_plan(Role.WORKER, ctx), role=Role.WORKER)
