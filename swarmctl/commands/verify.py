import logging
import os

import typer

from swarmctl.commands.common import build_context, env_file_option, load_config
from swarmctl.models import Role
from swarmctl.modules.verify import Verifier

logger = logging.getLogger("swarmctl.verify")

app = typer.Typer()


def run_verification(role: Role, env_file: str) -> None:
    config = load_config(env_file)
    if os.geteuid() != 0:
        logger.warning("⚠️  Not running as root; some checks may fail for lack of permissions")

    report = Verifier(build_context(config), role).run()
    if report.ok:
        typer.echo(f"✅ All {report.total} checks passed for {role}")
    else:
        typer.echo(f"❌ {report.failed} of {report.total} checks failed for {role}")
        raise typer.Exit(code=1)


@app.command("control-plane")
def verify_control_plane(env_file: str = env_file_option()):
    """Check a provisioned control plane node."""
    run_verification(Role.CONTROL_PLANE, env_file)


@app.command("worker")
def verify_worker(env_file: str = env_file_option()):
    """Check a provisioned worker node."""
    run_verification(Role.WORKER, env_file)
