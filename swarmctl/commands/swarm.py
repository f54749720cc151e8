import logging

import typer

from swarmctl.modules.shell import CommandRunner
from swarmctl.modules.swarm import SwarmError, wait_for_port, worker_join_command

logger = logging.getLogger("swarmctl.swarm")

app = typer.Typer()


@app.command("join-command")
def swarm_join_command():
    """Print the command a worker runs to join this manager's swarm."""
    try:
        command = worker_join_command(CommandRunner())
    except SwarmError as e:
        logger.error(f"❌ {e}")
        raise typer.Exit(code=1)
    typer.echo(command)


@app.command("wait")
def swarm_wait(
    host: str = typer.Argument(..., help="Host to connect to"),
    port: int = typer.Argument(..., help="TCP port"),
    timeout: int = typer.Option(60, "--timeout", "-t", help="Seconds to wait"),
):
    """Wait until HOST:PORT accepts TCP connections."""
    if not wait_for_port(host, port, timeout=timeout):
        raise typer.Exit(code=1)
