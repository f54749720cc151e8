from typing import Optional

import typer

from swarmctl.commands.common import env_file_option, load_config
from swarmctl.models import Role


def validate_config(
    role: Optional[Role] = typer.Option(None, "--role", "-r", help="Also check the role's required settings"),
    env_file: str = env_file_option(),
):
    """Validate the configuration without touching the host."""
    load_config(env_file, role=role)
    typer.echo("✅ Configuration is valid")
