"""Helpers shared by the command groups: load settings, build the host context."""
import dataclasses
import logging
from typing import Optional

import typer

from swarmctl.config import DEFAULT_ENV_FILE, Config, load_settings, redact
from swarmctl.models import Role
from swarmctl.modules.context import HostContext
from swarmctl.modules.system import PreconditionError, detect_test_mode, require_root
from swarmctl.validation import validate_settings

logger = logging.getLogger("swarmctl.commands")

ENV_FILE_HELP = "Path to the dotenv configuration file"


def env_file_option():
    return typer.Option(DEFAULT_ENV_FILE, "--env-file", "-e", help=ENV_FILE_HELP)


def load_config(env_file: str, role: Optional[Role] = None, require_ssh_key: bool = False) -> Config:
    """Load and validate settings, exiting 1 on any invalid field."""
    settings = load_settings(env_file)
    logger.debug(f"Resolved settings: {redact(settings)}")

    report = validate_settings(settings, role=role, require_ssh_key=require_ssh_key)
    report.log()
    if not report.ok:
        raise typer.Exit(code=1)
    return Config.from_settings(settings)


def ensure_root() -> None:
    try:
        require_root()
    except PreconditionError as e:
        logger.error(f"❌ {e}")
        raise typer.Exit(code=1)


def build_context(config: Config) -> HostContext:
    """Create the context for the local host, with test mode resolved."""
    config = dataclasses.replace(config, test_mode=detect_test_mode(config.test_mode))
    return HostContext.create(config)
