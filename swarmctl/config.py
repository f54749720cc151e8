"""Configuration management for the swarmctl application.

Settings are resolved with the following precedence (highest first):
1. Environment variables (known keys only)
2. The dotenv file (``.env`` by default)
3. Default values

The dotenv file is parsed, never executed: a line that is not a plain
``KEY=VALUE`` assignment is skipped with a warning.
"""
import io
import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Mapping, Optional, Tuple, Union

from dotenv.parser import parse_stream

logger = logging.getLogger("swarmctl.config")

DEFAULT_ENV_FILE = ".env"

# Logging
LOG_FILE: str = os.getenv("SWARMCTL_LOG_FILE", "/var/log/cloud-setup.log")
LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Security
REDACT_KEYS: tuple = ("SSH_KEY",)

DEFAULTS: Dict[str, str] = {
    "USERNAME": "ubuntu",
    "SSH_PORT": "22",
    "FAIL2BAN_FINDTIME": "600",
    "FAIL2BAN_MAXRETRY": "3",
    "FAIL2BAN_BANTIME": "3600",
    "SSH_MAX_AUTH_TRIES": "3",
    "SSH_CLIENT_ALIVE_INTERVAL": "300",
    "SSH_CLIENT_ALIVE_COUNT_MAX": "2",
    "SSH_MAX_STARTUPS": "10:30:60",
    "SSH_LOGIN_GRACE_TIME": "60",
    "CONTROL_PLANE_UI_PORT": "3000",
    "PROMETHEUS_PORT": "9090",
    "GRAFANA_PORT": "3001",
    "PERSONAL_SSH_KEY": "",
    "CONTROL_PLANE_SSH_KEY": "",
    "CONTROL_PLANE_IP": "",
    "TEST_MODE": "",
}

_KEY_VALUE_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*=")
# one layer of matching quotes, optionally followed by an inline comment
_QUOTED_VALUE_RE = re.compile(r"""^(['"])(.*?)\1(?:\s*#.*)?$""")


def _parse_line(line: str) -> Optional[Tuple[str, str]]:
    """Parse one physical line; None when it is not a plain assignment.

    python-dotenv decides what is well formed. Quoted values are taken
    verbatim between the quotes, without escape decoding.
    """
    text = line.strip()
    if not _KEY_VALUE_RE.match(text):
        return None
    binding = next(parse_stream(io.StringIO(text + "\n")), None)
    if binding is None or binding.error or binding.key is None or binding.value is None:
        return None
    quoted = _QUOTED_VALUE_RE.match(text.split("=", 1)[1])
    return binding.key, quoted.group(2) if quoted else binding.value


def read_env_file(path: Union[str, Path]) -> Dict[str, str]:
    """Parse a dotenv file into a dict without evaluating any of it.

    Every physical line stands alone, so a malformed line only ever costs
    itself.

    Args:
        path: Path to the dotenv file

    Returns:
        Mapping of the well-formed ``KEY=VALUE`` assignments in file order.
        A missing file yields an empty mapping.
    """
    path = Path(path)
    if not path.is_file():
        logger.warning(f"⚠️  No env file found at {path}, using defaults and environment")
        return {}

    logger.info(f"📄 Loading configuration from {path}")
    values: Dict[str, str] = {}
    with open(path, encoding="utf-8") as stream:
        for line_no, line in enumerate(stream, start=1):
            text = line.strip()
            if not text or text.startswith("#"):
                continue

            parsed = _parse_line(text)
            if parsed is None:
                logger.warning(f"⚠️  Skipping malformed line {line_no} in {path}: {text}")
                continue

            key, value = parsed
            values[key] = value

    return values


def load_settings(
    env_file: Optional[Union[str, Path]] = DEFAULT_ENV_FILE,
    environ: Optional[Mapping[str, str]] = None,
) -> Dict[str, str]:
    """Resolve raw string settings from defaults, the env file and the environment.

    Args:
        env_file: dotenv file to read; None skips the file entirely
        environ: environment to overlay (defaults to ``os.environ``)

    Returns:
        Dict of setting name to string value, not yet validated
    """
    if environ is None:
        environ = os.environ

    settings = dict(DEFAULTS)
    if env_file is not None:
        settings.update(read_env_file(env_file))

    for key in DEFAULTS:
        if key in environ:
            settings[key] = environ[key]

    return settings


def redact(settings: Mapping[str, str]) -> Dict[str, str]:
    """Return a copy of the settings safe to log."""
    redacted = {}
    for key, value in settings.items():
        if value and any(marker in key for marker in REDACT_KEYS):
            # keep the key type so the log still says what kind of key is set
            redacted[key] = f"{value.split()[0]} [REDACTED]"
        else:
            redacted[key] = value
    return redacted


@dataclass(frozen=True)
class Config:
    """Validated, immutable provisioning configuration.

    Build it with :meth:`from_settings` only after
    :func:`swarmctl.validation.validate_settings` reported no errors.
    """
    username: str = "ubuntu"
    ssh_port: int = 22
    fail2ban_findtime: int = 600
    fail2ban_maxretry: int = 3
    fail2ban_bantime: int = 3600
    ssh_max_auth_tries: int = 3
    ssh_client_alive_interval: int = 300
    ssh_client_alive_count_max: int = 2
    ssh_max_startups: str = "10:30:60"
    ssh_login_grace_time: int = 60
    control_plane_ui_port: int = 3000
    prometheus_port: int = 9090
    grafana_port: int = 3001
    personal_ssh_key: str = ""
    control_plane_ssh_key: str = ""
    control_plane_ip: str = ""
    test_mode: bool = False

    @classmethod
    def from_settings(cls, settings: Mapping[str, str]) -> "Config":
        """Build a Config from validated string settings."""
        merged = dict(DEFAULTS)
        merged.update(settings)
        return cls(
            username=merged["USERNAME"],
            ssh_port=int(merged["SSH_PORT"]),
            fail2ban_findtime=int(merged["FAIL2BAN_FINDTIME"]),
            fail2ban_maxretry=int(merged["FAIL2BAN_MAXRETRY"]),
            fail2ban_bantime=int(merged["FAIL2BAN_BANTIME"]),
            ssh_max_auth_tries=int(merged["SSH_MAX_AUTH_TRIES"]),
            ssh_client_alive_interval=int(merged["SSH_CLIENT_ALIVE_INTERVAL"]),
            ssh_client_alive_count_max=int(merged["SSH_CLIENT_ALIVE_COUNT_MAX"]),
            ssh_max_startups=merged["SSH_MAX_STARTUPS"],
            ssh_login_grace_time=int(merged["SSH_LOGIN_GRACE_TIME"]),
            control_plane_ui_port=int(merged["CONTROL_PLANE_UI_PORT"]),
            prometheus_port=int(merged["PROMETHEUS_PORT"]),
            grafana_port=int(merged["GRAFANA_PORT"]),
            personal_ssh_key=merged["PERSONAL_SSH_KEY"].strip(),
            control_plane_ssh_key=merged["CONTROL_PLANE_SSH_KEY"].strip(),
            control_plane_ip=merged["CONTROL_PLANE_IP"].strip(),
            test_mode=merged["TEST_MODE"].strip().lower() in ("1", "true", "yes"),
        )

    @property
    def home(self) -> str:
        return f"/home/{self.username}"
