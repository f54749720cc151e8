"""Input validation for swarmctl settings.

Every check here is a pure function of its input. ``validate_settings``
collects the result for every applicable field so all problems are reported
together before anything on the host is touched.
"""
import logging
import re
from dataclasses import dataclass, field
from typing import List, Mapping, Optional

from .models import Role

logger = logging.getLogger("swarmctl.validation")

SSH_KEY_TYPES = (
    "ssh-rsa",
    "ssh-ed25519",
    "ecdsa-sha2-nistp256",
    "ecdsa-sha2-nistp384",
    "ecdsa-sha2-nistp521",
    "sk-ssh-ed25519",
    "sk-ecdsa-sha2-nistp256",
)

_IPV4_RE = re.compile(r"[0-9]{1,3}\.[0-9]{1,3}\.[0-9]{1,3}\.[0-9]{1,3}")
_DIGITS_RE = re.compile(r"[0-9]+")
_USERNAME_RE = re.compile(r"[a-z_][a-z0-9_-]{0,31}")
_SSH_KEY_RE = re.compile(r"(%s)\s" % "|".join(re.escape(t) for t in SSH_KEY_TYPES))
_MAX_STARTUPS_RE = re.compile(r"[0-9]+(:[0-9]+:[0-9]+)?")

PORT_FIELDS = ("SSH_PORT", "CONTROL_PLANE_UI_PORT", "PROMETHEUS_PORT", "GRAFANA_PORT")
COUNT_FIELDS = (
    "FAIL2BAN_FINDTIME",
    "FAIL2BAN_MAXRETRY",
    "FAIL2BAN_BANTIME",
    "SSH_MAX_AUTH_TRIES",
    "SSH_CLIENT_ALIVE_INTERVAL",
    "SSH_CLIENT_ALIVE_COUNT_MAX",
    "SSH_LOGIN_GRACE_TIME",
)


def is_valid_ipv4(value: str) -> bool:
    if not value or not _IPV4_RE.fullmatch(value):
        return False
    return all(int(octet) <= 255 for octet in value.split("."))


def is_valid_port(value: str) -> bool:
    if not value or not _DIGITS_RE.fullmatch(value):
        return False
    return 1 <= int(value) <= 65535


def is_positive_int(value: str) -> bool:
    """Return True for a non-negative decimal integer.

    Zero is accepted: only negative or non-numeric values are rejected.
    """
    return bool(value) and _DIGITS_RE.fullmatch(value) is not None


def is_valid_username(value: str) -> bool:
    return bool(value) and _USERNAME_RE.fullmatch(value) is not None


def is_valid_ssh_key(value: str) -> bool:
    if not value:
        return False
    return _SSH_KEY_RE.match(value) is not None


def is_valid_max_startups(value: str) -> bool:
    return bool(value) and _MAX_STARTUPS_RE.fullmatch(value) is not None


@dataclass
class FieldResult:
    """Outcome of validating a single setting."""
    name: str
    valid: bool
    reason: str = ""


@dataclass
class ValidationReport:
    """Aggregated validation results."""
    results: List[FieldResult] = field(default_factory=list)

    def add(self, name: str, valid: bool, reason: str = "") -> None:
        self.results.append(FieldResult(name, valid, "" if valid else reason))

    @property
    def errors(self) -> List[FieldResult]:
        return [r for r in self.results if not r.valid]

    @property
    def error_count(self) -> int:
        return len(self.errors)

    @property
    def ok(self) -> bool:
        return self.error_count == 0

    def log(self) -> None:
        """Log one line per failed field followed by a summary."""
        for result in self.errors:
            logger.error(f"❌ Invalid {result.name}: {result.reason}")
        if self.ok:
            logger.info("✅ Configuration validated successfully")
        else:
            logger.error(f"❌ Configuration validation failed with {self.error_count} error(s)")


def validate_settings(
    settings: Mapping[str, str],
    role: Optional[Role] = None,
    require_ssh_key: bool = False,
) -> ValidationReport:
    """Validate raw settings.

    Args:
        settings: Raw string settings from :func:`swarmctl.config.load_settings`
        role: Role being provisioned; adds the role's required fields
        require_ssh_key: Require at least one SSH public key (implied by role)

    Returns:
        ValidationReport with one entry per checked field
    """
    report = ValidationReport()

    username = settings.get("USERNAME", "")
    report.add(
        "USERNAME",
        is_valid_username(username),
        f"{username!r} (must be 1-32 chars: a lowercase letter or _ followed by "
        "lowercase letters, digits, _ or -)",
    )

    for name in PORT_FIELDS:
        value = settings.get(name, "")
        report.add(name, is_valid_port(value), f"{value!r} (must be 1-65535)")

    for name in COUNT_FIELDS:
        value = settings.get(name, "")
        report.add(name, is_positive_int(value), f"{value!r} (must be positive integer)")

    max_startups = settings.get("SSH_MAX_STARTUPS", "")
    report.add(
        "SSH_MAX_STARTUPS",
        is_valid_max_startups(max_startups),
        f"{max_startups!r} (must be N or start:rate:full)",
    )

    control_plane_ip = settings.get("CONTROL_PLANE_IP", "")
    if control_plane_ip:
        report.add("CONTROL_PLANE_IP", is_valid_ipv4(control_plane_ip), f"{control_plane_ip!r}")
    elif role == Role.WORKER:
        report.add(
            "CONTROL_PLANE_IP",
            False,
            "required for worker configuration, set CONTROL_PLANE_IP in your .env file",
        )

    personal_key = settings.get("PERSONAL_SSH_KEY", "")
    control_plane_key = settings.get("CONTROL_PLANE_SSH_KEY", "")
    for name, value in (("PERSONAL_SSH_KEY", personal_key), ("CONTROL_PLANE_SSH_KEY", control_plane_key)):
        if value:
            report.add(
                name,
                is_valid_ssh_key(value),
                "format (must start with ssh-rsa, ssh-ed25519, etc.)",
            )

    if (require_ssh_key or role is not None) and not (personal_key or control_plane_key):
        report.add(
            "PERSONAL_SSH_KEY",
            False,
            "at least one SSH key (PERSONAL_SSH_KEY or CONTROL_PLANE_SSH_KEY) is required",
        )

    return report
