"""Read-only post-provisioning checks for a role."""
import logging
import re
from dataclasses import dataclass, field
from typing import Callable, List, Tuple

from ..models import Role
from .bootstrap import DOCKER_NETWORK
from .context import HostContext
from .firewall import DOCKER_API_PORTS
from .hardening import (
    AUTHORIZED_KEYS_PLACEHOLDER,
    FAIL2BAN_JAIL_PATH,
    SSHD_HARDENING_PATH,
)
from .roles import DOKPLOY_DIR

logger = logging.getLogger("swarmctl.verify")

_SOURCE_RULE_RE = re.compile(r"\b(2377|7946|4789)\b.*\b\d{1,3}(\.\d{1,3}){3}\b")


@dataclass
class CheckResult:
    group: str
    name: str
    passed: bool
    info: str = ""


@dataclass
class VerificationReport:
    results: List[CheckResult] = field(default_factory=list)

    @property
    def passed(self) -> int:
        return sum(1 for r in self.results if r.passed)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.passed)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def ok(self) -> bool:
        return self.failed == 0


Check = Tuple[str, str, Callable[[], Tuple[bool, str]]]


class Verifier:
    """Collects and runs the checks for a role."""

    def __init__(self, ctx: HostContext, role: Role):
        self.ctx = ctx
        self.role = Role(role)
        self._ufw_status = None

    def ufw_status(self) -> str:
        if self._ufw_status is None:
            result = self.ctx.runner.run(["ufw", "status"])
            self._ufw_status = result.stdout if result.ok else ""
        return self._ufw_status

    def _grep_sshd(self, needle: str) -> bool:
        paths = [self.ctx.files.path("/etc/ssh/sshd_config")]
        conf_dir = self.ctx.files.path("/etc/ssh/sshd_config.d")
        if conf_dir.is_dir():
            paths += sorted(conf_dir.glob("*.conf"))
        for path in paths:
            try:
                if needle in path.read_text(encoding="utf-8", errors="replace"):
                    return True
            except OSError:
                continue
        return False

    # --- user -------------------------------------------------------------

    def user_checks(self) -> List[Check]:
        ctx = self.ctx
        user = ctx.username
        ssh_dir = f"{ctx.home}/.ssh"
        keys = f"{ssh_dir}/authorized_keys"

        def groups():
            current = ctx.user_groups()
            ok = ("sudo" in current or "admin" in current) and "docker" in current
            return ok, f"groups: {' '.join(current)}"

        def keys_present():
            text = ctx.files.read_text(keys)
            if not text.strip() or AUTHORIZED_KEYS_PLACEHOLDER in text:
                return False, "no keys or only placeholder content"
            count = sum(1 for line in text.splitlines() if line.strip() and not line.startswith("#"))
            return True, f"{count} key(s)"

        return [
            ("User", f"User '{user}' exists", lambda: (ctx.user_exists(), "")),
            ("User", f"User '{user}' has sudo and docker groups", groups),
            ("User", "SSH directory permissions (700)", lambda: (ctx.files.mode(ssh_dir) == 0o700, "")),
            ("User", "authorized_keys permissions (600)", lambda: (ctx.files.mode(keys) == 0o600, "")),
            ("User", "SSH keys present", keys_present),
        ]

    # --- ssh --------------------------------------------------------------

    def ssh_checks(self) -> List[Check]:
        ctx = self.ctx
        port = ctx.config.ssh_port

        def listening():
            result = ctx.runner.run(["ss", "-tln"])
            ok = result.ok and re.search(rf":{port}\b", result.stdout) is not None
            return ok, f"port {port}"

        return [
            ("SSH", "SSH hardening config exists", lambda: (ctx.files.exists(SSHD_HARDENING_PATH), "")),
            ("SSH", f"SSH listening on port {port}", listening),
            ("SSH", "Root login disabled", lambda: (self._grep_sshd("PermitRootLogin no"), "")),
            ("SSH", "Password authentication disabled",
             lambda: (self._grep_sshd("PasswordAuthentication no"), "")),
        ]

    # --- firewall ---------------------------------------------------------

    def firewall_checks(self) -> List[Check]:
        ctx = self.ctx
        config = ctx.config
        port = config.ssh_port

        ssh_rule = re.compile(rf"^{port}(/tcp)?(\s+\(v6\))?\s+(ALLOW|LIMIT)(?!\s+OUT)\b")

        def ssh_allowed():
            return any(ssh_rule.match(line.strip()) for line in self.ufw_status().splitlines()), ""

        def docker_api_not_allowed():
            for line in self.ufw_status().splitlines():
                if any(f"{p}/tcp" in line for p in DOCKER_API_PORTS) and "ALLOW" in line.upper():
                    return False, line.strip()
            return True, ""

        checks = [
            ("Firewall", "UFW is active", lambda: ("Status: active" in self.ufw_status(), "")),
            ("Firewall", f"SSH port {port} allowed", ssh_allowed),
            ("Firewall", "Docker TCP API ports 2375/2376 not allowed", docker_api_not_allowed),
        ]

        if self.role == Role.CONTROL_PLANE:
            checks += [
                ("Firewall", "HTTP/HTTPS ports open",
                 lambda: ("80/tcp" in self.ufw_status() and "443/tcp" in self.ufw_status(), "")),
                ("Firewall", f"Control Plane UI port {config.control_plane_ui_port} open",
                 lambda: (f"{config.control_plane_ui_port}/tcp" in self.ufw_status(), "")),
                ("Firewall", "Monitoring ports open (Prometheus/Grafana)",
                 lambda: (f"{config.prometheus_port}/tcp" in self.ufw_status()
                          and f"{config.grafana_port}/tcp" in self.ufw_status(), "")),
                ("Firewall", "Docker Swarm ports open",
                 lambda: (all(p in self.ufw_status() for p in ("2377/tcp", "7946", "4789")), "")),
            ]
        else:
            def swarm_restricted():
                ok = any(_SOURCE_RULE_RE.search(line) for line in self.ufw_status().splitlines())
                return ok, f"control plane IP: {config.control_plane_ip}"

            inbound_web = re.compile(
                rf"^(80|443|{config.control_plane_ui_port})/tcp(\s+\(v6\))?\s+ALLOW(?!\s+OUT)(\s+IN)?\s")

            def no_public_web():
                for line in self.ufw_status().splitlines():
                    if inbound_web.match(line.strip() + " "):
                        return False, line.strip()
                return True, ""

            def outbound_web():
                status = self.ufw_status()
                return bool(re.search(r"(80|443)/tcp\s+ALLOW OUT", status)), ""

            checks += [
                ("Firewall", "Swarm ports restricted to control plane IP", swarm_restricted),
                ("Firewall", "No public web ports open", no_public_web),
                ("Firewall", "Outbound HTTP/HTTPS allowed", outbound_web),
            ]
        return checks

    # --- fail2ban ---------------------------------------------------------

    def fail2ban_checks(self) -> List[Check]:
        ctx = self.ctx
        port = ctx.config.ssh_port
        jail = ctx.files.read_text(FAIL2BAN_JAIL_PATH)
        return [
            ("Fail2ban", "Fail2ban is installed", lambda: (ctx.package_installed("fail2ban"), "")),
            ("Fail2ban", "Fail2ban is running", lambda: (ctx.services.is_active("fail2ban"), "")),
            ("Fail2ban", "Fail2ban SSH jail configured", lambda: ("[sshd]" in jail, "")),
            ("Fail2ban", f"Fail2ban monitoring SSH port {port}",
             lambda: (re.search(rf"^port\s*=.*\b{port}\b", jail, re.MULTILINE) is not None, "")),
        ]

    # --- docker -----------------------------------------------------------

    def docker_checks(self) -> List[Check]:
        ctx = self.ctx
        user = ctx.username

        def compose():
            return (ctx.runner.succeeds(["docker", "compose", "version"])
                    or ctx.runner.succeeds(["docker-compose", "--version"])), ""

        return [
            ("Docker", "Docker is installed", lambda: (ctx.runner.succeeds(["docker", "--version"]), "")),
            ("Docker", "Docker service is running", lambda: (ctx.services.is_active("docker"), "")),
            ("Docker", "Docker Compose is available", compose),
            ("Docker", f"User '{user}' can run Docker commands",
             lambda: (ctx.runner.succeeds(["sudo", "-u", user, "docker", "ps"]), "")),
            ("Docker", f"{DOCKER_NETWORK} network exists",
             lambda: (ctx.runner.succeeds(["docker", "network", "inspect", DOCKER_NETWORK]), "")),
        ]

    # --- role -------------------------------------------------------------

    def role_checks(self) -> List[Check]:
        if self.role == Role.CONTROL_PLANE:
            return [("Role", f"{DOKPLOY_DIR} directory exists", lambda: (self.ctx.files.is_dir(DOKPLOY_DIR), ""))]
        return [("Role", f"No {DOKPLOY_DIR} directory on worker",
                 lambda: (not self.ctx.files.exists(DOKPLOY_DIR), ""))]

    def checks(self) -> List[Check]:
        return (self.user_checks()
                + self.ssh_checks()
                + self.firewall_checks()
                + self.fail2ban_checks()
                + self.docker_checks()
                + self.role_checks())

    def run(self) -> VerificationReport:
        report = VerificationReport()
        group = None
        for check_group, name, check in self.checks():
            if check_group != group:
                group = check_group
                logger.info(f"=== {group} Tests ===")
            try:
                passed, info = check()
            except OSError as e:
                passed, info = False, str(e)
            report.results.append(CheckResult(check_group, name, passed, info))
            if passed:
                logger.info(f"✓ PASS: {name}" + (f" ({info})" if info else ""))
            else:
                logger.error(f"✗ FAIL: {name}" + (f" ({info})" if info else ""))

        logger.info(f"📊 Tests passed: {report.passed}/{report.total}, failed: {report.failed}")
        return report
