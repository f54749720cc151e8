"""UFW firewall policy per cluster role."""
import logging
import shlex
from dataclasses import dataclass
from typing import List, Optional

from ..config import Config
from ..models import Role
from .shell import CommandRunner

logger = logging.getLogger("swarmctl.firewall")

SWARM_MANAGEMENT_PORT = 2377
SWARM_DISCOVERY_PORT = 7946
SWARM_OVERLAY_PORT = 4789
DOCKER_API_PORTS = (2375, 2376)


class FirewallPolicyError(RuntimeError):
    """Raised when a rule set is unsafe or UFW rejects it."""


@dataclass(frozen=True)
class FirewallRule:
    """A single UFW rule."""
    port: int
    protocol: str = "tcp"
    action: str = "allow"
    direction: str = "in"
    source: Optional[str] = None
    label: str = ""

    def spec(self) -> List[str]:
        """UFW arguments for this rule, without the comment."""
        if self.source:
            return [self.action, "from", self.source, "to", "any",
                    "port", str(self.port), "proto", self.protocol]
        args = [self.action]
        if self.direction == "out":
            args.append("out")
        args.append(f"{self.port}/{self.protocol}")
        return args

    def argv(self) -> List[str]:
        args = ["ufw"] + self.spec()
        if self.label:
            args += ["comment", self.label]
        return args

    def __str__(self) -> str:
        return shlex.join(self.argv())


DOCKER_API_DENY_RULES = (
    FirewallRule(2375, "tcp", "deny", label="Block Docker API (unencrypted)"),
    FirewallRule(2376, "tcp", "deny", label="Block Docker API (TLS)"),
)


def control_plane_rules(config: Config) -> List[FirewallRule]:
    return [
        FirewallRule(config.ssh_port, "tcp", label="SSH Port"),
        FirewallRule(80, "tcp", label="HTTP for LetsEncrypt"),
        FirewallRule(443, "tcp", label="HTTPS"),
        FirewallRule(config.control_plane_ui_port, "tcp", label="Control Plane UI"),
        FirewallRule(SWARM_MANAGEMENT_PORT, "tcp", label="Docker Swarm Management"),
        FirewallRule(SWARM_DISCOVERY_PORT, "tcp", label="Swarm node discovery"),
        FirewallRule(SWARM_DISCOVERY_PORT, "udp", label="Swarm node discovery"),
        FirewallRule(SWARM_OVERLAY_PORT, "udp", label="Swarm overlay network"),
        FirewallRule(443, "tcp", direction="out", label="HTTPS outbound"),
        FirewallRule(config.prometheus_port, "tcp", label="Prometheus"),
        FirewallRule(config.grafana_port, "tcp", label="Grafana"),
    ]


def worker_rules(config: Config) -> List[FirewallRule]:
    if not config.control_plane_ip:
        raise FirewallPolicyError("CONTROL_PLANE_IP is required for the worker firewall policy")
    source = config.control_plane_ip
    return [
        FirewallRule(config.ssh_port, "tcp", label="SSH Port"),
        FirewallRule(SWARM_MANAGEMENT_PORT, "tcp", source=source, label="Swarm Management"),
        FirewallRule(SWARM_DISCOVERY_PORT, "tcp", source=source, label="Swarm Discovery TCP"),
        FirewallRule(SWARM_DISCOVERY_PORT, "udp", source=source, label="Swarm Discovery UDP"),
        FirewallRule(SWARM_OVERLAY_PORT, "udp", source=source, label="Overlay Network"),
        FirewallRule(443, "tcp", direction="out", label="HTTPS outbound"),
        FirewallRule(80, "tcp", direction="out", label="HTTP outbound"),
    ]


def _missing_docker_api_denies(rules: List[FirewallRule]) -> List[int]:
    denied = {r.port for r in rules
              if r.action == "deny" and r.protocol == "tcp" and r.direction == "in" and r.source is None}
    return [port for port in DOCKER_API_PORTS if port not in denied]


class FirewallPolicy:
    """Builds and applies the UFW rule set for a role."""

    def __init__(self, role: Role, config: Config):
        self.role = Role(role)
        self.config = config

    def rules(self) -> List[FirewallRule]:
        """Return the ordered rule set; the Docker API denies are always last."""
        if self.role == Role.CONTROL_PLANE:
            rules = control_plane_rules(self.config)
        else:
            rules = worker_rules(self.config)
        return rules + list(DOCKER_API_DENY_RULES)

    def render(self) -> str:
        lines = [str(rule) for rule in self.rules()]
        lines += ["ufw reload", "ufw --force enable"]
        return "\n".join(lines)

    def is_applied(self, runner: CommandRunner) -> bool:
        """Return True if UFW is active and every rule of the policy is present."""
        status = runner.run(["ufw", "status"])
        if not status.ok or "Status: active" not in status.stdout:
            return False

        added = runner.run(["ufw", "show", "added"])
        if not added.ok:
            return False
        lines = [line.strip() for line in added.stdout.splitlines()]
        for rule in self.rules():
            prefix = "ufw " + " ".join(rule.spec())
            if not any(line == prefix or line.startswith(prefix + " comment") for line in lines):
                logger.debug("Rule not present: %s", prefix)
                return False
        return True

    def apply(self, runner: CommandRunner, rules: Optional[List[FirewallRule]] = None) -> None:
        """Add every rule, then reload and enable UFW.

        Raises:
            FirewallPolicyError: If the rule set does not deny the Docker API ports
            CommandError: If a ufw invocation fails
        """
        rules = self.rules() if rules is None else rules
        missing = _missing_docker_api_denies(rules)
        if missing:
            raise FirewallPolicyError(
                f"Refusing to apply a rule set without deny rules for Docker API ports {missing}"
            )

        logger.info(f"🔧 Configuring firewall for {self.role}...")
        for rule in rules:
            runner.run(rule.argv(), check=True)
        runner.run(["ufw", "reload"], check=True)
        runner.run(["ufw", "--force", "enable"], check=True)
        logger.info(f"✅ Firewall configured with {len(rules)} rules")
