"""systemd service lifecycle management.

All operations block the caller. Readiness is decided by polling
``systemctl is-active`` at a fixed interval until a timeout.
"""
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, List

from .shell import CommandRunner

logger = logging.getLogger("swarmctl.service")

RESTART_TIMEOUT = 30
POLL_INTERVAL = 1
JOURNAL_LINES = 20


@dataclass
class ServiceState:
    """Observed status of a systemd service."""
    installed: bool
    enabled: bool
    active: bool


@dataclass
class ServiceResult:
    """Outcome of a service lifecycle operation."""
    service: str
    ok: bool
    message: str = ""
    logs: List[str] = field(default_factory=list)
    attempts: int = 0


class ServiceController:
    """Enable, start and restart systemd services."""

    def __init__(self, runner: CommandRunner, sleep: Callable[[float], None] = time.sleep):
        self.runner = runner
        self.sleep = sleep

    def is_active(self, service: str) -> bool:
        return self.runner.succeeds(["systemctl", "is-active", "--quiet", service])

    def is_enabled(self, service: str) -> bool:
        return self.runner.succeeds(["systemctl", "is-enabled", "--quiet", service])

    def is_installed(self, service: str) -> bool:
        unit = service if service.endswith(".service") else f"{service}.service"
        result = self.runner.run(["systemctl", "list-unit-files", "--no-legend", unit])
        return result.ok and unit in result.stdout

    def state(self, service: str) -> ServiceState:
        return ServiceState(
            installed=self.is_installed(service),
            enabled=self.is_enabled(service),
            active=self.is_active(service),
        )

    def recent_logs(self, service: str, lines: int = JOURNAL_LINES) -> List[str]:
        unit = service if service.endswith(".service") else f"{service}.service"
        result = self.runner.run(["journalctl", "-xeu", unit, "-n", str(lines), "--no-pager"])
        return result.stdout.splitlines()[-lines:]

    def daemon_reload(self) -> ServiceResult:
        result = self.runner.run(["systemctl", "daemon-reload"])
        if not result.ok:
            return ServiceResult("systemd", False, f"daemon-reload failed: {result.stderr.strip()}")
        return ServiceResult("systemd", True, "daemon reloaded")

    def wait_until(
        self,
        probe: Callable[[], bool],
        timeout: int = RESTART_TIMEOUT,
        interval: int = POLL_INTERVAL,
    ) -> int:
        """Poll ``probe`` every ``interval`` seconds, at most ``timeout // interval`` times.

        Returns:
            The attempt number on which the probe succeeded, or 0 on timeout
        """
        attempts = max(1, timeout // interval)
        for attempt in range(1, attempts + 1):
            if probe():
                return attempt
            self.sleep(interval)
        return 0

    def enable_and_start(self, service: str) -> ServiceResult:
        """Enable a service at boot and start it."""
        logger.info(f"🔧 Enabling and starting {service}...")

        result = self.runner.run(["systemctl", "enable", service])
        if not result.ok:
            logger.error(f"❌ Failed to enable {service}")
            return ServiceResult(service, False, f"failed to enable {service}: {result.stderr.strip()}",
                                 self.recent_logs(service))

        result = self.runner.run(["systemctl", "start", service])
        if not result.ok:
            logger.error(f"❌ Failed to start {service}")
            return ServiceResult(service, False, f"failed to start {service}: {result.stderr.strip()}",
                                 self.recent_logs(service))

        if self.is_active(service):
            logger.info(f"✅ {service} enabled and running")
            return ServiceResult(service, True, f"{service} enabled and running")

        logger.error(f"❌ {service} is not active after start")
        return ServiceResult(service, False, f"{service} is not active after start", self.recent_logs(service))

    def restart(
        self,
        service: str,
        timeout: int = RESTART_TIMEOUT,
        interval: int = POLL_INTERVAL,
    ) -> ServiceResult:
        """Restart a service and wait for it to report active.

        Args:
            service: systemd unit name
            timeout: Seconds to wait for the service to become active
            interval: Seconds between ``is-active`` polls

        Returns:
            ServiceResult; on failure ``logs`` holds the last journal lines
        """
        logger.info(f"🔄 Restarting {service}...")

        result = self.runner.run(["systemctl", "restart", service])
        if not result.ok:
            logger.error(f"❌ Failed to restart {service}")
            return ServiceResult(service, False, f"failed to restart {service}: {result.stderr.strip()}",
                                 self.recent_logs(service))

        attempt = self.wait_until(lambda: self.is_active(service), timeout, interval)
        if attempt:
            logger.info(f"✅ {service} is running")
            return ServiceResult(service, True, f"{service} is running", attempts=attempt)

        logger.error(f"❌ {service} failed to become active within {timeout}s")
        return ServiceResult(
            service,
            False,
            f"{service} failed to become active within {timeout}s",
            self.recent_logs(service),
            attempts=max(1, timeout // interval),
        )
