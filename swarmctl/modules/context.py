"""Per-run provisioning context shared by every step."""
import hashlib
import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from ..config import Config
from .host import HostFiles
from .service import ServiceController
from .shell import CommandRunner

logger = logging.getLogger("swarmctl.context")

# digests of the config files each service was last restarted with
RESTART_STAMP_DIR = "/var/lib/swarmctl/applied"


@dataclass
class HostContext:
    """Everything a step needs to inspect and change the host."""
    config: Config
    runner: CommandRunner
    files: HostFiles
    services: ServiceController

    @classmethod
    def create(cls, config: Config, runner: Optional[CommandRunner] = None,
               files: Optional[HostFiles] = None, services: Optional[ServiceController] = None) -> "HostContext":
        runner = runner or CommandRunner()
        return cls(
            config=config,
            runner=runner,
            files=files or HostFiles(),
            services=services or ServiceController(runner),
        )

    @property
    def username(self) -> str:
        return self.config.username

    @property
    def home(self) -> str:
        return self.config.home

    def user_exists(self, username: Optional[str] = None) -> bool:
        return self.runner.succeeds(["id", "-u", username or self.username])

    def user_groups(self, username: Optional[str] = None) -> List[str]:
        result = self.runner.run(["id", "-nG", username or self.username])
        return result.stdout.split() if result.ok else []

    def login_shell(self, username: Optional[str] = None) -> str:
        result = self.runner.run(["getent", "passwd", username or self.username])
        if not result.ok or not result.stdout.strip():
            return ""
        return result.stdout.strip().split(":")[-1]

    def package_installed(self, package: str) -> bool:
        result = self.runner.run(["dpkg-query", "-W", "-f=${Status}", package])
        return result.ok and "install ok installed" in result.stdout

    def packages_installed(self, packages: List[str]) -> bool:
        return all(self.package_installed(p) for p in packages)

    def fix_dpkg(self) -> None:
        """Recover from an interrupted dpkg/apt run."""
        self.runner.run(["dpkg", "--configure", "-a"])
        self.runner.run(["apt-get", "-y", "install", "-f"])

    def apt_install(self, packages: List[str], check: bool = True):
        args = ["apt-get", "install", "-y"]
        if self.config.test_mode:
            args.append("--no-install-recommends")
        return self.runner.run(args + list(packages), check=check)

    def config_digest(self, paths: Sequence[str]) -> str:
        digest = hashlib.sha256()
        for path in paths:
            digest.update(path.encode())
            digest.update(b"\0")
            digest.update(self.files.read_text(path).encode())
            digest.update(b"\0")
        return digest.hexdigest()

    def restart_needed(self, service: str, paths: Sequence[str]) -> bool:
        """Whether ``service`` was last restarted with other contents of ``paths``.

        Decided from the host alone, so a run that aborted between writing a
        config file and restarting its service catches up on the next run.
        """
        stamp = self.files.read_text(f"{RESTART_STAMP_DIR}/{service}").strip()
        return stamp != self.config_digest(paths)

    def mark_restarted(self, service: str, paths: Sequence[str]) -> None:
        self.files.write_file(f"{RESTART_STAMP_DIR}/{service}", self.config_digest(paths) + "\n", mode=0o644)
