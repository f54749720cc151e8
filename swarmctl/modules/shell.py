"""Local command execution.

Every interaction with the host's tools (apt, systemctl, ufw, docker, ...)
goes through :class:`CommandRunner` so the step lists can be driven against
a simulated host in tests.
"""
import logging
import os
import shlex
import subprocess
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

logger = logging.getLogger("swarmctl.shell")


@dataclass
class CommandResult:
    """Result of a finished command."""
    argv: List[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def command(self) -> str:
        return shlex.join(self.argv)


class CommandError(RuntimeError):
    """Raised when a checked command exits non-zero."""

    def __init__(self, result: CommandResult, message: Optional[str] = None):
        self.result = result
        self.returncode = result.returncode
        detail = (result.stderr or result.stdout).strip()
        if message is None:
            message = f"Command failed (exit code {result.returncode}): {result.command}"
            if detail:
                message = f"{message}: {detail}"
        super().__init__(message)


class CommandRunner:
    """Run commands on the local host with ``subprocess``."""

    def __init__(self, env: Optional[Dict[str, str]] = None, timeout: Optional[float] = None):
        self.env = dict(os.environ)
        self.env["DEBIAN_FRONTEND"] = "noninteractive"
        if env:
            self.env.update(env)
        self.timeout = timeout

    def run(
        self,
        argv: Sequence[str],
        check: bool = False,
        input: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        """Run a command and capture its output.

        Args:
            argv: Command and arguments (never passed through a shell)
            check: Raise CommandError on a non-zero exit
            input: Text fed to the command's stdin
            timeout: Seconds before the command is killed

        Returns:
            CommandResult with the exit status and captured output

        Raises:
            CommandError: If check is True and the command failed
        """
        argv = [str(a) for a in argv]
        logger.debug("$ %s", shlex.join(argv))
        try:
            proc = subprocess.run(
                argv,
                input=input,
                capture_output=True,
                text=True,
                env=self.env,
                timeout=timeout or self.timeout,
            )
            result = CommandResult(argv, proc.returncode, proc.stdout or "", proc.stderr or "")
        except FileNotFoundError:
            result = CommandResult(argv, 127, "", f"{argv[0]}: command not found")
        except subprocess.TimeoutExpired as e:
            result = CommandResult(argv, 124, "", f"timed out after {e.timeout}s")

        if not result.ok:
            logger.debug("exit code %d: %s", result.returncode, result.stderr.strip())
        if check and not result.ok:
            raise CommandError(result)
        return result

    def succeeds(self, argv: Sequence[str]) -> bool:
        """Return True if the command exits zero."""
        return self.run(argv).ok
