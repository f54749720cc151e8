"""Filesystem helpers for idempotent host changes.

All paths are absolute host paths (``/etc/...``) resolved against ``root``,
which is ``/`` in production and a scratch directory in tests.
"""
import logging
import os
import shutil
import stat
import tempfile
import time
from pathlib import Path
from typing import Optional, Union

logger = logging.getLogger("swarmctl.host")


class HostFiles:
    """Create and inspect files and directories on the host."""

    def __init__(self, root: str = "/", manage_ownership: Optional[bool] = None):
        self.root = Path(root)
        if manage_ownership is None:
            manage_ownership = os.geteuid() == 0
        self.manage_ownership = manage_ownership

    def path(self, host_path: str) -> Path:
        return self.root / str(host_path).lstrip("/")

    def exists(self, host_path: str) -> bool:
        return self.path(host_path).exists()

    def is_dir(self, host_path: str) -> bool:
        return self.path(host_path).is_dir()

    def read_text(self, host_path: str) -> str:
        """Return the file's text, or an empty string if it does not exist."""
        try:
            return self.path(host_path).read_text(encoding="utf-8")
        except FileNotFoundError:
            return ""

    def mode(self, host_path: str) -> Optional[int]:
        """Return the permission bits of a path, or None if it does not exist."""
        try:
            return stat.S_IMODE(self.path(host_path).stat().st_mode)
        except FileNotFoundError:
            return None

    def content_matches(self, host_path: str, content: str) -> bool:
        return self.exists(host_path) and self.read_text(host_path) == content

    def _chown(self, path: Path, owner: Optional[str]) -> None:
        if owner and self.manage_ownership:
            shutil.chown(path, user=owner, group=owner)

    def ensure_dir(self, host_path: str, mode: int = 0o755, owner: Optional[str] = None) -> None:
        """Create a directory with its final mode, or fix an existing one.

        A new directory never exists with default permissions: the process
        umask is cleared while ``mkdir`` runs so ``mode`` applies as given.
        """
        path = self.path(host_path)
        if path.is_dir():
            self._chown(path, owner)
            os.chmod(path, mode)
            return

        path.parent.mkdir(parents=True, exist_ok=True)
        old_umask = os.umask(0)
        try:
            os.mkdir(path, mode)
        finally:
            os.umask(old_umask)
        self._chown(path, owner)
        logger.debug("Created directory %s (mode %o)", host_path, mode)

    def write_file(
        self,
        host_path: str,
        content: Union[str, bytes],
        mode: int = 0o644,
        owner: Optional[str] = None,
    ) -> None:
        """Atomically write a file with its final mode and owner.

        The content goes to a temp file in the same directory, created with
        ``mode``, which is then renamed over the destination.
        """
        path = self.path(host_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
        try:
            os.fchmod(fd, mode)
            if isinstance(content, bytes):
                with os.fdopen(fd, "wb") as f:
                    f.write(content)
            else:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(content)
            self._chown(Path(tmp_name), owner)
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
        logger.debug("Wrote %s (mode %o)", host_path, mode)

    def fix_permissions(self, host_path: str, mode: int, owner: Optional[str] = None) -> None:
        path = self.path(host_path)
        self._chown(path, owner)
        os.chmod(path, mode)

    def touch(self, host_path: str) -> None:
        path = self.path(host_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.touch()

    def append_line(self, host_path: str, line: str, owner: Optional[str] = None) -> bool:
        """Append a line to a file unless it is already present.

        Returns:
            True if the file was changed
        """
        existing = self.read_text(host_path)
        if line in existing.splitlines():
            return False
        path = self.path(host_path)
        created = not path.exists()
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "a", encoding="utf-8") as f:
            if existing and not existing.endswith("\n"):
                f.write("\n")
            f.write(line + "\n")
        if created:
            self._chown(path, owner)
        return True

    def backup(self, host_path: str) -> Optional[str]:
        """Copy an existing file to ``<file>.backup.<epoch>`` before it is replaced."""
        path = self.path(host_path)
        if not path.is_file():
            return None
        backup = f"{host_path}.backup.{int(time.time())}"
        shutil.copy2(path, self.path(backup))
        logger.info(f"📦 Backed up {host_path} to {backup}")
        return backup
