"""
Exclusive run lock.

Cron triggers can overlap under load; a run must hold this lock before it
touches alert state or writes backups.
"""

import fcntl
import logging
import os
from pathlib import Path
from typing import Optional

from .errors import ConfigurationError, LockHeldError

logger = logging.getLogger(__name__)


class RunLock:
    """Non-blocking ``flock`` on a lock file, usable as a context manager."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._fd: Optional[int] = None

    @property
    def held(self) -> bool:
        return self._fd is not None

    def acquire(self) -> None:
        """
        Take the lock or fail immediately.

        Raises:
            LockHeldError: another process (or open file) holds the lock
        """
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(str(self.path), os.O_RDWR | os.O_CREAT, 0o644)
        except OSError as e:
            raise ConfigurationError(f"Cannot open lock file {self.path}: {e}")

        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            holder = _read_pid(fd)
            os.close(fd)
            raise LockHeldError(self.path, holder)

        os.ftruncate(fd, 0)
        os.write(fd, f"{os.getpid()}\n".encode())
        self._fd = fd
        logger.debug(f"Acquired run lock {self.path}")

    def release(self) -> None:
        if self._fd is None:
            return
        try:
            fcntl.flock(self._fd, fcntl.LOCK_UN)
        finally:
            os.close(self._fd)
            self._fd = None
        logger.debug(f"Released run lock {self.path}")

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
        return False


def _read_pid(fd: int) -> Optional[int]:
    try:
        os.lseek(fd, 0, os.SEEK_SET)
        content = os.read(fd, 32).decode().strip()
        return int(content) if content else None
    except (OSError, ValueError):
        return None
