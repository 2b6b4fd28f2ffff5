"""Process-wide mutual exclusion for workflow runs."""

from __future__ import annotations

import errno
import fcntl
import logging
import os
from pathlib import Path
from typing import IO, Optional

from .errors import AlreadyRunningError, PersistenceError

logger = logging.getLogger(__name__)


class LockHandle:
    """An acquired workflow lock. Releasing it more than once is harmless."""

    def __init__(self, path: Path, fd: IO[bytes]) -> None:
        self.path = path
        self._fd: Optional[IO[bytes]] = fd

    @property
    def held(self) -> bool:
        return self._fd is not None

    def release(self) -> None:
        fd, self._fd = self._fd, None
        if fd is None:
            return
        try:
            fcntl.flock(fd.fileno(), fcntl.LOCK_UN)
        finally:
            fd.close()
        logger.info(f"Lock released: {self.path}")

    def __enter__(self) -> "LockHandle":
        return self

    def __exit__(self, *exc_info) -> None:
        self.release()


class WorkflowLock:
    """Advisory ``flock`` on a well-known file.

    The kernel drops the lock when the holder exits, so a crashed run
    never leaves a stale lock behind. The file itself is left in place.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def acquire(self) -> LockHandle:
        """Take the lock without blocking.

        Raises:
            AlreadyRunningError: Another process holds the lock.
            PersistenceError: The lock file cannot be opened.
        """
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd = open(self.path, "ab")
        except OSError as exc:
            raise PersistenceError(f"Cannot open lock file {self.path}: {exc}") from exc
        try:
            fcntl.flock(fd.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError as exc:
            fd.close()
            if exc.errno in (errno.EAGAIN, errno.EACCES):
                logger.error(f"Another instance is already running (lock {self.path})")
                raise AlreadyRunningError(
                    f"Another instance is already running (lock {self.path})"
                ) from exc
            raise PersistenceError(f"Cannot lock {self.path}: {exc}") from exc
        try:
            fd.truncate(0)
            fd.write(f"{os.getpid()}\n".encode())
            fd.flush()
        except OSError as exc:
            fd.close()
            raise PersistenceError(f"Cannot write lock file {self.path}: {exc}") from exc
        logger.info(f"Lock acquired: {self.path}")
        return LockHandle(self.path, fd)

    @staticmethod
    def release(handle: LockHandle) -> None:
        handle.release()

    def holder_pid(self) -> Optional[int]:
        """PID written by the last holder, if any."""
        try:
            text = self.path.read_text().strip()
        except OSError:
            return None
        return int(text) if text.isdigit() else None
