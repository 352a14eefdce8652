"""Advisory process lock serialising mutating janus invocations."""

from __future__ import annotations

import fcntl
import os
import time
from pathlib import Path
from types import TracebackType
from typing import Callable, Optional, Type

from .errors import LockError
from .logging import get_logger

RETRY_INTERVAL = 0.2


class ProcessLock:
    """``flock``-based exclusive lock on ``<dotfiles>/.janus.lock``.

    Acquisition retries until ``timeout`` seconds have passed. The owning PID
    is written into the lock file so a blocked invocation can name it.
    """

    def __init__(
        self,
        path: Path,
        *,
        timeout: float = 5.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.path = path
        self.timeout = timeout
        self._sleep = sleep
        self._clock = clock
        self._fd: Optional[int] = None
        self.logger = get_logger("lock")

    @property
    def held(self) -> bool:
        return self._fd is not None

    def acquire(self) -> None:
        if self._fd is not None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o644)
        deadline = self._clock() + self.timeout
        while True:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except BlockingIOError:
                if self._clock() >= deadline:
                    owner = _read_owner(self.path)
                    os.close(fd)
                    held_by = f" (held by PID {owner})" if owner else ""
                    raise LockError(
                        f"Another janus process holds {self.path}{held_by}; "
                        f"gave up after {self.timeout:g}s"
                    )
                self._sleep(RETRY_INTERVAL)
        os.ftruncate(fd, 0)
        os.write(fd, f"{os.getpid()}\n".encode("ascii"))
        self._fd = fd
        self.logger.debug("Acquired lock %s", self.path)

    def release(self) -> None:
        if self._fd is None:
            return
        try:
            os.ftruncate(self._fd, 0)
            fcntl.flock(self._fd, fcntl.LOCK_UN)
        finally:
            os.close(self._fd)
            self._fd = None
        self.logger.debug("Released lock %s", self.path)

    def __enter__(self) -> "ProcessLock":
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        self.release()


def _read_owner(path: Path) -> Optional[str]:
    try:
        text = path.read_text(encoding="ascii").strip()
    except (OSError, UnicodeDecodeError):
        return None
    return text if text.isdigit() else None


__all__ = ["ProcessLock", "RETRY_INTERVAL"]
