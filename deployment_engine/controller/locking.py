# deployment_engine/controller/locking.py
"""Host-wide lock serializing every operation against the hosting backend."""

import fcntl
import logging
import os
import threading
from pathlib import Path
from typing import Optional, Union

logger = logging.getLogger(__name__)


class HostLock:
    """
    Named cross-process lock.

    Combines a thread lock (callers inside this process) with an exclusive
    ``fcntl`` lock on ``lock_path`` (other processes on the host). Every
    controller built with the same path is serialized.
    """

    def __init__(self, lock_path: Union[str, Path]):
        self.lock_path = Path(lock_path)
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)

        self._thread_lock = threading.Lock()
        self._fd: Optional[int] = None

    def acquire(self) -> None:
        self._thread_lock.acquire()
        try:
            self._fd = os.open(str(self.lock_path), os.O_RDWR | os.O_CREAT, 0o644)
            fcntl.flock(self._fd, fcntl.LOCK_EX)
        except OSError:
            if self._fd is not None:
                os.close(self._fd)
                self._fd = None
            self._thread_lock.release()
            raise
        logger.debug(f"Acquired host lock {self.lock_path}")

    def release(self) -> None:
        try:
            if self._fd is not None:
                fcntl.flock(self._fd, fcntl.LOCK_UN)
                os.close(self._fd)
                self._fd = None
        finally:
            self._thread_lock.release()
        logger.debug(f"Released host lock {self.lock_path}")

    def __enter__(self) -> "HostLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    def __repr__(self) -> str:
        return f"<HostLock(path={str(self.lock_path)!r})>"
