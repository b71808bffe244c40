"""Advisory exclusive file lock spanning every process that opens the same file."""

from __future__ import annotations

import fcntl
import threading
from typing import TYPE_CHECKING, TypeVar

import structlog

from tokenbucket.errors import StorageError
from tokenbucket.mutex.base import Mutex

if TYPE_CHECKING:
    from collections.abc import Callable

logger = structlog.get_logger()


T = TypeVar("T")


class FlockMutex(Mutex):
    """Holds ``flock(LOCK_EX)`` on the storage's file for the whole critical section.

    flock is attached to the open file description, so threads sharing one
    storage instance would not exclude each other through it alone; a thread
    lock is taken first. The descriptor is looked up on every acquire because
    the storage reopens its file after the file was removed.
    """

    def __init__(self, fileno: Callable[[], int]) -> None:
        self._fileno = fileno
        self._thread_lock = threading.Lock()

    def synchronized(self, code: Callable[[], T]) -> T:
        with self._thread_lock:
            fd = self._fileno()
            try:
                fcntl.flock(fd, fcntl.LOCK_EX)
            except OSError as exc:
                raise StorageError("Could not acquire the file lock") from exc
            try:
                result = code()
            except BaseException:
                self._release(fd, suppress=True)
                raise
            self._release(fd, suppress=False)
            return result

    @staticmethod
    def _release(fd: int, *, suppress: bool) -> None:
        try:
            fcntl.flock(fd, fcntl.LOCK_UN)
        except OSError as exc:
            if suppress:
                logger.warning("file lock release failed after an error", fd=fd, error=str(exc))
                return
            raise StorageError("Could not release the file lock") from exc
