"""Semaphore-bracketed critical sections for shared-memory storage."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, TypeVar

from tokenbucket.errors import StorageError
from tokenbucket.mutex.base import Mutex

if TYPE_CHECKING:
    from collections.abc import Callable


T = TypeVar("T")


class Semaphore(Protocol):
    """Acquire/release handle, e.g. ``multiprocessing.Semaphore(1)`` or ``threading.Semaphore(1)``."""

    def acquire(self, *, timeout: float | None = None) -> bool: ...

    def release(self) -> None: ...


class SemaphoreMutex(Mutex):
    """Acquires an injected semaphore around the whole critical section.

    The semaphore must be initialised with a value of 1 and shared with every
    actor that attaches to the same segment.
    """

    def __init__(self, semaphore: Semaphore, timeout: float | None = None) -> None:
        self._semaphore = semaphore
        self._timeout = timeout

    def synchronized(self, code: Callable[[], T]) -> T:
        if not self._semaphore.acquire(timeout=self._timeout):
            raise StorageError(f"Could not acquire the semaphore within {self._timeout} seconds")
        try:
            return code()
        finally:
            self._semaphore.release()
