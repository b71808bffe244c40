"""Mutual exclusion contract used by storages to guard read-decide-write sections."""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import Callable


T = TypeVar("T")


class Mutex(ABC):
    """Runs critical sections with the exclusion a storage backend needs.

    Each storage owns exactly one mutex matched to its native primitive
    (file lock, semaphore, transaction, compare-and-swap, distributed lock).
    """

    @abstractmethod
    def synchronized(self, code: Callable[[], T]) -> T:
        """Run ``code`` with full mutual exclusion and return its result."""

    def check_then_act(self, check: Callable[[], bool], act: Callable[[], T]) -> T | None:
        """Run ``act`` under the mutex only while ``check`` holds.

        The check runs once without the lock so the common "already done"
        case stays cheap, then again inside the critical section before
        acting. Returns None when the action was skipped.
        """
        if not check():
            return None
        return self.synchronized(lambda: act() if check() else None)


class NoMutex(Mutex):
    """No exclusion; for storages whose single owner already serializes access."""

    def synchronized(self, code: Callable[[], T]) -> T:
        return code()


class ThreadMutex(Mutex):
    """Excludes threads of the current process with a reentrant lock."""

    def __init__(self) -> None:
        self._lock = threading.RLock()

    def synchronized(self, code: Callable[[], T]) -> T:
        with self._lock:
            return code()
