"""Optimistic compare-and-swap retry loop."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, TypeVar

import structlog

from tokenbucket.errors import CasConflictError, ConfigurationError, StorageError
from tokenbucket.mutex.base import Mutex

if TYPE_CHECKING:
    from collections.abc import Callable

logger = structlog.get_logger()


T = TypeVar("T")


@dataclass(frozen=True)
class CasRetryPolicy:
    """How often a conflicting critical section is re-run.

    ``max_attempts=None`` retries until the write goes through; contention
    always converges because every conflict means another actor succeeded.
    """

    max_attempts: int | None = None
    backoff_seconds: float = 0.0

    def __post_init__(self) -> None:
        if self.max_attempts is not None and self.max_attempts < 1:
            raise ConfigurationError(f"max_attempts must be at least 1, got {self.max_attempts}")
        if self.backoff_seconds < 0:
            raise ConfigurationError(f"backoff_seconds must not be negative, got {self.backoff_seconds}")


class CasMutex(Mutex):
    """Re-runs the whole read-decide-write section until its write is not stale.

    There is no lock. The storage reads with a CAS token (or watch) and raises
    CasConflictError when its conditional write is rejected; the section is then
    started over from a fresh read. ``reset`` is called after every attempt so
    the storage can drop its watch/CAS state.
    """

    def __init__(self, policy: CasRetryPolicy | None = None, reset: Callable[[], None] | None = None) -> None:
        self._policy = policy or CasRetryPolicy()
        self._reset = reset
        self._local = threading.local()

    @property
    def policy(self) -> CasRetryPolicy:
        return self._policy

    @property
    def in_critical_section(self) -> bool:
        """True while the calling thread runs a section of this mutex."""
        return getattr(self._local, "active", False)

    def synchronized(self, code: Callable[[], T]) -> T:
        attempt = 0
        while True:
            attempt += 1
            self._local.active = True
            try:
                return code()
            except CasConflictError as exc:
                if self._policy.max_attempts is not None and attempt >= self._policy.max_attempts:
                    raise StorageError(f"Gave up after {attempt} conflicting CAS attempts") from exc
                logger.debug("cas conflict, retrying", attempt=attempt)
            finally:
                self._local.active = False
                if self._reset is not None:
                    self._reset()

            if self._policy.backoff_seconds:
                time.sleep(self._policy.backoff_seconds)
