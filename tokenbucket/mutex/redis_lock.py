"""Distributed mutual exclusion through a Redis lock."""

from __future__ import annotations

from typing import TYPE_CHECKING, TypeVar

import structlog
from redis.exceptions import LockError, RedisError

from tokenbucket.errors import StorageError
from tokenbucket.mutex.base import Mutex

if TYPE_CHECKING:
    from collections.abc import Callable

    import redis

logger = structlog.get_logger()


T = TypeVar("T")


class RedisLockMutex(Mutex):
    """Holds a redis-py ``Lock`` on ``lock_name`` for the critical section.

    The lock expires after ``timeout`` seconds so a crashed holder cannot block
    the bucket forever. A release that finds the lock expired or taken over
    raises StorageError: the section may have overlapped with another holder
    and must not be reported as a clean success.
    """

    def __init__(
        self,
        client: redis.Redis,
        lock_name: str,
        *,
        timeout: float = 10.0,
        blocking_timeout: float | None = 5.0,
    ) -> None:
        self._client = client
        self._lock_name = lock_name
        self._timeout = timeout
        self._blocking_timeout = blocking_timeout

    def synchronized(self, code: Callable[[], T]) -> T:
        lock = self._client.lock(self._lock_name, timeout=self._timeout, blocking_timeout=self._blocking_timeout)
        try:
            acquired = lock.acquire()
        except (LockError, RedisError) as exc:
            raise StorageError(f"Could not acquire lock '{self._lock_name}'") from exc
        if not acquired:
            raise StorageError(f"Timed out acquiring lock '{self._lock_name}' after {self._blocking_timeout} seconds")

        try:
            result = code()
        except BaseException:
            self._release(lock, suppress=True)
            raise
        self._release(lock, suppress=False)
        return result

    def _release(self, lock: redis.lock.Lock, *, suppress: bool) -> None:
        try:
            lock.release()
        except (LockError, RedisError) as exc:
            if suppress:
                # the section's exception propagates
                logger.warning("lock release failed after an error", lock=self._lock_name, error=str(exc))
                return
            raise StorageError(f"Lost lock '{self._lock_name}' before the critical section finished") from exc
