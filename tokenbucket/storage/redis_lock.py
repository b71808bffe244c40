"""Redis storage guarded by a distributed lock spanning hosts."""

from __future__ import annotations

from typing import TYPE_CHECKING

from redis.exceptions import RedisError

from tokenbucket.codec import pack_microtime, unpack_microtime
from tokenbucket.errors import StorageError
from tokenbucket.mutex import RedisLockMutex
from tokenbucket.storage.base import Storage, StorageScope
from tokenbucket.storage.redis_cas import KEY_PREFIX, reject_decoded_responses

if TYPE_CHECKING:
    import redis

LOCK_SUFFIX = ":lock"


class RedisLockStorage(Storage):
    """Stores the packed timestamp under ``tokenbucket:<name>``.

    Critical sections hold the lock ``tokenbucket:<name>:lock``. Every Redis
    failure, including a partition while the lock is held, is a StorageError.
    """

    scope = StorageScope.GLOBAL

    def __init__(
        self,
        name: str,
        client: redis.Redis,
        *,
        lock_timeout: float = 10.0,
        blocking_timeout: float | None = 5.0,
    ) -> None:
        reject_decoded_responses(client)
        self._key = KEY_PREFIX + name
        self._client = client
        self._mutex = RedisLockMutex(
            client,
            self._key + LOCK_SUFFIX,
            timeout=lock_timeout,
            blocking_timeout=blocking_timeout,
        )

    @property
    def key(self) -> str:
        return self._key

    @property
    def mutex(self) -> RedisLockMutex:
        return self._mutex

    def is_bootstrapped(self) -> bool:
        try:
            return bool(self._client.exists(self._key))
        except RedisError as exc:
            raise StorageError(f"Failed to check for key '{self._key}'") from exc

    def bootstrap(self, microtime: float) -> None:
        self.set_microtime(microtime)

    def remove(self) -> None:
        try:
            deleted = self._client.delete(self._key)
        except RedisError as exc:
            raise StorageError(f"Failed to delete key '{self._key}'") from exc
        if not deleted:
            raise StorageError(f"Key '{self._key}' did not exist")

    def get_microtime(self) -> float:
        try:
            data = self._client.get(self._key)
        except RedisError as exc:
            raise StorageError(f"Failed to read key '{self._key}'") from exc
        if data is None:
            raise StorageError(f"Key '{self._key}' is not bootstrapped")
        return unpack_microtime(data)

    def set_microtime(self, microtime: float) -> None:
        try:
            stored = self._client.set(self._key, pack_microtime(microtime))
        except RedisError as exc:
            raise StorageError(f"Failed to write key '{self._key}'") from exc
        if not stored:
            raise StorageError(f"Failed to write key '{self._key}'")
