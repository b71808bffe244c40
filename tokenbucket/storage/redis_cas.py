"""Lock-free Redis storage using optimistic WATCH/MULTI/EXEC transactions."""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING

from redis.exceptions import RedisError, WatchError

from tokenbucket.codec import pack_microtime, unpack_microtime
from tokenbucket.errors import CasConflictError, ConfigurationError, StorageError
from tokenbucket.mutex import CasMutex
from tokenbucket.storage.base import Storage, StorageScope

if TYPE_CHECKING:
    import redis
    from redis.client import Pipeline

    from tokenbucket.mutex import CasRetryPolicy

KEY_PREFIX = "tokenbucket:"


def reject_decoded_responses(client: redis.Redis) -> None:
    """Packed timestamps are raw bytes; a client decoding replies to str would corrupt them."""
    if client.get_connection_kwargs().get("decode_responses"):
        raise ConfigurationError("The Redis client must be created with decode_responses=False")


class RedisCasStorage(Storage):
    """Stores the packed timestamp under ``tokenbucket:<name>`` without any lock.

    Inside a critical section the read WATCHes the key and the write is a
    MULTI/EXEC transaction; if another actor touched the key in between, EXEC
    fails and the CasMutex re-runs the whole section. Bootstrap is ``SET NX``,
    and losing that race is also a conflict: the re-run then finds the bucket
    bootstrapped and skips.
    """

    scope = StorageScope.GLOBAL

    def __init__(self, name: str, client: redis.Redis, retry_policy: CasRetryPolicy | None = None) -> None:
        reject_decoded_responses(client)
        self._key = KEY_PREFIX + name
        self._client = client
        self._local = threading.local()
        self._mutex = CasMutex(retry_policy, reset=self._unwatch)

    @property
    def key(self) -> str:
        return self._key

    @property
    def mutex(self) -> CasMutex:
        return self._mutex

    def is_bootstrapped(self) -> bool:
        try:
            return bool(self._client.exists(self._key))
        except RedisError as exc:
            raise StorageError(f"Failed to check for key '{self._key}'") from exc

    def bootstrap(self, microtime: float) -> None:
        try:
            stored = self._client.set(self._key, pack_microtime(microtime), nx=True)
        except RedisError as exc:
            raise StorageError(f"Failed to bootstrap key '{self._key}'") from exc
        if not stored:
            raise CasConflictError(f"Key '{self._key}' was bootstrapped concurrently")

    def remove(self) -> None:
        try:
            deleted = self._client.delete(self._key)
        except RedisError as exc:
            raise StorageError(f"Failed to delete key '{self._key}'") from exc
        if not deleted:
            raise StorageError(f"Key '{self._key}' did not exist")

    def get_microtime(self) -> float:
        try:
            if self._mutex.in_critical_section:
                data = self._watch().get(self._key)
            else:
                data = self._client.get(self._key)
        except RedisError as exc:
            raise StorageError(f"Failed to read key '{self._key}'") from exc
        if data is None:
            raise StorageError(f"Key '{self._key}' is not bootstrapped")
        return unpack_microtime(data)

    def set_microtime(self, microtime: float) -> None:
        data = pack_microtime(microtime)
        pipe: Pipeline | None = getattr(self._local, "pipeline", None)
        if pipe is None:
            if self._mutex.in_critical_section:
                raise StorageError(f"Key '{self._key}' must be read before it is written")
            self._set_unconditionally(data)
            return

        try:
            pipe.multi()
            pipe.set(self._key, data)
            pipe.execute()
        except WatchError as exc:
            raise CasConflictError(f"Key '{self._key}' changed since it was read") from exc
        except RedisError as exc:
            raise StorageError(f"Failed to write key '{self._key}'") from exc
        finally:
            self._unwatch()

    def leave_microtime_unchanged(self) -> None:
        self._unwatch()

    def _set_unconditionally(self, data: bytes) -> None:
        try:
            stored = self._client.set(self._key, data, xx=True)
        except RedisError as exc:
            raise StorageError(f"Failed to write key '{self._key}'") from exc
        if not stored:
            raise StorageError(f"Key '{self._key}' is not bootstrapped")

    def _watch(self) -> Pipeline:
        pipe: Pipeline | None = getattr(self._local, "pipeline", None)
        if pipe is None:
            pipe = self._client.pipeline()
            self._local.pipeline = pipe
        pipe.watch(self._key)
        return pipe

    def _unwatch(self) -> None:
        pipe: Pipeline | None = getattr(self._local, "pipeline", None)
        if pipe is None:
            return
        self._local.pipeline = None
        try:
            pipe.reset()
        except RedisError as exc:
            raise StorageError(f"Failed to release the watch on '{self._key}'") from exc
