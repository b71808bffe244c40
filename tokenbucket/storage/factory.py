"""Build the storage backend selected by TokenBucketSettings."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any

import redis
import structlog

from tokenbucket.errors import ConfigurationError
from tokenbucket.settings import StorageBackend
from tokenbucket.storage.file import FileStorage
from tokenbucket.storage.memory import InMemoryStorage
from tokenbucket.storage.redis_cas import RedisCasStorage
from tokenbucket.storage.redis_lock import RedisLockStorage
from tokenbucket.storage.session import SessionStorage
from tokenbucket.storage.shared_memory import SharedMemoryStorage
from tokenbucket.storage.sqlite import SqliteDatabase, SqliteStorage

if TYPE_CHECKING:
    from collections.abc import MutableMapping

    from tokenbucket.mutex import Semaphore
    from tokenbucket.settings import TokenBucketSettings
    from tokenbucket.storage.base import Storage

logger = structlog.get_logger()

BUCKET_FILE_SUFFIX = ".bucket"


def bucket_file_path(file_dir: str | Path, name: str) -> Path:
    """Resolve ``<file_dir>/<name>.bucket``, rejecting names that escape the directory."""
    root = Path(file_dir).resolve()
    target = (root / f"{name}{BUCKET_FILE_SUFFIX}").resolve()
    if not target.is_relative_to(root):
        raise ConfigurationError(f"Path traversal rejected: '{name}' resolves outside {root}")
    return target


def create_storage(
    settings: TokenBucketSettings,
    name: str,
    *,
    session: MutableMapping[str, Any] | None = None,
    semaphore: Semaphore | None = None,
    redis_client: redis.Redis | None = None,
) -> Storage:
    """Create the configured backend for the bucket ``name``.

    ``session`` selects SessionStorage regardless of the configured backend,
    since a session can only be handed over by the caller. The shared memory
    backend needs the caller's ``semaphore``; Redis backends connect to
    ``settings.redis_url`` unless a client is given.
    """
    if session is not None:
        return SessionStorage(name, session)

    backend = settings.backend
    logger.debug("creating bucket storage", backend=backend, name=name)

    if backend is StorageBackend.MEMORY:
        return InMemoryStorage()
    if backend is StorageBackend.FILE:
        return FileStorage(bucket_file_path(settings.file_dir, name))
    if backend is StorageBackend.SHARED_MEMORY:
        if semaphore is None:
            raise ConfigurationError("The shared_memory backend needs a semaphore shared by all actors")
        return SharedMemoryStorage(name, semaphore, timeout=settings.semaphore_timeout_seconds)
    if backend is StorageBackend.SQLITE:
        db = SqliteDatabase(settings.sqlite_path, busy_timeout_seconds=settings.sqlite_busy_timeout_seconds)
        db.connect()
        return SqliteStorage(name, db)

    client = redis_client if redis_client is not None else redis.Redis.from_url(settings.redis_url)
    if backend is StorageBackend.REDIS_CAS:
        return RedisCasStorage(name, client, settings.cas_retry_policy())
    return RedisLockStorage(
        name,
        client,
        lock_timeout=settings.lock_timeout_seconds,
        blocking_timeout=settings.lock_blocking_timeout_seconds,
    )
