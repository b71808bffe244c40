"""Storage fixtures: one factory per backend, each call building a fresh actor's handle."""

from __future__ import annotations

import threading
import uuid
from typing import TYPE_CHECKING

import fakeredis
import pytest

from tokenbucket.storage import (
    FileStorage,
    InMemoryStorage,
    RedisCasStorage,
    RedisLockStorage,
    SessionStorage,
    SharedMemoryStorage,
    SqliteDatabase,
    SqliteStorage,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from tokenbucket.storage import Storage

BACKENDS = ["memory", "session", "file", "shared_memory", "sqlite", "redis_cas", "redis_lock"]

# Backends whose actors each get their own handle on the shared state.
CROSS_ACTOR_BACKENDS = ["file", "shared_memory", "sqlite", "redis_cas", "redis_lock"]


def unique_segment_name() -> str:
    return uuid.uuid4().hex[:12]


@pytest.fixture
def redis_server():
    return fakeredis.FakeServer()


@pytest.fixture
def redis_client(redis_server):
    return fakeredis.FakeRedis(server=redis_server)


@pytest.fixture
def shared_segment():
    """Unique segment name, removed after the test."""
    name = unique_segment_name()
    yield name
    SharedMemoryStorage(name, threading.Semaphore(1)).remove()


def _storage_factory(backend: str, tmp_path, redis_server) -> tuple[Callable[..., Storage], Callable[[], None]]:
    instances: dict[str, InMemoryStorage] = {}
    session: dict[str, object] = {}
    segments: dict[str, str] = {}
    semaphore = threading.Semaphore(1)
    cleanups: list[Callable[[], None]] = []

    def make(name: str = "bucket") -> Storage:
        if backend == "memory":
            return instances.setdefault(name, InMemoryStorage())
        if backend == "session":
            return SessionStorage(name, session)
        if backend == "file":
            file_storage = FileStorage(tmp_path / f"{name}.bucket")
            cleanups.append(file_storage.close)
            return file_storage
        if backend == "shared_memory":
            segment = segments.setdefault(name, unique_segment_name())
            shm_storage = SharedMemoryStorage(segment, semaphore)
            cleanups.append(shm_storage.close)
            return shm_storage
        if backend == "sqlite":
            db = SqliteDatabase(tmp_path / "buckets.db")
            db.connect()
            cleanups.append(db.close)
            return SqliteStorage(name, db)
        client = fakeredis.FakeRedis(server=redis_server)
        if backend == "redis_cas":
            return RedisCasStorage(name, client)
        return RedisLockStorage(name, client, blocking_timeout=None)

    def cleanup() -> None:
        for close in cleanups:
            close()
        for segment in segments.values():
            SharedMemoryStorage(segment, semaphore).remove()

    return make, cleanup


@pytest.fixture(params=BACKENDS)
def make_storage(request, tmp_path, redis_server):
    make, cleanup = _storage_factory(request.param, tmp_path, redis_server)
    yield make
    cleanup()


@pytest.fixture(params=CROSS_ACTOR_BACKENDS)
def make_shared_storage(request, tmp_path, redis_server):
    make, cleanup = _storage_factory(request.param, tmp_path, redis_server)
    yield make
    cleanup()


@pytest.fixture(params=["memory", *CROSS_ACTOR_BACKENDS])
def make_concurrent_storage(request, tmp_path, redis_server):
    """Backends safe for actors on different threads (session state has a single owner)."""
    make, cleanup = _storage_factory(request.param, tmp_path, redis_server)
    yield make
    cleanup()
