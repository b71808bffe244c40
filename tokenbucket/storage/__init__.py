"""Storage backends persisting a bucket's timestamp, one per concurrency primitive."""

from tokenbucket.storage.base import Storage, StorageScope
from tokenbucket.storage.factory import create_storage
from tokenbucket.storage.file import FileStorage
from tokenbucket.storage.memory import InMemoryStorage
from tokenbucket.storage.redis_cas import RedisCasStorage
from tokenbucket.storage.redis_lock import RedisLockStorage
from tokenbucket.storage.session import SessionStorage
from tokenbucket.storage.shared_memory import SharedMemoryStorage
from tokenbucket.storage.sqlite import SqliteDatabase, SqliteStorage

__all__ = [
    "FileStorage",
    "InMemoryStorage",
    "RedisCasStorage",
    "RedisLockStorage",
    "SessionStorage",
    "SharedMemoryStorage",
    "SqliteDatabase",
    "SqliteStorage",
    "Storage",
    "StorageScope",
    "create_storage",
]
