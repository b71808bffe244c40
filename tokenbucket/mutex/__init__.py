"""Mutex implementations, one per storage backend's native exclusion primitive."""

from tokenbucket.mutex.base import Mutex, NoMutex, ThreadMutex
from tokenbucket.mutex.cas import CasMutex, CasRetryPolicy
from tokenbucket.mutex.flock import FlockMutex
from tokenbucket.mutex.redis_lock import RedisLockMutex
from tokenbucket.mutex.semaphore import Semaphore, SemaphoreMutex
from tokenbucket.mutex.transaction import TransactionMutex

__all__ = [
    "CasMutex",
    "CasRetryPolicy",
    "FlockMutex",
    "Mutex",
    "NoMutex",
    "RedisLockMutex",
    "Semaphore",
    "SemaphoreMutex",
    "ThreadMutex",
    "TransactionMutex",
]
