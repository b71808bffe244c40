"""Process-local storage kept in a plain attribute."""

from tokenbucket.errors import StorageError
from tokenbucket.mutex import ThreadMutex
from tokenbucket.storage.base import Storage, StorageScope


class InMemoryStorage(Storage):
    """Bucket state that lives and dies with this object.

    Threads sharing the instance are serialized by a process-local lock.
    """

    scope = StorageScope.PROCESS

    def __init__(self) -> None:
        self._mutex = ThreadMutex()
        self._microtime: float | None = None

    @property
    def mutex(self) -> ThreadMutex:
        return self._mutex

    def is_bootstrapped(self) -> bool:
        return self._microtime is not None

    def bootstrap(self, microtime: float) -> None:
        self._microtime = microtime

    def remove(self) -> None:
        self._microtime = None

    def get_microtime(self) -> float:
        if self._microtime is None:
            raise StorageError("Bucket is not bootstrapped")
        return self._microtime

    def set_microtime(self, microtime: float) -> None:
        self._microtime = microtime
