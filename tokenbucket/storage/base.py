"""Abstract interface for persisting a bucket's timestamp."""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import StrEnum
from typing import TYPE_CHECKING, ClassVar

if TYPE_CHECKING:
    from tokenbucket.mutex import Mutex


class StorageScope(StrEnum):
    """Which actors observe the same bucket state. Metadata only."""

    PROCESS = "process"
    SESSION = "session"
    GLOBAL = "global"


class Storage(ABC):
    """Persistence of a single timestamp plus the mutex guarding it.

    Implementations can use process memory, a session mapping, files, shared
    memory, SQLite, Redis, etc. Driver failures surface as StorageError.
    """

    scope: ClassVar[StorageScope]

    @property
    @abstractmethod
    def mutex(self) -> Mutex: ...

    @abstractmethod
    def is_bootstrapped(self) -> bool: ...

    @abstractmethod
    def bootstrap(self, microtime: float) -> None: ...

    @abstractmethod
    def remove(self) -> None: ...

    @abstractmethod
    def get_microtime(self) -> float: ...

    @abstractmethod
    def set_microtime(self, microtime: float) -> None: ...

    def leave_microtime_unchanged(self) -> None:  # noqa: B027
        """Declare that the running critical section will not write.

        Backends holding a transaction or watch release it here instead of
        paying for a commit.
        """
