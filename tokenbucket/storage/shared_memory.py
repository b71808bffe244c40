"""Storage in a named shared-memory segment guarded by a semaphore."""

from __future__ import annotations

import contextlib
from multiprocessing import shared_memory
from typing import TYPE_CHECKING

import structlog

from tokenbucket.codec import MICROTIME_SIZE, pack_microtime, unpack_microtime
from tokenbucket.errors import ConfigurationError, StorageError
from tokenbucket.mutex import SemaphoreMutex
from tokenbucket.storage.base import Storage, StorageScope

if TYPE_CHECKING:
    from tokenbucket.mutex import Semaphore

logger = structlog.get_logger()

SEGMENT_PREFIX = "tokenbucket_"

# Segment layout: one presence flag byte, padding, then the packed timestamp.
_FLAG_OFFSET = 0
_VALUE_OFFSET = 8
_SEGMENT_SIZE = _VALUE_OFFSET + MICROTIME_SIZE

_PRESENT = 1
_ABSENT = 0

# POSIX shared memory names are limited to 31 characters on some platforms.
_MAX_SEGMENT_NAME_LENGTH = 31


class SharedMemoryStorage(Storage):
    """Keeps the timestamp in the segment ``tokenbucket_<name>``.

    Any process on the host that attaches the same name and is handed the same
    semaphore (e.g. a ``multiprocessing.Semaphore(1)`` passed to worker
    processes) shares the bucket. Segments are not registered with the
    multiprocessing resource tracker; they persist until ``remove()``.
    """

    scope = StorageScope.GLOBAL

    def __init__(self, name: str, semaphore: Semaphore, *, timeout: float | None = None) -> None:
        segment_name = SEGMENT_PREFIX + name
        if len(segment_name) > _MAX_SEGMENT_NAME_LENGTH:
            raise ConfigurationError(f"Shared memory name '{segment_name}' exceeds {_MAX_SEGMENT_NAME_LENGTH} characters")
        self._segment_name = segment_name
        self._mutex = SemaphoreMutex(semaphore, timeout=timeout)
        self._memory: shared_memory.SharedMemory | None = None
        self._attach()

    @property
    def segment_name(self) -> str:
        return self._segment_name

    @property
    def mutex(self) -> SemaphoreMutex:
        return self._mutex

    def close(self) -> None:
        """Detach from the segment without destroying it."""
        if self._memory is not None:
            self._memory.close()
            self._memory = None

    def is_bootstrapped(self) -> bool:
        if self._memory is not None and self._memory.buf[_FLAG_OFFSET] == _PRESENT:
            return True
        # an absent flag may come from a segment another actor unlinked and recreated
        self.close()
        self._attach()
        return self._segment().buf[_FLAG_OFFSET] == _PRESENT

    def bootstrap(self, microtime: float) -> None:
        # re-attach: another actor may have unlinked the segment this handle points to
        self.close()
        self._attach()
        self._write_value(microtime)
        self._segment().buf[_FLAG_OFFSET] = _PRESENT

    def remove(self) -> None:
        if self._memory is None:
            return
        self._memory.buf[_FLAG_OFFSET] = _ABSENT
        try:
            self._memory.unlink()
        except FileNotFoundError:
            logger.debug("shared memory segment already removed", segment=self._segment_name)
        except OSError as exc:
            raise StorageError(f"Could not remove shared memory segment '{self._segment_name}'") from exc
        finally:
            self.close()

    def get_microtime(self) -> float:
        if self._memory is None or self._memory.buf[_FLAG_OFFSET] != _PRESENT:
            self.close()
            self._attach()
        memory = self._segment()
        if memory.buf[_FLAG_OFFSET] != _PRESENT:
            raise StorageError(f"Shared memory segment '{self._segment_name}' holds no bucket")
        return unpack_microtime(bytes(memory.buf[_VALUE_OFFSET:_SEGMENT_SIZE]))

    def set_microtime(self, microtime: float) -> None:
        self._write_value(microtime)

    def _write_value(self, microtime: float) -> None:
        self._segment().buf[_VALUE_OFFSET:_SEGMENT_SIZE] = pack_microtime(microtime)

    def _segment(self) -> shared_memory.SharedMemory:
        if self._memory is None:
            raise StorageError(f"Not attached to shared memory segment '{self._segment_name}'")
        return self._memory

    def _attach(self) -> None:
        try:
            try:
                memory = shared_memory.SharedMemory(self._segment_name, create=True, size=_SEGMENT_SIZE, track=False)
            except FileExistsError:
                memory = shared_memory.SharedMemory(self._segment_name, track=False)
        except OSError as exc:
            raise StorageError(f"Could not attach shared memory segment '{self._segment_name}'") from exc

        if memory.size < _SEGMENT_SIZE:
            with contextlib.suppress(OSError):
                memory.close()
            raise StorageError(f"Shared memory segment '{self._segment_name}' is smaller than {_SEGMENT_SIZE} bytes")
        self._memory = memory
