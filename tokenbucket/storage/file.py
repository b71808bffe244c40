"""File-backed storage shared by every process that opens the same path.

The file holds exactly one packed timestamp at offset 0. An empty file means
the bucket is not bootstrapped. Files are created with owner-only permissions
(0o600); missing parent directories are created owner-only (0o700).
"""

from __future__ import annotations

import contextlib
import os
from pathlib import Path

import structlog

from tokenbucket.codec import MICROTIME_SIZE, pack_microtime, unpack_microtime
from tokenbucket.errors import StorageError
from tokenbucket.mutex import FlockMutex
from tokenbucket.storage.base import Storage, StorageScope

logger = structlog.get_logger()

_DIR_MODE = 0o700
_FILE_MODE = 0o600


class FileStorage(Storage):
    """Stores the timestamp in a file guarded by ``flock``.

    The file is opened read/write and never truncated on open, so concurrent
    openers share one state. When another actor removes the file (or removes
    and re-bootstraps it) this instance notices on its next lock acquisition
    or bootstrap check and reopens the path.
    """

    scope = StorageScope.GLOBAL

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._fd: int | None = None
        self._open()
        self._mutex = FlockMutex(self._current_fileno)

    @property
    def path(self) -> Path:
        return self._path

    @property
    def mutex(self) -> FlockMutex:
        return self._mutex

    def close(self) -> None:
        """Close the file handle. The persisted state is left in place."""
        if self._fd is not None:
            with contextlib.suppress(OSError):
                os.close(self._fd)
            self._fd = None

    def is_bootstrapped(self) -> bool:
        fd = self._current_fileno()
        try:
            return os.fstat(fd).st_size > 0
        except OSError as exc:
            raise StorageError(f"Could not stat '{self._path}'") from exc

    def bootstrap(self, microtime: float) -> None:
        # remove() may have deleted the file
        self._current_fileno()
        self.set_microtime(microtime)

    def remove(self) -> None:
        fd = self._fileno()
        try:
            # truncate first so actors still holding the old handle see an empty bucket
            os.ftruncate(fd, 0)
        except OSError as exc:
            raise StorageError(f"Could not truncate '{self._path}'") from exc
        try:
            self._path.unlink()
        except FileNotFoundError:
            logger.debug("bucket file already removed", path=str(self._path))
        except OSError as exc:
            raise StorageError(f"Could not delete '{self._path}'") from exc

    def get_microtime(self) -> float:
        try:
            data = os.pread(self._fileno(), MICROTIME_SIZE, 0)
        except OSError as exc:
            raise StorageError(f"Could not read from '{self._path}'") from exc
        if not data:
            raise StorageError(f"Bucket file '{self._path}' is empty")
        return unpack_microtime(data)

    def set_microtime(self, microtime: float) -> None:
        data = pack_microtime(microtime)
        try:
            written = os.pwrite(self._fileno(), data, 0)
        except OSError as exc:
            raise StorageError(f"Could not write to '{self._path}'") from exc
        if written != len(data):
            raise StorageError(f"Short write to '{self._path}': {written} of {len(data)} bytes")

    def _fileno(self) -> int:
        if self._fd is None:
            raise StorageError(f"File storage for '{self._path}' is closed")
        return self._fd

    def _current_fileno(self) -> int:
        """Return a descriptor for the file currently at the path, reopening if it was replaced."""
        fd = self._fileno()
        try:
            on_disk = os.stat(self._path)
            opened = os.fstat(fd)
        except FileNotFoundError:
            self._open()
            return self._fileno()
        except OSError as exc:
            raise StorageError(f"Could not stat '{self._path}'") from exc

        if (on_disk.st_dev, on_disk.st_ino) != (opened.st_dev, opened.st_ino):
            self._open()
        return self._fileno()

    def _open(self) -> None:
        try:
            self._path.parent.mkdir(mode=_DIR_MODE, parents=True, exist_ok=True)
            fd = os.open(self._path, os.O_RDWR | os.O_CREAT, _FILE_MODE)
        except OSError as exc:
            raise StorageError(f"Could not open '{self._path}'") from exc

        previous, self._fd = self._fd, fd
        if previous is not None:
            with contextlib.suppress(OSError):
                os.close(previous)
