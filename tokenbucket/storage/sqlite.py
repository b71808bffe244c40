"""SQLite-backed storage: one row per bucket in a shared table."""

from __future__ import annotations

import os
import sqlite3
import threading
from pathlib import Path

import structlog

from tokenbucket.errors import AlreadyBootstrappedError, ConfigurationError, StorageError
from tokenbucket.mutex import TransactionMutex
from tokenbucket.storage.base import Storage, StorageScope

logger = structlog.get_logger()

_DB_FILE_PERMISSIONS = 0o600

MAX_NAME_LENGTH = 128

_SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS token_bucket (
    name      VARCHAR(128)     PRIMARY KEY,
    microtime DOUBLE PRECISION NOT NULL
)"""

_MEMORY_PATH = ":memory:"


class SqliteDatabase:
    """SQLite connection wrapper with the pragmas bucket storage relies on.

    The connection is shared by every storage built on this database, and so
    is ``lock``: whoever uses the connection holds it.
    """

    def __init__(self, path: str | Path, busy_timeout_seconds: float = 5.0) -> None:
        self._path = str(path)
        self._busy_timeout_seconds = busy_timeout_seconds
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()

    @property
    def path(self) -> str:
        return self._path

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    @property
    def connection(self) -> sqlite3.Connection:
        """Return the active connection or raise if disconnected."""
        if self._conn is None:
            raise RuntimeError("Database is not connected")
        return self._conn

    def connect(self) -> None:
        """Open the database, apply pragmas, and harden file permissions."""
        if self._path != _MEMORY_PATH:
            Path(self._path).parent.mkdir(parents=True, exist_ok=True)

        self._conn = sqlite3.connect(self._path, timeout=self._busy_timeout_seconds, check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute(f"PRAGMA busy_timeout={int(self._busy_timeout_seconds * 1000)}")

        self._harden_permissions()

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def _harden_permissions(self) -> None:
        """Set restrictive file permissions on POSIX systems (best effort).

        Covers the WAL/SHM sibling files created by WAL mode as well.
        """
        if os.name != "posix" or self._path == _MEMORY_PATH:  # pragma: no cover
            return
        for suffix in ("", "-wal", "-shm"):
            p = Path(self._path + suffix)
            if p.exists():
                try:
                    p.chmod(_DB_FILE_PERMISSIONS)
                except OSError:
                    logger.warning("could not set file permissions", permissions=oct(_DB_FILE_PERMISSIONS), path=str(p))


class SqliteStorage(Storage):
    """Stores the timestamp in row ``name`` of the ``token_bucket`` table.

    The table is created on first bootstrap. Critical sections run in a
    ``BEGIN IMMEDIATE`` transaction, which serializes writers across
    connections the way ``SELECT ... FOR UPDATE`` does on server databases.
    """

    scope = StorageScope.GLOBAL

    def __init__(self, name: str, database: SqliteDatabase) -> None:
        if len(name) > MAX_NAME_LENGTH:
            raise ConfigurationError(f"Bucket name must not be longer than {MAX_NAME_LENGTH} characters")
        self._name = name
        self._db = database
        self._mutex = TransactionMutex(self._connection, database.lock)

    @property
    def mutex(self) -> TransactionMutex:
        return self._mutex

    def is_bootstrapped(self) -> bool:
        try:
            with self._db.lock:
                if not self._table_exists():
                    return False
                row = self._connection().execute("SELECT 1 FROM token_bucket WHERE name = ?", (self._name,)).fetchone()
        except sqlite3.Error as exc:
            raise StorageError(f"Could not check bootstrapped state of '{self._name}'") from exc
        return row is not None

    def bootstrap(self, microtime: float) -> None:
        try:
            with self._db.lock:
                self._write(_SCHEMA_SQL, ())
                self._write("INSERT INTO token_bucket (name, microtime) VALUES (?, ?)", (self._name, microtime))
        except sqlite3.IntegrityError as exc:
            raise AlreadyBootstrappedError(f"Bucket '{self._name}' is already bootstrapped") from exc
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to bootstrap bucket '{self._name}'") from exc

    def remove(self) -> None:
        try:
            with self._db.lock:
                if self._table_exists():
                    self._write("DELETE FROM token_bucket WHERE name = ?", (self._name,))
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to remove bucket '{self._name}'") from exc

    def get_microtime(self) -> float:
        try:
            with self._db.lock:
                row = self._connection().execute(
                    "SELECT microtime FROM token_bucket WHERE name = ?",
                    (self._name,),
                ).fetchone()
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to read bucket '{self._name}'") from exc
        if row is None:
            raise StorageError(f"Bucket '{self._name}' is not bootstrapped")
        return float(row[0])

    def set_microtime(self, microtime: float) -> None:
        try:
            cursor = self._write("UPDATE token_bucket SET microtime = ? WHERE name = ?", (microtime, self._name))
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to write bucket '{self._name}'") from exc
        if cursor.rowcount != 1:
            raise StorageError(f"Bucket '{self._name}' is not bootstrapped")

    def leave_microtime_unchanged(self) -> None:
        self._mutex.mark_unchanged()

    def _connection(self) -> sqlite3.Connection:
        try:
            return self._db.connection
        except RuntimeError as exc:
            raise StorageError(f"Database {self._db.path} is not connected") from exc

    def _table_exists(self) -> bool:
        row = self._connection().execute(
            "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = 'token_bucket'",
        ).fetchone()
        return row is not None

    def _write(self, sql: str, params: tuple[object, ...]) -> sqlite3.Cursor:
        """Execute a write, committing it unless a surrounding transaction owns the commit."""
        with self._db.lock:
            conn = self._connection()
            owned = conn.in_transaction
            try:
                cursor = conn.execute(sql, params)
            except sqlite3.Error:
                if not owned and conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
            if not owned and conn.in_transaction:
                conn.execute("COMMIT")
            return cursor
