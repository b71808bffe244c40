"""SQLite write transaction as a cross-process critical section."""

from __future__ import annotations

import sqlite3
import threading
from typing import TYPE_CHECKING, TypeVar

import structlog

from tokenbucket.errors import StorageError
from tokenbucket.mutex.base import Mutex

if TYPE_CHECKING:
    from collections.abc import Callable
    from contextlib import AbstractContextManager

logger = structlog.get_logger()


T = TypeVar("T")


class TransactionMutex(Mutex):
    """Runs the critical section inside ``BEGIN IMMEDIATE`` ... ``COMMIT``.

    BEGIN IMMEDIATE takes SQLite's reserved lock up front, so concurrent
    writers on other connections (and processes) wait for the busy timeout
    instead of interleaving their read-decide-write sections. Sections that
    declared no change, or raised, end with ROLLBACK.

    Threads sharing one connection must share ``lock`` as well: a connection
    holds at most one transaction, so every mutex on it serializes on the
    connection's lock rather than on a lock of its own.
    """

    def __init__(
        self,
        connection: Callable[[], sqlite3.Connection],
        lock: AbstractContextManager[object] | None = None,
    ) -> None:
        self._connection = connection
        self._thread_lock = lock if lock is not None else threading.RLock()
        self._read_only = False

    def mark_unchanged(self) -> None:
        """Let the current section end with a rollback instead of a commit."""
        self._read_only = True

    def synchronized(self, code: Callable[[], T]) -> T:
        with self._thread_lock:
            conn = self._connection()
            if conn.in_transaction:
                raise StorageError("The connection already has an open transaction")
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as exc:
                raise StorageError("Could not begin a write transaction") from exc

            self._read_only = False
            try:
                result = code()
            except BaseException:
                self._rollback(conn)
                raise

            try:
                conn.execute("ROLLBACK" if self._read_only else "COMMIT")
            except sqlite3.Error as exc:
                self._rollback(conn)
                raise StorageError("Could not finish the write transaction") from exc
            return result

    @staticmethod
    def _rollback(conn: sqlite3.Connection) -> None:
        if not conn.in_transaction:
            return
        try:
            conn.execute("ROLLBACK")
        except sqlite3.Error:
            logger.exception("rollback failed")
