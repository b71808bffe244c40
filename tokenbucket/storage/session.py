"""Storage inside a caller-owned session mapping."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from tokenbucket.errors import StorageError
from tokenbucket.mutex import NoMutex
from tokenbucket.storage.base import Storage, StorageScope

if TYPE_CHECKING:
    from collections.abc import MutableMapping

SESSION_KEY_PREFIX = "token_bucket."


class SessionStorage(Storage):
    """Keeps the timestamp under ``token_bucket.<name>`` in a session mapping.

    The session handle (e.g. a web framework's per-user session dict) is
    injected; the process that owns the session serializes access to it, so
    no mutex is needed.
    """

    scope = StorageScope.SESSION

    def __init__(self, name: str, session: MutableMapping[str, Any]) -> None:
        self._key = SESSION_KEY_PREFIX + name
        self._session = session
        self._mutex = NoMutex()

    @property
    def mutex(self) -> NoMutex:
        return self._mutex

    def is_bootstrapped(self) -> bool:
        return self._key in self._session

    def bootstrap(self, microtime: float) -> None:
        self.set_microtime(microtime)

    def remove(self) -> None:
        self._session.pop(self._key, None)

    def get_microtime(self) -> float:
        try:
            value = self._session[self._key]
        except KeyError:
            raise StorageError(f"Session has no bucket under '{self._key}'") from None
        if isinstance(value, bool) or not isinstance(value, int | float):
            raise StorageError(f"Session value under '{self._key}' is not a timestamp: {value!r}")
        return float(value)

    def set_microtime(self, microtime: float) -> None:
        self._session[self._key] = microtime
