"""Token bucket whose whole state is one persisted timestamp.

The stored value is the moment at which the bucket would have been empty
given continuous refill at the configured rate. Available tokens are the
time elapsed since then, converted at the rate and capped at the capacity,
so nothing has to refill the bucket actively: every read recomputes it.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from tokenbucket.converter import TokenConverter
from tokenbucket.errors import AlreadyBootstrappedError, ConfigurationError

if TYPE_CHECKING:
    from tokenbucket.rate import Rate
    from tokenbucket.storage import Storage

logger = structlog.get_logger()


@dataclass(frozen=True)
class ConsumeResult:
    """Outcome of a consume attempt; truthy when the tokens were taken.

    ``wait_seconds`` estimates how long until the request could succeed. It is
    a lower bound, not a promise: other consumers may take the tokens first.
    """

    consumed: bool
    wait_seconds: float = 0.0

    def __bool__(self) -> bool:
        return self.consumed


def _validate_token_amount(tokens: int, *, minimum: int, capacity: int) -> None:
    if isinstance(tokens, bool) or not isinstance(tokens, int):
        raise ConfigurationError(f"Token amount must be an integer, got {tokens!r}")
    if tokens > capacity:
        raise ConfigurationError(f"Token amount ({tokens}) is larger than the capacity ({capacity})")
    if tokens < minimum:
        raise ConfigurationError(f"Token amount ({tokens}) must be at least {minimum}")


class TokenBucket:
    """Rate limiter sharing its state through ``storage``.

    The bucket must be bootstrapped once before tokens can be consumed.
    Bootstrapping an already bootstrapped storage is a no-op, so every actor
    may call it on startup.
    """

    def __init__(self, capacity: int, rate: Rate, storage: Storage) -> None:
        if isinstance(capacity, bool) or not isinstance(capacity, int):
            raise ConfigurationError(f"Capacity must be an integer, got {capacity!r}")
        if capacity <= 0:
            raise ConfigurationError(f"Capacity must be greater than 0, got {capacity}")
        self._capacity = capacity
        self._rate = rate
        self._storage = storage
        self._converter = TokenConverter(rate)

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def rate(self) -> Rate:
        return self._rate

    @property
    def storage(self) -> Storage:
        return self._storage

    def bootstrap(self, tokens: int = 0) -> None:
        """Initialise the storage with ``tokens`` available, unless already done."""
        _validate_token_amount(tokens, minimum=0, capacity=self._capacity)

        storage = self._storage
        try:
            done = storage.mutex.check_then_act(
                lambda: not storage.is_bootstrapped(),
                lambda: self._bootstrap_storage(tokens),
            )
        except AlreadyBootstrappedError:
            logger.debug("bucket bootstrapped concurrently by another actor")
            return
        if done is None:
            logger.debug("bucket already bootstrapped")

    def consume(self, tokens: int) -> ConsumeResult:
        """Take ``tokens`` if that many are available.

        A denied request leaves the stored state untouched. Storage failures
        raise StorageError; they never read as "no tokens".
        """
        _validate_token_amount(tokens, minimum=1, capacity=self._capacity)
        return self._storage.mutex.synchronized(lambda: self._consume_locked(tokens))

    def get_tokens(self) -> int:
        """Return the currently available tokens.

        This is an unlocked read: the value may be stale by the time it is
        returned and must not drive a later consume decision.
        """
        _, tokens = self._load()
        return tokens

    def _bootstrap_storage(self, tokens: int) -> bool:
        self._storage.bootstrap(self._converter.tokens_to_microtime(tokens))
        logger.info("bootstrapped bucket", tokens=tokens, capacity=self._capacity)
        return True

    def _consume_locked(self, tokens: int) -> ConsumeResult:
        microtime, available = self._load()

        if available < tokens:
            self._storage.leave_microtime_unchanged()
            passed = time.time() - microtime
            wait_seconds = max(0.0, self._converter.tokens_to_seconds(tokens) - passed)
            logger.debug("consume denied", requested=tokens, available=available, wait_seconds=wait_seconds)
            return ConsumeResult(consumed=False, wait_seconds=wait_seconds)

        self._storage.set_microtime(microtime + self._converter.tokens_to_seconds(tokens))
        return ConsumeResult(consumed=True)

    def _load(self) -> tuple[float, int]:
        """Read the stored timestamp, dropping tokens that overflow the capacity."""
        microtime = self._storage.get_microtime()

        full_microtime = self._converter.tokens_to_microtime(self._capacity)
        if microtime <= full_microtime:
            return full_microtime, self._capacity

        tokens = self._converter.microtime_to_tokens(microtime)
        return microtime, min(max(tokens, 0), self._capacity)
