"""Blocking consumption: wait for tokens instead of being told to come back later."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

import structlog

from tokenbucket.errors import ConfigurationError, ConsumeTimeoutError

if TYPE_CHECKING:
    from tokenbucket.bucket import TokenBucket

logger = structlog.get_logger()

# Floor for every final sleep.
MIN_SLEEP_SECONDS = 0.001


class BlockingConsumer:
    """Consumes from a bucket, sleeping until the tokens are granted.

    With a ``timeout`` (seconds, measured from the start of each consume call)
    the consumer raises ConsumeTimeoutError once the deadline has passed.
    Without one it waits as long as it takes. Errors raised by the bucket
    propagate immediately.
    """

    def __init__(self, bucket: TokenBucket, timeout: float | None = None) -> None:
        if timeout is not None and timeout < 0:
            raise ConfigurationError(f"Timeout must be None or non-negative, got {timeout}")
        self._bucket = bucket
        self._timeout = timeout

    @property
    def bucket(self) -> TokenBucket:
        return self._bucket

    @property
    def timeout(self) -> float | None:
        return self._timeout

    def consume(self, tokens: int) -> None:
        deadline = None if self._timeout is None else time.monotonic() + self._timeout

        while not (result := self._bucket.consume(tokens)):
            seconds = result.wait_seconds
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise ConsumeTimeoutError(f"Timed out after {self._timeout} seconds waiting for {tokens} tokens")
                seconds = min(seconds, remaining)

            logger.debug("waiting for tokens", tokens=tokens, seconds=seconds)
            self._sleep(seconds)

    @staticmethod
    def _sleep(seconds: float) -> None:
        # coarse sleep first, leaving at least a second for the fine-grained one
        if seconds > 1:
            coarse = int(seconds) - 1
            time.sleep(coarse)
            seconds -= coarse
        time.sleep(max(MIN_SLEEP_SECONDS, seconds))
