"""Conversions between tokens, elapsed seconds and absolute timestamps."""

from __future__ import annotations

import time
from decimal import Decimal
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from tokenbucket.rate import Rate


class TokenConverter:
    """Stateless arithmetic bridging tokens and wall-clock time for a fixed rate.

    A bucket's state is a single timestamp ("microtime"): the moment at which
    the bucket would have been empty under continuous refill. The amount of
    available tokens is the time elapsed since then, converted at the rate.
    """

    def __init__(self, rate: Rate) -> None:
        self._rate = rate

    def seconds_to_tokens(self, seconds: float | Decimal) -> int:
        """Convert a duration to whole tokens, truncating any fractional token."""
        return int(float(seconds) * self._rate.tokens_per_second)

    def tokens_to_seconds(self, tokens: float) -> float:
        return tokens / self._rate.tokens_per_second

    def tokens_to_microtime(self, tokens: float) -> float:
        """Return the timestamp that represents holding exactly ``tokens`` right now."""
        return time.time() - self.tokens_to_seconds(tokens)

    def microtime_to_tokens(self, microtime: float) -> int:
        """Return the tokens accrued between ``microtime`` and now.

        Both timestamps are large and close together, so the difference is
        taken on their exact decimal values instead of float subtraction.
        """
        delta = Decimal(time.time()) - Decimal(microtime)
        return self.seconds_to_tokens(delta)
