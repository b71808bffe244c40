"""Shared fixtures: a controllable clock patched into every module that reads time."""

from __future__ import annotations

from unittest.mock import patch

import pytest

# Exactly representable as a double, so timestamp arithmetic in tests is exact.
START_TIME = 1417011228.0


class FakeClock:
    """Stand-in for the ``time`` module: sleeping advances wall and monotonic time together."""

    def __init__(self, now: float = START_TIME) -> None:
        self.now = now
        self.mono = 0.0
        self.sleeps: list[float] = []

    def time(self) -> float:
        return self.now

    def monotonic(self) -> float:
        return self.mono

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.advance(seconds)

    def advance(self, seconds: float) -> None:
        self.now += seconds
        self.mono += seconds


@pytest.fixture
def clock():
    fake = FakeClock()
    with (
        patch("tokenbucket.converter.time", fake),
        patch("tokenbucket.bucket.time", fake),
        patch("tokenbucket.consumer.time", fake),
    ):
        yield fake
