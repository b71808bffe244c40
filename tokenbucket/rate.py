"""Refill rate expressed as an amount of tokens per time unit."""

import math
from dataclasses import dataclass
from enum import StrEnum

from tokenbucket.errors import ConfigurationError


class RateUnit(StrEnum):
    MICROSECOND = "microsecond"
    MILLISECOND = "millisecond"
    SECOND = "second"
    MINUTE = "minute"
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


# Month and year are fixed averages, not calendar-accurate.
SECONDS_PER_UNIT: dict[RateUnit, float] = {
    RateUnit.MICROSECOND: 0.000001,
    RateUnit.MILLISECOND: 0.001,
    RateUnit.SECOND: 1,
    RateUnit.MINUTE: 60,
    RateUnit.HOUR: 3600,
    RateUnit.DAY: 86400,
    RateUnit.WEEK: 604800,
    RateUnit.MONTH: 2629743.83,
    RateUnit.YEAR: 31556926,
}


@dataclass(frozen=True)
class Rate:
    """Immutable refill rate, e.g. ``Rate(10, RateUnit.SECOND)``."""

    amount: float
    unit: RateUnit

    def __post_init__(self) -> None:
        try:
            unit = RateUnit(self.unit)
        except ValueError as exc:
            raise ConfigurationError(f"Not a valid rate unit: {self.unit!r}") from exc
        # frozen dataclass: coerce plain strings to the enum member
        object.__setattr__(self, "unit", unit)

        if isinstance(self.amount, bool) or not isinstance(self.amount, int | float):
            raise ConfigurationError(f"Rate amount must be a number, got {self.amount!r}")
        if not math.isfinite(self.amount) or not self.amount > 0:
            raise ConfigurationError(f"Rate amount must be a finite number greater than 0, got {self.amount}")

    @property
    def tokens_per_second(self) -> float:
        return self.amount / SECONDS_PER_UNIT[self.unit]
