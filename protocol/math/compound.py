# MIT License
# Copyright (c) 2025 Hashborn

"""
APR / APY share multipliers.

Both multipliers are percentages with 5 decimals (PERCENT_PRECISION), i.e.
7 significant digits for the 100-999 % range a 364 day position reaches.
The compounding power is evaluated in 18 decimal fixed point and only then
truncated, so the reported digits are exact for every exponent up to
compound_interval.
"""

from typing import List

from ..config.economic_model import (
    ECONOMIC_CONFIG,
    DECIMALS,
    PERCENT_PRECISION,
    DAYS_PER_WEEK,
    EconomicConfig,
)
from ..types.common import ValidationError
from .fixed_point import ONE, mul_div, pow_fixed


class CompoundCalculator:
    """
    Pure multiplier math for a network's economic config.

    Durations are in days and clamped to max_duration. A factor of None
    means the reference (full) pool factor.
    """

    def __init__(self, economic_config: EconomicConfig = None):
        self.config = economic_config or ECONOMIC_CONFIG

    def _clamp(self, duration: int) -> int:
        if duration < 0:
            raise ValidationError("Duration must not be negative")
        return min(duration, self.config.max_duration)

    def _factor(self, factor: int = None) -> int:
        if factor is None:
            return self.config.full_pool_factor
        if factor < 0 or factor > self.config.full_pool_factor:
            raise ValidationError(f"Pool factor must be within [0, {self.config.full_pool_factor}]")
        return factor

    def apr(self, duration: int, factor: int = None) -> int:
        """roi * factor/full * duration/max_duration"""
        factor = self._factor(factor)
        duration = self._clamp(duration)

        return mul_div(
            self.config.apr_roi_percent * PERCENT_PRECISION * duration,
            factor,
            self.config.full_pool_factor * self.config.max_duration,
        )

    def apy(self, duration: int, factor: int = None) -> int:
        """
        (1 + rate/interval) ** (interval * duration/max_duration) - 1

        rate is the nominal roi scaled by the pool factor. The exponent is
        fractional for any duration that is not a whole number of
        compounding periods.
        """
        factor = self._factor(factor)
        duration = self._clamp(duration)
        if duration == 0:
            return 0

        rate = mul_div(self.config.apy_roi_percent * ONE // 100, factor, self.config.full_pool_factor)
        base = ONE + rate // self.config.compound_interval
        exponent = self.config.compound_interval * duration * ONE // self.config.max_duration

        growth = pow_fixed(base, exponent) - ONE
        return mul_div(growth, 100 * PERCENT_PRECISION, ONE)

    def multiplier(self, duration: int, auto_compound: bool) -> int:
        """Share multiplier at the reference factor, independent of the live pool."""
        if auto_compound:
            return self.apy(duration)
        return self.apr(duration)

    def shares(self, amount: int, multiplier: int) -> int:
        return mul_div(amount, multiplier, DECIMALS * PERCENT_PRECISION)

    def max_rewards(self, amount: int, duration: int, auto_compound: bool) -> int:
        """Gross rewards a position earns over its full term at the reference factor."""
        return mul_div(amount, self.multiplier(duration, auto_compound), 100 * PERCENT_PRECISION)

    # Weekly tables (weeks 1..max)

    def apys(self) -> List[int]:
        weeks = self.config.max_duration // DAYS_PER_WEEK
        return [self.apy(week * DAYS_PER_WEEK) for week in range(1, weeks + 1)]

    def aprs(self) -> List[int]:
        weeks = self.config.max_duration // DAYS_PER_WEEK
        return [self.apr(week * DAYS_PER_WEEK) for week in range(1, weeks + 1)]
