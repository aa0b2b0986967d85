"""Per-axis wildcard precision for covering a coordinate range."""

from __future__ import annotations

import enum
from collections.abc import Callable
from decimal import ROUND_HALF_UP, Decimal

#: Coordinates in feed topics carry at most this many decimals.
DECIMAL_PLACES = 5

_UNIT = Decimal(1).scaleb(-DECIMAL_PLACES)


def to_fixed_units(value: float | Decimal) -> int:
    """Convert *value* to an integer count of 1e-5 degree units.

    Rounds half away from zero so ``39.825`` and ``-39.825`` stay symmetric.
    """
    quantized = Decimal(str(value)).quantize(_UNIT, rounding=ROUND_HALF_UP)
    return int(quantized.scaleb(DECIMAL_PLACES))


class AxisPrecision(enum.Enum):
    """Magnitude of the digit replaced by a wildcard on one axis.

    Ordered coarse to fine. :attr:`exponent` is the power of ten of the
    member's value.
    """

    TENS = 10
    ONES = 1
    TENTHS = 0.1
    HUNDREDTHS = 0.01
    THOUSANDTHS = 0.001
    TEN_THOUSANDTHS = 0.0001
    HUNDRED_THOUSANDTHS = 0.00001

    @property
    def exponent(self) -> int:
        return _EXPONENTS[self]

    @property
    def units(self) -> int:
        """Step size in 1e-5 degree units."""
        return 10 ** (self.exponent + DECIMAL_PLACES)

    @property
    def is_finest(self) -> bool:
        return self.exponent == -DECIMAL_PLACES


_EXPONENTS: dict[AxisPrecision, int] = {
    AxisPrecision.TENS: 1,
    AxisPrecision.ONES: 0,
    AxisPrecision.TENTHS: -1,
    AxisPrecision.HUNDREDTHS: -2,
    AxisPrecision.THOUSANDTHS: -3,
    AxisPrecision.TEN_THOUSANDTHS: -4,
    AxisPrecision.HUNDRED_THOUSANDTHS: -5,
}

PrecisionPolicy = Callable[[float], AxisPrecision]
"""Maps an axis extent (degrees) to the precision used on that axis."""


def select_precision(extent: float) -> AxisPrecision:
    """Pick the wildcard precision for an axis spanning *extent* degrees.

    The first band whose lower bound the extent reaches wins, coarse to
    fine; anything under 0.0001 uses full 5-decimal precision. The
    comparison happens in fixed-point units, so float noise such as
    ``39.9 - 39.8 == 0.09999999999999432`` still lands in the 0.1 band.
    """
    extent_units = abs(to_fixed_units(extent))
    for precision in AxisPrecision:
        if precision.is_finest or extent_units >= precision.units:
            return precision
    return AxisPrecision.HUNDRED_THOUSANDTHS
