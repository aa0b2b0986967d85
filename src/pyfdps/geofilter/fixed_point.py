"""Fixed-point coordinate formatting with wildcard placement.

Feed topics carry coordinates as decimal strings (``39.82``,
``-98.57``). A topic filter fragment keeps every digit above the chosen
precision and replaces the digit *at* the precision with the wildcard
token, so the fragment matches every coordinate string sharing that
prefix::

    >>> format_fragment(35.0, AxisPrecision.ONES)
    '3*'
    >>> format_fragment(39.82, AxisPrecision.HUNDREDTHS)
    '39.8*'
"""

from __future__ import annotations

from pyfdps.geofilter.precision import DECIMAL_PLACES, AxisPrecision, to_fixed_units

SINGLE_LEVEL_WILDCARD = "*"


def fixed_point_digits(units: int) -> tuple[str, str]:
    """Split a non-negative unit count into ``(integer, fraction)`` digit strings."""
    if units < 0:
        raise ValueError("units must be non-negative")
    integer, fraction = divmod(units, 10**DECIMAL_PLACES)
    return str(integer), str(fraction).zfill(DECIMAL_PLACES)


def wildcard_digit_index(integer_digits: str, precision: AxisPrecision) -> int:
    """Index of the digit replaced by the wildcard.

    The index addresses the string ``integer_digits + "." + fraction``.
    A negative index means the integer part has no digit at that place.
    """
    exponent = precision.exponent
    if exponent >= 0:
        return len(integer_digits) - 1 - exponent
    return len(integer_digits) + (-exponent)


def format_units(units: int, precision: AxisPrecision, *, negative: bool = False) -> str:
    """Format a magnitude in 1e-5 units as a topic filter fragment."""
    integer, fraction = fixed_point_digits(units)
    sign = "-" if negative else ""
    text = f"{integer}.{fraction}"
    if precision.is_finest:
        return sign + text

    index = wildcard_digit_index(integer, precision)
    if index < 0:
        return sign + SINGLE_LEVEL_WILDCARD
    return sign + text[:index] + SINGLE_LEVEL_WILDCARD


def format_fragment(value: float, precision: AxisPrecision) -> str:
    """Format *value* with 5 decimals and place the wildcard at *precision*."""
    units = to_fixed_units(value)
    return format_units(abs(units), precision, negative=units < 0)
