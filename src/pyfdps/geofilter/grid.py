"""Covering grid of topic filters for a rectangle.

The grid over-covers: each filter fragment is a string prefix, so it
matches a whole bucket of coordinates around the grid value. The
generator only guarantees that every point of the rectangle is matched
by some filter, not that the filter set is minimal.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from pyfdps.geofilter.fixed_point import format_units
from pyfdps.geofilter.layout import DEFAULT_LAYOUT, TopicLayout
from pyfdps.geofilter.precision import AxisPrecision, PrecisionPolicy, select_precision, to_fixed_units

if TYPE_CHECKING:
    from pyfdps.models.geometry import Rectangle

_logger = logging.getLogger(__name__)


def axis_cells(low: float, high: float, precision: AxisPrecision) -> list[tuple[int, bool]]:
    """Grid values covering ``[low, high]`` on one axis.

    Returns ``(magnitude_units, negative)`` pairs. Stepping runs over the
    magnitude because topic fragments are prefixes of the unsigned
    digits; a range crossing zero is split into its negative and positive
    halves. Each half starts at the cell holding its near-zero edge and
    ends at the cell holding its far edge, where a far edge lying exactly
    on a cell boundary does not open another cell.
    """
    low_units = to_fixed_units(low)
    high_units = to_fixed_units(high)
    if low_units > high_units:
        low_units, high_units = high_units, low_units

    if high_units <= 0:
        halves = [(-high_units, -low_units, True)]
    elif low_units >= 0:
        halves = [(low_units, high_units, False)]
    else:
        halves = [(0, -low_units, True), (0, high_units, False)]

    step = precision.units
    cells: list[tuple[int, bool]] = []
    for near, far, negative in halves:
        first = near // step
        last = max(first, -(-far // step) - 1)
        cells.extend((index * step, negative) for index in range(first, last + 1))
    return cells


def axis_fragments(low: float, high: float, precision: AxisPrecision) -> list[str]:
    """Unique topic fragments covering ``[low, high]`` in grid order."""
    fragments = (format_units(units, precision, negative=negative) for units, negative in axis_cells(low, high, precision))
    return list(dict.fromkeys(fragments))


def generate_filters(
    rectangle: Rectangle,
    precision_policy: PrecisionPolicy = select_precision,
    layout: TopicLayout = DEFAULT_LAYOUT,
) -> list[str]:
    """Enumerate topic filters over-covering *rectangle*.

    Raises
    ------
    GeometryError
        When the rectangle does not have four distinct corners.
    """
    bottom_left, top_left, bottom_right, _top_right = rectangle.normalized_corners()

    lon_low, lon_high = bottom_left.longitude, bottom_right.longitude
    lat_low, lat_high = bottom_left.latitude, top_left.latitude

    lon_precision = precision_policy(abs(lon_high - lon_low))
    lat_precision = precision_policy(abs(lat_high - lat_low))

    columns = axis_fragments(lon_low, lon_high, lon_precision)
    rows = axis_fragments(lat_low, lat_high, lat_precision)

    filters = [layout.position_filter(lat, lon) for lon in columns for lat in rows]
    _logger.debug(
        "Covering grid cols=%d rows=%d lon_precision=%s lat_precision=%s",
        len(columns),
        len(rows),
        lon_precision.value,
        lat_precision.value,
    )
    return filters
