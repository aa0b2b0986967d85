"""Rectangle to topic-filter translation.

Covers precision selection per axis, fixed-point fragment formatting and
the covering grid.
"""

from pyfdps.geofilter.fixed_point import SINGLE_LEVEL_WILDCARD, format_fragment, format_units
from pyfdps.geofilter.grid import axis_cells, axis_fragments, generate_filters
from pyfdps.geofilter.layout import DEFAULT_LAYOUT, MULTI_LEVEL_WILDCARD, TopicLayout
from pyfdps.geofilter.precision import AxisPrecision, PrecisionPolicy, select_precision

__all__ = [
    "DEFAULT_LAYOUT",
    "MULTI_LEVEL_WILDCARD",
    "SINGLE_LEVEL_WILDCARD",
    "AxisPrecision",
    "PrecisionPolicy",
    "TopicLayout",
    "axis_cells",
    "axis_fragments",
    "format_fragment",
    "format_units",
    "generate_filters",
    "select_precision",
]
