"""Data models for pyfdps."""

from pyfdps.models.geometry import RECTANGLE_SHAPE, Coordinate, Rectangle, Region, regions_from_features
from pyfdps.models.position import FlightPosition

__all__ = [
    "RECTANGLE_SHAPE",
    "Coordinate",
    "FlightPosition",
    "Rectangle",
    "Region",
    "regions_from_features",
]
