"""Region geometry models.

Regions are a closed tagged variant discriminated by ``kind``. Each
member converts itself into covering topic filters through
``covering_filters``; :class:`Rectangle` is the only member today.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any, Literal, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from pyfdps.exceptions import GeometryError
from pyfdps.geofilter.grid import generate_filters
from pyfdps.geofilter.layout import DEFAULT_LAYOUT, TopicLayout
from pyfdps.geofilter.precision import PrecisionPolicy, select_precision

_logger = logging.getLogger(__name__)

RECTANGLE_SHAPE = "Rectangle"


class Coordinate(BaseModel):
    """A WGS84 point in degrees."""

    model_config = ConfigDict(frozen=True)

    latitude: float = Field(..., ge=-90.0, le=90.0)
    longitude: float = Field(..., ge=-180.0, le=180.0)

    @property
    def sort_key(self) -> tuple[float, float]:
        return (self.longitude, self.latitude)


@runtime_checkable
class Region(Protocol):
    """Anything that can be covered by a set of topic filters."""

    kind: str

    def covering_filters(
        self,
        precision_policy: PrecisionPolicy = select_precision,
        layout: TopicLayout = DEFAULT_LAYOUT,
    ) -> list[str]: ...


class Rectangle(BaseModel):
    """Axis-aligned rectangle given by its corner points.

    Parameters
    ----------
    corners : tuple of Coordinate
        Corner points in any order. Accepts ``Coordinate`` instances,
        ``{"latitude": .., "longitude": ..}`` mappings or
        ``(latitude, longitude)`` pairs. Duplicates are allowed and
        removed on normalization.
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["rectangle"] = "rectangle"
    corners: tuple[Coordinate, ...]

    @field_validator("corners", mode="before")
    @classmethod
    def _coerce_pairs(cls, value: Any) -> Any:
        if not isinstance(value, Iterable) or isinstance(value, (str, bytes, Mapping)):
            return value
        coerced: list[Any] = []
        for item in value:
            if isinstance(item, (list, tuple)) and len(item) == 2:
                coerced.append({"latitude": item[0], "longitude": item[1]})
            else:
                coerced.append(item)
        return tuple(coerced)

    @classmethod
    def from_bounds(
        cls,
        *,
        min_lat: float,
        max_lat: float,
        min_lon: float,
        max_lon: float,
    ) -> Rectangle:
        """Build a rectangle from its bounding values."""
        return cls(
            corners=(
                (min_lat, min_lon),
                (max_lat, min_lon),
                (min_lat, max_lon),
                (max_lat, max_lon),
            )
        )

    @classmethod
    def from_geojson(cls, feature: Mapping[str, Any]) -> Rectangle:
        """Build a rectangle from a GeoJSON polygon feature.

        Uses the outer ring; GeoJSON positions are ``[longitude, latitude]``
        and the ring's closing point duplicates the first one.
        """
        geometry = feature.get("geometry") or {}
        rings = geometry.get("coordinates") if isinstance(geometry, Mapping) else None
        if not rings or not isinstance(rings, list):
            raise GeometryError("GeoJSON feature has no polygon coordinates")
        ring = rings[0]
        if not isinstance(ring, list):
            raise GeometryError("GeoJSON polygon ring is not a list of positions")
        try:
            return cls(corners=tuple({"latitude": pos[1], "longitude": pos[0]} for pos in ring))
        except (IndexError, TypeError, KeyError) as exc:
            raise GeometryError(f"Malformed GeoJSON position in ring: {exc}") from exc

    def normalized_corners(self) -> tuple[Coordinate, Coordinate, Coordinate, Coordinate]:
        """Deduplicate and sort corners by ``(longitude, latitude)``.

        Returns ``(min-lon/min-lat, min-lon/max-lat, max-lon/min-lat,
        max-lon/max-lat)`` for an axis-aligned rectangle.
        """
        unique = sorted(set(self.corners), key=lambda c: c.sort_key)
        if len(unique) < 4:
            raise GeometryError(f"Rectangle needs 4 distinct corners, got {len(unique)}")
        if len(unique) > 4:
            raise GeometryError(f"Rectangle has {len(unique)} distinct corners, expected 4")
        return unique[0], unique[1], unique[2], unique[3]

    def covering_filters(
        self,
        precision_policy: PrecisionPolicy = select_precision,
        layout: TopicLayout = DEFAULT_LAYOUT,
    ) -> list[str]:
        return generate_filters(self, precision_policy, layout)


def regions_from_features(features: Iterable[Mapping[str, Any]]) -> list[Rectangle]:
    """Convert drawing-tool GeoJSON features into regions.

    Only features whose ``properties.shape`` is ``"Rectangle"`` are
    considered. Malformed features are logged and skipped.
    """
    regions: list[Rectangle] = []
    for index, feature in enumerate(features):
        properties = feature.get("properties") or {}
        if not isinstance(properties, Mapping) or properties.get("shape") != RECTANGLE_SHAPE:
            continue
        try:
            regions.append(Rectangle.from_geojson(feature))
        except (GeometryError, ValidationError) as exc:
            _logger.warning("Skipping malformed rectangle feature index=%s: %s", index, exc)
    return regions
