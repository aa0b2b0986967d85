"""Flight position event model parsed from feed topics."""

from __future__ import annotations

import math
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from pyfdps.geofilter.layout import POSITION_SEGMENTS, TOPIC_LEVELS


def _safe_float(value: Any) -> float | None:
    if value is None:
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(result) or math.isinf(result):
        return None
    return result


class FlightPosition(BaseModel):
    """One position report from the flight-position feed.

    The topic carries everything; the payload is kept as received.

    Parameters
    ----------
    topic : str
        Topic the event was published on.
    root, feed : str
        First two topic levels (``FDPS/position``).
    identifier, status : str
        Opaque feed levels.
    aircraft_id : str
        Aircraft identifier; key for tracking.
    lat, lon : float or None
        Position in degrees.
    speed, altitude : float or None
        Reported actual speed and altitude.
    velocity_x, velocity_y : float or None
        Track velocity components.
    payload : bytes
        Raw message payload.
    """

    model_config = ConfigDict(frozen=True)

    topic: str
    root: str
    feed: str
    identifier: str
    status: str
    aircraft_id: str = Field(..., min_length=1)
    lat: float | None = None
    lon: float | None = None
    speed: float | None = None
    altitude: float | None = None
    velocity_x: float | None = None
    velocity_y: float | None = None
    payload: bytes = b""

    @field_validator("lat", "lon", "speed", "altitude", "velocity_x", "velocity_y", mode="before")
    @classmethod
    def _coerce_floats(cls, value: Any) -> float | None:
        return _safe_float(value)

    @classmethod
    def from_topic(cls, topic: str, payload: bytes = b"") -> FlightPosition:
        """Parse ``root/feed/identifier/status/aircraftId/lat/lon/speed/altitude/vx/vy``.

        Raises
        ------
        ValueError
            When the topic does not have the expected number of levels
            (pydantic's ``ValidationError`` for an empty aircraft id).
        """
        levels = topic.split("/")
        if len(levels) != TOPIC_LEVELS:
            raise ValueError(f"Expected {TOPIC_LEVELS} topic levels, got {len(levels)}: {topic!r}")
        fields: dict[str, Any] = {"root": levels[0], "feed": levels[1]}
        fields.update(zip(POSITION_SEGMENTS, levels[2:], strict=True))
        return cls(topic=topic, payload=payload, **fields)

    @property
    def heading(self) -> float | None:
        """Track angle in degrees, ``atan(velocity_y / velocity_x)``.

        ``None`` when either component is missing or ``velocity_x`` is 0.
        """
        if self.velocity_x is None or self.velocity_y is None or self.velocity_x == 0:
            return None
        return math.degrees(math.atan(self.velocity_y / self.velocity_x))

    @property
    def has_position(self) -> bool:
        return self.lat is not None and self.lon is not None
