"""Topic segment layout of the FDPS flight-position feed."""

from __future__ import annotations

from dataclasses import dataclass

from pyfdps.geofilter.fixed_point import SINGLE_LEVEL_WILDCARD

MULTI_LEVEL_WILDCARD = ">"

#: Topic levels after ``root/feed``, in order.
POSITION_SEGMENTS: tuple[str, ...] = (
    "identifier",
    "status",
    "aircraft_id",
    "lat",
    "lon",
    "speed",
    "altitude",
    "velocity_x",
    "velocity_y",
)

TOPIC_LEVELS = 2 + len(POSITION_SEGMENTS)


@dataclass(frozen=True)
class TopicLayout:
    """Fixed-arity topic layout ``root/feed/identifier/.../velocity_y``."""

    root: str = "FDPS"
    feed: str = "position"

    @property
    def catch_all(self) -> str:
        """Filter covering the entire feed."""
        return f"{self.root}/{self.feed}/{MULTI_LEVEL_WILDCARD}"

    def position_filter(self, lat: str, lon: str) -> str:
        """Compose a filter with *lat*/*lon* fragments and wildcards elsewhere."""
        levels = [self.root, self.feed]
        for segment in POSITION_SEGMENTS:
            if segment == "lat":
                levels.append(lat)
            elif segment == "lon":
                levels.append(lon)
            else:
                levels.append(SINGLE_LEVEL_WILDCARD)
        return "/".join(levels)


DEFAULT_LAYOUT = TopicLayout()
