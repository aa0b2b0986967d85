"""In-memory store of the latest position per aircraft."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

from pydantic import BaseModel, ConfigDict

from pyfdps.models.position import FlightPosition


def _utcnow() -> datetime:
    return datetime.now(UTC)


class TrackedAircraft(BaseModel):
    model_config = ConfigDict(frozen=True)

    position: FlightPosition
    observed_at: datetime
    update_count: int = 1


class AircraftStore:
    """Latest position report per aircraft plus a received-message counter.

    The store is cleared whenever the region set is edited, so it only
    ever shows aircraft seen under the current subscriptions.
    """

    def __init__(
        self,
        *,
        clock: Callable[[], datetime] = _utcnow,
        max_age: timedelta | None = None,
    ) -> None:
        self._clock = clock
        self._max_age = max_age
        self._aircraft: dict[str, TrackedAircraft] = {}
        self._messages_received = 0

    def __len__(self) -> int:
        return len(self._aircraft)

    def __contains__(self, aircraft_id: object) -> bool:
        return aircraft_id in self._aircraft

    @property
    def messages_received(self) -> int:
        return self._messages_received

    def apply(self, event: FlightPosition) -> None:
        """Record *event* as the latest report for its aircraft."""
        self._messages_received += 1
        previous = self._aircraft.get(event.aircraft_id)
        self._aircraft[event.aircraft_id] = TrackedAircraft(
            position=event,
            observed_at=self._clock(),
            update_count=1 if previous is None else previous.update_count + 1,
        )

    def on_event(self, _topic: str, event: FlightPosition) -> None:
        """Event-handler adapter for :class:`~pyfdps.sync.SubscriptionSynchronizer`."""
        self.apply(event)

    def get(self, aircraft_id: str) -> TrackedAircraft | None:
        return self._aircraft.get(aircraft_id)

    def snapshot(self) -> dict[str, FlightPosition]:
        """Latest position per aircraft id, stale entries excluded."""
        self.prune_stale()
        return {aircraft_id: tracked.position for aircraft_id, tracked in self._aircraft.items()}

    def prune_stale(self) -> int:
        """Drop aircraft not updated within ``max_age``. Returns the number dropped."""
        if self._max_age is None:
            return 0
        cutoff = self._clock() - self._max_age
        stale = [aircraft_id for aircraft_id, tracked in self._aircraft.items() if tracked.observed_at < cutoff]
        for aircraft_id in stale:
            del self._aircraft[aircraft_id]
        return len(stale)

    def clear(self) -> None:
        """Forget all aircraft. The message counter keeps counting."""
        self._aircraft.clear()

    def to_feature_collection(self) -> dict[str, Any]:
        """GeoJSON ``FeatureCollection`` of tracked aircraft with a position."""
        features: list[dict[str, Any]] = []
        for aircraft_id, position in self.snapshot().items():
            if not position.has_position:
                continue
            features.append(
                {
                    "type": "Feature",
                    "id": aircraft_id,
                    "geometry": {"type": "Point", "coordinates": [position.lon, position.lat]},
                    "properties": {
                        "heading": position.heading,
                        "altitude": position.altitude,
                        "speed": position.speed,
                        "status": position.status,
                    },
                }
            )
        return {"type": "FeatureCollection", "features": features}
