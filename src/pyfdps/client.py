"""High-level async client for the geofiltered FDPS flight-position feed."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from pyfdps._mqtt import MqttMessagingClient
from pyfdps.config import FdpsConfig
from pyfdps.exceptions import FdpsError
from pyfdps.geofilter.layout import TopicLayout
from pyfdps.messaging import MessagingClient
from pyfdps.models.geometry import Region, regions_from_features
from pyfdps.state.store import AircraftStore
from pyfdps.sync import EventHandler, RetryPolicy, SubscriptionSynchronizer

_logger = logging.getLogger(__name__)


class FdpsClient:
    """Async client that keeps feed subscriptions aligned with drawn regions.

    Usage::

        async with FdpsClient(FdpsConfig.from_env()) as client:
            client.add_position_handler(on_position)
            client.on_regions_changed([Rectangle.from_bounds(...)])

    Without regions the client consumes the whole feed. Every region edit
    clears the aircraft store and, after the debounce window, re-syncs
    subscriptions.
    """

    def __init__(
        self,
        config: FdpsConfig,
        *,
        messaging: MessagingClient | None = None,
        store: AircraftStore | None = None,
        on_position: EventHandler | None = None,
    ) -> None:
        self._config = config
        self._messaging = messaging
        self._owns_messaging = messaging is None
        self._layout = TopicLayout(root=config.topic_root, feed=config.topic_feed)
        self._store = store if store is not None else AircraftStore()
        self._sync = SubscriptionSynchronizer(
            debounce_seconds=config.debounce_seconds,
            layout=self._layout,
            retry_policy=RetryPolicy(
                attempts=config.subscribe_attempts,
                backoff_seconds=config.retry_backoff_seconds,
            ),
        )
        self._sync.add_event_handler(self._store.on_event)
        if on_position is not None:
            self._sync.add_event_handler(on_position)
        self._started = False

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> FdpsClient:
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.stop()

    async def start(self) -> None:
        """Connect (when owning the MQTT client) and run the initial sync."""
        if self._started:
            return
        if self._messaging is None:
            mqtt_client = MqttMessagingClient(self._config)
            await mqtt_client.connect()
            self._messaging = mqtt_client
        self._sync.attach(self._messaging)
        self._started = True
        await self._sync.wait_synced()
        _logger.debug("FDPS client started filters=%s", self._sync.active_filters)

    async def stop(self) -> None:
        """Stop syncing and disconnect an owned MQTT client."""
        self._started = False
        await self._sync.close()
        messaging = self._messaging
        if self._owns_messaging and isinstance(messaging, MqttMessagingClient):
            self._messaging = None
            await messaging.disconnect()

    # ------------------------------------------------------------------
    # Region edits
    # ------------------------------------------------------------------

    def on_regions_changed(self, regions: Iterable[Region]) -> None:
        """Push the full edited region set (debounced)."""
        self._store.clear()
        self._sync.on_regions_changed(regions)

    def on_features_changed(self, features: Iterable[Mapping[str, Any]]) -> None:
        """Push the drawing tool's GeoJSON features (debounced)."""
        self.on_regions_changed(regions_from_features(features))

    async def flush(self) -> None:
        """Commit any pending edit now and wait for subscriptions to settle."""
        self._require_started()
        await self._sync.flush()

    async def wait_synced(self) -> None:
        await self._sync.wait_synced()

    # ------------------------------------------------------------------
    # Events and state
    # ------------------------------------------------------------------

    def add_position_handler(self, handler: EventHandler) -> None:
        self._sync.add_event_handler(handler)

    def remove_position_handler(self, handler: EventHandler) -> None:
        self._sync.remove_event_handler(handler)

    @property
    def config(self) -> FdpsConfig:
        return self._config

    @property
    def layout(self) -> TopicLayout:
        return self._layout

    @property
    def store(self) -> AircraftStore:
        return self._store

    @property
    def synchronizer(self) -> SubscriptionSynchronizer:
        return self._sync

    @property
    def active_filters(self) -> tuple[str, ...]:
        return self._sync.active_filters

    def aircraft_feature_collection(self) -> dict[str, Any]:
        """GeoJSON of tracked aircraft, ready for a map layer."""
        return self._store.to_feature_collection()

    def _require_started(self) -> None:
        if not self._started:
            raise FdpsError("Client not started. Use 'async with FdpsClient(...) as client:'")
