"""Keeps broker subscriptions in sync with the user's region set.

Region edits arrive at UI interaction rate. The synchronizer buffers the
latest region set and only commits it once no further edit arrived for
``debounce_seconds``. Every commit triggers one sync round:

1. ``unsubscribe_all()`` on the attached messaging client;
2. subscribe the catch-all filter when no region is committed, otherwise
   every covering filter of every region, concurrently;
3. record the filters whose subscribe call succeeded.

At most one round runs at a time; a commit landing mid-round schedules
another round after the current one settles.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from pyfdps.exceptions import GeometryError
from pyfdps.geofilter.layout import DEFAULT_LAYOUT, TopicLayout
from pyfdps.geofilter.precision import PrecisionPolicy, select_precision
from pyfdps.messaging import MessageHandler, MessagingClient
from pyfdps.models.geometry import Region, regions_from_features
from pyfdps.models.position import FlightPosition

_logger = logging.getLogger(__name__)

EventHandler = Callable[[str, FlightPosition], None]
"""Called with ``(topic, event)`` for every dispatched position report."""


class SyncState(StrEnum):
    IDLE = "idle"
    ACTIVE = "active"
    SYNCING = "syncing"


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry for individual subscribe calls.

    ``attempts=1`` (the default) means a failed subscribe is dropped
    immediately.
    """

    attempts: int = 1
    backoff_seconds: float = 0.5

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValueError("attempts must be >= 1")
        if self.backoff_seconds < 0:
            raise ValueError("backoff_seconds must be >= 0")


class SubscriptionSynchronizer:
    """Owns the active subscription set for one messaging client.

    Usage::

        sync = SubscriptionSynchronizer(debounce_seconds=0.5)
        sync.add_event_handler(on_position)
        sync.attach(client)              # initial sync (catch-all)
        sync.on_regions_changed([rect])  # debounced re-sync

    All methods must be called from the event loop thread.
    """

    def __init__(
        self,
        *,
        debounce_seconds: float = 0.5,
        layout: TopicLayout = DEFAULT_LAYOUT,
        precision_policy: PrecisionPolicy = select_precision,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        if debounce_seconds < 0:
            raise ValueError("debounce_seconds must be >= 0")
        self._debounce_seconds = debounce_seconds
        self._layout = layout
        self._precision_policy = precision_policy
        self._retry_policy = retry_policy or RetryPolicy()

        self._client: MessagingClient | None = None
        self._state = SyncState.IDLE
        self._subscriptions: dict[str, MessageHandler] = {}
        self._event_handlers: list[EventHandler] = []

        self._pending_regions: tuple[Region, ...] | None = None
        self._committed_regions: tuple[Region, ...] = ()
        self._debounce_handle: asyncio.TimerHandle | None = None

        self._sync_task: asyncio.Task[None] | None = None
        self._sync_requested = False
        self._commit_count = 0
        self._sync_count = 0

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def client(self) -> MessagingClient | None:
        return self._client

    @property
    def active_filters(self) -> tuple[str, ...]:
        """Filters currently subscribed, in subscription order."""
        return tuple(self._subscriptions)

    @property
    def subscriptions(self) -> Mapping[str, MessageHandler]:
        return dict(self._subscriptions)

    @property
    def committed_regions(self) -> tuple[Region, ...]:
        return self._committed_regions

    @property
    def has_pending_edit(self) -> bool:
        return self._debounce_handle is not None

    @property
    def commit_count(self) -> int:
        """Number of debounced region commits so far."""
        return self._commit_count

    @property
    def sync_count(self) -> int:
        """Number of completed sync rounds so far."""
        return self._sync_count

    # ------------------------------------------------------------------
    # Messaging client lifecycle
    # ------------------------------------------------------------------

    def attach(self, client: MessagingClient) -> None:
        """Bind *client* and schedule an initial sync of the committed regions."""
        self._client = client
        self._state = SyncState.ACTIVE
        _logger.debug("Messaging client attached; scheduling initial sync")
        self._request_sync()

    def detach(self) -> None:
        """Drop the messaging client reference.

        A buffered edit is discarded. Subscriptions are forgotten locally;
        the broker side is left to the client's own teardown.
        """
        self._cancel_debounce()
        self._pending_regions = None
        self._client = None
        self._subscriptions.clear()
        self._state = SyncState.IDLE

    async def close(self) -> None:
        """Cancel pending work and detach."""
        self._cancel_debounce()
        task = self._sync_task
        self._sync_task = None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self.detach()

    # ------------------------------------------------------------------
    # Region edits
    # ------------------------------------------------------------------

    def on_regions_changed(self, regions: Iterable[Region]) -> None:
        """Buffer a new region set and restart the quiescence timer."""
        self._pending_regions = tuple(regions)
        self._cancel_debounce()
        loop = asyncio.get_running_loop()
        self._debounce_handle = loop.call_later(self._debounce_seconds, self._commit_pending)

    def on_features_changed(self, features: Iterable[Mapping[str, Any]]) -> None:
        """Buffer the rectangle features of a drawing-tool feature list."""
        self.on_regions_changed(regions_from_features(features))

    async def flush(self) -> None:
        """Commit a buffered edit now and wait for outstanding sync rounds."""
        if self._debounce_handle is not None:
            self._cancel_debounce()
            self._commit_pending()
        await self.wait_synced()

    async def wait_synced(self) -> None:
        """Wait until no sync round is running or requested."""
        while self._sync_task is not None and not self._sync_task.done():
            await asyncio.shield(self._sync_task)

    def _cancel_debounce(self) -> None:
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
            self._debounce_handle = None

    def _commit_pending(self) -> None:
        self._debounce_handle = None
        regions = self._pending_regions
        self._pending_regions = None
        if regions is None:
            return
        self._committed_regions = regions
        self._commit_count += 1
        _logger.debug("Committed region set regions=%d commit=%d", len(regions), self._commit_count)
        if self._client is not None:
            self._request_sync()

    # ------------------------------------------------------------------
    # Sync rounds
    # ------------------------------------------------------------------

    def filters_for(self, regions: Iterable[Region]) -> list[str]:
        """Unique filters covering *regions*; the catch-all for an empty set.

        Regions that cannot be gridded are logged and skipped.
        """
        regions = tuple(regions)
        if not regions:
            return [self._layout.catch_all]

        filters: list[str] = []
        for index, region in enumerate(regions):
            try:
                filters.extend(region.covering_filters(self._precision_policy, self._layout))
            except GeometryError as exc:
                _logger.warning("Skipping region index=%s kind=%s: %s", index, region.kind, exc)
        return list(dict.fromkeys(filters))

    def _request_sync(self) -> None:
        self._sync_requested = True
        if self._sync_task is None or self._sync_task.done():
            self._sync_task = asyncio.get_running_loop().create_task(self._run_sync_rounds())

    async def _run_sync_rounds(self) -> None:
        try:
            while self._sync_requested and self._client is not None:
                self._sync_requested = False
                await self._sync_round(self._client)
        finally:
            if self._state == SyncState.SYNCING:
                self._state = SyncState.ACTIVE if self._client is not None else SyncState.IDLE

    async def _sync_round(self, client: MessagingClient) -> None:
        self._state = SyncState.SYNCING
        regions = self._committed_regions
        filters = self.filters_for(regions)
        _logger.debug("Sync round start regions=%d filters=%d", len(regions), len(filters))

        try:
            await client.unsubscribe_all()
        except Exception as exc:
            _logger.warning("unsubscribe_all failed, subscribing new filter set anyway: %s", exc)
        self._subscriptions.clear()

        results = await asyncio.gather(*(self._subscribe(client, topic_filter) for topic_filter in filters))

        if self._client is not client:
            _logger.debug("Messaging client changed during sync round; discarding results")
            return

        for topic_filter, ok in zip(filters, results, strict=True):
            if ok:
                self._subscriptions[topic_filter] = self._handle_message
        self._sync_count += 1
        self._state = SyncState.ACTIVE
        _logger.debug(
            "Sync round done subscribed=%d dropped=%d round=%d",
            len(self._subscriptions),
            len(filters) - len(self._subscriptions),
            self._sync_count,
        )

    async def _subscribe(self, client: MessagingClient, topic_filter: str) -> bool:
        attempts = self._retry_policy.attempts
        for attempt in range(1, attempts + 1):
            try:
                await client.subscribe(topic_filter, self._handle_message)
                return True
            except Exception as exc:
                if attempt < attempts:
                    _logger.debug(
                        "Subscribe attempt %d/%d failed filter=%s: %s",
                        attempt,
                        attempts,
                        topic_filter,
                        exc,
                    )
                    await asyncio.sleep(self._retry_policy.backoff_seconds)
                    continue
                _logger.warning("Dropping filter %s after %d attempt(s): %s", topic_filter, attempts, exc)
        return False

    # ------------------------------------------------------------------
    # Event dispatch
    # ------------------------------------------------------------------

    def add_event_handler(self, handler: EventHandler) -> None:
        if handler not in self._event_handlers:
            self._event_handlers.append(handler)

    def remove_event_handler(self, handler: EventHandler) -> None:
        with contextlib.suppress(ValueError):
            self._event_handlers.remove(handler)

    def _handle_message(self, topic: str, payload: bytes) -> None:
        try:
            event = FlightPosition.from_topic(topic, payload)
        except ValueError:
            _logger.debug("Dropping unparseable position topic=%s", topic, exc_info=True)
            return
        for handler in list(self._event_handlers):
            try:
                handler(topic, event)
            except Exception:
                _logger.warning("Position event handler failed topic=%s", topic, exc_info=True)
