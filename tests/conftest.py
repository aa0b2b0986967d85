from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

import pytest

from pyfdps.exceptions import SubscriptionError
from pyfdps.matching import topic_matches_filter
from pyfdps.messaging import MessageHandler


class FakeMessagingClient:
    """In-memory stand-in for a broker connection."""

    def __init__(
        self,
        *,
        fail_filters: set[str] | None = None,
        fail_times: int | None = None,
        fail_unsubscribe_all: bool = False,
        gate: asyncio.Event | None = None,
    ) -> None:
        self.subscriptions: dict[str, MessageHandler] = {}
        self.calls: list[tuple[str, str | None]] = []
        self.attempts: dict[str, int] = {}
        self._fail_filters = fail_filters or set()
        # None: listed filters always fail; N: they fail N times, then succeed.
        self._fail_times = fail_times
        self._fail_unsubscribe_all = fail_unsubscribe_all
        self._gate = gate

    async def subscribe(self, topic_filter: str, handler: MessageHandler) -> None:
        self.calls.append(("subscribe", topic_filter))
        self.attempts[topic_filter] = self.attempts.get(topic_filter, 0) + 1
        await asyncio.sleep(0)
        if topic_filter in self._fail_filters:
            if self._fail_times is None or self.attempts[topic_filter] <= self._fail_times:
                raise SubscriptionError("rejected", topic_filter=topic_filter)
        self.subscriptions[topic_filter] = handler

    async def unsubscribe(self, topic_filter: str) -> None:
        self.calls.append(("unsubscribe", topic_filter))
        self.subscriptions.pop(topic_filter, None)

    async def unsubscribe_all(self) -> None:
        self.calls.append(("unsubscribe_all", None))
        if self._gate is not None:
            await self._gate.wait()
        await asyncio.sleep(0)
        if self._fail_unsubscribe_all:
            raise SubscriptionError("unsubscribe_all rejected")
        self.subscriptions.clear()

    def publish(self, topic: str, payload: bytes = b"") -> int:
        delivered = 0
        for topic_filter, handler in list(self.subscriptions.items()):
            if topic_matches_filter(topic_filter, topic):
                handler(topic, payload)
                delivered += 1
        return delivered


@pytest.fixture
def make_messaging() -> Callable[..., FakeMessagingClient]:
    def _factory(**kwargs: Any) -> FakeMessagingClient:
        return FakeMessagingClient(**kwargs)

    return _factory
