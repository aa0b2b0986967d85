"""Messaging client capability consumed by the subscription synchronizer."""

from __future__ import annotations

from collections.abc import Callable
from typing import Protocol, runtime_checkable

MessageHandler = Callable[[str, bytes], None]
"""Called with ``(topic, payload)`` for every message matching a subscription."""


@runtime_checkable
class MessagingClient(Protocol):
    """Async publish/subscribe client.

    Implementations signal failure by raising; the synchronizer treats any
    exception from these calls as a failed call.
    """

    async def subscribe(self, topic_filter: str, handler: MessageHandler) -> None: ...

    async def unsubscribe(self, topic_filter: str) -> None: ...

    async def unsubscribe_all(self) -> None: ...
