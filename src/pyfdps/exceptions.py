"""Custom exception hierarchy for pyfdps."""

from __future__ import annotations


class FdpsError(Exception):
    """Base exception for all pyfdps errors."""


class FdpsConfigError(FdpsError):
    """Invalid or missing configuration."""


class TranslationError(FdpsError):
    """A topic filter pattern could not be compiled into a matcher.

    Never escapes :func:`pyfdps.matching.compile_topic_filter`; a
    malformed pattern is logged and compiled into a matcher that never
    matches.
    """

    def __init__(self, message: str, *, pattern: object = None) -> None:
        self.pattern = pattern
        super().__init__(message)


class GeometryError(FdpsError):
    """A region cannot be converted into a covering grid of topic filters.

    Raised for rectangles with fewer than four distinct corners after
    deduplication.
    """


class MessagingError(FdpsError):
    """Messaging client failure (broker unreachable, protocol error)."""


class NotConnectedError(MessagingError):
    """Operation requires a connected messaging client."""


class SubscriptionError(MessagingError):
    """A subscribe/unsubscribe call was rejected or timed out."""

    def __init__(
        self,
        message: str,
        *,
        topic_filter: str = "",
        reason_code: int | None = None,
    ) -> None:
        self.topic_filter = topic_filter
        self.reason_code = reason_code
        super().__init__(message)
