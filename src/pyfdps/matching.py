"""Topic filter pattern matching.

Filters follow the feed broker's wildcard syntax, which is looser than
MQTT:

* ``*`` matches any run of characters, including ``/``. It may stand for
  a whole level (``FDPS/*/x``) or end a prefix (``39.8*``). ``#`` is
  treated the same way.
* ``>`` as the whole final level matches the remainder of the topic.

Matching is anchored at the start of the topic only. A filter ending in
``*`` additionally requires topic and filter to have the same number of
levels, so a short filter cannot swallow extra trailing levels.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from functools import lru_cache

from pyfdps.exceptions import TranslationError

_logger = logging.getLogger(__name__)

_SINGLE_LEVEL_TOKENS = frozenset("*#")
_MULTI_LEVEL_TOKEN = ">"


@dataclass(frozen=True)
class TopicMatcher:
    """Compiled topic filter."""

    pattern: str
    regex: re.Pattern[str] | None
    level_count: int
    requires_level_count: bool

    @property
    def is_valid(self) -> bool:
        return self.regex is not None

    def test(self, topic: str) -> bool:
        """Return whether *topic* matches the filter.

        Invalid patterns never match.
        """
        if self.regex is None or not isinstance(topic, str):
            return False
        if self.regex.match(topic) is None:
            return False
        if self.requires_level_count and topic.count("/") + 1 != self.level_count:
            return False
        return True


def translate_topic_filter(pattern: str) -> str:
    """Translate a topic filter into a regular expression source string.

    Raises
    ------
    TranslationError
        When the pattern is empty, not a string, or uses ``>`` anywhere
        but as the whole final level.
    """
    if not isinstance(pattern, str):
        raise TranslationError("Topic filter must be a string", pattern=pattern)
    if not pattern:
        raise TranslationError("Topic filter is empty", pattern=pattern)

    body = pattern
    multi_level = False
    if pattern == _MULTI_LEVEL_TOKEN or pattern.endswith("/" + _MULTI_LEVEL_TOKEN):
        body = pattern[: -len(_MULTI_LEVEL_TOKEN)]
        multi_level = True
    if _MULTI_LEVEL_TOKEN in body:
        raise TranslationError(
            "Multi-level wildcard is only valid as the last topic level",
            pattern=pattern,
        )

    parts: list[str] = []
    for char in body:
        parts.append(".*" if char in _SINGLE_LEVEL_TOKENS else re.escape(char))
    if multi_level:
        parts.append(".*")
    return "".join(parts)


@lru_cache(maxsize=4096)
def _compile(pattern: str) -> TopicMatcher:
    try:
        source = translate_topic_filter(pattern)
    except TranslationError as exc:
        _logger.warning("Invalid topic filter %r: %s", pattern, exc)
        return TopicMatcher(pattern=pattern, regex=None, level_count=0, requires_level_count=False)
    return TopicMatcher(
        pattern=pattern,
        regex=re.compile(source, re.DOTALL),
        level_count=pattern.count("/") + 1,
        requires_level_count=pattern[-1] in _SINGLE_LEVEL_TOKENS,
    )


def compile_topic_filter(pattern: str) -> TopicMatcher:
    """Compile *pattern* into a :class:`TopicMatcher`.

    Never raises; malformed patterns are logged and yield a matcher that
    never matches.
    """
    if not isinstance(pattern, str):
        _logger.warning("Invalid topic filter %r: not a string", pattern)
        return TopicMatcher(pattern=str(pattern), regex=None, level_count=0, requires_level_count=False)
    return _compile(pattern)


def topic_matches_filter(pattern: str, topic: str) -> bool:
    """Return whether *topic* matches the filter *pattern*."""
    return compile_topic_filter(pattern).test(topic)
