"""Routing-filter matching for card topics: exact, `*` wildcard or `/regex/`."""

import logging
import re
from typing import Callable

logger = logging.getLogger(__name__)

Matcher = Callable[[object], bool]


def make_matcher(pattern: str, fallback: str = "") -> Matcher:
    """
    Build a predicate for topic strings.

    - ``/expr/`` is a regular expression searched in the topic; an invalid
      expression matches nothing.
    - a pattern containing ``*`` is a wildcard over the whole topic.
    - anything else is an exact match.
    - an empty pattern matches ``fallback`` exactly.
    """
    if pattern:
        if len(pattern) >= 2 and pattern.startswith("/") and pattern.endswith("/"):
            try:
                regex = re.compile(pattern[1:-1])
            except re.error as e:
                logger.warning("Invalid routing regex %r: %s", pattern, e)
                return lambda topic: False
            return lambda topic: isinstance(topic, str) and regex.search(topic) is not None
        if "*" in pattern:
            # only * is special; ? and [ stay literal
            wildcard = re.compile(
                "^" + ".*".join(re.escape(part) for part in pattern.split("*")) + "$"
            )
            return lambda topic: isinstance(topic, str) and wildcard.match(topic) is not None
        return lambda topic: topic == pattern
    return lambda topic: topic == fallback


def is_pattern(pattern: str) -> bool:
    """True if the filter is a wildcard or regex rather than a literal topic."""
    return "*" in pattern or (len(pattern) >= 2 and pattern.startswith("/") and pattern.endswith("/"))
