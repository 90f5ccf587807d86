"""
Token Relevance — how much a single word is worth for ranking.

Levels:
  0  low-value (generic superlatives, numbers, offers)
  1  neutral (default)
  2  domain noun
  3  core intent verb / language
"""

from __future__ import annotations

import math
import re
from typing import Mapping

MIN_RELEVANCE = 0
MAX_RELEVANCE = 3
DEFAULT_RELEVANCE = 1
HIGH_VALUE_RELEVANCE = 2

LOW_VALUE_PATTERN = re.compile(
    r"^(best|top|great|good|new|latest|free|premium|pro|plus|lite|\d+|one|two|three)$"
)


def clamp_relevance(value: float) -> int:
    """Floor and bound a relevance value into 0..3. NaN falls back to the default."""
    if isinstance(value, float) and not math.isfinite(value):
        if math.isnan(value):
            return DEFAULT_RELEVANCE
        return MAX_RELEVANCE if value > 0 else MIN_RELEVANCE
    try:
        level = int(value)
    except (TypeError, ValueError, OverflowError):
        return DEFAULT_RELEVANCE
    return max(MIN_RELEVANCE, min(MAX_RELEVANCE, level))


def token_relevance(token: str, overrides: Mapping[str, int] | None = None) -> int:
    """Relevance of a token. Overrides always win."""
    if overrides and token in overrides:
        return overrides[token]
    if LOW_VALUE_PATTERN.match(token):
        return 0
    return DEFAULT_RELEVANCE


def high_value_tokens(
    tokens,
    overrides: Mapping[str, int] | None = None,
    min_relevance: int = HIGH_VALUE_RELEVANCE,
) -> list[str]:
    """Unique tokens at or above min_relevance, in first-seen order."""
    seen: dict[str, None] = {}
    for token in tokens:
        if token not in seen and token_relevance(token, overrides) >= min_relevance:
            seen[token] = None
    return list(seen)
