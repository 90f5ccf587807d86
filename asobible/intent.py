"""
Intent Engine — Search-Intent Classification

Maps tokens and combos to the four search-intent categories using
patterns served by the rule store. When the store cannot supply
patterns a small built-in set takes over and every result produced
from it carries fallback_mode=True.

Which pattern set is active is an explicit value, a PatternSource:
  - FromStore(patterns, scopes)   store-provided, full confidence
  - Fallback(reason)              built-in set, degraded confidence

The same PatternSource object is threaded through token-level
classification, combo tagging and the discovery footprint so those
metrics can never disagree about which patterns they used.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence, Union

INFORMATIONAL = "informational"
COMMERCIAL = "commercial"
TRANSACTIONAL = "transactional"
NAVIGATIONAL = "navigational"

INTENT_CATEGORIES = (INFORMATIONAL, COMMERCIAL, TRANSACTIONAL, NAVIGATIONAL)
UNCLASSIFIED = "unclassified"
MIXED = "mixed"
UNKNOWN = "unknown"

# Discovery footprint buckets
FOOTPRINT_BUCKETS = ("learning", "outcome", "brand", "noise")
_BUCKET_FOR_INTENT = {
    INFORMATIONAL: "learning",
    COMMERCIAL: "outcome",
    TRANSACTIONAL: "outcome",
    NAVIGATIONAL: "brand",
    MIXED: "noise",
    UNKNOWN: "noise",
}

TITLE_COVERAGE_WEIGHT = 0.6
SUBTITLE_COVERAGE_WEIGHT = 0.4


# ============================================================
# PATTERNS
# ============================================================

@dataclass(frozen=True)
class IntentPattern:
    """A set of terms that signal one intent category."""
    intent: str
    terms: tuple[str, ...]
    weight: float = 1.0
    priority: int = 100
    scope: str = "fallback"
    word_boundary: bool = True
    _regex: re.Pattern = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        if self.intent not in INTENT_CATEGORIES:
            raise ValueError(f"Unknown intent category: {self.intent}")
        if not self.terms:
            raise ValueError("IntentPattern needs at least one term")
        parts = [re.escape(t.lower()) for t in self.terms]
        if self.word_boundary:
            parts = [rf"\b{p}\b" for p in parts]
        object.__setattr__(self, "_regex", re.compile("|".join(parts)))

    @property
    def score(self) -> float:
        """Strength of one match: weight scaled by priority."""
        return self.weight * (1 + self.priority / 200)

    def matches(self, text: str) -> bool:
        return self._regex.search(text) is not None

    def signature(self) -> tuple:
        return (self.intent, self.terms)


def _fb(intent: str, terms: tuple[str, ...], weight: float, priority: int,
        word_boundary: bool = True) -> IntentPattern:
    return IntentPattern(intent, terms, weight, priority, "fallback", word_boundary)


# Built-in set used only when the store cannot supply patterns.
FALLBACK_PATTERNS: tuple[IntentPattern, ...] = (
    _fb(INFORMATIONAL, ("learn", "learning"), 1.2, 100),
    _fb(INFORMATIONAL, ("how to",), 1.3, 110, word_boundary=False),
    _fb(INFORMATIONAL, ("guide",), 1.1, 90),
    _fb(INFORMATIONAL, ("tutorial", "tutorials"), 1.1, 90),
    _fb(COMMERCIAL, ("best",), 1.5, 120),
    _fb(COMMERCIAL, ("top",), 1.4, 115),
    _fb(COMMERCIAL, ("compare", "vs"), 1.3, 110),
    _fb(TRANSACTIONAL, ("download",), 2.0, 150),
    _fb(TRANSACTIONAL, ("free",), 1.8, 140),
    _fb(TRANSACTIONAL, ("get",), 1.5, 130),
    _fb(NAVIGATIONAL, ("app",), 1.0, 50),
    _fb(NAVIGATIONAL, ("official",), 1.2, 60),
)

MAX_FALLBACK_PATTERNS = 15


def validate_fallback_patterns(patterns: Sequence[IntentPattern] = FALLBACK_PATTERNS) -> None:
    """Raise ValueError if the built-in set outgrows its cap."""
    if len(patterns) > MAX_FALLBACK_PATTERNS:
        raise ValueError(
            f"{len(patterns)} fallback patterns, at most {MAX_FALLBACK_PATTERNS} allowed"
        )


validate_fallback_patterns()


# ============================================================
# PATTERN SOURCE
# ============================================================

@dataclass(frozen=True)
class FromStore:
    """Patterns loaded from the rule store."""
    patterns: tuple[IntentPattern, ...]
    scopes: tuple[str, ...] = ()

    @property
    def fallback_mode(self) -> bool:
        return False

    @property
    def reason(self) -> Optional[str]:
        return None


@dataclass(frozen=True)
class Fallback:
    """Built-in patterns in use because the store could not supply any."""
    reason: str
    patterns: tuple[IntentPattern, ...] = FALLBACK_PATTERNS

    @property
    def fallback_mode(self) -> bool:
        return True


PatternSource = Union[FromStore, Fallback]


# ============================================================
# CLASSIFICATION
# ============================================================

@dataclass
class IntentDistribution:
    """How a list of tokens (or combos) spreads over the intent categories."""
    counts: dict[str, int]
    total: int
    coverage_score: float
    fallback_mode: bool
    patterns_used: int
    matches: dict[str, list[str]] = field(default_factory=dict)

    def share(self, intent: str) -> float:
        """Percentage (0..100) of items classified as intent."""
        if self.total == 0:
            return 0.0
        return self.counts.get(intent, 0) / self.total * 100

    @property
    def present(self) -> list[str]:
        return [c for c in INTENT_CATEGORIES if self.counts.get(c, 0) > 0]


def best_match(item: str, patterns: Sequence[IntentPattern]) -> tuple[Optional[str], float]:
    """Highest-scoring intent for one item. Ties go to the earlier pattern."""
    best_intent: Optional[str] = None
    best_score = 0.0
    for pattern in patterns:
        if pattern.score > best_score and pattern.matches(item):
            best_intent, best_score = pattern.intent, pattern.score
    return best_intent, best_score


def classify_intent(items: Iterable[str], source: PatternSource) -> IntentDistribution:
    """Classify each token or combo phrase against the active pattern set."""
    counts = {c: 0 for c in INTENT_CATEGORIES}
    counts[UNCLASSIFIED] = 0
    matches: dict[str, list[str]] = {c: [] for c in INTENT_CATEGORIES}
    total = 0

    for item in items:
        total += 1
        intent, _ = best_match(item, source.patterns)
        if intent is None:
            counts[UNCLASSIFIED] += 1
        else:
            counts[intent] += 1
            matches[intent].append(item)

    classified = total - counts[UNCLASSIFIED]
    coverage = round(classified / total * 100, 2) if total else 0.0
    return IntentDistribution(
        counts=counts,
        total=total,
        coverage_score=coverage,
        fallback_mode=source.fallback_mode,
        patterns_used=len(source.patterns),
        matches={k: v for k, v in matches.items() if v},
    )


def classify_combo_intent(phrase: str, source: PatternSource) -> str:
    """
    Dominant intent of a multi-word phrase.

    One matched category wins outright. With several, the top one wins
    only if it holds more than half the total match score; otherwise
    the combo is "mixed". No match at all is "unknown".
    """
    scores: dict[str, float] = {}
    for pattern in source.patterns:
        if pattern.matches(phrase):
            scores[pattern.intent] = scores.get(pattern.intent, 0.0) + pattern.score

    if not scores:
        return UNKNOWN
    if len(scores) == 1:
        return next(iter(scores))

    # Sort by score, then category order, so ties resolve the same way every run
    ranked = sorted(
        scores.items(), key=lambda kv: (-kv[1], INTENT_CATEGORIES.index(kv[0])),
    )
    top_intent, top_score = ranked[0]
    if top_score / sum(scores.values()) > 0.5:
        return top_intent
    return MIXED


def footprint_bucket(phrase: str, source: PatternSource) -> str:
    return _BUCKET_FOR_INTENT[classify_combo_intent(phrase, source)]


# ============================================================
# COVERAGE
# ============================================================

@dataclass
class DiscoveryFootprint:
    """Combo counts per footprint bucket."""
    counts: dict[str, int]
    total: int
    fallback_mode: bool

    def ratio(self, bucket: str) -> float:
        return self.counts.get(bucket, 0) / self.total if self.total else 0.0


def discovery_footprint(phrases: Iterable[str], source: PatternSource) -> DiscoveryFootprint:
    counts = {b: 0 for b in FOOTPRINT_BUCKETS}
    total = 0
    for phrase in phrases:
        counts[footprint_bucket(phrase, source)] += 1
        total += 1
    return DiscoveryFootprint(counts=counts, total=total, fallback_mode=source.fallback_mode)


@dataclass
class IntentCoverage:
    """Intent coverage of the ranking elements, with fallback diagnostics."""
    title: IntentDistribution
    subtitle: IntentDistribution
    combined: IntentDistribution
    overall_score: float
    fallback_mode: bool
    fallback_reason: Optional[str]
    active_pattern_count: int
    footprint: DiscoveryFootprint


def intent_coverage(
    title_items: Sequence[str],
    subtitle_items: Sequence[str],
    combo_phrases: Sequence[str],
    source: PatternSource,
) -> IntentCoverage:
    title = classify_intent(title_items, source)
    subtitle = classify_intent(subtitle_items, source)
    combined = classify_intent([*title_items, *subtitle_items], source)
    overall = (
        title.coverage_score * TITLE_COVERAGE_WEIGHT
        + subtitle.coverage_score * SUBTITLE_COVERAGE_WEIGHT
    )
    return IntentCoverage(
        title=title,
        subtitle=subtitle,
        combined=combined,
        overall_score=round(min(100.0, max(0.0, overall)), 2),
        fallback_mode=source.fallback_mode,
        fallback_reason=source.reason,
        active_pattern_count=len(source.patterns),
        footprint=discovery_footprint(combo_phrases, source),
    )


def intent_entropy(distribution: IntentDistribution) -> float:
    """Shannon entropy of the classified categories, normalized to 0..100."""
    classified = [distribution.counts.get(c, 0) for c in INTENT_CATEGORIES]
    total = sum(classified)
    if total == 0:
        return 0.0
    entropy = 0.0
    for count in classified:
        if count:
            p = count / total
            entropy -= p * math.log2(p)
    return entropy / math.log2(len(INTENT_CATEGORIES)) * 100
