"""
Combo Engine — multi-word keyword phrases.

A combo is a contiguous 2-4 token window from one listing element.
Windows made only of stopwords are dropped, and the rest are
deduplicated by normalized phrase before anything classifies them.
Records keep first-appearance order so output is stable run to run.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Callable, Iterable, Mapping, Optional, Sequence

from asobible.intent import PatternSource, footprint_bucket
from asobible.text import tokenize

MIN_COMBO_LENGTH = 2
MAX_COMBO_LENGTH = 4
MAX_COMBOS_PER_ELEMENT = 500

# Time-bound, offer and version words make a phrase low value
LOW_VALUE_WORDS: frozenset[str] = frozenset({
    "today", "now", "new", "latest", "sale", "discount", "offer", "deal",
    "deals", "version", "update", "beta", "edition", "2023", "2024", "2025",
    "2026",
})

_BRAND_SEPARATOR = re.compile(r"\s*[:|]\s*|\s+[-–—]\s+")


@dataclass(frozen=True)
class ComboRecord:
    """One deduplicated keyword phrase."""
    phrase: str
    tokens: tuple[str, ...]
    frequency: int
    elements: tuple[str, ...]           # Elements the phrase occurs in
    combo_type: str                     # "branded", "generic", "low_value"
    intent_class: str                   # "learning", "outcome", "brand", "noise"

    @property
    def length(self) -> int:
        return len(self.tokens)

    @property
    def key(self) -> str:
        """Dedup key: the normalized phrase."""
        return self.phrase


def normalize_phrase(tokens: Iterable[str]) -> str:
    return " ".join(t.strip().lower() for t in tokens if t.strip())


def brand_tokens(title: Optional[str]) -> tuple[str, ...]:
    """Tokens of the title's leading segment when the title is "Brand: rest"."""
    if not title:
        return ()
    parts = _BRAND_SEPARATOR.split(title.strip(), maxsplit=1)
    if len(parts) < 2 or not parts[1]:
        return ()
    return tuple(tokenize(parts[0]))


def windows(tokens: Sequence[str]) -> Iterable[tuple[str, ...]]:
    """Every contiguous 2-4 token window, shortest first per start position."""
    for start in range(len(tokens)):
        for size in range(MIN_COMBO_LENGTH, MAX_COMBO_LENGTH + 1):
            if start + size > len(tokens):
                break
            yield tuple(tokens[start:start + size])


def classify_combo_type(
    tokens: Sequence[str],
    relevance: Callable[[str], int],
    brand: frozenset[str] = frozenset(),
) -> str:
    if brand and any(t in brand for t in tokens):
        return "branded"
    if tokens[0].isdigit() or any(t in LOW_VALUE_WORDS for t in tokens):
        return "low_value"
    if sum(relevance(t) for t in tokens) == 0:
        return "low_value"
    return "generic"


def generate_combos(
    elements: Mapping[str, Sequence[str]],
    stopwords: frozenset[str],
    source: PatternSource,
    relevance: Callable[[str], int],
    brand: Iterable[str] = (),
    max_per_element: int = MAX_COMBOS_PER_ELEMENT,
) -> list[ComboRecord]:
    """
    Generate deduplicated combos for each element.

    Args:
        elements: element name -> tokens, in element order (title first).
        stopwords: Windows made only of these are discarded.
        source: Active intent patterns, used for the footprint tag.
        relevance: Token relevance lookup.
        brand: Brand tokens (see brand_tokens()).
        max_per_element: Cap on unique phrases taken from one element.
    """
    brand_set = frozenset(brand)
    order: list[str] = []
    tokens_for: dict[str, tuple[str, ...]] = {}
    frequency: dict[str, int] = {}
    seen_in: dict[str, list[str]] = {}

    for element, tokens in elements.items():
        unique_here: set[str] = set()
        for window in windows(tokens):
            if all(t in stopwords for t in window):
                continue
            phrase = normalize_phrase(window)
            if phrase not in unique_here:
                if len(unique_here) >= max_per_element:
                    continue
                unique_here.add(phrase)
            if phrase not in tokens_for:
                order.append(phrase)
                tokens_for[phrase] = window
                frequency[phrase] = 0
                seen_in[phrase] = []
            frequency[phrase] += 1
            if element not in seen_in[phrase]:
                seen_in[phrase].append(element)

    return [
        ComboRecord(
            phrase=phrase,
            tokens=tokens_for[phrase],
            frequency=frequency[phrase],
            elements=tuple(seen_in[phrase]),
            combo_type=classify_combo_type(tokens_for[phrase], relevance, brand_set),
            intent_class=footprint_bucket(phrase, source),
        )
        for phrase in order
    ]


@dataclass
class ComboCoverage:
    """Combo statistics reported on the audit result."""
    total: int
    by_element: dict[str, int]
    subtitle_new: int                   # Subtitle phrases not already in the title
    by_type: dict[str, int]
    by_intent_class: dict[str, int]
    fallback_mode: bool
    combos: list[ComboRecord] = field(default_factory=list)

    def type_ratio(self, combo_type: str) -> float:
        return self.by_type.get(combo_type, 0) / self.total if self.total else 0.0


def combo_coverage(records: Sequence[ComboRecord], source: PatternSource) -> ComboCoverage:
    by_element: dict[str, int] = {}
    by_type = {"branded": 0, "generic": 0, "low_value": 0}
    by_class = {"learning": 0, "outcome": 0, "brand": 0, "noise": 0}
    subtitle_new = 0
    for record in records:
        for element in record.elements:
            by_element[element] = by_element.get(element, 0) + 1
        if "subtitle" in record.elements and "title" not in record.elements:
            subtitle_new += 1
        by_type[record.combo_type] += 1
        by_class[record.intent_class] += 1
    return ComboCoverage(
        total=len(records),
        by_element=by_element,
        subtitle_new=subtitle_new,
        by_type=by_type,
        by_intent_class=by_class,
        fallback_mode=source.fallback_mode,
        combos=list(records),
    )
