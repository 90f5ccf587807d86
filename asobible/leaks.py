"""
Leak Detection — cross-vertical contamination checks.

A rule set built for one vertical should not carry vocabulary that is
characteristic of another (finance terms in a language-learning rule
set, say). Leaks never block scoring. They are reported as warnings
on the merged rule set and on every audit that uses it.

Only contributions from vertical/market/client layers are scanned:
the base layer is shared by every vertical by definition.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Mapping, Optional

from asobible.errors import LeakDetected
from asobible.logging import get_logger

logger = get_logger("leaks")


# ============================================================
# VERTICAL VOCABULARY
# ============================================================

VERTICAL_SIGNATURES: dict[str, frozenset[str]] = {
    "language_learning": frozenset({
        "learn", "study", "lesson", "lessons", "course", "courses", "fluency",
        "fluent", "vocabulary", "grammar", "pronunciation", "spanish",
        "french", "german", "italian", "japanese", "korean", "chinese",
    }),
    "finance": frozenset({
        "invest", "investing", "investment", "trading", "trade", "stocks",
        "stock", "crypto", "portfolio", "dividend", "brokerage", "etf",
        "budget", "budgeting",
    }),
    "rewards": frozenset({
        "earn", "earning", "earnings", "redemption", "redeem", "cashback",
        "giftcard", "giftcards", "paypal", "payout", "points",
    }),
    "health": frozenset({
        "workout", "workouts", "fitness", "calorie", "calories", "diet",
        "yoga", "meditation", "steps", "weight", "nutrition",
    }),
    "dating": frozenset({
        "dating", "date", "singles", "match", "matches", "relationship",
        "flirt", "soulmate",
    }),
    "productivity": frozenset({
        "task", "tasks", "todo", "planner", "calendar", "notes", "reminder",
        "reminders", "organize", "workflow",
    }),
    "entertainment": frozenset({
        "movies", "series", "episodes", "streaming", "watch", "shows",
        "anime", "podcast", "podcasts",
    }),
}

# Store category -> verticals that legitimately serve it
CATEGORY_VERTICALS: dict[str, tuple[str, ...]] = {
    "education": ("language_learning",),
    "finance": ("finance",),
    "business": ("finance", "productivity"),
    "entertainment": ("entertainment", "rewards"),
    "lifestyle": ("rewards", "health", "dating"),
    "health & fitness": ("health",),
    "medical": ("health",),
    "productivity": ("productivity",),
    "social networking": ("dating",),
}

SEVERITY_FOR_SOURCE = {
    "token": "low",
    "intent_pattern": "medium",
    "template": "high",
}


@dataclass(frozen=True)
class LeakWarning:
    """One cross-vertical contamination finding."""
    type: str                   # "pattern_leak", "recommendation_leak", "vertical_mismatch"
    severity: str               # "low", "medium", "high"
    foreign_vertical: str
    layer: str                  # Layer that contributed the term, e.g. "client:acme"
    terms: tuple[str, ...]
    message: str


# ============================================================
# DETECTION
# ============================================================

def _foreign_hits(words: Iterable[str], selected: str) -> dict[str, list[str]]:
    """Group words by the foreign vertical they are characteristic of."""
    own = VERTICAL_SIGNATURES.get(selected, frozenset())
    hits: dict[str, list[str]] = {}
    for word in words:
        if word in own:
            continue
        for vertical, signature in VERTICAL_SIGNATURES.items():
            if vertical != selected and word in signature:
                hits.setdefault(vertical, [])
                if word not in hits[vertical]:
                    hits[vertical].append(word)
    return hits


def detect_leaks(
    vertical: Optional[str],
    token_contributions: Mapping[str, tuple[int, str]],
    pattern_contributions: Iterable[tuple[str, str]] = (),
    template_contributions: Iterable[tuple[str, str]] = (),
    high_value: int = 2,
) -> list[LeakWarning]:
    """
    Scan non-base contributions for another vertical's vocabulary.

    Args:
        vertical: Selected vertical. None disables detection.
        token_contributions: token -> (relevance, layer) for tokens set by non-base layers.
        pattern_contributions: (term, layer) pairs from store intent patterns.
        template_contributions: (message, layer) pairs from template overrides.
        high_value: Minimum relevance for a token to count.
    """
    if not vertical:
        return []

    found: list[LeakWarning] = []

    by_layer: dict[str, list[str]] = {}
    for token, (relevance, layer) in sorted(token_contributions.items()):
        if relevance >= high_value:
            by_layer.setdefault(layer, []).append(token)
    for layer, tokens in by_layer.items():
        for foreign, terms in _foreign_hits(tokens, vertical).items():
            found.append(_warning("pattern_leak", "token", foreign, layer, terms, vertical))

    pattern_layers: dict[str, list[str]] = {}
    for term, layer in pattern_contributions:
        pattern_layers.setdefault(layer, []).extend(term.split())
    for layer, words in sorted(pattern_layers.items()):
        for foreign, terms in _foreign_hits(words, vertical).items():
            found.append(_warning("pattern_leak", "intent_pattern", foreign, layer, terms, vertical))

    for message, layer in template_contributions:
        words = [w.strip(".,:;!?'\"()").lower() for w in message.split()]
        for foreign, terms in _foreign_hits(words, vertical).items():
            found.append(_warning("recommendation_leak", "template", foreign, layer, terms, vertical))

    for warning in found:
        logger.warning(
            "Leak detected: %s", warning.message,
            extra={"vertical": vertical, "warning_type": warning.type},
        )
    return sorted(found, key=lambda w: (w.type, w.layer, w.foreign_vertical))


def _warning(kind: str, source: str, foreign: str, layer: str,
             terms: list[str], selected: str) -> LeakWarning:
    return LeakWarning(
        type=kind,
        severity=SEVERITY_FOR_SOURCE[source],
        foreign_vertical=foreign,
        layer=layer,
        terms=tuple(sorted(terms)),
        message=str(LeakDetected(
            f"{layer} adds {foreign} vocabulary ({', '.join(sorted(terms))}) "
            f"to a {selected} rule set"
        )),
    )


def detect_vertical_mismatch(
    category: Optional[str], vertical: Optional[str],
) -> Optional[LeakWarning]:
    """Flag a vertical that does not serve the app's store category."""
    if not category or not vertical:
        return None
    expected = CATEGORY_VERTICALS.get(category.strip().lower())
    if expected is None or vertical in expected:
        return None
    return LeakWarning(
        type="vertical_mismatch",
        severity="medium",
        foreign_vertical=vertical,
        layer=f"vertical:{vertical}",
        terms=(),
        message=(
            f"Vertical {vertical} does not match category {category} "
            f"(expected {', '.join(expected)})"
        ),
    )


def vertical_for_category(category: Optional[str]) -> Optional[str]:
    """Default vertical for a store category, if there is an obvious one."""
    if not category:
        return None
    expected = CATEGORY_VERTICALS.get(category.strip().lower())
    return expected[0] if expected else None
