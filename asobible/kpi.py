"""
KPI Engine — normalized key-performance-indicator vector.

Every KPI is a small formula over shared primitives (tokens, combos,
intent distribution) computed once per audit. Raw values are
normalized to 0-100 against declared bounds, weighted inside their
family, and families are weighted into one KPI score.

Weights are never taken at face value from a scope: each KPI weight is
base weight x scope multiplier (clamped to 0.5-2.0), and both KPI and
family weights are renormalized so they still sum to 1.

When intent classification ran on the fallback pattern set, intent
KPIs are marked degraded and floored at a neutral 50 instead of being
reported as if full patterns were in use.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence

from asobible.combos import ComboRecord
from asobible.intent import (
    COMMERCIAL,
    INFORMATIONAL,
    INTENT_CATEGORIES,
    NAVIGATIONAL,
    TRANSACTIONAL,
    IntentCoverage,
    intent_entropy,
)
from asobible.logging import get_logger
from asobible.relevance import high_value_tokens
from asobible.ruleset.merger import MergedRuleSet
from asobible.text import TextAnalysis
from asobible.weights import clamp_multiplier, resolve_weights, weighted_sum

logger = get_logger("kpi")

HIGHER = "higher_is_better"
LOWER = "lower_is_better"
TARGET = "target_range"

INTENT_FALLBACK_FLOOR = 50.0
KPI_FORMULA = "kpi_overall_score"


# ============================================================
# VOCABULARY
# ============================================================

ACTION_VERBS = frozenset({
    "learn", "master", "speak", "practice", "improve", "discover",
    "unlock", "transform", "achieve", "build", "create", "track",
    "save", "boost", "gain", "reach", "grow", "start", "get",
})

BENEFIT_KEYWORDS = frozenset({
    "free", "easy", "fast", "simple", "powerful", "advanced",
    "professional", "complete", "ultimate", "perfect", "quick",
    "effective", "proven", "guaranteed", "unlimited", "premium",
})

URGENCY_WORDS = frozenset({
    "now", "today", "instant", "instantly", "immediate", "immediately",
    "quick", "quickly", "fast", "rapid", "rapidly",
})

SOCIAL_PROOF_WORDS = frozenset({
    "million", "millions", "thousand", "thousands", "top", "best",
    "trusted", "popular", "leading", "rated", "award",
})


# ============================================================
# PRIMITIVES
# ============================================================

@dataclass
class KPIPrimitives:
    """Shared measurements every KPI formula reads from."""
    title: TextAnalysis
    subtitle: TextAnalysis
    title_limit: int
    subtitle_limit: int
    title_high_value: list[str]
    subtitle_high_value: list[str]
    combos: list[ComboRecord]           # Title and subtitle combos only
    brand: tuple[str, ...]
    intent: IntentCoverage

    @property
    def ranking_tokens(self) -> tuple[str, ...]:
        return self.title.tokens + self.subtitle.tokens

    @property
    def ranking_keywords(self) -> tuple[str, ...]:
        return self.title.keywords + self.subtitle.keywords

    @property
    def subtitle_new_high_value(self) -> list[str]:
        title = set(self.title_high_value)
        return [t for t in self.subtitle_high_value if t not in title]


def build_primitives(
    title: TextAnalysis,
    subtitle: TextAnalysis,
    title_limit: int,
    subtitle_limit: int,
    combos: Sequence[ComboRecord],
    brand: Sequence[str],
    intent: IntentCoverage,
    ruleset: MergedRuleSet,
) -> KPIPrimitives:
    min_rel = ruleset.high_value_relevance
    return KPIPrimitives(
        title=title,
        subtitle=subtitle,
        title_limit=title_limit,
        subtitle_limit=subtitle_limit,
        title_high_value=high_value_tokens(title.keywords, ruleset.token_relevance, min_rel),
        subtitle_high_value=high_value_tokens(subtitle.keywords, ruleset.token_relevance, min_rel),
        combos=[c for c in combos if "title" in c.elements or "subtitle" in c.elements],
        brand=tuple(brand),
        intent=intent,
    )


# ============================================================
# KPI FORMULAS
# ============================================================

def _usage(chars: int, limit: int) -> float:
    if not limit:
        return 0.0
    pct = chars / limit * 100
    return pct if pct <= 100 else 0.0


def _density(analysis: TextAnalysis) -> float:
    return len(analysis.keywords) / len(analysis.tokens) if analysis.tokens else 0.0


def hook_strength(analysis: TextAnalysis) -> float:
    """Action verbs and benefit words, with a bonus for their share of keywords."""
    verbs = sum(1 for t in analysis.tokens if t in ACTION_VERBS)
    benefits = sum(1 for t in analysis.tokens if t in BENEFIT_KEYWORDS)
    meaningful = len(analysis.keywords)
    score = min(verbs * 30, 50) + min(benefits * 20, 30)
    if meaningful:
        score += min((verbs + benefits) / meaningful * 100, 20)
    return min(100.0, score)


def _log_signal(count: int) -> float:
    return float(min(100, round(math.log(count + 1) * 40)))


def _count(tokens: Sequence[str], vocabulary: frozenset[str]) -> int:
    return sum(1 for t in tokens if t in vocabulary)


def _redundancy(p: KPIPrimitives) -> float:
    seen: set[str] = set()
    repeats = 0
    for token in p.ranking_keywords:
        if token in seen:
            repeats += 1
        seen.add(token)
    return float(repeats * 10)


def _combo_ratio(p: KPIPrimitives, combo_type: str) -> float:
    if not p.combos:
        return 0.0
    return sum(1 for c in p.combos if c.combo_type == combo_type) / len(p.combos)


def _overbranding(p: KPIPrimitives) -> float:
    if not p.title.tokens or not p.brand:
        return 0.0
    return sum(1 for t in p.title.tokens if t in p.brand) / len(p.title.tokens)


def _intent_gap(p: KPIPrimitives) -> float:
    present = set(p.intent.combined.present)
    core = (INFORMATIONAL, COMMERCIAL, TRANSACTIONAL)
    return sum(1 for c in core if c not in present) / len(core) * 100


# ============================================================
# CATALOG
# ============================================================

@dataclass(frozen=True)
class KPIDefinition:
    id: str
    family: str
    formula: Callable[[KPIPrimitives], float]
    weight: float
    min_value: float
    max_value: float
    direction: str = HIGHER
    target: Optional[float] = None
    tolerance: float = 0.0
    intent: bool = False
    label: str = ""

    def normalize(self, raw: float) -> float:
        span = self.max_value - self.min_value
        if span <= 0:
            return 0.0
        if self.direction == HIGHER:
            score = (raw - self.min_value) / span * 100
        elif self.direction == LOWER:
            score = (self.max_value - raw) / span * 100
        else:
            distance = abs(raw - (self.target if self.target is not None else self.min_value))
            if distance <= self.tolerance:
                score = 100.0
            else:
                score = 100 - (distance - self.tolerance) / span * 200
        return max(0.0, min(100.0, score))


FAMILY_WEIGHTS: dict[str, float] = {
    "clarity_structure": 0.15,
    "keyword_architecture": 0.30,
    "hook_strength": 0.15,
    "brand_vs_generic": 0.10,
    "psychology_alignment": 0.10,
    "intent_quality": 0.20,
}

KPIS: tuple[KPIDefinition, ...] = (
    # --- Clarity & structure ---
    KPIDefinition("title_char_usage", "clarity_structure",
                  lambda p: _usage(p.title.char_count, p.title_limit), 0.30, 0, 100,
                  label="Title character usage (%)"),
    KPIDefinition("subtitle_char_usage", "clarity_structure",
                  lambda p: _usage(p.subtitle.char_count, p.subtitle_limit), 0.25, 0, 100,
                  label="Subtitle character usage (%)"),
    KPIDefinition("title_word_count", "clarity_structure",
                  lambda p: float(len(p.title.tokens)), 0.15, 0, 10, TARGET, 4, 2,
                  label="Title word count"),
    KPIDefinition("title_keyword_density", "clarity_structure",
                  lambda p: _density(p.title), 0.15, 0, 1,
                  label="Title keyword density"),
    KPIDefinition("subtitle_keyword_density", "clarity_structure",
                  lambda p: _density(p.subtitle), 0.15, 0, 1,
                  label="Subtitle keyword density"),

    # --- Keyword architecture ---
    KPIDefinition("title_high_value_keyword_count", "keyword_architecture",
                  lambda p: float(len(p.title_high_value)), 0.25, 0, 4,
                  label="High-value keywords in title"),
    KPIDefinition("subtitle_high_value_incremental_keywords", "keyword_architecture",
                  lambda p: float(len(p.subtitle_new_high_value)), 0.25, 0, 3,
                  label="New high-value keywords in subtitle"),
    KPIDefinition("title_noise_ratio", "keyword_architecture",
                  lambda p: p.title.noise_ratio, 0.15, 0, 1, LOWER,
                  label="Title filler ratio"),
    KPIDefinition("subtitle_noise_ratio", "keyword_architecture",
                  lambda p: p.subtitle.noise_ratio, 0.10, 0, 1, LOWER,
                  label="Subtitle filler ratio"),
    KPIDefinition("total_unique_keyword_coverage", "keyword_architecture",
                  lambda p: float(len(set(p.ranking_keywords))), 0.15, 0, 10,
                  label="Unique keywords across title and subtitle"),
    KPIDefinition("generic_combo_count", "keyword_architecture",
                  lambda p: float(sum(1 for c in p.combos if c.combo_type == "generic")),
                  0.10, 0, 8, label="Generic keyword phrases"),

    # --- Hook strength ---
    KPIDefinition("title_hook_strength", "hook_strength",
                  lambda p: hook_strength(p.title), 0.35, 0, 100,
                  label="Title hook strength"),
    KPIDefinition("subtitle_hook_strength", "hook_strength",
                  lambda p: hook_strength(p.subtitle), 0.35, 0, 100,
                  label="Subtitle hook strength"),
    KPIDefinition("benefit_density", "hook_strength",
                  lambda p: (_count(p.ranking_tokens, BENEFIT_KEYWORDS) / len(p.ranking_tokens)
                             if p.ranking_tokens else 0.0),
                  0.15, 0, 0.5, label="Benefit word density"),
    KPIDefinition("redundancy_penalty", "hook_strength",
                  _redundancy, 0.15, 0, 50, LOWER,
                  label="Repeated keywords"),

    # --- Brand vs generic ---
    KPIDefinition("generic_combo_ratio", "brand_vs_generic",
                  lambda p: _combo_ratio(p, "generic"), 0.50, 0, 1,
                  label="Share of generic phrases"),
    KPIDefinition("brand_combo_ratio", "brand_vs_generic",
                  lambda p: _combo_ratio(p, "branded"), 0.30, 0, 1, TARGET, 0.25, 0.15,
                  label="Share of branded phrases"),
    KPIDefinition("overbranding_indicator", "brand_vs_generic",
                  _overbranding, 0.20, 0, 1, LOWER,
                  label="Brand share of title words"),

    # --- Psychology ---
    KPIDefinition("urgency_signal", "psychology_alignment",
                  lambda p: _log_signal(_count(p.ranking_tokens, URGENCY_WORDS)), 0.30, 0, 100,
                  label="Urgency signal"),
    KPIDefinition("social_proof_signal", "psychology_alignment",
                  lambda p: _log_signal(_count(p.ranking_tokens, SOCIAL_PROOF_WORDS)), 0.30, 0, 100,
                  label="Social proof signal"),
    KPIDefinition("action_verb_density", "psychology_alignment",
                  lambda p: (_count(p.ranking_tokens, ACTION_VERBS) / len(p.ranking_tokens)
                             if p.ranking_tokens else 0.0),
                  0.40, 0, 0.5, label="Action verb density"),

    # --- Intent quality ---
    KPIDefinition("informational_intent_share", "intent_quality",
                  lambda p: p.intent.combined.share(INFORMATIONAL), 0.20, 0, 50, intent=True,
                  label="Informational intent share"),
    KPIDefinition("commercial_intent_share", "intent_quality",
                  lambda p: p.intent.combined.share(COMMERCIAL), 0.15, 0, 50, intent=True,
                  label="Commercial intent share"),
    KPIDefinition("transactional_intent_share", "intent_quality",
                  lambda p: p.intent.combined.share(TRANSACTIONAL), 0.15, 0, 50, intent=True,
                  label="Transactional intent share"),
    KPIDefinition("navigational_noise_ratio", "intent_quality",
                  lambda p: p.intent.combined.share(NAVIGATIONAL), 0.15, 0, 100, LOWER,
                  intent=True, label="Navigational share"),
    KPIDefinition("intent_balance_score", "intent_quality",
                  lambda p: intent_entropy(p.intent.combined), 0.15, 0, 100, intent=True,
                  label="Intent balance (entropy)"),
    KPIDefinition("intent_diversity_score", "intent_quality",
                  lambda p: len(p.intent.combined.present) / len(INTENT_CATEGORIES) * 100,
                  0.10, 0, 100, intent=True, label="Intent diversity"),
    KPIDefinition("intent_gap_index", "intent_quality",
                  _intent_gap, 0.10, 0, 100, LOWER, intent=True,
                  label="Missing core intents"),
)

KPI_IDS = tuple(k.id for k in KPIS)


# ============================================================
# RESULTS
# ============================================================

@dataclass
class KPIValue:
    id: str
    family: str
    raw: float
    normalized: float
    weight: float                   # Resolved weight inside the family
    multiplier: float               # Resolved scope multiplier, 0.5..2.0
    degraded: bool = False
    label: str = ""


@dataclass
class FamilyScore:
    id: str
    score: float
    weight: float                   # Resolved weight in the overall KPI score
    kpi_ids: list[str] = field(default_factory=list)
    degraded: bool = False


@dataclass
class KPIResult:
    kpis: dict[str, KPIValue]
    families: dict[str, FamilyScore]
    overall_score: float
    vector: list[float]             # Normalized values in catalog order
    degraded: bool
    fallback_mode: bool


# ============================================================
# ENGINE
# ============================================================

class KPIEngine:
    """Evaluates the KPI catalog."""

    def __init__(
        self,
        kpis: Sequence[KPIDefinition] = KPIS,
        family_weights: Optional[dict[str, float]] = None,
    ):
        self._kpis = tuple(kpis)
        self._family_weights = dict(family_weights or FAMILY_WEIGHTS)

    def resolved_multiplier(self, kpi_id: str, ruleset: MergedRuleSet) -> float:
        """Base multiplier (1.0) x scope override, clamped."""
        return clamp_multiplier(1.0 * ruleset.kpi_multiplier(kpi_id))

    def evaluate(self, primitives: KPIPrimitives, ruleset: MergedRuleSet) -> KPIResult:
        fallback = primitives.intent.fallback_mode
        values: dict[str, KPIValue] = {}

        for family in self._family_weights:
            members = [k for k in self._kpis if k.family == family]
            multipliers = {k.id: self.resolved_multiplier(k.id, ruleset) for k in members}
            weights = resolve_weights({k.id: k.weight for k in members}, multipliers)
            for kpi in members:
                raw = float(kpi.formula(primitives))
                normalized = kpi.normalize(raw)
                degraded = kpi.intent and fallback
                if degraded:
                    normalized = max(normalized, INTENT_FALLBACK_FLOOR)
                values[kpi.id] = KPIValue(
                    id=kpi.id,
                    family=family,
                    raw=round(raw, 4),
                    normalized=round(normalized, 2),
                    weight=round(weights[kpi.id], 6),
                    multiplier=multipliers[kpi.id],
                    degraded=degraded,
                    label=kpi.label,
                )

        family_multipliers = ruleset.formula_multipliers.get(KPI_FORMULA)
        family_weights = resolve_weights(self._family_weights, family_multipliers)
        families: dict[str, FamilyScore] = {}
        for family in self._family_weights:
            member_values = [v for v in values.values() if v.family == family]
            score = sum(v.normalized * v.weight for v in member_values)
            families[family] = FamilyScore(
                id=family,
                score=round(max(0.0, min(100.0, score)), 2),
                weight=round(family_weights[family], 6),
                kpi_ids=[v.id for v in member_values],
                degraded=any(v.degraded for v in member_values),
            )

        overall = weighted_sum(
            {f: s.score for f, s in families.items()},
            self._family_weights, family_multipliers,
        )
        if fallback:
            logger.debug("Intent KPIs computed in fallback mode", extra={"degraded": True})

        return KPIResult(
            kpis=values,
            families=families,
            overall_score=round(overall, 2),
            vector=[values[k.id].normalized for k in self._kpis if k.id in values],
            degraded=any(f.degraded for f in families.values()),
            fallback_mode=fallback,
        )
