"""
Element Scoring Registry — per-element rule catalog.

Each listing element (title, subtitle, description) is scored by a
fixed catalog of rules. A rule turns measurements of the element
(tokens, combos, noise ratio, character usage) into a 0-100 score,
a pass/fail verdict and the evidence behind both.

The catalog is static. Scopes change rule behaviour only through the
merged rule set: bounded threshold overrides and clamped weight
multipliers on the element formulas. Nothing here is mutated at runtime.

Title and subtitle scores rank. The description score is a separate
conversion score and never feeds the overall ranking score.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence

from asobible.combos import ComboRecord
from asobible.relevance import high_value_tokens
from asobible.ruleset.merger import MergedRuleSet
from asobible.text import TextAnalysis
from asobible.weights import resolve_weights, weighted_sum

TITLE = "title"
SUBTITLE = "subtitle"
DESCRIPTION = "description"
ELEMENTS = (TITLE, SUBTITLE, DESCRIPTION)

CHARACTER_LIMITS: dict[str, dict[str, int]] = {
    "ios": {TITLE: 30, SUBTITLE: 30, DESCRIPTION: 4000},
    "android": {TITLE: 50, SUBTITLE: 80, DESCRIPTION: 4000},
}

ELEMENT_FORMULAS: dict[str, str] = {
    TITLE: "title_element_score",
    SUBTITLE: "subtitle_element_score",
    DESCRIPTION: "description_conversion_score",
}

HOOK_WORDS = frozenset({
    "discover", "experience", "transform", "achieve", "unlock",
    "revolutionize", "master",
})
CTA_VERBS = frozenset({"download", "try", "start", "get", "join", "subscribe"})
_FEATURE_PATTERN = re.compile(
    r"\b(features?|tools?|functions?|capabilit(?:y|ies)|benefits?)\b"
)
_BULLET_LINE = re.compile(r"^\s*(?:[•✓✔★*]|-\s)", re.MULTILINE)


# ============================================================
# DATA STRUCTURES
# ============================================================

@dataclass(frozen=True)
class TextElement:
    """One listing element for one audit call."""
    name: str
    text: str
    limit: int
    analysis: TextAnalysis
    error: Optional[str] = None     # Set when tokenization failed

    @property
    def char_count(self) -> int:
        return self.analysis.char_count

    @property
    def is_empty(self) -> bool:
        return self.analysis.is_empty


@dataclass
class RuleContext:
    """Everything an evaluator may look at."""
    element: TextElement
    ruleset: MergedRuleSet
    combos: Sequence[ComboRecord] = ()
    title: Optional[TextElement] = None

    def high_value(self, element: Optional[TextElement] = None) -> list[str]:
        target = element or self.element
        if target is None:
            return []
        return high_value_tokens(
            target.analysis.keywords, self.ruleset.token_relevance,
            self.ruleset.high_value_relevance,
        )

    def combos_in(self, element: str) -> list[ComboRecord]:
        return [c for c in self.combos if element in c.elements]


@dataclass
class Verdict:
    """What an evaluator returns."""
    score: float
    passed: bool
    message: str
    evidence: dict = field(default_factory=dict)


@dataclass(frozen=True)
class RuleDefinition:
    """A catalog entry. Immutable."""
    id: str
    element: str
    category: str
    weight: float
    evaluator: Callable[[RuleContext, dict], Verdict]
    threshold_keys: tuple[str, ...] = ()
    severity: str = "moderate"      # Recommendation tier when the rule fails
    label: str = ""


@dataclass
class RuleResult:
    rule_id: str
    element: str
    category: str
    score: float
    passed: bool
    message: str
    severity: str
    weight: float                   # Resolved weight inside the element formula
    evidence: dict = field(default_factory=dict)
    thresholds: dict = field(default_factory=dict)


@dataclass
class ElementScoreResult:
    element: str
    score: float
    rules: list[RuleResult]
    char_count: int
    limit: int
    token_count: int
    keywords: list[str]
    high_value_keywords: list[str]
    noise_ratio: float
    empty: bool
    error: Optional[str] = None

    def rule(self, rule_id: str) -> Optional[RuleResult]:
        for result in self.rules:
            if result.rule_id == rule_id:
                return result
        return None

    @property
    def failed(self) -> list[RuleResult]:
        return [r for r in self.rules if not r.passed]


# ============================================================
# EVALUATORS
# ============================================================

def _tier(count: int, tiers: Sequence[tuple[int, float]], top: float) -> float:
    """First score whose upper bound count fits under, else top."""
    for upper, score in tiers:
        if count <= upper:
            return score
    return top


def character_usage(ctx: RuleContext, th: dict) -> Verdict:
    element = ctx.element
    chars, limit = element.char_count, element.limit
    ratio = chars / limit if limit else 0.0
    evidence = {"chars": chars, "limit": limit, "usage_pct": round(ratio * 100, 1)}

    if ratio > 1.0:
        return Verdict(0, False, f"{chars}/{limit} characters: over the limit", evidence)
    if ratio < 0.5:
        score = 40
    elif ratio < 0.7:
        score = 60
    elif ratio < 0.9:
        score = 85
    else:
        score = 100
    passed = ratio >= th["character_usage.pass_ratio"]
    return Verdict(score, passed, f"{chars}/{limit} characters used", evidence)


def title_unique_keywords(ctx: RuleContext, th: dict) -> Verdict:
    relevance = ctx.ruleset.relevance
    unique = list(dict.fromkeys(
        t for t in ctx.element.analysis.keywords if relevance(t) >= 1
    ))
    high = ctx.high_value()
    avg_relevance = sum(relevance(t) for t in unique) / len(unique) if unique else 0.0
    score = min(80, len(unique) * 20) + min(30, avg_relevance * 10)
    passed = len(high) >= th["title_unique_keywords.min_unique"]
    return Verdict(
        min(100.0, score), passed,
        f"{len(unique)} unique keywords, {len(high)} high-value",
        {"unique_keywords": unique, "high_value": high,
         "avg_relevance": round(avg_relevance, 2)},
    )


def title_combo_coverage(ctx: RuleContext, th: dict) -> Verdict:
    phrases = [c.phrase for c in ctx.combos_in(TITLE)]
    score = _tier(len(phrases), ((0, 20), (2, 50), (5, 75)), 90)
    passed = len(phrases) >= th["title_combo_coverage.min_combos"]
    return Verdict(score, passed, f"{len(phrases)} keyword phrases", {"combos": phrases})


def filler_penalty(ctx: RuleContext, th: dict) -> Verdict:
    analysis = ctx.element.analysis
    noise = analysis.noise_ratio
    score = 100
    if noise > th["filler.high_noise"]:
        score -= 30
    elif noise > th["filler.moderate_noise"]:
        score -= 15
    noise_tokens = [t for t in analysis.tokens if t not in analysis.keywords]
    return Verdict(
        score, noise <= th["filler.moderate_noise"],
        f"{round(noise * 100)}% filler words",
        {"noise_ratio": round(noise, 4), "noise_tokens": noise_tokens},
    )


def subtitle_incremental_value(ctx: RuleContext, th: dict) -> Verdict:
    title_high = set(ctx.high_value(ctx.title)) if ctx.title else set()
    new = [t for t in ctx.high_value() if t not in title_high]
    score = _tier(len(new), ((0, 20), (1, 50), (2, 75)), 95)
    passed = len(new) >= th["subtitle_incremental_value.min_new"]
    return Verdict(
        score, passed, f"{len(new)} new high-value keywords",
        {"new_keywords": new, "title_high_value": sorted(title_high)},
    )


def subtitle_combo_coverage(ctx: RuleContext, th: dict) -> Verdict:
    new = [c.phrase for c in ctx.combos_in(SUBTITLE) if TITLE not in c.elements]
    score = _tier(len(new), ((0, 20), (2, 50), (5, 80)), 95)
    passed = len(new) >= th["subtitle_combo_coverage.min_new_combos"]
    return Verdict(score, passed, f"{len(new)} new keyword phrases", {"new_combos": new})


def subtitle_complementarity(ctx: RuleContext, th: dict) -> Verdict:
    title_high = set(ctx.high_value(ctx.title)) if ctx.title else set()
    subtitle_high = ctx.high_value()
    overlap = [t for t in subtitle_high if t in title_high]
    ratio = len(overlap) / len(subtitle_high) if subtitle_high else 0.0
    return Verdict(
        round((1 - ratio) * 100, 2),
        ratio < th["subtitle_complementarity.max_overlap"],
        f"{round(ratio * 100)}% of subtitle keywords repeat the title",
        {"overlap_ratio": round(ratio, 4), "overlap": overlap},
    )


def description_hook_strength(ctx: RuleContext, th: dict) -> Verdict:
    first = ctx.element.analysis.sentence_stats.first_sentence
    hooks = [w for w in first.lower().split() if w.strip(".,!?:;") in HOOK_WORDS]
    good_opening = 50 <= len(first) <= 150
    if hooks and good_opening:
        score = 90
    elif hooks:
        score = 75
    elif good_opening:
        score = 70
    else:
        score = 60
    return Verdict(
        score, bool(hooks),
        "opening hook found" if hooks else "no hook in opening sentence",
        {"hooks": [h.strip(".,!?:;") for h in hooks], "first_sentence_chars": len(first)},
    )


def description_feature_mentions(ctx: RuleContext, th: dict) -> Verdict:
    text = ctx.element.text.lower()
    mentions = len(_FEATURE_PATTERN.findall(text)) + len(_BULLET_LINE.findall(ctx.element.text))
    passed = mentions >= th["description_feature_mentions.min_features"]
    return Verdict(
        min(100, mentions * 15), passed, f"{mentions} feature mentions",
        {"mentions": mentions},
    )


def description_cta_strength(ctx: RuleContext, th: dict) -> Verdict:
    ctas = [t for t in ctx.element.analysis.tokens if t in CTA_VERBS]
    passed = len(ctas) >= th["description_cta_strength.min_ctas"]
    return Verdict(
        min(100, len(ctas) * 25), passed, f"{len(ctas)} calls to action",
        {"ctas": ctas},
    )


def description_readability(ctx: RuleContext, th: dict) -> Verdict:
    stats = ctx.element.analysis.sentence_stats
    ease = stats.reading_ease
    return Verdict(
        ease, ease >= th["description_readability.min_ease"],
        f"reading ease {ease}",
        {"reading_ease": ease, "words_per_sentence": stats.words_per_sentence,
         "syllables_per_word": stats.syllables_per_word},
    )


# ============================================================
# CATALOG
# ============================================================

RULES: tuple[RuleDefinition, ...] = (
    RuleDefinition(
        "title_character_usage", TITLE, "ranking_structure", 0.25,
        character_usage, ("character_usage.pass_ratio",), "strong",
        "Title character usage",
    ),
    RuleDefinition(
        "title_unique_keywords", TITLE, "ranking_keyword", 0.30,
        title_unique_keywords, ("title_unique_keywords.min_unique",), "critical",
        "Title unique keywords",
    ),
    RuleDefinition(
        "title_combo_coverage", TITLE, "ranking_keyword", 0.30,
        title_combo_coverage, ("title_combo_coverage.min_combos",), "moderate",
        "Title combo coverage",
    ),
    RuleDefinition(
        "title_filler_penalty", TITLE, "ranking_structure", 0.15,
        filler_penalty, ("filler.moderate_noise", "filler.high_noise"), "strong",
        "Title filler words",
    ),
    RuleDefinition(
        "subtitle_character_usage", SUBTITLE, "ranking_structure", 0.20,
        character_usage, ("character_usage.pass_ratio",), "moderate",
        "Subtitle character usage",
    ),
    RuleDefinition(
        "subtitle_incremental_value", SUBTITLE, "ranking_keyword", 0.40,
        subtitle_incremental_value, ("subtitle_incremental_value.min_new",), "critical",
        "Subtitle incremental value",
    ),
    RuleDefinition(
        "subtitle_combo_coverage", SUBTITLE, "ranking_keyword", 0.25,
        subtitle_combo_coverage, ("subtitle_combo_coverage.min_new_combos",), "moderate",
        "Subtitle combo coverage",
    ),
    RuleDefinition(
        "subtitle_complementarity", SUBTITLE, "ranking_keyword", 0.15,
        subtitle_complementarity, ("subtitle_complementarity.max_overlap",), "strong",
        "Subtitle complementarity",
    ),
    RuleDefinition(
        "description_hook_strength", DESCRIPTION, "conversion", 0.30,
        description_hook_strength, (), "moderate",
        "Description hook",
    ),
    RuleDefinition(
        "description_feature_mentions", DESCRIPTION, "conversion", 0.25,
        description_feature_mentions, ("description_feature_mentions.min_features",),
        "moderate", "Description feature mentions",
    ),
    RuleDefinition(
        "description_cta_strength", DESCRIPTION, "conversion", 0.20,
        description_cta_strength, ("description_cta_strength.min_ctas",), "optional",
        "Description calls to action",
    ),
    RuleDefinition(
        "description_readability", DESCRIPTION, "conversion", 0.25,
        description_readability, ("description_readability.min_ease",), "optional",
        "Description readability",
    ),
)


def rule_weights(element: str) -> dict[str, float]:
    """Declared weights of an element's rules (the element formula)."""
    return {r.id: r.weight for r in RULES if r.element == element}


# ============================================================
# REGISTRY
# ============================================================

class ElementScoringRegistry:
    """Runs the rule catalog against listing elements."""

    def __init__(self, rules: Sequence[RuleDefinition] = RULES):
        self._rules = tuple(rules)

    def rules_for(self, element: str) -> list[RuleDefinition]:
        return [r for r in self._rules if r.element == element]

    def evaluate(
        self,
        element: TextElement,
        ruleset: MergedRuleSet,
        combos: Sequence[ComboRecord] = (),
        title: Optional[TextElement] = None,
    ) -> ElementScoreResult:
        """Score one element. An empty or failed element scores zero on every rule."""
        ctx = RuleContext(element=element, ruleset=ruleset, combos=combos, title=title)
        rules = self.rules_for(element.name)
        formula_id = ELEMENT_FORMULAS[element.name]
        base = {r.id: r.weight for r in rules}
        weights = resolve_weights(base, ruleset.formula_multipliers.get(formula_id))

        results: list[RuleResult] = []
        for rule in rules:
            thresholds = {k: ruleset.threshold(k) for k in rule.threshold_keys}
            if element.is_empty:
                verdict = Verdict(0, False, element.error or f"{element.name} is empty")
            else:
                verdict = rule.evaluator(ctx, thresholds)
            results.append(RuleResult(
                rule_id=rule.id,
                element=element.name,
                category=rule.category,
                score=round(max(0.0, min(100.0, float(verdict.score))), 2),
                passed=verdict.passed,
                message=verdict.message,
                severity=rule.severity,
                weight=round(weights[rule.id], 6),
                evidence=verdict.evidence,
                thresholds=thresholds,
            ))

        score = weighted_sum(
            {r.rule_id: r.score for r in results}, base,
            ruleset.formula_multipliers.get(formula_id),
        )
        return ElementScoreResult(
            element=element.name,
            score=round(score, 2),
            rules=results,
            char_count=element.char_count,
            limit=element.limit,
            token_count=len(element.analysis.tokens),
            keywords=list(element.analysis.keywords),
            high_value_keywords=ctx.high_value(),
            noise_ratio=round(element.analysis.noise_ratio, 4),
            empty=element.is_empty,
            error=element.error,
        )
