"""
Recommendation Engine — from deficiencies to ranked advice.

Walks rule failures, KPI family deficiencies and combo/intent gaps,
assigns each a severity tier with fixed count/threshold rules, and
renders a message from the merged rule set's templates (which a
vertical or client layer may have rewritten).

Output is deduplicated by id and ranked by impact, then id, so the
same audit always yields the same list.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping, Optional

from asobible.combos import ComboCoverage
from asobible.intent import COMMERCIAL, INFORMATIONAL, TRANSACTIONAL, IntentCoverage
from asobible.kpi import KPIResult
from asobible.logging import get_logger
from asobible.rules import DESCRIPTION, SUBTITLE, TITLE, ElementScoreResult
from asobible.ruleset.merger import MergedRuleSet

logger = get_logger("recommendations")

SEVERITY_IMPACT: dict[str, int] = {
    "critical": 90,
    "strong": 70,
    "moderate": 40,
    "optional": 20,
}

_KPI_FAMILY_CATEGORY = {
    "clarity_structure": "ranking_structure",
    "keyword_architecture": "ranking_keyword",
    "hook_strength": "conversion",
    "brand_vs_generic": "brand_alignment",
    "psychology_alignment": "conversion",
    "intent_quality": "intent",
}

_MISSING_INTENT = (
    (INFORMATIONAL, "intent_missing_informational", "moderate"),
    (COMMERCIAL, "intent_missing_commercial", "optional"),
    (TRANSACTIONAL, "intent_missing_transactional", "optional"),
)


@dataclass
class Recommendation:
    id: str
    category: str       # ranking_keyword, ranking_structure, conversion, brand_alignment, intent
    severity: str       # critical, strong, moderate, optional
    impact_score: int
    message: str
    source: str         # rule, kpi, combo, intent
    element: Optional[str] = None
    evidence: dict = field(default_factory=dict)


class _Placeholders(dict):
    """Leaves unknown {placeholders} in place instead of raising."""

    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


def render(template: str, values: Mapping) -> str:
    """Fill {placeholders}. A template that cannot be rendered is returned as written."""
    try:
        return template.format_map(_Placeholders(values))
    except (ValueError, TypeError, IndexError, AttributeError, KeyError) as e:
        logger.warning(
            "Recommendation template could not be rendered",
            extra={"error": f"{type(e).__name__}: {e}"},
        )
        return template


class RecommendationEngine:
    """Turns scored results into a ranked recommendation list."""

    def generate(
        self,
        elements: Mapping[str, ElementScoreResult],
        combos: ComboCoverage,
        intent: IntentCoverage,
        kpis: KPIResult,
        ruleset: MergedRuleSet,
    ) -> list[Recommendation]:
        out: list[Recommendation] = []
        covered: set[str] = set()

        def emit(rec_id: str, severity: str, category: str, source: str,
                 element: Optional[str] = None, template: Optional[str] = None,
                 rule: Optional[str] = None, **values) -> None:
            tpl = ruleset.recommendation_templates.get(template or rec_id)
            message = render(tpl.message, values) if tpl else rec_id
            tier = tpl.severity if tpl and tpl.severity else severity
            out.append(Recommendation(
                id=rec_id,
                category=category,
                severity=tier,
                impact_score=SEVERITY_IMPACT[tier],
                message=message,
                source=source,
                element=element,
                evidence={k: v for k, v in values.items() if not isinstance(v, str) or k == "terms"},
            ))
            if rule:
                covered.add(rule)

        self._title(elements[TITLE], ruleset, emit)
        self._subtitle(elements[SUBTITLE], ruleset, emit)
        self._description(elements[DESCRIPTION], emit)
        self._combos(combos, ruleset, emit)
        self._intent(intent, emit)
        self._kpis(kpis, ruleset, emit)

        # Anything that failed without a dedicated recommendation
        for element in (TITLE, SUBTITLE, DESCRIPTION):
            result = elements[element]
            if result.empty:
                continue
            for rule in result.failed:
                if rule.rule_id not in covered:
                    emit(f"rule_failed:{rule.rule_id}", "optional",
                         "conversion" if element == DESCRIPTION else "ranking_keyword",
                         "rule", element, template="rule_failed", rule=rule.rule_id,
                         detail=rule.message, rule_name=rule.rule_id.replace("_", " "))

        return rank(out)

    # --------------------------------------------------------
    # Sources
    # --------------------------------------------------------

    @staticmethod
    def _usage(result: ElementScoreResult) -> tuple[int, int, int]:
        pct = round(result.char_count / result.limit * 100) if result.limit else 0
        return result.char_count, result.limit, pct

    def _title(self, title: ElementScoreResult, ruleset: MergedRuleSet, emit) -> None:
        high = len(title.high_value_keywords)
        if high <= 1:
            emit("title_low_high_value_keywords", "critical", "ranking_keyword", "rule",
                 TITLE, rule="title_unique_keywords", count=high)
        elif high == 2:
            emit("title_moderate_high_value_keywords", "moderate", "ranking_keyword", "rule",
                 TITLE, rule="title_unique_keywords", count=high)
        if title.empty:
            return

        chars, limit, pct = self._usage(title)
        if chars > limit:
            emit("title_overflow", "critical", "ranking_structure", "rule", TITLE,
                 rule="title_character_usage", chars=chars, limit=limit, pct=pct)
        elif pct < ruleset.threshold("character_usage.pass_ratio") * 100:
            emit("title_underutilized_characters", "strong", "ranking_structure", "rule",
                 TITLE, rule="title_character_usage", chars=chars, limit=limit, pct=pct)

        if title.noise_ratio > ruleset.threshold("recommendations.noise_ratio"):
            emit("title_high_noise_ratio", "strong", "ranking_structure", "rule", TITLE,
                 rule="title_filler_penalty", pct=round(title.noise_ratio * 100))

        combo_rule = title.rule("title_combo_coverage")
        if combo_rule is not None and not combo_rule.passed:
            emit("title_low_combo_coverage", "moderate", "ranking_keyword", "rule", TITLE,
                 rule="title_combo_coverage", count=len(combo_rule.evidence.get("combos", [])))

    def _subtitle(self, subtitle: ElementScoreResult, ruleset: MergedRuleSet, emit) -> None:
        if subtitle.empty:
            emit("subtitle_empty", "critical", "ranking_keyword", "rule", SUBTITLE)
            return

        chars, limit, pct = self._usage(subtitle)
        if chars > limit:
            emit("subtitle_overflow", "critical", "ranking_structure", "rule", SUBTITLE,
                 rule="subtitle_character_usage", chars=chars, limit=limit, pct=pct)
        elif pct < ruleset.threshold("character_usage.pass_ratio") * 100:
            emit("subtitle_underutilized_characters", "moderate", "ranking_structure", "rule",
                 SUBTITLE, rule="subtitle_character_usage", chars=chars, limit=limit, pct=pct)

        incremental = subtitle.rule("subtitle_incremental_value")
        new = len(incremental.evidence.get("new_keywords", [])) if incremental else 0
        if new == 0:
            emit("subtitle_no_incremental_keywords", "critical", "ranking_keyword", "rule",
                 SUBTITLE, rule="subtitle_incremental_value", count=0)
        elif new == 1:
            emit("subtitle_low_incremental_keywords", "strong", "ranking_keyword", "rule",
                 SUBTITLE, rule="subtitle_incremental_value", count=1)

        overlap = subtitle.rule("subtitle_complementarity")
        if overlap is not None and not overlap.passed:
            emit("subtitle_high_overlap", "strong", "ranking_keyword", "rule", SUBTITLE,
                 rule="subtitle_complementarity",
                 pct=round(overlap.evidence.get("overlap_ratio", 0) * 100),
                 terms=", ".join(overlap.evidence.get("overlap", [])))

        if subtitle.noise_ratio > ruleset.threshold("recommendations.noise_ratio"):
            emit("subtitle_high_noise_ratio", "moderate", "ranking_structure", "rule",
                 SUBTITLE, pct=round(subtitle.noise_ratio * 100))

    def _description(self, description: ElementScoreResult, emit) -> None:
        if description.empty:
            emit("description_empty", "strong", "conversion", "rule", DESCRIPTION)
            return

        checks = (
            ("description_hook_strength", "description_weak_hook", "moderate", None),
            ("description_feature_mentions", "description_no_features", "moderate", "mentions"),
            ("description_cta_strength", "description_weak_cta", "optional", "ctas"),
            ("description_readability", "description_low_readability", "optional", "reading_ease"),
        )
        for rule_id, rec_id, severity, evidence_key in checks:
            result = description.rule(rule_id)
            if result is None or result.passed:
                continue
            value = result.evidence.get(evidence_key) if evidence_key else None
            count = len(value) if isinstance(value, list) else value
            emit(rec_id, severity, "conversion", "rule", DESCRIPTION, rule=rule_id,
                 count=count, score=result.evidence.get("reading_ease"))

    def _combos(self, combos: ComboCoverage, ruleset: MergedRuleSet, emit) -> None:
        ranking = [c for c in combos.combos if TITLE in c.elements or SUBTITLE in c.elements]
        total = len(ranking)
        generic = sum(1 for c in ranking if c.combo_type == "generic")
        branded = sum(1 for c in ranking if c.combo_type == "branded")
        low_value = sum(1 for c in ranking if c.combo_type == "low_value")

        if total and branded / total > 0.5:
            emit("combo_too_brand_focused", "moderate", "brand_alignment", "combo",
                 pct=round(branded / total * 100))
        if generic < ruleset.discovery_thresholds["good"]:
            emit("combo_low_generic_coverage", "strong", "ranking_keyword", "combo",
                 count=generic)
        if total and low_value / total > 0.3:
            emit("combo_low_value_dominance", "moderate", "ranking_keyword", "combo",
                 pct=round(low_value / total * 100))

    def _intent(self, intent: IntentCoverage, emit) -> None:
        if intent.combined.total:
            present = set(intent.combined.present)
            for category, rec_id, severity in _MISSING_INTENT:
                if category not in present:
                    emit(rec_id, severity, "intent", "intent", fallback_mode=intent.fallback_mode)
        if intent.fallback_mode:
            emit("intent_fallback_mode", "optional", "intent", "intent",
                 reason=intent.fallback_reason or "pattern store unavailable",
                 fallback_mode=True)

    def _kpis(self, kpis: KPIResult, ruleset: MergedRuleSet, emit) -> None:
        floor = ruleset.threshold("recommendations.kpi_family_floor")
        for family_id, family in kpis.families.items():
            if family.score >= floor:
                continue
            members = sorted(
                (kpis.kpis[k] for k in family.kpi_ids), key=lambda v: (v.normalized, v.id),
            )
            emit(f"kpi_{family_id}_low",
                 "strong" if family.score < floor / 2 else "moderate",
                 _KPI_FAMILY_CATEGORY.get(family_id, "ranking_keyword"), "kpi",
                 template="kpi_family_low",
                 family=family_id.replace("_", " ").capitalize(),
                 score=family.score,
                 kpis=", ".join(v.label or v.id for v in members[:2]),
                 degraded=family.degraded)


def rank(recommendations: list[Recommendation]) -> list[Recommendation]:
    """Deduplicate by id (highest impact wins) and order by impact, then id."""
    best: dict[str, Recommendation] = {}
    for rec in recommendations:
        current = best.get(rec.id)
        if current is None or rec.impact_score > current.impact_score:
            best[rec.id] = rec
    return sorted(best.values(), key=lambda r: (-r.impact_score, r.id))
