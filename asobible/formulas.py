"""
Formula Composer — declared scoring formulas.

Every score the engine publishes above rule level comes from one of
the formulas registered here. Weighted formulas must have component
weights summing to 1; this is checked when the module is imported.

  metadata_overall_score         title x 0.65 + subtitle x 0.35
  description_conversion_score   separate, never part of the overall score

Scopes may scale a formula's components through
MergedRuleSet.formula_multipliers; scaled weights are renormalized.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping, Optional, Sequence

from asobible.combos import ComboCoverage, ComboRecord
from asobible.intent import SUBTITLE_COVERAGE_WEIGHT, TITLE_COVERAGE_WEIGHT, IntentCoverage
from asobible.kpi import FAMILY_WEIGHTS, KPI_FORMULA
from asobible.rules import DESCRIPTION, ELEMENT_FORMULAS, SUBTITLE, TITLE, ElementScoreResult, rule_weights
from asobible.ruleset.merger import MergedRuleSet
from asobible.weights import resolve_weights, weighted_sum, weights_sum_to_one

WEIGHTED_SUM = "weighted_sum"
THRESHOLD = "threshold"


@dataclass(frozen=True)
class FormulaDefinition:
    id: str
    kind: str
    weights: Mapping[str, float]
    description: str = ""


def _weighted(id: str, weights: dict[str, float], description: str) -> FormulaDefinition:
    return FormulaDefinition(id=id, kind=WEIGHTED_SUM, weights=weights, description=description)


FORMULAS: dict[str, FormulaDefinition] = {f.id: f for f in (
    _weighted("metadata_overall_score", {TITLE: 0.65, SUBTITLE: 0.35},
              "Ranking score of the listing"),
    _weighted(ELEMENT_FORMULAS[TITLE], rule_weights(TITLE), "Title element score"),
    _weighted(ELEMENT_FORMULAS[SUBTITLE], rule_weights(SUBTITLE), "Subtitle element score"),
    _weighted(ELEMENT_FORMULAS[DESCRIPTION], rule_weights(DESCRIPTION),
              "Conversion score of the description (not ranking)"),
    _weighted("metadata_dimension_relevance",
              {"title_unique_keywords": 0.5, "subtitle_incremental_value": 0.5},
              "Keyword relevance across ranking fields"),
    _weighted("metadata_dimension_structure",
              {"title_character_usage": 0.4, "subtitle_character_usage": 0.3,
               "title_filler_penalty": 0.3},
              "Use of available space and absence of filler"),
    FormulaDefinition(
        id="metadata_dimension_learning", kind=THRESHOLD,
        weights={"generic_combos": 1.0},
        description="Discovery breadth from generic phrase count",
    ),
    _weighted("intent_coverage_overall",
              {TITLE: TITLE_COVERAGE_WEIGHT, SUBTITLE: SUBTITLE_COVERAGE_WEIGHT},
              "Intent coverage across ranking fields"),
    _weighted(KPI_FORMULA, FAMILY_WEIGHTS, "KPI family aggregate"),
)}


def validate_formulas(formulas: Mapping[str, FormulaDefinition] = FORMULAS) -> None:
    """Raise ValueError if any formula's weights do not sum to 1."""
    for formula in formulas.values():
        if not weights_sum_to_one(formula.weights):
            raise ValueError(
                f"Formula {formula.id} weights sum to {sum(formula.weights.values())}, not 1"
            )


validate_formulas()


def threshold_tier(count: int, thresholds: Mapping[str, int]) -> float:
    """Discovery tiers: >=excellent 100, >=good 75, >=moderate 50, else 20."""
    if count >= thresholds["excellent"]:
        return 100.0
    if count >= thresholds["good"]:
        return 75.0
    if count >= thresholds["moderate"]:
        return 50.0
    return 20.0


@dataclass
class ScoreBreakdown:
    """Composed scores with the weights actually used."""
    overall_score: float
    conversion_score: float
    dimensions: dict[str, float]
    weights: dict[str, dict[str, float]] = field(default_factory=dict)


class FormulaComposer:
    """Evaluates registered formulas under a merged rule set."""

    def __init__(self, formulas: Optional[Mapping[str, FormulaDefinition]] = None):
        self._formulas = dict(formulas or FORMULAS)
        validate_formulas(self._formulas)

    def get(self, formula_id: str) -> FormulaDefinition:
        if formula_id not in self._formulas:
            raise KeyError(f"Unknown formula: {formula_id}")
        return self._formulas[formula_id]

    def resolved_weights(self, formula_id: str, ruleset: MergedRuleSet) -> dict[str, float]:
        formula = self.get(formula_id)
        return resolve_weights(formula.weights, ruleset.formula_multipliers.get(formula_id))

    def evaluate(
        self, formula_id: str, values: Mapping[str, float], ruleset: MergedRuleSet,
    ) -> float:
        formula = self.get(formula_id)
        if formula.kind == THRESHOLD:
            count = int(sum(values.get(k, 0) for k in formula.weights))
            return threshold_tier(count, ruleset.discovery_thresholds)
        return round(weighted_sum(
            values, formula.weights, ruleset.formula_multipliers.get(formula_id),
        ), 2)

    def compose(
        self,
        elements: Mapping[str, ElementScoreResult],
        combos: Sequence[ComboRecord] | ComboCoverage,
        intent: IntentCoverage,
        ruleset: MergedRuleSet,
    ) -> ScoreBreakdown:
        """Overall score, conversion score and dimension sub-scores."""
        records = combos.combos if isinstance(combos, ComboCoverage) else combos
        rule_scores = {
            r.rule_id: r.score for e in elements.values() for r in e.rules
        }
        generic = sum(
            1 for c in records
            if c.combo_type == "generic" and (TITLE in c.elements or SUBTITLE in c.elements)
        )

        overall = self.evaluate(
            "metadata_overall_score",
            {TITLE: elements[TITLE].score, SUBTITLE: elements[SUBTITLE].score},
            ruleset,
        )
        conversion = elements[DESCRIPTION].score
        dimensions = {
            "relevance": self.evaluate("metadata_dimension_relevance", rule_scores, ruleset),
            "structure": self.evaluate("metadata_dimension_structure", rule_scores, ruleset),
            "learning": self.evaluate(
                "metadata_dimension_learning", {"generic_combos": generic}, ruleset,
            ),
            "intent": self.evaluate(
                "intent_coverage_overall",
                {TITLE: intent.title.coverage_score, SUBTITLE: intent.subtitle.coverage_score},
                ruleset,
            ),
        }
        return ScoreBreakdown(
            overall_score=overall,
            conversion_score=conversion,
            dimensions=dimensions,
            weights={
                "metadata_overall_score": {
                    k: round(v, 6)
                    for k, v in self.resolved_weights("metadata_overall_score", ruleset).items()
                },
            },
        )
