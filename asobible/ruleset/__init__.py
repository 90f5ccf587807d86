"""Rule-set inheritance: base layer, field merges and the merger."""

from asobible.ruleset.base import RecommendationTemplate
from asobible.ruleset.fields import RuleSetWarning
from asobible.ruleset.merger import MergedRuleSet, RuleSetMerger, ScopeKey, build_ruleset

__all__ = [
    "MergedRuleSet",
    "RecommendationTemplate",
    "RuleSetMerger",
    "RuleSetWarning",
    "ScopeKey",
    "build_ruleset",
]
