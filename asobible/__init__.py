"""
asobible — ASO Metadata Scoring & Rule-Inheritance Engine

Scores app-store listing text (title, subtitle, description) against a
rule set merged from base, vertical, market and client layers.

Public API:
  - AuditEngine:        Runs one audit, returns a UnifiedAuditResult
  - create_engine:      Engine over the configured rule store
  - RuleSetMerger:      Layered override merge with TTL cache and fallback
  - RuleSetCache:       Scope-keyed snapshot cache (pass it in, no singleton)
  - ListingMetadata:    Input bundle
  - InMemoryRuleStore:  Dictionary-backed rule store
  - get_rule_store:     Rule store factory

Usage:
    from asobible import create_engine
    engine = create_engine()
    result = engine.audit({"title": "FitTrack: Workout Log", "locale": "en-US"})
    print(result.overall_score, result.intent_coverage.fallback_mode)
"""

__version__ = "1.0.0"

from asobible.cache import RuleSetCache
from asobible.engine import AuditEngine, UnifiedAuditResult, create_engine
from asobible.errors import (
    AsoEngineError,
    InvalidListingInput,
    LeakDetected,
    MissingScopeConfig,
    OverrideOutOfBounds,
    PatternSourceDegraded,
    RuleStoreUnavailable,
    TokenizationFailure,
)
from asobible.intent import FALLBACK_PATTERNS, Fallback, FromStore, IntentPattern
from asobible.ruleset import MergedRuleSet, RuleSetMerger, ScopeKey
from asobible.schemas import ListingMetadata, OverrideDocument
from asobible.store import RuleStore, Scope
from asobible.store.factory import get_rule_store
from asobible.store.memory import InMemoryRuleStore

__all__ = [
    "AuditEngine",
    "UnifiedAuditResult",
    "create_engine",
    "RuleSetCache",
    "RuleSetMerger",
    "MergedRuleSet",
    "ScopeKey",
    "ListingMetadata",
    "OverrideDocument",
    "IntentPattern",
    "FromStore",
    "Fallback",
    "FALLBACK_PATTERNS",
    "RuleStore",
    "Scope",
    "InMemoryRuleStore",
    "get_rule_store",
    "AsoEngineError",
    "InvalidListingInput",
    "LeakDetected",
    "MissingScopeConfig",
    "OverrideOutOfBounds",
    "PatternSourceDegraded",
    "RuleStoreUnavailable",
    "TokenizationFailure",
]
