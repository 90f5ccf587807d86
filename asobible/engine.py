"""
Audit Engine — Orchestrator

Runs one listing audit end to end, strictly forward:

    rule set -> text analysis -> combos/intent -> element rules
             -> KPIs -> formulas -> recommendations

One audit is sequential and holds no state between calls. The only
shared object is the merger's rule-set cache. The result is a fresh
UnifiedAuditResult that the caller owns; the engine keeps no reference.

The only error an audit raises is InvalidListingInput, for input of the
wrong type. Everything else degrades: store outages mark the result
degraded, pattern outages set fallback_mode, a failed element scores zero.
"""

from __future__ import annotations

import dataclasses
import time
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Union

from pydantic import ValidationError

from asobible.cache import RuleSetCache
from asobible.combos import ComboCoverage, brand_tokens, combo_coverage, generate_combos
from asobible.config import settings
from asobible.errors import InvalidListingInput, TokenizationFailure
from asobible.formulas import FormulaComposer
from asobible.intent import IntentCoverage, intent_coverage
from asobible.kpi import KPIEngine, KPIResult, build_primitives
from asobible.leaks import LeakWarning, detect_vertical_mismatch, vertical_for_category
from asobible.logging import get_logger
from asobible.recommendations import Recommendation, RecommendationEngine
from asobible.relevance import high_value_tokens
from asobible.rules import (
    CHARACTER_LIMITS,
    DESCRIPTION,
    ELEMENTS,
    SUBTITLE,
    TITLE,
    ElementScoreResult,
    ElementScoringRegistry,
    TextElement,
)
from asobible.ruleset.merger import MergedRuleSet, RuleSetMerger
from asobible.schemas.listing import ListingMetadata
from asobible.store import RuleStore
from asobible.text import EMPTY_ANALYSIS, analyze

logger = get_logger("engine")


# ============================================================
# RESULT
# ============================================================

@dataclass
class KeywordCoverage:
    title_keywords: list[str]
    subtitle_keywords: list[str]
    high_value_keywords: list[str]      # Title and subtitle, first-seen order
    subtitle_new_keywords: list[str]    # Subtitle keywords absent from the title
    unique_keyword_count: int


@dataclass
class AuditDiagnostics:
    """How the result was produced, and how far to trust it."""
    ruleset_version: str
    ruleset_source: str
    degraded_source: bool
    layers: list[str]
    fallback_mode: bool
    fallback_reason: Optional[str]
    active_pattern_count: int
    vertical: Optional[str]
    market: Optional[str]
    client_scope: Optional[str]
    platform: str
    leak_warnings: list[LeakWarning] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    element_errors: dict[str, str] = field(default_factory=dict)


@dataclass
class UnifiedAuditResult:
    """Everything one audit produced. Owned by the caller."""
    overall_score: float
    conversion_score: float
    dimensions: dict[str, float]
    elements: dict[str, ElementScoreResult]
    keyword_coverage: KeywordCoverage
    combo_coverage: ComboCoverage
    intent_coverage: IntentCoverage
    kpis: KPIResult
    recommendations: list[Recommendation]
    diagnostics: AuditDiagnostics
    engine_version: str = settings.ENGINE_VERSION

    @property
    def fallback_mode(self) -> bool:
        return self.intent_coverage.fallback_mode

    def to_dict(self) -> dict:
        """Plain, JSON-serializable record."""
        return _plain(self)


def _plain(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {
            f.name: _plain(getattr(value, f.name))
            for f in dataclasses.fields(value) if not f.name.startswith("_")
        }
    if isinstance(value, Mapping):
        return {str(k): _plain(v) for k, v in value.items()}
    if isinstance(value, (set, frozenset)):
        return sorted(_plain(v) for v in value)
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


# ============================================================
# ENGINE
# ============================================================

ListingInput = Union[ListingMetadata, Mapping[str, Any]]


def coerce_listing(listing: ListingInput) -> ListingMetadata:
    """Validate caller input. Wrong types fail fast with InvalidListingInput."""
    if isinstance(listing, ListingMetadata):
        return listing
    if not isinstance(listing, Mapping):
        raise InvalidListingInput(
            f"listing must be ListingMetadata or a mapping, got {type(listing).__name__}"
        )
    try:
        return ListingMetadata.model_validate(dict(listing))
    except ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise InvalidListingInput(f"invalid listing fields: {fields}") from e


class AuditEngine:
    """Audits store listings against scope-merged rule sets."""

    def __init__(
        self,
        merger: RuleSetMerger,
        registry: Optional[ElementScoringRegistry] = None,
        kpi_engine: Optional[KPIEngine] = None,
        composer: Optional[FormulaComposer] = None,
        recommender: Optional[RecommendationEngine] = None,
    ):
        self.merger = merger
        self.registry = registry or ElementScoringRegistry()
        self.kpi_engine = kpi_engine or KPIEngine()
        self.composer = composer or FormulaComposer()
        self.recommender = recommender or RecommendationEngine()

    def audit(
        self,
        listing: ListingInput,
        vertical: Optional[str] = None,
        market: Optional[str] = None,
        client_scope: Optional[str] = None,
    ) -> UnifiedAuditResult:
        """
        Audit one listing.

        Args:
            listing: ListingMetadata or a mapping with the same fields.
            vertical: Vertical scope. Defaults from the listing category.
            market: Market scope. Defaults from the locale region.
            client_scope: Client/app scope. Defaults to listing.app_scope_id.

        Raises:
            InvalidListingInput: listing is not a mapping or a text field is not a string.
        """
        start = time.perf_counter()
        listing = coerce_listing(listing)

        vertical = vertical or vertical_for_category(listing.category)
        market = market or listing.market or settings.DEFAULT_MARKET
        client_scope = client_scope or listing.app_scope_id
        ruleset = self.merger.get_active_ruleset(vertical, market, client_scope)
        source = ruleset.pattern_source
        limits = CHARACTER_LIMITS.get(listing.platform, CHARACTER_LIMITS[settings.DEFAULT_PLATFORM])

        # --- Text analysis, one element at a time ---
        texts = {TITLE: listing.title, SUBTITLE: listing.subtitle, DESCRIPTION: listing.description}
        elements: dict[str, TextElement] = {}
        element_errors: dict[str, str] = {}
        for name in ELEMENTS:
            try:
                elements[name] = self._analyze(name, texts[name], limits[name], ruleset)
            except TokenizationFailure as e:
                logger.warning("Element scored as empty", extra={"error": str(e)})
                element_errors[name] = e.reason
                elements[name] = TextElement(
                    name=name, text="", limit=limits[name], analysis=EMPTY_ANALYSIS,
                    error=e.reason,
                )

        # --- Combos and intent (one pattern source for all of them) ---
        brand = brand_tokens(listing.title)
        combos = generate_combos(
            {name: elements[name].analysis.tokens for name in ELEMENTS},
            ruleset.stopwords, source, ruleset.relevance, brand,
        )
        coverage = combo_coverage(combos, source)
        ranking_phrases = [
            c.phrase for c in combos if TITLE in c.elements or SUBTITLE in c.elements
        ]
        intent = intent_coverage(
            self._intent_items(elements[TITLE], ruleset),
            self._intent_items(elements[SUBTITLE], ruleset),
            ranking_phrases,
            source,
        )

        # --- Rules ---
        scores = {
            name: self.registry.evaluate(
                elements[name], ruleset, combos,
                title=elements[TITLE] if name == SUBTITLE else None,
            )
            for name in ELEMENTS
        }

        # --- KPIs, formulas, recommendations ---
        primitives = build_primitives(
            elements[TITLE].analysis, elements[SUBTITLE].analysis,
            limits[TITLE], limits[SUBTITLE], combos, brand, intent, ruleset,
        )
        kpis = self.kpi_engine.evaluate(primitives, ruleset)
        breakdown = self.composer.compose(scores, coverage, intent, ruleset)
        recommendations = self.recommender.generate(scores, coverage, intent, kpis, ruleset)

        result = UnifiedAuditResult(
            overall_score=breakdown.overall_score,
            conversion_score=breakdown.conversion_score,
            dimensions=breakdown.dimensions,
            elements=scores,
            keyword_coverage=self._keyword_coverage(primitives.title_high_value,
                                                    primitives.subtitle_high_value,
                                                    elements, ruleset),
            combo_coverage=coverage,
            intent_coverage=intent,
            kpis=kpis,
            recommendations=recommendations,
            diagnostics=self._diagnostics(
                ruleset, intent, listing, vertical, market, client_scope, element_errors,
            ),
        )

        logger.info(
            "Audit complete",
            extra={
                "overall_score": result.overall_score,
                "ruleset_version": ruleset.version,
                "fallback_mode": intent.fallback_mode,
                "degraded": ruleset.degraded_source,
                "duration_ms": round((time.perf_counter() - start) * 1000, 2),
            },
        )
        return result

    # --------------------------------------------------------
    # Helpers
    # --------------------------------------------------------

    @staticmethod
    def _analyze(name: str, text: Optional[str], limit: int,
                 ruleset: MergedRuleSet) -> TextElement:
        try:
            analysis = analyze(text, ruleset.stopwords, with_sentences=(name == DESCRIPTION))
        except (TypeError, ValueError, RecursionError) as e:
            raise TokenizationFailure(name, str(e)) from e
        return TextElement(name=name, text=text or "", limit=limit, analysis=analysis)

    @staticmethod
    def _intent_items(element: TextElement, ruleset: MergedRuleSet) -> list[str]:
        return [t for t in element.analysis.tokens if t not in ruleset.stopwords]

    @staticmethod
    def _keyword_coverage(title_high: list[str], subtitle_high: list[str],
                          elements: dict[str, TextElement],
                          ruleset: MergedRuleSet) -> KeywordCoverage:
        title_kw = list(dict.fromkeys(elements[TITLE].analysis.keywords))
        subtitle_kw = list(dict.fromkeys(elements[SUBTITLE].analysis.keywords))
        title_set = set(title_kw)
        return KeywordCoverage(
            title_keywords=title_kw,
            subtitle_keywords=subtitle_kw,
            high_value_keywords=high_value_tokens(
                [*title_high, *subtitle_high], ruleset.token_relevance,
                ruleset.high_value_relevance,
            ),
            subtitle_new_keywords=[t for t in subtitle_kw if t not in title_set],
            unique_keyword_count=len(title_set | set(subtitle_kw)),
        )

    @staticmethod
    def _diagnostics(ruleset: MergedRuleSet, intent: IntentCoverage,
                     listing: ListingMetadata, vertical: Optional[str],
                     market: Optional[str], client_scope: Optional[str],
                     element_errors: dict[str, str]) -> AuditDiagnostics:
        leaks = list(ruleset.leak_warnings)
        mismatch = detect_vertical_mismatch(listing.category, vertical)
        if mismatch is not None:
            leaks.append(mismatch)
        return AuditDiagnostics(
            ruleset_version=ruleset.version,
            ruleset_source=ruleset.source,
            degraded_source=ruleset.degraded_source,
            layers=list(ruleset.layers),
            fallback_mode=intent.fallback_mode,
            fallback_reason=intent.fallback_reason,
            active_pattern_count=intent.active_pattern_count,
            vertical=vertical,
            market=market,
            client_scope=client_scope,
            platform=listing.platform,
            leak_warnings=leaks,
            warnings=[w.message for w in ruleset.warnings],
            element_errors=element_errors,
        )


def create_engine(
    store: Optional[RuleStore] = None,
    cache: Optional[RuleSetCache] = None,
) -> AuditEngine:
    """Build an engine over the configured rule store and a fresh cache."""
    if store is None:
        from asobible.store.factory import get_rule_store
        store = get_rule_store()
    return AuditEngine(RuleSetMerger(store, cache=cache))
