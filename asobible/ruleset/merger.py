"""
RuleSet Merger — Layered Override Inheritance

Builds one immutable MergedRuleSet per scope from four layers, applied
in strict precedence order (last writer wins per field):

    base -> vertical -> market -> client

The merge is an explicit pipeline over plain data documents. Each field
type has its own pure conflict rule (ruleset/fields.py):
  - token relevance:        union, later layer wins per token
  - stopwords:              union
  - multipliers/thresholds: scalar override, clamped to bounds
  - templates:              override-if-present per id, else inherit
  - intent patterns:        union per (intent, terms), later layer wins

Snapshots are cached per scope in a RuleSetCache that the caller owns.
If the rule store is unavailable the merger serves the last snapshot
it published for the scope, or a base-only snapshot, and marks either
with degraded_source=True. It never raises on store failure.
"""

from __future__ import annotations

import dataclasses
import hashlib
import json
import math
import string
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from contextlib import contextmanager
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Mapping, Optional, Sequence

from pydantic import ValidationError

from asobible.cache import RuleSetCache
from asobible.config import settings
from asobible.errors import MissingScopeConfig, PatternSourceDegraded, RuleStoreUnavailable
from asobible.intent import Fallback, FromStore, IntentPattern, PatternSource
from asobible.leaks import LeakWarning, detect_leaks
from asobible.logging import get_logger
from asobible.relevance import token_relevance
from asobible.ruleset.base import (
    BASE_LAYER,
    BASE_STOPWORDS,
    BASE_TEMPLATES,
    BASE_TOKEN_RELEVANCE,
    DEFAULT_DISCOVERY_THRESHOLDS,
    DEFAULT_THRESHOLDS,
    DISCOVERY_BOUNDS,
    MULTIPLIER_BOUNDS,
    THRESHOLD_BOUNDS,
    RecommendationTemplate,
)
from asobible.ruleset.fields import (
    RuleSetWarning,
    clamp_override,
    merge_list_union,
    merge_scalar_override,
    merge_token_relevance,
)
from asobible.schemas.overrides import IntentPatternSpec, OverrideDocument
from asobible.store import RuleStore, Scope

logger = get_logger("ruleset.merger")


# ============================================================
# DATA STRUCTURES
# ============================================================

def _clean(value: Optional[str], lower: bool = True) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    return value.lower() if lower else value


@dataclass(frozen=True)
class ScopeKey:
    """Cache key and layer address for one rule set."""
    vertical: Optional[str] = None
    market: Optional[str] = None
    client: Optional[str] = None

    @classmethod
    def of(cls, vertical=None, market=None, client=None) -> "ScopeKey":
        return cls(_clean(vertical), _clean(market), _clean(client, lower=False))

    def scopes(self) -> list[Scope]:
        """Store scopes in precedence order, skipping unset levels."""
        out = []
        if self.vertical:
            out.append(Scope("vertical", self.vertical))
        if self.market:
            out.append(Scope("market", self.market))
        if self.client:
            out.append(Scope("client", self.client))
        return out

    def __str__(self) -> str:
        return "|".join(
            f"{k}={v or '-'}" for k, v in
            (("vertical", self.vertical), ("market", self.market), ("client", self.client))
        )


@dataclass(frozen=True)
class Layer:
    """One fetched override layer."""
    name: str
    document: Optional[OverrideDocument] = None
    patterns: tuple[IntentPattern, ...] = ()


@dataclass(frozen=True)
class MergedRuleSet:
    """Immutable merged configuration for one scope. Shared read-only across audits."""
    scope: ScopeKey
    token_relevance: Mapping[str, int]
    token_sources: Mapping[str, str]
    stopwords: frozenset[str]
    kpi_multipliers: Mapping[str, float]
    formula_multipliers: Mapping[str, Mapping[str, float]]
    thresholds: Mapping[str, float]
    discovery_thresholds: Mapping[str, int]
    recommendation_templates: Mapping[str, RecommendationTemplate]
    pattern_source: PatternSource
    leak_warnings: tuple[LeakWarning, ...] = ()
    warnings: tuple[RuleSetWarning, ...] = ()
    layers: tuple[str, ...] = (BASE_LAYER,)
    source: str = "store"              # "store", "stale_cache", "base_only"
    degraded_source: bool = False
    version: str = ""

    def relevance(self, token: str) -> int:
        return token_relevance(token, self.token_relevance)

    def kpi_multiplier(self, kpi_id: str) -> float:
        return self.kpi_multipliers.get(kpi_id, 1.0)

    def formula_multiplier(self, formula_id: str, component_id: str) -> float:
        return self.formula_multipliers.get(formula_id, {}).get(component_id, 1.0)

    def threshold(self, key: str) -> float:
        return self.thresholds.get(key, DEFAULT_THRESHOLDS[key])

    @property
    def high_value_relevance(self) -> int:
        return int(self.threshold("high_value.min_relevance"))

    @property
    def fallback_mode(self) -> bool:
        return self.pattern_source.fallback_mode

    def as_degraded(self, source: str) -> "MergedRuleSet":
        """Same content, flagged as served from a degraded source."""
        return dataclasses.replace(self, source=source, degraded_source=True)


# ============================================================
# PURE MERGE
# ============================================================

def parse_patterns(
    raw: Optional[Sequence[Any]], layer: str,
) -> tuple[tuple[IntentPattern, ...], list[RuleSetWarning]]:
    """Validate store pattern payloads. Invalid entries are dropped with a warning."""
    patterns: list[IntentPattern] = []
    warnings: list[RuleSetWarning] = []
    for i, item in enumerate(raw or ()):
        try:
            spec = IntentPatternSpec.model_validate(item)
        except ValidationError as e:
            warnings.append(RuleSetWarning(
                type="invalid_pattern", layer=layer, key=f"intent_patterns[{i}]",
                message=f"{layer}: dropped invalid intent pattern: {e.errors()[0]['msg']}",
            ))
            continue
        patterns.append(IntentPattern(
            intent=spec.intent,
            terms=tuple(spec.terms),
            weight=spec.weight,
            priority=spec.priority,
            scope=layer,
            word_boundary=spec.word_boundary,
        ))
    return tuple(patterns), warnings


def template_problem(message: str) -> Optional[str]:
    """Why a template message cannot be rendered, or None if it can."""
    try:
        fields = [name for _, name, _, _ in string.Formatter().parse(message) if name is not None]
    except ValueError as e:
        return str(e)
    for name in fields:
        if not name.isidentifier():
            return f"unsupported placeholder {{{name}}}"
    return None


def _fingerprint(content: dict) -> str:
    canonical = json.dumps(content, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()[:16]


def build_ruleset(
    scope: ScopeKey,
    layers: Sequence[Layer],
    pattern_failure: Optional[str] = None,
    source: str = "store",
    degraded: bool = False,
    extra_warnings: Sequence[RuleSetWarning] = (),
) -> MergedRuleSet:
    """
    Merge the base layer and the given layers into a frozen snapshot.

    Pure: same inputs, same snapshot (and same version hash).
    """
    relevance: dict[str, int] = dict(BASE_TOKEN_RELEVANCE)
    sources: dict[str, str] = {t: BASE_LAYER for t in relevance}
    stopwords = tuple(sorted(BASE_STOPWORDS))
    kpi_multipliers: dict[str, float] = {}
    formula_multipliers: dict[str, dict[str, float]] = {}
    thresholds: dict[str, float] = dict(DEFAULT_THRESHOLDS)
    discovery: dict[str, int] = dict(DEFAULT_DISCOVERY_THRESHOLDS)
    templates: dict[str, RecommendationTemplate] = dict(BASE_TEMPLATES)
    template_sources: dict[str, str] = {}
    patterns: dict[tuple, IntentPattern] = {}
    pattern_layers: list[str] = []
    warnings: list[RuleSetWarning] = list(extra_warnings)

    for layer in layers:
        doc = layer.document
        if doc is not None:
            relevance = merge_token_relevance(relevance, doc.token_relevance)
            for token, value in sorted(doc.token_relevance.items()):
                if not math.isfinite(value):
                    warnings.append(RuleSetWarning(
                        type="override_out_of_bounds", layer=layer.name,
                        key=f"token_relevance.{token}",
                        message=(
                            f"{layer.name}: token_relevance.{token}={value} is not finite, "
                            f"using {relevance[token]}"
                        ),
                        value=value, clamped_to=relevance[token],
                    ))
            sources = merge_scalar_override(
                sources, {t: layer.name for t in doc.token_relevance},
            )
            stopwords = merge_list_union(stopwords, doc.stopwords)

            clamped: dict[str, float] = {}
            for kpi_id, value in sorted(doc.kpi_multipliers.items()):
                clamped[kpi_id], warning = clamp_override(
                    f"kpi_multipliers.{kpi_id}", value, MULTIPLIER_BOUNDS, layer.name,
                )
                if warning:
                    warnings.append(warning)
            kpi_multipliers = merge_scalar_override(kpi_multipliers, clamped)

            for formula_id, components in sorted(doc.formula_multipliers.items()):
                clamped = {}
                for component, value in sorted(components.items()):
                    clamped[component], warning = clamp_override(
                        f"formula_multipliers.{formula_id}.{component}",
                        value, MULTIPLIER_BOUNDS, layer.name,
                    )
                    if warning:
                        warnings.append(warning)
                formula_multipliers[formula_id] = merge_scalar_override(
                    formula_multipliers.get(formula_id, {}), clamped,
                )

            clamped = {}
            for key, value in sorted(doc.thresholds.items()):
                if key not in THRESHOLD_BOUNDS:
                    warnings.append(RuleSetWarning(
                        type="unknown_key", layer=layer.name, key=f"thresholds.{key}",
                        message=f"{layer.name}: unknown threshold {key} ignored",
                    ))
                    continue
                clamped[key], warning = clamp_override(
                    f"thresholds.{key}", value, THRESHOLD_BOUNDS[key], layer.name,
                )
                if warning:
                    warnings.append(warning)
            thresholds = merge_scalar_override(thresholds, clamped)

            clamped_levels: dict[str, int] = {}
            for key, value in sorted(doc.discovery_thresholds.items()):
                if key not in DEFAULT_DISCOVERY_THRESHOLDS:
                    warnings.append(RuleSetWarning(
                        type="unknown_key", layer=layer.name,
                        key=f"discovery_thresholds.{key}",
                        message=f"{layer.name}: unknown discovery threshold {key} ignored",
                    ))
                    continue
                level, warning = clamp_override(
                    f"discovery_thresholds.{key}", value, DISCOVERY_BOUNDS, layer.name,
                )
                clamped_levels[key] = int(round(level))
                if warning:
                    warnings.append(warning)
            discovery = merge_scalar_override(discovery, clamped_levels)

            if doc.recommendation_templates is not None:
                for spec in doc.recommendation_templates:
                    problem = template_problem(spec.message)
                    if problem:
                        warnings.append(RuleSetWarning(
                            type="invalid_template", layer=layer.name,
                            key=f"recommendation_templates.{spec.id}",
                            message=f"{layer.name}: template {spec.id} dropped: {problem}",
                        ))
                        continue
                    templates[spec.id] = RecommendationTemplate(
                        id=spec.id, message=spec.message, severity=spec.severity,
                    )
                    template_sources[spec.id] = layer.name

        if layer.patterns:
            pattern_layers.append(layer.name)
            for pattern in layer.patterns:
                patterns[pattern.signature()] = pattern

    # Tiers must stay ordered after independent overrides
    ordered = sorted(discovery.values(), reverse=True)
    if ordered != [discovery["excellent"], discovery["good"], discovery["moderate"]]:
        warnings.append(RuleSetWarning(
            type="override_out_of_bounds", layer="merged", key="discovery_thresholds",
            message="discovery thresholds were not descending; reordered",
        ))
        discovery = dict(zip(("excellent", "good", "moderate"), ordered))
    if thresholds["filler.moderate_noise"] > thresholds["filler.high_noise"]:
        warnings.append(RuleSetWarning(
            type="override_out_of_bounds", layer="merged", key="thresholds.filler.high_noise",
            message="filler.high_noise below filler.moderate_noise; raised to match",
            value=thresholds["filler.high_noise"],
            clamped_to=thresholds["filler.moderate_noise"],
        ))
        thresholds["filler.high_noise"] = thresholds["filler.moderate_noise"]

    pattern_source: PatternSource
    if pattern_failure:
        pattern_source = Fallback(reason=pattern_failure)
    elif patterns:
        pattern_source = FromStore(
            patterns=tuple(patterns.values()), scopes=tuple(pattern_layers),
        )
    else:
        pattern_source = Fallback(reason="no intent patterns configured for scope")

    high_value = int(thresholds["high_value.min_relevance"])
    leak_warnings = detect_leaks(
        scope.vertical,
        {t: (relevance[t], src) for t, src in sources.items() if src != BASE_LAYER},
        [(term, p.scope) for p in patterns.values() for term in p.terms],
        [(templates[tid].message, src) for tid, src in sorted(template_sources.items())],
        high_value=high_value,
    )

    version = _fingerprint({
        "scope": str(scope),
        "relevance": relevance,
        "stopwords": stopwords,
        "kpi": kpi_multipliers,
        "formula": formula_multipliers,
        "thresholds": thresholds,
        "discovery": discovery,
        "templates": {k: [t.message, t.severity] for k, t in templates.items()},
        "patterns": [
            [p.intent, list(p.terms), p.weight, p.priority, p.word_boundary, p.scope]
            for p in pattern_source.patterns
        ],
        "fallback": pattern_source.fallback_mode,
    })

    return MergedRuleSet(
        scope=scope,
        token_relevance=MappingProxyType(relevance),
        token_sources=MappingProxyType(sources),
        stopwords=frozenset(stopwords),
        kpi_multipliers=MappingProxyType(kpi_multipliers),
        formula_multipliers=MappingProxyType({
            k: MappingProxyType(v) for k, v in formula_multipliers.items()
        }),
        thresholds=MappingProxyType(thresholds),
        discovery_thresholds=MappingProxyType(discovery),
        recommendation_templates=MappingProxyType(templates),
        pattern_source=pattern_source,
        leak_warnings=tuple(leak_warnings),
        warnings=tuple(warnings),
        layers=(BASE_LAYER, *(layer.name for layer in layers)),
        source=source,
        degraded_source=degraded,
        version=version,
    )


# ============================================================
# MERGER
# ============================================================

class RuleSetMerger:
    """
    Serves MergedRuleSet snapshots per scope.

    The cache is passed in (or created per merger) so tests and
    callers control its lifetime; there is no module-level cache.
    """

    def __init__(
        self,
        store: RuleStore,
        cache: Optional[RuleSetCache] = None,
        timeout: Optional[float] = None,
    ):
        self._store = store
        self._cache: RuleSetCache = cache if cache is not None else RuleSetCache(
            ttl_seconds=settings.RULESET_TTL_SECONDS,
            max_entries=settings.RULESET_MAX_ENTRIES,
        )
        self._timeout = timeout if timeout is not None else settings.ruleset_rebuild_timeout
        self._executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="asobible-store")
        # key -> (lock, holders). Entries are dropped when the last holder leaves
        self._key_locks: dict[ScopeKey, list] = {}
        self._key_locks_guard = threading.Lock()
        self.rebuilds = 0

    @property
    def cache(self) -> RuleSetCache:
        return self._cache

    def close(self) -> None:
        self._executor.shutdown(wait=False)

    def get_active_ruleset(
        self,
        vertical: Optional[str] = None,
        market: Optional[str] = None,
        client_scope: Optional[str] = None,
    ) -> MergedRuleSet:
        """Cached merged rule set for the scope. Never raises on store failure."""
        key = ScopeKey.of(vertical, market, client_scope)
        snapshot = self._cache.get(key)
        if snapshot is not None:
            return snapshot

        # One rebuild per key; concurrent misses wait and reuse it
        with self._lock_for(key):
            snapshot = self._cache.get(key)
            if snapshot is not None:
                return snapshot
            return self._rebuild(key)

    def invalidate(
        self,
        vertical: Optional[str] = None,
        market: Optional[str] = None,
        client_scope: Optional[str] = None,
    ) -> bool:
        """Signal that an override for this scope changed."""
        key = ScopeKey.of(vertical, market, client_scope)
        dropped = self._cache.invalidate(key)
        logger.info("RuleSet invalidated", extra={"scope_key": str(key)})
        return dropped

    @property
    def pending_keys(self) -> int:
        """Scope keys with a rebuild in progress or waiting."""
        with self._key_locks_guard:
            return len(self._key_locks)

    @contextmanager
    def _lock_for(self, key: ScopeKey):
        with self._key_locks_guard:
            entry = self._key_locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._key_locks_guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._key_locks[key]

    def _rebuild(self, key: ScopeKey) -> MergedRuleSet:
        start = time.perf_counter()
        future = self._executor.submit(self._fetch_layers, key)
        try:
            layers, pattern_failure, load_warnings = future.result(timeout=self._timeout)
        except FuturesTimeout:
            future.cancel()
            return self._degraded(
                key, RuleStoreUnavailable(f"rule store timed out after {self._timeout}s"),
            )
        except RuleStoreUnavailable as e:
            return self._degraded(key, e)

        try:
            snapshot = build_ruleset(
                key, layers, pattern_failure=pattern_failure, extra_warnings=load_warnings,
            )
        except Exception as e:
            logger.exception("RuleSet merge failed", extra={"scope_key": str(key)})
            return self._degraded(key, e)
        self.rebuilds += 1

        # Store-side pattern failures are retried on the next call
        if pattern_failure is None:
            self._cache.put(key, snapshot)

        for warning in snapshot.warnings:
            logger.warning(
                warning.message,
                extra={
                    "scope_key": str(key), "warning_type": warning.type,
                    "override_key": warning.key, "value": warning.value,
                    "clamped": warning.clamped_to,
                },
            )
        logger.info(
            "RuleSet built",
            extra={
                "scope_key": str(key),
                "ruleset_version": snapshot.version,
                "fallback_mode": snapshot.fallback_mode,
                "duration_ms": round((time.perf_counter() - start) * 1000, 2),
            },
        )
        return snapshot

    def _fetch_layers(
        self, key: ScopeKey,
    ) -> tuple[list[Layer], Optional[str], list[RuleSetWarning]]:
        """Read every scope's document and patterns. Raises RuleStoreUnavailable."""
        layers: list[Layer] = []
        warnings: list[RuleSetWarning] = []
        pattern_failure: Optional[str] = None

        for scope in key.scopes():
            try:
                document = self._load_document(scope, warnings)
            except MissingScopeConfig as e:
                logger.debug("%s", e, extra={"scope_key": str(key)})
                document = None

            patterns: tuple[IntentPattern, ...] = ()
            try:
                patterns = self._load_patterns(scope, warnings)
            except PatternSourceDegraded as e:
                pattern_failure = str(e)
                logger.warning(
                    "Intent patterns unavailable, using fallback set",
                    extra={"scope_key": str(key), "error": str(e)},
                )

            if document is not None or patterns:
                layers.append(Layer(name=scope.key, document=document, patterns=patterns))

        return layers, pattern_failure, warnings

    def _load_document(self, scope: Scope, warnings: list) -> OverrideDocument:
        raw = self._call_store(self._store.get_overrides, scope)
        if raw is None:
            raise MissingScopeConfig(f"No overrides for {scope.key}; inheriting parent")
        try:
            return OverrideDocument.model_validate(
                raw.model_dump() if isinstance(raw, OverrideDocument) else raw,
            )
        except ValidationError as e:
            warnings.append(RuleSetWarning(
                type="invalid_document", layer=scope.key, key="overrides",
                message=f"{scope.key}: override document rejected ({e.error_count()} errors)",
            ))
            raise MissingScopeConfig(f"Invalid overrides for {scope.key}") from e

    def _load_patterns(self, scope: Scope, warnings: list) -> tuple[IntentPattern, ...]:
        try:
            raw = self._call_store(self._store.get_intent_patterns, scope)
        except RuleStoreUnavailable as e:
            raise PatternSourceDegraded(f"{scope.key}: {e}") from e
        patterns, pattern_warnings = parse_patterns(raw, scope.key)
        warnings.extend(pattern_warnings)
        return patterns

    @staticmethod
    def _call_store(fn, scope: Scope):
        try:
            return fn(scope)
        except RuleStoreUnavailable:
            raise
        except Exception as e:
            # Any store bug counts as unavailability
            raise RuleStoreUnavailable(f"{scope.key}: {type(e).__name__}: {e}") from e

    def _degraded(self, key: ScopeKey, error: Exception) -> MergedRuleSet:
        stale = self._cache.get_stale(key)
        if stale is not None:
            logger.warning(
                "Rule store unavailable, serving last cached rule set",
                extra={"scope_key": str(key), "error": str(error), "source": "stale_cache"},
            )
            return stale.as_degraded("stale_cache")

        logger.warning(
            "Rule store unavailable, serving base-only rule set",
            extra={"scope_key": str(key), "error": str(error), "source": "base_only"},
        )
        return build_ruleset(
            key, [], pattern_failure=f"rule store unavailable: {error}",
            source="base_only", degraded=True,
        )
