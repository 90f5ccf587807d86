"""
Tests for rule-set inheritance: field merges, precedence, bounds,
caching, degraded fallback and leak detection.
"""

import threading
import time

import pytest

from asobible.cache import RuleSetCache
from asobible.intent import FALLBACK_PATTERNS, Fallback, FromStore
from asobible.leaks import detect_leaks, detect_vertical_mismatch, vertical_for_category
from asobible.ruleset.base import BASE_TEMPLATES, BASE_TOKEN_RELEVANCE, DEFAULT_THRESHOLDS
from asobible.ruleset.fields import (
    clamp_override,
    merge_list_override,
    merge_list_union,
    merge_scalar_override,
    merge_token_relevance,
)
from asobible.ruleset.merger import Layer, RuleSetMerger, ScopeKey, build_ruleset
from asobible.schemas.overrides import OverrideDocument
from asobible.store import RuleStore
from asobible.store.memory import InMemoryRuleStore


def _layer(name, **doc):
    return Layer(name=name, document=OverrideDocument(**doc))


class TestFieldMerges:
    """Each conflict rule on its own."""

    def test_scalar_override_last_wins(self):
        assert merge_scalar_override({"a": 1, "b": 2}, {"b": 3}) == {"a": 1, "b": 3}

    def test_scalar_override_none_inherits(self):
        assert merge_scalar_override({"a": 1}, None) == {"a": 1}

    def test_scalar_override_does_not_mutate(self):
        inherited = {"a": 1}
        merge_scalar_override(inherited, {"a": 2})
        assert inherited == {"a": 1}

    def test_list_union_sorted(self):
        assert merge_list_union(["the", "a"], ["and", "a"]) == ("a", "and", "the")

    def test_list_override_replaces_when_present(self):
        assert merge_list_override(("x", "y"), ["z"]) == ("z",)
        assert merge_list_override(("x",), []) == ()

    def test_list_override_inherits_when_absent(self):
        assert merge_list_override(("x", "y"), None) == ("x", "y")

    def test_token_relevance_union_later_wins(self):
        merged = merge_token_relevance({"learn": 3, "app": 1}, {"app": 0, "yoga": 2})
        assert merged == {"learn": 3, "app": 0, "yoga": 2}

    def test_token_relevance_clamped(self):
        merged = merge_token_relevance({}, {"a": 7, "b": -2, "c": 2.9})
        assert merged == {"a": 3, "b": 0, "c": 2}

    def test_token_relevance_non_finite(self):
        merged = merge_token_relevance(
            {}, {"a": float("inf"), "b": float("-inf"), "c": float("nan")},
        )
        assert merged == {"a": 3, "b": 0, "c": 1}

    def test_clamp_in_bounds(self):
        assert clamp_override("k", 1.5, (0.5, 2.0), "vertical:x") == (1.5, None)

    def test_clamp_out_of_bounds(self):
        value, warning = clamp_override("k", 3.0, (0.5, 2.0), "vertical:x")
        assert value == 2.0
        assert warning.type == "override_out_of_bounds"
        assert warning.value == 3.0
        assert warning.clamped_to == 2.0
        assert "outside [0.5, 2.0]" in warning.message

    def test_clamp_low(self):
        value, warning = clamp_override("k", 0.1, (0.5, 2.0), "client:x")
        assert value == 0.5
        assert warning is not None


class TestBuildRuleSet:
    def test_base_only(self):
        rs = build_ruleset(ScopeKey(), [])
        assert rs.layers == ("base",)
        assert rs.token_relevance["learn"] == BASE_TOKEN_RELEVANCE["learn"]
        assert rs.thresholds["title_unique_keywords.min_unique"] == 2
        assert rs.discovery_thresholds == {"excellent": 5, "good": 3, "moderate": 1}
        assert isinstance(rs.pattern_source, Fallback)
        assert rs.degraded_source is False

    def test_inheritance_precedence(self):
        """Base, vertical and client set the same field: client wins."""
        layers = [
            _layer("vertical:health",
                   token_relevance={"workout": 1},
                   kpi_multipliers={"title_hook_strength": 1.5},
                   thresholds={"title_unique_keywords.min_unique": 3}),
            _layer("client:acme",
                   token_relevance={"workout": 0},
                   kpi_multipliers={"title_hook_strength": 0.8},
                   thresholds={"title_unique_keywords.min_unique": 4}),
        ]
        assert BASE_TOKEN_RELEVANCE["workout"] == 2
        assert DEFAULT_THRESHOLDS["title_unique_keywords.min_unique"] == 2

        rs = build_ruleset(ScopeKey("health", None, "acme"), layers)
        assert rs.token_relevance["workout"] == 0
        assert rs.token_sources["workout"] == "client:acme"
        assert rs.kpi_multiplier("title_hook_strength") == 0.8
        assert rs.threshold("title_unique_keywords.min_unique") == 4
        assert rs.layers == ("base", "vertical:health", "client:acme")

    def test_market_between_vertical_and_client(self):
        layers = [
            _layer("vertical:health", kpi_multipliers={"urgency_signal": 1.2}),
            _layer("market:us", kpi_multipliers={"urgency_signal": 1.4}),
        ]
        rs = build_ruleset(ScopeKey("health", "us"), layers)
        assert rs.kpi_multiplier("urgency_signal") == 1.4

    def test_multiplier_out_of_bounds_clamped_with_warning(self):
        rs = build_ruleset(
            ScopeKey("health"),
            [_layer("vertical:health", kpi_multipliers={"title_hook_strength": 3.0})],
        )
        assert rs.kpi_multiplier("title_hook_strength") == 2.0
        assert any(
            w.type == "override_out_of_bounds"
            and w.key == "kpi_multipliers.title_hook_strength"
            for w in rs.warnings
        )

    def test_formula_multipliers_clamped(self):
        rs = build_ruleset(
            ScopeKey("health"),
            [_layer("vertical:health",
                    formula_multipliers={"metadata_overall_score": {"title": 0.1}})],
        )
        assert rs.formula_multiplier("metadata_overall_score", "title") == 0.5
        assert rs.formula_multiplier("metadata_overall_score", "subtitle") == 1.0

    def test_threshold_clamped_to_its_own_bounds(self):
        rs = build_ruleset(
            ScopeKey("health"),
            [_layer("vertical:health",
                    thresholds={"subtitle_complementarity.max_overlap": 5})],
        )
        assert rs.threshold("subtitle_complementarity.max_overlap") == 0.9
        assert len(rs.warnings) == 1

    def test_unknown_threshold_ignored(self):
        rs = build_ruleset(
            ScopeKey("health"), [_layer("vertical:health", thresholds={"nope": 1})],
        )
        assert "nope" not in rs.thresholds
        assert rs.warnings[0].type == "unknown_key"

    def test_discovery_thresholds_kept_descending(self):
        rs = build_ruleset(
            ScopeKey("health"),
            [_layer("vertical:health", discovery_thresholds={"excellent": 2})],
        )
        assert rs.discovery_thresholds == {"excellent": 3, "good": 2, "moderate": 1}
        assert any(w.key == "discovery_thresholds" for w in rs.warnings)

    def test_stopwords_union(self):
        rs = build_ruleset(
            ScopeKey("health"), [_layer("vertical:health", stopwords=["Tracker "])],
        )
        assert "tracker" in rs.stopwords
        assert "the" in rs.stopwords

    def test_templates_override_per_id(self):
        rs = build_ruleset(
            ScopeKey("health"),
            [_layer("vertical:health", recommendation_templates=[
                {"id": "subtitle_empty", "message": "Add a fitness subtitle.", "severity": "strong"},
            ])],
        )
        assert rs.recommendation_templates["subtitle_empty"].message == "Add a fitness subtitle."
        assert rs.recommendation_templates["subtitle_empty"].severity == "strong"
        # Others inherited from base
        assert "title_overflow" in rs.recommendation_templates

    @pytest.mark.parametrize("message", [
        "Subtitle empty {",
        "Add a subtitle {0}",
        "Add a subtitle {}",
        "Add {listing.subtitle}",
        "Add {words[0]}",
    ])
    def test_unrenderable_template_dropped(self, message):
        rs = build_ruleset(
            ScopeKey("health"),
            [_layer("vertical:health", recommendation_templates=[
                {"id": "subtitle_empty", "message": message},
            ])],
        )
        assert rs.recommendation_templates["subtitle_empty"] == BASE_TEMPLATES["subtitle_empty"]
        warning = next(w for w in rs.warnings if w.type == "invalid_template")
        assert warning.key == "recommendation_templates.subtitle_empty"
        assert warning.layer == "vertical:health"

    def test_infinite_relevance_clamped_with_warning(self):
        rs = build_ruleset(
            ScopeKey("health"),
            [_layer("vertical:health", token_relevance={"log": float("inf"), "tips": float("-inf")})],
        )
        assert rs.token_relevance["log"] == 3
        assert rs.token_relevance["tips"] == 0
        keys = {w.key for w in rs.warnings if w.type == "override_out_of_bounds"}
        assert keys == {"token_relevance.log", "token_relevance.tips"}

    def test_snapshot_is_read_only(self):
        rs = build_ruleset(ScopeKey(), [])
        with pytest.raises(TypeError):
            rs.token_relevance["learn"] = 0
        with pytest.raises(Exception):
            rs.source = "other"

    def test_version_is_deterministic(self):
        layers = [_layer("vertical:health", token_relevance={"log": 2})]
        a = build_ruleset(ScopeKey("health"), layers)
        b = build_ruleset(ScopeKey("health"), layers)
        c = build_ruleset(ScopeKey("health"), [_layer("vertical:health", token_relevance={"log": 3})])
        assert a.version == b.version
        assert a.version != c.version

    def test_store_patterns_selected(self):
        from asobible.intent import IntentPattern
        pattern = IntentPattern("commercial", ("best",), scope="vertical:health")
        rs = build_ruleset(ScopeKey("health"), [Layer("vertical:health", None, (pattern,))])
        assert isinstance(rs.pattern_source, FromStore)
        assert rs.fallback_mode is False
        assert rs.pattern_source.scopes == ("vertical:health",)

    def test_pattern_failure_forces_fallback(self):
        rs = build_ruleset(ScopeKey("health"), [], pattern_failure="timeout")
        assert rs.fallback_mode is True
        assert rs.pattern_source.reason == "timeout"
        assert rs.pattern_source.patterns == FALLBACK_PATTERNS


class TestRuleSetMerger:
    def test_builds_and_caches(self, merger, store):
        first = merger.get_active_ruleset("health", "us")
        calls = store.calls
        second = merger.get_active_ruleset("Health ", "US")
        assert first is second
        assert store.calls == calls
        assert merger.rebuilds == 1

    def test_missing_scope_inherits_parent(self, merger):
        rs = merger.get_active_ruleset("health", "zz", "nobody")
        assert rs.layers == ("base", "vertical:health")
        assert rs.token_relevance["log"] == 2

    def test_store_patterns_used(self, merger):
        rs = merger.get_active_ruleset("health")
        assert rs.fallback_mode is False
        assert len(rs.pattern_source.patterns) == 4

    def test_scope_without_patterns_uses_fallback(self, merger):
        rs = merger.get_active_ruleset("finance")
        assert rs.fallback_mode is True
        assert rs.degraded_source is False

    def test_ttl_expiry_rebuilds(self, merger, clock):
        merger.get_active_ruleset("health")
        clock.advance(301)
        merger.get_active_ruleset("health")
        assert merger.rebuilds == 2

    def test_invalidate_rebuilds_with_new_overrides(self, merger, store):
        before = merger.get_active_ruleset("health")
        store.put_overrides("vertical:health", {"token_relevance": {"log": 3}})
        assert merger.get_active_ruleset("health") is before
        assert merger.invalidate("health") is True
        after = merger.get_active_ruleset("health")
        assert after.token_relevance["log"] == 3
        assert after.version != before.version

    def test_outage_without_cache_serves_base_only(self, merger, store):
        store.set_available(False)
        rs = merger.get_active_ruleset("health", "us")
        assert rs.source == "base_only"
        assert rs.degraded_source is True
        assert rs.fallback_mode is True
        assert rs.layers == ("base",)

    def test_outage_serves_stale_snapshot(self, merger, store, clock):
        fresh = merger.get_active_ruleset("health")
        clock.advance(301)
        store.set_available(False)
        rs = merger.get_active_ruleset("health")
        assert rs.source == "stale_cache"
        assert rs.degraded_source is True
        assert rs.version == fresh.version
        assert rs.token_relevance["log"] == 2
        # The published snapshot itself is untouched
        assert fresh.degraded_source is False

    def test_outage_after_invalidate_serves_last_known(self, merger, store):
        merger.get_active_ruleset("health")
        merger.invalidate("health")
        store.set_available(False)
        rs = merger.get_active_ruleset("health")
        assert rs.source == "stale_cache"

    def test_degraded_snapshot_not_cached(self, merger, store):
        store.set_available(False)
        merger.get_active_ruleset("health")
        store.set_available(True)
        rs = merger.get_active_ruleset("health")
        assert rs.degraded_source is False
        assert rs.source == "store"

    def test_pattern_outage_only(self, merger, store):
        store.set_patterns_available(False)
        rs = merger.get_active_ruleset("health")
        assert rs.fallback_mode is True
        assert rs.degraded_source is False
        assert rs.token_relevance["log"] == 2
        assert "pattern store offline" in rs.pattern_source.reason
        # Not cached: the next call retries the store
        store.set_patterns_available(True)
        assert merger.get_active_ruleset("health").fallback_mode is False

    def test_invalid_document_skipped(self, cache):
        store = InMemoryRuleStore(overrides={"market:us": {"kpi_multipliers": "nope"}})
        merger = RuleSetMerger(store, cache=cache, timeout=5.0)
        rs = merger.get_active_ruleset(None, "us")
        assert rs.layers == ("base",)
        assert any(w.type == "invalid_document" for w in rs.warnings)
        merger.close()

    def test_invalid_patterns_dropped(self, cache):
        store = InMemoryRuleStore(patterns={"vertical:health": [
            {"intent": "commercial", "terms": ["best"]},
            {"intent": "bogus", "terms": ["x"]},
        ]})
        merger = RuleSetMerger(store, cache=cache, timeout=5.0)
        rs = merger.get_active_ruleset("health")
        assert len(rs.pattern_source.patterns) == 1
        assert any(w.type == "invalid_pattern" for w in rs.warnings)
        merger.close()

    def test_broken_store_counts_as_unavailable(self, cache):
        class BrokenStore(RuleStore):
            def get_overrides(self, scope):
                raise KeyError("boom")

            def get_intent_patterns(self, scope):
                return None

        merger = RuleSetMerger(BrokenStore(), cache=cache, timeout=5.0)
        rs = merger.get_active_ruleset("health")
        assert rs.source == "base_only"
        merger.close()

    def test_slow_store_times_out(self, cache):
        class SlowStore(InMemoryRuleStore):
            def get_overrides(self, scope):
                time.sleep(0.5)
                return None

        merger = RuleSetMerger(SlowStore(), cache=cache, timeout=0.05)
        started = time.perf_counter()
        rs = merger.get_active_ruleset("health")
        assert time.perf_counter() - started < 0.45
        assert rs.degraded_source is True
        merger.close()

    def test_concurrent_misses_rebuild_once(self):
        class SlowStore(InMemoryRuleStore):
            def get_overrides(self, scope):
                time.sleep(0.05)
                return super().get_overrides(scope)

        merger = RuleSetMerger(SlowStore(), cache=RuleSetCache(), timeout=5.0)
        results = []
        threads = [
            threading.Thread(target=lambda: results.append(merger.get_active_ruleset("health")))
            for _ in range(8)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert merger.rebuilds == 1
        assert len({id(r) for r in results}) == 1
        assert merger.pending_keys == 0
        merger.close()

    def test_rebuild_locks_released(self, merger):
        for i in range(20):
            merger.get_active_ruleset(f"vertical{i}")
        assert merger.pending_keys == 0
        assert merger.rebuilds == 20

    def test_merge_failure_serves_base_only(self, merger, monkeypatch):
        import asobible.ruleset.merger as merger_module
        real_build = merger_module.build_ruleset

        def failing_build(key, layers, **kwargs):
            if layers:
                raise RuntimeError("merge exploded")
            return real_build(key, layers, **kwargs)

        monkeypatch.setattr(merger_module, "build_ruleset", failing_build)
        rs = merger.get_active_ruleset("health")
        assert rs.source == "base_only"
        assert rs.degraded_source is True
        assert merger.cache.get(ScopeKey.of("health")) is None

    def test_out_of_bounds_logged(self, cache, caplog):
        store = InMemoryRuleStore(overrides={
            "vertical:health": {"kpi_multipliers": {"title_hook_strength": 3.0}},
        })
        merger = RuleSetMerger(store, cache=cache, timeout=5.0)
        with caplog.at_level("WARNING", logger="asobible"):
            rs = merger.get_active_ruleset("health")
        assert rs.kpi_multiplier("title_hook_strength") == 2.0
        assert any("clamped to 2.0" in r.getMessage() for r in caplog.records)
        merger.close()


class TestLeakDetection:
    def test_foreign_token_in_client_layer(self):
        rs = build_ruleset(
            ScopeKey("language_learning", None, "acme"),
            [_layer("client:acme", token_relevance={"investing": 3, "grammar": 3})],
        )
        assert len(rs.leak_warnings) == 1
        leak = rs.leak_warnings[0]
        assert leak.type == "pattern_leak"
        assert leak.severity == "low"
        assert leak.foreign_vertical == "finance"
        assert leak.terms == ("investing",)
        assert leak.layer == "client:acme"

    def test_base_vocabulary_never_leaks(self):
        # Base carries workout/budget/lessons for everyone
        rs = build_ruleset(ScopeKey("language_learning"), [])
        assert rs.leak_warnings == ()

    def test_low_relevance_tokens_ignored(self):
        rs = build_ruleset(
            ScopeKey("language_learning"),
            [_layer("vertical:language_learning", token_relevance={"stocks": 1})],
        )
        assert rs.leak_warnings == ()

    def test_template_leak_is_high(self):
        rs = build_ruleset(
            ScopeKey("finance"),
            [_layer("vertical:finance", recommendation_templates=[
                {"id": "subtitle_empty", "message": "Mention lessons and grammar practice."},
            ])],
        )
        assert [w.type for w in rs.leak_warnings] == ["recommendation_leak"]
        assert rs.leak_warnings[0].severity == "high"
        assert rs.leak_warnings[0].foreign_vertical == "language_learning"

    def test_no_vertical_no_leaks(self):
        assert detect_leaks(None, {"investing": (3, "client:x")}) == []

    def test_intent_pattern_leak_is_medium(self):
        leaks = detect_leaks("health", {}, [("earn points", "vertical:health")])
        assert leaks[0].severity == "medium"
        assert leaks[0].foreign_vertical == "rewards"

    def test_vertical_mismatch(self):
        warning = detect_vertical_mismatch("Finance", "health")
        assert warning.type == "vertical_mismatch"
        assert detect_vertical_mismatch("Health & Fitness", "health") is None
        assert detect_vertical_mismatch(None, "health") is None
        assert detect_vertical_mismatch("Weather", "health") is None

    def test_vertical_for_category(self):
        assert vertical_for_category("Health & Fitness") == "health"
        assert vertical_for_category("Education") == "language_learning"
        assert vertical_for_category("Weather") is None
