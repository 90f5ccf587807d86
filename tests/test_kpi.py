"""
Tests for the KPI catalog and engine: normalization, multipliers,
family weighting and fallback degradation.
"""

import pytest

from asobible.combos import brand_tokens, generate_combos
from asobible.intent import Fallback, FromStore, IntentPattern, intent_coverage
from asobible.kpi import (
    FAMILY_WEIGHTS,
    HIGHER,
    INTENT_FALLBACK_FLOOR,
    KPI_IDS,
    KPIS,
    KPIDefinition,
    KPIEngine,
    build_primitives,
    hook_strength,
)
from asobible.ruleset.merger import Layer, ScopeKey, build_ruleset
from asobible.schemas.overrides import OverrideDocument
from asobible.text import EMPTY_ANALYSIS, analyze
from asobible.weights import weights_sum_to_one

BASE = build_ruleset(ScopeKey(), [])
STORE_SOURCE = FromStore(patterns=(
    IntentPattern("informational", ("learn",)),
    IntentPattern("commercial", ("best",)),
    IntentPattern("transactional", ("free",)),
))


def _primitives(title, subtitle, ruleset=BASE, source=None):
    source = source or ruleset.pattern_source
    t = analyze(title, ruleset.stopwords)
    s = analyze(subtitle, ruleset.stopwords)
    brand = brand_tokens(title)
    combos = generate_combos(
        {"title": t.tokens, "subtitle": s.tokens}, ruleset.stopwords, source,
        ruleset.relevance, brand,
    )
    intent = intent_coverage(
        [x for x in t.tokens if x not in ruleset.stopwords],
        [x for x in s.tokens if x not in ruleset.stopwords],
        [c.phrase for c in combos], source,
    )
    return build_primitives(t, s, 30, 30, combos, brand, intent, ruleset)


def _kpis(title="Lingo: Learn Spanish Fast", subtitle="Best Free Grammar Lessons",
          ruleset=BASE, source=None):
    return KPIEngine().evaluate(_primitives(title, subtitle, ruleset, source), ruleset)


class TestCatalog:
    def test_ids_unique(self):
        assert len(KPI_IDS) == len(set(KPI_IDS)) == len(KPIS)

    def test_family_weights_sum_to_one(self):
        assert weights_sum_to_one(FAMILY_WEIGHTS)

    @pytest.mark.parametrize("family", sorted(FAMILY_WEIGHTS))
    def test_kpi_weights_sum_to_one(self, family):
        assert weights_sum_to_one({k.id: k.weight for k in KPIS if k.family == family})

    def test_every_kpi_in_a_family(self):
        assert {k.family for k in KPIS} == set(FAMILY_WEIGHTS)


class TestNormalize:
    def test_higher(self):
        kpi = KPIDefinition("x", "f", lambda p: 0, 1.0, 0, 4, HIGHER)
        assert kpi.normalize(2) == 50
        assert kpi.normalize(9) == 100
        assert kpi.normalize(-1) == 0

    def test_lower(self):
        kpi = next(k for k in KPIS if k.id == "title_noise_ratio")
        assert kpi.normalize(0.25) == 75
        assert kpi.normalize(0) == 100

    def test_target(self):
        kpi = next(k for k in KPIS if k.id == "title_word_count")
        assert kpi.normalize(5) == 100
        assert kpi.normalize(8) == 60
        assert kpi.normalize(0) == 60

    def test_zero_span(self):
        assert KPIDefinition("x", "f", lambda p: 0, 1.0, 5, 5).normalize(5) == 0


class TestHookStrength:
    def test_verbs_and_benefits(self):
        # 30 for the verb, 20 for the benefit, capped 20 bonus
        assert hook_strength(analyze("Learn Spanish Fast")) == 70

    def test_empty(self):
        assert hook_strength(EMPTY_ANALYSIS) == 0


class TestKPIEngine:
    def test_full_vector(self):
        result = _kpis(source=STORE_SOURCE)
        assert set(result.kpis) == set(KPI_IDS)
        assert len(result.vector) == len(KPIS)
        assert all(0 <= v <= 100 for v in result.vector)
        assert 0 <= result.overall_score <= 100
        assert result.fallback_mode is False
        assert result.degraded is False

    def test_resolved_weights_sum_to_one(self):
        result = _kpis(source=STORE_SOURCE)
        assert weights_sum_to_one({f.id: f.weight for f in result.families.values()})
        for family in result.families.values():
            assert weights_sum_to_one({k: result.kpis[k].weight for k in family.kpi_ids})

    def test_raw_values(self):
        result = _kpis(source=STORE_SOURCE)
        assert result.kpis["title_high_value_keyword_count"].raw == 2
        assert result.kpis["subtitle_high_value_incremental_keywords"].raw == 2
        assert result.kpis["informational_intent_share"].raw > 0

    def test_multiplier_clamped_and_applied(self):
        ruleset = build_ruleset(
            ScopeKey("health"),
            [Layer("vertical:health", OverrideDocument(kpi_multipliers={"title_hook_strength": 3.0}))],
        )
        value = _kpis(ruleset=ruleset).kpis["title_hook_strength"]
        assert value.multiplier == 2.0
        # 0.35 x 2 against 0.35 + 0.15 + 0.15
        assert value.weight == pytest.approx(0.7 / 1.35, abs=1e-6)

    def test_resolved_multiplier_default(self):
        assert KPIEngine().resolved_multiplier("urgency_signal", BASE) == 1.0

    def test_family_multiplier(self):
        ruleset = build_ruleset(
            ScopeKey("health"),
            [Layer("vertical:health", OverrideDocument(
                formula_multipliers={"kpi_overall_score": {"intent_quality": 2.0}},
            ))],
        )
        result = _kpis(ruleset=ruleset)
        assert result.families["intent_quality"].weight == pytest.approx(0.4 / 1.2, abs=1e-6)

    def test_fallback_degrades_intent_kpis(self):
        result = _kpis(source=Fallback(reason="test"))
        assert result.fallback_mode is True
        assert result.degraded is True
        assert result.families["intent_quality"].degraded is True
        for kpi in KPIS:
            value = result.kpis[kpi.id]
            assert value.degraded is kpi.intent
            if kpi.intent:
                assert value.normalized >= INTENT_FALLBACK_FLOOR

    def test_empty_listing(self):
        result = _kpis(title=None, subtitle=None)
        assert result.kpis["title_char_usage"].raw == 0
        assert 0 <= result.overall_score <= 100

    def test_deterministic(self):
        assert _kpis(source=STORE_SOURCE) == _kpis(source=STORE_SOURCE)
