"""
Base Layer — the configuration every rule set starts from.

Code-defined and always present, so a rule set can be built even
when the rule store is unreachable. Vertical, market and client
documents from the store are merged on top of this.

Also declares the bounds every override is clamped to.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from asobible.text import STOPWORDS

BASE_LAYER = "base"

# Multiplier overrides (KPI weights, formula components) stay within this range
MULTIPLIER_BOUNDS: tuple[float, float] = (0.5, 2.0)


# ============================================================
# TOKEN RELEVANCE
# ============================================================

# Core intent verbs and language names
_LEVEL_3 = (
    "learn", "speak", "study", "practice", "master", "track", "train",
    "meditate", "translate", "invest", "save", "edit", "scan", "plan",
    "english", "spanish", "french", "german", "italian", "chinese",
    "japanese", "korean", "portuguese", "russian", "arabic", "hindi",
)

# Domain nouns users actually search for
_LEVEL_2 = (
    "language", "languages", "lesson", "lessons", "course", "courses",
    "vocabulary", "grammar", "workout", "workouts", "fitness", "calorie",
    "calories", "tracker", "counter", "diet", "yoga", "meditation", "sleep",
    "steps", "running", "habit", "habits", "budget", "money", "expense",
    "expenses", "finance", "stocks", "crypto", "photo", "photos", "video",
    "videos", "editor", "music", "recipes", "recipe", "weather", "calendar",
    "notes", "tasks", "planner", "scanner", "pdf", "chat", "dating",
    "puzzle", "games", "rewards", "cashback", "shopping", "travel", "maps",
    "translator", "weight", "nutrition", "journal", "podcast", "podcasts",
)

BASE_TOKEN_RELEVANCE: dict[str, int] = {
    **{t: 2 for t in _LEVEL_2},
    **{t: 3 for t in _LEVEL_3},
}

BASE_STOPWORDS: frozenset[str] = STOPWORDS


# ============================================================
# THRESHOLDS
# ============================================================

# Baseline values. Scopes may override within THRESHOLD_BOUNDS.
DEFAULT_THRESHOLDS: dict[str, float] = {
    "high_value.min_relevance": 2,
    "character_usage.pass_ratio": 0.7,
    "title_unique_keywords.min_unique": 2,
    "title_combo_coverage.min_combos": 2,
    "filler.moderate_noise": 0.3,
    "filler.high_noise": 0.5,
    "subtitle_incremental_value.min_new": 2,
    "subtitle_combo_coverage.min_new_combos": 2,
    "subtitle_complementarity.max_overlap": 0.4,
    "description_feature_mentions.min_features": 3,
    "description_cta_strength.min_ctas": 2,
    "description_readability.min_ease": 60,
    "recommendations.noise_ratio": 0.4,
    "recommendations.kpi_family_floor": 40,
}

THRESHOLD_BOUNDS: dict[str, tuple[float, float]] = {
    "high_value.min_relevance": (1, 3),
    "character_usage.pass_ratio": (0.3, 1.0),
    "title_unique_keywords.min_unique": (1, 6),
    "title_combo_coverage.min_combos": (1, 10),
    "filler.moderate_noise": (0.1, 0.6),
    "filler.high_noise": (0.2, 0.9),
    "subtitle_incremental_value.min_new": (1, 5),
    "subtitle_combo_coverage.min_new_combos": (1, 10),
    "subtitle_complementarity.max_overlap": (0.1, 0.9),
    "description_feature_mentions.min_features": (1, 10),
    "description_cta_strength.min_ctas": (1, 6),
    "description_readability.min_ease": (20, 90),
    "recommendations.noise_ratio": (0.2, 0.8),
    "recommendations.kpi_family_floor": (10, 80),
}

DEFAULT_DISCOVERY_THRESHOLDS: dict[str, int] = {
    "excellent": 5,
    "good": 3,
    "moderate": 1,
}

DISCOVERY_BOUNDS: tuple[int, int] = (1, 20)


# ============================================================
# RECOMMENDATION TEMPLATES
# ============================================================

@dataclass(frozen=True)
class RecommendationTemplate:
    """Message (with {placeholders}) and optional severity for one recommendation id."""
    id: str
    message: str
    severity: Optional[str] = None


def _t(id: str, message: str) -> RecommendationTemplate:
    return RecommendationTemplate(id=id, message=message)


BASE_TEMPLATES: dict[str, RecommendationTemplate] = {t.id: t for t in (
    _t("title_low_high_value_keywords",
       "Title has {count} high-value keyword(s). Add one or two category terms users actually search for."),
    _t("title_moderate_high_value_keywords",
       "Title has only {count} high-value keywords. A third strong term would widen ranking coverage."),
    _t("title_overflow",
       "Title is {chars}/{limit} characters. The store truncates it, so it scores zero for character usage."),
    _t("title_underutilized_characters",
       "Title uses {chars}/{limit} characters ({pct}%). Use the remaining space for a keyword."),
    _t("title_high_noise_ratio",
       "{pct}% of title words are filler. Replace stopwords with searchable terms."),
    _t("title_low_combo_coverage",
       "Title forms only {count} keyword phrase(s). Order words so they read as searchable phrases."),
    _t("subtitle_empty",
       "Subtitle is empty. It is the second most heavily weighted ranking field."),
    _t("subtitle_overflow",
       "Subtitle is {chars}/{limit} characters and will be truncated."),
    _t("subtitle_no_incremental_keywords",
       "Subtitle adds no high-value keywords beyond the title. Use it for new terms, not repeats."),
    _t("subtitle_low_incremental_keywords",
       "Subtitle adds only {count} new high-value keyword. Aim for two or more."),
    _t("subtitle_high_overlap",
       "{pct}% of subtitle keywords repeat the title ({terms}). Repeats do not add ranking coverage."),
    _t("subtitle_underutilized_characters",
       "Subtitle uses {chars}/{limit} characters ({pct}%). There is room for another keyword."),
    _t("subtitle_high_noise_ratio",
       "{pct}% of subtitle words are filler."),
    _t("combo_too_brand_focused",
       "{pct}% of keyword phrases contain the brand name. Add generic discovery phrases."),
    _t("combo_low_generic_coverage",
       "Only {count} generic discovery phrase(s) found. Non-branded phrases drive discovery traffic."),
    _t("combo_low_value_dominance",
       "{pct}% of keyword phrases are low value (superlatives, numbers, offers)."),
    _t("intent_missing_informational",
       "No informational intent (learn, how to, guide) in title or subtitle."),
    _t("intent_missing_commercial",
       "No commercial intent (best, top, compare) in title or subtitle."),
    _t("intent_missing_transactional",
       "No transactional intent (download, get, free) in title or subtitle."),
    _t("intent_fallback_mode",
       "Intent coverage was computed with the built-in fallback patterns ({reason}). Treat intent scores as approximate."),
    _t("kpi_family_low",
       "{family} scores {score}/100. Review the weakest KPIs: {kpis}."),
    _t("description_empty",
       "Description is empty. It does not rank but it converts."),
    _t("description_weak_hook",
       "Opening sentence has no hook. Lead with the outcome the user gets."),
    _t("description_no_features",
       "Description mentions {count} feature(s). List concrete features and benefits."),
    _t("description_weak_cta",
       "Description has {count} call(s) to action. Invite the user to download or start."),
    _t("description_low_readability",
       "Description reading ease is {score}. Shorter sentences and simpler words convert better."),
    _t("rule_failed",
       "{rule_name} did not pass ({detail})."),
)}
