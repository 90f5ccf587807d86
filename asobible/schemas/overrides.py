"""
Override Schemas — documents served by the rule store.

Validation here is about shape only. Keys are normalized
(lowercased, trimmed) but numbers are NOT bounded: bounds are
enforced by the merger when an override is applied, so every
source of overrides goes through the same clamps.
"""

from __future__ import annotations

from typing import Any, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class TemplateSpec(BaseModel):
    """A recommendation message override."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1)
    severity: Optional[str] = Field(
        None, pattern="^(critical|strong|moderate|optional)$",
    )


class IntentPatternSpec(BaseModel):
    """One intent pattern as stored. Accepts a single "pattern" or a "terms" list."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    intent: str = Field(..., pattern="^(informational|commercial|transactional|navigational)$")
    terms: list[str] = Field(..., min_length=1)
    weight: float = 1.0
    priority: int = 100
    word_boundary: bool = True

    @model_validator(mode="before")
    @classmethod
    def _single_pattern(cls, data: Any) -> Any:
        if isinstance(data, dict) and "terms" not in data and "pattern" in data:
            data = {**data, "terms": [data["pattern"]]}
        return data

    @field_validator("terms")
    @classmethod
    def _normalize_terms(cls, terms: list[str]) -> list[str]:
        cleaned = [t.strip().lower() for t in terms if t and t.strip()]
        if not cleaned:
            raise ValueError("pattern needs at least one non-empty term")
        return cleaned


class OverrideDocument(BaseModel):
    """Overrides for one scope (vertical, market or client)."""

    model_config = ConfigDict(extra="ignore")

    version: Optional[str] = None
    token_relevance: dict[str, float] = Field(default_factory=dict)
    stopwords: list[str] = Field(default_factory=list)
    kpi_multipliers: dict[str, float] = Field(default_factory=dict)
    formula_multipliers: dict[str, dict[str, float]] = Field(default_factory=dict)
    thresholds: dict[str, float] = Field(default_factory=dict)
    discovery_thresholds: dict[str, float] = Field(default_factory=dict)
    recommendation_templates: Optional[list[TemplateSpec]] = None

    @field_validator("token_relevance")
    @classmethod
    def _normalize_tokens(cls, tokens: dict[str, float]) -> dict[str, float]:
        return {k.strip().lower(): v for k, v in tokens.items() if k and k.strip()}

    @field_validator("stopwords")
    @classmethod
    def _normalize_stopwords(cls, words: list[str]) -> list[str]:
        return [w.strip().lower() for w in words if w and w.strip()]
