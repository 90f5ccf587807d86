"""Pydantic models for listing input and rule-store documents."""

from asobible.schemas.listing import ListingMetadata
from asobible.schemas.overrides import (
    IntentPatternSpec,
    OverrideDocument,
    TemplateSpec,
)

__all__ = [
    "ListingMetadata",
    "IntentPatternSpec",
    "OverrideDocument",
    "TemplateSpec",
]
