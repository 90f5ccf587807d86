"""
Listing Schema — the metadata bundle an audit consumes.

Text fields are strict strings: an int or list where text belongs
is a caller bug and is rejected, never coerced.
"""

from __future__ import annotations

from typing import Optional
from pydantic import BaseModel, ConfigDict, Field, StrictStr


class ListingMetadata(BaseModel):
    """Store-listing text for one app in one locale."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    title: Optional[StrictStr] = Field(None, description="App name / title.")
    subtitle: Optional[StrictStr] = Field(
        None, description="iOS subtitle or Android short description.",
    )
    description: Optional[StrictStr] = Field(None, description="Long description.")
    locale: StrictStr = Field("en-US", description="BCP-47 locale, e.g. en-US.")
    category: Optional[StrictStr] = Field(
        None, description="Primary store category, e.g. Health & Fitness.",
    )
    app_scope_id: Optional[StrictStr] = Field(
        None, description="Client/app scope used for client-level overrides.",
    )
    platform: StrictStr = Field("ios", pattern="^(ios|android)$")

    @property
    def market(self) -> Optional[str]:
        """Region part of the locale, lowercased ("en-US" -> "us")."""
        parts = self.locale.replace("_", "-").split("-")
        if len(parts) < 2 or not parts[-1]:
            return None
        return parts[-1].lower()
