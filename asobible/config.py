"""
asobible Configuration

Central settings loaded from environment variables.
"""

import os
from dataclasses import dataclass
from dotenv import load_dotenv

load_dotenv()


@dataclass(frozen=True)
class Settings:
    """Immutable engine settings."""

    # --- Versioning ---
    ENGINE_VERSION: str = "1.0.0"

    # --- RuleSet Cache ---
    RULESET_TTL_SECONDS: float = float(
        os.getenv("ASOBIBLE_RULESET_TTL_SECONDS", "300")
    )
    RULESET_MAX_ENTRIES: int = int(
        os.getenv("ASOBIBLE_RULESET_MAX_ENTRIES", "500")
    )

    # --- Rule Store ---
    RULE_STORE: str = os.getenv("ASOBIBLE_RULE_STORE", "memory")
    RULE_STORE_URL: str = os.getenv("ASOBIBLE_RULE_STORE_URL", "")
    RULE_STORE_TIMEOUT_MS: int = int(
        os.getenv("ASOBIBLE_RULE_STORE_TIMEOUT_MS", "300")
    )
    RULE_STORE_RETRIES: int = int(os.getenv("ASOBIBLE_RULE_STORE_RETRIES", "2"))
    # Deadline for fetching every layer of one rule set
    RULESET_REBUILD_TIMEOUT_MS: int = int(
        os.getenv("ASOBIBLE_RULESET_REBUILD_TIMEOUT_MS", "1000")
    )

    # --- Audit Defaults ---
    DEFAULT_PLATFORM: str = os.getenv("ASOBIBLE_DEFAULT_PLATFORM", "ios")
    DEFAULT_MARKET: str = os.getenv("ASOBIBLE_DEFAULT_MARKET", "us")

    @property
    def rule_store_timeout(self) -> float:
        """Per-request rule store timeout in seconds."""
        return self.RULE_STORE_TIMEOUT_MS / 1000.0

    @property
    def ruleset_rebuild_timeout(self) -> float:
        """Rule set rebuild deadline in seconds."""
        return self.RULESET_REBUILD_TIMEOUT_MS / 1000.0


settings = Settings()
