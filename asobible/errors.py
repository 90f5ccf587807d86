"""
Engine Errors — Failure Taxonomy

Every failure the engine can meet while auditing a listing.
Only InvalidListingInput leaves the engine; the rest are recovered
where they happen and surface as flags or warnings on the result.
"""

from __future__ import annotations


class AsoEngineError(Exception):
    """Base class for engine errors."""


class MissingScopeConfig(AsoEngineError):
    """No override document exists for a scope. The scope inherits its parent."""


class RuleStoreUnavailable(AsoEngineError):
    """The rule store could not be reached, timed out, or returned garbage."""


class PatternSourceDegraded(AsoEngineError):
    """Intent patterns could not be loaded from the store."""


class LeakDetected(AsoEngineError):
    """Vocabulary from another vertical found in a merged rule set."""


class OverrideOutOfBounds(AsoEngineError):
    """A multiplier or threshold override fell outside its allowed range."""

    def __init__(self, key: str, value: float, low: float, high: float):
        self.key = key
        self.value = value
        self.low = low
        self.high = high
        super().__init__(
            f"Override {key}={value} outside [{low}, {high}]"
        )


class TokenizationFailure(AsoEngineError):
    """A single text element could not be analyzed."""

    def __init__(self, element: str, reason: str):
        self.element = element
        self.reason = reason
        super().__init__(f"Could not tokenize {element}: {reason}")


class InvalidListingInput(AsoEngineError, TypeError):
    """Listing metadata of the wrong shape or type. Raised at the call boundary."""
