"""
Rule Store — Abstract Interface

The engine only reads from the rule store. Swap stores by
changing ASOBIBLE_RULE_STORE in env (see store/factory.py).

A store returns None when it has nothing for a scope and raises
RuleStoreUnavailable when it cannot answer at all.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

from asobible.errors import RuleStoreUnavailable

SCOPE_LEVELS = ("vertical", "market", "client")


@dataclass(frozen=True, order=True)
class Scope:
    """One override layer address, e.g. Scope("vertical", "health")."""
    level: str
    id: str

    def __post_init__(self):
        if self.level not in SCOPE_LEVELS:
            raise ValueError(f"Unknown scope level: {self.level}")

    @property
    def key(self) -> str:
        return f"{self.level}:{self.id}"

    @classmethod
    def parse(cls, key: str) -> "Scope":
        level, _, ident = key.partition(":")
        if not ident:
            raise ValueError(f"Scope key must look like 'level:id', got {key!r}")
        return cls(level, ident)


class RuleStore(ABC):
    """Abstract base for rule stores."""

    @abstractmethod
    def get_overrides(self, scope: Scope) -> Optional[Any]:
        """Override document for a scope (mapping or OverrideDocument), or None."""
        ...

    @abstractmethod
    def get_intent_patterns(self, scope: Scope) -> Optional[list]:
        """Intent patterns declared at a scope, or None."""
        ...


__all__ = ["Scope", "RuleStore", "RuleStoreUnavailable", "SCOPE_LEVELS"]
