"""
In-Memory Rule Store

Dictionary-backed store for embedding and tests. Documents can be
replaced at runtime, and the store can be switched "offline" to
exercise the merger's degraded paths.
"""

from __future__ import annotations

import copy
import threading
from typing import Any, Optional, Union

from asobible.errors import RuleStoreUnavailable
from asobible.store import RuleStore, Scope

ScopeLike = Union[Scope, str]


def _scope(scope: ScopeLike) -> Scope:
    return scope if isinstance(scope, Scope) else Scope.parse(scope)


class InMemoryRuleStore(RuleStore):
    """Thread-safe dictionary store."""

    def __init__(
        self,
        overrides: Optional[dict[ScopeLike, Any]] = None,
        patterns: Optional[dict[ScopeLike, list]] = None,
    ):
        self._lock = threading.Lock()
        self._overrides: dict[Scope, Any] = {
            _scope(k): v for k, v in (overrides or {}).items()
        }
        self._patterns: dict[Scope, list] = {
            _scope(k): v for k, v in (patterns or {}).items()
        }
        self._available = True
        self._patterns_available = True
        self.calls = 0

    def set_available(self, available: bool) -> None:
        """Simulate a full outage (both overrides and patterns)."""
        with self._lock:
            self._available = available

    def set_patterns_available(self, available: bool) -> None:
        """Simulate an outage of the intent-pattern endpoint only."""
        with self._lock:
            self._patterns_available = available

    def put_overrides(self, scope: ScopeLike, document: Any) -> None:
        with self._lock:
            self._overrides[_scope(scope)] = document

    def put_patterns(self, scope: ScopeLike, patterns: list) -> None:
        with self._lock:
            self._patterns[_scope(scope)] = patterns

    def remove(self, scope: ScopeLike) -> None:
        with self._lock:
            self._overrides.pop(_scope(scope), None)
            self._patterns.pop(_scope(scope), None)

    def get_overrides(self, scope: Scope) -> Optional[Any]:
        with self._lock:
            self.calls += 1
            if not self._available:
                raise RuleStoreUnavailable(f"store offline ({scope.key})")
            return copy.deepcopy(self._overrides.get(scope))

    def get_intent_patterns(self, scope: Scope) -> Optional[list]:
        with self._lock:
            self.calls += 1
            if not (self._available and self._patterns_available):
                raise RuleStoreUnavailable(f"pattern store offline ({scope.key})")
            patterns = self._patterns.get(scope)
            return copy.deepcopy(patterns) if patterns is not None else None
