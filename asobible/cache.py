"""
RuleSet Cache

In-memory TTL cache for merged rule sets.
Key = scope tuple (vertical, market, client). TTL = 5 minutes by default.

Entries hold fully built, frozen MergedRuleSet snapshots: a snapshot
is published only after it is complete, so readers never see a
partial merge. Thread-safe via threading.Lock.

Besides the live entries the cache remembers the last snapshot it
ever published for each key. Expiry and invalidate() drop the live
entry only; the last-known snapshot is what the merger falls back
to when the rule store is down.

Usage:
    cache = RuleSetCache(ttl_seconds=300)
    snapshot = cache.get(key)
    if snapshot is None:
        snapshot = build(...)
        cache.put(key, snapshot)
"""

from __future__ import annotations

import threading
import time
from typing import Callable, Generic, Hashable, Optional, TypeVar

T = TypeVar("T")


class RuleSetCache(Generic[T]):
    """Thread-safe scope-keyed cache with TTL eviction and stale lookup."""

    def __init__(
        self,
        ttl_seconds: float = 300,
        max_entries: int = 500,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._cache: dict[Hashable, tuple[float, T]] = {}
        self._last_known: dict[Hashable, T] = {}
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._clock = clock
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._stale_hits = 0

    def get(self, key: Hashable) -> Optional[T]:
        """Return the live snapshot for key if present and not expired."""
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                self._misses += 1
                return None

            ts, snapshot = entry
            if self._clock() - ts > self._ttl:
                del self._cache[key]
                self._misses += 1
                return None

            self._hits += 1
            return snapshot

    def get_stale(self, key: Hashable) -> Optional[T]:
        """Most recent snapshot ever published for key, expired or not."""
        with self._lock:
            snapshot = self._last_known.get(key)
            if snapshot is not None:
                self._stale_hits += 1
            return snapshot

    def put(self, key: Hashable, snapshot: T) -> None:
        """Publish a snapshot. Evicts the oldest live entry if over max."""
        with self._lock:
            if key not in self._cache and len(self._cache) >= self._max_entries:
                oldest_key = min(
                    self._cache, key=lambda k: self._cache[k][0],
                )
                del self._cache[oldest_key]

            if key not in self._last_known and len(self._last_known) >= self._max_entries:
                # Dicts keep insertion order; drop the earliest published key
                del self._last_known[next(iter(self._last_known))]

            self._cache[key] = (self._clock(), snapshot)
            self._last_known[key] = snapshot

    def invalidate(self, key: Hashable) -> bool:
        """Drop the live entry for key. Returns True if one existed."""
        with self._lock:
            return self._cache.pop(key, None) is not None

    def clear(self) -> None:
        """Forget everything, including last-known snapshots."""
        with self._lock:
            self._cache.clear()
            self._last_known.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)

    @property
    def stats(self) -> dict:
        """Cache hit/miss statistics."""
        with self._lock:
            total = self._hits + self._misses
            return {
                "entries": len(self._cache),
                "last_known": len(self._last_known),
                "hits": self._hits,
                "misses": self._misses,
                "stale_hits": self._stale_hits,
                "hit_rate": round(self._hits / total, 3) if total > 0 else 0.0,
            }
