"""
Tests for the scope-keyed rule set cache.
"""

import threading

from asobible.cache import RuleSetCache


class TestRuleSetCache:
    def test_miss_then_hit(self, clock):
        cache = RuleSetCache(ttl_seconds=60, clock=clock)
        assert cache.get("k") is None
        cache.put("k", "snapshot")
        assert cache.get("k") == "snapshot"
        assert cache.stats["hits"] == 1
        assert cache.stats["misses"] == 1
        assert cache.stats["hit_rate"] == 0.5

    def test_expiry(self, clock):
        cache = RuleSetCache(ttl_seconds=60, clock=clock)
        cache.put("k", "snapshot")
        clock.advance(59)
        assert cache.get("k") == "snapshot"
        clock.advance(2)
        assert cache.get("k") is None
        assert len(cache) == 0

    def test_stale_survives_expiry(self, clock):
        cache = RuleSetCache(ttl_seconds=60, clock=clock)
        cache.put("k", "snapshot")
        clock.advance(120)
        assert cache.get("k") is None
        assert cache.get_stale("k") == "snapshot"
        assert cache.stats["stale_hits"] == 1

    def test_invalidate_keeps_last_known(self, clock):
        cache = RuleSetCache(clock=clock)
        cache.put("k", "snapshot")
        assert cache.invalidate("k") is True
        assert cache.invalidate("k") is False
        assert cache.get("k") is None
        assert cache.get_stale("k") == "snapshot"

    def test_put_replaces(self, clock):
        cache = RuleSetCache(clock=clock)
        cache.put("k", "v1")
        cache.put("k", "v2")
        assert cache.get("k") == "v2"
        assert cache.get_stale("k") == "v2"

    def test_evicts_oldest(self, clock):
        cache = RuleSetCache(max_entries=2, clock=clock)
        cache.put("a", 1)
        clock.advance(1)
        cache.put("b", 2)
        clock.advance(1)
        cache.put("c", 3)
        assert len(cache) == 2
        assert cache.get("a") is None
        assert cache.get("b") == 2
        assert cache.get("c") == 3
        assert cache.stats["last_known"] == 2

    def test_clear(self, clock):
        cache = RuleSetCache(clock=clock)
        cache.put("k", "v")
        cache.clear()
        assert cache.get("k") is None
        assert cache.get_stale("k") is None

    def test_empty_stats(self):
        stats = RuleSetCache().stats
        assert stats["entries"] == 0
        assert stats["hit_rate"] == 0.0

    def test_concurrent_puts(self):
        cache = RuleSetCache(max_entries=1000)

        def worker(n):
            for i in range(100):
                cache.put((n, i), i)
                cache.get((n, i))

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(cache) == 800
        assert cache.stats["hits"] == 800
