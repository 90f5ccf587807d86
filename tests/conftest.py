"""Shared fixtures: a fresh store, cache and engine per test."""

import pytest

from asobible.cache import RuleSetCache
from asobible.engine import AuditEngine
from asobible.ruleset.merger import RuleSetMerger
from asobible.store.memory import InMemoryRuleStore


HEALTH_PATTERNS = [
    {"intent": "informational", "terms": ["how to", "guide", "tips"], "word_boundary": False},
    {"intent": "commercial", "terms": ["best", "top"], "weight": 1.5, "priority": 120},
    {"intent": "transactional", "terms": ["download", "free", "track"], "weight": 1.8},
    {"intent": "navigational", "terms": ["fittrack"], "weight": 1.0, "priority": 50},
]


@pytest.fixture
def store():
    return InMemoryRuleStore(
        overrides={"vertical:health": {"token_relevance": {"log": 2}}},
        patterns={"vertical:health": HEALTH_PATTERNS},
    )


@pytest.fixture
def clock():
    """Manually advanced monotonic clock."""
    class Clock:
        now = 1000.0

        def __call__(self):
            return self.now

        def advance(self, seconds):
            self.now += seconds

    return Clock()


@pytest.fixture
def cache(clock):
    return RuleSetCache(ttl_seconds=300, clock=clock)


@pytest.fixture
def merger(store, cache):
    m = RuleSetMerger(store, cache=cache, timeout=5.0)
    yield m
    m.close()


@pytest.fixture
def engine(merger):
    return AuditEngine(merger)
