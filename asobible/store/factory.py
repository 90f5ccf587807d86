"""
Rule Store — factory.
"""

from typing import Optional

from asobible.config import settings
from asobible.store import RuleStore


def get_rule_store(store_name: Optional[str] = None, **kwargs) -> RuleStore:
    """Factory: returns the configured rule store."""
    name = store_name or settings.RULE_STORE
    if name == "memory":
        from asobible.store.memory import InMemoryRuleStore
        return InMemoryRuleStore(**kwargs)
    elif name == "http":
        from asobible.store.http import HttpRuleStore
        return HttpRuleStore(**kwargs)
    else:
        raise ValueError(f"Unknown rule store: {name}")
