"""
Tests for rule stores: scopes, the in-memory store, the HTTP store
(with a mocked requests session) and the factory.
"""

from unittest.mock import MagicMock

import pytest
import requests

from asobible.errors import RuleStoreUnavailable
from asobible.store import Scope
from asobible.store.factory import get_rule_store
from asobible.store.http import HttpRuleStore
from asobible.store.memory import InMemoryRuleStore


def _response(status=200, payload=None, json_error=None):
    response = MagicMock()
    response.status_code = status
    if json_error is not None:
        response.json.side_effect = json_error
    else:
        response.json.return_value = payload
    if status >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(
            f"{status}", response=response,
        )
    return response


def _http(*responses, retries=2):
    session = MagicMock()
    session.get.side_effect = list(responses)
    store = HttpRuleStore(
        base_url="https://rules.example.com/", timeout=0.2,
        retries=retries, backoff=0, session=session,
    )
    return store, session


class TestScope:
    def test_key(self):
        assert Scope("vertical", "health").key == "vertical:health"

    def test_parse(self):
        assert Scope.parse("client:acme") == Scope("client", "acme")

    def test_bad_level(self):
        with pytest.raises(ValueError):
            Scope("planet", "earth")

    def test_bad_key(self):
        with pytest.raises(ValueError):
            Scope.parse("health")


class TestInMemoryRuleStore:
    def test_missing_scope_returns_none(self):
        store = InMemoryRuleStore()
        assert store.get_overrides(Scope("vertical", "health")) is None
        assert store.get_intent_patterns(Scope("vertical", "health")) is None

    def test_returns_copies(self):
        store = InMemoryRuleStore(overrides={"vertical:health": {"stopwords": ["a"]}})
        doc = store.get_overrides(Scope("vertical", "health"))
        doc["stopwords"].append("b")
        assert store.get_overrides(Scope("vertical", "health")) == {"stopwords": ["a"]}

    def test_offline(self):
        store = InMemoryRuleStore()
        store.set_available(False)
        with pytest.raises(RuleStoreUnavailable):
            store.get_overrides(Scope("market", "us"))
        with pytest.raises(RuleStoreUnavailable):
            store.get_intent_patterns(Scope("market", "us"))

    def test_patterns_offline_only(self):
        store = InMemoryRuleStore(overrides={"market:us": {}})
        store.set_patterns_available(False)
        assert store.get_overrides(Scope("market", "us")) == {}
        with pytest.raises(RuleStoreUnavailable):
            store.get_intent_patterns(Scope("market", "us"))

    def test_put_and_remove(self):
        store = InMemoryRuleStore()
        store.put_overrides("client:acme", {"thresholds": {}})
        store.put_patterns(Scope("client", "acme"), [{"intent": "commercial", "terms": ["best"]}])
        assert store.get_overrides(Scope("client", "acme")) == {"thresholds": {}}
        store.remove("client:acme")
        assert store.get_overrides(Scope("client", "acme")) is None
        assert store.get_intent_patterns(Scope("client", "acme")) is None

    def test_counts_calls(self):
        store = InMemoryRuleStore()
        store.get_overrides(Scope("market", "us"))
        store.get_intent_patterns(Scope("market", "us"))
        assert store.calls == 2


class TestHttpRuleStore:
    def test_requires_url(self):
        with pytest.raises(ValueError):
            HttpRuleStore(base_url="", session=MagicMock())

    def test_get_overrides(self):
        store, session = _http(_response(200, {"thresholds": {"filler.high_noise": 0.6}}))
        doc = store.get_overrides(Scope("vertical", "health"))
        assert doc == {"thresholds": {"filler.high_noise": 0.6}}
        url = session.get.call_args.args[0]
        assert url == "https://rules.example.com/scopes/vertical/health/overrides"
        assert session.get.call_args.kwargs["timeout"] == 0.2

    def test_404_is_missing_not_failure(self):
        store, _ = _http(_response(404))
        assert store.get_overrides(Scope("market", "de")) is None

    def test_retries_transient_then_succeeds(self):
        store, session = _http(
            _response(503),
            requests.ConnectionError("reset"),
            _response(200, {"stopwords": []}),
        )
        assert store.get_overrides(Scope("market", "us")) == {"stopwords": []}
        assert session.get.call_count == 3

    def test_gives_up_after_retries(self):
        store, session = _http(
            requests.Timeout("slow"), requests.Timeout("slow"), retries=1,
        )
        with pytest.raises(RuleStoreUnavailable, match="after 2 attempts"):
            store.get_overrides(Scope("market", "us"))
        assert session.get.call_count == 2

    def test_client_error_not_retried(self):
        store, session = _http(_response(403))
        with pytest.raises(RuleStoreUnavailable):
            store.get_overrides(Scope("market", "us"))
        assert session.get.call_count == 1

    def test_invalid_json(self):
        store, _ = _http(_response(200, json_error=ValueError("bad json")))
        with pytest.raises(RuleStoreUnavailable, match="invalid JSON"):
            store.get_overrides(Scope("market", "us"))

    def test_patterns_list(self):
        patterns = [{"intent": "commercial", "terms": ["best"]}]
        store, session = _http(_response(200, patterns))
        assert store.get_intent_patterns(Scope("vertical", "health")) == patterns
        assert session.get.call_args.args[0].endswith("/scopes/vertical/health/intent-patterns")

    def test_patterns_wrapped(self):
        patterns = [{"intent": "commercial", "pattern": "best"}]
        store, _ = _http(_response(200, {"patterns": patterns}))
        assert store.get_intent_patterns(Scope("vertical", "health")) == patterns

    def test_patterns_not_a_list(self):
        store, _ = _http(_response(200, {"patterns": "best"}))
        with pytest.raises(RuleStoreUnavailable):
            store.get_intent_patterns(Scope("vertical", "health"))


class TestFactory:
    def test_memory(self):
        assert isinstance(get_rule_store("memory"), InMemoryRuleStore)

    def test_memory_with_documents(self):
        store = get_rule_store("memory", overrides={"market:us": {}})
        assert store.get_overrides(Scope("market", "us")) == {}

    def test_http(self):
        store = get_rule_store("http", base_url="https://rules.example.com", session=MagicMock())
        assert isinstance(store, HttpRuleStore)

    def test_unknown(self):
        with pytest.raises(ValueError, match="Unknown rule store"):
            get_rule_store("redis")
