"""
HTTP Rule Store — reads override documents from a REST service.

Endpoints (relative to the base URL):
  GET /scopes/{level}/{id}/overrides        -> OverrideDocument JSON
  GET /scopes/{level}/{id}/intent-patterns  -> list of patterns, or {"patterns": [...]}

Features:
- Every request carries a timeout
- Bounded retry with exponential backoff on transient errors
- 404 means "no overrides for this scope", not a failure
"""

from __future__ import annotations

import time
from typing import Any, Optional

import requests

from asobible.config import settings
from asobible.errors import RuleStoreUnavailable
from asobible.logging import get_logger
from asobible.store import RuleStore, Scope

logger = get_logger("store.http")

_TRANSIENT_STATUS = {429, 500, 502, 503, 504}


class HttpRuleStore(RuleStore):
    """Rule store backed by an HTTP JSON API."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        retries: Optional[int] = None,
        backoff: float = 0.05,
        session: Optional[requests.Session] = None,
    ):
        self._base_url = (base_url or settings.RULE_STORE_URL).rstrip("/")
        if not self._base_url:
            raise ValueError(
                "HttpRuleStore needs a base URL. Set ASOBIBLE_RULE_STORE_URL."
            )
        self._timeout = timeout if timeout is not None else settings.rule_store_timeout
        self._retries = max(0, retries if retries is not None else settings.RULE_STORE_RETRIES)
        self._backoff = backoff
        self._session = session or requests.Session()

    def _get_json(self, path: str) -> Optional[Any]:
        """GET a JSON document with retry. Returns None on 404."""
        url = f"{self._base_url}{path}"
        last_error: Optional[Exception] = None
        for attempt in range(self._retries + 1):
            try:
                response = self._session.get(url, timeout=self._timeout)
                if response.status_code == 404:
                    return None
                if response.status_code in _TRANSIENT_STATUS:
                    raise requests.HTTPError(
                        f"{response.status_code} from {url}", response=response,
                    )
                response.raise_for_status()
                return response.json()
            except (requests.ConnectionError, requests.Timeout) as e:
                last_error = e
            except requests.HTTPError as e:
                status = e.response.status_code if e.response is not None else None
                if status not in _TRANSIENT_STATUS:
                    raise RuleStoreUnavailable(f"GET {url} failed: {e}") from e
                last_error = e
            except ValueError as e:
                raise RuleStoreUnavailable(f"GET {url} returned invalid JSON: {e}") from e

            if attempt < self._retries:
                logger.warning(
                    "Rule store request failed, retrying",
                    extra={"error": str(last_error), "attempt": attempt + 1},
                )
                time.sleep(self._backoff * (2 ** attempt))

        raise RuleStoreUnavailable(
            f"GET {url} failed after {self._retries + 1} attempts: {last_error}"
        ) from last_error

    def get_overrides(self, scope: Scope) -> Optional[Any]:
        return self._get_json(f"/scopes/{scope.level}/{scope.id}/overrides")

    def get_intent_patterns(self, scope: Scope) -> Optional[list]:
        payload = self._get_json(f"/scopes/{scope.level}/{scope.id}/intent-patterns")
        if payload is None:
            return None
        if isinstance(payload, dict):
            payload = payload.get("patterns")
        if payload is not None and not isinstance(payload, list):
            raise RuleStoreUnavailable(
                f"intent patterns for {scope.key} are not a list"
            )
        return payload
