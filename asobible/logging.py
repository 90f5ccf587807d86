"""
Structured Logging — JSON Output for Production

Configures Python logging to emit structured JSON logs.
Each log entry includes timestamp, level, module, and
any ruleset or scoring context passed through ``extra``.

Usage:
    from asobible.logging import get_logger
    logger = get_logger("merger")
    logger.warning("Override clamped", extra={"override_key": "kpi:hook", "value": 3.0})
"""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone


LOG_LEVEL = os.getenv("ASOBIBLE_LOG_LEVEL", "INFO").upper()
LOG_FORMAT = os.getenv("ASOBIBLE_LOG_FORMAT", "json")  # "json" or "text"

EXTRA_FIELDS = (
    "scope_key", "vertical", "market", "client_scope", "ruleset_version",
    "source", "fallback_mode", "degraded", "kpi_id", "override_key",
    "value", "clamped", "overall_score", "duration_ms", "error",
    "warning_type", "attempt",
)


class JSONFormatter(logging.Formatter):
    """Formats log records as JSON lines."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key in EXTRA_FIELDS:
            val = getattr(record, key, None)
            if val is not None:
                entry[key] = val

        if record.exc_info and record.exc_info[0]:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable format for development."""

    def __init__(self):
        super().__init__(
            fmt="%(asctime)s [%(levelname)-8s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )


def setup_logging(level: str | None = None, fmt: str | None = None) -> logging.Logger:
    """Configure the package logger. Call once at process startup."""
    root = logging.getLogger("asobible")
    root.setLevel(getattr(logging, (level or LOG_LEVEL).upper(), logging.INFO))

    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    if (fmt or LOG_FORMAT) == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(TextFormatter())

    root.addHandler(handler)

    # urllib3 logs every retry at WARNING
    logging.getLogger("urllib3").setLevel(logging.ERROR)

    return root


def get_logger(name: str) -> logging.Logger:
    """Get a named logger under the asobible namespace."""
    return logging.getLogger(f"asobible.{name}")
