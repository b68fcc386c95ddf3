"""Structured JSON logging (one object per line on stdout).

Structured fields go through ``extra={"extra_fields": safe_log_context(...)}``
and are merged at the top level; they never override the core keys.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

from .correlation import get_correlation_id

_CORE_KEYS = frozenset({"timestamp", "level", "logger", "message", "correlationId"})


class JsonFormatter(logging.Formatter):
    """JSON formatter that includes the bound correlation ID."""

    def format(self, record: logging.LogRecord) -> str:
        log_obj: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        correlation_id = get_correlation_id()
        if correlation_id:
            log_obj["correlationId"] = correlation_id

        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)

        for key, value in getattr(record, "extra_fields", {}).items():
            if key not in _CORE_KEYS:
                log_obj[key] = value

        return json.dumps(log_obj, default=str, ensure_ascii=False)


def get_logger(name: str) -> logging.Logger:
    """Logger writing JSON to stdout at LOG_LEVEL (default INFO)."""
    logger = logging.getLogger(name)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JsonFormatter())
        logger.addHandler(handler)
        logger.setLevel(os.environ.get("LOG_LEVEL", "INFO").upper())
        logger.propagate = False

    return logger
