"""Redaction helpers for safe logging. All external data must pass through these."""

import re
from decimal import Decimal
from typing import Any

# Patterns that should never appear in logs
_TAX_ID_PATTERN = re.compile(
    r"\b\d{3}\.?\d{3}\.?\d{3}-?\d{2}\b|\b\d{2}\.?\d{3}\.?\d{3}/?\d{4}-?\d{2}\b"
)
_PHONE_PATTERN = re.compile(r"\+?\d[\d\s\-()]{8,}\d")
_EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")

_REDACTED = "[REDACTED]"

# Asaas object ids (pay_..., cus_...) are not PII but look like phone numbers
_GATEWAY_ID_PATTERN = re.compile(r"^(pay|cus)_\w+$")


def redact_string(value: str) -> str:
    """Redact PII patterns (CPF/CNPJ, phones, emails) from a string."""
    result = _TAX_ID_PATTERN.sub(_REDACTED, value)
    result = _PHONE_PATTERN.sub(_REDACTED, result)
    result = _EMAIL_PATTERN.sub(_REDACTED, result)
    return result


def redact_value(value: Any) -> str:
    """Redact any value for safe logging. Returns string representation."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, (int, float, Decimal)):
        return str(value)
    if isinstance(value, str):
        if _GATEWAY_ID_PATTERN.match(value):
            return value
        return redact_string(value)
    if isinstance(value, dict):
        # Keys only, never values
        return f"dict(keys={list(value.keys())})"
    if isinstance(value, (list, tuple)):
        return f"list(len={len(value)})"
    return f"<{type(value).__name__}>"


def safe_log_context(**kwargs: Any) -> dict[str, str]:
    """Build a context dict safe for logging. All values are redacted."""
    return {k: redact_value(v) for k, v in kwargs.items()}
