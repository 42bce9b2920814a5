"""Redaction helpers for safe logging of user identifiers."""

import hashlib
import re
from typing import Any

_EMAIL = re.compile(r"\b([A-Za-z0-9._%+-])[A-Za-z0-9._%+-]*@([A-Za-z0-9.-]+\.[A-Za-z]{2,})\b")

_SENSITIVE_KEYS = {"email", "reporter_email", "assignee_email", "api_key", "signature"}


def mask_email(value: str) -> str:
    """Keep the first character and the domain: ``j***@example.com``."""
    return _EMAIL.sub(r"\1***@\2", value)


def redact_value(value: str) -> str:
    """Hash a sensitive string value for safe storage."""
    return f"REDACTED:{hashlib.sha256(value.encode()).hexdigest()[:12]}"


def redact_dict(data: dict[str, Any]) -> dict[str, Any]:
    """Recursively redact sensitive fields from a log payload."""
    result = {}
    for key, value in data.items():
        if key.lower() in _SENSITIVE_KEYS:
            result[key] = redact_value(str(value)) if value else None
        elif isinstance(value, dict):
            result[key] = redact_dict(value)
        elif isinstance(value, str):
            result[key] = mask_email(value)
        else:
            result[key] = value
    return result
