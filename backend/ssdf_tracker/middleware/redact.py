"""
Redaction and truncation of values before they reach the audit log.

Sensitive field names are replaced by a marker, e-mail addresses are masked and
long values are cut to ``max_length`` characters.
"""
from __future__ import annotations

import json
import re
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any

MAX_VALUE_LENGTH = 500
REDACTED = "[REDACTED]"
UNSERIALIZABLE = "[UNSERIALIZABLE]"

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
SENSITIVE_KEYS = (
    "password",
    "passwordhash",
    "token",
    "secret",
    "authorization",
    "cookie",
    "set-cookie",
    "clientsecret",
)


@dataclass(frozen=True)
class Redacted:
    value: str | None
    truncated: bool = False


def is_sensitive_key(key: str) -> bool:
    lowered = key.lower()
    return any(s in lowered for s in SENSITIVE_KEYS)


def mask_email(value: str) -> str:
    if not _EMAIL_RE.match(value):
        return value
    user, domain = value.split("@", 1)
    safe_user = f"{user[0]}***" if len(user) > 1 else "***"
    return f"{safe_user}@{domain}"


def _truncate(value: str, max_length: int) -> Redacted:
    if len(value) <= max_length:
        return Redacted(value, False)
    return Redacted(f"{value[:max_length]}...", True)


def _json_default(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def to_json(value: Any) -> str:
    """Stable JSON used both for storage and for change detection."""
    return json.dumps(value, default=_json_default, sort_keys=True, ensure_ascii=False)


def redact_value(value: Any, field_name: str | None = None, max_length: int = MAX_VALUE_LENGTH) -> Redacted:
    if field_name and is_sensitive_key(field_name):
        return Redacted(REDACTED)
    if value is None:
        return Redacted(None)
    if isinstance(value, Enum):
        value = value.value
    if isinstance(value, str):
        return _truncate(mask_email(value), max_length)
    if isinstance(value, bool):
        return Redacted("true" if value else "false")
    if isinstance(value, (int, float)):
        return Redacted(str(value))
    if isinstance(value, (datetime, date)):
        return Redacted(value.isoformat())
    try:
        return _truncate(to_json(value), max_length)
    except (TypeError, ValueError):
        return Redacted(UNSERIALIZABLE)


def redact_metadata(metadata: dict[str, Any], max_length: int = MAX_VALUE_LENGTH) -> tuple[dict[str, Any], bool]:
    """Drop sensitive keys and shorten long values. Returns (metadata, truncated)."""
    sanitized: dict[str, Any] = {}
    truncated = False
    for key, value in metadata.items():
        if is_sensitive_key(key):
            continue
        if isinstance(value, Enum):
            value = value.value
        if value is None or isinstance(value, (bool, int, float)):
            sanitized[key] = value
            continue
        if isinstance(value, (datetime, date)):
            sanitized[key] = value.isoformat()
            continue
        if isinstance(value, str):
            result = _truncate(mask_email(value), max_length)
        else:
            try:
                result = _truncate(to_json(value), max_length)
            except (TypeError, ValueError):
                result = Redacted(UNSERIALIZABLE)
        truncated = truncated or result.truncated
        sanitized[key] = result.value
    return sanitized, truncated
