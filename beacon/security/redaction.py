"""beacon.security.redaction

Secret redaction helpers.

Two tools, two audiences:
- ``filter_sensitive`` scrubs event payloads before they leave the process
- ``sanitize_for_log`` scrubs anything about to hit a log line
"""

from __future__ import annotations

import copy
import re
from typing import Any

FILTERED = "***FILTERED***"
REDACTED = "[REDACTED]"

_REDACTION_PATTERNS: list[tuple[str, str]] = [
    # Generic key/value
    (r"(?i)(api[_-]?key|secret|password|token)\s*[:=]\s*[^\s\"'&]+", REDACTED),
    # Bearer credentials
    (r"(?i)bearer\s+[a-z0-9._~+/-]+=*", REDACTED),
    # JWT
    (r"eyJ[a-zA-Z0-9_-]+\.eyJ[a-zA-Z0-9_-]+\.[a-zA-Z0-9_-]+", REDACTED),
    # Provider style API keys
    (r"sk-[a-zA-Z0-9_-]{20,}", REDACTED),
    # Card numbers (13-19 digits, optional separators)
    (r"\b(?:\d[ -]?){13,19}\b", REDACTED),
]

# Substring match on lowercased key names.
_SENSITIVE_KEY_PARTS = (
    "password",
    "pwd",
    "secret",
    "token",
    "auth",
    "key",
    "apikey",
    "api_key",
    "credentials",
    "credit",
    "card",
    "cvv",
    "ssn",
    "social",
    "passport",
)

_SENSITIVE_FIELD_NAMES = {
    "api_key",
    "apikey",
    "secret",
    "password",
    "token",
    "app_token",
    "apptoken",
    "x-app-token",
    "authorization",
}


def is_sensitive_key(key: str) -> bool:
    lowered = str(key).lower()
    return any(part in lowered for part in _SENSITIVE_KEY_PARTS)


def filter_sensitive(data: dict[str, Any]) -> dict[str, Any]:
    """Copy of ``data`` with values under sensitive-looking keys replaced, recursively."""

    def _walk(obj: Any) -> Any:
        if isinstance(obj, dict):
            return {k: (FILTERED if is_sensitive_key(k) else _walk(v)) for k, v in obj.items()}
        if isinstance(obj, list | tuple):
            return [_walk(v) for v in obj]
        return obj

    return _walk(data)


def redact_secrets(text: str) -> str:
    out = text
    for pattern, repl in _REDACTION_PATTERNS:
        out = re.sub(pattern, repl, out)
    return out


def sanitize_for_log(data: dict[str, Any]) -> dict[str, Any]:
    """Deep-copy and redact sensitive fields + embedded secrets."""

    def _walk(obj: Any) -> Any:
        if isinstance(obj, dict):
            new: dict[str, Any] = {}
            for k, v in obj.items():
                if str(k).lower() in _SENSITIVE_FIELD_NAMES:
                    new[k] = REDACTED
                else:
                    new[k] = _walk(v)
            return new
        if isinstance(obj, list):
            return [_walk(v) for v in obj]
        if isinstance(obj, tuple):
            return [_walk(v) for v in obj]
        if isinstance(obj, str):
            return redact_secrets(obj)
        return obj

    return _walk(copy.deepcopy(data))
