"""beacon.security

Keeping secrets out of payloads and logs.
"""

from .redaction import FILTERED, filter_sensitive, redact_secrets, sanitize_for_log

__all__ = [
    "FILTERED",
    "filter_sensitive",
    "redact_secrets",
    "sanitize_for_log",
]
