"""Log redaction for customer data and channel credentials.

Message bodies, phone numbers, e-mail addresses and channel identifiers are
customer data; Meta access tokens, OpenAI keys and signed media URLs are
credentials. Anything that reaches a log record goes through these helpers.
"""

import hashlib
import re
from typing import Any

_REDACTED = "[REDACTED]"
MAX_LOGGED_STRING = 200

# Order matters: credentials first so their digits are not eaten as phones
_CREDENTIAL_PATTERNS = (
    re.compile(r"Bearer\s+[A-Za-z0-9._~+/=-]+"),
    re.compile(r"\bEAA[A-Za-z0-9]{20,}"),
    re.compile(r"\bsk-[A-Za-z0-9_-]{16,}"),
    re.compile(r"sha256=[0-9a-fA-F]{16,}"),
)
_URL_QUERY_PATTERN = re.compile(r"(https?://[^\s?#]+)\?[^\s#]*")
_PHONE_PATTERN = re.compile(r"\+?\d[\d\s\-()]{8,}\d")
_EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")


def redact_string(value: str) -> str:
    """Mask credentials, URL query strings, phones and e-mails; cap length."""
    result = value
    for pattern in _CREDENTIAL_PATTERNS:
        result = pattern.sub(_REDACTED, result)
    # Signed media URLs carry their signature in the query string
    result = _URL_QUERY_PATTERN.sub(r"\1?" + _REDACTED, result)
    result = _PHONE_PATTERN.sub(_REDACTED, result)
    result = _EMAIL_PATTERN.sub(_REDACTED, result)
    if len(result) > MAX_LOGGED_STRING:
        result = f"{result[:MAX_LOGGED_STRING]}...(len={len(value)})"
    return result


def redact_value(value: Any) -> str:
    """String form of `value` that is safe to log."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        return redact_string(value)
    if isinstance(value, bytes):
        return f"bytes(len={len(value)})"
    if isinstance(value, dict):
        # Webhook payloads: key names only
        return f"dict(keys={sorted(str(k) for k in value.keys())})"
    if isinstance(value, (list, tuple, set)):
        return f"list(len={len(value)})"
    return f"<{type(value).__name__}>"


def safe_log_context(**kwargs: Any) -> dict[str, str]:
    return {k: redact_value(v) for k, v in kwargs.items()}


def hash_identifier(value: str) -> str:
    """Non-reversible short hash of a channel identifier, for log correlation."""
    return hashlib.sha256(value.encode()).hexdigest()[:12]
