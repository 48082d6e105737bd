"""
Redaction helpers applied before anything security-related reaches a log line.

Provides:
- redact(): Hash sensitive strings for correlation without exposure
- redact_headers(): Reduce credential-bearing headers to presence markers
- truncate_token(): Short prefix of a token for debug output
"""

from __future__ import annotations

from collections.abc import Mapping
from hashlib import sha256

TOKEN_PREVIEW_LENGTH = 20


def redact(value: str | None) -> str:
    """
    Return a stable hash representation of a sensitive string.
    """
    if not value:
        return "hash:missing"
    digest = sha256(value.encode("utf-8")).hexdigest()[:12]
    return f"hash:{digest}"


def redact_headers(headers: Mapping[str, str]) -> dict[str, str]:
    """
    Summarize the credential headers of a request.

    ``Authorization`` becomes ``Bearer [REDACTED]`` (or ``[REDACTED]`` for other
    schemes) and ``Cookie`` becomes ``[REDACTED]``; absent headers are ``none``.
    """
    authorization = headers.get("authorization")
    if not authorization:
        auth_summary = "none"
    elif authorization.lower().startswith("bearer "):
        auth_summary = "Bearer [REDACTED]"
    else:
        auth_summary = "[REDACTED]"

    return {
        "authorization": auth_summary,
        "cookie": "[REDACTED]" if headers.get("cookie") else "none",
    }


def truncate_token(token: str | None, length: int = TOKEN_PREVIEW_LENGTH) -> str | None:
    if not token:
        return None
    return token[:length] + "..." if len(token) > length else token
