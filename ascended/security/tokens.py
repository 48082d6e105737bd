"""
Bearer tokens for mobile clients.

Tokens are HS256 JWTs signed with ``SESSION_SECRET``. They carry ``userId`` and
``email`` plus profile fields, and are valid for seven days from ``iat`` with a
five minute grace window on both ``exp`` and the ``iat`` age check.
"""

from __future__ import annotations

import time
from typing import Any

import jwt

from ascended.config import JWT_ALGORITHM, JWT_GRACE_SECONDS, JWT_MAX_AGE_SECONDS

REQUIRED_CLAIMS = ("userId", "email")


def issue_mobile_token(
    user: dict[str, Any],
    secret: str,
    issued_at: int | None = None,
    max_age: int = JWT_MAX_AGE_SECONDS,
) -> str:
    """Sign a token for ``user`` (a dict with id/email/firstName/lastName/profileImageUrl)."""
    iat = int(issued_at if issued_at is not None else time.time())
    payload = {
        "userId": str(user["id"]),
        "email": user["email"],
        "firstName": user.get("firstName"),
        "lastName": user.get("lastName"),
        "profileImageUrl": user.get("profileImageUrl"),
        "iat": iat,
        "exp": iat + max_age,
    }
    return jwt.encode(payload, secret, algorithm=JWT_ALGORITHM)


def verify_mobile_token(
    token: str,
    secret: str,
    max_age: int = JWT_MAX_AGE_SECONDS,
    grace: int = JWT_GRACE_SECONDS,
) -> dict[str, Any]:
    """
    Decode and validate a mobile token.

    Returns:
        The token payload

    Raises:
        jwt.InvalidTokenError: Bad signature, expired beyond the grace window,
            too old by ``iat``, or missing ``userId``/``email``
    """
    payload = jwt.decode(
        token,
        secret,
        algorithms=[JWT_ALGORITHM],
        leeway=grace,
        options={"require": ["iat"]},
    )

    missing = [claim for claim in REQUIRED_CLAIMS if not payload.get(claim)]
    if missing:
        raise jwt.InvalidTokenError(f"Token missing claims: {', '.join(missing)}")

    age = time.time() - float(payload["iat"])
    if age > max_age + grace:
        raise jwt.ExpiredSignatureError("Token too old")

    return payload


def extract_bearer_token(authorization: str | None) -> str | None:
    """Return the token of a ``Bearer`` Authorization header, else None."""
    if not authorization:
        return None
    parts = authorization.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer" or not parts[1].strip():
        return None
    return parts[1].strip()
