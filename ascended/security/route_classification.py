"""
Route classification.

Every request path belongs to exactly one class. The class decides which
authentication is accepted and which security headers are attached.

Resolution order: admin patterns, then public patterns, then the user
allow-list; any other ``/api/`` path is USER and everything else is PUBLIC.
"""

from __future__ import annotations

import re
from enum import Enum


class AuthType(str, Enum):
    ADMIN = "admin"
    USER = "user"
    PUBLIC = "public"


ADMIN_ROUTE_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p) for p in (r"^/api/admin/", r"^/admin/")
)

USER_ROUTE_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p)
    for p in (
        r"^/api/auth/",
        r"^/api/posts",
        r"^/api/comments",
        r"^/api/engagements",
        r"^/api/oracle",
        r"^/api/visions",
        r"^/api/communities",
        r"^/api/users",
        r"^/api/profile",
        r"^/api/upload",
        r"^/api/objects",
        r"^/api/spirit",
        r"^/api/sparks",
        r"^/api/energy",
        r"^/api/subscription",
        r"^/api/payment",
        r"^/api/newsletter",
        r"^/api/notifications",
        r"^/api/reports",
    )
)

PUBLIC_ROUTE_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p)
    for p in (
        r"^/api/debug/",
        r"^/api/health$",
        r"^/api/login$",
        r"^/api/callback$",
        r"^/api/logout$",
        r"^/$",
        r"^/landing",
        r"^/about",
        r"^/pricing",
        r"^/terms",
        r"^/privacy",
        r"^/auth-callback",
        r"^/not-found",
        r"^/static/",
        r"^/assets/",
        r"^/favicon",
        r"\.css$",
        r"\.js$",
        r"\.png$",
        r"\.jpg$",
        r"\.svg$",
        r"\.ico$",
    )
)

# Admin endpoints that establish or tear down an admin session.
ADMIN_SESSION_ENDPOINTS = frozenset({"/api/admin/login", "/api/admin/callback", "/api/admin/logout"})


def _matches(patterns: tuple[re.Pattern[str], ...], path: str) -> bool:
    return any(pattern.search(path) for pattern in patterns)


def get_required_auth_type(path: str) -> AuthType:
    """Classify a request path. Pure function of the path."""
    if _matches(ADMIN_ROUTE_PATTERNS, path):
        return AuthType.ADMIN
    if _matches(PUBLIC_ROUTE_PATTERNS, path):
        return AuthType.PUBLIC
    if _matches(USER_ROUTE_PATTERNS, path):
        return AuthType.USER
    if path.startswith("/api/"):
        return AuthType.USER
    return AuthType.PUBLIC


def is_admin_session_endpoint(path: str) -> bool:
    return path.rstrip("/") in ADMIN_SESSION_ENDPOINTS


def route_patterns() -> dict[str, list[str]]:
    return {
        "admin": [p.pattern for p in ADMIN_ROUTE_PATTERNS],
        "user": [p.pattern for p in USER_ROUTE_PATTERNS],
        "public": [p.pattern for p in PUBLIC_ROUTE_PATTERNS],
    }
