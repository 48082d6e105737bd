"""Debug endpoints for the authentication layer.

``/api/debug/route-info`` is always mounted. ``/api/debug/auth`` exposes more
session detail and is only mounted outside production (see ``create_app``).
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request

from ascended.api.dependencies import get_settings
from ascended.api.models import RouteInfoResponse
from ascended.config import Settings
from ascended.security.identity import get_identity
from ascended.security.route_classification import get_required_auth_type, route_patterns
from ascended.security.tokens import extract_bearer_token
from ascended.utils.redaction import redact, redact_headers, truncate_token

router = APIRouter(prefix="/api/debug", tags=["debug"])
auth_debug_router = APIRouter(prefix="/api/debug", tags=["debug"])


def _session(request: Request) -> dict[str, Any]:
    return request.session if "session" in request.scope else {}


@router.get("/route-info", response_model=RouteInfoResponse)
async def route_info(request: Request, path: str | None = None) -> dict[str, Any]:
    """Classification of ``path`` (default: this request) and the caller's auth state."""
    target = path or request.url.path
    identity = get_identity(request)
    session = _session(request)
    is_admin = bool(identity and identity.is_admin)

    return {
        "path": target,
        "requiredAuthType": get_required_auth_type(target).value,
        "authentication": {
            "admin": is_admin,
            "user": bool(identity and not identity.is_admin),
            "adminUser": identity.email if identity and is_admin else None,
            "userSession": bool(session.get("user")),
            "bearerToken": extract_bearer_token(request.headers.get("authorization")) is not None,
        },
        "routePatterns": route_patterns(),
    }


@auth_debug_router.get("/auth")
async def auth_debug(request: Request, settings: Settings = Depends(get_settings)) -> dict[str, Any]:
    """Redacted view of everything the authentication layer sees for this request."""
    identity = get_identity(request)
    session = _session(request)
    passport_user = (session.get("passport") or {}).get("user")
    legacy_user = session.get("user")

    return {
        "environment": settings.environment,
        "identity": {
            "kind": identity.kind.value,
            "id": redact(identity.id),
            "authMethod": identity.auth_method.value,
            "expiresAt": identity.expires_at,
        }
        if identity
        else None,
        "session": {
            "keys": sorted(session.keys()),
            "passport": {
                "present": passport_user is not None,
                "isAdmin": bool(passport_user and passport_user.get("isAdmin")),
                "hasRefreshToken": bool(passport_user and passport_user.get("refresh_token")),
                "expiresAt": passport_user.get("expires_at") if passport_user else None,
            },
            "legacyUser": legacy_user is not None,
        },
        "headers": redact_headers(request.headers),
        "bearerPreview": truncate_token(extract_bearer_token(request.headers.get("authorization"))),
    }
