"""Admin OIDC login flow and admin API.

The login endpoints are the only ADMIN-class paths reachable without an admin
session. Everything else here is behind the authentication middleware, which
has already verified an ``isAdmin`` passport in the ``admin.sid`` cookie for an
allowed admin id. Apart from the pending login state, the user session is left
untouched.
"""

from __future__ import annotations

import time
from typing import Any

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse, RedirectResponse, Response

from ascended.api.dependencies import get_oidc, get_settings, get_storage, require_admin
from ascended.api.models import AdminUserResponse, AuditLogResponse
from ascended.api.routes.auth import base_url, begin_login, complete_login, upsert_from_claims
from ascended.config import (
    ADMIN_SESSION_TTL_SECONDS,
    AUDIT_LOG_LIST_LIMIT_DEFAULT,
    AUDIT_LOG_LIST_LIMIT_MAX,
    Settings,
)
from ascended.observability.logging import get_logger
from ascended.observability.telemetry import counter, log_event
from ascended.security.identity import AuthenticatedIdentity, get_admin_session
from ascended.security.oidc import OIDCError, OidcProvider, passport_user_from_tokens
from ascended.security.violations import log_security_violation
from ascended.storage.repositories import Storage
from ascended.utils.redaction import redact

logger = get_logger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])

# Pending login state is kept in the lax user session; the strict admin cookie
# is not sent on the provider redirect back to the callback.
PENDING_ADMIN_LOGIN_KEY = "oidc_admin_login"
ADMIN_DASHBOARD_URL = "/admin/dashboard"
ADMIN_LOGIN_URL = "/api/admin/login"

LOGIN_ERRORS = {
    "unauthorized": "This account is not authorized for admin access",
    "auth_failed": "Admin authentication failed",
}


@router.get("/login", response_model=None)
async def admin_login(
    request: Request,
    error: str | None = None,
    settings: Settings = Depends(get_settings),
    oidc: OidcProvider = Depends(get_oidc),
) -> Response:
    if error:
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={
                "error": "Admin login failed",
                "message": LOGIN_ERRORS.get(error, "Admin authentication failed"),
                "loginUrl": ADMIN_LOGIN_URL,
            },
        )

    redirect_uri = f"{base_url(request, settings)}/api/admin/callback"
    try:
        return await begin_login(request, oidc, redirect_uri, PENDING_ADMIN_LOGIN_KEY)
    except OIDCError as e:
        logger.error("Could not start admin login: %s", e)
        return RedirectResponse(f"{ADMIN_LOGIN_URL}?error=auth_failed", status_code=status.HTTP_302_FOUND)


@router.get("/callback")
async def admin_callback(
    request: Request,
    settings: Settings = Depends(get_settings),
    storage: Storage = Depends(get_storage),
    oidc: OidcProvider = Depends(get_oidc),
) -> RedirectResponse:
    redirect_uri = f"{base_url(request, settings)}/api/admin/callback"
    try:
        tokens, _ = await complete_login(request, oidc, redirect_uri, PENDING_ADMIN_LOGIN_KEY)
    except OIDCError as e:
        logger.warning("Admin login callback failed: %s", e)
        counter("admin.login.failed")
        return RedirectResponse(f"{ADMIN_LOGIN_URL}?error=auth_failed", status_code=status.HTTP_302_FOUND)

    subject = str(tokens.claims["sub"])
    if subject not in settings.admin_user_ids:
        log_security_violation(
            request,
            "unauthorized_admin_login",
            {"subject": redact(subject)},
            audit_sink=storage,
            performed_by=subject,
        )
        return RedirectResponse(f"{ADMIN_LOGIN_URL}?error=unauthorized", status_code=status.HTTP_302_FOUND)

    upsert_from_claims(storage, tokens.claims)
    passport_user = passport_user_from_tokens(tokens, is_admin=True)
    session_deadline = int(time.time()) + ADMIN_SESSION_TTL_SECONDS
    if not passport_user["expires_at"] or passport_user["expires_at"] > session_deadline:
        passport_user["expires_at"] = session_deadline
    admin_session = get_admin_session(request)
    admin_session.clear()
    admin_session["passport"] = {"user": passport_user}
    log_event("auth.login.succeeded", user=redact(subject), flow="admin")
    return RedirectResponse(ADMIN_DASHBOARD_URL, status_code=status.HTTP_302_FOUND)


@router.get("/logout")
async def admin_logout(
    request: Request,
    settings: Settings = Depends(get_settings),
    oidc: OidcProvider = Depends(get_oidc),
) -> RedirectResponse:
    get_admin_session(request).clear()
    post_logout = settings.logout_redirect_uri or base_url(request, settings)
    try:
        url = await oidc.end_session_url(post_logout)
    except OIDCError as e:
        logger.warning("Could not build admin end-session URL: %s", e)
        url = "/"
    return RedirectResponse(url, status_code=status.HTTP_302_FOUND)


@router.get("/user", response_model=AdminUserResponse)
async def admin_user(admin: AuthenticatedIdentity = Depends(require_admin)) -> dict[str, Any]:
    return {
        "id": admin.id,
        "email": admin.email,
        "firstName": admin.first_name,
        "lastName": admin.last_name,
        "profileImageUrl": admin.profile_image_url,
        "isAdmin": True,
    }


@router.get("/analytics")
async def admin_analytics(
    _admin: AuthenticatedIdentity = Depends(require_admin),
    storage: Storage = Depends(get_storage),
) -> dict[str, Any]:
    return storage.admin_analytics()


@router.get("/audit-log", response_model=AuditLogResponse)
async def admin_audit_log(
    limit: int = Query(AUDIT_LOG_LIST_LIMIT_DEFAULT, ge=1, le=AUDIT_LOG_LIST_LIMIT_MAX),
    _admin: AuthenticatedIdentity = Depends(require_admin),
    storage: Storage = Depends(get_storage),
) -> dict[str, Any]:
    entries = storage.audit_logs.list_recent(limit)
    return {"entries": entries, "count": len(entries)}
