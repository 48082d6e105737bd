"""End-user OIDC login flow and current-user endpoint.

- GET /api/login     - redirect to the provider (``?state=`` marks a mobile login)
- GET /api/callback  - complete the login; mobile logins get a signed JWT
- GET /api/logout    - clear the session and end the provider session
- GET /api/auth/user - the authenticated caller
"""

from __future__ import annotations

import secrets
from typing import Any
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import RedirectResponse

from ascended.api.dependencies import get_oidc, get_settings, get_storage, require_user
from ascended.api.models import CurrentUserResponse
from ascended.config import Settings
from ascended.observability.logging import get_logger
from ascended.observability.telemetry import counter, log_event
from ascended.security.identity import AuthenticatedIdentity
from ascended.security.oidc import OIDCError, OidcProvider, TokenSet, new_pkce_pair, passport_user_from_tokens
from ascended.security.tokens import issue_mobile_token
from ascended.storage.repositories import Storage, UserRecord
from ascended.utils.redaction import redact

logger = get_logger(__name__)

router = APIRouter(tags=["auth"])

LOCAL_HOSTS = frozenset({"localhost", "127.0.0.1", "testserver"})
PENDING_USER_LOGIN_KEY = "oidc_login"


def base_url(request: Request, settings: Settings) -> str:
    """
    Public origin of this request, validated against the configured domains.

    Raises:
        HTTPException: 400 when the Host is not a configured domain
    """
    hostname = request.url.hostname or ""
    if hostname not in settings.allowed_callback_hosts():
        logger.warning("Login attempted on unconfigured host %s", hostname)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Unknown host")
    if hostname in LOCAL_HOSTS:
        return f"http://{request.url.netloc}"
    return f"https://{hostname}"


async def begin_login(
    request: Request,
    oidc: OidcProvider,
    redirect_uri: str,
    session_key: str,
    extra: dict[str, Any] | None = None,
) -> RedirectResponse:
    """
    Start an authorization-code + PKCE login.

    Side Effects:
        - Stores state and code verifier in the session under ``session_key``
    """
    state = secrets.token_urlsafe(24)
    verifier, challenge = new_pkce_pair()
    request.session[session_key] = {"state": state, "code_verifier": verifier, **(extra or {})}
    url = await oidc.authorization_url(redirect_uri, state, challenge)
    return RedirectResponse(url, status_code=status.HTTP_302_FOUND)


async def complete_login(
    request: Request, oidc: OidcProvider, redirect_uri: str, session_key: str
) -> tuple[TokenSet, dict[str, Any]]:
    """
    Exchange the callback code for tokens.

    Raises:
        OIDCError: Missing/mismatched state, provider error, or unusable claims
    """
    pending = request.session.pop(session_key, None)
    if request.query_params.get("error"):
        raise OIDCError(f"Provider returned error: {request.query_params['error']}")
    if not pending or pending.get("state") != request.query_params.get("state"):
        raise OIDCError("Login state mismatch")
    code = request.query_params.get("code")
    if not code:
        raise OIDCError("Missing authorization code")

    tokens = await oidc.exchange_code(code, redirect_uri, pending["code_verifier"])
    if not tokens.claims.get("sub") or not tokens.claims.get("email"):
        raise OIDCError("ID token missing sub or email")
    return tokens, pending


def upsert_from_claims(storage: Storage, claims: dict[str, Any]) -> UserRecord:
    return storage.upsert_user(
        user_id=str(claims["sub"]),
        email=claims.get("email"),
        first_name=claims.get("first_name"),
        last_name=claims.get("last_name"),
        profile_image_url=claims.get("profile_image_url"),
    )


@router.get("/api/login")
async def login(
    request: Request,
    state: str | None = None,
    settings: Settings = Depends(get_settings),
    oidc: OidcProvider = Depends(get_oidc),
) -> RedirectResponse:
    redirect_uri = f"{base_url(request, settings)}/api/callback"
    extra = {"mobile_state": state} if state and state != "default" else {}
    try:
        return await begin_login(request, oidc, redirect_uri, PENDING_USER_LOGIN_KEY, extra)
    except OIDCError as e:
        logger.error("Could not start login: %s", e)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Authentication service unavailable",
        ) from e


@router.get("/api/callback")
async def callback(
    request: Request,
    settings: Settings = Depends(get_settings),
    storage: Storage = Depends(get_storage),
    oidc: OidcProvider = Depends(get_oidc),
) -> RedirectResponse:
    redirect_uri = f"{base_url(request, settings)}/api/callback"
    try:
        tokens, pending = await complete_login(request, oidc, redirect_uri, PENDING_USER_LOGIN_KEY)
    except OIDCError as e:
        logger.warning("Login callback failed: %s", e)
        counter("auth.login.failed")
        return RedirectResponse("/api/login", status_code=status.HTTP_302_FOUND)

    user = upsert_from_claims(storage, tokens.claims)
    passport_user = passport_user_from_tokens(tokens)
    # An existing account matched by email keeps its own id.
    passport_user["id"] = user.id
    request.session["passport"] = {"user": passport_user}
    log_event("auth.login.succeeded", user=redact(passport_user["id"]), flow="user")

    mobile_state = pending.get("mobile_state")
    if mobile_state:
        token = issue_mobile_token(passport_user, settings.session_secret)
        log_event("auth.mobile_token.issued", user=redact(passport_user["id"]))
        query = urlencode({"token": token, "state": mobile_state})
        return RedirectResponse(f"/auth-callback?{query}", status_code=status.HTTP_302_FOUND)

    return RedirectResponse("/", status_code=status.HTTP_302_FOUND)


@router.get("/api/logout")
async def logout(
    request: Request,
    settings: Settings = Depends(get_settings),
    oidc: OidcProvider = Depends(get_oidc),
) -> RedirectResponse:
    request.session.clear()
    try:
        url = await oidc.end_session_url(base_url(request, settings))
    except OIDCError as e:
        logger.warning("Could not build end-session URL: %s", e)
        url = "/"
    return RedirectResponse(url, status_code=status.HTTP_302_FOUND)


@router.get("/api/auth/user", response_model=CurrentUserResponse)
async def current_user(
    identity: AuthenticatedIdentity = Depends(require_user),
    storage: Storage = Depends(get_storage),
) -> dict[str, Any]:
    data = identity.to_public_dict()
    record = storage.get_user(identity.id)
    if record is not None:
        data.update({k: v for k, v in record.to_public_dict().items() if v is not None})
    return data
