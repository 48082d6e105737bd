"""
Authentication strategies.

``ProductionAuth`` reconciles the credentials a request may carry (bearer JWT,
OIDC "passport" session, legacy session user) against the class of the
requested route. ``TestFixtureAuth`` wraps it and substitutes a synthetic user
for automated browser tests. Exactly one strategy is selected at startup by
``select_strategy``; request handling never looks at the environment name.

Credential precedence on USER routes: bearer JWT, then passport session, then
legacy session user. A valid JWT wins over any cookie session.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

import jwt
from starlette.requests import Request

from ascended.config import Settings
from ascended.observability.logging import get_logger
from ascended.observability.telemetry import counter, log_event
from ascended.security.attempts import AuthAttemptLimiter, attempt_key
from ascended.security.identity import (
    AuthenticatedIdentity,
    AuthMethod,
    IdentityKind,
    get_admin_session,
)
from ascended.security.oidc import OIDCError, OidcProvider, apply_refreshed_tokens
from ascended.security.route_classification import AuthType, is_admin_session_endpoint
from ascended.security.tokens import extract_bearer_token, verify_mobile_token
from ascended.security.violations import log_admin_action, log_security_violation
from ascended.storage.repositories import Storage
from ascended.utils.client_ip import get_client_ip
from ascended.utils.redaction import redact

logger = get_logger(__name__)

USER_LOGIN_URL = "/api/login"
ADMIN_LOGIN_URL = "/api/admin/login"

# Paths hit on every page load; the passport user is trusted without a lookup.
DB_CHECK_SKIP_PATHS = ("/api/auth/user", "/api/posts", "/api/user/")

# Admin reads that are audited even though they are GETs.
AUDITED_ADMIN_PATH_MARKERS = ("/analytics", "/reports")


@dataclass
class AuthRejection:
    status_code: int
    body: dict[str, Any]


@dataclass
class AuthOutcome:
    identity: AuthenticatedIdentity | None = None
    rejection: AuthRejection | None = None
    response_headers: dict[str, str] = field(default_factory=dict)

    @property
    def rejected(self) -> bool:
        return self.rejection is not None


class AuthenticationStrategy(Protocol):
    async def authenticate(self, request: Request, auth_type: AuthType) -> AuthOutcome: ...


def _session(request: Request) -> dict[str, Any]:
    if "session" not in request.scope:
        return {}
    return request.session


def _passport_user(session: dict[str, Any]) -> dict[str, Any] | None:
    passport = session.get("passport")
    if not isinstance(passport, dict):
        return None
    user = passport.get("user")
    return user if isinstance(user, dict) else None


def _legacy_user(session: dict[str, Any]) -> dict[str, Any] | None:
    user = session.get("user")
    return user if isinstance(user, dict) else None


def _reject(status_code: int, **body: Any) -> AuthOutcome:
    return AuthOutcome(rejection=AuthRejection(status_code=status_code, body=body))


def _identity_from_session_user(
    user: dict[str, Any], kind: IdentityKind, method: AuthMethod
) -> AuthenticatedIdentity:
    return AuthenticatedIdentity(
        kind=kind,
        id=str(user["id"]),
        email=user["email"],
        auth_method=method,
        first_name=user.get("firstName"),
        last_name=user.get("lastName"),
        profile_image_url=user.get("profileImageUrl"),
        expires_at=user.get("expires_at"),
    )


class ProductionAuth:
    def __init__(
        self,
        settings: Settings,
        storage: Storage,
        limiter: AuthAttemptLimiter,
        oidc: OidcProvider | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings
        self.storage = storage
        self.limiter = limiter
        self.oidc = oidc
        self.clock = clock

    def _violation(
        self,
        request: Request,
        violation_type: str,
        details: dict[str, Any] | None = None,
        performed_by: str | None = None,
    ) -> None:
        log_security_violation(
            request, violation_type, details, audit_sink=self.storage, performed_by=performed_by
        )

    async def authenticate(self, request: Request, auth_type: AuthType) -> AuthOutcome:
        if auth_type is AuthType.ADMIN:
            return await self._authenticate_admin(request)
        if auth_type is AuthType.USER:
            return await self._authenticate_user(request)
        return AuthOutcome(identity=self.peek_identity(request))

    # --- USER routes ---

    async def _authenticate_user(self, request: Request) -> AuthOutcome:
        key = attempt_key(get_client_ip(request), request.headers.get("user-agent"))
        retry_after = self.limiter.check(key)
        if retry_after is not None:
            self._violation(request, "auth_rate_limit_exceeded", {"retryAfter": retry_after})
            return _reject(
                429,
                error="Too many authentication attempts",
                message="Please wait before trying again",
                retryAfter=retry_after,
            )

        token = extract_bearer_token(request.headers.get("authorization"))
        if token:
            return self._authenticate_jwt(request, token, key)

        session = _session(request)
        passport_user = _passport_user(session)
        legacy_user = _legacy_user(session)

        # An isAdmin passport in the user cookie is an admin credential, like the admin cookie.
        admin_user = _passport_user(get_admin_session(request))
        if passport_user is not None and passport_user.get("isAdmin"):
            admin_user, passport_user = passport_user, None
        elif admin_user is not None and not admin_user.get("isAdmin"):
            admin_user = None

        if passport_user is not None:
            return await self._authenticate_passport(request, session, passport_user)

        if legacy_user is not None:
            return self._authenticate_legacy_session(request, session, legacy_user)

        if admin_user is not None:
            self._violation(
                request,
                "admin_session_user_route",
                {"adminUser": redact(admin_user.get("email"))},
                performed_by=admin_user.get("id"),
            )
            return _reject(
                403,
                error="Authentication type mismatch",
                message=(
                    "Admin authentication cannot be used for user endpoints. "
                    "Please authenticate as a regular user."
                ),
                requiredAuth=AuthType.USER.value,
                currentAuth=AuthType.ADMIN.value,
            )

        self.limiter.record_failure(key)
        self._violation(request, "no_authentication")
        return _reject(
            401,
            error="Authentication required",
            message="Please login to access this resource",
            authMethod=AuthMethod.SESSION.value,
            loginUrl=USER_LOGIN_URL,
        )

    def _authenticate_jwt(self, request: Request, token: str, key: str) -> AuthOutcome:
        violation = "invalid_jwt_token"
        details: dict[str, Any] = {}
        try:
            payload = verify_mobile_token(token, self.settings.session_secret)
            user = self.storage.get_user(payload["userId"])
            if user is None:
                violation = "invalid_user_token"
                raise jwt.InvalidTokenError("Token user no longer exists")
        except jwt.InvalidTokenError as e:
            details["reason"] = str(e)
            self.limiter.record_failure(key)
            self._violation(request, violation, details)
            return _reject(
                401,
                error="Invalid authentication token",
                message="Please login again",
                authMethod=AuthMethod.JWT.value,
            )

        self.limiter.reset(key)
        return AuthOutcome(
            identity=AuthenticatedIdentity(
                kind=IdentityKind.USER,
                id=user.id,
                email=user.email or payload["email"],
                auth_method=AuthMethod.JWT,
                first_name=user.first_name,
                last_name=user.last_name,
                profile_image_url=user.profile_image_url,
                expires_at=payload.get("exp"),
            )
        )

    async def _authenticate_passport(
        self, request: Request, session: dict[str, Any], passport_user: dict[str, Any]
    ) -> AuthOutcome:
        if not passport_user.get("id") or not passport_user.get("email"):
            self._violation(request, "corrupted_passport_user", {"keys": sorted(passport_user)})
            return _reject(
                401,
                error="Session corrupted",
                message="Please login again",
                authMethod=AuthMethod.PASSPORT.value,
            )

        user_id = str(passport_user["id"])
        expires_at = passport_user.get("expires_at")
        if expires_at is not None and self.clock() > expires_at:
            self._violation(request, "expired_passport_session", performed_by=user_id)
            if not await self._refresh_session_user(passport_user):
                return _reject(
                    401,
                    error="Session expired",
                    message="Please login again",
                    authMethod=AuthMethod.PASSPORT.value,
                    loginUrl=USER_LOGIN_URL,
                )
            session["passport"] = {"user": passport_user}

        path = request.url.path
        if not any(skip in path for skip in DB_CHECK_SKIP_PATHS):
            if self.storage.get_user(user_id) is None:
                self._violation(request, "nonexistent_passport_user", performed_by=user_id)
                return _reject(
                    401,
                    error="User not found",
                    message="Please login again",
                    authMethod=AuthMethod.PASSPORT.value,
                )

        return AuthOutcome(
            identity=_identity_from_session_user(passport_user, IdentityKind.USER, AuthMethod.PASSPORT)
        )

    def _authenticate_legacy_session(
        self, request: Request, session: dict[str, Any], legacy_user: dict[str, Any]
    ) -> AuthOutcome:
        if not legacy_user.get("id") or not legacy_user.get("email"):
            session.pop("user", None)
            self._violation(request, "corrupted_user_session", {"keys": sorted(legacy_user)})
            return _reject(
                401,
                error="Session corrupted",
                message="Please login again",
                authMethod=AuthMethod.SESSION.value,
            )

        user_id = str(legacy_user["id"])
        if self.storage.get_user(user_id) is None:
            session.pop("user", None)
            self._violation(request, "nonexistent_user_session", performed_by=user_id)
            return _reject(
                401,
                error="User not found",
                message="Please login again",
                authMethod=AuthMethod.SESSION.value,
            )

        return AuthOutcome(
            identity=_identity_from_session_user(legacy_user, IdentityKind.USER, AuthMethod.SESSION)
        )

    async def _refresh_session_user(self, session_user: dict[str, Any]) -> bool:
        refresh_token = session_user.get("refresh_token")
        if not refresh_token or self.oidc is None:
            return False
        try:
            tokens = await self.oidc.refresh(refresh_token)
        except OIDCError as e:
            logger.warning("Session refresh failed for %s: %s", redact(str(session_user.get("id"))), e)
            counter("auth.refresh.failed")
            return False
        apply_refreshed_tokens(session_user, tokens)
        counter("auth.refresh.succeeded")
        return True

    # --- ADMIN routes ---

    async def _authenticate_admin(self, request: Request) -> AuthOutcome:
        if is_admin_session_endpoint(request.url.path):
            return AuthOutcome(identity=self.peek_identity(request))

        admin_session = get_admin_session(request)
        passport_user = _passport_user(admin_session)

        if passport_user is None or not passport_user.get("isAdmin"):
            user_session = _session(request)
            has_user_session = (
                _legacy_user(user_session) is not None or _passport_user(user_session) is not None
            )
            has_bearer = bool(request.headers.get("authorization", "").lower().startswith("bearer "))
            if has_user_session or has_bearer:
                self._violation(
                    request,
                    "user_accessing_admin_route",
                    {"userSession": has_user_session, "bearerToken": has_bearer},
                )
                return _reject(
                    403,
                    error="Authentication type mismatch",
                    message=(
                        "User authentication cannot be used for admin endpoints. "
                        "Admin access requires admin login."
                    ),
                    requiredAuth=AuthType.ADMIN.value,
                    currentAuth=AuthType.USER.value,
                )
            if passport_user is not None:
                self._violation(
                    request, "non_admin_user_access", performed_by=passport_user.get("id")
                )
                return _reject(
                    403,
                    error="Admin privileges required",
                    message="This endpoint requires admin privileges",
                    requiredAuth=AuthType.ADMIN.value,
                    currentAuth=AuthType.USER.value,
                )
            self._violation(request, "unauthenticated_admin_access")
            return _reject(
                401,
                error="Admin authentication required",
                message="This endpoint requires admin authentication",
                loginUrl=ADMIN_LOGIN_URL,
            )

        admin_id = str(passport_user.get("id") or "")
        if not admin_id or not passport_user.get("email"):
            self._violation(request, "corrupted_admin_session", {"keys": sorted(passport_user)})
            return _reject(
                401,
                error="Invalid admin session",
                message="Please login again",
                loginUrl=ADMIN_LOGIN_URL,
            )

        if admin_id not in self.settings.admin_user_ids:
            self._violation(request, "revoked_admin_access", performed_by=admin_id)
            return _reject(
                403,
                error="Admin access revoked",
                message="Your admin privileges have been revoked",
            )

        expires_at = passport_user.get("expires_at")
        if not expires_at:
            self._violation(request, "missing_token_expiry", performed_by=admin_id)
            return _reject(
                401,
                error="Invalid admin session",
                message="Please login again",
                loginUrl=ADMIN_LOGIN_URL,
            )

        if self.clock() > expires_at:
            if not await self._refresh_session_user(passport_user):
                self._violation(request, "expired_admin_session", performed_by=admin_id)
                return _reject(
                    401,
                    error="Admin session expired",
                    message="Please login again",
                    loginUrl=ADMIN_LOGIN_URL,
                )
            admin_session["passport"] = {"user": passport_user}

        if "user" in admin_session:
            logger.info("Clearing user session data for admin route %s", request.url.path)
            admin_session.pop("user")

        identity = _identity_from_session_user(passport_user, IdentityKind.ADMIN, AuthMethod.PASSPORT)

        path = request.url.path
        if request.method != "GET" or any(marker in path for marker in AUDITED_ADMIN_PATH_MARKERS):
            log_admin_action(
                request,
                "admin_route_access",
                identity.id,
                {"path": path, "method": request.method},
                audit_sink=self.storage,
            )

        return AuthOutcome(identity=identity)

    # --- PUBLIC routes ---

    def peek_identity(self, request: Request) -> AuthenticatedIdentity | None:
        """Resolve an identity without rejecting, recording or touching storage."""
        token = extract_bearer_token(request.headers.get("authorization"))
        if token:
            try:
                payload = verify_mobile_token(token, self.settings.session_secret)
            except jwt.InvalidTokenError:
                payload = None
            if payload is not None:
                return AuthenticatedIdentity(
                    kind=IdentityKind.USER,
                    id=str(payload["userId"]),
                    email=payload["email"],
                    auth_method=AuthMethod.JWT,
                    first_name=payload.get("firstName"),
                    last_name=payload.get("lastName"),
                    profile_image_url=payload.get("profileImageUrl"),
                    expires_at=payload.get("exp"),
                )

        admin_user = _passport_user(get_admin_session(request))
        if admin_user and admin_user.get("isAdmin") and admin_user.get("id") and admin_user.get("email"):
            expires_at = admin_user.get("expires_at")
            if (
                expires_at
                and self.clock() <= expires_at
                and str(admin_user["id"]) in self.settings.admin_user_ids
            ):
                return _identity_from_session_user(admin_user, IdentityKind.ADMIN, AuthMethod.PASSPORT)

        session = _session(request)
        passport_user = _passport_user(session)
        if (
            passport_user
            and not passport_user.get("isAdmin")
            and passport_user.get("id")
            and passport_user.get("email")
        ):
            expires_at = passport_user.get("expires_at")
            if expires_at is None or self.clock() <= expires_at:
                return _identity_from_session_user(passport_user, IdentityKind.USER, AuthMethod.PASSPORT)

        legacy_user = _legacy_user(session)
        if legacy_user and legacy_user.get("id") and legacy_user.get("email"):
            return _identity_from_session_user(legacy_user, IdentityKind.USER, AuthMethod.SESSION)
        return None


TEST_USER: dict[str, Any] = {
    "id": "25531750",
    "email": "test@ascended.social",
    "firstName": "Spiritual",
    "lastName": "Test User",
}

TEST_MARKER_HEADERS: dict[str, str] = {
    "x-testing-mode": "true",
    "x-test-auth-bypass": "true",
    "x-spiritual-tester": "active",
}

TEST_USER_AGENTS = ("Playwright", "Puppeteer", "AscendedSocial-TestBot")


def bypass_reasons(request: Request) -> list[str]:
    reasons = [
        header
        for header, expected in TEST_MARKER_HEADERS.items()
        if request.headers.get(header) == expected
    ]
    user_agent = request.headers.get("user-agent", "")
    if any(agent in user_agent for agent in TEST_USER_AGENTS):
        reasons.append("user-agent")
    return reasons


class TestFixtureAuth:
    """Synthetic user for automated browser tests. Admin routes are never bypassed."""

    __test__ = False

    def __init__(self, production: ProductionAuth) -> None:
        self.production = production

    async def authenticate(self, request: Request, auth_type: AuthType) -> AuthOutcome:
        if auth_type is AuthType.ADMIN:
            return await self.production.authenticate(request, auth_type)

        reasons = bypass_reasons(request)
        if not reasons:
            return await self.production.authenticate(request, auth_type)

        log_event(
            "auth.test_bypass",
            path=request.url.path,
            method=request.method,
            reasons=",".join(reasons),
        )
        counter("auth.test_bypass")
        return AuthOutcome(
            identity=_identity_from_session_user(
                TEST_USER, IdentityKind.USER, AuthMethod.TEST_FIXTURE
            ),
            response_headers={
                "X-Auth-Bypass-Active": "true",
                "X-Test-User-ID": TEST_USER["id"],
                "X-Auth-Method": "testing-bypass",
            },
        )


def select_strategy(settings: Settings, production: ProductionAuth) -> AuthenticationStrategy:
    """Pick the strategy for this process. Called once, at startup."""
    if settings.is_test:
        logger.warning("Test fixture authentication enabled (environment=%s)", settings.environment)
        return TestFixtureAuth(production)
    return production
