"""FastAPI application factory for the Ascended API"""

from __future__ import annotations

import os
import sqlite3
import time
from collections.abc import Callable

from dotenv import load_dotenv
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.sessions import SessionMiddleware
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from ascended.api.middleware.admin_guard import AdminGuardMiddleware
from ascended.api.middleware.admin_session import AdminSessionMiddleware
from ascended.api.middleware.authentication import AuthenticationMiddleware
from ascended.api.middleware.security_headers import SecurityHeadersMiddleware
from ascended.api.routes.admin import router as admin_router
from ascended.api.routes.auth import router as auth_router
from ascended.api.routes.debug import auth_debug_router
from ascended.api.routes.debug import router as debug_router
from ascended.api.routes.health import router as health_router
from ascended.config import (
    APP_NAME,
    APP_VERSION,
    SESSION_COOKIE_NAME,
    USER_SESSION_TTL_SECONDS,
    Settings,
    load_settings,
    validate_settings,
)
from ascended.observability.logging import get_logger
from ascended.observability.telemetry import counter
from ascended.security.attempts import AuthAttemptLimiter, AuthAttemptStore, InMemoryAuthAttemptStore
from ascended.security.oidc import OidcClient, OidcProvider
from ascended.security.strategies import ProductionAuth, select_strategy
from ascended.storage.database import Database
from ascended.storage.repositories import Storage
from ascended.utils.redaction import redact

logger = get_logger(__name__)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """
    Validation error handler that only exposes field names.

    Side Effects:
        - Logs validation errors (URL redacted)
        - Increments api.validation_errors counter
    """
    logger.warning("Validation error on %s: %s", redact(str(request.url)), exc.errors())
    counter("api.validation_errors")
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": "Invalid request",
            "message": "Invalid request format. Please check your request and try again.",
            "invalid_fields": [str(err["loc"][-1]) for err in exc.errors()],
        },
    )


def _init_storage(settings: Settings) -> Storage:
    database = Database(settings.db_path)
    try:
        database.init_schema()
    except sqlite3.OperationalError as e:
        logger.critical("Database schema error: %s", e)
        raise RuntimeError(f"Database initialization failed: {e}") from e
    return Storage(database)


def create_app(
    settings: Settings | None = None,
    storage: Storage | None = None,
    oidc: OidcProvider | None = None,
    attempt_store: AuthAttemptStore | None = None,
    clock: Callable[[], float] = time.time,
) -> FastAPI:
    """
    Build the API with its security middleware chain.

    Every collaborator is created here once and injected; nothing request-scoped
    reads the environment.

    Raises:
        RuntimeError: Conflicting environment, missing production configuration
            or unusable database
    """
    if settings is None:
        load_dotenv()
        try:
            settings = load_settings()
        except RuntimeError as e:
            logger.critical("Configuration error: %s", e)
            raise

    missing = validate_settings(settings)
    if missing:
        logger.critical(
            "Security misconfiguration: %s not set in production. Refusing to start.",
            ", ".join(missing),
        )
        raise RuntimeError(f"Security misconfiguration: missing {', '.join(missing)}")

    if storage is None:
        storage = _init_storage(settings)
    if oidc is None:
        oidc = OidcClient(settings.issuer_url, settings.repl_id)

    limiter = AuthAttemptLimiter(attempt_store or InMemoryAuthAttemptStore(clock=clock), clock=clock)
    strategy = select_strategy(settings, ProductionAuth(settings, storage, limiter, oidc, clock))

    app = FastAPI(title=APP_NAME, version=APP_VERSION)
    app.state.settings = settings
    app.state.storage = storage
    app.state.oidc = oidc
    app.state.auth_limiter = limiter
    app.state.auth_strategy = strategy

    app.add_exception_handler(RequestValidationError, validation_exception_handler)

    # Added innermost first: proxy headers -> sessions -> headers -> admin guard -> authentication -> routes
    app.add_middleware(AuthenticationMiddleware, strategy=strategy, audit_sink=storage)
    app.add_middleware(
        AdminGuardMiddleware,
        allowlist=settings.admin_ip_allowlist,
        audit_sink=storage,
        clock=clock,
    )
    app.add_middleware(SecurityHeadersMiddleware, production=settings.is_production)
    app.add_middleware(
        AdminSessionMiddleware,
        secret_key=settings.session_secret,
        https_only=settings.is_production,
    )
    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.session_secret,
        session_cookie=SESSION_COOKIE_NAME,
        max_age=USER_SESSION_TTL_SECONDS,
        same_site="lax",
        https_only=settings.is_production,
    )
    if settings.trusted_proxies:
        app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=list(settings.trusted_proxies))

    app.include_router(health_router)
    app.include_router(auth_router)
    app.include_router(admin_router)
    app.include_router(debug_router)
    if not settings.is_production:
        app.include_router(auth_debug_router)

    logger.info(
        "Ascended API ready (environment=%s, strategy=%s)",
        settings.environment,
        type(strategy).__name__,
    )
    return app


def main() -> None:
    import uvicorn

    uvicorn.run(
        "ascended.api.app:create_app",
        factory=True,
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "5000")),
        # Forwarded headers are applied by create_app from TRUSTED_PROXIES.
        proxy_headers=False,
    )
