"""Centralized configuration for the Ascended API.

Typed module constants hold the fixed security limits. Deployment-specific
values (OIDC client, secrets, admin ids) are read from the environment once at
startup into a frozen ``Settings`` instance that is passed to ``create_app``.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

# --- App ---
APP_NAME: str = "Ascended Social API"
APP_VERSION: str = "1.0.0"

ENV_DEVELOPMENT: str = "development"
ENV_TEST: str = "test"
ENV_PRODUCTION: str = "production"

# --- Database ---
DB_PATH_DEFAULT: str = "data/ascended.db"
DB_CONNECT_TIMEOUT: float = float(os.getenv("ASCENDED_DB_CONNECT_TIMEOUT", "30.0"))
DB_RETRY_MAX: int = int(os.getenv("ASCENDED_DB_RETRY_MAX", "5"))
DB_RETRY_BASE_DELAY: float = float(os.getenv("ASCENDED_DB_RETRY_BASE_DELAY", "0.1"))
DB_RETRY_MAX_DELAY: float = float(os.getenv("ASCENDED_DB_RETRY_MAX_DELAY", "2.0"))
DB_RETRY_JITTER: float = float(os.getenv("ASCENDED_DB_RETRY_JITTER", "0.1"))

# --- Failed authentication throttling ---
MAX_AUTH_ATTEMPTS: int = 10
AUTH_ATTEMPT_WINDOW_SECONDS: int = 15 * 60
AUTH_ATTEMPT_MAX_KEYS: int = 10000

# --- Tokens and sessions ---
JWT_ALGORITHM: str = "HS256"
JWT_MAX_AGE_SECONDS: int = 7 * 24 * 60 * 60
JWT_GRACE_SECONDS: int = 5 * 60
USER_SESSION_TTL_SECONDS: int = 7 * 24 * 60 * 60
ADMIN_SESSION_TTL_SECONDS: int = 4 * 60 * 60
SESSION_COOKIE_NAME: str = "ascended.sid"
ADMIN_SESSION_COOKIE_NAME: str = "admin.sid"
ADMIN_SESSION_PATH: str = "/api/admin"

# --- Admin guard ---
ADMIN_RATE_LIMIT_REQUESTS: int = 100
ADMIN_RATE_LIMIT_WINDOW_SECONDS: int = 15 * 60
ADMIN_RATE_LIMIT_MAX_IPS: int = 10000

# --- Proxy ---
# Trusted by default in development only.
LOCAL_PROXY: str = "127.0.0.1"

# --- OIDC ---
OIDC_ISSUER_DEFAULT: str = "https://replit.com/oidc"
OIDC_SCOPES: str = "openid email profile offline_access"
OIDC_DISCOVERY_TTL_SECONDS: int = 60 * 60
HTTP_TIMEOUT_SECONDS: float = 10.0

# --- Admin ---
ADMIN_USER_IDS_DEFAULT: str = "25531750"
AUDIT_LOG_LIST_LIMIT_DEFAULT: int = 50
AUDIT_LOG_LIST_LIMIT_MAX: int = 500


def _split_csv(raw: str | None) -> tuple[str, ...]:
    if not raw:
        return ()
    return tuple(item.strip() for item in raw.split(",") if item.strip())


def resolve_environment() -> str:
    """
    Return the deployment environment name (``ASCENDED_ENV``, then ``NODE_ENV``).

    Raises:
        RuntimeError: Both variables are set and name different environments
    """
    ascended_env = (os.getenv("ASCENDED_ENV") or "").strip().lower()
    node_env = (os.getenv("NODE_ENV") or "").strip().lower()
    if ascended_env and node_env and ascended_env != node_env:
        raise RuntimeError(
            f"ASCENDED_ENV={ascended_env} conflicts with NODE_ENV={node_env}; refusing to start"
        )
    return ascended_env or node_env or ENV_DEVELOPMENT


@dataclass(frozen=True)
class Settings:
    """Process-wide configuration, loaded once and never reloaded."""

    environment: str = ENV_DEVELOPMENT
    session_secret: str = "ascended-dev-secret"
    repl_id: str = ""
    issuer_url: str = OIDC_ISSUER_DEFAULT
    replit_domains: tuple[str, ...] = ()
    admin_user_ids: frozenset[str] = field(
        default_factory=lambda: frozenset(_split_csv(ADMIN_USER_IDS_DEFAULT))
    )
    admin_ip_allowlist: tuple[str, ...] = ()
    logout_redirect_uri: str | None = None
    db_path: str = DB_PATH_DEFAULT
    # Peers whose X-Forwarded-For is honoured (addresses, CIDRs or "*").
    trusted_proxies: tuple[str, ...] = ()

    @property
    def is_production(self) -> bool:
        return self.environment == ENV_PRODUCTION

    @property
    def is_test(self) -> bool:
        return self.environment == ENV_TEST

    def allowed_callback_hosts(self) -> set[str]:
        hosts = set(self.replit_domains)
        if not self.is_production:
            hosts.update({"localhost", "127.0.0.1", "testserver"})
        return hosts


def load_settings() -> Settings:
    """
    Build ``Settings`` from environment variables.

    Side Effects:
        - Reads process environment (call after ``load_dotenv()``)
    """
    environment = resolve_environment()
    secret = os.getenv("SESSION_SECRET")
    admin_ids = _split_csv(os.getenv("ADMIN_USER_IDS", ADMIN_USER_IDS_DEFAULT))

    return Settings(
        environment=environment,
        session_secret=secret or ("" if environment == ENV_PRODUCTION else "ascended-dev-secret"),
        repl_id=os.getenv("REPL_ID", ""),
        issuer_url=os.getenv("ISSUER_URL", OIDC_ISSUER_DEFAULT).rstrip("/"),
        replit_domains=_split_csv(os.getenv("REPLIT_DOMAINS")),
        admin_user_ids=frozenset(admin_ids),
        admin_ip_allowlist=_split_csv(os.getenv("ADMIN_IP_ALLOWLIST")),
        logout_redirect_uri=os.getenv("LOGOUT_REDIRECT_URI") or os.getenv("POST_LOGOUT_URI"),
        db_path=os.getenv("ASCENDED_DB_PATH", DB_PATH_DEFAULT),
        trusted_proxies=_split_csv(
            os.getenv("TRUSTED_PROXIES", LOCAL_PROXY if environment == ENV_DEVELOPMENT else "")
        ),
    )


def validate_settings(settings: Settings) -> list[str]:
    """Return the names of required settings missing for this environment."""
    if not settings.is_production:
        return []
    missing = []
    if not settings.session_secret:
        missing.append("SESSION_SECRET")
    if not settings.repl_id:
        missing.append("REPL_ID")
    if not settings.replit_domains:
        missing.append("REPLIT_DOMAINS")
    return missing
