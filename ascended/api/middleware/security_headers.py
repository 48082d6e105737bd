"""Security headers middleware for the Ascended API

Attaches route-class dependent headers to every response, rejections
included, and audits 401/403 responses.

- ADMIN: frame denial, no referrer, no caching, HSTS in production
- USER: same-origin framing, private caching for five minutes
- PUBLIC: same-origin framing, public caching for an hour
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from ascended.observability.logging import get_logger
from ascended.observability.telemetry import counter, log_event
from ascended.security.route_classification import AuthType, get_required_auth_type
from ascended.utils.client_ip import get_client_ip
from ascended.utils.redaction import redact

logger = get_logger(__name__)

HSTS_VALUE = "max-age=31536000; includeSubDomains; preload"

BASE_HEADERS: dict[str, str] = {
    "X-Content-Type-Options": "nosniff",
    "X-XSS-Protection": "1; mode=block",
    "X-Powered-By": "Ascended Social",
}

ROUTE_CLASS_HEADERS: dict[AuthType, dict[str, str]] = {
    AuthType.ADMIN: {
        "X-Frame-Options": "DENY",
        "Referrer-Policy": "no-referrer",
        "Cache-Control": "no-store, no-cache, must-revalidate, private",
        "Pragma": "no-cache",
        "Expires": "0",
        "X-Admin-Protected": "true",
    },
    AuthType.USER: {
        "X-Frame-Options": "SAMEORIGIN",
        "Referrer-Policy": "strict-origin-when-cross-origin",
        "Cache-Control": "private, max-age=300",
        "X-User-Protected": "true",
    },
    AuthType.PUBLIC: {
        "X-Frame-Options": "SAMEORIGIN",
        "Referrer-Policy": "strict-origin-when-cross-origin",
        "Cache-Control": "public, max-age=3600",
    },
}

# Probed by the frontend on every load; an anonymous 401 there is expected.
QUIET_401_PATHS = frozenset({"/api/auth/user", "/api/auth/status"})


def security_headers_for(auth_type: AuthType, production: bool) -> dict[str, str]:
    headers = {**BASE_HEADERS, **ROUTE_CLASS_HEADERS[auth_type], "X-Route-Auth-Type": auth_type.value}
    if auth_type is AuthType.ADMIN and production:
        headers["Strict-Transport-Security"] = HSTS_VALUE
    return headers


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, production: bool = False) -> None:
        super().__init__(app)
        self.production = production

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)

        path = request.url.path
        auth_type = get_required_auth_type(path)
        for name, value in security_headers_for(auth_type, self.production).items():
            response.headers[name] = value

        status_code = response.status_code
        if status_code in (401, 403) and not (status_code == 401 and path in QUIET_401_PATHS):
            counter(f"security.error_response.{status_code}")
            log_event(
                "security.error_response",
                status=status_code,
                path=path,
                method=request.method,
                route_class=auth_type.value,
                ip=redact(get_client_ip(request)),
            )

        return response
