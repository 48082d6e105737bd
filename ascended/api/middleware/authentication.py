"""Authentication middleware for the Ascended API

Classifies the request path, asks the injected ``AuthenticationStrategy`` to
resolve the caller for that route class, and either answers with the
strategy's rejection or attaches the resolved identity to
``request.state.identity`` before calling the route.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from ascended.observability.logging import get_logger
from ascended.security.route_classification import AuthType, get_required_auth_type
from ascended.security.strategies import AuthenticationStrategy, AuthOutcome
from ascended.security.violations import AuditSink, log_security_violation

logger = get_logger(__name__)


class AuthenticationMiddleware(BaseHTTPMiddleware):
    def __init__(
        self,
        app,
        strategy: AuthenticationStrategy,
        audit_sink: AuditSink | None = None,
    ) -> None:
        super().__init__(app)
        self.strategy = strategy
        self.audit_sink = audit_sink

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        auth_type = get_required_auth_type(request.url.path)
        request.state.auth_type = auth_type
        request.state.identity = None

        try:
            outcome: AuthOutcome = await self.strategy.authenticate(request, auth_type)
        except Exception as e:
            logger.exception("Authentication error on %s %s", request.method, request.url.path)
            is_admin = auth_type is AuthType.ADMIN
            log_security_violation(
                request,
                "admin_auth_error" if is_admin else "auth_middleware_error",
                {"error": type(e).__name__},
                audit_sink=self.audit_sink,
            )
            return JSONResponse(
                status_code=500,
                content={
                    "error": "Admin authentication system error" if is_admin else "Authentication system error",
                    "message": "Please try again later",
                },
            )

        if outcome.rejection is not None:
            response: Response = JSONResponse(
                status_code=outcome.rejection.status_code,
                content=outcome.rejection.body,
            )
            retry_after = outcome.rejection.body.get("retryAfter")
            if retry_after is not None:
                response.headers["Retry-After"] = str(retry_after)
        else:
            request.state.identity = outcome.identity
            response = await call_next(request)

        for name, value in outcome.response_headers.items():
            response.headers[name] = value
        return response
