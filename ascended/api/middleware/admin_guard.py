"""Admin guard middleware

Runs on ADMIN-classified paths before authentication:
- per-IP fixed window request limit (100 requests / 15 minutes by default)
- optional IP allow-list of addresses and CIDR blocks (IPv4 and IPv6)

Counters live in a TTLCache owned by the middleware instance, so every app
built by ``create_app`` starts with clean state.
"""

from __future__ import annotations

import ipaddress
import math
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

from cachetools import TTLCache
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from ascended.config import (
    ADMIN_RATE_LIMIT_MAX_IPS,
    ADMIN_RATE_LIMIT_REQUESTS,
    ADMIN_RATE_LIMIT_WINDOW_SECONDS,
)
from ascended.observability.logging import get_logger
from ascended.observability.telemetry import log_event
from ascended.security.route_classification import AuthType, get_required_auth_type
from ascended.security.violations import AuditSink, log_admin_action
from ascended.utils.client_ip import get_client_ip
from ascended.utils.redaction import redact

logger = get_logger(__name__)

IPNetwork = ipaddress.IPv4Network | ipaddress.IPv6Network


@dataclass
class _Window:
    count: int
    reset_at: float


def parse_allowlist(entries: Iterable[str]) -> list[IPNetwork]:
    """Parse allow-list entries; single addresses become /32 or /128 networks."""
    networks: list[IPNetwork] = []
    for entry in entries:
        try:
            networks.append(ipaddress.ip_network(entry.strip(), strict=False))
        except ValueError:
            logger.error("Ignoring invalid admin IP allow-list entry: %s", entry)
    return networks


def ip_allowed(client_ip: str, networks: list[IPNetwork]) -> bool:
    """
    Raises:
        ValueError: client_ip is not an IP address
    """
    address = ipaddress.ip_address(client_ip)
    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped is not None:
        address = address.ipv4_mapped
    return any(address.version == network.version and address in network for network in networks)


class AdminGuardMiddleware(BaseHTTPMiddleware):
    def __init__(
        self,
        app: Any,
        max_requests: int = ADMIN_RATE_LIMIT_REQUESTS,
        window_seconds: int = ADMIN_RATE_LIMIT_WINDOW_SECONDS,
        allowlist: Iterable[str] = (),
        audit_sink: AuditSink | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(app)
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.networks = parse_allowlist(allowlist)
        self.audit_sink = audit_sink
        self.clock = clock
        self.windows: TTLCache[str, _Window] = TTLCache(
            maxsize=ADMIN_RATE_LIMIT_MAX_IPS, ttl=window_seconds, timer=clock
        )

    def _check_rate(self, client_ip: str) -> int | None:
        """Count this request; return seconds until reset when over the limit."""
        now = self.clock()
        window = self.windows.get(client_ip)
        if window is None or now > window.reset_at:
            self.windows[client_ip] = _Window(count=1, reset_at=now + self.window_seconds)
            return None
        if window.count >= self.max_requests:
            return max(1, math.ceil(window.reset_at - now))
        window.count += 1
        return None

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if get_required_auth_type(request.url.path) is not AuthType.ADMIN:
            return await call_next(request)

        client_ip = get_client_ip(request)

        retry_after = self._check_rate(client_ip)
        if retry_after is not None:
            logger.warning("Admin rate limit exceeded for %s", redact(client_ip))
            log_event("admin.rate_limit.exceeded", ip=redact(client_ip), path=request.url.path)
            return JSONResponse(
                status_code=429,
                content={
                    "error": "Too many admin requests",
                    "message": "Too many admin requests, please try again later.",
                    "retryAfter": retry_after,
                },
                headers={"Retry-After": str(retry_after)},
            )

        if self.networks:
            try:
                allowed = ip_allowed(client_ip, self.networks)
            except ValueError:
                log_admin_action(
                    request, "ip_parsing_failed", None, {"clientIP": client_ip}, self.audit_sink
                )
                return JSONResponse(
                    status_code=403,
                    content={"error": "Access denied", "message": "Invalid IP address format"},
                )
            if not allowed:
                log_admin_action(
                    request, "ip_access_denied", None, {"clientIP": client_ip}, self.audit_sink
                )
                return JSONResponse(
                    status_code=403,
                    content={"error": "Access denied", "message": "Access denied from this IP address"},
                )

        return await call_next(request)
