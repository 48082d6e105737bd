"""
Security violation audit trail.

A violation is an authentication or authorization anomaly: cross-auth
attempts, corrupted sessions, revoked admin ids, invalid tokens. Each one is
logged, counted and persisted best-effort to the audit log. Persistence
failures are logged and never reach the caller.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Protocol

from starlette.requests import Request

from ascended.observability.logging import get_logger
from ascended.observability.telemetry import counter
from ascended.utils.client_ip import get_client_ip
from ascended.utils.redaction import redact, redact_headers

logger = get_logger(__name__)


class AuditSink(Protocol):
    def create_audit_log(self, **fields: Any) -> int | None: ...


def build_violation_entry(
    request: Request, violation_type: str, details: dict[str, Any] | None = None
) -> dict[str, Any]:
    return {
        "timestamp": datetime.now(UTC).isoformat(),
        "violationType": violation_type,
        "ip": get_client_ip(request),
        "userAgent": request.headers.get("user-agent"),
        "path": request.url.path,
        "method": request.method,
        "headers": redact_headers(request.headers),
        "details": details or {},
    }


def log_security_violation(
    request: Request,
    violation_type: str,
    details: dict[str, Any] | None = None,
    audit_sink: AuditSink | None = None,
    performed_by: str | None = None,
) -> dict[str, Any]:
    """
    Record a security violation.

    Returns:
        The violation entry that was logged

    Side Effects:
        - Writes to logger (error level)
        - Increments security.violation.<type> counter
        - Inserts an audit_logs row when a sink is given (failures are logged)
    """
    entry = build_violation_entry(request, violation_type, details)
    logger.error(
        "SECURITY VIOLATION [%s] %s %s ip=%s user=%s details=%s",
        violation_type,
        entry["method"],
        entry["path"],
        redact(entry["ip"]),
        redact(performed_by) if performed_by else "anonymous",
        entry["details"],
    )
    counter(f"security.violation.{violation_type}")

    if audit_sink is not None:
        try:
            audit_sink.create_audit_log(
                action=violation_type,
                performed_by=performed_by,
                reason=f"Security violation: {violation_type}",
                details=entry,
                ip_address=entry["ip"],
                user_agent=entry["userAgent"],
            )
        except Exception as e:
            logger.error("Failed to persist security violation %s: %s", violation_type, e)
            counter("security.violation.persist_failed")

    return entry


def log_admin_action(
    request: Request,
    action: str,
    performed_by: str | None,
    details: dict[str, Any] | None = None,
    audit_sink: AuditSink | None = None,
) -> None:
    """
    Audit an admin action (non-GET admin requests, analytics and report reads).

    Side Effects:
        - Inserts an audit_logs row (failures are logged, never raised)
    """
    if audit_sink is None:
        return
    try:
        audit_sink.create_audit_log(
            action=action,
            performed_by=performed_by,
            reason=f"Admin action: {action}",
            details=details,
            ip_address=get_client_ip(request),
            user_agent=request.headers.get("user-agent"),
        )
    except Exception as e:
        logger.error("Failed to log admin action %s: %s", action, e)
