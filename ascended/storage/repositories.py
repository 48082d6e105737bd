"""User and audit log repositories plus the ``Storage`` facade used by the API."""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from typing import Any

from ascended.observability.logging import get_logger
from ascended.storage import BaseRepository
from ascended.storage.database import Database

logger = get_logger(__name__)

AUDIT_ACTIONS = frozenset(
    {
        "user_banned",
        "user_unbanned",
        "user_suspended",
        "user_unsuspended",
        "user_warned",
        "user_role_changed",
        "post_removed",
        "post_restored",
        "comment_removed",
        "comment_restored",
        "report_reviewed",
        "community_banned",
        "community_created",
        "community_deleted",
        "other_action",
    }
)
OTHER_ACTION = "other_action"


def normalize_audit_action(action: str) -> str:
    """Map free-form action names onto the persisted audit action enum."""
    return action if action in AUDIT_ACTIONS else OTHER_ACTION


@dataclass
class UserRecord:
    id: str
    email: str | None
    first_name: str | None = None
    last_name: str | None = None
    profile_image_url: str | None = None
    created_at: float | None = None
    updated_at: float | None = None

    def to_public_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "profileImageUrl": self.profile_image_url,
        }


def _row_to_user(row: Any) -> UserRecord:
    return UserRecord(
        id=row["id"],
        email=row["email"],
        first_name=row["first_name"],
        last_name=row["last_name"],
        profile_image_url=row["profile_image_url"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class UserRepository(BaseRepository):
    def __init__(self, database: Database) -> None:
        super().__init__(database, "users")

    def get_user(self, user_id: str) -> UserRecord | None:
        row = self.query_one("SELECT * FROM users WHERE id = ?", (str(user_id),))
        return _row_to_user(row) if row else None

    def get_user_by_email(self, email: str) -> UserRecord | None:
        row = self.query_one("SELECT * FROM users WHERE email = ?", (email,))
        return _row_to_user(row) if row else None

    def upsert_user(
        self,
        user_id: str | None,
        email: str | None,
        first_name: str | None = None,
        last_name: str | None = None,
        profile_image_url: str | None = None,
    ) -> UserRecord:
        """
        Insert or update a user.

        A row already holding ``email`` is updated in place and keeps its id, so
        a provider subject that changed for a known address does not collide
        with the unique email. Otherwise the row is keyed on ``user_id``.

        Side Effects:
            - Writes to users table
        """
        existing = self.get_user_by_email(email) if email else None
        if existing is not None:
            if str(user_id or existing.id) != existing.id:
                logger.info("Login subject differs from stored user for the same email; updating stored row")
            user_id = existing.id
        elif not user_id:
            raise ValueError("upsert_user requires an id or a known email")

        now = time.time()
        self.execute(
            """
            INSERT INTO users (id, email, first_name, last_name, profile_image_url, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                email = excluded.email,
                first_name = excluded.first_name,
                last_name = excluded.last_name,
                profile_image_url = excluded.profile_image_url,
                updated_at = excluded.updated_at
            """,
            (str(user_id), email, first_name, last_name, profile_image_url, now, now),
        )
        user = self.get_user(str(user_id))
        assert user is not None
        return user

    def count(self) -> int:
        row = self.query_one("SELECT COUNT(*) AS total FROM users")
        return int(row["total"]) if row else 0

    def count_created_since(self, since: float) -> int:
        row = self.query_one(
            "SELECT COUNT(*) AS total FROM users WHERE created_at >= ?", (since,)
        )
        return int(row["total"]) if row else 0


class AuditLogRepository(BaseRepository):
    def __init__(self, database: Database) -> None:
        super().__init__(database, "audit_logs")

    def create_audit_log(
        self,
        action: str,
        performed_by: str | None,
        details: dict[str, Any] | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        reason: str | None = None,
    ) -> int | None:
        """
        Persist an audit record. Unknown actions are stored as ``other_action``
        with the original name kept in ``reason``.

        Side Effects:
            - Writes to audit_logs table
        """
        return self.execute(
            """
            INSERT INTO audit_logs (action, performed_by, reason, details, ip_address, user_agent, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                normalize_audit_action(action),
                performed_by,
                reason or f"Admin action: {action}",
                json.dumps(details, default=str) if details is not None else None,
                ip_address,
                user_agent or "Unknown",
                time.time(),
            ),
        )

    def list_recent(self, limit: int) -> list[dict[str, Any]]:
        rows = self.query_all(
            "SELECT * FROM audit_logs ORDER BY created_at DESC, id DESC LIMIT ?", (limit,)
        )
        return [
            {
                "id": row["id"],
                "action": row["action"],
                "performedBy": row["performed_by"],
                "reason": row["reason"],
                "details": json.loads(row["details"]) if row["details"] else None,
                "ipAddress": row["ip_address"],
                "userAgent": row["user_agent"],
                "createdAt": row["created_at"],
            }
            for row in rows
        ]

    def count_by_reason_since(self, since: float) -> dict[str, int]:
        rows = self.query_all(
            "SELECT reason, COUNT(*) AS total FROM audit_logs WHERE created_at >= ? GROUP BY reason",
            (since,),
        )
        return {row["reason"]: int(row["total"]) for row in rows}


class Storage:
    """Repository bundle handed to the security layer and the routes."""

    def __init__(self, database: Database) -> None:
        self.database = database
        self.users = UserRepository(database)
        self.audit_logs = AuditLogRepository(database)

    def get_user(self, user_id: str) -> UserRecord | None:
        return self.users.get_user(user_id)

    def upsert_user(self, **fields: Any) -> UserRecord:
        return self.users.upsert_user(**fields)

    def create_audit_log(self, **fields: Any) -> int | None:
        return self.audit_logs.create_audit_log(**fields)

    def admin_analytics(self, now: float | None = None) -> dict[str, Any]:
        """Aggregate counts for the admin dashboard. Contains no PII."""
        now = now if now is not None else time.time()
        return {
            "users": {
                "total": self.users.count(),
                "newLast7Days": self.users.count_created_since(now - 7 * 24 * 3600),
            },
            "audit": {
                "last24Hours": self.audit_logs.count_by_reason_since(now - 24 * 3600),
            },
            "generatedAt": now,
        }
