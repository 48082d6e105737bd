"""Resolved caller identity attached to ``request.state.identity``, and the admin session accessor."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from starlette.requests import HTTPConnection, Request


class IdentityKind(str, Enum):
    ADMIN = "admin"
    USER = "user"


class AuthMethod(str, Enum):
    JWT = "jwt"
    PASSPORT = "passport"
    SESSION = "session"
    TEST_FIXTURE = "test-fixture"


@dataclass(frozen=True)
class AuthenticatedIdentity:
    """An authenticated caller. ``kind`` tells admin and user identities apart."""

    kind: IdentityKind
    id: str
    email: str
    auth_method: AuthMethod
    first_name: str | None = None
    last_name: str | None = None
    profile_image_url: str | None = None
    expires_at: int | None = None

    @property
    def is_admin(self) -> bool:
        return self.kind is IdentityKind.ADMIN

    def to_public_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "email": self.email,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "profileImageUrl": self.profile_image_url,
            "authMethod": self.auth_method.value,
        }
        if self.is_admin:
            data["isAdmin"] = True
        return data

    def __str__(self) -> str:
        return f"Identity({self.kind.value}, {self.id}, {self.auth_method.value})"


def get_identity(request: Request) -> AuthenticatedIdentity | None:
    return getattr(request.state, "identity", None)


ADMIN_SESSION_SCOPE_KEY = "admin_session"


def get_admin_session(connection: HTTPConnection) -> dict[str, Any]:
    """The admin cookie session for this request; empty when it is not mounted."""
    return connection.scope.get(ADMIN_SESSION_SCOPE_KEY, {})
