"""
Shared helpers for the Ascended API tests: an app builder wired to a temporary
SQLite database, a controllable clock, a fake OIDC provider, and test-only
routes for seeding the user and admin cookie sessions and echoing the resolved
identity.
"""

from __future__ import annotations

import json
import time
from base64 import b64decode, b64encode
from pathlib import Path
from typing import Any

from fastapi import FastAPI, Request
from fastapi.testclient import TestClient
from itsdangerous import TimestampSigner

from ascended.api.app import create_app
from ascended.config import ADMIN_SESSION_COOKIE_NAME, Settings
from ascended.security.identity import get_admin_session, get_identity
from ascended.security.oidc import OIDCError, TokenSet
from ascended.storage.database import Database
from ascended.storage.repositories import Storage

ADMIN_ID = "25531750"
SECRET = "test-session-secret"


class FakeClock:
    def __init__(self, start: float | None = None) -> None:
        self.now = start if start is not None else time.time()

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeOidc:
    """In-memory identity provider."""

    def __init__(self) -> None:
        self.claims: dict[str, Any] = {
            "sub": "user-1",
            "email": "seeker@example.com",
            "first_name": "Sky",
            "last_name": "Walker",
            "profile_image_url": None,
        }
        self.expires_in = 3600
        self.refresh_result: TokenSet | None = None
        self.refresh_calls: list[str] = []
        self.exchanges: list[dict[str, str]] = []

    async def authorization_url(self, redirect_uri: str, state: str, code_challenge: str) -> str:
        return f"https://idp.example/auth?state={state}&redirect_uri={redirect_uri}"

    async def exchange_code(self, code: str, redirect_uri: str, code_verifier: str) -> TokenSet:
        self.exchanges.append({"code": code, "redirect_uri": redirect_uri, "code_verifier": code_verifier})
        if code == "bad":
            raise OIDCError("invalid_grant")
        return TokenSet(
            access_token="access-1",
            refresh_token="refresh-1",
            id_token="id-token",
            expires_at=int(time.time()) + self.expires_in,
            claims=dict(self.claims),
        )

    async def refresh(self, refresh_token: str) -> TokenSet:
        self.refresh_calls.append(refresh_token)
        if self.refresh_result is None:
            raise OIDCError("refresh rejected")
        return self.refresh_result

    async def end_session_url(self, post_logout_redirect_uri: str) -> str:
        return f"https://idp.example/logout?post_logout_redirect_uri={post_logout_redirect_uri}"


def make_settings(tmp_path: Path, **overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "environment": "development",
        "session_secret": SECRET,
        "repl_id": "client-123",
        "replit_domains": ("testserver",),
        "db_path": str(tmp_path / "ascended_test.db"),
    }
    values.update(overrides)
    return Settings(**values)


def add_test_routes(app: FastAPI) -> None:
    """Session seeding for both cookies plus a couple of routes that echo the identity."""

    @app.post("/__test__/session")
    async def seed_session(request: Request, payload: dict[str, Any]) -> dict[str, Any]:
        request.session.clear()
        request.session.update(payload)
        return {"ok": True}

    @app.get("/__test__/session")
    async def read_session(request: Request) -> dict[str, Any]:
        return dict(request.session)

    @app.post("/__test__/admin-session")
    async def seed_admin_session(request: Request, payload: dict[str, Any]) -> dict[str, Any]:
        admin = get_admin_session(request)
        admin.clear()
        admin.update(payload)
        return {"ok": True}

    @app.get("/api/spirit/whoami")
    async def whoami(request: Request) -> dict[str, Any]:
        return get_identity(request).to_public_dict()

    @app.get("/api/posts/feed")
    async def feed(request: Request) -> dict[str, Any]:
        return {"identity": get_identity(request).to_public_dict()}

    @app.post("/api/admin/reports/review")
    async def review_report(request: Request) -> dict[str, Any]:
        return {"reviewedBy": get_identity(request).id}


def build_app(
    tmp_path: Path,
    clock: FakeClock | None = None,
    oidc: FakeOidc | None = None,
    **setting_overrides: Any,
) -> tuple[FastAPI, Storage]:
    settings = make_settings(tmp_path, **setting_overrides)
    database = Database(settings.db_path)
    database.init_schema()
    storage = Storage(database)
    app = create_app(
        settings=settings,
        storage=storage,
        oidc=oidc or FakeOidc(),
        clock=clock or FakeClock(),
    )
    add_test_routes(app)
    return app, storage


def admin_session(clock: FakeClock, **overrides: Any) -> dict[str, Any]:
    user = {
        "id": ADMIN_ID,
        "email": "admin@ascended.social",
        "firstName": "Ada",
        "lastName": "Min",
        "profileImageUrl": None,
        "isAdmin": True,
        "access_token": "admin-access",
        "refresh_token": None,
        "expires_at": int(clock.now) + 3600,
    }
    user.update(overrides)
    return {"passport": {"user": user}}


def passport_session(clock: FakeClock, user_id: str = "user-1", **overrides: Any) -> dict[str, Any]:
    user = {
        "id": user_id,
        "email": "seeker@example.com",
        "firstName": "Sky",
        "lastName": "Walker",
        "profileImageUrl": None,
        "access_token": "user-access",
        "refresh_token": None,
        "expires_at": int(clock.now) + 3600,
    }
    user.update(overrides)
    return {"passport": {"user": user}}


def seed(client: TestClient, session: dict[str, Any]) -> None:
    response = client.post("/__test__/session", json=session)
    assert response.status_code == 200


def seed_admin(client: TestClient, session: dict[str, Any]) -> None:
    """Store ``session`` in the ``admin.sid`` cookie (sent only to /api/admin paths)."""
    response = client.post("/__test__/admin-session", json=session)
    assert response.status_code == 200


def sign_admin_session(session: dict[str, Any], secret: str = SECRET) -> str:
    """Cookie value for ``session``, for sending the admin cookie where browsers would not."""
    data = b64encode(json.dumps(session).encode("utf-8"))
    return TimestampSigner(secret).sign(data).decode("utf-8")


def read_admin_session(client: TestClient) -> dict[str, Any]:
    value = client.cookies.get(ADMIN_SESSION_COOKIE_NAME)
    if not value:
        return {}
    return json.loads(b64decode(TimestampSigner(SECRET).unsign(value)))
