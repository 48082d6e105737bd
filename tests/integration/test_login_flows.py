"""Integration tests for the user and admin OIDC login flows"""

from __future__ import annotations

import time
from urllib.parse import parse_qs, urlparse

from fastapi.testclient import TestClient

from ascended.config import ADMIN_SESSION_TTL_SECONDS
from ascended.observability.telemetry import get_counter
from ascended.security.tokens import verify_mobile_token
from tests.support import ADMIN_ID, SECRET, admin_session, read_admin_session, seed, seed_admin


def start_login(client: TestClient, path: str, **params) -> str:
    response = client.get(path, params=params, follow_redirects=False)
    assert response.status_code == 302
    query = parse_qs(urlparse(response.headers["location"]).query)
    return query["state"][0]


def finish_login(client: TestClient, path: str, state: str, code: str = "ok"):
    return client.get(path, params={"code": code, "state": state}, follow_redirects=False)


class TestUserLogin:
    def test_login_redirects_to_provider(self, client, oidc):
        response = client.get("/api/login", follow_redirects=False)

        assert response.status_code == 302
        location = response.headers["location"]
        assert location.startswith("https://idp.example/auth?")
        assert "redirect_uri=http://testserver/api/callback" in location

    def test_web_login(self, client, storage):
        state = start_login(client, "/api/login")

        response = finish_login(client, "/api/callback", state)

        assert response.status_code == 302
        assert response.headers["location"] == "/"
        assert storage.get_user("user-1").email == "seeker@example.com"

        me = client.get("/api/auth/user")
        assert me.status_code == 200
        assert me.json()["authMethod"] == "passport"
        assert "isAdmin" not in client.get("/__test__/session").json()["passport"]["user"]

    def test_mobile_login_issues_token(self, client, storage):
        state = start_login(client, "/api/login", state="app-nonce-1")

        response = finish_login(client, "/api/callback", state)

        assert response.status_code == 302
        location = urlparse(response.headers["location"])
        assert location.path == "/auth-callback"
        query = parse_qs(location.query)
        assert query["state"] == ["app-nonce-1"]

        payload = verify_mobile_token(query["token"][0], SECRET)
        assert payload["userId"] == "user-1"

        fresh = TestClient(client.app)
        whoami = fresh.get("/api/spirit/whoami", headers={"Authorization": f"Bearer {query['token'][0]}"})
        assert whoami.status_code == 200
        assert whoami.json()["authMethod"] == "jwt"

    def test_known_email_with_new_subject(self, client, storage):
        storage.upsert_user(user_id="legacy-7", email="seeker@example.com")
        state = start_login(client, "/api/login")

        response = finish_login(client, "/api/callback", state)

        assert response.status_code == 302
        assert response.headers["location"] == "/"
        assert storage.users.count() == 1
        whoami = client.get("/api/spirit/whoami")
        assert whoami.status_code == 200
        assert whoami.json()["id"] == "legacy-7"

    def test_default_state_is_web_login(self, client):
        state = start_login(client, "/api/login", state="default")

        response = finish_login(client, "/api/callback", state)

        assert response.headers["location"] == "/"

    def test_rejected_code_restarts_login(self, client):
        state = start_login(client, "/api/login")

        response = finish_login(client, "/api/callback", state, code="bad")

        assert response.status_code == 302
        assert response.headers["location"] == "/api/login"
        assert get_counter("auth.login.failed") == 1

    def test_state_mismatch_restarts_login(self, client, oidc):
        start_login(client, "/api/login")

        response = finish_login(client, "/api/callback", "forged-state")

        assert response.headers["location"] == "/api/login"
        assert oidc.exchanges == []

    def test_unknown_host_rejected(self, app_and_storage):
        client = TestClient(app_and_storage[0], base_url="http://evil.example")

        assert client.get("/api/login", follow_redirects=False).status_code == 400

    def test_logout_clears_session(self, client):
        seed(client, {"user": {"id": "user-1", "email": "seeker@example.com"}})

        response = client.get("/api/logout", follow_redirects=False)

        assert response.status_code == 302
        assert response.headers["location"].startswith("https://idp.example/logout?")
        assert client.get("/__test__/session").json() == {}


class TestAdminLogin:
    def test_admin_login(self, client, oidc, storage):
        oidc.claims["sub"] = ADMIN_ID
        oidc.claims["email"] = "admin@ascended.social"
        state = start_login(client, "/api/admin/login")

        response = finish_login(client, "/api/admin/callback", state)

        assert response.status_code == 302
        assert response.headers["location"] == "/admin/dashboard"
        assert "admin.sid=" in response.headers["set-cookie"]
        assert read_admin_session(client)["passport"]["user"]["isAdmin"] is True
        assert "passport" not in client.get("/__test__/session").json()
        assert storage.get_user(ADMIN_ID) is not None
        assert client.get("/api/admin/user").status_code == 200

    def test_user_and_admin_logins_coexist(self, client, oidc):
        state = start_login(client, "/api/login")
        finish_login(client, "/api/callback", state)
        oidc.claims.update(sub=ADMIN_ID, email="admin@ascended.social")
        state = start_login(client, "/api/admin/login")
        finish_login(client, "/api/admin/callback", state)

        whoami = client.get("/api/spirit/whoami")
        assert whoami.status_code == 200
        assert whoami.json()["id"] == "user-1"
        assert client.get("/api/admin/user").status_code == 200

        oidc.claims.update(sub="user-1", email="seeker@example.com")
        state = start_login(client, "/api/login")
        finish_login(client, "/api/callback", state)

        assert client.get("/api/admin/user").json()["id"] == ADMIN_ID
        assert client.get("/api/spirit/whoami").status_code == 200

    def test_admin_session_capped(self, client, oidc):
        oidc.claims["sub"] = ADMIN_ID
        oidc.expires_in = 24 * 3600
        state = start_login(client, "/api/admin/login")

        finish_login(client, "/api/admin/callback", state)

        expires_at = read_admin_session(client)["passport"]["user"]["expires_at"]
        assert expires_at <= int(time.time()) + ADMIN_SESSION_TTL_SECONDS

    def test_non_admin_account_refused(self, client, storage):
        state = start_login(client, "/api/admin/login")

        response = finish_login(client, "/api/admin/callback", state)

        assert response.headers["location"] == "/api/admin/login?error=unauthorized"
        assert read_admin_session(client) == {}
        assert get_counter("security.violation.unauthorized_admin_login") == 1
        assert storage.get_user("user-1") is None

    def test_login_error_page(self, client):
        response = client.get("/api/admin/login", params={"error": "unauthorized"})

        assert response.status_code == 401
        assert response.json()["message"] == "This account is not authorized for admin access"

    def test_provider_failure(self, client):
        state = start_login(client, "/api/admin/login")

        response = finish_login(client, "/api/admin/callback", state, code="bad")

        assert response.headers["location"] == "/api/admin/login?error=auth_failed"

    def test_admin_logout(self, client, clock):
        seed(client, {"user": {"id": "user-1", "email": "seeker@example.com"}})
        seed_admin(client, admin_session(clock))

        response = client.get("/api/admin/logout", follow_redirects=False)

        assert response.status_code == 302
        assert "post_logout_redirect_uri=http://testserver" in response.headers["location"]
        assert read_admin_session(client) == {}
        assert client.get("/api/admin/user").status_code == 403
        assert client.get("/__test__/session").json()["user"]["id"] == "user-1"
