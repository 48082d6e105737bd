"""Unit tests for the OIDC client

The provider is an httpx.MockTransport serving discovery, JWKS and token
endpoints. ID tokens are signed with a symmetric JWK so no key generation is
needed.
"""

from __future__ import annotations

import asyncio
import base64
import json
import time
from urllib.parse import parse_qs, urlparse

import httpx
import jwt
import pytest

from ascended.security.oidc import (
    OIDCError,
    OidcClient,
    TokenSet,
    apply_refreshed_tokens,
    new_pkce_pair,
    passport_user_from_tokens,
)

ISSUER = "https://idp.example/oidc"
CLIENT_ID = "client-123"
SIGNING_SECRET = b"provider-signing-secret-0123456789"
KID = "key-1"


def _b64(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def make_id_token(**overrides) -> str:
    now = int(time.time())
    claims = {
        "iss": ISSUER,
        "aud": CLIENT_ID,
        "sub": "user-1",
        "email": "seeker@example.com",
        "first_name": "Sky",
        "iat": now,
        "exp": now + 3600,
    }
    claims.update(overrides)
    return jwt.encode(claims, SIGNING_SECRET, algorithm="HS256", headers={"kid": KID})


class FakeProvider:
    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.token_payload: dict = {
            "access_token": "access-1",
            "refresh_token": "refresh-1",
            "id_token": make_id_token(),
        }
        self.token_status = 200

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path.endswith("/.well-known/openid-configuration"):
            return httpx.Response(
                200,
                json={
                    "issuer": ISSUER,
                    "authorization_endpoint": f"{ISSUER}/auth",
                    "token_endpoint": f"{ISSUER}/token",
                    "jwks_uri": f"{ISSUER}/jwks",
                    "end_session_endpoint": f"{ISSUER}/session/end",
                },
            )
        if path.endswith("/jwks"):
            return httpx.Response(
                200,
                json={"keys": [{"kty": "oct", "kid": KID, "alg": "HS256", "k": _b64(SIGNING_SECRET)}]},
            )
        if path.endswith("/token"):
            return httpx.Response(self.token_status, json=self.token_payload)
        return httpx.Response(404)

    def paths(self) -> list[str]:
        return [r.url.path for r in self.requests]


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def oidc_client(provider) -> OidcClient:
    return OidcClient(ISSUER, CLIENT_ID, transport=httpx.MockTransport(provider.handler))


def test_pkce_pair():
    verifier, challenge = new_pkce_pair()
    assert len(verifier) >= 43
    assert "=" not in challenge
    assert verifier != challenge


def test_authorization_url(oidc_client):
    url = asyncio.run(oidc_client.authorization_url("https://app.example/api/callback", "st", "ch"))

    parsed = urlparse(url)
    params = parse_qs(parsed.query)
    assert f"{parsed.scheme}://{parsed.netloc}{parsed.path}" == f"{ISSUER}/auth"
    assert params["client_id"] == [CLIENT_ID]
    assert params["state"] == ["st"]
    assert params["code_challenge_method"] == ["S256"]
    assert params["prompt"] == ["login consent"]
    assert "offline_access" in params["scope"][0]


def test_discovery_is_cached(oidc_client, provider):
    async def run():
        await oidc_client.discover()
        await oidc_client.discover()

    asyncio.run(run())
    assert provider.paths().count("/oidc/.well-known/openid-configuration") == 1


def test_exchange_code_verifies_id_token(oidc_client, provider):
    tokens = asyncio.run(oidc_client.exchange_code("code-1", "https://app.example/api/callback", "verifier"))

    assert tokens.access_token == "access-1"
    assert tokens.refresh_token == "refresh-1"
    assert tokens.claims["sub"] == "user-1"
    assert tokens.expires_at == tokens.claims["exp"]

    token_request = next(r for r in provider.requests if r.url.path.endswith("/token"))
    body = parse_qs(token_request.content.decode())
    assert body["grant_type"] == ["authorization_code"]
    assert body["code_verifier"] == ["verifier"]


def test_exchange_code_rejects_wrong_audience(oidc_client, provider):
    provider.token_payload["id_token"] = make_id_token(aud="someone-else")

    with pytest.raises(OIDCError):
        asyncio.run(oidc_client.exchange_code("code-1", "https://app.example/cb", "v"))


def test_exchange_code_rejects_unknown_key(oidc_client, provider):
    provider.token_payload["id_token"] = jwt.encode(
        {"iss": ISSUER, "aud": CLIENT_ID, "sub": "u"}, SIGNING_SECRET, algorithm="HS256", headers={"kid": "other"}
    )

    with pytest.raises(OIDCError):
        asyncio.run(oidc_client.exchange_code("code-1", "https://app.example/cb", "v"))


def test_token_endpoint_failure(oidc_client, provider):
    provider.token_status = 400

    with pytest.raises(OIDCError):
        asyncio.run(oidc_client.exchange_code("bad", "https://app.example/cb", "v"))


def test_refresh_keeps_refresh_token_when_not_rotated(oidc_client, provider):
    provider.token_payload = {"access_token": "access-2", "expires_in": 600}

    tokens = asyncio.run(oidc_client.refresh("refresh-1"))

    assert tokens.access_token == "access-2"
    assert tokens.refresh_token == "refresh-1"
    assert tokens.expires_at is not None and tokens.expires_at > time.time()


def test_unreachable_provider():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = OidcClient(ISSUER, CLIENT_ID, transport=httpx.MockTransport(handler))
    with pytest.raises(OIDCError, match="unavailable"):
        asyncio.run(client.discover())


def test_end_session_url(oidc_client):
    url = asyncio.run(oidc_client.end_session_url("https://app.example"))
    assert url.startswith(f"{ISSUER}/session/end?")
    assert "post_logout_redirect_uri=https%3A%2F%2Fapp.example" in url


def test_passport_user_from_tokens():
    tokens = TokenSet(
        access_token="a",
        refresh_token="r",
        id_token="i",
        expires_at=123,
        claims={"sub": "42", "email": "e@x", "first_name": "F"},
    )

    user = passport_user_from_tokens(tokens)
    assert user["id"] == "42"
    assert user["firstName"] == "F"
    assert "isAdmin" not in user
    assert "claims" not in json.dumps(user)
    assert passport_user_from_tokens(tokens, is_admin=True)["isAdmin"] is True


def test_apply_refreshed_tokens():
    session_user = {"id": "42", "access_token": "old", "refresh_token": "r", "expires_at": 1}
    apply_refreshed_tokens(session_user, TokenSet("new", "r2", None, 999))
    assert session_user == {"id": "42", "access_token": "new", "refresh_token": "r2", "expires_at": 999}
