"""
OpenID Connect client for the hosting provider's login (Replit OIDC by default).

Used by both login flows (end users and admins) and by the authentication
strategy to refresh expired sessions. Provider metadata and signing keys are
cached for an hour.
"""

from __future__ import annotations

import base64
import hashlib
import secrets
import time
from dataclasses import dataclass, field
from typing import Any, Protocol
from urllib.parse import urlencode

import httpx
import jwt
from cachetools import TTLCache

from ascended.config import HTTP_TIMEOUT_SECONDS, OIDC_DISCOVERY_TTL_SECONDS, OIDC_SCOPES
from ascended.observability.logging import get_logger
from ascended.observability.telemetry import counter, log_event

logger = get_logger(__name__)


class OIDCError(Exception):
    """Provider call failed or returned an unusable response."""


@dataclass
class TokenSet:
    access_token: str
    refresh_token: str | None
    id_token: str | None
    expires_at: int | None
    claims: dict[str, Any] = field(default_factory=dict)


class OidcProvider(Protocol):
    async def authorization_url(self, redirect_uri: str, state: str, code_challenge: str) -> str: ...

    async def exchange_code(self, code: str, redirect_uri: str, code_verifier: str) -> TokenSet: ...

    async def refresh(self, refresh_token: str) -> TokenSet: ...

    async def end_session_url(self, post_logout_redirect_uri: str) -> str: ...


def new_pkce_pair() -> tuple[str, str]:
    """Return ``(code_verifier, code_challenge)`` for the S256 method."""
    verifier = secrets.token_urlsafe(64)
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    challenge = base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
    return verifier, challenge


class OidcClient:
    def __init__(
        self,
        issuer_url: str,
        client_id: str,
        timeout: float = HTTP_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.issuer_url = issuer_url.rstrip("/")
        self.client_id = client_id
        self.timeout = timeout
        self._transport = transport
        self._metadata: TTLCache[str, dict[str, Any]] = TTLCache(
            maxsize=2, ttl=OIDC_DISCOVERY_TTL_SECONDS
        )

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def _get_json(self, url: str) -> dict[str, Any]:
        async with self._client() as client:
            try:
                response = await client.get(url)
            except httpx.RequestError as e:
                logger.error("OIDC request to %s failed: %s", url, e)
                raise OIDCError("Identity provider unavailable") from e
        if response.status_code != 200:
            logger.warning("OIDC GET %s returned %s", url, response.status_code)
            raise OIDCError(f"Identity provider returned {response.status_code}")
        return response.json()

    async def discover(self) -> dict[str, Any]:
        """
        Fetch provider metadata (cached for an hour).

        Side Effects:
            - HTTP GET to {issuer}/.well-known/openid-configuration on cache miss
        """
        cached = self._metadata.get("discovery")
        if cached is not None:
            return cached
        metadata = await self._get_json(f"{self.issuer_url}/.well-known/openid-configuration")
        self._metadata["discovery"] = metadata
        log_event("oidc.discovery.refreshed", issuer=self.issuer_url)
        return metadata

    async def _signing_keys(self) -> jwt.PyJWKSet:
        cached = self._metadata.get("jwks")
        if cached is None:
            metadata = await self.discover()
            cached = await self._get_json(metadata["jwks_uri"])
            self._metadata["jwks"] = cached
        return jwt.PyJWKSet.from_dict(cached)

    async def authorization_url(self, redirect_uri: str, state: str, code_challenge: str) -> str:
        metadata = await self.discover()
        params = {
            "client_id": self.client_id,
            "response_type": "code",
            "redirect_uri": redirect_uri,
            "scope": OIDC_SCOPES,
            "state": state,
            "prompt": "login consent",
            "code_challenge": code_challenge,
            "code_challenge_method": "S256",
        }
        return f"{metadata['authorization_endpoint']}?{urlencode(params)}"

    async def _token_request(self, data: dict[str, str]) -> dict[str, Any]:
        metadata = await self.discover()
        async with self._client() as client:
            try:
                response = await client.post(metadata["token_endpoint"], data=data)
            except httpx.RequestError as e:
                logger.error("OIDC token request failed: %s", e)
                raise OIDCError("Identity provider unavailable") from e
        if response.status_code != 200:
            logger.warning("OIDC token endpoint returned %s", response.status_code)
            counter("oidc.token_request_failed")
            raise OIDCError(f"Token request rejected ({response.status_code})")
        return response.json()

    async def verify_id_token(self, id_token: str) -> dict[str, Any]:
        """
        Verify an ID token against the provider signing keys.

        Raises:
            OIDCError: Unknown key id or invalid token
        """
        metadata = await self.discover()
        try:
            header = jwt.get_unverified_header(id_token)
            key_set = await self._signing_keys()
            signing_key = next(
                (key for key in key_set.keys if key.key_id == header.get("kid")), None
            )
            if signing_key is None:
                raise OIDCError("ID token signed with unknown key")
            return jwt.decode(
                id_token,
                signing_key.key,
                algorithms=[header.get("alg", "RS256")],
                audience=self.client_id,
                issuer=metadata.get("issuer", self.issuer_url),
            )
        except jwt.PyJWTError as e:
            logger.warning("ID token verification failed: %s", e)
            raise OIDCError("Invalid ID token") from e

    async def _token_set(self, payload: dict[str, Any]) -> TokenSet:
        claims: dict[str, Any] = {}
        id_token = payload.get("id_token")
        if id_token:
            claims = await self.verify_id_token(id_token)

        expires_at = claims.get("exp")
        if expires_at is None and payload.get("expires_in"):
            expires_at = int(time.time()) + int(payload["expires_in"])

        return TokenSet(
            access_token=payload.get("access_token", ""),
            refresh_token=payload.get("refresh_token"),
            id_token=id_token,
            expires_at=int(expires_at) if expires_at is not None else None,
            claims=claims,
        )

    async def exchange_code(self, code: str, redirect_uri: str, code_verifier: str) -> TokenSet:
        payload = await self._token_request(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri,
                "client_id": self.client_id,
                "code_verifier": code_verifier,
            }
        )
        return await self._token_set(payload)

    async def refresh(self, refresh_token: str) -> TokenSet:
        """
        Run a refresh-token grant.

        Side Effects:
            - HTTP POST to the provider token endpoint
        """
        payload = await self._token_request(
            {
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "client_id": self.client_id,
            }
        )
        tokens = await self._token_set(payload)
        if tokens.refresh_token is None:
            tokens.refresh_token = refresh_token
        return tokens

    async def end_session_url(self, post_logout_redirect_uri: str) -> str:
        metadata = await self.discover()
        endpoint = metadata.get("end_session_endpoint") or f"{self.issuer_url}/session/end"
        params = {"client_id": self.client_id, "post_logout_redirect_uri": post_logout_redirect_uri}
        return f"{endpoint}?{urlencode(params)}"


def passport_user_from_tokens(tokens: TokenSet, is_admin: bool = False) -> dict[str, Any]:
    """Build the ``session["passport"]["user"]`` payload for a completed login."""
    claims = tokens.claims
    user: dict[str, Any] = {
        "id": str(claims.get("sub", "")),
        "email": claims.get("email"),
        "firstName": claims.get("first_name"),
        "lastName": claims.get("last_name"),
        "profileImageUrl": claims.get("profile_image_url"),
        "access_token": tokens.access_token,
        "refresh_token": tokens.refresh_token,
        "expires_at": tokens.expires_at,
    }
    if is_admin:
        user["isAdmin"] = True
    return user


def apply_refreshed_tokens(session_user: dict[str, Any], tokens: TokenSet) -> None:
    """Write refreshed tokens back into a passport session user."""
    session_user["access_token"] = tokens.access_token
    session_user["refresh_token"] = tokens.refresh_token
    session_user["expires_at"] = tokens.expires_at
