"""Admin session middleware

Keeps the admin login in its own signed cookie, separate from the user session
that Starlette's ``SessionMiddleware`` manages:
- cookie ``admin.sid`` scoped to ``/api/admin`` with ``SameSite=Strict``
- 4 hour lifetime, ``Secure`` in production
- exposed to handlers through ``ascended.security.identity.get_admin_session``

The cookie format matches Starlette's: base64 JSON signed with an itsdangerous
``TimestampSigner``. The cookie is only rewritten when the session changed.
"""

from __future__ import annotations

import json
from base64 import b64decode, b64encode
from typing import Any, Literal

import itsdangerous
from itsdangerous.exc import BadSignature
from starlette.datastructures import MutableHeaders
from starlette.requests import HTTPConnection
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from ascended.config import ADMIN_SESSION_COOKIE_NAME, ADMIN_SESSION_PATH, ADMIN_SESSION_TTL_SECONDS
from ascended.observability.logging import get_logger
from ascended.security.identity import ADMIN_SESSION_SCOPE_KEY

logger = get_logger(__name__)


class AdminSessionMiddleware:
    def __init__(
        self,
        app: ASGIApp,
        secret_key: str,
        session_cookie: str = ADMIN_SESSION_COOKIE_NAME,
        max_age: int = ADMIN_SESSION_TTL_SECONDS,
        path: str = ADMIN_SESSION_PATH,
        same_site: Literal["lax", "strict", "none"] = "strict",
        https_only: bool = False,
    ) -> None:
        self.app = app
        self.signer = itsdangerous.TimestampSigner(str(secret_key))
        self.session_cookie = session_cookie
        self.max_age = max_age
        self.path = path
        self.security_flags = "httponly; samesite=" + same_site
        if https_only:
            self.security_flags += "; secure"

    def _load(self, connection: HTTPConnection) -> dict[str, Any] | None:
        raw = connection.cookies.get(self.session_cookie)
        if not raw:
            return None
        try:
            data = self.signer.unsign(raw.encode("utf-8"), max_age=self.max_age)
            session = json.loads(b64decode(data))
        except (BadSignature, ValueError) as e:
            logger.warning("Discarding unreadable admin session cookie: %s", type(e).__name__)
            return None
        return session if isinstance(session, dict) else None

    def _cookie(self, value: str, lifetime: str) -> str:
        return f"{self.session_cookie}={value}; path={self.path}; {lifetime}{self.security_flags}"

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] not in ("http", "websocket"):
            await self.app(scope, receive, send)
            return

        loaded = self._load(HTTPConnection(scope))
        initial = json.dumps(loaded, sort_keys=True) if loaded is not None else None
        scope[ADMIN_SESSION_SCOPE_KEY] = dict(loaded or {})

        async def send_wrapper(message: Message) -> None:
            if message["type"] == "http.response.start":
                session = scope[ADMIN_SESSION_SCOPE_KEY]
                headers = MutableHeaders(scope=message)
                if session:
                    current = json.dumps(session, sort_keys=True)
                    if current != initial:
                        data = self.signer.sign(b64encode(json.dumps(session).encode("utf-8")))
                        headers.append(
                            "Set-Cookie",
                            self._cookie(data.decode("utf-8"), f"Max-Age={self.max_age}; "),
                        )
                elif initial is not None:
                    headers.append(
                        "Set-Cookie",
                        self._cookie("null", "expires=Thu, 01 Jan 1970 00:00:00 GMT; "),
                    )
            await send(message)

        await self.app(scope, receive, send_wrapper)
