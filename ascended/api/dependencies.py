"""FastAPI dependencies resolving the objects ``create_app`` put on ``app.state``."""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from ascended.config import Settings
from ascended.security.identity import AuthenticatedIdentity, get_identity
from ascended.security.oidc import OidcProvider
from ascended.storage.repositories import Storage


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_storage(request: Request) -> Storage:
    return request.app.state.storage


def get_oidc(request: Request) -> OidcProvider:
    return request.app.state.oidc


def require_user(request: Request) -> AuthenticatedIdentity:
    """The middleware has already authenticated USER routes; this only unwraps it."""
    identity = get_identity(request)
    if identity is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return identity


def require_admin(request: Request) -> AuthenticatedIdentity:
    identity = get_identity(request)
    if identity is None or not identity.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return identity
