"""Pydantic response models for the Ascended API.

Field names follow the camelCase JSON the web and mobile clients already
consume.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel


class HealthResponse(BaseModel):
    status: str
    service: str
    version: str
    environment: str
    timestamp: str


class CurrentUserResponse(BaseModel):
    id: str
    email: str | None = None
    firstName: str | None = None
    lastName: str | None = None
    profileImageUrl: str | None = None
    authMethod: str


class AdminUserResponse(BaseModel):
    id: str
    email: str | None = None
    firstName: str | None = None
    lastName: str | None = None
    profileImageUrl: str | None = None
    isAdmin: bool = True


class AuthenticationState(BaseModel):
    admin: bool
    user: bool
    adminUser: str | None = None
    userSession: bool
    bearerToken: bool


class RouteInfoResponse(BaseModel):
    path: str
    requiredAuthType: str
    authentication: AuthenticationState
    routePatterns: dict[str, list[str]]


class AuditLogEntry(BaseModel):
    id: int
    action: str
    performedBy: str | None = None
    reason: str | None = None
    details: Any = None
    ipAddress: str | None = None
    userAgent: str | None = None
    createdAt: float


class AuditLogResponse(BaseModel):
    entries: list[AuditLogEntry]
    count: int
