"""Authentication, route classification and security audit primitives"""

from __future__ import annotations

from ascended.security.identity import AuthenticatedIdentity, AuthMethod, IdentityKind
from ascended.security.route_classification import AuthType, get_required_auth_type

__all__ = [
    "AuthType",
    "AuthMethod",
    "AuthenticatedIdentity",
    "IdentityKind",
    "get_required_auth_type",
]
