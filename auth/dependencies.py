"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Identity comes only from the "Authorization: Bearer <access token>" header.
The verifier and service live on app.state (wired in api/main.py lifespan).

try_get_identity()   -- soft variant, returns None on any failure.
get_identity()       -- raises Unauthorized (401) if unauthenticated.
require_role(role)   -- dependency factory; also raises Forbidden (403)
                        unless the role passes the gate (admins pass all).
get_access_token()   -- raw bearer token for AuthService calls that take one;
                        raises Unauthorized when the header is missing.

The raised AuthError subclasses are turned into the error envelope by the
handler registered in api/main.py.

Layer rule: no imports from api/ or notify/.
  auth/dependencies.py may import from fastapi (Request) because this module
  is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Request

from auth.errors import Unauthorized
from auth.models import Role, TokenPayload
from auth.service import AuthService
from auth.tokens import TokenVerifier


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def _verifier(request: Request) -> TokenVerifier:
    return request.app.state.auth_service.verifier


def get_access_token(request: Request) -> str:
    """Return the bearer token from the Authorization header or raise Unauthorized."""
    token = TokenVerifier.extract_bearer(request.headers.get("Authorization"))
    if token is None:
        raise Unauthorized()
    return token


def try_get_identity(request: Request) -> TokenPayload | None:
    """Attempt to authenticate the request. Never raises."""
    return _verifier(request).try_authenticate(request.headers.get("Authorization"))


def get_identity(request: Request) -> TokenPayload:
    """Require authentication.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(identity: TokenPayload = Depends(get_identity)): ...
    """
    return _verifier(request).require_authenticate(request.headers.get("Authorization"))


def require_role(role: Role):
    """Return a dependency that requires `role` (or admin).

    Use as a FastAPI dependency:
        @router.get("/moderation")
        def route(identity: TokenPayload = Depends(require_role(Role.MODERATOR))): ...
    """

    def dependency(request: Request) -> TokenPayload:
        return _verifier(request).require_role(request.headers.get("Authorization"), role)

    return dependency
