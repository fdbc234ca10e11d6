"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Two token sources are checked in priority order:
  1. "token" cookie -- set by POST /auth/signin and the OAuth callback.
  2. Authorization: Bearer <token> header -- API clients.

try_get_current_user() is the soft variant (returns None on failure).
get_current_user() wraps it and raises HTTP 401 if unauthenticated; the
error code tells the client whether to refresh (token_expired) or sign in
again (token_invalid / unauthorized).

Layer rule: no imports from api/.
  auth/dependencies.py may import from fastapi (for HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.authority import CredentialAuthority
from auth.errors import Failure
from auth.models import User

ACCESS_COOKIE = "token"  # noqa: S105 -- cookie name, not a secret
REFRESH_COOKIE = "refreshToken"  # noqa: S105


def _request_token(request: Request) -> str | None:
    token = request.cookies.get(ACCESS_COOKIE)
    if not token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:]
    return token or None


def _authenticate(request: Request) -> User | Failure | None:
    token = _request_token(request)
    if token is None:
        return None
    authority: CredentialAuthority = request.app.state.authority
    return authority.session_user(token)


def try_get_current_user(request: Request) -> User | None:
    """Return the authenticated User, or None. Never raises for bad tokens."""
    result = _authenticate(request)
    return result if isinstance(result, User) else None


def get_current_user(request: Request) -> User:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(user: User = Depends(get_current_user)): ...
    """
    result = _authenticate(request)
    if isinstance(result, User):
        return result
    if isinstance(result, Failure):
        raise HTTPException(status_code=401, detail={"code": result.code.value, "message": result.message})
    raise HTTPException(
        status_code=401,
        detail={"code": "unauthorized", "message": "Authentication required."},
    )
