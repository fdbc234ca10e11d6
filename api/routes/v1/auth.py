"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/signup                     -- register a password user (201)
  POST /api/v1/auth/signin                     -- password login; sets session cookies
  POST /api/v1/auth/signout                    -- clears session cookies
  POST /api/v1/auth/refresh                    -- refresh token -> new token pair
  POST /api/v1/auth/email-check                -- {"exists": bool}
  POST /api/v1/auth/forgot-password            -- mail a reset link
  POST /api/v1/auth/reset-password/{token}     -- spend a reset token
  GET  /api/v1/auth/me                         -- current user (requires auth)
  GET  /api/v1/auth/session                    -- {"authenticated", "user"}; never 401
  GET  /api/v1/auth/providers                  -- configured OAuth providers (public)
  GET  /api/v1/auth/oauth/{provider}           -- redirect to the provider
  GET  /api/v1/auth/oauth/{provider}/callback  -- provider callback; sets session cookies

Every handler is glue: parse the body, call CredentialAuthority, map a
Failure to its HTTP status through _FAILURE_STATUS. No auth decisions are
made here.

Security:
  [M5] Cache-Control: no-store on every response that carries tokens.
"""

from __future__ import annotations

import logging

from authlib.integrations.starlette_client import OAuthError
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.models import (
    EmailCheckResponse,
    EmailRequest,
    ErrorDetail,
    ErrorResponse,
    MessageResponse,
    OAuthProviderInfo,
    RefreshRequest,
    ResetPasswordRequest,
    SessionResponse,
    SessionStatusResponse,
    SigninRequest,
    SignupRequest,
    UserResponse,
)
from auth.authority import CredentialAuthority
from auth.dependencies import ACCESS_COOKIE, REFRESH_COOKIE, get_current_user, try_get_current_user
from auth.errors import Failure, FailureCode
from auth.models import SessionTokens, User
from auth.oauth import get_enabled_providers, get_oauth_profile

logger = logging.getLogger("credgate.api.auth")

# Auth policy:
# - everything under /auth is public except GET /auth/me (get_current_user)
# - GET /auth/session uses try_get_current_user and always answers 200
router = APIRouter()

_FAILURE_STATUS: dict[FailureCode, int] = {
    FailureCode.VALIDATION_ERROR: 400,
    FailureCode.EMAIL_TAKEN: 409,
    FailureCode.USER_NOT_FOUND: 404,
    FailureCode.WRONG_PASSWORD: 400,
    FailureCode.EMAIL_NOT_FOUND: 400,
    FailureCode.DELIVERY_FAILED: 500,
    FailureCode.INVALID_OR_EXPIRED_TOKEN: 400,
    FailureCode.TOKEN_EXPIRED: 401,
    FailureCode.TOKEN_INVALID: 401,
}


# ---------------------------------------------------------------------------
# Password path
# ---------------------------------------------------------------------------


@router.post("/auth/signup", response_model=UserResponse, status_code=201)
def signup(request: Request, body: SignupRequest) -> JSONResponse:
    """Register a new user with name, email and password."""
    result = _authority(request).signup(body.name, body.email, body.password)
    if isinstance(result, Failure):
        return _failure_response(result)
    return JSONResponse(status_code=201, content=_user_to_response(result).model_dump())


@router.post("/auth/signin", response_model=SessionResponse)
def signin(request: Request, body: SigninRequest) -> JSONResponse:
    """Authenticate with email and password; set the token and refreshToken cookies."""
    result = _authority(request).signin(body.email, body.password)
    if isinstance(result, Failure):
        resp = _failure_response(result)
        resp.headers["Cache-Control"] = "no-store"  # [M5]
        return resp
    return _session_response(request, result)


@router.post("/auth/signout", response_model=MessageResponse)
async def signout(request: Request) -> JSONResponse:
    """Clear session cookies. Tokens already handed out stay valid until they expire."""
    instruction = _authority(request).signout()
    resp = JSONResponse(content=MessageResponse(message="Signed out successfully").model_dump())
    for name in instruction.clear_cookies:
        resp.delete_cookie(name)
    return resp


@router.post("/auth/refresh", response_model=SessionResponse)
def refresh(request: Request, body: RefreshRequest | None = None) -> JSONResponse:
    """Exchange a refresh token (body or refreshToken cookie) for a new pair."""
    token = (body.refresh_token if body else None) or request.cookies.get(REFRESH_COOKIE)
    if not token:
        return _failure_response(Failure(FailureCode.TOKEN_INVALID, "Refresh token required."))
    result = _authority(request).refresh_session(token)
    if isinstance(result, Failure):
        return _failure_response(result)
    return _session_response(request, result, message="Session refreshed")


@router.post("/auth/email-check", response_model=EmailCheckResponse)
def email_check(request: Request, body: EmailRequest) -> EmailCheckResponse:
    return EmailCheckResponse(exists=_authority(request).email_exists(body.email))


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


@router.post("/auth/forgot-password", response_model=MessageResponse)
async def forgot_password(request: Request, body: EmailRequest) -> JSONResponse:
    """Mail a one-time reset link to the account's address."""
    settings = request.app.state.settings
    base_url = settings.public_base_url or str(request.base_url)
    result = await _authority(request).forgot_password(body.email, base_url=base_url)
    if isinstance(result, Failure):
        return _failure_response(result)
    return JSONResponse(content=MessageResponse(message="Reset password link sent to your email").model_dump())


@router.post("/auth/reset-password/{token}", response_model=MessageResponse)
def reset_password(request: Request, token: str, body: ResetPasswordRequest) -> JSONResponse:
    result = _authority(request).reset_password(token, body.password)
    if isinstance(result, Failure):
        return _failure_response(result)
    return JSONResponse(content=MessageResponse(message="Password has been reset successfully").model_dump())


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=UserResponse)
async def me(current_user: User = Depends(get_current_user)) -> UserResponse:
    """Return identity information for the currently authenticated user."""
    return _user_to_response(current_user)


@router.get("/auth/session", response_model=SessionStatusResponse)
def session_status(current_user: User | None = Depends(try_get_current_user)) -> SessionStatusResponse:
    """Tell a page whether someone is signed in. Missing or bad tokens read as signed out."""
    if current_user is None:
        return SessionStatusResponse(authenticated=False)
    return SessionStatusResponse(authenticated=True, user=_user_to_response(current_user))


# ---------------------------------------------------------------------------
# OAuth
# ---------------------------------------------------------------------------


@router.get("/auth/providers", response_model=list[OAuthProviderInfo])
async def list_providers(request: Request) -> list[OAuthProviderInfo]:
    """Return the configured OAuth providers so a login page can render buttons."""
    return [OAuthProviderInfo(**p) for p in get_enabled_providers(request.app.state.settings)]


@router.get("/auth/oauth/{provider}")
async def oauth_redirect(request: Request, provider: str):
    """Redirect the browser to the provider's authorization page.

    The provider name is checked against the configured list first, so a
    spoofed name cannot select an arbitrary client.
    """
    if provider not in _enabled_names(request):
        return _oauth_failed()
    client = request.app.state.oauth.create_client(provider)
    redirect_uri = str(request.url_for("oauth_callback", provider=provider))
    return await client.authorize_redirect(request, redirect_uri)


@router.get("/auth/oauth/{provider}/callback", name="oauth_callback")
async def oauth_callback(request: Request, provider: str) -> JSONResponse:
    """Exchange the authorization code, link the identity, and start a session."""
    if provider not in _enabled_names(request):
        return _oauth_failed()
    client = request.app.state.oauth.create_client(provider)

    try:
        token = await client.authorize_access_token(request)
    except OAuthError:
        logger.exception("OAuth token exchange failed for provider %r", provider)
        return _oauth_failed()

    try:
        profile = get_oauth_profile(provider, token)
    except ValueError:
        logger.warning("OAuth login rejected: incomplete userinfo from %r", provider)
        return _oauth_failed()

    result = _authority(request).oauth_callback(
        provider, profile, token.get("access_token"), token.get("refresh_token")
    )
    if isinstance(result, Failure):
        return _failure_response(result)
    return _session_response(request, result)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _authority(request: Request) -> CredentialAuthority:
    return request.app.state.authority


def _enabled_names(request: Request) -> set[str]:
    return {p["name"] for p in get_enabled_providers(request.app.state.settings)}


def _error(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message)).model_dump(),
    )


def _failure_response(failure: Failure) -> JSONResponse:
    return _error(
        _FAILURE_STATUS.get(failure.code, 400),
        failure.code.value,
        failure.message,
    )


def _oauth_failed() -> JSONResponse:
    return _error(401, "oauth_failed", "Failed to authenticate with the identity provider.")


def _session_response(request: Request, tokens: SessionTokens, message: str = "Signed in successfully") -> JSONResponse:
    """Return the token pair as JSON and as httpOnly cookies.

    httponly=True: JS cannot read the cookies (XSS mitigation).
    samesite="lax": not sent on cross-site POST (CSRF mitigation).
    max_age matches each token's TTL so cookie and token expire together.
    """
    secure = request.app.state.settings.secure_cookies
    resp = JSONResponse(
        content=SessionResponse(
            message=message,
            token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            token_type=tokens.token_type,
            expires_in=tokens.expires_in,
        ).model_dump()
    )
    resp.set_cookie(
        ACCESS_COOKIE, tokens.access_token, httponly=True, samesite="lax", secure=secure, max_age=tokens.expires_in
    )
    resp.set_cookie(
        REFRESH_COOKIE,
        tokens.refresh_token,
        httponly=True,
        samesite="lax",
        secure=secure,
        max_age=tokens.refresh_expires_in,
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


def _user_to_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        name=user.name,
        email=user.email,
        oauth_provider=user.oauth_provider,
        created_at=user.created_at.isoformat() if user.created_at else "",
    )
