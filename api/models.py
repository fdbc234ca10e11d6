"""
API request and response models for CredGate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Request models only bound sizes. The real input rules (name charset, password
strength) live in auth/policy.py so that every caller of CredentialAuthority
gets them, not just HTTP clients.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class SignupRequest(BaseModel):
    """Request body for POST /api/v1/auth/signup."""

    name: str = Field(max_length=100)
    email: str = Field(max_length=255)
    password: str = Field(max_length=255)


class SigninRequest(BaseModel):
    """Request body for POST /api/v1/auth/signin.

    No whitespace stripping: the password must reach bcrypt exactly as typed.
    The email is normalized by the store lookup.
    """

    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=255)


class EmailRequest(BaseModel):
    """Request body for POST /auth/forgot-password and /auth/email-check."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=1, max_length=255)


class ResetPasswordRequest(BaseModel):
    """Request body for POST /api/v1/auth/reset-password/{token}."""

    password: str = Field(max_length=255)


class RefreshRequest(BaseModel):
    """Request body for POST /api/v1/auth/refresh. Falls back to the refreshToken cookie."""

    refresh_token: Optional[str] = Field(default=None, max_length=4096)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool = True
    message: str


class UserResponse(BaseModel):
    """Public view of a user. Never includes hashes or provider tokens."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    email: Optional[str] = None
    oauth_provider: Optional[str] = None
    created_at: str


class SessionResponse(BaseModel):
    """Response for a successful signin, refresh, or OAuth login."""

    model_config = ConfigDict(frozen=True)

    message: str = "Signed in successfully"
    token: str
    refresh_token: str
    token_type: str = "bearer"  # noqa: S105 -- OAuth token type, not a password
    expires_in: int


class EmailCheckResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    exists: bool


class OAuthProviderInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    label: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)


class SessionStatusResponse(BaseModel):
    """Response for GET /api/v1/auth/session. Never a 401."""

    model_config = ConfigDict(frozen=True)

    authenticated: bool
    user: Optional[UserResponse] = None
