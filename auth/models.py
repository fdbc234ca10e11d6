"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own the
domain shape; the store, components and routes do the work.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass
class User:
    """Represents a local identity in CredGate.

    A record is reachable by at least one auth path: password_hash is None
    for OAuth-only users, external_id is None for password-only users. The
    store refuses to persist a record where both are None.

    email is stored lower-cased. It may be None for an OAuth identity whose
    provider did not share one; password login and reset need it.

    reset_token_hash / reset_token_expiry always travel together: either both
    are set (a pending reset) or both are None.
    """

    name: str
    email: str | None = None
    id: int | None = None
    password_hash: str | None = None  # None = OAuth-only user
    oauth_provider: str | None = None  # "google", "oidc"
    external_id: str | None = None  # provider's stable subject
    external_access_token: str | None = None
    external_refresh_token: str | None = None
    reset_token_hash: str | None = None  # sha256 hex of the outstanding reset token
    reset_token_expiry: datetime | None = None
    password_changed_at: datetime | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class OAuthProfile:
    """Provider assertion normalized across providers.

    subject is the provider's stable user id. email_verified is True only
    when the provider explicitly confirms ownership of the address.
    """

    subject: str
    email: str | None = None
    name: str = ""
    email_verified: bool = False


@dataclass(frozen=True)
class TokenClaims:
    """The verified content of a session token."""

    user_id: int
    token_type: str  # "access" or "refresh"
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class SessionTokens:
    """Access + refresh pair returned by a successful signin or OAuth login.

    expires_in / refresh_expires_in are seconds, for the transport layer to
    size cookie max_age so cookie and token expire together.
    """

    access_token: str
    refresh_token: str
    expires_in: int
    refresh_expires_in: int
    access_expires_at: datetime
    token_type: str = "bearer"  # noqa: S105 -- OAuth token type, not a password


@dataclass(frozen=True)
class SignoutInstruction:
    """What the transport must discard to end a session.

    There is no server-side session table; tokens stay valid until expiry.
    """

    clear_cookies: tuple[str, ...] = ("token", "refreshToken")
