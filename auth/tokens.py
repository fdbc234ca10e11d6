"""
auth/tokens.py -- TokenIssuer: signed session tokens.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed (not encrypted) and carry
       sub (user id), typ ("access" / "refresh"), iat, exp and a random jti.
       Nothing secret goes into the claims.

  Expiry: checked here against the injected clock rather than by jose's
       wall-clock check, so the whole verification is a pure function of
       key + claims + clock and tests can move time without sleeping.

  Key handling: the signing key is a constructor argument. The application
       builds one TokenIssuer at startup from Settings; tests build their own
       with throwaway keys.

  Failure kinds: TokenExpired (signature fine, exp passed -- the client may
       refresh) vs TokenInvalid (anything else -- the client must re-login).
"""

from __future__ import annotations

import secrets
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from auth.errors import TokenExpired, TokenInvalid
from auth.models import TokenClaims

ACCESS = "access"
REFRESH = "refresh"

_ALGORITHM = "HS256"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenIssuer:
    """Create and verify HS256 session tokens.

    Usage:
        issuer = TokenIssuer(secret_key, access_ttl=3600, refresh_ttl=7 * 86400)
        token = issuer.issue_access_token(42)
        issuer.verify(token).user_id   # 42
    """

    def __init__(
        self,
        secret_key: str,
        access_ttl: int = 3600,
        refresh_ttl: int = 7 * 24 * 3600,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if not secret_key:
            raise ValueError("TokenIssuer requires a non-empty signing key")
        self._secret_key = secret_key
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl
        self._now = clock or _utcnow

    def issue_access_token(self, user_id: int) -> str:
        return self._issue(user_id, ACCESS, self.access_ttl)

    def issue_refresh_token(self, user_id: int) -> str:
        return self._issue(user_id, REFRESH, self.refresh_ttl)

    def access_expiry(self) -> datetime:
        """Expiry an access token issued right now would carry."""
        return self._now() + timedelta(seconds=self.access_ttl)

    def _issue(self, user_id: int, token_type: str, ttl: int) -> str:
        now = self._now()
        payload = {
            "sub": str(user_id),
            "typ": token_type,
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(seconds=ttl)).timestamp()),
            "jti": secrets.token_hex(8),
        }
        return jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)

    def verify(self, token: str, expected_type: str | None = None) -> TokenClaims:
        """Verify signature, shape, type and expiry. Returns the claims.

        Raises:
            TokenExpired: signature and shape are valid but exp has passed.
            TokenInvalid: bad signature, malformed token, missing claims, or
                          a token of the wrong type (refresh used as access).
        """
        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[_ALGORITHM],
                options={"verify_exp": False},
            )
        except JWTError as exc:
            raise TokenInvalid("token signature or format is invalid") from exc

        try:
            user_id = int(payload["sub"])
            token_type = str(payload["typ"])
            issued_at = datetime.fromtimestamp(int(payload["iat"]), tz=timezone.utc)
            expires_at = datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc)
        except (KeyError, TypeError, ValueError) as exc:
            raise TokenInvalid("token is missing required claims") from exc

        if token_type not in (ACCESS, REFRESH):
            raise TokenInvalid(f"unknown token type {token_type!r}")
        if expected_type is not None and token_type != expected_type:
            raise TokenInvalid(f"expected a {expected_type} token")
        if self._now() >= expires_at:
            raise TokenExpired("token has expired")

        return TokenClaims(user_id=user_id, token_type=token_type, issued_at=issued_at, expires_at=expires_at)
