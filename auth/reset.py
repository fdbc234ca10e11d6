"""
auth/reset.py -- ResetTokenManager: one-time password reset tokens.

Per-user state machine:

    NoPendingReset --issue--> PendingReset --consume--> NoPendingReset
                                   |
                                   +--expiry passes, next consume--> NoPendingReset

Security design:
  Only sha256(plaintext) is stored. The plaintext leaves this module exactly
  once, as issue()'s return value, for the caller to deliver out of band.
  secrets.token_hex(32) gives 256 bits of entropy, so an unsalted fast hash
  is enough here -- bcrypt's slowness protects low-entropy passwords, not
  random tokens -- and it keeps the lookup a single indexed equality match.

  consume() fails with one error for "unknown", "already used" and "expired"
  so a caller cannot probe which tokens once existed.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from auth.errors import InvalidOrExpiredToken
from auth.models import User
from auth.passwords import SecretHasher
from auth.store import UserStore

logger = logging.getLogger("credgate.auth.reset")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def hash_reset_token(plaintext: str) -> str:
    return hashlib.sha256(plaintext.encode("utf-8")).hexdigest()


def build_reset_url(base_url: str, plaintext: str) -> str:
    """Return the link the user follows to reach the reset form."""
    return f"{base_url.rstrip('/')}/resetpassword/{plaintext}"


class ResetTokenManager:
    def __init__(
        self,
        store: UserStore,
        hasher: SecretHasher,
        ttl_seconds: int = 3600,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._hasher = hasher
        self.ttl_seconds = ttl_seconds
        self._now = clock or _utcnow

    def issue(self, user: User) -> str:
        """Generate and persist a new reset token for user; return the plaintext.

        Any previously pending token for this user stops verifying immediately,
        since only one hash is stored per user.
        """
        plaintext = secrets.token_hex(32)
        expiry = self._now() + timedelta(seconds=self.ttl_seconds)
        self._store.set_reset_token(user.id, hash_reset_token(plaintext), expiry)
        logger.info("Password reset token issued for user_id=%s", user.id)
        return plaintext

    def clear(self, user: User) -> None:
        """Drop the pending token. Used to compensate for a failed delivery."""
        self._store.clear_reset_token(user.id)
        logger.info("Pending password reset cleared for user_id=%s", user.id)

    def consume(self, plaintext: str, new_password: str) -> User:
        """Spend a reset token to set a new password.

        On success the password hash is replaced, the token pair cleared and
        password_changed_at stamped, in a single update. Returns the updated user.

        Raises:
            InvalidOrExpiredToken: no pending token with this hash, or its
                expiry has passed. An expired pair is cleared on the way out.
        """
        token_hash = hash_reset_token(plaintext)
        user = self._store.get_by_reset_token_hash(token_hash)
        if user is None or user.reset_token_expiry is None:
            raise InvalidOrExpiredToken("Invalid or expired token")

        now = self._now()
        if user.reset_token_expiry <= now:
            self._store.clear_reset_token(user.id)
            logger.info("Expired password reset token presented for user_id=%s", user.id)
            raise InvalidOrExpiredToken("Invalid or expired token")

        if not self._store.complete_reset(user.id, token_hash, self._hasher.hash(new_password), now):
            raise InvalidOrExpiredToken("Invalid or expired token")
        logger.info("Password reset completed for user_id=%s", user.id)
        return self._store.get_by_id(user.id)
