"""
auth/passwords.py -- SecretHasher: one-way hashing of password secrets.

bcrypt is used directly rather than through passlib: passlib's internal
wrap-bug detection builds a password longer than 72 bytes, which bcrypt 4.x
rejects with an explicit error.

The digest is a standard bcrypt modular-crypt string ($2b$<cost>$<salt+hash>),
so verification needs nothing but the digest itself.
"""

from __future__ import annotations

import bcrypt


class SecretHasher:
    """Salted, slow, one-way hashing for low-entropy secrets.

    Usage:
        hasher = SecretHasher(rounds=12)
        digest = hasher.hash("Strong1!")
        hasher.verify("Strong1!", digest)   # True
    """

    def __init__(self, rounds: int = 12) -> None:
        self.rounds = rounds
        # Computed once so the first "unknown user" signin is not measurably
        # slower than later ones.
        self._dummy_digest = self.hash("credgate_timing_dummy")

    def hash(self, plaintext: str) -> str:
        """Return a bcrypt digest of plaintext with a fresh random salt.

        bcrypt truncates input at 72 bytes. The password policy caps length
        well below that, see auth/policy.py.
        """
        return bcrypt.hashpw(plaintext.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, plaintext: str, digest: str | None) -> bool:
        """Return True if plaintext matches digest. Malformed digests return False."""
        if not digest:
            return False
        try:
            return bcrypt.checkpw(plaintext.encode("utf-8"), digest.encode("utf-8"))
        except ValueError:
            return False

    def verify_dummy(self, plaintext: str) -> None:
        """Burn one verification's worth of CPU against a fixed digest.

        Called when the account does not exist so that response time does not
        distinguish "unknown email" from "wrong password".
        """
        self.verify(plaintext, self._dummy_digest)
