"""
auth/errors.py -- Error taxonomy for the Credential & Session Authority.

Two shapes, two audiences:

  Exceptions (AuthorityError subclasses) are raised by the leaf components
  and the store. They never leave CredentialAuthority for expected outcomes.

  Failure is the value CredentialAuthority returns for expected outcomes
  (bad input, bad credentials, unknown email, delivery failure). Callers
  branch on Failure.code; they must not retry these automatically.

InternalError is the only exception that crosses the Authority boundary. It
carries no detail -- the cause is logged server-side and chained via
`raise ... from`.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class AuthorityError(Exception):
    """Base class for every error raised inside auth/."""


class ValidationError(AuthorityError):
    """Malformed caller input. Never persisted.

    rule names the violated constraint (e.g. "password_symbol") so the
    transport can render a precise message.
    """

    def __init__(self, rule: str, message: str) -> None:
        super().__init__(message)
        self.rule = rule
        self.message = message


class NotFoundError(AuthorityError):
    """No record matches the lookup."""


class ConflictError(AuthorityError):
    """A UNIQUE constraint rejected the write (email or external identity)."""


class AuthenticationError(AuthorityError):
    """Credential or token did not prove identity."""


class TokenExpired(AuthenticationError):
    """Correctly signed session token whose exp has passed -- refresh or re-login."""


class TokenInvalid(AuthenticationError):
    """Bad signature, bad shape, wrong token type, or revoked by a password change."""


class InvalidOrExpiredToken(AuthenticationError):
    """Reset token unknown, already consumed, or expired.

    Deliberately one class: distinguishing "wrong" from "expired" would give
    an attacker an oracle for guessed tokens.
    """


class DeliveryError(AuthorityError):
    """The Notifier could not deliver a message."""


class InternalError(AuthorityError):
    """Unexpected repository or crypto failure. Opaque to the caller."""


class FailureCode(str, Enum):
    VALIDATION_ERROR = "validation_error"
    EMAIL_TAKEN = "email_taken"
    USER_NOT_FOUND = "user_not_found"
    WRONG_PASSWORD = "wrong_password"  # noqa: S105 -- failure code, not a password
    EMAIL_NOT_FOUND = "email_not_found"
    DELIVERY_FAILED = "delivery_failed"
    INVALID_OR_EXPIRED_TOKEN = "invalid_or_expired_token"  # noqa: S105
    TOKEN_EXPIRED = "token_expired"  # noqa: S105
    TOKEN_INVALID = "token_invalid"  # noqa: S105


@dataclass(frozen=True)
class Failure:
    """Typed expected-failure result returned by CredentialAuthority flows."""

    code: FailureCode
    message: str
    rule: str | None = None
