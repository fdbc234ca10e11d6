"""
auth/authority.py -- CredentialAuthority: the flows the transport layer calls.

Every flow is a straight sequence over UserStore and the leaf components;
each step needs the previous step's result, so nothing runs in parallel.

Result convention:
  Expected outcomes (bad input, bad credentials, unknown email, expired
  token, failed delivery) come back as Failure values, never as exceptions.
  Unexpected errors (database, crypto internals) are logged with traceback
  and re-raised as an opaque InternalError.

Known limitations, kept on purpose:
  - signout is stateless. Issued tokens stay valid until exp; the short
    access TTL and the password_changed_at cut-off in verify_session are
    the only revocation.
  - forgot_password reports EMAIL_NOT_FOUND for unknown addresses, which
    tells a caller whether an email is registered.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from auth.errors import (
    ConflictError,
    DeliveryError,
    Failure,
    FailureCode,
    InternalError,
    InvalidOrExpiredToken,
    TokenExpired,
    TokenInvalid,
    ValidationError,
)
from auth.linker import OAuthIdentityLinker
from auth.models import OAuthProfile, SessionTokens, SignoutInstruction, TokenClaims, User
from auth.notifier import Notifier
from auth.passwords import SecretHasher
from auth.policy import normalize_email, validate_email, validate_name, validate_password
from auth.reset import ResetTokenManager, build_reset_url
from auth.store import UserStore
from auth.tokens import ACCESS, REFRESH, TokenIssuer

logger = logging.getLogger("credgate.auth")

RESET_EMAIL_SUBJECT = "Reset Password"


@contextmanager
def _internal_errors(flow: str) -> Iterator[None]:
    """Turn anything a flow did not handle into an opaque InternalError."""
    try:
        yield
    except InternalError:
        raise
    except Exception as exc:
        logger.exception("Internal error during %s", flow)
        raise InternalError(f"{flow} failed") from exc


def _validation_failure(exc: ValidationError) -> Failure:
    return Failure(FailureCode.VALIDATION_ERROR, exc.message, rule=exc.rule)


class CredentialAuthority:
    """Signup, signin, signout, password reset, OAuth login and session checks.

    Usage:
        authority = CredentialAuthority(store, hasher, issuer, resets, linker, notifier)
        result = authority.signin("jo@x.com", "Strong1!")
        if isinstance(result, Failure):
            ...
    """

    def __init__(
        self,
        store: UserStore,
        hasher: SecretHasher,
        issuer: TokenIssuer,
        resets: ResetTokenManager,
        linker: OAuthIdentityLinker,
        notifier: Notifier,
        base_url: str = "http://localhost:5000",
    ) -> None:
        self._store = store
        self._hasher = hasher
        self._issuer = issuer
        self._resets = resets
        self._linker = linker
        self._notifier = notifier
        self._base_url = base_url

    # ------------------------------------------------------------------
    # Password path
    # ------------------------------------------------------------------

    def signup(self, name: str, email: str, password: str) -> User | Failure:
        """Register a password user. All input rules are checked before any write."""
        with _internal_errors("signup"):
            try:
                name = validate_name(name)
                email = validate_email(email)
                validate_password(password)
            except ValidationError as exc:
                return _validation_failure(exc)

            if self._store.email_exists(email):
                return Failure(FailureCode.EMAIL_TAKEN, "Email is already registered.")
            try:
                user_id = self._store.create_user(
                    User(name=name, email=email, password_hash=self._hasher.hash(password))
                )
            except ConflictError:
                # Lost a race with a concurrent signup for the same email.
                return Failure(FailureCode.EMAIL_TAKEN, "Email is already registered.")

            logger.info("User registered user_id=%s", user_id)
            return self._store.get_by_id(user_id)

    def signin(self, email: str, password: str) -> SessionTokens | Failure:
        with _internal_errors("signin"):
            user = self._store.get_by_email(email) if email else None
            if user is None:
                # Equalize timing with the wrong-password branch.
                self._hasher.verify_dummy(password or "")
                return Failure(FailureCode.USER_NOT_FOUND, "User not found")
            if not self._hasher.verify(password or "", user.password_hash):
                return Failure(FailureCode.WRONG_PASSWORD, "Wrong password")

            logger.info("User signed in user_id=%s", user.id)
            return self._issue_session(user)

    def signout(self) -> SignoutInstruction:
        """Nothing to revoke server-side; tell the transport what to discard."""
        return SignoutInstruction()

    def email_exists(self, email: str) -> bool:
        with _internal_errors("email check"):
            return bool(email) and self._store.email_exists(normalize_email(email))

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    async def forgot_password(self, email: str, base_url: str | None = None) -> User | Failure:
        """Issue a reset token and mail the link.

        If delivery fails the pending token is cleared again, so no usable
        grant is left behind that the user never received.
        """
        with _internal_errors("forgot password"):
            user = self._store.get_by_email(email) if email else None
            if user is None:
                return Failure(FailureCode.EMAIL_NOT_FOUND, "E-mail does not exist")

            plaintext = self._resets.issue(user)
            link = build_reset_url(base_url or self._base_url, plaintext)
            body = "Click the following link to reset your password: \n\n" + link
            try:
                await self._notifier.send(user.email, RESET_EMAIL_SUBJECT, body)
            except DeliveryError:
                self._resets.clear(user)
                logger.warning("Reset email delivery failed for user_id=%s; pending token cleared", user.id)
                return Failure(FailureCode.DELIVERY_FAILED, "Failed to send email")
            except Exception:
                self._resets.clear(user)
                raise
            return user

    def reset_password(self, token: str, new_password: str) -> User | Failure:
        """Spend a reset token. The new password must satisfy the signup policy."""
        with _internal_errors("reset password"):
            try:
                validate_password(new_password)
            except ValidationError as exc:
                return _validation_failure(exc)
            try:
                return self._resets.consume(token, new_password)
            except InvalidOrExpiredToken:
                return Failure(FailureCode.INVALID_OR_EXPIRED_TOKEN, "Invalid or expired token")

    # ------------------------------------------------------------------
    # OAuth path
    # ------------------------------------------------------------------

    def oauth_callback(
        self,
        provider: str,
        profile: OAuthProfile,
        access_token: str | None,
        refresh_token: str | None,
    ) -> SessionTokens | Failure:
        """Link the provider identity to a local user, then sign that user in."""
        with _internal_errors("oauth callback"):
            try:
                user = self._linker.resolve(provider, profile, access_token, refresh_token)
            except ConflictError:
                return Failure(FailureCode.EMAIL_TAKEN, "Email is registered to another account.")
            logger.info("User signed in via %s user_id=%s", provider, user.id)
            return self._issue_session(user)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def verify_session(self, token: str) -> int | Failure:
        """Return the user id an access token proves, or why it does not."""
        result = self.session_user(token)
        return result if isinstance(result, Failure) else result.id

    def session_user(self, token: str) -> User | Failure:
        """Like verify_session but returns the loaded User."""
        with _internal_errors("session check"):
            return self._check_token(token, ACCESS)

    def refresh_session(self, refresh_token: str) -> SessionTokens | Failure:
        """Trade a valid refresh token for a fresh access + refresh pair."""
        with _internal_errors("session refresh"):
            user = self._check_token(refresh_token, REFRESH)
            if isinstance(user, Failure):
                return user
            return self._issue_session(user)

    def _check_token(self, token: str, token_type: str) -> User | Failure:
        try:
            claims = self._issuer.verify(token, expected_type=token_type)
        except TokenExpired:
            return Failure(FailureCode.TOKEN_EXPIRED, "Session has expired.")
        except TokenInvalid:
            return Failure(FailureCode.TOKEN_INVALID, "Session token is invalid.")

        user = self._store.get_by_id(claims.user_id)
        if user is None or _issued_before_password_change(claims, user):
            return Failure(FailureCode.TOKEN_INVALID, "Session token is invalid.")
        return user

    def _issue_session(self, user: User) -> SessionTokens:
        return SessionTokens(
            access_token=self._issuer.issue_access_token(user.id),
            refresh_token=self._issuer.issue_refresh_token(user.id),
            expires_in=self._issuer.access_ttl,
            refresh_expires_in=self._issuer.refresh_ttl,
            access_expires_at=self._issuer.access_expiry(),
        )


def _issued_before_password_change(claims: TokenClaims, user: User) -> bool:
    # iat has whole-second precision; compare at the same precision.
    if user.password_changed_at is None:
        return False
    return claims.issued_at < user.password_changed_at.replace(microsecond=0)
