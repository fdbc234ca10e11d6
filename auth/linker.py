"""
auth/linker.py -- OAuthIdentityLinker: map a provider assertion to a local user.

Resolution order for resolve(provider, profile, access_token, refresh_token):

  1. (provider, subject) already linked -> overwrite the stored provider
     tokens and return the user. Re-login is idempotent.
  2. Not linked -> INSERT a new OAuth-only user.
  3. INSERT raised ConflictError -> retry as lookup-then-update:
       a. another callback for the same subject won the race: update its
          tokens and return it;
       b. otherwise the collision is on email. Link the identity to that
          account only if the provider confirmed the email as verified and
          the account has no external identity yet. An unverified email
          could be a victim's address typed in by an attacker [H1].

No locks. Callers may run in separate processes, so the UNIQUE constraint
on (oauth_provider, external_id) in auth/store.py is the only arbiter.
"""

from __future__ import annotations

import logging

from auth.errors import ConflictError
from auth.models import OAuthProfile, User
from auth.store import UserStore

logger = logging.getLogger("credgate.auth.oauth")


class OAuthIdentityLinker:
    def __init__(self, store: UserStore) -> None:
        self._store = store

    def resolve(
        self,
        provider: str,
        profile: OAuthProfile,
        access_token: str | None,
        refresh_token: str | None,
    ) -> User:
        """Return the local user for this provider identity, creating it if needed.

        Raises:
            ConflictError: the profile email belongs to another account that
                           cannot be linked (unverified email, or the account
                           already carries a different external identity).
        """
        user = self._store.get_by_external_id(provider, profile.subject)
        if user is not None:
            return self._refresh_tokens(user, access_token, refresh_token)

        try:
            user_id = self._store.create_user(
                User(
                    name=profile.name,
                    email=profile.email or None,
                    oauth_provider=provider,
                    external_id=profile.subject,
                    external_access_token=access_token,
                    external_refresh_token=refresh_token,
                )
            )
        except ConflictError:
            return self._resolve_after_conflict(provider, profile, access_token, refresh_token)

        logger.info("Created user_id=%s for new %s identity", user_id, provider)
        return self._store.get_by_id(user_id)

    def _refresh_tokens(self, user: User, access_token: str | None, refresh_token: str | None) -> User:
        self._store.update_user(
            user.id,
            external_access_token=access_token,
            external_refresh_token=refresh_token,
        )
        return self._store.get_by_id(user.id)

    def _resolve_after_conflict(
        self,
        provider: str,
        profile: OAuthProfile,
        access_token: str | None,
        refresh_token: str | None,
    ) -> User:
        user = self._store.get_by_external_id(provider, profile.subject)
        if user is not None:
            logger.info("Concurrent first login for %s identity converged on user_id=%s", provider, user.id)
            return self._refresh_tokens(user, access_token, refresh_token)

        existing = self._store.get_by_email(profile.email) if profile.email else None
        if existing is None:
            # The conflicting row disappeared between INSERT and lookup.
            raise ConflictError(f"could not link {provider} identity")
        if not profile.email_verified or existing.external_id is not None:
            logger.warning(
                "Refused to link %s identity to user_id=%s (verified=%s, already_linked=%s)",
                provider,
                existing.id,
                profile.email_verified,
                existing.external_id is not None,
            )
            raise ConflictError("email is registered to another account")

        self._store.update_user(
            existing.id,
            oauth_provider=provider,
            external_id=profile.subject,
            external_access_token=access_token,
            external_refresh_token=refresh_token,
        )
        logger.info("Linked %s identity to existing user_id=%s", provider, existing.id)
        return self._store.get_by_id(existing.id)
