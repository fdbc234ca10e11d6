"""
auth/oauth.py -- Authlib OAuth/OIDC provider configuration.

build_oauth() registers only providers with both client ID and secret
configured. The registry is built at startup and stored on app.state, so
tests can swap in a mock without touching module globals.

Security notes:
  [H1] get_oauth_profile() reports email_verified exactly as the provider
       asserts it. OAuthIdentityLinker uses it to decide whether an email
       collision may be resolved by linking to the existing account; an
       unverified email never links.

  OAuth state parameter (CSRF protection) is handled by authlib via
  Starlette SessionMiddleware. The session stores the state between the
  authorization redirect and the callback.

Supported providers:
  google -- Authorization code flow; OIDC discovery.
  oidc   -- Generic OIDC discovery (Okta, Azure AD, Keycloak, Authentik, etc.)

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging

from authlib.integrations.starlette_client import OAuth

from auth.models import OAuthProfile
from core.config import Settings

logger = logging.getLogger("credgate.auth.oauth")


def build_oauth(cfg: Settings) -> OAuth:
    """Return an authlib registry holding every configured provider."""
    oauth = OAuth()

    if cfg.google_client_id and cfg.google_client_secret:
        oauth.register(
            name="google",
            client_id=cfg.google_client_id,
            client_secret=cfg.google_client_secret,
            server_metadata_url="https://accounts.google.com/.well-known/openid-configuration",
            client_kwargs={"scope": "openid email profile"},
        )
        logger.info("Google OAuth provider registered")

    if cfg.oidc_client_id and cfg.oidc_client_secret and cfg.oidc_discovery_url:
        oauth.register(
            name="oidc",
            client_id=cfg.oidc_client_id,
            client_secret=cfg.oidc_client_secret,
            server_metadata_url=cfg.oidc_discovery_url,
            client_kwargs={"scope": "openid email profile"},
        )
        logger.info("Generic OIDC provider registered (display name: %s)", cfg.oidc_display_name)

    return oauth


def get_enabled_providers(cfg: Settings) -> list[dict]:
    """Return {"name", "label"} for every configured provider."""
    providers: list[dict] = []
    if cfg.google_client_id and cfg.google_client_secret:
        providers.append({"name": "google", "label": "Google"})
    if cfg.oidc_client_id and cfg.oidc_client_secret and cfg.oidc_discovery_url:
        providers.append({"name": "oidc", "label": cfg.oidc_display_name})
    return providers


def get_oauth_profile(provider: str, token: dict) -> OAuthProfile:
    """Normalize the userinfo of an OIDC token response into an OAuthProfile.

    Both Google and generic OIDC providers return an id_token whose claims
    include sub, email, email_verified and name. authlib parses it into
    token["userinfo"] during authorize_access_token().

    Raises:
        ValueError: no userinfo, or no sub claim. The caller treats this as
                    an authentication failure.
    """
    userinfo = token.get("userinfo")
    if not userinfo:
        raise ValueError(f"{provider} OAuth: no userinfo in token response")

    subject = userinfo.get("sub")
    if not subject:
        raise ValueError(f"{provider} OAuth: missing sub claim in userinfo")

    return OAuthProfile(
        subject=str(subject),
        email=userinfo.get("email") or None,
        name=userinfo.get("name") or userinfo.get("given_name") or "",
        email_verified=bool(userinfo.get("email_verified", False)),
    )
