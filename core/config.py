"""
core/config.py -- CredGate settings, read from the environment and .env.

get_settings() is the single reader of the environment. It is called only by
the assembly code in api/main.py; the auth/ components receive plain values
(signing key, TTLs, bcrypt cost, SMTP host) through their constructors.

Field names map to upper-case env vars: SECRET_KEY, DATABASE_URL,
ACCESS_TOKEN_EXPIRE_SECONDS, SMTP_HOST, GOOGLE_CLIENT_ID, and so on.

Signing key policy, enforced once in validate_secret_key():
  [M6] Keys under 32 characters are refused.
  [M7] Without DEBUG=true a missing SECRET_KEY stops startup. With DEBUG=true
       a random key is generated and every restart signs everyone out.

Layer rule: core/ imports neither api/ nor auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("credgate.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'credgate.db'}"


class Settings(BaseSettings):
    """Every CredGate setting, with a default that works for local development."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Sessions and secrets
    # ------------------------------------------------------------------

    secure_cookies: bool = False
    access_token_expire_seconds: int = 3600
    refresh_token_expire_seconds: int = 7 * 24 * 3600
    reset_token_expire_seconds: int = 3600
    bcrypt_rounds: int = 12

    # Origin of the frontend that serves /resetpassword/<token>. Required for a
    # working emailed link; empty falls back to the API request host.
    public_base_url: str = ""
    cors_origins: list[str] = ["http://localhost:3000"]

    # ------------------------------------------------------------------
    # Outgoing mail (empty host means delivery is not configured)
    # ------------------------------------------------------------------

    smtp_host: str = ""
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    smtp_timeout: int = 10
    mail_from: str = "no-reply@localhost"

    # ------------------------------------------------------------------
    # OAuth providers (optional -- empty string means provider is disabled)
    # ------------------------------------------------------------------

    google_client_id: str = ""
    google_client_secret: str = ""

    # Generic OIDC (Okta, Azure AD, Keycloak, Authentik, etc.)
    oidc_client_id: str = ""
    oidc_client_secret: str = ""
    oidc_discovery_url: str = ""
    oidc_display_name: str = "SSO"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Apply the signing key policy [M6] [M7]."""
        if not self.secret_key:
            if not self.debug:
                raise ValueError("SECRET_KEY is required unless DEBUG=true.")
            self.secret_key = secrets.token_hex(32)
            logger.warning("SECRET_KEY not set; generated a temporary key (DEBUG mode)")
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Build Settings on first call and return the same instance afterwards.

    Tests that change the environment call get_settings.cache_clear().
    """
    return Settings()
