"""
tests/conftest.py -- Shared test fixtures for CredGate.

This module provides:
  - FakeClock: a settable clock injected into TokenIssuer and ResetTokenManager
  - RecordingNotifier / FailingNotifier: Notifier fakes (no SMTP)
  - store / hasher / issuer / authority: unit-level components on an
    in-memory SQLite store
  - api_client: TestClient over the real FastAPI app with a patched lifespan

Design: the API fixture uses a named shared-memory SQLite URI (not plain
:memory:) because TestClient runs sync route handlers in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to
each worker thread.

DEBUG must be set before any api/core import so get_settings()
auto-generates SECRET_KEY instead of raising ValueError. BCRYPT_ROUNDS=4
keeps hashing fast; the cost factor does not change behavior.
"""

from __future__ import annotations

import os
import secrets
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

# CRITICAL: Set DEBUG before any api/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from fastapi.testclient import TestClient

from api.main import app, build_authority
from auth.authority import CredentialAuthority
from auth.errors import DeliveryError
from auth.linker import OAuthIdentityLinker
from auth.notifier import Notifier
from auth.passwords import SecretHasher
from auth.reset import ResetTokenManager
from auth.store import UserStore
from auth.tokens import TokenIssuer
from core.config import get_settings

# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable clock whose time only moves when a test says so."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class RecordingNotifier(Notifier):
    """Keeps every message instead of sending it."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str]] = []

    async def send(self, to_email: str, subject: str, body: str) -> None:
        self.sent.append((to_email, subject, body))


class FailingNotifier(Notifier):
    def __init__(self) -> None:
        self.attempts = 0

    async def send(self, to_email: str, subject: str, body: str) -> None:
        self.attempts += 1
        raise DeliveryError("SMTP server unreachable")


# ---------------------------------------------------------------------------
# Unit-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    s = UserStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture(scope="session")
def hasher() -> SecretHasher:
    return SecretHasher(rounds=4)


@pytest.fixture
def issuer(clock: FakeClock) -> TokenIssuer:
    return TokenIssuer(secrets.token_hex(32), access_ttl=3600, refresh_ttl=7 * 24 * 3600, clock=clock)


@pytest.fixture
def resets(store: UserStore, hasher: SecretHasher, clock: FakeClock) -> ResetTokenManager:
    return ResetTokenManager(store, hasher, ttl_seconds=3600, clock=clock)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def failing_notifier() -> FailingNotifier:
    return FailingNotifier()


def _make_authority(store, hasher, issuer, resets, notifier) -> CredentialAuthority:
    return CredentialAuthority(
        store=store,
        hasher=hasher,
        issuer=issuer,
        resets=resets,
        linker=OAuthIdentityLinker(store),
        notifier=notifier,
        base_url="https://app.example.test",
    )


@pytest.fixture
def authority(
    store: UserStore,
    hasher: SecretHasher,
    issuer: TokenIssuer,
    resets: ResetTokenManager,
    notifier: RecordingNotifier,
) -> CredentialAuthority:
    return _make_authority(store, hasher, issuer, resets, notifier)


@pytest.fixture
def undeliverable_authority(
    store: UserStore,
    hasher: SecretHasher,
    issuer: TokenIssuer,
    resets: ResetTokenManager,
    failing_notifier: FailingNotifier,
) -> CredentialAuthority:
    """Same wiring as `authority` but every email send fails."""
    return _make_authority(store, hasher, issuer, resets, failing_notifier)


# ---------------------------------------------------------------------------
# API fixture
# ---------------------------------------------------------------------------


def _patch_lifespan(user_store: UserStore, notifier: Notifier):
    """Return an async context manager that replaces the real lifespan.

    Wires the test store and a recording notifier into app.state and mocks
    the OAuth registry to prevent real network calls.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        settings = get_settings()
        app.state.settings = settings
        app.state.user_store = user_store
        app.state.authority = build_authority(settings, user_store, notifier=notifier)
        app.state.oauth = MagicMock()
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, UserStore, RecordingNotifier], None, None]:
    """Yield (client, store, notifier) for API integration tests.

    One client per test module; tests use distinct email addresses so they
    do not depend on each other's records.
    """
    user_store = UserStore(f"sqlite:///file:test_auth_{secrets.token_hex(4)}?mode=memory&cache=shared&uri=true")
    notifier = RecordingNotifier()
    app.router.lifespan_context = _patch_lifespan(user_store, notifier)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, user_store, notifier

    user_store.close()
