"""
tests/conftest.py -- Shared test fixtures for authsession.

This module provides:
  - FakeClock / clock: a controllable time source so expiry can be tested
    without sleeping
  - settings: explicit Settings with fixed secrets (no .env, no env vars)
  - user_store / session_store: isolated stores; session_store is
    parametrized over the SQLAlchemy and in-memory adapters
  - manager: AuthSessionManager wired to the stores above
  - api_client: TestClient with a patched lifespan and isolated stores

Design: Named shared-memory SQLite URIs (not plain :memory:) are required for
api_client because TestClient runs sync route handlers in a thread pool. Plain
:memory: DBs are per-connection and would present a blank schema to each
worker thread. The named URI format (file:name?mode=memory&cache=shared&uri=true)
shares one in-memory instance across all connections in the same process.

bcrypt runs at its minimum cost (4 rounds) in tests; production uses
auth.credentials.BCRYPT_ROUNDS.
"""

from __future__ import annotations

import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.credentials import CredentialVerifier
from auth.memory import MemorySessionStore
from auth.sessions import AuthSessionManager
from auth.store import SessionStore, UserStore
from auth.tokens import TokenSigner
from core.config import Settings

ACCESS_SECRET = "a" * 48
REFRESH_SECRET = "r" * 48


class FakeClock:
    """A clock that only moves when told to."""

    def __init__(self, start: datetime) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


def make_settings(**overrides) -> Settings:
    values = {
        "debug": False,
        "access_token_secret": ACCESS_SECRET,
        "refresh_token_secret": REFRESH_SECRET,
        "access_token_ttl": "15m",
        "refresh_token_ttl": "7d",
        "database_url": "sqlite:///:memory:",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


# ---------------------------------------------------------------------------
# Unit fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    # Whole second on purpose: JWT exp claims have one-second resolution.
    return FakeClock(datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def settings_factory():
    """Build Settings with the test secrets, overriding individual fields."""
    return make_settings


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def signer(settings: Settings, clock: FakeClock) -> TokenSigner:
    return TokenSigner(settings, clock)


@pytest.fixture(scope="session")
def verifier() -> CredentialVerifier:
    return CredentialVerifier(rounds=4)


@pytest.fixture
def user_store(clock: FakeClock) -> Generator[UserStore, None, None]:
    store = UserStore("sqlite:///:memory:", clock)
    yield store
    store.close()


@pytest.fixture(params=["sql", "memory"])
def session_store(request, clock: FakeClock):
    """Both SessionStore adapters; every test using this runs once per adapter."""
    if request.param == "sql":
        store = SessionStore("sqlite:///:memory:", clock)
    else:
        store = MemorySessionStore(clock)
    yield store
    store.close()


@pytest.fixture
def manager(user_store, session_store, signer, verifier) -> AuthSessionManager:
    return AuthSessionManager(users=user_store, sessions=session_store, signer=signer, verifier=verifier)


# ---------------------------------------------------------------------------
# Integration fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(settings: Settings, user_store: UserStore, session_store: SessionStore, verifier):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test stores into app.state so TestClient routes see
    isolated test DBs and fixed secrets rather than the process environment.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.settings = settings
        app.state.user_store = user_store
        app.state.session_store = session_store
        app.state.token_signer = TokenSigner(settings)
        app.state.session_manager = AuthSessionManager(
            users=user_store,
            sessions=session_store,
            signer=app.state.token_signer,
            verifier=verifier,
        )
        yield

    return test_lifespan


@pytest.fixture
def api_client(verifier) -> Generator[TestClient, None, None]:
    """Yield a TestClient backed by a fresh shared-memory database.

    Function-scoped: the client's cookie jar carries tokens between requests,
    so every test starts with an empty jar and an empty database.
    """
    db_url = f"sqlite:///file:test_auth_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"
    settings = make_settings(database_url=db_url)
    user_store = UserStore(db_url)
    session_store = SessionStore(db_url)

    app.router.lifespan_context = _patch_lifespan(settings, user_store, session_store, verifier)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client

    session_store.close()
    user_store.close()
