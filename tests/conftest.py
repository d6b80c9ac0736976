"""
tests/conftest.py -- Shared test fixtures for permgate.

This module provides:
  - store / manager / authority: a fresh in-memory CredentialStore per test
    with the services on top, bcrypt at the minimum cost of 4
  - seeded_manager: the perma/groupa/usera fixture data
  - api_client: TestClient over the real app with a patched lifespan

Design: the API fixture uses a named shared-memory SQLite URI (not plain
:memory:) because TestClient runs sync route handlers in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to
each worker thread.

The TestClient talks to https://testserver so the Secure session cookie set
by POST /api/v1/auth is stored and sent back like a browser would.
"""

from __future__ import annotations

from collections.abc import Generator
from contextlib import asynccontextmanager

import pytest
from fastapi.testclient import TestClient

from api.main import app, init_auth_state
from auth.identity import IdentityManager
from auth.models import User
from auth.sessions import SessionAuthority
from auth.store import CredentialStore
from core.config import Settings

TEST_ROUNDS = 4

# Route table used by the API fixture.
TEST_ROUTE_PERMISSIONS = {"GET_/api/v1/auth/session": "perma"}


# ---------------------------------------------------------------------------
# Core fixtures -- one isolated store per test
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[CredentialStore, None, None]:
    s = CredentialStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def manager(store: CredentialStore) -> IdentityManager:
    return IdentityManager(store, bcrypt_rounds=TEST_ROUNDS)


@pytest.fixture
def authority(store: CredentialStore) -> SessionAuthority:
    return SessionAuthority(store, bcrypt_rounds=TEST_ROUNDS)


def seed_usera(manager: IdentityManager) -> None:
    """perma granted to groupa; usera (password usera123) in groupa."""
    manager.create_user(User(username="usera", enabled=True, name="User A", email="mail@mail.com"))
    manager.create_group("groupa")
    manager.create_permission("perma")
    manager.add_permission_to_group("groupa", "perma")
    manager.add_user_to_group("usera", "groupa")
    manager.rotate_password("usera", "usera123")


@pytest.fixture
def seeded_manager(manager: IdentityManager) -> IdentityManager:
    seed_usera(manager)
    return manager


# ---------------------------------------------------------------------------
# API fixture
# ---------------------------------------------------------------------------


def _patch_lifespan(store: CredentialStore, settings: Settings):
    """Return a lifespan that wires the pre-built test store into app.state."""

    @asynccontextmanager
    async def test_lifespan(app):
        init_auth_state(app, store, settings)
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(request: pytest.FixtureRequest) -> Generator[TestClient, None, None]:
    """Yield a TestClient whose store holds the usera fixture data plus:

      nobody    -- enabled, password nobody123, no groups
      disabled  -- disabled, password disabled123, in groupa
    """
    db_suffix = request.module.__name__.rsplit(".", 1)[-1]
    store = CredentialStore(f"sqlite:///file:test_auth_{db_suffix}?mode=memory&cache=shared&uri=true")
    settings = Settings(bcrypt_rounds=TEST_ROUNDS, route_permissions=TEST_ROUTE_PERMISSIONS)

    manager = IdentityManager(store, bcrypt_rounds=TEST_ROUNDS)
    seed_usera(manager)
    manager.create_user(User(username="nobody", enabled=True), password="nobody123")
    manager.create_user(User(username="disabled", enabled=False), password="disabled123")
    manager.add_user_to_group("disabled", "groupa")

    app.router.lifespan_context = _patch_lifespan(store, settings)

    with TestClient(app, base_url="https://testserver", raise_server_exceptions=True) as client:
        yield client

    store.close()
