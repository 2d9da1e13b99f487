"""
tests/conftest.py -- Shared test fixtures for Keyward.

This module provides:
  - FakeClock: a settable clock injected into the verifier, token service
    and AuthService so lockout windows and token expiry can be crossed
    without sleeping
  - engine / users / roles / service: an isolated in-memory store per test
  - _patch_lifespan(): wires a pre-built AuthService into app.state,
    bypassing real startup
  - api_client: TestClient plus an admin token and a plain-user token

Design: unit tests use plain "sqlite://" (one connection per thread is enough
for synchronous code). The API fixture uses a named shared-memory SQLite URI
(file:name?mode=memory&cache=shared&uri=true) because TestClient runs sync
route handlers in a thread pool, and a plain :memory: DB is per-connection.

The DEBUG env var must be set before any core/auth import so get_settings()
auto-generates JWT_SECRET in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate JWT_SECRET in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.lockout import LockoutPolicy
from auth.models import AccountStatus
from auth.seed import create_admin_user, seed_default_roles
from auth.service import AuthService
from auth.store import RoleStore, UserStore, create_store_engine
from auth.tokens import SigningKey, TokenService
from auth.verifier import CredentialVerifier

# Lowest cost bcrypt accepts. Keeps the suite fast; verification cost is
# carried by the hash itself, so behaviour is identical.
TEST_ROUNDS = 4

START = datetime(2024, 3, 1, 9, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock whose current time only moves when a test says so."""

    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


# ---------------------------------------------------------------------------
# Unit fixtures -- fresh in-memory database per test
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def engine():
    eng = create_store_engine("sqlite://")
    yield eng
    eng.dispose()


@pytest.fixture
def users(engine) -> UserStore:
    return UserStore(engine)


@pytest.fixture
def roles(engine) -> RoleStore:
    store = RoleStore(engine)
    seed_default_roles(store)
    return store


@pytest.fixture
def signing_key() -> SigningKey:
    return SigningKey(material=b"k" * 32)


@pytest.fixture
def tokens(signing_key: SigningKey, clock: FakeClock) -> TokenService:
    return TokenService(signing_key, lifetime=timedelta(hours=10), clock=clock)


@pytest.fixture
def policy() -> LockoutPolicy:
    return LockoutPolicy(max_failed_attempts=5, lockout_window=timedelta(minutes=30), auto_unlock=True)


@pytest.fixture
def verifier(users: UserStore, roles: RoleStore, policy: LockoutPolicy, clock: FakeClock) -> CredentialVerifier:
    return CredentialVerifier(users, roles, policy, clock=clock)


@pytest.fixture
def service(
    users: UserStore,
    roles: RoleStore,
    verifier: CredentialVerifier,
    tokens: TokenService,
    clock: FakeClock,
) -> AuthService:
    return AuthService(users, roles, verifier, tokens, bcrypt_rounds=TEST_ROUNDS, clock=clock)


@pytest.fixture
def alice(service: AuthService):
    """An active USER account with password 'secret123'."""
    return service.register(
        "alice",
        "alice@example.com",
        "secret123",
        role_names=["USER"],
        status=AccountStatus.ACTIVE,
    )


# ---------------------------------------------------------------------------
# API fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


def _build_api_service(db_suffix: str) -> tuple[AuthService, object]:
    """Create an AuthService over an isolated named shared-memory SQLite DB.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state.
    """
    url = f"sqlite:///file:test_keyward_{db_suffix}?mode=memory&cache=shared&uri=true"
    eng = create_store_engine(url)
    user_store = UserStore(eng)
    role_store = RoleStore(eng)
    seed_default_roles(role_store)
    tokens = TokenService(SigningKey(material=b"api-test-key-".ljust(32, b"x")))
    verifier = CredentialVerifier(user_store, role_store)
    return AuthService(user_store, role_store, verifier, tokens, bcrypt_rounds=TEST_ROUNDS), eng


def _patch_lifespan(service: AuthService):
    """Return an async context manager that replaces the real lifespan."""

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.auth_service = service
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, str, str], None, None]:
    """Yield (client, admin_token, user_token) for API integration tests.

    testadmin / adminpass123 holds ADMIN; plainuser / userpass123 holds USER.
    The login rate limit is switched off so repeated logins across a module
    cannot trip it.
    """
    service, eng = _build_api_service(request.module.__name__.rsplit(".", 1)[-1])
    create_admin_user(service, "testadmin", "admin@example.com", "adminpass123")
    service.register(
        "plainuser",
        "plain@example.com",
        "userpass123",
        role_names=["USER"],
        status=AccountStatus.ACTIVE,
    )
    admin_token = service.login("testadmin", "adminpass123")
    user_token = service.login("plainuser", "userpass123")

    app.router.lifespan_context = _patch_lifespan(service)
    limiter.enabled = False

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, admin_token, user_token

    limiter.enabled = True
    eng.dispose()
