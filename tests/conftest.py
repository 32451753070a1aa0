"""
tests/conftest.py -- Shared test fixtures for the BookMarket auth service tests.

This module provides:
  - make_settings(): Settings with a fixed secret and a cheap bcrypt cost
  - service: AuthenticationService over private in-memory stores (unit tests)
  - _make_test_stores(): isolated shared-memory DBs for API integration tests
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - api_client: TestClient plus an admin bearer token

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
for the API tests because TestClient runs route handlers in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to
each worker thread. The named URI format
(file:name?mode=memory&cache=shared&uri=true) shares one in-memory instance
across all connections in the same process.

Environment variables must be set before any auth/core import so the cached
get_settings() sees them.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: Set these before any auth/core import. DEBUG lets get_settings()
# auto-generate JWT_SECRET; cost 4 keeps bcrypt fast; the high request limit
# keeps slowapi out of the way except in test_rate_limit.py.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_COST", "4")
os.environ.setdefault("RATE_LIMIT_REQUESTS", "100000")
os.environ.setdefault("SESSION_SWEEP_INTERVAL", "0")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.hashing import hash_password
from auth.metrics import InMemoryMetrics
from auth.models import User, UserRole
from auth.service import AuthenticationService
from auth.sessions import SessionStore
from auth.store import UserStore
from core.config import Settings, get_settings

TEST_SECRET = "test-secret-0123456789abcdef0123456789"

ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "adminpass123"


def make_settings(**overrides) -> Settings:
    values = {
        "debug": False,
        "jwt_secret": TEST_SECRET,
        "jwt_expiration": 900,
        "refresh_token_expiration": 86400,
        "bcrypt_cost": 4,
    }
    values.update(overrides)
    return Settings(**values)


# ---------------------------------------------------------------------------
# Unit-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def session_store(settings: Settings) -> Generator[SessionStore, None, None]:
    store = SessionStore(
        "sqlite:///:memory:",
        access_ttl=settings.jwt_expiration,
        refresh_ttl=settings.refresh_token_expiration,
    )
    yield store
    store.close()


@pytest.fixture
def user_store() -> Generator[UserStore, None, None]:
    store = UserStore("sqlite:///:memory:")
    yield store
    store.close()


@pytest.fixture
def metrics() -> InMemoryMetrics:
    return InMemoryMetrics()


@pytest.fixture
def service(
    user_store: UserStore, session_store: SessionStore, settings: Settings, metrics: InMemoryMetrics
) -> AuthenticationService:
    """AuthenticationService over private in-memory stores, with a recording metrics sink."""
    return AuthenticationService(user_store, session_store, settings, metrics)


# ---------------------------------------------------------------------------
# Integration helpers
# ---------------------------------------------------------------------------


def _make_test_stores(db_suffix: str) -> tuple[UserStore, SessionStore]:
    """Create isolated named shared-memory SQLite stores for one test module.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state (e.g. 'test_api_routes').
    """
    url = f"sqlite:///file:test_auth_{db_suffix}?mode=memory&cache=shared&uri=true"
    cfg = get_settings()
    users = UserStore(db_url=url)
    sessions = SessionStore(url, access_ttl=cfg.jwt_expiration, refresh_ttl=cfg.refresh_token_expiration)
    return users, sessions


def _patch_lifespan(service: AuthenticationService, metrics: InMemoryMetrics):
    """Return an async context manager that replaces the real lifespan.

    Wires the pre-built service and its stores into app.state so TestClient
    routes see isolated test DBs. No sweep task is started.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.settings = get_settings()
        app.state.user_store = service.users
        app.state.sessions = service.sessions
        app.state.metrics = metrics
        app.state.auth_service = service
        app.state.sweep_task = None
        yield

    return test_lifespan


def _client_fixture(db_suffix: str) -> Generator[tuple[TestClient, str, str], None, None]:
    users, sessions = _make_test_stores(db_suffix)
    metrics = InMemoryMetrics()
    service = AuthenticationService(users, sessions, get_settings(), metrics)

    # Administrators cannot self-register; insert one directly.
    admin_id = users.create_user(
        User(
            email=ADMIN_EMAIL,
            password_hash=hash_password(ADMIN_PASSWORD, get_settings().bcrypt_cost),
            first_name="Ada",
            last_name="Admin",
            role=UserRole.admin,
        )
    )
    admin_token = service.login(ADMIN_EMAIL, ADMIN_PASSWORD).access_token

    app.router.lifespan_context = _patch_lifespan(service, metrics)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, admin_token, admin_id

    sessions.close()
    users.close()


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, str, str], None, None]:
    """Yield (client, admin_token, admin_id) for API integration tests.

    The TestClient uses the real FastAPI app (real middleware stack, real
    routers) with a patched lifespan so tests use isolated in-memory stores.
    Each test module gets its own database, named after the module.
    """
    yield from _client_fixture(request.module.__name__.rsplit(".", 1)[-1])
