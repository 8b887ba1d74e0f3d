"""
tests/conftest.py -- Shared test fixtures for the billing API tests.

This module provides:
  - _seed(): default roles plus one user per default role
  - _patch_lifespan(): builds a fresh in-memory database inside the app's
    event loop and wires every store onto app.state
  - api_client: TestClient over the real app with the patched lifespan
  - login(): helper that signs in and returns X-Session-ID headers
  - db: pytest-asyncio fixture with a migrated, role-seeded Database for
    store-level tests

Design: the async engine binds its connection to the event loop that first
uses it. TestClient runs the app in its own portal loop, so the test
database is created inside the patched lifespan rather than up front. The
in-memory SQLite database lives on a StaticPool, so every checkout sees the
same tables.

Session cookies are issued with Secure=true. TestClient talks plain http, so
it never sends them back; tests authenticate with the X-Session-ID header,
which keeps a module-scoped client free of a sticky identity.

Environment variables must be set before api.main is imported: get_settings()
is cached on first call and api.main reads it at import time.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import AsyncIterator, Generator
from contextlib import asynccontextmanager

# CRITICAL: set before any api/auth/core import so the cached Settings see them.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("ALLOWED_HOSTS", "testserver,localhost")
os.environ.setdefault("SECURE_COOKIES", "true")

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from api.main import app, init_app_state
from auth.models import SUPER_ADMIN
from auth.store import RoleStore, UserStore
from auth.tokens import SESSION_HEADER, hash_password
from db.executor import Database

TEST_DB_URL = "sqlite+aiosqlite://"

ADMIN = ("admin@example.com", "admin-pass-123")
MANAGER = ("manager@example.com", "manager-pass-123")
AUDITOR = ("auditor@example.com", "auditor-pass-123")

# (username, email, password, role name)
SEED_USERS = [
    ("admin", ADMIN[0], ADMIN[1], SUPER_ADMIN),
    ("manager", MANAGER[0], MANAGER[1], "Client Manager"),
    ("auditor", AUDITOR[0], AUDITOR[1], "Auditor"),
]


# ---------------------------------------------------------------------------
# Seeding
# ---------------------------------------------------------------------------


async def _seed(db: Database) -> dict[str, int]:
    """Create schema, default roles and the SEED_USERS. Returns username -> user_id."""
    await db.create_schema()
    roles = RoleStore(db)
    await roles.ensure_default_roles()
    users = UserStore(db)
    ids = {}
    for username, email, password, role_name in SEED_USERS:
        role = await roles.get_by_name(role_name)
        ids[username] = await users.create_user(username, email, hash_password(password), role.role_id)
    return ids


def _patch_lifespan():
    """Return an async context manager that replaces the real lifespan.

    The sweep_task is a long-sleeping coroutine so shutdown can cancel it
    exactly like the real one (a MagicMock would not be awaitable).
    """

    @asynccontextmanager
    async def test_lifespan(app) -> AsyncIterator[None]:
        db = Database(TEST_DB_URL)
        init_app_state(app, db)
        app.state.seed_ids = await _seed(db)
        app.state.sweep_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.sweep_task.cancel()
        await db.dispose()

    return test_lifespan


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def login(client: TestClient, email: str, password: str) -> dict[str, str]:
    """Sign in and return headers that authenticate follow-up requests."""
    resp = client.post("/auth/login", json={"email": email, "password": password})
    assert resp.status_code == 200, f"Login failed for {email}: {resp.status_code} {resp.text}"
    return {SESSION_HEADER: resp.json()["session_id"]}


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client() -> Generator[TestClient, None, None]:
    """Yield a TestClient over the real app backed by a fresh seeded database.

    One database per test module: modules cannot see each other's writes.
    """
    app.router.lifespan_context = _patch_lifespan()
    with TestClient(app, raise_server_exceptions=True) as client:
        yield client


@pytest.fixture(scope="session")
def credentials() -> dict[str, tuple[str, str]]:
    """Seeded login pairs keyed by username: {"admin": (email, password), ...}."""
    return {username: (email, password) for username, email, password, _ in SEED_USERS}


@pytest.fixture
def login_as(api_client: TestClient, credentials: dict[str, tuple[str, str]]):
    """Return a callable that opens a fresh session for a seeded user."""

    def _login(username: str) -> dict[str, str]:
        return login(api_client, *credentials[username])

    return _login


@pytest.fixture(scope="module")
def admin_headers(api_client: TestClient) -> dict[str, str]:
    return login(api_client, *ADMIN)


@pytest.fixture(scope="module")
def manager_headers(api_client: TestClient) -> dict[str, str]:
    return login(api_client, *MANAGER)


@pytest.fixture(scope="module")
def auditor_headers(api_client: TestClient) -> dict[str, str]:
    return login(api_client, *AUDITOR)


@pytest_asyncio.fixture
async def db() -> AsyncIterator[Database]:
    """A migrated in-memory database with the default roles seeded."""
    database = Database(TEST_DB_URL)
    await database.create_schema()
    await RoleStore(database).ensure_default_roles()
    yield database
    await database.dispose()
