"""
tests/conftest.py -- Shared test fixtures for the rolegate test suite.

This module provides:
  - FrozenClock / clock: a deterministic, advanceable clock injected into
    every auth component so expiry and grace-window cases need no sleeping
  - memory_db_url(): a fresh named shared-memory SQLite URI
  - services: a fully wired AuthServices on an isolated in-memory DB
  - _patch_lifespan(): wires test services into app.state, bypassing real startup
  - api_client: TestClient plus an admin session for API integration tests

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool, and the three auth
stores each own an Engine. Plain :memory: DBs are per-connection and would
present a blank schema to each of them. The named URI format
(file:name?mode=memory&cache=shared&uri=true) shares one in-memory instance
across all connections in the same process.

Environment must be set before any auth/core import:
  DEBUG=true          get_settings() auto-generates SECRET_KEY instead of raising
  *_RATE_LIMIT        high enough that module-scoped clients never hit 429
  ARGON2_*            minimum costs; argon2id at production cost is slow
  ALLOWED_HOSTS       TestClient sends Host: testserver
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: Set env before any auth/core import so get_settings() sees it.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("REFRESH_RATE_LIMIT", "1000/minute")
os.environ.setdefault("ARGON2_TIME_COST", "1")
os.environ.setdefault("ARGON2_MEMORY_COST", "1024")
os.environ.setdefault("ARGON2_PARALLELISM", "1")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.services import AuthServices, build_services
from core.config import get_settings

ADMIN_IDENTIFIER = "root@example.com"
ADMIN_PASSWORD = "admin-pass-123"  # noqa: S105 # nosec B105 -- test fixture credential

# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def memory_db_url(prefix: str = "rolegate") -> str:
    """Return a unique named shared-memory SQLite URL so tests never share state."""
    return f"sqlite:///file:{prefix}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


@pytest.fixture
def db_url() -> str:
    return memory_db_url()


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def services(settings, db_url, clock) -> Generator[AuthServices, None, None]:
    """Fully wired auth core on an isolated in-memory DB, driven by the frozen clock."""
    svc = build_services(settings, db_url=db_url, clock=clock)
    yield svc
    svc.close()


def _patch_lifespan(services: AuthServices):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-built test services into app.state so TestClient routes see
    an isolated test DB rather than the production database.

    The purge_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.auth = services
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


# ---------------------------------------------------------------------------
# Module-scoped fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, AuthServices, str, str], None, None]:
    """Yield (client, services, admin_token, admin_id) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so tests
    hit real route handlers but use an isolated in-memory DB and the real
    clock. The admin identity is created directly in the store (admins cannot
    self-register) and signed in through the issuer.
    """
    svc = build_services(get_settings(), db_url=memory_db_url("api"))

    admin = svc.store.create(None, "admin", ADMIN_IDENTIFIER, svc.hasher.hash(ADMIN_PASSWORD))
    session = svc.issuer.login(None, "admin", ADMIN_IDENTIFIER, ADMIN_PASSWORD)

    app.router.lifespan_context = _patch_lifespan(svc)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, svc, session.access_token, admin.id

    svc.close()
