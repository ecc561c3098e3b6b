"""
tests/conftest.py -- Shared test fixtures for lockgate.

This module provides:
  - FakeClock: a settable clock for the policy engine and revocation service
  - account_store / revocation_store: fresh in-memory stores per test
  - api_client: TestClient wired to isolated stores via a patched lifespan

Design: The API fixture uses named shared-memory SQLite URIs (not plain
:memory:) because TestClient runs sync route handlers in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to
each worker thread. Unit-test fixtures run on one thread, so :memory: is fine
there.

The DEBUG env var must be set before any auth/api import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.lockout import LockoutPolicy
from auth.models import Account
from auth.revocation import RevocationService, RevocationStore
from auth.store import AccountStore
from auth.tokens import create_access_token, hash_password
from core.config import LockoutConfig

# Login tests drive many failed logins from one client address; the per-IP
# rate limit would trip long before the lockout thresholds under test.
limiter.enabled = False

ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "adminpass123"
API_MAX_ATTEMPTS = 3
API_LOCK_MINUTES = 15


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ---------------------------------------------------------------------------
# Store fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def account_store() -> Generator[AccountStore, None, None]:
    store = AccountStore("sqlite:///:memory:")
    yield store
    store.close()


@pytest.fixture
def revocation_store() -> Generator[RevocationStore, None, None]:
    store = RevocationStore("sqlite:///:memory:")
    yield store
    store.close()


@pytest.fixture
def revocations(revocation_store: RevocationStore, clock: FakeClock) -> RevocationService:
    return RevocationService(revocation_store, clock=clock)


def make_account(store: AccountStore, email: str, password: str = "correct-horse", role: str = "user") -> Account:
    """Create an account and return it as read back from the store."""
    account_id = store.create_account(Account(email=email, role=role, hashed_password=hash_password(password)))
    return store.get_by_id(account_id)


# ---------------------------------------------------------------------------
# API fixture
# ---------------------------------------------------------------------------


def _patch_lifespan(account_store: AccountStore, revocation_store: RevocationStore):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test stores into app.state. The lockout config is
    built explicitly so the tests do not depend on the environment.

    The cleanup_task is a long-sleeping coroutine so shutdown has a real
    asyncio.Task to cancel.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.account_store = account_store
        app.state.revocation_store = revocation_store
        app.state.lockout_policy = LockoutPolicy(
            LockoutConfig(max_attempts=API_MAX_ATTEMPTS, lock_duration_minutes=API_LOCK_MINUTES),
            account_store,
        )
        app.state.revocations = RevocationService(revocation_store)
        app.state.cleanup_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.cleanup_task.cancel()

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, str, AccountStore], None, None]:
    """Yield (client, admin_token, account_store) for API integration tests.

    One isolated database per test module. base_url uses localhost so the
    TrustedHostMiddleware lets requests through.
    """
    suffix = request.module.__name__.rsplit(".", 1)[-1]
    db_url = f"sqlite:///file:lockgate_{suffix}?mode=memory&cache=shared&uri=true"
    account_store = AccountStore(db_url)
    revocation_store = RevocationStore(db_url)

    admin = make_account(account_store, ADMIN_EMAIL, ADMIN_PASSWORD, role="admin")
    token = create_access_token(admin.id, admin.email, admin.role, expire_seconds=3600)

    app.router.lifespan_context = _patch_lifespan(account_store, revocation_store)

    with TestClient(app, base_url="http://localhost", raise_server_exceptions=True) as client:
        yield client, token, account_store

    revocation_store.close()
    account_store.close()
