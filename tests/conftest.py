"""
tests/conftest.py -- Shared test fixtures for SessionGate.

This module provides:
  - RecordingSink: notification sink that keeps every message in memory
  - build_service(): wires an AuthService from components with fixed test keys
  - store / sink / service: function-scoped unit fixtures over sqlite :memory:
  - _patch_lifespan(): wires a test service into app.state, bypassing real startup
  - api_client: TestClient with an admin access token for API integration tests

Design: Named shared-memory SQLite URIs (not plain :memory:) are required for
the API fixtures because TestClient runs sync route handlers in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to each
worker thread. The named URI format (file:name?mode=memory&cache=shared&uri=true)
shares one in-memory instance across all connections in the same process.

The DEBUG env var must be set before any core/auth import so get_settings()
auto-generates the signing keys in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import asyncio
import os
import re
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import timedelta

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate signing keys in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")
# TestClient sends Host: testserver.
os.environ.setdefault("ALLOWED_HOSTS", '["localhost", "127.0.0.1", "*.localhost", "testserver"]')

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.models import OtpPurpose
from auth.oauth import oauth as oauth_client
from auth.otp import OtpService
from auth.revocation import RevocationLedger
from auth.service import AuthService
from auth.store import AccountStore
from auth.tokens import TokenIssuer, TokenVerifier
from core.config import get_settings

# Rate limits are covered by slowapi itself; module-scoped clients would
# otherwise trip them after a handful of signups from the same address.
limiter.enabled = False

ACCESS_SECRET = "a" * 32 + "-test-access-secret"
REFRESH_SECRET = "r" * 32 + "-test-refresh-secret"

ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "testpass123"

_CODE_RE = re.compile(r"\b(\d{6})\b")


# ---------------------------------------------------------------------------
# Notification sink
# ---------------------------------------------------------------------------


class RecordingSink:
    """Notification sink that records (to_address, subject, body) tuples."""

    def __init__(self) -> None:
        self.messages: list[tuple[str, str, str]] = []

    def send(self, to_address: str, subject: str, body: str) -> None:
        self.messages.append((to_address, subject, body))

    def last_code(self, to_address: str) -> str:
        """Return the OTP from the most recent message sent to `to_address`."""
        for address, _subject, body in reversed(self.messages):
            if address == to_address:
                match = _CODE_RE.search(body)
                assert match, f"No OTP found in message to {to_address}"
                return match.group(1)
        raise AssertionError(f"No message was sent to {to_address}")


class FailingSink:
    """Notification sink whose delivery always fails."""

    def send(self, to_address: str, subject: str, body: str) -> None:
        raise ConnectionError("mail relay unreachable")


# ---------------------------------------------------------------------------
# Service wiring
# ---------------------------------------------------------------------------


def build_service(
    store: AccountStore,
    sink,
    rotate_refresh_tokens: bool = False,
    access_ttl: timedelta = timedelta(minutes=15),
    refresh_ttl: timedelta = timedelta(days=7),
    otp_ttls: dict[OtpPurpose, timedelta] | None = None,
) -> AuthService:
    """Assemble an AuthService from individual components with fixed test keys."""
    ledger = RevocationLedger(store, default_ttl=refresh_ttl)
    return AuthService(
        store=store,
        otp=OtpService(store, ttls=otp_ttls),
        issuer=TokenIssuer(ACCESS_SECRET, REFRESH_SECRET, access_ttl=access_ttl, refresh_ttl=refresh_ttl),
        verifier=TokenVerifier(ACCESS_SECRET, REFRESH_SECRET, ledger),
        ledger=ledger,
        sink=sink,
        rotate_refresh_tokens=rotate_refresh_tokens,
    )


@pytest.fixture
def store() -> Generator[AccountStore, None, None]:
    s = AccountStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def service(store: AccountStore, sink: RecordingSink) -> AuthService:
    return build_service(store, sink)


@pytest.fixture
def make_service(store: AccountStore, sink: RecordingSink):
    """Factory for services over the shared store/sink with non-default knobs.

    Usage:
        svc = make_service(rotate_refresh_tokens=True)
        svc = make_service(sink=FailingSink())
    """

    def factory(**kwargs) -> AuthService:
        return build_service(store, kwargs.pop("sink", sink), **kwargs)

    return factory


@pytest.fixture
def failing_sink() -> FailingSink:
    return FailingSink()


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _make_test_store(db_suffix: str) -> AccountStore:
    """Create an isolated named shared-memory SQLite store.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state (e.g. 'test_api_routes').
    """
    return AccountStore(f"sqlite:///file:sessiongate_{db_suffix}?mode=memory&cache=shared&uri=true")


def _patch_lifespan(service: AuthService):
    """Return an async context manager that replaces the real lifespan.

    The purge_task is a long-sleeping coroutine so shutdown can cancel a real
    asyncio.Task, as it does in production.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.account_store = service.store
        app.state.auth_service = service
        app.state.oauth = oauth_client
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, str, int], None, None]:
    """Yield (client, admin_token, admin_id) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so tests
    hit real route handlers over an isolated in-memory store. OTP emails land
    in a RecordingSink reachable as client.app.state.auth_service.sink.
    """
    store = _make_test_store(request.module.__name__.rsplit(".", 1)[-1])
    service = AuthService.from_settings(get_settings(), store, RecordingSink())

    admin = service.bootstrap_admin("testadmin", ADMIN_EMAIL, ADMIN_PASSWORD)
    token = service.issuer.issue_pair(admin.id, admin.email, admin.role).access_token

    app.router.lifespan_context = _patch_lifespan(service)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, token, admin.id

    store.close()
