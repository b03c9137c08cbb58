"""
tests/conftest.py -- Shared test fixtures for FinFlex Auth.

This module provides:
  - RecordingNotifier: captures delivered codes instead of emailing them
  - store / tokens / notifier / service: unit-level fixtures on an in-memory DB
  - api_client: TestClient wired to an isolated store via a patched lifespan

Design: the API fixture uses a named shared-memory SQLite URI (not plain
:memory:) because TestClient runs sync route handlers in a thread pool. Plain
:memory: DBs are per-connection and would present a blank schema to each
worker thread. The named URI shares one in-memory instance across all
connections in the same process.

SECRET_KEY must be set before any api/ import: api/main.py reads Settings at
import time and a missing key is a fatal startup error.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: Set SECRET_KEY before any api/core import so get_settings() succeeds.
TEST_SECRET = "test-secret-key-0123456789abcdef-0123456789"
os.environ.setdefault("SECRET_KEY", TEST_SECRET)

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.service import AuthService
from auth.store import UserStore
from auth.tokens import TokenService

# Lowest cost bcrypt accepts -- keeps the suite fast. Production uses 10.
TEST_BCRYPT_ROUNDS = 4
WEEK_SECONDS = 7 * 24 * 60 * 60


class RecordingNotifier:
    """Notifier double that remembers every (email, code) it was asked to send."""

    def __init__(self, succeed: bool = True) -> None:
        self.sent: list[tuple[str, str]] = []
        self.succeed = succeed

    def send(self, email: str, code: str) -> bool:
        self.sent.append((email, code))
        return self.succeed

    def last_code(self, email: str) -> str:
        for sent_email, code in reversed(self.sent):
            if sent_email == email:
                return code
        raise AssertionError(f"No code was sent to {email}")


# ---------------------------------------------------------------------------
# Unit fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    s = UserStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def tokens() -> TokenService:
    return TokenService(TEST_SECRET, WEEK_SECONDS)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def service(store: UserStore, tokens: TokenService, notifier: RecordingNotifier) -> AuthService:
    return AuthService(store, tokens, notifier, otp_ttl_seconds=300, bcrypt_rounds=TEST_BCRYPT_ROUNDS)


# ---------------------------------------------------------------------------
# API fixture
# ---------------------------------------------------------------------------


def _patch_lifespan(auth_service: AuthService):
    """Return an async context manager that replaces the real lifespan.

    Wires a pre-built AuthService (isolated store, recording notifier) into
    app.state so TestClient routes never touch the production DB or SMTP.

    The purge_task is a long-sleeping coroutine so shutdown has a real
    asyncio.Task to cancel.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = auth_service.store
        app.state.auth_service = auth_service
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, RecordingNotifier, UserStore], None, None]:
    """Yield (client, notifier, store) for API integration tests.

    One isolated in-memory DB per test module, named after the module so
    modules never see each other's users.
    """
    db_name = request.module.__name__.rsplit(".", 1)[-1]
    user_store = UserStore(f"sqlite:///file:{db_name}?mode=memory&cache=shared&uri=true")
    recorder = RecordingNotifier()
    auth_service = AuthService(
        user_store,
        TokenService(TEST_SECRET, WEEK_SECONDS),
        recorder,
        otp_ttl_seconds=300,
        bcrypt_rounds=TEST_BCRYPT_ROUNDS,
    )

    app.router.lifespan_context = _patch_lifespan(auth_service)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, recorder, user_store

    user_store.close()
