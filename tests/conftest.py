"""
tests/conftest.py -- Shared test fixtures for SessionGate.

This module provides:
  - codec / store / sessions: unit-level fixtures over an in-memory SQLite store
  - alice: a registered user ("alice" / "p@ss1word") in that store
  - _patch_lifespan(): wires test collaborators into app.state
  - api_client: TestClient over the real FastAPI app with isolated storage

Design: API tests use named shared-memory SQLite URIs (not plain :memory:)
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker thread.

DEBUG must be set before any auth/core/api import so get_settings() can
auto-generate signing secrets instead of raising ValueError. SECURE_COOKIES is
turned off because TestClient talks plain http and would drop secure cookies.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import timedelta

# CRITICAL: Set before any auth/core/api import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("SECURE_COOKIES", "false")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.models import PublicUser
from auth.sessions import SessionManager
from auth.store import UserStore
from auth.tokens import TokenCodec, get_token_codec

ACCESS_SECRET = "a" * 40
REFRESH_SECRET = "r" * 40

ALICE_PASSWORD = "p@ss1word"


# ---------------------------------------------------------------------------
# Unit fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def codec() -> TokenCodec:
    return TokenCodec(
        access_secret=ACCESS_SECRET,
        refresh_secret=REFRESH_SECRET,
        access_ttl=timedelta(minutes=15),
        refresh_ttl=timedelta(days=10),
    )


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    s = UserStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def sessions(store: UserStore, codec: TokenCodec) -> SessionManager:
    return SessionManager(store, codec)


@pytest.fixture
def alice(sessions: SessionManager) -> PublicUser:
    return sessions.register("alice", "alice@example.com", ALICE_PASSWORD, "Alice Liddell")


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(user_store: UserStore):
    """Return an async context manager that replaces the real lifespan."""

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.sessions = SessionManager(user_store, get_token_codec())
        yield

    return test_lifespan


@pytest.fixture
def api_client() -> Generator[TestClient, None, None]:
    """Yield a TestClient whose app uses a fresh shared-memory credential store.

    Function-scoped so cookie jars and stored refresh tokens never leak
    between tests. A pre-registered user "alice" / ALICE_PASSWORD exists.
    """
    url = f"sqlite:///file:test_auth_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"
    user_store = UserStore(db_url=url)
    SessionManager(user_store, get_token_codec()).register(
        "alice", "alice@example.com", ALICE_PASSWORD, "Alice Liddell"
    )

    app.router.lifespan_context = _patch_lifespan(user_store)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client

    user_store.close()
