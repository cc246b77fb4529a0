"""
tests/conftest.py -- Shared test fixtures for PKM Prototype tests.

This module provides:
  - make_test_store(): isolated in-memory credential store
  - _patch_lifespan(): wires a test store into app.state, bypassing real startup
  - api_client: TestClient + admin/user tokens for API integration tests
  - web_client: TestClient with follow_redirects=False for redirect assertions
  - offline_client: TestClient whose credential store is unavailable

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker thread.

Environment must be set before any app import: DEBUG lets get_settings()
generate a JWT secret, ALLOWED_HOSTS admits TestClient's "testserver" host,
and LOGIN_RATE_LIMIT is raised so login-heavy modules are not throttled.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional

# CRITICAL: Set before any auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ALLOWED_HOSTS", '["*"]')
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from fastapi.testclient import TestClient

from asgi import app
from auth.passwords import hash_password
from auth.store import UserStore
from auth.tokens import create_access_token

# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def make_test_store(db_suffix: str) -> UserStore:
    """Create and initialize an isolated named shared-memory SQLite store.

    Args:
        db_suffix: Unique string appended to the DB name so test modules don't
                   share state (e.g. 'api', 'web').
    """
    store = UserStore(f"sqlite:///file:test_auth_{db_suffix}?mode=memory&cache=shared&uri=true")
    store.initialize()
    return store


def _patch_lifespan(user_store: Optional[UserStore]):
    """Return an async context manager that replaces the real lifespan.

    user_store=None simulates a disabled or unreachable backend.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        yield

    return test_lifespan


@dataclass
class Seeded:
    """A running client plus the accounts seeded into its store."""

    client: TestClient
    store: UserStore
    admin_id: int
    user_id: int
    admin_token: str
    user_token: str


def _seeded_client(db_suffix: str, **client_kwargs) -> Generator[Seeded, None, None]:
    store = make_test_store(db_suffix)
    admin = store.create("admin", hash_password("admin"), role="admin")
    user = store.create("alice", hash_password("alice-pass"), role="user")

    app.router.lifespan_context = _patch_lifespan(store)
    with TestClient(app, raise_server_exceptions=True, **client_kwargs) as client:
        yield Seeded(
            client=client,
            store=store,
            admin_id=admin.id,
            user_id=user.id,
            admin_token=create_access_token(admin.id, admin.username, admin.role),
            user_token=create_access_token(user.id, user.username, user.role),
        )
    store.close()


def _module_key(request: pytest.FixtureRequest) -> str:
    return request.module.__name__.replace(".", "_")


# ---------------------------------------------------------------------------
# Module-scoped fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client(request: pytest.FixtureRequest) -> Generator[Seeded, None, None]:
    """Seeded store with admin/admin and alice/alice-pass; JSON-style client."""
    yield from _seeded_client(f"api_{_module_key(request)}")


@pytest.fixture(scope="module")
def web_client(request: pytest.FixtureRequest) -> Generator[Seeded, None, None]:
    """Same seed as api_client, but redirects are not followed.

    follow_redirects=False is essential: tests assert on redirect Location
    headers, which are invisible once the client follows them.
    """
    yield from _seeded_client(f"web_{_module_key(request)}", follow_redirects=False)


@pytest.fixture(scope="module")
def offline_client() -> Generator[TestClient, None, None]:
    """Client for an app whose credential store is unavailable."""
    app.router.lifespan_context = _patch_lifespan(None)
    with TestClient(app, follow_redirects=False) as client:
        yield client


@pytest.fixture(scope="session")
def store_factory():
    """make_test_store as a fixture, for modules that seed their own store."""
    return make_test_store


@pytest.fixture(autouse=True)
def _fresh_cookie_jar(request: pytest.FixtureRequest) -> Generator[None, None, None]:
    """Clear cookies set by earlier tests (e.g. a login) on the shared clients."""
    clients = [request.getfixturevalue(name).client for name in ("api_client", "web_client") if name in request.fixturenames]
    for client in clients:
        client.cookies.clear()
    yield
    for client in clients:
        client.cookies.clear()
