"""
tests/conftest.py -- Shared test fixtures for the DNSHost test suite.

This module provides:
  - stores: isolated in-memory CredentialStore + SessionStore per test
  - seed: a Seeder bound to those stores (users, keys, domains, 2FA keys)
  - client_factory / api_client: TestClient over the real app with a patched
    lifespan wired to the test stores

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process. Each test
gets a fresh name, so no state leaks between tests.

DEBUG and RATE_LIMIT_ENABLED must be set before any auth/api import:
get_settings() is cached on first call, so DEBUG lets it auto-generate a
SECRET_KEY, and the limiter reads RATE_LIMIT_ENABLED when api.limiter loads.
"""

from __future__ import annotations

import asyncio
import base64
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: Set before any auth/core/api import (see module docstring).
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

import pyotp
import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.models import APIKey, Domain, DomainKey, TwoFactorKey, User
from auth.pipeline import AuthPipeline
from auth.sessions import SessionStore
from auth.store import CredentialStore
from auth.tokens import generate_api_key, generate_domain_key, hash_api_key, hash_password, key_prefix
from core.config import Settings, get_settings

# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _memory_url(prefix: str) -> str:
    return f"sqlite:///file:{prefix}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


def basic_auth(email: str, password: str) -> str:
    token = base64.b64encode(f"{email}:{password}".encode()).decode()
    return f"Basic {token}"


class Seeder:
    """Creates fixture records directly in the stores.

    Every helper returns what a test needs to authenticate: users come back
    as stored User objects, keys come back with their raw value.
    """

    password = "correct horse battery"

    def __init__(self, store: CredentialStore) -> None:
        self.store = store

    def user(self, email: str = "alice@example.org", permissions: dict | None = None, **fields) -> User:
        user = User(
            email=email,
            real_name=fields.pop("real_name", email.split("@")[0].title()),
            password_hash=hash_password(fields.pop("password", self.password)),
            permissions=permissions or {},
            **fields,
        )
        user.id = self.store.create_user(user)
        return self.store.get_user(user.id)

    def api_key(self, user: User, **scopes) -> tuple[str, APIKey]:
        raw = generate_api_key()
        key = APIKey(
            user_id=user.id,
            key_hash=hash_api_key(raw),
            key_prefix=key_prefix(raw),
            description=scopes.pop("description", "test key"),
            **scopes,
        )
        key.id = self.store.create_api_key(key)
        return raw, self.store.get_api_key(key.id)

    def domain(self, name: str = "example.org", owner: User | None = None) -> Domain:
        domain_id = self.store.create_domain(Domain(name=name, owner_id=owner.id if owner else None))
        return self.store.get_domain(domain_id)

    def domain_key(self, domain: Domain, domains_write: bool = False) -> tuple[str, DomainKey]:
        raw = generate_domain_key()
        key = DomainKey(
            domain_id=domain.id,
            key_hash=hash_api_key(raw),
            key_prefix=key_prefix(raw),
            domains_write=domains_write,
        )
        key.id = self.store.create_domain_key(key)
        return raw, self.store.get_domain_key(key.id)

    def totp_key(self, user: User, active: bool = True) -> tuple[pyotp.TOTP, TwoFactorKey]:
        secret = pyotp.random_base32()
        key = TwoFactorKey(user_id=user.id, secret=secret, description="phone", active=active)
        key.id = self.store.create_twofactor_key(key)
        return pyotp.TOTP(secret), self.store.get_twofactor_key(key.id, user.id)

    @staticmethod
    def basic(email: str, password: str | None = None) -> dict[str, str]:
        return {"Authorization": basic_auth(email, password if password is not None else Seeder.password)}


def _patch_lifespan(store: CredentialStore, sessions: SessionStore, settings: Settings):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test stores into app.state so TestClient routes see
    isolated test DBs rather than the configured database.

    The purge_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.store = store
        app.state.sessions = sessions
        app.state.auth_pipeline = AuthPipeline.build(store, sessions, settings)
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def stores() -> Generator[tuple[CredentialStore, SessionStore], None, None]:
    store = CredentialStore(db_url=_memory_url("test_auth"))
    sessions = SessionStore(db_url=_memory_url("test_sessions"), ttl=3600)
    yield store, sessions
    sessions.close()
    store.close()


@pytest.fixture
def seed(stores) -> Seeder:
    return Seeder(stores[0])


@pytest.fixture
def client_factory(stores):
    """Yield a function building a started TestClient.

    Keyword arguments override Settings fields for the auth pipeline only,
    e.g. client_factory(minimum_terms_time=...).
    """
    store, sessions = stores
    opened: list[TestClient] = []

    def _factory(**overrides) -> TestClient:
        settings = get_settings().model_copy(update=overrides)
        app.router.lifespan_context = _patch_lifespan(store, sessions, settings)
        client = TestClient(app, raise_server_exceptions=True)
        client.__enter__()
        opened.append(client)
        return client

    yield _factory

    for client in opened:
        client.__exit__(None, None, None)


@pytest.fixture
def api_client(client_factory) -> TestClient:
    return client_factory()
