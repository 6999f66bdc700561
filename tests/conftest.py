"""
tests/conftest.py -- Shared fixtures for grade-book session engine tests.

This module provides:
  - FrozenClock: a settable clock injected into SessionService so rotation
    and expiry can be driven without sleeping
  - db: a Database on a per-test SQLite file with the schema created
  - service / clock: a SessionService wired to the frozen clock
  - make_user(): seeds a user through credentials.create_user()
  - client: TestClient over the real app with a patched lifespan
  - cookie helpers that parse Set-Cookie and send the session cookie
    explicitly, so assertions never depend on the client's cookie jar

Design: the database is a real file under tmp_path, not :memory:. TestClient
runs sync handlers in a worker thread pool, and the concurrency tests open
several connections at once; both need every connection to see the same
store.

DATABASE_URL and ALLOWED_HOSTS must be set before api.main is imported,
because the module reads get_settings() at import time.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from http.cookies import SimpleCookie

# CRITICAL: set before any api/core import so get_settings() validates.
os.environ.setdefault("DATABASE_URL", "sqlite:///gradebook-test.db")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.cookies import COOKIE_NAME
from auth.credentials import create_user
from auth.csrf import CSRF_HEADER, LOGIN_CSRF_VALUE
from auth.models import Role, User
from auth.results import Ok
from auth.sessions import SessionService
from auth.store import UserStore, create_schema
from core.database import Database

ADMIN_LOGIN = "admin"
ADMIN_PASSWORD = "admin-pass-123"
LEARNER_LOGIN = "learner"
LEARNER_PASSWORD = "learner-pass-123"


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


# ---------------------------------------------------------------------------
# Store fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def db(tmp_path) -> Generator[Database, None, None]:
    """Database on a fresh SQLite file with tables created."""
    database = Database(f"sqlite:///{tmp_path / 'gradebook.db'}")
    create_schema(database.engine)
    yield database
    database.close()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def service(clock: FrozenClock) -> SessionService:
    return SessionService(production=False, clock=clock)


def make_user(db: Database, login_name: str, password: str, role: Role = Role.learner) -> User:
    """Create a user in its own transaction and return it."""
    with db.transaction() as conn:
        result = create_user(UserStore(conn), login_name, login_name.title(), password, role)
    assert isinstance(result, Ok), result
    return result.value


@pytest.fixture
def learner(db: Database) -> User:
    return make_user(db, LEARNER_LOGIN, LEARNER_PASSWORD, Role.learner)


@pytest.fixture
def admin(db: Database) -> User:
    return make_user(db, ADMIN_LOGIN, ADMIN_PASSWORD, Role.admin)


# ---------------------------------------------------------------------------
# App client
# ---------------------------------------------------------------------------


def _patch_lifespan(db: Database, service: SessionService):
    """Return an async context manager that replaces the real lifespan.

    Wires the test store and the frozen-clock service into app.state. The
    purge_task is a long-sleeping coroutine so shutdown's .cancel() has a
    real asyncio.Task to act on.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.db = db
        app.state.session_service = service
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@pytest.fixture
def client(db: Database, service: SessionService, admin: User, learner: User) -> Generator[TestClient, None, None]:
    """TestClient over the real routes, with an admin and a learner seeded."""
    app.router.lifespan_context = _patch_lifespan(db, service)
    with TestClient(app, raise_server_exceptions=True) as test_client:
        yield test_client


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_cookies(response) -> dict[str, dict]:
    """Parse every Set-Cookie header into {name: {"value", "max-age", "expires", ...}}."""
    parsed: dict[str, dict] = {}
    for header in response.headers.get_list("set-cookie"):
        jar = SimpleCookie()
        jar.load(header)
        for name, morsel in jar.items():
            attrs = {k: v for k, v in morsel.items() if v}
            attrs["value"] = morsel.value
            parsed[name] = attrs
    return parsed


def session_cookie(response, name: str = COOKIE_NAME) -> str | None:
    """Return the session cookie value the response sets, or None."""
    cookie = set_cookies(response).get(name)
    return cookie["value"] if cookie is not None else None


def send(
    client: TestClient,
    method: str,
    url: str,
    cookie: str | None = None,
    csrf: str | None = None,
    json: dict | None = None,
):
    """Issue a request carrying exactly the given session cookie and CSRF header."""
    client.cookies.clear()
    headers: dict[str, str] = {}
    if cookie is not None:
        headers["Cookie"] = f"{COOKIE_NAME}={cookie}"
    if csrf is not None:
        headers[CSRF_HEADER] = csrf
    return client.request(method, url, headers=headers, json=json)


def login(client: TestClient, username: str, password: str, remember: bool = False):
    return send(
        client,
        "POST",
        "/api/v1/login",
        csrf=LOGIN_CSRF_VALUE,
        json={"command": "login", "username": username, "password": password, "remember": remember},
    )
