"""
Shared fixtures: a throw-away SQLite database per test, seeding
helpers, a controllable clock and an HTTP client for the full app.
"""

import pytest
from fastapi.testclient import TestClient

from directory_api.app.core.config import settings
from directory_api.app.core.db import get_cursor, init_db, utc_timestamp
from directory_api.app.core.rate_limit import InMemoryCounterStore, RateLimiter
from directory_api.app.core.security import create_access_token
from directory_api.app.main import create_app


ALLOWED_ORIGIN = "http://localhost:3000"


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start_ms: int = 1_700_000_000_000) -> None:
        self.now_ms = start_ms

    def __call__(self) -> float:
        return self.now_ms

    def advance(self, ms: int) -> None:
        self.now_ms += ms


def as_user(user_id):
    return {"sub": user_id, "user_id": user_id}


def auth_headers(user_id):
    return {"Authorization": f"Bearer {create_access_token({'sub': user_id})}"}


def insert_listing(listing_id, source="official", owner_id=None, name=None):
    now = utc_timestamp()
    with get_cursor() as cursor:
        cursor.execute(
            "INSERT INTO listings (id, name, source, owner_id, created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?)",
            (listing_id, name or listing_id.split("/")[-1], source, owner_id, now, now),
        )


def fetch_one(sql, params=()):
    with get_cursor() as cursor:
        return cursor.execute(sql, params).fetchone()


@pytest.fixture
def db(tmp_path, monkeypatch):
    """Point the app at a fresh database file and apply migrations."""
    path = tmp_path / "directory_test.db"
    monkeypatch.setattr(settings, "database_url", str(path))
    monkeypatch.setattr(settings, "environment", "development")
    init_db()
    return path


@pytest.fixture
def listing(db):
    insert_listing("acme/widget")
    return "acme/widget"


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def app(db, clock):
    application = create_app()
    application.state.rate_limiter = RateLimiter(InMemoryCounterStore(clock=clock), clock=clock)
    return application


@pytest.fixture
def client(app):
    with TestClient(app, headers={"Origin": ALLOWED_ORIGIN}) as test_client:
        yield test_client
