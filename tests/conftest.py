"""Shared fixtures: a fresh seeded SQLite file per test and a controllable server clock."""

import os
from datetime import date, datetime, timedelta, timezone

import pytest

# Seeding is done per test by the database fixture, not by the app lifespan
os.environ["SEED_TEST_DATA"] = "false"

from fastapi.testclient import TestClient

from worktimer.core import clock
from worktimer.core.config import ServerConfig
from worktimer.core.database import get_db, init_database, seed_test_data
from worktimer.main import app
from worktimer.services import entry_store, rate_service

WORK_DATE = date(2025, 3, 3)
START = datetime(2025, 3, 3, 9, 0, tzinfo=timezone.utc)


class FrozenClock:
    """Stands in for clock.server_now; moves only when told to"""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture(autouse=True)
def database(tmp_path, monkeypatch):
    """Point the app at a temporary database seeded with the test users"""
    monkeypatch.setattr(ServerConfig, "DATABASE_PATH", str(tmp_path / "worktimer-test.db"))
    init_database()
    seed_test_data()
    rate_service.get_rate_cache().clear()
    yield
    rate_service.get_rate_cache().clear()


@pytest.fixture
def frozen_clock(monkeypatch):
    frozen = FrozenClock(START)
    monkeypatch.setattr(clock, "server_now", frozen)
    return frozen


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def user_headers():
    return {"X-User-Id": "1"}


@pytest.fixture
def make_entry():
    """Create an empty entry (a timer target) for a user"""

    def _make(user_id: int = 1, work_date: date = WORK_DATE, **fields):
        return entry_store.create_entry(user_id, work_date, START, **fields)

    return _make


@pytest.fixture
def add_user():
    """Insert a user without salary history"""

    def _add(user_id: int, default_hourly_rate=None, hours_per_day=8, days_per_month=22):
        with get_db() as conn:
            conn.execute('''
                INSERT INTO users (user_id, name, email, default_hourly_rate, hours_per_day, days_per_month)
                VALUES (?, ?, ?, ?, ?, ?)
            ''', (user_id, f"User {user_id}", f"user{user_id}@example.com",
                  default_hourly_rate, hours_per_day, days_per_month))
            conn.commit()
        return user_id

    return _add
