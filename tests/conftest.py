"""Shared fixtures: in-memory SQL store and a controllable clock."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from frameshop.database import Database
from frameshop.events import EventStore


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def db(tmp_path):
    """Fresh SQLite database file with the schema created."""
    database = Database(f"sqlite:///{tmp_path / 'frameshop.db'}")
    database.create_tables()
    yield database
    database.engine.dispose()


@pytest.fixture
def event_store(db):
    return EventStore(db)


@pytest.fixture
def clock():
    return FakeClock()
