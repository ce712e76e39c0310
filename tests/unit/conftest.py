"""
Shared fixtures for unit tests.

Every test gets a fresh SQLite database file and a controllable clock.
"""

import random
from datetime import datetime, timedelta, timezone

import pytest

from relaycore.database import DatabaseAdapter, DatabaseBackend, DatabaseConfig, create_sqlite_schema
from relaycore.idempotency import IdempotencyStore
from relaycore.outbox import OutboxStore
from relaycore.usecases import UseCaseExecutor


class FakeClock:
    """Clock whose time only moves when a test advances it."""

    def __init__(self, start: datetime = None):
        self.current = start or datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, ms: int = 0, seconds: float = 0) -> datetime:
        self.current = self.current + timedelta(milliseconds=ms, seconds=seconds)
        return self.current


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
async def db(tmp_path):
    """Connected SQLite adapter with the full schema."""
    adapter = DatabaseAdapter(
        DatabaseConfig(
            backend=DatabaseBackend.SQLITE,
            sqlite_path=str(tmp_path / "relaycore-test.db"),
        )
    )
    await adapter.connect()
    await create_sqlite_schema(adapter)
    yield adapter
    await adapter.disconnect()


@pytest.fixture
def store(db, clock):
    return OutboxStore(db, clock=clock, rng=random.Random(42))


@pytest.fixture
def idempotency(db, clock):
    return IdempotencyStore(db, clock=clock)


@pytest.fixture
def executor(idempotency):
    return UseCaseExecutor(idempotency, race_retry_delays=(0.01, 0.02, 0.05))
