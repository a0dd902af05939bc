"""
Pytest fixtures for test database, clock, seed data and HTTP client.

Each test gets its own database (a throwaway SQLite file, or the database in
TEST_DATABASE_URL) with the schema created from the models, and a FrozenClock
parked at noon on the service day. Seed data is written through separate
sessions so the session under test starts with an empty identity map.
"""

import os
from datetime import datetime, timezone, timedelta
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

import app.models  # noqa: F401  registers every table on Base.metadata
from app.main import app
from app.api.deps import get_clock, get_notifier, get_sessions
from app.db.base import Base
from app.db.session import get_db
from app.models.booking import Booking, BookingTable, BookingStatusChange
from app.models.table import RestaurantTable
from app.services.interfaces.clock import FrozenClock
from app.services.interfaces.notifier import NotificationSink, BookingEvent

SERVICE_DAY = datetime(2026, 10, 17, tzinfo=timezone.utc)


def at(hour: int, minute: int = 0) -> datetime:
    """A time on the service day, UTC."""
    return SERVICE_DAY.replace(hour=hour, minute=minute)


class RecordingNotifier(NotificationSink):
    def __init__(self):
        self.events: list[BookingEvent] = []

    async def publish(self, event: BookingEvent) -> None:
        self.events.append(event)

    def names(self) -> list[str]:
        return [event.name for event in self.events]


class FailingNotifier(NotificationSink):
    async def publish(self, event: BookingEvent) -> None:
        raise ConnectionError("notification channel down")


class TickingClock(FrozenClock):
    """Moves forward a little on every read, like a real wall clock."""

    def __init__(self, at: datetime, tick: timedelta = timedelta(microseconds=1)):
        super().__init__(at)
        self.tick = tick

    def now(self) -> datetime:
        current = super().now()
        self.set(current + self.tick)
        return current


@pytest_asyncio.fixture(scope="function")
async def engine(tmp_path):
    """Fresh schema per test."""
    url = os.environ.get("TEST_DATABASE_URL") or f"sqlite+aiosqlite:///{tmp_path / 'engine.db'}"
    test_engine = create_async_engine(url, echo=False)
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(at(12))


@pytest.fixture
def ticking_clock() -> TickingClock:
    return TickingClock(at(12))


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def make_table(session_factory):
    """Create a committed table; returns the (detached) row."""

    async def _make(table_number: int, min_capacity: int, max_capacity: int, **fields) -> RestaurantTable:
        async with session_factory() as session:
            table = RestaurantTable(
                table_number=table_number,
                min_capacity=min_capacity,
                max_capacity=max_capacity,
                **fields,
            )
            session.add(table)
            await session.commit()
            return table

    return _make


@pytest.fixture
def make_booking(session_factory, clock):
    """Seed a booking in any status, with tables and a creation history row."""

    async def _make(
        party_size: int = 2,
        start: datetime | None = None,
        turn_time_minutes: int = 120,
        status: str = "confirmed",
        table_ids: list[int] = (),
        request_expires_at: datetime | None = None,
        source: str = "request",
    ) -> Booking:
        start = start or at(19)
        async with session_factory() as session:
            booking = Booking(
                party_size=party_size,
                start_time=start,
                turn_time_minutes=turn_time_minutes,
                end_time=start + timedelta(minutes=turn_time_minutes),
                status=status,
                source=source,
                version=1,
                request_expires_at=request_expires_at,
                created_at=clock.now(),
                updated_at=clock.now(),
            )
            booking.table_links = [
                BookingTable(table_id=table_id, position=position)
                for position, table_id in enumerate(table_ids)
            ]
            booking.history.append(
                BookingStatusChange(from_status=None, to_status=status, at=clock.now(), actor="seed")
            )
            session.add(booking)
            await session.commit()
            return booking

    return _make


@pytest_asyncio.fixture(scope="function")
async def client(session_factory, clock, notifier) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client wired to the test database, clock and notifier."""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_sessions] = lambda: session_factory
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_notifier] = lambda: notifier

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def staff_headers() -> dict:
    return {"X-Actor-Id": "host-1"}
