"""
Pytest fixtures for the test database, HTTP client and identities.

Each test gets its own SQLite file so separate sessions (one per simulated
user) can race against the same class the way separate requests do.
"""

import os

# Must be set before gym_booking reads its settings
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ["REDIS_ENABLED"] = "false"
os.environ["NOTIFICATION_BACKEND"] = "null"
os.environ["PROMOTION_SWEEP_ENABLED"] = "false"

from datetime import datetime, timezone, timedelta
from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import NullPool

from gym_booking.main import app
from gym_booking.db.base import Base
from gym_booking.db.session import get_db
from gym_booking.core.security import create_access_token
from gym_booking.models.class_session import ClassSession
from gym_booking.models.reservation import Reservation, SEAT_HOLDING_STATUSES
from gym_booking.services.interfaces.notification import NotificationSink
from gym_booking.services.notification_factory import set_notifier


class RecordingNotificationSink(NotificationSink):
    """Keeps every notification in memory for assertions."""

    def __init__(self):
        self.sent: list[dict] = []

    async def notify(self, user_id, type, title, message, related_id=None):
        self.sent.append({"user_id": user_id, "type": type, "related_id": related_id})

    def for_user(self, user_id: str) -> list[dict]:
        return [n for n in self.sent if n["user_id"] == user_id]


@pytest.fixture(autouse=True)
def notifier() -> RecordingNotificationSink:
    sink = RecordingNotificationSink()
    set_notifier(sink)
    yield sink
    set_notifier(None)


@pytest_asyncio.fixture(scope="function")
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker, None]:
    """Fresh schema in a per-test SQLite file."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'gym_booking_test.db'}",
        poolclass=NullPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client whose requests each get their own test session."""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    """Build Bearer headers for any user id, optionally with the staff role."""

    def _headers(user_id: str, role: Optional[str] = None) -> dict:
        claims = {"sub": user_id}
        if role:
            claims["role"] = role
        return {"Authorization": f"Bearer {create_access_token(data=claims)}"}

    return _headers


@pytest.fixture
def staff_headers(auth_headers) -> dict:
    return auth_headers("coach-ana", role="staff")


@pytest_asyncio.fixture
async def make_class(db_session: AsyncSession):
    """Create a class tomorrow with the given capacity."""

    async def _make(max_capacity: int = 1, title: str = "CrossFit WOD") -> ClassSession:
        class_session = ClassSession(
            title=title,
            coach_id="coach-ana",
            starts_at=datetime.now(timezone.utc) + timedelta(days=1),
            duration_minutes=60,
            max_capacity=max_capacity,
            occupied_count=0,
            version=1,
        )
        db_session.add(class_session)
        await db_session.commit()
        await db_session.refresh(class_session)
        return class_session

    return _make


@pytest.fixture
def fetch_class(session_factory):
    """Read a class's committed state through a fresh session."""

    async def _fetch(class_id: int) -> ClassSession:
        async with session_factory() as session:
            return await session.get(ClassSession, class_id)

    return _fetch


@pytest.fixture
def fetch_reservations(session_factory):
    """All committed reservations of a class, in queue order."""

    async def _fetch(class_id: int) -> list[Reservation]:
        async with session_factory() as session:
            result = await session.execute(
                select(Reservation)
                .where(Reservation.class_id == class_id)
                .order_by(Reservation.ordered_at, Reservation.id)
            )
            return list(result.scalars().all())

    return _fetch


@pytest.fixture
def assert_counter_matches(session_factory, fetch_class):
    """occupied_count must equal the number of confirmed + held reservations."""

    async def _check(class_id: int, allow_over_capacity: bool = False) -> ClassSession:
        class_session = await fetch_class(class_id)
        async with session_factory() as session:
            holders = (
                await session.execute(
                    select(func.count())
                    .select_from(Reservation)
                    .where(
                        Reservation.class_id == class_id,
                        Reservation.status.in_(SEAT_HOLDING_STATUSES),
                    )
                )
            ).scalar()
        assert class_session.occupied_count == holders
        if not allow_over_capacity:
            assert class_session.occupied_count <= class_session.max_capacity
        return class_session

    return _check


@pytest.fixture
def age_promotion(session_factory):
    """Move a hold's promoted_at into the past."""

    async def _age(reservation_id: int, minutes: int) -> None:
        async with session_factory() as session:
            await session.execute(
                update(Reservation)
                .where(Reservation.id == reservation_id)
                .values(promoted_at=datetime.now(timezone.utc) - timedelta(minutes=minutes))
            )
            await session.commit()

    return _age
