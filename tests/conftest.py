"""Shared test fixtures.

Tests run against a throwaway SQLite file. The URL must be in the
environment before anything under courtslot is imported, since settings
and the engine are built at import time.
"""

import os

os.environ["CS_DATABASE_URL"] = "sqlite+aiosqlite:///./courtslot_test.db"

from datetime import datetime, timedelta  # noqa: E402

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from courtslot.core.auth import create_access_token  # noqa: E402
from courtslot.core.database import async_session_factory, engine  # noqa: E402
from courtslot.main import app  # noqa: E402
from courtslot.models import (  # noqa: E402
    Base,
    Court,
    Participant,
    ParticipantStatus,
    PlayPolicy,
    Reservation,
    ReservationStatus,
    User,
    UserRole,
)
from courtslot.services.operating_hours import LOCAL_TZ  # noqa: E402

# Tuesday 02:00 local: the whole day's morning and evening lots are still ahead
NOW = datetime(2030, 1, 1, 2, 0, tzinfo=LOCAL_TZ)


@pytest.fixture(autouse=True)
async def _fresh_schema():
    """Dispose stale pool connections and rebuild the schema before each test.

    The global engine is created at import time. When pytest-asyncio creates a new
    event loop for a test, pooled connections bound to the old loop would fail with
    'Future attached to a different loop'.
    """
    await engine.dispose()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield


@pytest.fixture
async def client():
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
async def db():
    async with async_session_factory() as session:
        yield session


@pytest.fixture
async def seed(db):
    """Two courts, a creator, five other players and an admin."""
    court_a = Court(name="Court 1", is_active=True)
    court_b = Court(name="Court 2", is_active=True)
    creator = User(email="creator@nitw.ac.in", play_policy=PlayPolicy.TWO_DAYS)
    players = [User(email=f"player{i}@nitw.ac.in") for i in range(1, 6)]
    admin = User(email="admin@nitw.ac.in", role=UserRole.ADMIN)
    db.add_all([court_a, court_b, creator, *players, admin])
    await db.commit()
    return {
        "court_a": court_a,
        "court_b": court_b,
        "creator": creator,
        "players": players,
        "admin": admin,
    }


@pytest.fixture
def make_reservation(db, seed):
    """Insert a reservation directly, bypassing the booking rules."""

    async def _make(
        start: datetime,
        *,
        court: Court | None = None,
        players: list[User] | None = None,
        pending: tuple[User, ...] = (),
        status: ReservationStatus = ReservationStatus.CONFIRMED,
        duration: timedelta = timedelta(minutes=30),
        reminder_sent: bool = False,
    ) -> Reservation:
        players = players or [seed["creator"], seed["players"][0]]
        reservation = Reservation(
            court=court or seed["court_a"],
            creator=players[0],
            start_at=start,
            end_at=start + duration,
            status=status,
            reminder_sent=reminder_sent,
        )
        reservation.participants = [
            Participant(
                user_id=u.id,
                email=u.email,
                status=ParticipantStatus.PENDING if u in pending else ParticipantStatus.CONFIRMED,
                confirmed_at=None if u in pending else start - timedelta(hours=3),
            )
            for u in players
        ]
        db.add(reservation)
        await db.commit()
        return reservation

    return _make


def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(str(user.id))}"}
