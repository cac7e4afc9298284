"""Court availability: blackout lookups and free-slot listing."""

from dataclasses import dataclass
from datetime import UTC, date, datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from courtslot.models.booking import OCCUPYING_STATUSES, Reservation
from courtslot.models.court import BlackoutBlock, Court, Lot
from courtslot.services.operating_hours import (
    Window,
    check_horizon,
    day_range,
    duration_for,
    generate_slots,
    window_ranges,
)


@dataclass(frozen=True)
class Slot:
    court_id: int
    court_name: str
    start: datetime
    end: datetime

    @property
    def slot_key(self) -> str:
        return f"{self.court_id}-{self.start.astimezone(UTC).isoformat()}"


async def is_blacked_out(db: AsyncSession, court_id: int, day: date, lot: Lot | None) -> bool:
    """True if any block for (court, lot) spans day. lot=None checks every lot."""
    query = select(BlackoutBlock.id).where(
        BlackoutBlock.court_id == court_id,
        BlackoutBlock.start_date <= day,
        BlackoutBlock.end_date >= day,
    )
    if lot is not None:
        query = query.where(BlackoutBlock.lot == lot)
    result = await db.execute(query.limit(1))
    return result.first() is not None


async def busy_intervals(db: AsyncSession, court_id: int, day: date) -> list[tuple[datetime, datetime]]:
    """Occupied [start, end) intervals on a court that touch the given local date."""
    day_start, day_end = day_range(day)
    result = await db.execute(
        select(Reservation.start_at, Reservation.end_at).where(
            Reservation.court_id == court_id,
            Reservation.status.in_(OCCUPYING_STATUSES),
            Reservation.start_at < day_end,
            Reservation.end_at > day_start,
        )
    )
    return [(row.start_at, row.end_at) for row in result]


async def list_available_slots(
    db: AsyncSession,
    query_date: date,
    window: Window,
    participant_count: int,
    duration_minutes: int | None = None,
    now: datetime | None = None,
) -> list[Slot]:
    """Free slots on every active, non-blacked-out court for a date and window.

    Courts come back in id order; each court's slots are chronological.
    """
    now = now or datetime.now(UTC)
    check_horizon(query_date, now)
    duration = duration_for(participant_count, duration_minutes)

    # A "full" request hides a court if any of its lots is blocked that day
    lot = None if window is Window.FULL else window.lots[0]

    courts_result = await db.execute(select(Court).where(Court.is_active.is_(True)).order_by(Court.id))
    courts = courts_result.scalars().all()

    ranges = window_ranges(query_date, window)
    available: list[Slot] = []
    for court in courts:
        if await is_blacked_out(db, court.id, query_date, lot):
            continue
        busy = await busy_intervals(db, court.id, query_date)
        for start, end in generate_slots(ranges, busy, duration, now):
            available.append(Slot(court.id, court.name, start, end))

    return available
