"""Periodic sweep: pre-start reminders and cutoff auto-cancellation.

Nothing here relies on in-memory timers. Each tick re-reads persisted state
and decides whether it is time yet, so a restart loses nothing and running
two sweeps at once is harmless:

- a reminder is claimed by setting reminder_sent before delivery, and the
  claim is released if nothing could be sent;
- auto-cancellation is a conditional update on status = 'pending', so a
  reservation already handled by another tick is skipped.

Each reservation is transitioned in its own transaction. Email goes out
only after that transaction commits, and a delivery failure never undoes it.
"""

import logging
from collections.abc import Awaitable, Callable, Iterable
from datetime import UTC, datetime, timedelta

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from courtslot.core.config import settings
from courtslot.models.booking import ParticipantStatus, Reservation, ReservationStatus
from courtslot.services.email import Notice, deliver
from courtslot.services.errors import ConflictError
from courtslot.services.lifecycle import cancel, fmt_local, load_reservation

logger = logging.getLogger(__name__)

REMINDER_LOOKAHEAD = timedelta(hours=1)
REMINDER_BAND = timedelta(minutes=5)  # either side of now + lookahead
CUTOFF_MARGIN = timedelta(minutes=5)

SessionFactory = async_sessionmaker[AsyncSession]
Sender = Callable[[Iterable[Notice]], Awaitable[int]]


async def _send(send: Sender, notices: list[Notice]) -> int:
    try:
        return await send(notices)
    except Exception:
        logger.exception("Notification dispatch failed for %d notice(s)", len(notices))
        return 0


async def _reservations_starting_between(
    session_factory: SessionFactory,
    status: ReservationStatus,
    start: datetime,
    end: datetime,
    unreminded_only: bool = False,
) -> list[Reservation]:
    query = select(Reservation).where(
        Reservation.status == status,
        Reservation.start_at >= start,
        Reservation.start_at < end,
    )
    if unreminded_only:
        query = query.where(Reservation.reminder_sent.is_(False))
    async with session_factory() as db:
        result = await db.execute(query.order_by(Reservation.start_at))
        return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Reminder pass
# ---------------------------------------------------------------------------


async def _set_reminder_flag(session_factory: SessionFactory, reservation_id: int, claimed: bool) -> bool:
    """Set reminder_sent to claimed if it holds the opposite. True if this call made the change."""
    async with session_factory() as db:
        result = await db.execute(
            update(Reservation)
            .where(Reservation.id == reservation_id, Reservation.reminder_sent.is_(not claimed))
            .values(reminder_sent=claimed)
        )
        await db.commit()
    return result.rowcount == 1


async def reminder_pass(session_factory: SessionFactory, send: Sender = deliver, now: datetime | None = None) -> int:
    """Remind confirmed groups an hour ahead; nudge groups that are still pending.

    Returns the number of reservations newly marked as reminded.
    """
    now = now or datetime.now(UTC)
    target = now + REMINDER_LOOKAHEAD
    band_start, band_end = target - REMINDER_BAND, target + REMINDER_BAND

    confirmed = await _reservations_starting_between(
        session_factory, ReservationStatus.CONFIRMED, band_start, band_end, unreminded_only=True
    )
    reminded = 0
    for reservation in confirmed:
        emails = [p.email for p in reservation.participants if p.status == ParticipantStatus.CONFIRMED]
        if not emails:
            continue
        if not await _set_reminder_flag(session_factory, reservation.id, claimed=True):
            # Another tick claimed it first
            continue

        body = (
            f"Reminder: your court booking for {reservation.court.name} starts at "
            f"{fmt_local(reservation.start_at)}.\n"
            f"Please reach the venue 10 minutes early.\n\n"
            f"{settings.app_name}"
        )
        if await _send(send, [Notice.to(emails, "Booking reminder", body)]) == 0:
            # Release the claim so the next tick retries while still in the band
            await _set_reminder_flag(session_factory, reservation.id, claimed=False)
            continue

        reminded += 1
        logger.info("Reminder sent for reservation %s", reservation.id)

    # No flag for these: the nudge may repeat on every tick inside the band
    pending = await _reservations_starting_between(session_factory, ReservationStatus.PENDING, band_start, band_end)
    for reservation in pending:
        body = (
            f"Your booking for {reservation.court.name} at {fmt_local(reservation.start_at)} is still pending.\n"
            f"Not all participants have confirmed yet.\n\n"
            f"Please remind them to confirm soon, otherwise this booking will be automatically "
            f"cancelled 5 minutes before the start time.\n\n"
            f"{settings.app_name}"
        )
        await _send(send, [Notice.to(reservation.emails, "Booking still pending confirmation", body)])
        logger.info("Pending notice sent for reservation %s", reservation.id)

    return reminded


# ---------------------------------------------------------------------------
# Cutoff pass
# ---------------------------------------------------------------------------


async def _auto_cancel(session_factory: SessionFactory, reservation_id: int) -> Notice | None:
    """Flip one pending reservation to auto-cancelled. None if it was no longer pending."""
    async with session_factory() as db:
        reservation = await load_reservation(db, reservation_id, lock=True)
        if reservation is None or reservation.status != ReservationStatus.PENDING:
            return None

        still_pending = [p.email for p in reservation.participants if p.status == ParticipantStatus.PENDING]
        try:
            await cancel(
                db,
                reservation,
                ReservationStatus.AUTO_CANCELLED,
                "Cutoff auto-cancel",
                display_from=reservation.start_at - timedelta(minutes=5),
                display_to=reservation.end_at - timedelta(minutes=10),
                from_statuses=[ReservationStatus.PENDING],
            )
        except ConflictError:
            await db.rollback()
            return None
        await db.commit()

    body = (
        f"Your booking for {reservation.court.name} at {fmt_local(reservation.start_at)} was "
        f"auto-cancelled because one or more participants did not confirm in time.\n\n"
        f"{settings.app_name}"
    )
    return Notice.to(still_pending, "Booking auto-cancelled", body)


async def cutoff_pass(session_factory: SessionFactory, send: Sender = deliver, now: datetime | None = None) -> int:
    """Auto-cancel every pending reservation whose start is within the cutoff margin.

    Only participants who never confirmed are told. Returns the number of
    reservations this call cancelled.
    """
    now = now or datetime.now(UTC)
    cutoff = now + CUTOFF_MARGIN

    async with session_factory() as db:
        result = await db.execute(
            select(Reservation.id)
            .where(Reservation.status == ReservationStatus.PENDING, Reservation.start_at <= cutoff)
            .order_by(Reservation.start_at)
        )
        due = list(result.scalars().all())

    cancelled = 0
    for reservation_id in due:
        try:
            notice = await _auto_cancel(session_factory, reservation_id)
        except SQLAlchemyError:
            logger.exception("Auto-cancel failed for reservation %s", reservation_id)
            continue
        if notice is None:
            continue

        cancelled += 1
        logger.info("Auto-cancelled reservation %s", reservation_id)
        if notice.recipients:
            await _send(send, [notice])

    return cancelled


async def run_sweep(session_factory: SessionFactory, send: Sender = deliver, now: datetime | None = None) -> dict:
    """One tick. The two passes are independent; one failing does not stop the other."""
    now = now or datetime.now(UTC)
    summary = {"reminded": 0, "auto_cancelled": 0}

    try:
        summary["reminded"] = await reminder_pass(session_factory, send, now)
    except Exception:
        logger.exception("Reminder pass failed")

    try:
        summary["auto_cancelled"] = await cutoff_pass(session_factory, send, now)
    except Exception:
        logger.exception("Cutoff pass failed")

    return summary
