"""Reservation lifecycle: create, confirm, cancel.

    pending -> confirmed        every participant confirmed
    pending -> cancelled        participant or admin, more than 1 hour out
    confirmed -> cancelled      same
    pending -> auto-cancelled   sweep only, at start - 5 minutes

Every terminal write is a conditional UPDATE on the status column. If two
transactions race (confirm against cutoff, double cancel, two sweeps), the
one whose predicate still matches wins and the other sees zero rows and
treats the reservation as already handled.

Operations never commit or send email themselves. They return the Notices
owed, and the caller delivers them after its commit succeeds.
"""

import enum
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from jose import JWTError
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from courtslot.core.auth import create_confirmation_token, verify_confirmation_token
from courtslot.core.config import settings
from courtslot.models.booking import (
    ACTIVE_STATUSES,
    CancellationRecord,
    Participant,
    ParticipantStatus,
    Reservation,
    ReservationStatus,
)
from courtslot.models.court import Court
from courtslot.models.member import User
from courtslot.services.availability import is_blacked_out
from courtslot.services.booking_rules import (
    check_court_conflict,
    check_lead_time,
    check_participants,
    normalise_email,
    resolve_participants,
    validate_cancellation,
    validate_invitees,
)
from courtslot.services.email import Notice
from courtslot.services.errors import ConflictError, NotFoundError, PolicyError, ValidationError
from courtslot.services.operating_hours import (
    LOCAL_TZ,
    check_horizon,
    duration_for,
    local_date,
    lot_for_interval,
)

logger = logging.getLogger(__name__)

BANNER_WINDOW = timedelta(minutes=15)


class ConfirmationOutcome(enum.StrEnum):
    CONFIRMED = "confirmed"  # this participant confirmed, others still pending
    RESERVATION_CONFIRMED = "reservation_confirmed"  # last one in, reservation flipped
    ALREADY_CONFIRMED = "already_confirmed"


@dataclass
class CreationResult:
    reservation: Reservation
    notices: list[Notice] = field(default_factory=list)


@dataclass
class ConfirmationResult:
    outcome: ConfirmationOutcome
    reservation_id: int
    email: str
    pending_count: int


@dataclass
class CancellationResult:
    reservation: Reservation
    record: CancellationRecord
    notices: list[Notice] = field(default_factory=list)


def fmt_local(moment: datetime) -> str:
    return moment.astimezone(LOCAL_TZ).strftime("%a %d %b %H:%M")


def confirmation_link(token: str) -> str:
    return f"{settings.api_origin}{settings.api_prefix}/bookings/confirm/{token}"


async def load_reservation(db: AsyncSession, reservation_id: int, lock: bool = False) -> Reservation | None:
    query = select(Reservation).where(Reservation.id == reservation_id)
    if lock:
        query = query.with_for_update()
    result = await db.execute(query)
    return result.scalar_one_or_none()


async def transition(
    db: AsyncSession,
    reservation_id: int,
    from_statuses: Sequence[ReservationStatus],
    to_status: ReservationStatus,
) -> bool:
    """Compare-and-swap the reservation status. True if this call made the change."""
    result = await db.execute(
        update(Reservation)
        .where(Reservation.id == reservation_id, Reservation.status.in_(from_statuses))
        .values(status=to_status)
    )
    return result.rowcount == 1


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------


async def create_reservation(
    db: AsyncSession,
    creator: User,
    court_id: int,
    start: datetime,
    end: datetime,
    participant_count: int,
    emails: Sequence[str],
    now: datetime | None = None,
) -> CreationResult:
    """Validate and insert a pending reservation with its participant rows.

    Every check runs before the first write. The creator is inserted
    already confirmed; each invitee starts pending and is owed a
    confirmation link valid for 60 minutes.
    """
    now = now or datetime.now(UTC)

    if start.tzinfo is None or end.tzinfo is None:
        raise ValidationError("timezone", "Start and end times must carry a timezone offset.")

    requested = int((end - start) / timedelta(minutes=1))
    expected = duration_for(participant_count, requested if participant_count == 2 else None)
    if end - start != expected:
        raise ValidationError(
            "duration",
            f"A group of {participant_count} plays for {int(expected.total_seconds() // 60)} minutes.",
        )
    if len(emails) != participant_count - 1:
        raise ValidationError(
            "participant_count",
            f"A group of {participant_count} needs {participant_count - 1} participant email(s), got {len(emails)}.",
        )

    lot = lot_for_interval(start, end)
    if lot is None:
        raise ValidationError("outside_hours", "Bookings must fall inside the morning or evening lot.")
    check_horizon(local_date(start), now)

    court = await db.get(Court, court_id)
    if court is None or not court.is_active:
        raise NotFoundError("court_not_found", "Court not found or not bookable.")

    v = check_lead_time(start, now)
    if v:
        raise v

    if await is_blacked_out(db, court.id, local_date(start), lot):
        raise PolicyError("blocked", "Court is blocked for that time window.")

    v = await check_court_conflict(db, court.id, start, end)
    if v:
        raise v

    invite_emails = validate_invitees(emails, creator.email, settings.institution_domain)
    invitees = await resolve_participants(db, invite_emails)
    await check_participants(db, creator, invitees, start, end, now)

    reservation = Reservation(
        court=court,
        creator=creator,
        start_at=start,
        end_at=end,
        status=ReservationStatus.PENDING,
        reminder_sent=False,
    )
    reservation.participants = [
        Participant(
            user_id=creator.id,
            email=normalise_email(creator.email),
            status=ParticipantStatus.CONFIRMED,
            confirmed_at=now,
        )
    ] + [
        Participant(user_id=u.id, email=u.email, status=ParticipantStatus.PENDING, confirmed_at=None)
        for u in invitees
    ]
    db.add(reservation)

    try:
        await db.flush()
    except IntegrityError as e:
        # A concurrent request committed the same court interval first.
        # Rollback expires loaded rows, so log from the arguments only.
        await db.rollback()
        logger.info("Lost race for court %s at %s: %s", court_id, start.isoformat(), e.orig)
        raise ConflictError("slot_taken", "Slot already booked or unavailable.") from e

    logger.info(
        "Reservation %s created on court %s at %s by %s (%d invitee(s))",
        reservation.id,
        court.id,
        start.isoformat(),
        creator.email,
        len(invitees),
    )

    notices = []
    for user in invitees:
        token = create_confirmation_token(reservation.id, user.email)
        body = (
            f"Hello,\n\n"
            f"{creator.email} added you to a booking for {court.name} at {fmt_local(start)}.\n"
            f"Please confirm within {settings.confirmation_token_expire_minutes} minutes:\n"
            f"{confirmation_link(token)}\n\n"
            f"The booking is cancelled automatically 5 minutes before it starts "
            f"unless every player has confirmed.\n\n"
            f"{settings.app_name}"
        )
        notices.append(Notice.to([user.email], "Confirm your court booking", body))

    return CreationResult(reservation=reservation, notices=notices)


# ---------------------------------------------------------------------------
# Confirmation
# ---------------------------------------------------------------------------


async def confirm_participant(
    db: AsyncSession,
    reservation_id: int,
    email: str,
    now: datetime | None = None,
) -> ConfirmationResult:
    """Record one participant's acknowledgement; flip the reservation when nobody is left pending.

    Confirming twice is a no-op reported as already_confirmed.
    """
    now = now or datetime.now(UTC)
    email = normalise_email(email)

    reservation = await load_reservation(db, reservation_id, lock=True)
    if reservation is None:
        raise NotFoundError("not_found", "This booking no longer exists.")
    if reservation.is_terminal:
        raise ConflictError("already_cancelled", "This booking has already been cancelled and cannot be confirmed.")

    participant = next((p for p in reservation.participants if p.email.lower() == email), None)
    if participant is None:
        raise NotFoundError("not_participant", "This confirmation link is invalid or expired.")

    flipped = await db.execute(
        update(Participant)
        .where(Participant.id == participant.id, Participant.status == ParticipantStatus.PENDING)
        .values(status=ParticipantStatus.CONFIRMED, confirmed_at=now)
    )

    pending_count = await db.scalar(
        select(func.count(Participant.id)).where(
            Participant.reservation_id == reservation.id,
            Participant.status == ParticipantStatus.PENDING,
        )
    )

    if flipped.rowcount == 0:
        return ConfirmationResult(ConfirmationOutcome.ALREADY_CONFIRMED, reservation.id, email, pending_count)

    if pending_count > 0:
        logger.info("Reservation %s: %s confirmed, %d still pending", reservation.id, email, pending_count)
        return ConfirmationResult(ConfirmationOutcome.CONFIRMED, reservation.id, email, pending_count)

    if not await transition(db, reservation.id, [ReservationStatus.PENDING], ReservationStatus.CONFIRMED):
        # The cutoff sweep got there first
        raise ConflictError("already_cancelled", "This booking has already been cancelled and cannot be confirmed.")

    logger.info("Reservation %s confirmed (all participants)", reservation.id)
    return ConfirmationResult(ConfirmationOutcome.RESERVATION_CONFIRMED, reservation.id, email, 0)


async def confirm_with_token(db: AsyncSession, token: str, now: datetime | None = None) -> ConfirmationResult:
    """Confirm from an emailed link. Expired or tampered tokens are rejected outright."""
    try:
        claims = verify_confirmation_token(token)
    except JWTError as e:
        raise ValidationError("invalid_token", "This confirmation link is invalid or expired.") from e
    return await confirm_participant(db, claims["reservation_id"], claims["email"], now=now)


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------


async def cancel(
    db: AsyncSession,
    reservation: Reservation,
    to_status: ReservationStatus,
    reason: str,
    display_from: datetime,
    display_to: datetime,
    from_statuses: Sequence[ReservationStatus] = ACTIVE_STATUSES,
) -> CancellationRecord:
    """Move a live reservation to a terminal status and write its audit record.

    Raises ConflictError if another transaction already moved it out of
    from_statuses.
    """
    if not await transition(db, reservation.id, from_statuses, to_status):
        raise ConflictError("already_cancelled", "Booking is already cancelled.")

    record = CancellationRecord(
        reservation_id=reservation.id,
        original_start=reservation.start_at,
        original_end=reservation.end_at,
        display_from=display_from,
        display_to=display_to,
        reason=reason,
    )
    db.add(record)
    await db.flush()
    logger.info("Reservation %s -> %s (%s)", reservation.id, to_status.value, reason)
    return record


async def cancel_by_participant(
    db: AsyncSession,
    reservation_id: int,
    user: User,
    now: datetime | None = None,
) -> CancellationResult:
    """A participant withdraws the whole booking, while more than an hour remains."""
    now = now or datetime.now(UTC)

    reservation = await load_reservation(db, reservation_id, lock=True)
    if reservation is None or all(p.user_id != user.id for p in reservation.participants):
        raise NotFoundError("not_found", "Not your booking.")

    v = validate_cancellation(reservation, now)
    if v:
        raise v

    record = await cancel(
        db,
        reservation,
        ReservationStatus.CANCELLED,
        "User cancelled",
        display_from=now,
        display_to=now + BANNER_WINDOW,
    )
    return CancellationResult(reservation=reservation, record=record)


async def cancel_by_admin(
    db: AsyncSession,
    reservation_id: int,
    admin: User,
    reason: str | None = None,
    now: datetime | None = None,
) -> CancellationResult:
    """An administrator cancels any live booking; the creator and every participant are told."""
    now = now or datetime.now(UTC)

    if not admin.is_admin:
        raise PolicyError("forbidden", "Admin access required.", status_code=403)

    reservation = await load_reservation(db, reservation_id, lock=True)
    if reservation is None:
        raise NotFoundError("not_found", "Booking not found.")

    v = validate_cancellation(reservation, now)
    if v:
        raise v

    record = await cancel(
        db,
        reservation,
        ReservationStatus.CANCELLED,
        reason or "Admin cancelled",
        display_from=now,
        display_to=now + BANNER_WINDOW,
    )

    court_name = reservation.court.name
    body = (
        f"Dear Player,\n\n"
        f"Your court booking has been cancelled by an administrator.\n\n"
        f"Court: {court_name}\n"
        f"Start: {fmt_local(reservation.start_at)}\n"
        f"End: {fmt_local(reservation.end_at)}\n"
        + (f"Reason: {reason}\n" if reason else "")
        + f"\nWe apologise for the inconvenience.\n\n{settings.app_name}"
    )
    recipients = [reservation.creator.email, *reservation.emails]
    notice = Notice.to(recipients, "Booking cancelled by admin", body)
    return CancellationResult(reservation=reservation, record=record, notices=[notice])


# ---------------------------------------------------------------------------
# Read models
# ---------------------------------------------------------------------------


async def list_my_reservations(db: AsyncSession, user: User, limit: int = 100) -> list[Reservation]:
    result = await db.execute(
        select(Reservation)
        .join(Participant, Participant.reservation_id == Reservation.id)
        .where(Participant.user_id == user.id)
        .order_by(Reservation.start_at.desc())
        .limit(limit)
    )
    return list(result.scalars().unique().all())


async def active_banners(db: AsyncSession, now: datetime | None = None, limit: int = 10) -> list[CancellationRecord]:
    """Cancellations whose display window contains now, newest first."""
    now = now or datetime.now(UTC)
    result = await db.execute(
        select(CancellationRecord)
        .where(
            CancellationRecord.reservation_id.is_not(None),
            CancellationRecord.display_from <= now,
            CancellationRecord.display_to > now,
        )
        .order_by(CancellationRecord.created_at.desc(), CancellationRecord.id.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


def banner_message(record: CancellationRecord) -> str:
    start = record.original_start.astimezone(LOCAL_TZ)
    end = record.original_end.astimezone(LOCAL_TZ)
    return f"Slot {start:%H:%M}-{end:%H:%M} at {record.reservation.court.name} was cancelled."
