"""Booking rules enforcement.

All booking validation logic lives here, separate from the route handlers
and the lifecycle service. Each rule returns an error or None if the rule
passes. check_participants() runs the per-player rules in order and raises
the first failure, so creation is all-or-nothing.
"""

import re
from collections.abc import Sequence
from datetime import datetime

from fastapi import status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from courtslot.models.booking import (
    ACTIVE_STATUSES,
    COOLDOWN_STATUSES,
    OCCUPYING_STATUSES,
    Participant,
    Reservation,
)
from courtslot.models.member import User
from courtslot.services.errors import ConflictError, PolicyError, ValidationError
from courtslot.services.operating_hours import LEAD_TIME, LOCAL_TZ, days_remaining

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def normalise_email(email: str) -> str:
    return email.strip().lower()


def in_domain(email: str, domain: str) -> bool:
    host = email.rpartition("@")[2]
    return host == domain or host.endswith("." + domain)


# ---------------------------------------------------------------------------
# Invite list
# ---------------------------------------------------------------------------


def validate_invitees(emails: Sequence[str], creator_email: str, domain: str) -> list[str]:
    """Normalise the invite list and reject it if any address is unusable.

    An address is unusable if it is malformed, outside the institution
    domain, the creator's own, or a repeat of an earlier entry. Every
    offending address is named in the error.
    """
    creator = normalise_email(creator_email)
    normalised = [normalise_email(e) for e in emails]

    invalid: list[str] = []
    seen: set[str] = set()
    for email in normalised:
        if not email or not EMAIL_RE.match(email) or not in_domain(email, domain) or email == creator or email in seen:
            invalid.append(email or "(blank)")
        seen.add(email)

    if invalid:
        raise ValidationError("invalid_emails", f"Invalid or duplicate emails: {', '.join(invalid)}")
    return normalised


async def resolve_participants(db: AsyncSession, emails: Sequence[str]) -> list[User]:
    """Load the registered account for each address, in invite order."""
    if not emails:
        return []
    result = await db.execute(select(User).where(User.email.in_(emails)))
    by_email = {u.email: u for u in result.scalars().all()}

    missing = [e for e in emails if e not in by_email]
    if missing:
        raise ValidationError(
            "unregistered",
            f"Not registered users: {', '.join(missing)}. Every participant needs an account.",
        )
    return [by_email[e] for e in emails]


# ---------------------------------------------------------------------------
# Slot-level rules
# ---------------------------------------------------------------------------


def check_lead_time(start: datetime, now: datetime) -> PolicyError | None:
    """Bookings must be made at least LEAD_TIME ahead of the start."""
    if start < now + LEAD_TIME:
        return PolicyError("lead_time", "Bookings must be made at least 1 hour in advance.")
    return None


async def check_court_conflict(
    db: AsyncSession,
    court_id: int,
    start: datetime,
    end: datetime,
) -> ConflictError | None:
    """No two occupying reservations can overlap on the same court."""
    result = await db.execute(
        select(Reservation)
        .where(
            Reservation.court_id == court_id,
            Reservation.status.in_(OCCUPYING_STATUSES),
            Reservation.start_at < end,
            Reservation.end_at > start,
        )
        .limit(1)
    )
    conflict = result.scalar_one_or_none()

    if conflict:
        local_start = conflict.start_at.astimezone(LOCAL_TZ)
        local_end = conflict.end_at.astimezone(LOCAL_TZ)
        return ConflictError(
            "slot_taken",
            f"Slot already taken: court booked from {local_start:%H:%M} to {local_end:%H:%M}.",
        )

    return None


# ---------------------------------------------------------------------------
# Per-player rules
# ---------------------------------------------------------------------------


def check_ban(user: User, is_creator: bool = False) -> PolicyError | None:
    if user.is_banned:
        message = "You are banned from booking." if is_creator else f"{user.email} is banned."
        return PolicyError("banned", message, status_code=status.HTTP_403_FORBIDDEN)
    return None


async def check_cooldown(
    db: AsyncSession,
    user: User,
    now: datetime,
    is_creator: bool = False,
) -> PolicyError | None:
    """A player must wait out their play policy after their last confirmed or auto-cancelled game.

    The gap runs from that reservation's start, not its end.
    """
    result = await db.execute(
        select(Reservation.start_at)
        .join(Participant, Participant.reservation_id == Reservation.id)
        .where(
            Participant.user_id == user.id,
            Reservation.status.in_(COOLDOWN_STATUSES),
        )
        .order_by(Reservation.start_at.desc())
        .limit(1)
    )
    last_start = result.scalar_one_or_none()
    if last_start is None:
        return None

    next_allowed = last_start + user.play_policy.cooldown
    if now < next_allowed:
        left = days_remaining(next_allowed - now)
        who = "You" if is_creator else user.email
        return PolicyError("cooldown", f"{who} can book again after {left} day(s).")

    return None


async def check_player_conflict(
    db: AsyncSession,
    user: User,
    start: datetime,
    end: datetime,
    is_creator: bool = False,
) -> PolicyError | None:
    """A player cannot hold two pending/confirmed reservations that overlap."""
    result = await db.execute(
        select(Reservation.id)
        .join(Participant, Participant.reservation_id == Reservation.id)
        .where(
            Participant.user_id == user.id,
            Reservation.status.in_(ACTIVE_STATUSES),
            Reservation.start_at < end,
            Reservation.end_at > start,
        )
        .limit(1)
    )
    if result.first() is not None:
        message = "You already have a booking at that time." if is_creator else f"{user.email} already has a booking at that time."
        return PolicyError("player_conflict", message)
    return None


async def check_participants(
    db: AsyncSession,
    creator: User,
    invitees: Sequence[User],
    start: datetime,
    end: datetime,
    now: datetime,
) -> None:
    """Run ban, cooldown and overlap rules for the creator, then each invitee.

    Raises the first PolicyError found; nothing has been written yet.
    """
    players = [(creator, True)] + [(u, False) for u in invitees]
    for user, is_creator in players:
        v = check_ban(user, is_creator)
        if v:
            raise v

        v = await check_cooldown(db, user, now, is_creator)
        if v:
            raise v

        v = await check_player_conflict(db, user, start, end, is_creator)
        if v:
            raise v


def validate_cancellation(reservation: Reservation, now: datetime) -> PolicyError | None:
    """A live reservation can be cancelled only while more than LEAD_TIME remains before it starts."""
    if reservation.is_terminal:
        return PolicyError("already_cancelled", "Booking is already cancelled.")

    if reservation.start_at - now <= LEAD_TIME:
        return PolicyError("cancellation_deadline", "Cannot cancel within 1 hour of start time.")

    return None
