"""Admin read models and player policy management."""

import enum
import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from courtslot.models.booking import ACTIVE_STATUSES, TERMINAL_STATUSES, CancellationRecord, Reservation
from courtslot.models.court import BlackoutBlock
from courtslot.models.member import PlayPolicy, User, UserRole
from courtslot.services.errors import NotFoundError, PolicyError
from courtslot.services.operating_hours import LEAD_TIME, local_date

logger = logging.getLogger(__name__)


class AdminListMode(enum.StrEnum):
    DEFAULT = "default"  # upcoming and still cancellable
    CURRENT = "current"  # around now, +/- 1 hour
    EXPLICIT = "explicit"  # everything


@dataclass
class DashboardStats:
    users: int  # players who are not banned
    bookings: int  # live and not yet started
    blocks: int  # not yet over
    audits: int  # cancellation records from the last 7 days


async def list_admin_reservations(
    db: AsyncSession,
    admin: User,
    mode: AdminListMode = AdminListMode.DEFAULT,
    now: datetime | None = None,
) -> list[Reservation]:
    """Bookings made by other people, for the admin console."""
    now = now or datetime.now(UTC)
    query = select(Reservation).where(Reservation.creator_id != admin.id)

    if mode is AdminListMode.CURRENT:
        window = timedelta(hours=1)
        query = query.where(
            Reservation.start_at <= now + window,
            Reservation.end_at >= now - window,
        ).order_by(Reservation.start_at).limit(100)
    elif mode is AdminListMode.EXPLICIT:
        query = query.order_by(Reservation.start_at.desc()).limit(200)
    else:
        query = query.where(
            Reservation.status.not_in(TERMINAL_STATUSES),
            Reservation.start_at >= now + LEAD_TIME,
        ).order_by(Reservation.start_at).limit(100)

    result = await db.execute(query)
    return list(result.scalars().all())


async def list_audit(db: AsyncSession, limit: int = 50) -> list[CancellationRecord]:
    result = await db.execute(
        select(CancellationRecord).order_by(CancellationRecord.created_at.desc(), CancellationRecord.id.desc()).limit(limit)
    )
    return list(result.scalars().all())


async def dashboard_stats(db: AsyncSession, now: datetime | None = None) -> DashboardStats:
    now = now or datetime.now(UTC)
    users = await db.scalar(
        select(func.count(User.id)).where(User.role == UserRole.USER, User.is_banned.is_(False))
    )
    bookings = await db.scalar(
        select(func.count(Reservation.id)).where(Reservation.status.in_(ACTIVE_STATUSES), Reservation.start_at >= now)
    )
    blocks = await db.scalar(select(func.count(BlackoutBlock.id)).where(BlackoutBlock.end_date >= local_date(now)))
    audits = await db.scalar(
        select(func.count(CancellationRecord.id)).where(CancellationRecord.created_at >= now - timedelta(days=7))
    )
    return DashboardStats(users=users, bookings=bookings, blocks=blocks, audits=audits)


async def list_users(db: AsyncSession) -> list[User]:
    result = await db.execute(select(User).order_by(User.created_at.desc(), User.id.desc()))
    return list(result.scalars().all())


async def update_user(
    db: AsyncSession,
    admin: User,
    user_id: int,
    play_policy: PlayPolicy | None = None,
    is_banned: bool | None = None,
) -> User:
    """Change a player's cooldown policy and/or ban flag. None leaves a field as it is."""
    if not admin.is_admin:
        raise PolicyError("forbidden", "Admin access required.", status_code=403)

    user = await db.get(User, user_id)
    if user is None:
        raise NotFoundError("not_found", "User not found.")

    if play_policy is not None:
        user.play_policy = play_policy
    if is_banned is not None:
        user.is_banned = is_banned
    await db.flush()

    logger.info("Admin %s updated %s: policy=%s banned=%s", admin.email, user.email, user.play_policy, user.is_banned)
    return user
