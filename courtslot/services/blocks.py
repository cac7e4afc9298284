"""Blackout blocks: admin-defined date ranges that take a court lot out of service.

Creating a block cancels every live reservation it covers, so block creation
and the cascade commit together.
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from courtslot.core.config import settings
from courtslot.models.booking import ACTIVE_STATUSES, CancellationRecord, Reservation, ReservationStatus
from courtslot.models.court import BlackoutBlock, Court, Lot
from courtslot.models.member import User
from courtslot.services.email import Notice
from courtslot.services.errors import ConflictError, NotFoundError, PolicyError, ValidationError
from courtslot.services.lifecycle import cancel, fmt_local
from courtslot.services.operating_hours import day_range, local_date, lot_for_interval

logger = logging.getLogger(__name__)

BLOCK_HORIZON_DAYS = 30
BLOCK_MAX_SPAN_DAYS = 30


@dataclass
class BlockResult:
    blocks: list[BlackoutBlock]
    cancelled_count: int
    notices: list[Notice] = field(default_factory=list)


def _require_admin(user: User) -> None:
    if not user.is_admin:
        raise PolicyError("forbidden", "Admin access required.", status_code=403)


def _parse_lots(lots: Sequence[str | Lot]) -> list[Lot]:
    parsed: list[Lot] = []
    for lot in lots:
        try:
            value = Lot(lot)
        except ValueError:
            raise ValidationError("lot", "Invalid lot (morning/evening).") from None
        if value not in parsed:
            parsed.append(value)
    return parsed


def validate_block_dates(start_date: date, end_date: date, today: date) -> None:
    if start_date > end_date:
        raise ValidationError("block_dates", "start_date cannot be after end_date.")
    if end_date > today + timedelta(days=BLOCK_HORIZON_DAYS):
        raise PolicyError("block_horizon", f"end_date cannot be more than {BLOCK_HORIZON_DAYS} days ahead.")
    if (end_date - start_date).days > BLOCK_MAX_SPAN_DAYS:
        raise PolicyError("block_span", f"Blocks can be at most {BLOCK_MAX_SPAN_DAYS} days long.")


async def find_overlapping_block(
    db: AsyncSession, court_id: int, lot: Lot, start_date: date, end_date: date
) -> BlackoutBlock | None:
    result = await db.execute(
        select(BlackoutBlock)
        .where(
            BlackoutBlock.court_id == court_id,
            BlackoutBlock.lot == lot,
            BlackoutBlock.start_date <= end_date,
            BlackoutBlock.end_date >= start_date,
        )
        .limit(1)
    )
    return result.scalar_one_or_none()


async def create_blackout_blocks(
    db: AsyncSession,
    admin: User,
    court_ids: Sequence[int],
    lots: Sequence[str | Lot],
    start_date: date,
    end_date: date,
    reason: str | None = None,
    now: datetime | None = None,
) -> BlockResult:
    """Create one block per (court, lot) and cancel the live reservations they cover.

    If any (court, lot) already has a block overlapping the range, nothing
    is created.
    """
    now = now or datetime.now(UTC)
    _require_admin(admin)

    court_ids = list(dict.fromkeys(court_ids))
    parsed_lots = _parse_lots(lots)
    if not court_ids or not parsed_lots:
        raise ValidationError("block_fields", "At least one court and one lot are required.")
    validate_block_dates(start_date, end_date, local_date(now))

    # Court row locks serialise concurrent block creation for the overlap check
    courts_result = await db.execute(
        select(Court).where(Court.id.in_(court_ids)).order_by(Court.id).with_for_update()
    )
    courts = {c.id: c for c in courts_result.scalars().all()}
    missing = [str(cid) for cid in court_ids if cid not in courts]
    if missing:
        raise NotFoundError("court_not_found", f"Unknown court(s): {', '.join(missing)}.")

    for court_id in court_ids:
        for lot in parsed_lots:
            if await find_overlapping_block(db, court_id, lot, start_date, end_date):
                raise PolicyError(
                    "block_overlap",
                    f"Overlapping block exists for {courts[court_id].name} ({lot.value}).",
                )

    blocks = []
    for court_id in court_ids:
        for lot in parsed_lots:
            block = BlackoutBlock(
                court=courts[court_id],
                lot=lot,
                start_date=start_date,
                end_date=end_date,
                reason=reason,
                created_by=admin.id,
            )
            db.add(block)
            blocks.append(block)
            db.add(
                CancellationRecord(
                    reservation_id=None,
                    display_from=now,
                    display_to=now,
                    reason=f"Block created on {courts[court_id].name} ({lot.value}) {start_date}..{end_date}",
                )
            )
    await db.flush()

    cancelled, notices = await _cancel_covered_reservations(
        db, court_ids, parsed_lots, start_date, end_date, reason, now
    )
    logger.info(
        "Admin %s created %d block(s) %s..%s, cancelled %d reservation(s)",
        admin.email,
        len(blocks),
        start_date,
        end_date,
        cancelled,
    )
    return BlockResult(blocks=blocks, cancelled_count=cancelled, notices=notices)


async def _cancel_covered_reservations(
    db: AsyncSession,
    court_ids: Sequence[int],
    lots: Sequence[Lot],
    start_date: date,
    end_date: date,
    reason: str | None,
    now: datetime,
) -> tuple[int, list[Notice]]:
    """Cancel live reservations under the new blocks. Games already over are left as played."""
    range_start, _ = day_range(start_date)
    _, range_end = day_range(end_date)

    result = await db.execute(
        select(Reservation)
        .where(
            Reservation.court_id.in_(court_ids),
            Reservation.status.in_(ACTIVE_STATUSES),
            Reservation.start_at >= range_start,
            Reservation.start_at < range_end,
            Reservation.end_at > now,
        )
        .order_by(Reservation.start_at)
        .with_for_update()
    )

    cancel_reason = f"Blocked: {reason}" if reason else "Court blocked by admin"
    cancelled = 0
    notices: list[Notice] = []
    for reservation in result.scalars().all():
        if lot_for_interval(reservation.start_at, reservation.end_at) not in lots:
            continue
        try:
            await cancel(
                db,
                reservation,
                ReservationStatus.CANCELLED,
                cancel_reason,
                display_from=reservation.start_at - timedelta(minutes=5),
                display_to=reservation.end_at - timedelta(minutes=10),
            )
        except ConflictError:
            logger.info("Reservation %s was already cancelled, skipping", reservation.id)
            continue
        cancelled += 1

        body = (
            f"Dear Player,\n\n"
            f"Your booking for {reservation.court.name} at {fmt_local(reservation.start_at)} "
            f"has been cancelled because the court is closed for that period.\n"
            + (f"Reason: {reason}\n" if reason else "")
            + f"\nWe apologise for the inconvenience.\n\n{settings.app_name}"
        )
        notices.append(Notice.to([reservation.creator.email, *reservation.emails], "Booking cancelled: court blocked", body))

    return cancelled, notices


async def delete_blackout_block(db: AsyncSession, admin: User, block_id: int) -> None:
    _require_admin(admin)
    block = await db.get(BlackoutBlock, block_id)
    if block is None:
        raise NotFoundError("not_found", "Block not found.")
    await db.delete(block)
    await db.flush()
    logger.info("Admin %s deleted block %s", admin.email, block_id)


async def list_blocks(db: AsyncSession) -> list[BlackoutBlock]:
    result = await db.execute(select(BlackoutBlock).order_by(BlackoutBlock.start_date, BlackoutBlock.court_id))
    return list(result.scalars().all())
