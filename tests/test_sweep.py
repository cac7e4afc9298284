"""Sweep tests: reminders, pending nudges, cutoff auto-cancellation."""

import asyncio
from datetime import date, datetime, time, timedelta
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from courtslot.core.config import settings
from courtslot.core.database import async_session_factory
from courtslot.models import CancellationRecord, Reservation, ReservationStatus
from courtslot.services.operating_hours import LOCAL_TZ
from courtslot.services.sweep import cutoff_pass, reminder_pass, run_sweep

TUESDAY = date(2030, 1, 1)


def at(hour: int, minute: int = 0, day: date = TUESDAY) -> datetime:
    return datetime.combine(day, time(hour, minute), tzinfo=LOCAL_TZ)


async def reload(reservation_id: int) -> Reservation:
    async with async_session_factory() as fresh:
        return await fresh.get(Reservation, reservation_id)


def sent_notices(send: AsyncMock) -> list:
    return [notice for call in send.await_args_list for notice in call.args[0]]


@pytest.fixture
async def other_factory():
    """Sessions from a second engine, so two sweeps run on separate connections."""
    other = create_async_engine(settings.database_url)
    yield async_sessionmaker(other, class_=AsyncSession, expire_on_commit=False)
    await other.dispose()


# ---------------------------------------------------------------------------
# Reminder pass
# ---------------------------------------------------------------------------


async def test_reminder_sent_once(seed, make_reservation):
    reservation = await make_reservation(at(6))
    send = AsyncMock(return_value=2)

    assert await reminder_pass(async_session_factory, send, now=at(5)) == 1
    [notice] = sent_notices(send)
    assert notice.subject == "Booking reminder"
    assert notice.recipients == ("creator@nitw.ac.in", "player1@nitw.ac.in")
    assert (await reload(reservation.id)).reminder_sent is True

    send.reset_mock()
    assert await reminder_pass(async_session_factory, send, now=at(5, 1)) == 0
    send.assert_not_awaited()


async def test_reminder_band_is_narrow(seed, make_reservation):
    await make_reservation(at(6, 10))
    send = AsyncMock(return_value=1)
    assert await reminder_pass(async_session_factory, send, now=at(5)) == 0
    send.assert_not_awaited()


async def test_failed_reminder_is_retried(seed, make_reservation):
    reservation = await make_reservation(at(6))

    failing = AsyncMock(return_value=0)
    assert await reminder_pass(async_session_factory, failing, now=at(5)) == 0
    assert (await reload(reservation.id)).reminder_sent is False

    working = AsyncMock(return_value=2)
    assert await reminder_pass(async_session_factory, working, now=at(5, 2)) == 1
    assert (await reload(reservation.id)).reminder_sent is True


async def test_overlapping_reminder_passes_send_once(seed, make_reservation, other_factory):
    reservation = await make_reservation(at(6))
    send = AsyncMock(return_value=2)

    counts = await asyncio.gather(
        reminder_pass(async_session_factory, send, now=at(5)),
        reminder_pass(other_factory, send, now=at(5)),
    )

    assert sorted(counts) == [0, 1]
    assert [n.subject for n in sent_notices(send)] == ["Booking reminder"]
    assert (await reload(reservation.id)).reminder_sent is True


async def test_pending_group_nudged_every_tick(seed, make_reservation):
    player = seed["players"][0]
    await make_reservation(at(6), pending=(player,), status=ReservationStatus.PENDING)
    send = AsyncMock(return_value=2)

    await reminder_pass(async_session_factory, send, now=at(5))
    await reminder_pass(async_session_factory, send, now=at(5, 1))

    notices = sent_notices(send)
    assert len(notices) == 2
    assert all(n.subject == "Booking still pending confirmation" for n in notices)
    assert notices[0].recipients == ("creator@nitw.ac.in", "player1@nitw.ac.in")


# ---------------------------------------------------------------------------
# Cutoff pass
# ---------------------------------------------------------------------------


async def test_cutoff_cancels_and_tells_only_pending_players(seed, make_reservation):
    p = seed["players"]
    reservation = await make_reservation(
        at(7), players=[seed["creator"], p[0], p[1]], pending=(p[1],), status=ReservationStatus.PENDING
    )
    send = AsyncMock(return_value=1)

    assert await cutoff_pass(async_session_factory, send, now=at(6, 55)) == 1
    [notice] = sent_notices(send)
    assert notice.recipients == ("player2@nitw.ac.in",)
    assert notice.subject == "Booking auto-cancelled"

    assert (await reload(reservation.id)).status == ReservationStatus.AUTO_CANCELLED
    async with async_session_factory() as fresh:
        [record] = (await fresh.execute(select(CancellationRecord))).scalars().all()
        assert record.reservation_id == reservation.id
        assert record.reason == "Cutoff auto-cancel"
        assert record.display_from == at(6, 55)
        assert record.display_to == at(7, 20)


async def test_cutoff_is_idempotent(seed, make_reservation):
    await make_reservation(at(7), pending=(seed["players"][0],), status=ReservationStatus.PENDING)
    send = AsyncMock(return_value=1)

    assert await cutoff_pass(async_session_factory, send, now=at(6, 55)) == 1
    assert await cutoff_pass(async_session_factory, send, now=at(6, 56)) == 0
    assert send.await_count == 1

    async with async_session_factory() as fresh:
        assert len((await fresh.execute(select(CancellationRecord))).scalars().all()) == 1


async def test_concurrent_cutoff_cancels_exactly_once(seed, make_reservation, other_factory):
    reservation = await make_reservation(at(7), pending=(seed["players"][0],), status=ReservationStatus.PENDING)
    send = AsyncMock(return_value=1)

    counts = await asyncio.gather(
        cutoff_pass(async_session_factory, send, now=at(6, 55)),
        cutoff_pass(other_factory, send, now=at(6, 55)),
    )

    assert sorted(counts) == [0, 1]
    assert send.await_count == 1
    assert (await reload(reservation.id)).status == ReservationStatus.AUTO_CANCELLED
    async with async_session_factory() as fresh:
        [record] = (await fresh.execute(select(CancellationRecord))).scalars().all()
        assert record.reservation_id == reservation.id


async def test_cutoff_waits_until_five_minutes_before(seed, make_reservation):
    reservation = await make_reservation(at(7), pending=(seed["players"][0],), status=ReservationStatus.PENDING)
    send = AsyncMock(return_value=1)

    assert await cutoff_pass(async_session_factory, send, now=at(6, 54)) == 0
    assert (await reload(reservation.id)).status == ReservationStatus.PENDING


async def test_cutoff_leaves_confirmed_alone(seed, make_reservation):
    reservation = await make_reservation(at(7))
    send = AsyncMock(return_value=1)

    assert await cutoff_pass(async_session_factory, send, now=at(7)) == 0
    assert (await reload(reservation.id)).status == ReservationStatus.CONFIRMED


async def test_delivery_failure_does_not_undo_cancel(seed, make_reservation):
    p = seed["players"]
    first = await make_reservation(at(7), pending=(p[0],), status=ReservationStatus.PENDING)
    second = await make_reservation(
        at(7), court=seed["court_b"], players=[p[1], p[2]], pending=(p[2],), status=ReservationStatus.PENDING
    )
    send = AsyncMock(side_effect=RuntimeError("smtp down"))

    assert await cutoff_pass(async_session_factory, send, now=at(6, 55)) == 2
    assert (await reload(first.id)).status == ReservationStatus.AUTO_CANCELLED
    assert (await reload(second.id)).status == ReservationStatus.AUTO_CANCELLED


# ---------------------------------------------------------------------------
# Full tick
# ---------------------------------------------------------------------------


async def test_run_sweep_summary(seed, make_reservation):
    p = seed["players"]
    await make_reservation(at(6))
    await make_reservation(at(5, 3), court=seed["court_b"], players=[p[1], p[2]], pending=(p[2],), status=ReservationStatus.PENDING)
    send = AsyncMock(return_value=1)

    summary = await run_sweep(async_session_factory, send, now=at(5))
    assert summary == {"reminded": 1, "auto_cancelled": 1}


async def test_failing_pass_does_not_stop_the_other(seed, make_reservation):
    await make_reservation(at(7), pending=(seed["players"][0],), status=ReservationStatus.PENDING)
    send = AsyncMock(return_value=1)

    with patch("courtslot.services.sweep.reminder_pass", new_callable=AsyncMock, side_effect=RuntimeError("boom")):
        summary = await run_sweep(async_session_factory, send, now=at(6, 55))
    assert summary == {"reminded": 0, "auto_cancelled": 1}
