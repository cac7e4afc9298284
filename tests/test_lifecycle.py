"""Reservation lifecycle tests: create, confirm, cancel, banners."""

from datetime import UTC, date, datetime, time, timedelta
from unittest.mock import AsyncMock, patch

import pytest
from conftest import NOW
from sqlalchemy import func, select

from courtslot.core.auth import create_confirmation_token
from courtslot.core.database import async_session_factory
from courtslot.models import CancellationRecord, ParticipantStatus, Reservation, ReservationStatus
from courtslot.models.court import BlackoutBlock, Lot
from courtslot.services.errors import ConflictError, NotFoundError, PolicyError, ValidationError
from courtslot.services.lifecycle import (
    ConfirmationOutcome,
    active_banners,
    banner_message,
    cancel_by_admin,
    cancel_by_participant,
    confirm_participant,
    confirm_with_token,
    create_reservation,
    list_my_reservations,
)
from courtslot.services.operating_hours import LOCAL_TZ

TUESDAY = date(2030, 1, 1)


def at(hour: int, minute: int = 0, day: date = TUESDAY) -> datetime:
    return datetime.combine(day, time(hour, minute), tzinfo=LOCAL_TZ)


async def book(db, seed, start=None, players=2, minutes=None, creator=None, invitees=None):
    start = start or at(7)
    minutes = minutes or {2: 30, 3: 45}.get(players, 60)
    creator = creator or seed["creator"]
    invitees = invitees if invitees is not None else seed["players"][: players - 1]
    result = await create_reservation(
        db,
        creator=creator,
        court_id=seed["court_a"].id,
        start=start,
        end=start + timedelta(minutes=minutes),
        participant_count=players,
        emails=[u.email for u in invitees],
        now=NOW,
    )
    await db.commit()
    return result


async def count(db, model) -> int:
    return await db.scalar(select(func.count()).select_from(model))


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------


class TestCreate:
    async def test_creates_pending_with_creator_confirmed(self, db, seed):
        result = await book(db, seed)
        reservation = result.reservation

        assert reservation.status == ReservationStatus.PENDING
        assert reservation.court.name == "Court 1"
        assert reservation.end_at - reservation.start_at == timedelta(minutes=30)
        statuses = {p.email: p.status for p in reservation.participants}
        assert statuses == {
            "creator@nitw.ac.in": ParticipantStatus.CONFIRMED,
            "player1@nitw.ac.in": ParticipantStatus.PENDING,
        }

    async def test_one_confirmation_notice_per_invitee(self, db, seed):
        result = await book(db, seed, players=4)
        assert [n.recipients for n in result.notices] == [
            ("player1@nitw.ac.in",),
            ("player2@nitw.ac.in",),
            ("player3@nitw.ac.in",),
        ]
        assert "/api/v1/bookings/confirm/" in result.notices[0].body
        assert "60 minutes" in result.notices[0].body

    async def test_duration_must_match_group(self, db, seed):
        with pytest.raises(ValidationError) as exc:
            await book(db, seed, players=4, minutes=45)
        assert exc.value.rule == "duration"

    async def test_pair_may_book_fifteen(self, db, seed):
        result = await book(db, seed, minutes=15)
        assert result.reservation.end_at - result.reservation.start_at == timedelta(minutes=15)

    async def test_email_count_must_match_group(self, db, seed):
        with pytest.raises(ValidationError) as exc:
            await book(db, seed, players=3, invitees=seed["players"][:1])
        assert exc.value.rule == "participant_count"

    async def test_naive_times_rejected(self, db, seed):
        with pytest.raises(ValidationError) as exc:
            await book(db, seed, start=datetime(2030, 1, 1, 7, 0))
        assert exc.value.rule == "timezone"

    async def test_outside_lots_rejected(self, db, seed):
        with pytest.raises(ValidationError) as exc:
            await book(db, seed, start=at(8, 45))  # would run past 09:00 on a weekday
        assert exc.value.rule == "outside_hours"

    async def test_beyond_horizon_rejected(self, db, seed):
        with pytest.raises(ValidationError) as exc:
            await book(db, seed, start=at(7, day=TUESDAY + timedelta(days=3)))
        assert exc.value.rule == "horizon"

    async def test_lead_time_enforced(self, db, seed):
        with pytest.raises(PolicyError) as exc:
            await create_reservation(
                db,
                creator=seed["creator"],
                court_id=seed["court_a"].id,
                start=at(7),
                end=at(7, 30),
                participant_count=2,
                emails=["player1@nitw.ac.in"],
                now=at(6, 30),
            )
        assert exc.value.rule == "lead_time"

    async def test_blocked_court_rejected(self, db, seed):
        db.add(BlackoutBlock(court=seed["court_a"], lot=Lot.MORNING, start_date=TUESDAY, end_date=TUESDAY))
        await db.commit()
        with pytest.raises(PolicyError) as exc:
            await book(db, seed)
        assert exc.value.rule == "blocked"

    async def test_taken_slot_rejected(self, db, seed, make_reservation):
        await make_reservation(at(7), players=[seed["players"][3], seed["players"][4]])
        with pytest.raises(ConflictError) as exc:
            await book(db, seed, start=at(7, 15))
        assert exc.value.rule == "slot_taken"

    async def test_unregistered_invitee_rejected(self, db, seed):
        with pytest.raises(ValidationError) as exc:
            await create_reservation(
                db,
                creator=seed["creator"],
                court_id=seed["court_a"].id,
                start=at(7),
                end=at(7, 30),
                participant_count=2,
                emails=["ghost@nitw.ac.in"],
                now=NOW,
            )
        assert exc.value.rule == "unregistered"
        assert await count(db, Reservation) == 0

    async def test_lost_race_surfaces_as_conflict(self, db, seed, make_reservation):
        # Another transaction committed the same court start after our pre-check ran
        await make_reservation(at(7), players=[seed["players"][3], seed["players"][4]])
        with patch("courtslot.services.lifecycle.check_court_conflict", new_callable=AsyncMock, return_value=None):
            with pytest.raises(ConflictError) as exc:
                await book(db, seed, creator=seed["players"][1], invitees=[seed["players"][2]])
        assert exc.value.rule == "slot_taken"

        async with async_session_factory() as fresh:
            assert await count(fresh, Reservation) == 1


# ---------------------------------------------------------------------------
# Confirmation
# ---------------------------------------------------------------------------


class TestConfirm:
    async def test_last_confirmation_promotes(self, db, seed):
        reservation = (await book(db, seed)).reservation

        result = await confirm_participant(db, reservation.id, "Player1@nitw.ac.in", now=NOW)
        await db.commit()
        assert result.outcome == ConfirmationOutcome.RESERVATION_CONFIRMED
        assert result.pending_count == 0

        await db.refresh(reservation)
        assert reservation.status == ReservationStatus.CONFIRMED

    async def test_partial_confirmation_keeps_pending(self, db, seed):
        reservation = (await book(db, seed, players=3)).reservation

        result = await confirm_participant(db, reservation.id, "player1@nitw.ac.in", now=NOW)
        assert result.outcome == ConfirmationOutcome.CONFIRMED
        assert result.pending_count == 1

        await db.refresh(reservation)
        assert reservation.status == ReservationStatus.PENDING

    async def test_confirming_twice_is_a_no_op(self, db, seed):
        reservation = (await book(db, seed, players=3)).reservation
        await confirm_participant(db, reservation.id, "player1@nitw.ac.in", now=NOW)
        await db.commit()

        again = await confirm_participant(db, reservation.id, "player1@nitw.ac.in", now=NOW)
        assert again.outcome == ConfirmationOutcome.ALREADY_CONFIRMED
        assert again.pending_count == 1

    async def test_cancelled_reservation_cannot_be_confirmed(self, db, seed, make_reservation):
        reservation = await make_reservation(
            at(7), pending=(seed["players"][0],), status=ReservationStatus.AUTO_CANCELLED
        )
        with pytest.raises(ConflictError) as exc:
            await confirm_participant(db, reservation.id, "player1@nitw.ac.in", now=NOW)
        assert exc.value.rule == "already_cancelled"

    async def test_promotion_losing_to_cutoff(self, db, seed):
        reservation = (await book(db, seed)).reservation
        with patch("courtslot.services.lifecycle.transition", new_callable=AsyncMock, return_value=False):
            with pytest.raises(ConflictError):
                await confirm_participant(db, reservation.id, "player1@nitw.ac.in", now=NOW)

    async def test_stranger_cannot_confirm(self, db, seed):
        reservation = (await book(db, seed)).reservation
        with pytest.raises(NotFoundError):
            await confirm_participant(db, reservation.id, "player5@nitw.ac.in", now=NOW)

    async def test_token_round_trip(self, db, seed):
        reservation = (await book(db, seed)).reservation
        token = create_confirmation_token(reservation.id, "player1@nitw.ac.in")
        result = await confirm_with_token(db, token, now=NOW)
        assert result.outcome == ConfirmationOutcome.RESERVATION_CONFIRMED
        assert result.email == "player1@nitw.ac.in"

    async def test_expired_token_rejected(self, db, seed):
        reservation = (await book(db, seed)).reservation
        token = create_confirmation_token(
            reservation.id, "player1@nitw.ac.in", now=datetime.now(UTC) - timedelta(minutes=61)
        )
        with pytest.raises(ValidationError) as exc:
            await confirm_with_token(db, token, now=NOW)
        assert exc.value.rule == "invalid_token"

    async def test_garbage_token_rejected(self, db, seed):
        with pytest.raises(ValidationError):
            await confirm_with_token(db, "not-a-token", now=NOW)


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------


class TestCancel:
    async def test_participant_cancel_writes_one_record(self, db, seed, make_reservation):
        reservation = await make_reservation(at(7))
        now = reservation.start_at - timedelta(hours=2)

        result = await cancel_by_participant(db, reservation.id, seed["players"][0], now=now)
        await db.commit()

        assert result.notices == []
        assert result.record.reason == "User cancelled"
        assert result.record.display_from == now
        assert result.record.display_to == now + timedelta(minutes=15)
        await db.refresh(reservation)
        assert reservation.status == ReservationStatus.CANCELLED

        with pytest.raises(PolicyError) as exc:
            await cancel_by_participant(db, reservation.id, seed["players"][0], now=now)
        assert exc.value.rule == "already_cancelled"
        assert await count(db, CancellationRecord) == 1

    async def test_cancel_inside_last_hour_refused(self, db, seed, make_reservation):
        reservation = await make_reservation(at(7))
        with pytest.raises(PolicyError) as exc:
            await cancel_by_participant(db, reservation.id, seed["creator"], now=at(6, 0))
        assert exc.value.rule == "cancellation_deadline"
        assert exc.value.message == "Cannot cancel within 1 hour of start time."

    async def test_outsider_cannot_cancel(self, db, seed, make_reservation):
        reservation = await make_reservation(at(7))
        with pytest.raises(NotFoundError) as exc:
            await cancel_by_participant(db, reservation.id, seed["players"][4], now=NOW)
        assert exc.value.message == "Not your booking."

    async def test_admin_cancel_notifies_everyone_once(self, db, seed, make_reservation):
        players = [seed["creator"], *seed["players"][:3]]
        reservation = await make_reservation(at(16), players=players, duration=timedelta(hours=1))

        result = await cancel_by_admin(db, reservation.id, seed["admin"], reason="Maintenance", now=NOW)
        await db.commit()

        [notice] = result.notices
        assert notice.recipients == tuple(u.email for u in players)
        assert "Reason: Maintenance" in notice.body
        assert result.record.reason == "Maintenance"

    async def test_admin_cancel_requires_admin(self, db, seed, make_reservation):
        reservation = await make_reservation(at(16))
        with pytest.raises(PolicyError) as exc:
            await cancel_by_admin(db, reservation.id, seed["creator"], now=NOW)
        assert exc.value.status_code == 403


# ---------------------------------------------------------------------------
# Read models
# ---------------------------------------------------------------------------


async def test_banner_visible_for_fifteen_minutes(db, seed, make_reservation):
    reservation = await make_reservation(at(7))
    now = at(5)
    await cancel_by_participant(db, reservation.id, seed["creator"], now=now)
    await db.commit()

    async with async_session_factory() as fresh:
        [record] = await active_banners(fresh, now=now + timedelta(minutes=5))
        assert banner_message(record) == "Slot 07:00-07:30 at Court 1 was cancelled."
        assert await active_banners(fresh, now=now + timedelta(minutes=15)) == []
        assert await active_banners(fresh, now=now - timedelta(minutes=1)) == []


async def test_my_reservations_newest_first(db, seed, make_reservation):
    early = await make_reservation(at(7))
    late = await make_reservation(at(16))

    mine = await list_my_reservations(db, seed["players"][0])
    assert [r.id for r in mine] == [late.id, early.id]
    assert await list_my_reservations(db, seed["players"][4]) == []
