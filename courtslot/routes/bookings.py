"""Booking routes: suggest, create, confirm, list, cancel, banners.

Handlers stay thin: the lifecycle service does the work and returns the
notices owed, which are sent only after the transaction commits.
"""

from datetime import date

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from courtslot.core.database import get_db
from courtslot.core.dependencies import get_current_user
from courtslot.models.member import User
from courtslot.schemas import (
    BannerOut,
    BannersOut,
    CancelOut,
    ConfirmationOut,
    ReservationCreate,
    ReservationOut,
    SlotOut,
    SlotsOut,
)
from courtslot.services.availability import list_available_slots
from courtslot.services.email import deliver
from courtslot.services.lifecycle import (
    ConfirmationOutcome,
    active_banners,
    banner_message,
    cancel_by_participant,
    confirm_with_token,
    create_reservation,
    list_my_reservations,
)
from courtslot.services.operating_hours import Window

router = APIRouter(prefix="/bookings", tags=["bookings"])

_CONFIRMATION_MESSAGES = {
    ConfirmationOutcome.CONFIRMED: "Your participation has been confirmed. Waiting for the remaining participant(s).",
    ConfirmationOutcome.RESERVATION_CONFIRMED: "All participants have confirmed. The booking is now active.",
    ConfirmationOutcome.ALREADY_CONFIRMED: "Your confirmation was already recorded earlier.",
}


@router.get("/suggest", response_model=SlotsOut)
async def suggest_slots(
    query_date: date = Query(..., alias="date", description="Date in YYYY-MM-DD format"),
    window: Window = Query(Window.FULL),
    participants: int = Query(2),
    duration: int | None = Query(None, description="15 or 30, two-player bookings only"),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    slots = await list_available_slots(db, query_date, window, participants, duration)
    return SlotsOut(
        slots=[
            SlotOut(
                slot_key=s.slot_key,
                court_id=s.court_id,
                court_name=s.court_name,
                start_time=s.start,
                end_time=s.end,
            )
            for s in slots
        ]
    )


@router.post("", response_model=ReservationOut, status_code=status.HTTP_201_CREATED)
async def create_booking(
    body: ReservationCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await create_reservation(
        db,
        creator=user,
        court_id=body.court_id,
        start=body.start_time,
        end=body.end_time,
        participant_count=body.participants,
        emails=body.emails,
    )
    await db.commit()
    await deliver(result.notices)
    return result.reservation


@router.get("/confirm/{token}", response_model=ConfirmationOut)
async def confirm_booking(token: str, db: AsyncSession = Depends(get_db)):
    result = await confirm_with_token(db, token)
    await db.commit()
    return ConfirmationOut(
        outcome=result.outcome,
        reservation_id=result.reservation_id,
        email=result.email,
        pending_count=result.pending_count,
        message=_CONFIRMATION_MESSAGES[result.outcome],
    )


@router.get("/mine", response_model=list[ReservationOut])
async def list_my_bookings(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await list_my_reservations(db, user)


@router.post("/{reservation_id}/cancel", response_model=CancelOut)
async def cancel_booking(
    reservation_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await cancel_by_participant(db, reservation_id, user)
    await db.commit()
    return CancelOut(message="Booking cancelled successfully.")


@router.get("/cancellations", response_model=BannersOut)
async def list_cancellation_banners(db: AsyncSession = Depends(get_db)):
    records = await active_banners(db)
    return BannersOut(
        banners=[
            BannerOut(message=banner_message(r), original_start=r.original_start, original_end=r.original_end)
            for r in records
        ]
    )
