"""Pydantic schemas for API serialisation."""

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from courtslot.models.court import Lot
from courtslot.models.member import PlayPolicy
from courtslot.services.lifecycle import ConfirmationOutcome

# --- Courts ---


class CourtOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    is_active: bool


# --- Availability ---


class SlotOut(BaseModel):
    slot_key: str
    court_id: int
    court_name: str
    start_time: datetime
    end_time: datetime


class SlotsOut(BaseModel):
    slots: list[SlotOut]


# --- Reservations ---


class ReservationCreate(BaseModel):
    court_id: int
    start_time: datetime
    end_time: datetime
    participants: int
    emails: list[str] = Field(default_factory=list)


class ParticipantOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    email: str
    status: str
    confirmed_at: datetime | None


class ReservationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    court: CourtOut
    creator_id: int
    start_at: datetime
    end_at: datetime
    status: str
    reminder_sent: bool
    created_at: datetime
    participants: list[ParticipantOut]


class ConfirmationOut(BaseModel):
    outcome: ConfirmationOutcome
    reservation_id: int
    email: str
    pending_count: int
    message: str


class CancelOut(BaseModel):
    ok: bool = True
    message: str


class AdminCancelRequest(BaseModel):
    reason: str | None = None


class BannerOut(BaseModel):
    message: str
    original_start: datetime
    original_end: datetime


class BannersOut(BaseModel):
    banners: list[BannerOut]


# --- Blocks ---


class BlockCreate(BaseModel):
    court_ids: list[int] = Field(min_length=1)
    lots: list[Lot] = Field(min_length=1)
    start_date: date
    end_date: date
    reason: str | None = None


class BlockOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    court: CourtOut
    lot: Lot
    start_date: date
    end_date: date
    reason: str | None
    created_at: datetime


class BlockCreateOut(BaseModel):
    created: list[BlockOut]
    cancelled_count: int


# --- Audit ---


class CancellationRecordOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    reservation_id: int | None
    original_start: datetime | None
    original_end: datetime | None
    display_from: datetime
    display_to: datetime
    reason: str
    created_at: datetime


# --- Users ---


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: EmailStr
    role: str
    is_banned: bool
    play_policy: PlayPolicy
    last_login_at: datetime | None


class UserUpdate(BaseModel):
    play_policy: PlayPolicy | None = None
    is_banned: bool | None = None


class AdminStatsOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    users: int
    bookings: int
    blocks: int
    audits: int
