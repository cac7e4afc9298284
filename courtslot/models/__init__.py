"""All models imported here so Base.metadata sees every table."""

from courtslot.models.base import Base
from courtslot.models.booking import (
    CancellationRecord,
    Participant,
    ParticipantStatus,
    Reservation,
    ReservationStatus,
)
from courtslot.models.court import BlackoutBlock, Court, Lot
from courtslot.models.member import PlayPolicy, User, UserRole

__all__ = [
    "Base",
    "Court",
    "BlackoutBlock",
    "Lot",
    "User",
    "UserRole",
    "PlayPolicy",
    "Reservation",
    "ReservationStatus",
    "Participant",
    "ParticipantStatus",
    "CancellationRecord",
]
