"""Reservation, participant and cancellation record models.

A reservation holds a court for a group of registered players over
[start_at, end_at). It is the unit of transactional consistency: its
participant rows, its cancellation record and its status change commit
together.
"""

import enum
from datetime import datetime

from sqlalchemy import (
    DDL,
    Boolean,
    Enum,
    ForeignKey,
    Index,
    String,
    Text,
    event,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from courtslot.models.base import Base, TimestampMixin, UTCDateTime, utcnow
from courtslot.models.court import Court
from courtslot.models.member import User


class ReservationStatus(enum.StrEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    AUTO_CANCELLED = "auto-cancelled"


class ParticipantStatus(enum.StrEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"


# Statuses that keep a court interval busy. Auto-cancelled rows stay here so a
# slot that just failed confirmation is not re-offered straight away.
OCCUPYING_STATUSES = (
    ReservationStatus.PENDING,
    ReservationStatus.CONFIRMED,
    ReservationStatus.AUTO_CANCELLED,
)
# Statuses a user or admin may still cancel, and that count as "holding" a player
ACTIVE_STATUSES = (ReservationStatus.PENDING, ReservationStatus.CONFIRMED)
TERMINAL_STATUSES = (ReservationStatus.CANCELLED, ReservationStatus.AUTO_CANCELLED)
# Statuses that start a player's cooldown
COOLDOWN_STATUSES = (ReservationStatus.CONFIRMED, ReservationStatus.AUTO_CANCELLED)

_OCCUPYING_SQL = "status IN ('pending', 'confirmed', 'auto-cancelled')"


class Reservation(TimestampMixin, Base):
    __tablename__ = "reservations"

    id: Mapped[int] = mapped_column(primary_key=True)
    court_id: Mapped[int] = mapped_column(ForeignKey("courts.id"), nullable=False)
    creator_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)

    start_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    end_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    status: Mapped[ReservationStatus] = mapped_column(
        Enum(ReservationStatus, name="reservation_status", values_callable=lambda e: [x.value for x in e]),
        default=ReservationStatus.PENDING,
        nullable=False,
    )
    reminder_sent: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    court: Mapped["Court"] = relationship(lazy="selectin")
    creator: Mapped["User"] = relationship(lazy="selectin")
    participants: Mapped[list["Participant"]] = relationship(
        back_populates="reservation",
        lazy="selectin",
        order_by="Participant.id",
    )

    __table_args__ = (
        # Two occupying reservations can never share a court start time.
        # Postgres additionally gets an exclusion constraint over the whole
        # interval (see the DDL hooks below).
        Index(
            "ix_reservations_no_double",
            "court_id",
            "start_at",
            unique=True,
            postgresql_where=text(_OCCUPYING_SQL),
            sqlite_where=text(_OCCUPYING_SQL),
        ),
        Index("ix_reservations_court_start", "court_id", "start_at"),
        Index("ix_reservations_status_start", "status", "start_at"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def emails(self) -> list[str]:
        return [p.email for p in self.participants]

    def __repr__(self) -> str:
        return f"<Reservation {self.id} court={self.court_id} {self.start_at:%Y-%m-%d %H:%M} {self.status}>"


event.listen(
    Reservation.__table__,
    "before_create",
    DDL("CREATE EXTENSION IF NOT EXISTS btree_gist").execute_if(dialect="postgresql"),
)
event.listen(
    Reservation.__table__,
    "after_create",
    DDL(
        "ALTER TABLE reservations ADD CONSTRAINT ex_reservations_no_overlap "
        "EXCLUDE USING gist (court_id WITH =, tstzrange(start_at, end_at, '[)') WITH &&) "
        f"WHERE ({_OCCUPYING_SQL})"
    ).execute_if(dialect="postgresql"),
)


class Participant(Base):
    __tablename__ = "reservation_participants"

    id: Mapped[int] = mapped_column(primary_key=True)
    reservation_id: Mapped[int] = mapped_column(ForeignKey("reservations.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"))
    email: Mapped[str] = mapped_column(String(254), nullable=False)
    status: Mapped[ParticipantStatus] = mapped_column(
        Enum(ParticipantStatus, name="participant_status", values_callable=lambda e: [x.value for x in e]),
        default=ParticipantStatus.PENDING,
        nullable=False,
    )
    confirmed_at: Mapped[datetime | None] = mapped_column(UTCDateTime)

    reservation: Mapped["Reservation"] = relationship(back_populates="participants")

    __table_args__ = (
        Index("ix_participants_reservation_email", "reservation_id", "email", unique=True),
        Index("ix_participants_user", "user_id"),
    )

    def __repr__(self) -> str:
        return f"<Participant {self.email} {self.status} reservation={self.reservation_id}>"


class CancellationRecord(Base):
    """Append-only audit entry, also surfaced as a banner while display_from <= now < display_to."""

    __tablename__ = "cancellation_records"

    id: Mapped[int] = mapped_column(primary_key=True)
    reservation_id: Mapped[int | None] = mapped_column(ForeignKey("reservations.id"))
    original_start: Mapped[datetime | None] = mapped_column(UTCDateTime)
    original_end: Mapped[datetime | None] = mapped_column(UTCDateTime)
    display_from: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    display_to: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    reservation: Mapped["Reservation | None"] = relationship(lazy="selectin")

    __table_args__ = (Index("ix_cancellations_display", "display_from", "display_to"),)

    def __repr__(self) -> str:
        return f"<CancellationRecord reservation={self.reservation_id} {self.reason!r}>"
