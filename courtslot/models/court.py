"""Court and blackout block models.

Court = a bookable badminton court.
BlackoutBlock = an admin-defined date range during which one lot of a court
is unavailable.
"""

import enum
from datetime import date
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, Date, Enum, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from courtslot.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from courtslot.models.member import User


class Lot(enum.StrEnum):
    MORNING = "morning"
    EVENING = "evening"


class Court(TimestampMixin, Base):
    __tablename__ = "courts"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<Court {self.name}>"


class BlackoutBlock(TimestampMixin, Base):
    __tablename__ = "blocks"

    id: Mapped[int] = mapped_column(primary_key=True)
    court_id: Mapped[int] = mapped_column(ForeignKey("courts.id"), nullable=False)
    lot: Mapped[Lot] = mapped_column(
        Enum(Lot, name="lot", values_callable=lambda e: [x.value for x in e]),
        nullable=False,
    )
    # Inclusive on both ends
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    reason: Mapped[str | None] = mapped_column(Text)
    created_by: Mapped[int | None] = mapped_column(ForeignKey("users.id"))

    court: Mapped["Court"] = relationship(lazy="selectin")
    creator: Mapped["User | None"] = relationship(lazy="raise")

    __table_args__ = (Index("ix_blocks_court_lot_dates", "court_id", "lot", "start_date", "end_date"),)

    def covers(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date

    def __repr__(self) -> str:
        return f"<BlackoutBlock court={self.court_id} {self.lot} {self.start_date}..{self.end_date}>"
