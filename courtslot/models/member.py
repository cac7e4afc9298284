"""User model.

Identity itself (OAuth, sessions) belongs to the identity provider. This row
holds only what booking rules need: role, ban flag and cooldown policy.
"""

import enum
from datetime import datetime, timedelta

from sqlalchemy import Boolean, Enum, String
from sqlalchemy.orm import Mapped, mapped_column

from courtslot.models.base import Base, TimestampMixin, UTCDateTime


class UserRole(enum.StrEnum):
    USER = "user"
    ADMIN = "admin"


class PlayPolicy(enum.StrEnum):
    """Minimum gap between the start of a user's last active reservation and a new one."""

    ONE_DAY = "1d"
    TWO_DAYS = "2d"
    THREE_DAYS = "3d"

    @property
    def days(self) -> int:
        return int(self.value[:-1])

    @property
    def cooldown(self) -> timedelta:
        return timedelta(days=self.days)


class User(TimestampMixin, Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True)
    email: Mapped[str] = mapped_column(String(254), unique=True, nullable=False, index=True)
    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole, name="user_role", values_callable=lambda e: [x.value for x in e]),
        default=UserRole.USER,
        nullable=False,
    )
    is_banned: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    play_policy: Mapped[PlayPolicy] = mapped_column(
        Enum(PlayPolicy, name="play_policy", values_callable=lambda e: [x.value for x in e]),
        default=PlayPolicy.THREE_DAYS,
        nullable=False,
    )
    last_login_at: Mapped[datetime | None] = mapped_column(UTCDateTime)

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    def __repr__(self) -> str:
        return f"<User {self.email}>"
