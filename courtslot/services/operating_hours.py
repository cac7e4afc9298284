"""Operating hours and slot generation for court availability.

Pure calculation module: no database, no async, no FastAPI dependencies.

Courts open in two lots a day. The morning lot runs 06:00-09:00 on weekdays
and 06:00-11:00 at weekends; the evening lot runs 16:00-22:00 every day. The
afternoon gap between them is never bookable.
"""

import enum
import math
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from courtslot.core.config import settings
from courtslot.models.court import Lot
from courtslot.services.errors import ValidationError

LOCAL_TZ = ZoneInfo(settings.timezone)

MORNING_OPEN = time(6, 0)
WEEKDAY_MORNING_CLOSE = time(9, 0)
WEEKEND_MORNING_CLOSE = time(11, 0)
EVENING_OPEN = time(16, 0)
EVENING_CLOSE = time(22, 0)

SLOT_STEP = timedelta(minutes=15)
LEAD_TIME = timedelta(hours=1)  # minimum notice to book or cancel
BOOKING_HORIZON_DAYS = 3  # today, tomorrow, day after

MIN_PARTICIPANTS = 2
MAX_PARTICIPANTS = 6


class Window(enum.StrEnum):
    """What a booker asks to see: one lot, or both."""

    MORNING = "morning"
    EVENING = "evening"
    FULL = "full"

    @property
    def lots(self) -> list[Lot]:
        if self is Window.FULL:
            return [Lot.MORNING, Lot.EVENING]
        return [Lot(self.value)]


def is_weekend(day: date) -> bool:
    return day.weekday() >= 5


def lot_bounds(day: date, lot: Lot) -> tuple[time, time]:
    """Wall-clock opening and closing time of a lot on a given date."""
    if lot == Lot.MORNING:
        return MORNING_OPEN, WEEKEND_MORNING_CLOSE if is_weekend(day) else WEEKDAY_MORNING_CLOSE
    return EVENING_OPEN, EVENING_CLOSE


def lot_range(day: date, lot: Lot) -> tuple[datetime, datetime]:
    open_at, close_at = lot_bounds(day, lot)
    return (
        datetime.combine(day, open_at, tzinfo=LOCAL_TZ),
        datetime.combine(day, close_at, tzinfo=LOCAL_TZ),
    )


def window_ranges(day: date, window: Window) -> list[tuple[datetime, datetime]]:
    """Local [open, close) ranges for a window, morning first."""
    return [lot_range(day, lot) for lot in window.lots]


def lot_for_interval(start: datetime, end: datetime) -> Lot | None:
    """The lot whose operating range fully contains [start, end), if any."""
    local_start = start.astimezone(LOCAL_TZ)
    local_end = end.astimezone(LOCAL_TZ)
    for lot in Lot:
        open_at, close_at = lot_range(local_start.date(), lot)
        if open_at <= local_start and local_end <= close_at:
            return lot
    return None


def local_date(moment: datetime) -> date:
    return moment.astimezone(LOCAL_TZ).date()


def day_range(day: date) -> tuple[datetime, datetime]:
    """Local midnight-to-midnight range for a calendar date."""
    start = datetime.combine(day, time(0, 0), tzinfo=LOCAL_TZ)
    return start, datetime.combine(day + timedelta(days=1), time(0, 0), tzinfo=LOCAL_TZ)


def duration_for(participant_count: int, requested_minutes: int | None = None) -> timedelta:
    """Session length for a group.

    2 players choose 15 or 30 minutes (default 30); 3 players get 45; 4-6 get 60.
    """
    if not MIN_PARTICIPANTS <= participant_count <= MAX_PARTICIPANTS:
        raise ValidationError(
            "participant_count",
            f"Participants must be between {MIN_PARTICIPANTS} and {MAX_PARTICIPANTS}.",
        )
    if participant_count == 2:
        if requested_minutes is None:
            return timedelta(minutes=30)
        if requested_minutes not in (15, 30):
            raise ValidationError("duration", "Two-player sessions last 15 or 30 minutes.")
        return timedelta(minutes=requested_minutes)
    if participant_count == 3:
        return timedelta(minutes=45)
    return timedelta(minutes=60)


def check_horizon(day: date, now: datetime) -> None:
    """Bookings are only open for today, tomorrow, and the day after."""
    offset = (day - local_date(now)).days
    if offset < 0 or offset >= BOOKING_HORIZON_DAYS:
        raise ValidationError(
            "horizon",
            "You can only book for today, tomorrow, or the day after tomorrow.",
        )


def days_remaining(delta: timedelta) -> int:
    """Whole days left in a positive timedelta, rounded up."""
    return math.ceil(delta / timedelta(days=1))


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Strict half-open interval overlap; touching intervals do not overlap."""
    return a_start < b_end and a_end > b_start


def generate_slots(
    ranges: list[tuple[datetime, datetime]],
    busy_intervals: list[tuple[datetime, datetime]],
    duration: timedelta,
    now: datetime,
) -> list[tuple[datetime, datetime]]:
    """Enumerate free [start, end) candidates inside each range.

    Candidates step forward by SLOT_STEP from each range's opening time and
    must end by its closing time. A candidate is dropped if it starts less
    than LEAD_TIME from now or overlaps any busy interval. Ranges are swept
    independently and concatenated in the order given.
    """
    earliest = now + LEAD_TIME
    slots: list[tuple[datetime, datetime]] = []

    for open_at, close_at in ranges:
        current = open_at
        while current + duration <= close_at:
            slot_end = current + duration
            is_too_soon = current < earliest
            has_conflict = any(overlaps(b_start, b_end, current, slot_end) for b_start, b_end in busy_intervals)
            if not is_too_soon and not has_conflict:
                slots.append((current, slot_end))
            current += SLOT_STEP

    return slots
