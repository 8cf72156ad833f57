"""
Domain values passed between the repositories and the scheduling engine.

These are plain frozen dataclasses so the slot pipeline can be exercised
without a database.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import List, Optional

from careslot.scheduling.errors import InvalidWindow
from careslot.scheduling.intervals import TimeWindow


class DayOfWeek(str, Enum):
    MONDAY = 'MONDAY'
    TUESDAY = 'TUESDAY'
    WEDNESDAY = 'WEDNESDAY'
    THURSDAY = 'THURSDAY'
    FRIDAY = 'FRIDAY'
    SATURDAY = 'SATURDAY'
    SUNDAY = 'SUNDAY'

    @classmethod
    def from_date(cls, day: date) -> "DayOfWeek":
        return list(cls)[day.weekday()]


class BookingStatus(str, Enum):
    PENDING = 'PENDING'
    CONFIRMED = 'CONFIRMED'
    IN_PROGRESS = 'IN_PROGRESS'
    COMPLETED = 'COMPLETED'
    CANCELLED = 'CANCELLED'


# Every status except CANCELLED holds its slot.
OCCUPYING_BOOKING_STATUSES = frozenset(
    {BookingStatus.PENDING, BookingStatus.CONFIRMED, BookingStatus.IN_PROGRESS, BookingStatus.COMPLETED}
)
TERMINAL_BOOKING_STATUSES = frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED})


@dataclass(frozen=True)
class WeeklyAvailabilityRule:
    practitioner_id: int
    day_of_week: DayOfWeek
    window: TimeWindow
    active: bool = True
    id: Optional[int] = None


@dataclass(frozen=True)
class Blackout:
    """A blocked date, or a blocked window on that date when ``window`` is set."""
    practitioner_id: int
    date: date
    window: Optional[TimeWindow] = None
    reason: Optional[str] = None
    id: Optional[int] = None

    @property
    def is_full_day(self) -> bool:
        return self.window is None


@dataclass(frozen=True)
class Booking:
    practitioner_id: int
    patient_id: int
    date: date
    window: TimeWindow
    status: BookingStatus = BookingStatus.PENDING
    notes: Optional[str] = None
    id: Optional[int] = None

    @property
    def occupies_slot(self) -> bool:
        return self.status != BookingStatus.CANCELLED


@dataclass(frozen=True)
class SchedulingSettings:
    practitioner_id: int
    slot_duration_minutes: int = 30
    buffer_minutes: int = 0
    timezone: str = 'UTC'

    def __post_init__(self):
        if self.slot_duration_minutes <= 0:
            raise InvalidWindow('Slot duration must be a positive number of minutes')
        if self.buffer_minutes < 0:
            raise InvalidWindow('Buffer must not be negative')

    @property
    def step_minutes(self) -> int:
        return self.slot_duration_minutes + self.buffer_minutes


@dataclass(frozen=True)
class Slot:
    window: TimeWindow
    is_available: bool = True

    @property
    def start_time(self):
        return self.window.start

    @property
    def end_time(self):
        return self.window.end


@dataclass(frozen=True)
class DaySlots:
    date: date
    slots: List[Slot] = field(default_factory=list)


@dataclass(frozen=True)
class CalendarDay:
    date: date
    available_slot_count: int
    total_slot_count: int
    is_blackout: bool


@dataclass(frozen=True)
class StatusChange:
    booking_id: int
    from_status: Optional[BookingStatus]
    to_status: BookingStatus
    changed_by: Optional[int] = None
    note: Optional[str] = None
    created_at: Optional[datetime] = None
