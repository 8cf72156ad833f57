"""
Slot generation: turn weekly availability, blackouts and bookings into the
ordered list of bookable slots for a date.

The pipeline is merge -> subtract -> cut -> flag:

1. Merge the active weekly windows for the date's weekday.
2. A full-day blackout empties the day; partial blackouts are carved out.
3. Each surviving window is cut into ``slot_duration_minutes`` slots, stepping
   by ``slot_duration_minutes + buffer_minutes``. Remainders are dropped.
4. Slots overlapping a non-cancelled booking are flagged unavailable but kept.

``build_day_slots`` is pure; ``generate_slots`` loads its inputs through the
repositories.
"""

from datetime import date, timedelta
from typing import Iterable, List, Optional

from careslot.core import config
from careslot.scheduling.intervals import TimeWindow, merge, overlaps, subtract_all
from careslot.scheduling.types import (
    Blackout,
    Booking,
    DayOfWeek,
    DaySlots,
    SchedulingSettings,
    Slot,
    WeeklyAvailabilityRule,
)


def available_windows(
    day: date,
    rules: Iterable[WeeklyAvailabilityRule],
    blackouts: Iterable[Blackout],
) -> List[TimeWindow]:
    """Merged availability for ``day`` with blackouts removed."""
    day_of_week = DayOfWeek.from_date(day)
    windows = merge(rule.window for rule in rules if rule.active and rule.day_of_week == day_of_week)

    for blackout in blackouts:
        if blackout.date != day:
            continue
        if blackout.is_full_day:
            return []
        windows = subtract_all(windows, blackout.window)

    return windows


def cut_window(window: TimeWindow, settings: SchedulingSettings) -> List[TimeWindow]:
    slots: List[TimeWindow] = []
    start = window.start_minutes
    while start + settings.slot_duration_minutes <= window.end_minutes:
        slots.append(TimeWindow.from_minutes(start, start + settings.slot_duration_minutes))
        start += settings.step_minutes
    return slots


def build_day_slots(
    day: date,
    rules: Iterable[WeeklyAvailabilityRule],
    blackouts: Iterable[Blackout],
    bookings: Iterable[Booking],
    settings: SchedulingSettings,
    exclude_booking_id: Optional[int] = None,
) -> List[Slot]:
    occupied = [
        booking.window
        for booking in bookings
        if booking.date == day
        and booking.occupies_slot
        and (exclude_booking_id is None or booking.id != exclude_booking_id)
    ]

    slots: List[Slot] = []
    for window in available_windows(day, rules, blackouts):
        for slot_window in cut_window(window, settings):
            is_available = not any(overlaps(slot_window, taken) for taken in occupied)
            slots.append(Slot(window=slot_window, is_available=is_available))

    slots.sort(key=lambda slot: slot.window)
    return slots


def generate_slots(
    practitioner_id: int,
    day: date,
    availability,
    bookings,
    exclude_booking_id: Optional[int] = None,
) -> List[Slot]:
    settings = availability.get_settings(practitioner_id)
    return build_day_slots(
        day,
        availability.get_weekly_rules(practitioner_id),
        availability.get_blackouts(practitioner_id, day, day),
        bookings.get_bookings(practitioner_id, day),
        settings,
        exclude_booking_id=exclude_booking_id,
    )


def iterate_days(start: date, end: date):
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def generate_slots_for_range(
    practitioner_id: int,
    start: date,
    end: date,
    availability,
    bookings,
) -> List[DaySlots]:
    if start > end:
        raise ValueError('start_date must be on or before end_date.')
    if (end - start).days + 1 > config.MAX_SLOT_RANGE_DAYS:
        raise ValueError(f'Date range cannot exceed {config.MAX_SLOT_RANGE_DAYS} days.')

    settings = availability.get_settings(practitioner_id)
    rules = availability.get_weekly_rules(practitioner_id)
    blackouts = availability.get_blackouts(practitioner_id, start, end)
    existing = bookings.get_bookings_in_range(practitioner_id, start, end)

    return [
        DaySlots(date=day, slots=build_day_slots(day, rules, blackouts, existing, settings))
        for day in iterate_days(start, end)
    ]
