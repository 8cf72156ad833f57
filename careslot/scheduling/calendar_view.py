"""Month view: per-day slot counts built from the same pipeline as ``generate_slots``."""

import calendar
from datetime import date
from typing import Dict

from careslot.core import config
from careslot.scheduling.slots import build_day_slots, iterate_days
from careslot.scheduling.types import CalendarDay


def month_bounds(year: int, month: int) -> tuple[date, date]:
    if not 1 <= month <= 12:
        raise ValueError('month must be between 1 and 12.')
    if not config.CALENDAR_MIN_YEAR <= year <= config.CALENDAR_MAX_YEAR:
        raise ValueError(f'year must be between {config.CALENDAR_MIN_YEAR} and {config.CALENDAR_MAX_YEAR}.')
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)


def get_calendar(
    practitioner_id: int,
    year: int,
    month: int,
    availability,
    bookings,
) -> Dict[date, CalendarDay]:
    first_day, last_day = month_bounds(year, month)

    # Load the month once; each day is then a pure projection.
    settings = availability.get_settings(practitioner_id)
    rules = availability.get_weekly_rules(practitioner_id)
    blackouts = availability.get_blackouts(practitioner_id, first_day, last_day)
    existing = bookings.get_bookings_in_range(practitioner_id, first_day, last_day)
    full_day_blackouts = {blackout.date for blackout in blackouts if blackout.is_full_day}

    result: Dict[date, CalendarDay] = {}
    for day in iterate_days(first_day, last_day):
        slots = build_day_slots(day, rules, blackouts, existing, settings)
        result[day] = CalendarDay(
            date=day,
            available_slot_count=sum(1 for slot in slots if slot.is_available),
            total_slot_count=len(slots),
            is_blackout=day in full_day_blackouts,
        )
    return result
