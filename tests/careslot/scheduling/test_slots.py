from datetime import date, time

import pytest

from careslot.scheduling.intervals import TimeWindow
from careslot.scheduling.repositories import AvailabilityRepository, BookingRepository
from careslot.scheduling.slots import build_day_slots, generate_slots, generate_slots_for_range
from careslot.scheduling.types import (
    Blackout,
    Booking,
    BookingStatus,
    DayOfWeek,
    SchedulingSettings,
    WeeklyAvailabilityRule,
)

PRACTITIONER_ID = 7
MONDAY = date(2030, 1, 7)
TUESDAY = date(2030, 1, 8)


def window(start: str, end: str) -> TimeWindow:
    return TimeWindow(time.fromisoformat(start), time.fromisoformat(end))


def rule(start: str, end: str, day_of_week: DayOfWeek = DayOfWeek.MONDAY, active: bool = True):
    return WeeklyAvailabilityRule(
        practitioner_id=PRACTITIONER_ID,
        day_of_week=day_of_week,
        window=window(start, end),
        active=active,
    )


def settings(duration: int = 30, buffer: int = 0) -> SchedulingSettings:
    return SchedulingSettings(practitioner_id=PRACTITIONER_ID, slot_duration_minutes=duration, buffer_minutes=buffer)


def booking(start: str, end: str, status: BookingStatus = BookingStatus.CONFIRMED, booking_id: int = 1) -> Booking:
    return Booking(
        id=booking_id,
        practitioner_id=PRACTITIONER_ID,
        patient_id=99,
        date=MONDAY,
        window=window(start, end),
        status=status,
    )


def labels(slots) -> list[str]:
    return [str(slot.window) for slot in slots]


def test_day_without_matching_rule_has_no_slots() -> None:
    assert build_day_slots(TUESDAY, [rule('09:00', '12:00')], [], [], settings()) == []


def test_inactive_rules_are_ignored() -> None:
    assert build_day_slots(MONDAY, [rule('09:00', '12:00', active=False)], [], [], settings()) == []


def test_full_day_blackout_empties_the_day() -> None:
    blackouts = [Blackout(practitioner_id=PRACTITIONER_ID, date=MONDAY, reason='Conference')]

    assert build_day_slots(MONDAY, [rule('09:00', '12:00')], blackouts, [], settings()) == []


def test_partial_blackout_is_carved_out_of_availability() -> None:
    blackouts = [Blackout(practitioner_id=PRACTITIONER_ID, date=MONDAY, window=window('10:00', '11:00'))]

    slots = build_day_slots(MONDAY, [rule('09:00', '12:00')], blackouts, [], settings())

    assert labels(slots) == ['09:00-09:30', '09:30-10:00', '11:00-11:30', '11:30-12:00']
    assert all(slot.is_available for slot in slots)


def test_blackout_on_another_date_has_no_effect() -> None:
    blackouts = [Blackout(practitioner_id=PRACTITIONER_ID, date=date(2030, 1, 14))]

    assert len(build_day_slots(MONDAY, [rule('09:00', '10:00')], blackouts, [], settings())) == 2


def test_buffer_spaces_consecutive_slots() -> None:
    slots = build_day_slots(MONDAY, [rule('09:00', '10:30')], [], [], settings(duration=30, buffer=15))

    assert labels(slots) == ['09:00-09:30', '09:45-10:15']


def test_remainder_shorter_than_a_slot_is_dropped() -> None:
    slots = build_day_slots(MONDAY, [rule('09:00', '10:20')], [], [], settings(duration=30))

    assert labels(slots) == ['09:00-09:30', '09:30-10:00']


def test_overlapping_rules_are_merged_before_cutting() -> None:
    rules = [rule('13:00', '14:00'), rule('09:00', '10:00'), rule('09:30', '10:30')]

    slots = build_day_slots(MONDAY, rules, [], [], settings(duration=30))

    assert labels(slots) == ['09:00-09:30', '09:30-10:00', '10:00-10:30', '13:00-13:30', '13:30-14:00']


def test_booked_slot_is_flagged_not_removed() -> None:
    slots = build_day_slots(MONDAY, [rule('09:00', '10:30')], [], [booking('09:30', '10:00')], settings())

    assert labels(slots) == ['09:00-09:30', '09:30-10:00', '10:00-10:30']
    assert [slot.is_available for slot in slots] == [True, False, True]


def test_cancelled_booking_does_not_block_its_slot() -> None:
    existing = [booking('09:30', '10:00', status=BookingStatus.CANCELLED)]

    slots = build_day_slots(MONDAY, [rule('09:00', '10:30')], [], existing, settings())

    assert all(slot.is_available for slot in slots)


def test_booking_spanning_two_slots_flags_both() -> None:
    slots = build_day_slots(MONDAY, [rule('09:00', '10:30')], [], [booking('09:15', '09:45')], settings())

    assert [slot.is_available for slot in slots] == [False, False, True]


def test_excluded_booking_does_not_flag_its_own_slot() -> None:
    existing = [booking('09:30', '10:00', booking_id=42)]

    slots = build_day_slots(MONDAY, [rule('09:00', '10:30')], [], existing, settings(), exclude_booking_id=42)

    assert all(slot.is_available for slot in slots)


def test_generation_is_deterministic() -> None:
    rules = [rule('14:00', '16:00'), rule('09:00', '12:00')]
    blackouts = [Blackout(practitioner_id=PRACTITIONER_ID, date=MONDAY, window=window('10:15', '10:45'))]
    existing = [booking('14:30', '15:00')]

    first = build_day_slots(MONDAY, rules, blackouts, existing, settings(duration=20, buffer=10))
    second = build_day_slots(MONDAY, list(reversed(rules)), blackouts, existing, settings(duration=20, buffer=10))

    assert first == second
    assert [slot.window.start for slot in first] == sorted(slot.window.start for slot in first)


def test_generate_slots_reads_through_repositories(db, practitioner, monday_morning) -> None:
    slots = generate_slots(practitioner.id, MONDAY, AvailabilityRepository(db), BookingRepository(db))

    assert labels(slots) == [
        '09:00-09:30',
        '09:30-10:00',
        '10:00-10:30',
        '10:30-11:00',
        '11:00-11:30',
        '11:30-12:00',
    ]


def test_generate_slots_uses_default_settings_when_none_saved(db, practitioner) -> None:
    AvailabilityRepository(db).create_rule(
        WeeklyAvailabilityRule(practitioner_id=practitioner.id, day_of_week=DayOfWeek.MONDAY, window=window('09:00', '10:00'))
    )

    slots = generate_slots(practitioner.id, MONDAY, AvailabilityRepository(db), BookingRepository(db))

    assert labels(slots) == ['09:00-09:30', '09:30-10:00']


def test_generate_slots_for_range_returns_every_day(db, practitioner, monday_morning) -> None:
    days = generate_slots_for_range(
        practitioner.id,
        MONDAY,
        date(2030, 1, 14),
        AvailabilityRepository(db),
        BookingRepository(db),
    )

    assert [day.date for day in days] == [date(2030, 1, day) for day in range(7, 15)]
    assert [len(day.slots) for day in days] == [6, 0, 0, 0, 0, 0, 0, 6]


@pytest.mark.parametrize(
    ('start', 'end'),
    [
        (date(2030, 1, 8), date(2030, 1, 7)),
        (date(2030, 1, 1), date(2030, 3, 1)),
    ],
)
def test_generate_slots_for_range_rejects_bad_ranges(db, practitioner, start: date, end: date) -> None:
    with pytest.raises(ValueError):
        generate_slots_for_range(practitioner.id, start, end, AvailabilityRepository(db), BookingRepository(db))


def test_window_cannot_reach_midnight() -> None:
    slots = build_day_slots(MONDAY, [rule('23:00', '23:59')], [], [], settings(duration=30))

    assert labels(slots) == ['23:00-23:30']
