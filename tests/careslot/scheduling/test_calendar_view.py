from datetime import date, time

import pytest

from careslot.models.availability import PractitionerBlackout
from careslot.models.booking import BookingRecord
from careslot.scheduling.calendar_view import get_calendar, month_bounds
from careslot.scheduling.errors import NotFound
from careslot.scheduling.repositories import AvailabilityRepository, BookingRepository
from careslot.scheduling.slots import generate_slots


@pytest.fixture
def busy_january(db, practitioner, patient, monday_morning):
    db.add_all(
        [
            PractitionerBlackout(practitioner_id=practitioner.id, date=date(2030, 1, 14), reason='Leave'),
            PractitionerBlackout(
                practitioner_id=practitioner.id,
                date=date(2030, 1, 21),
                start_time=time(10, 0),
                end_time=time(11, 0),
            ),
            BookingRecord(
                practitioner_id=practitioner.id,
                patient_id=patient.id,
                date=date(2030, 1, 28),
                start_time=time(9, 0),
                end_time=time(9, 30),
                status='CONFIRMED',
            ),
            BookingRecord(
                practitioner_id=practitioner.id,
                patient_id=patient.id,
                date=date(2030, 1, 28),
                start_time=time(9, 30),
                end_time=time(10, 0),
                status='CANCELLED',
            ),
        ]
    )
    db.commit()


def test_month_bounds_covers_whole_month() -> None:
    assert month_bounds(2030, 2) == (date(2030, 2, 1), date(2030, 2, 28))
    assert month_bounds(2032, 2) == (date(2032, 2, 1), date(2032, 2, 29))


@pytest.mark.parametrize(('year', 'month'), [(2030, 0), (2030, 13), (1999, 5)])
def test_month_bounds_rejects_invalid_months(year: int, month: int) -> None:
    with pytest.raises(ValueError):
        month_bounds(year, month)


def test_calendar_counts_slots_per_day(db, practitioner, busy_january) -> None:
    days = get_calendar(practitioner.id, 2030, 1, AvailabilityRepository(db), BookingRepository(db))

    assert list(days) == [date(2030, 1, day) for day in range(1, 32)]
    assert days[date(2030, 1, 7)].available_slot_count == 6
    assert days[date(2030, 1, 8)].total_slot_count == 0

    blacked_out = days[date(2030, 1, 14)]
    assert blacked_out.is_blackout
    assert blacked_out.available_slot_count == 0

    partial = days[date(2030, 1, 21)]
    assert not partial.is_blackout
    assert partial.available_slot_count == 4

    booked = days[date(2030, 1, 28)]
    assert booked.total_slot_count == 6
    assert booked.available_slot_count == 5


def test_calendar_matches_per_day_generation(db, practitioner, busy_january) -> None:
    availability = AvailabilityRepository(db)
    bookings = BookingRepository(db)

    days = get_calendar(practitioner.id, 2030, 1, availability, bookings)

    for day, summary in days.items():
        slots = generate_slots(practitioner.id, day, availability, bookings)
        assert summary.available_slot_count == sum(1 for slot in slots if slot.is_available)
        assert summary.total_slot_count == len(slots)


def test_calendar_for_unknown_practitioner_raises_not_found(db) -> None:
    with pytest.raises(NotFound):
        get_calendar(404, 2030, 1, AvailabilityRepository(db), BookingRepository(db))
