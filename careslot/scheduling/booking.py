"""
Booking write path: commit, reschedule and status transitions.

Validation reruns the slot generator against current state, then the write
goes through ``BookingRepository``, whose atomic insert/update is what
actually rules out double-booking. Losing that race surfaces as
``SlotConflict``; a slot that was never offered is ``SlotUnavailable``.
Nothing here retries.

Status machine::

    PENDING --accept--> CONFIRMED --start--> IN_PROGRESS --complete--> COMPLETED
    PENDING --reject--> CANCELLED
    any non-terminal --cancel--> CANCELLED
"""

import logging
from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from careslot.scheduling.errors import InvalidState, SlotUnavailable
from careslot.scheduling.intervals import TimeWindow
from careslot.scheduling.slots import generate_slots
from careslot.scheduling.types import (
    Booking,
    BookingStatus,
    SchedulingSettings,
    TERMINAL_BOOKING_STATUSES,
)

logger = logging.getLogger(__name__)

CANCEL_REASON_REQUIRED_STATUSES = frozenset({BookingStatus.CONFIRMED, BookingStatus.IN_PROGRESS})


def local_now(settings: SchedulingSettings) -> datetime:
    try:
        zone = ZoneInfo(settings.timezone)
    except ZoneInfoNotFoundError:
        logger.warning('Unknown timezone %r for practitioner %s, using UTC', settings.timezone, settings.practitioner_id)
        zone = ZoneInfo('UTC')
    return datetime.now(zone).replace(tzinfo=None)


def ensure_slot_available(
    practitioner_id: int,
    day: date,
    window: TimeWindow,
    availability,
    bookings,
    now: Optional[datetime] = None,
    exclude_booking_id: Optional[int] = None,
) -> None:
    settings = availability.get_settings(practitioner_id)
    now = now or local_now(settings)
    if datetime.combine(day, window.start) <= now:
        raise SlotUnavailable('Appointments must be scheduled in the future.')

    slots = generate_slots(practitioner_id, day, availability, bookings, exclude_booking_id=exclude_booking_id)
    match = next((slot for slot in slots if slot.window == window), None)
    if match is None:
        raise SlotUnavailable(f'{day} {window} is not an offered slot for this practitioner.')
    if not match.is_available:
        raise SlotUnavailable(f'{day} {window} is already booked.')


def commit_booking(
    practitioner_id: int,
    patient_id: int,
    day: date,
    window: TimeWindow,
    availability,
    bookings,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Booking:
    if practitioner_id == patient_id:
        raise SlotUnavailable('You cannot book yourself.')

    ensure_slot_available(practitioner_id, day, window, availability, bookings, now=now)

    booking = bookings.try_insert(
        Booking(
            practitioner_id=practitioner_id,
            patient_id=patient_id,
            date=day,
            window=window,
            status=BookingStatus.PENDING,
            notes=notes,
        ),
        changed_by=patient_id,
    )
    logger.info(
        'Booking %s created by patient %s for practitioner %s on %s %s',
        booking.id,
        patient_id,
        practitioner_id,
        day,
        window,
    )
    return booking


def reschedule(
    booking_id: int,
    new_day: date,
    new_window: TimeWindow,
    availability,
    bookings,
    reason: Optional[str] = None,
    actor_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> Booking:
    booking = bookings.get(booking_id)
    if booking.status in TERMINAL_BOOKING_STATUSES:
        raise InvalidState(f'Cannot reschedule booking with status "{booking.status.value}".')

    ensure_slot_available(
        booking.practitioner_id,
        new_day,
        new_window,
        availability,
        bookings,
        now=now,
        exclude_booking_id=booking.id,
    )

    note = f'Rescheduled from {booking.date.isoformat()} {booking.window}'
    if reason:
        note = f'{note}. Reason: {reason}'

    updated = bookings.try_update_slot(booking_id, new_day, new_window, note=note, changed_by=actor_id)
    logger.info(
        'Booking %s rescheduled by user %s from %s %s to %s %s',
        booking_id,
        actor_id,
        booking.date,
        booking.window,
        new_day,
        new_window,
    )
    return updated


def _transition(
    bookings,
    booking_id: int,
    from_statuses,
    to_status: BookingStatus,
    note: Optional[str],
    actor_id: Optional[int],
) -> Booking:
    updated = bookings.try_transition(booking_id, from_statuses, to_status, note=note, changed_by=actor_id)
    logger.info('Booking %s moved to %s by user %s', booking_id, to_status.value, actor_id)
    return updated


def accept(booking_id: int, bookings, actor_id: Optional[int] = None) -> Booking:
    return _transition(
        bookings, booking_id, {BookingStatus.PENDING}, BookingStatus.CONFIRMED, 'Accepted', actor_id
    )


def reject(booking_id: int, bookings, reason: Optional[str] = None, actor_id: Optional[int] = None) -> Booking:
    return _transition(
        bookings, booking_id, {BookingStatus.PENDING}, BookingStatus.CANCELLED, reason or 'Rejected', actor_id
    )


def start(booking_id: int, bookings, actor_id: Optional[int] = None) -> Booking:
    return _transition(
        bookings, booking_id, {BookingStatus.CONFIRMED}, BookingStatus.IN_PROGRESS, 'Visit started', actor_id
    )


def complete(booking_id: int, bookings, actor_id: Optional[int] = None) -> Booking:
    return _transition(
        bookings, booking_id, {BookingStatus.IN_PROGRESS}, BookingStatus.COMPLETED, 'Completed', actor_id
    )


def cancel(booking_id: int, bookings, reason: Optional[str] = None, actor_id: Optional[int] = None) -> Booking:
    booking = bookings.get(booking_id)
    if booking.status in TERMINAL_BOOKING_STATUSES:
        raise InvalidState(f'Cannot cancel booking with status "{booking.status.value}".')
    if booking.status in CANCEL_REASON_REQUIRED_STATUSES and not (reason and reason.strip()):
        raise InvalidState('A cancellation reason is required for confirmed or in-progress bookings.')

    return _transition(
        bookings,
        booking_id,
        {booking.status},
        BookingStatus.CANCELLED,
        f'Cancelled. Reason: {reason.strip()}' if reason and reason.strip() else 'Cancelled',
        actor_id,
    )
