from datetime import date, datetime, time

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from careslot.auth.dependencies import get_current_user, require_patient, require_practitioner
from careslot.database import get_db
from careslot.models.user import User
from careslot.routes.errors import database_unavailable, ensure_database_ready, to_http_exception
from careslot.scheduling import booking as booking_service
from careslot.scheduling.errors import SchedulingError
from careslot.scheduling.intervals import TimeWindow
from careslot.scheduling.repositories import AvailabilityRepository, BookingRepository
from careslot.scheduling.types import Booking, BookingStatus

router = APIRouter(tags=['bookings'])

MAX_BOOKING_NOTES_LENGTH = 600
MAX_REASON_LENGTH = 500


def _normalize_optional_text(value: str | None, max_length: int, label: str) -> str | None:
    if value is None:
        return None

    normalized = value.strip()
    if not normalized:
        return None

    if len(normalized) > max_length:
        raise ValueError(f'{label} must be {max_length} characters or fewer.')

    return normalized


class CreateBookingRequest(BaseModel):
    practitioner_id: int
    date: date
    start_time: time
    end_time: time
    notes: str | None = None

    @field_validator('start_time', 'end_time')
    @classmethod
    def truncate_to_minute(cls, value: time) -> time:
        return value.replace(second=0, microsecond=0, tzinfo=None)

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return _normalize_optional_text(value, MAX_BOOKING_NOTES_LENGTH, 'Notes')


class RescheduleBookingRequest(BaseModel):
    date: date
    start_time: time
    end_time: time
    reason: str | None = None

    @field_validator('start_time', 'end_time')
    @classmethod
    def truncate_to_minute(cls, value: time) -> time:
        return value.replace(second=0, microsecond=0, tzinfo=None)

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        return _normalize_optional_text(value, MAX_REASON_LENGTH, 'Reason')


class StatusChangeRequest(BaseModel):
    reason: str | None = None

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        return _normalize_optional_text(value, MAX_REASON_LENGTH, 'Reason')


class BookingResponse(BaseModel):
    id: int
    practitioner_id: int
    patient_id: int
    date: date
    start_time: time
    end_time: time
    status: BookingStatus
    notes: str | None = None


class StatusChangeResponse(BaseModel):
    from_status: BookingStatus | None = None
    to_status: BookingStatus
    changed_by: int | None = None
    note: str | None = None
    created_at: datetime | None = None


def booking_response(booking: Booking) -> BookingResponse:
    return BookingResponse(
        id=booking.id,
        practitioner_id=booking.practitioner_id,
        patient_id=booking.patient_id,
        date=booking.date,
        start_time=booking.window.start,
        end_time=booking.window.end,
        status=booking.status,
        notes=booking.notes,
    )


def get_participant_booking(booking_id: int, current_user: User, bookings: BookingRepository) -> Booking:
    booking = bookings.get(booking_id)
    if current_user.id not in (booking.patient_id, booking.practitioner_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='You are not a participant of this booking.',
        )
    return booking


def get_practitioner_booking(booking_id: int, current_user: User, bookings: BookingRepository) -> Booking:
    booking = bookings.get(booking_id)
    if booking.practitioner_id != current_user.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='Only the practitioner on this booking can change its status.',
        )
    return booking


@router.post('', response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
def create_booking(
    data: CreateBookingRequest,
    current_user: User = Depends(require_patient),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        booking = booking_service.commit_booking(
            data.practitioner_id,
            current_user.id,
            data.date,
            TimeWindow(data.start_time, data.end_time),
            AvailabilityRepository(db),
            BookingRepository(db),
            notes=data.notes,
        )
        return booking_response(booking)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc


@router.get('', response_model=list[BookingResponse])
def list_my_bookings(
    status_filter: BookingStatus | None = Query(default=None, alias='status'),
    upcoming: bool = Query(default=False),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        bookings = BookingRepository(db).list_for_user(
            current_user.id,
            current_user.role,
            status=status_filter,
            upcoming=upcoming,
        )
        return [booking_response(booking) for booking in bookings]
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.get('/{booking_id}', response_model=BookingResponse)
def get_booking(
    booking_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return booking_response(get_participant_booking(booking_id, current_user, BookingRepository(db)))
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.get('/{booking_id}/history', response_model=list[StatusChangeResponse])
def get_booking_history(
    booking_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        bookings = BookingRepository(db)
        get_participant_booking(booking_id, current_user, bookings)
        return [
            StatusChangeResponse(
                from_status=change.from_status,
                to_status=change.to_status,
                changed_by=change.changed_by,
                note=change.note,
                created_at=change.created_at,
            )
            for change in bookings.get_history(booking_id)
        ]
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.patch('/{booking_id}/reschedule', response_model=BookingResponse)
def reschedule_booking(
    booking_id: int,
    data: RescheduleBookingRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        bookings = BookingRepository(db)
        get_participant_booking(booking_id, current_user, bookings)
        booking = booking_service.reschedule(
            booking_id,
            data.date,
            TimeWindow(data.start_time, data.end_time),
            AvailabilityRepository(db),
            bookings,
            reason=data.reason,
            actor_id=current_user.id,
        )
        return booking_response(booking)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc


@router.post('/{booking_id}/accept', response_model=BookingResponse)
def accept_booking(
    booking_id: int,
    current_user: User = Depends(require_practitioner),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        bookings = BookingRepository(db)
        get_practitioner_booking(booking_id, current_user, bookings)
        return booking_response(booking_service.accept(booking_id, bookings, actor_id=current_user.id))
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc


@router.post('/{booking_id}/reject', response_model=BookingResponse)
def reject_booking(
    booking_id: int,
    data: StatusChangeRequest,
    current_user: User = Depends(require_practitioner),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        bookings = BookingRepository(db)
        get_practitioner_booking(booking_id, current_user, bookings)
        return booking_response(
            booking_service.reject(booking_id, bookings, reason=data.reason, actor_id=current_user.id)
        )
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc


@router.post('/{booking_id}/start', response_model=BookingResponse)
def start_booking(
    booking_id: int,
    current_user: User = Depends(require_practitioner),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        bookings = BookingRepository(db)
        get_practitioner_booking(booking_id, current_user, bookings)
        return booking_response(booking_service.start(booking_id, bookings, actor_id=current_user.id))
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc


@router.post('/{booking_id}/complete', response_model=BookingResponse)
def complete_booking(
    booking_id: int,
    current_user: User = Depends(require_practitioner),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        bookings = BookingRepository(db)
        get_practitioner_booking(booking_id, current_user, bookings)
        return booking_response(booking_service.complete(booking_id, bookings, actor_id=current_user.id))
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc


@router.post('/{booking_id}/cancel', response_model=BookingResponse)
def cancel_booking(
    booking_id: int,
    data: StatusChangeRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        bookings = BookingRepository(db)
        get_participant_booking(booking_id, current_user, bookings)
        return booking_response(
            booking_service.cancel(booking_id, bookings, reason=data.reason, actor_id=current_user.id)
        )
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc
