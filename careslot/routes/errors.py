import logging

from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError

from careslot.database import ensure_availability_schema, ensure_booking_schema
from careslot.scheduling.errors import (
    InvalidState,
    InvalidWindow,
    NotFound,
    PermissionDenied,
    SchedulingError,
    SlotConflict,
    SlotUnavailable,
)

logger = logging.getLogger(__name__)

DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable.'

ERROR_STATUS_CODES = (
    (InvalidWindow, status.HTTP_400_BAD_REQUEST),
    (SlotUnavailable, status.HTTP_400_BAD_REQUEST),
    (SlotConflict, status.HTTP_409_CONFLICT),
    (NotFound, status.HTTP_404_NOT_FOUND),
    (InvalidState, status.HTTP_400_BAD_REQUEST),
    (PermissionDenied, status.HTTP_403_FORBIDDEN),
)


def to_http_exception(exc: SchedulingError) -> HTTPException:
    status_code = next(
        (code for error_type, code in ERROR_STATUS_CODES if isinstance(exc, error_type)),
        status.HTTP_400_BAD_REQUEST,
    )
    return HTTPException(status_code=status_code, detail={'code': exc.code, 'message': exc.message})


def bad_request(message: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail={'code': 'bad_request', 'message': message})


def database_unavailable(exc: SQLAlchemyError) -> HTTPException:
    logger.exception('Database error while handling scheduling request', exc_info=exc)
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=DATABASE_UNAVAILABLE_DETAIL)


def ensure_database_ready() -> None:
    try:
        ensure_availability_schema()
        ensure_booking_schema()
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc
