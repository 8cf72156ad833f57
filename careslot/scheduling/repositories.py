"""
SQLAlchemy repositories behind the scheduling engine.

Reads return domain values from ``careslot.scheduling.types``. Writes commit
their own transaction; the booking writes are the only place where the
no-double-booking guarantee is enforced against concurrent requests.
"""

import logging
from datetime import date, time
from typing import Iterable, List, Optional

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from careslot.core import config
from careslot.models.availability import AvailabilityRule, PractitionerBlackout, PractitionerSettings
from careslot.models.booking import BookingRecord, BookingStatusHistory
from careslot.models.user import User
from careslot.scheduling.errors import InvalidState, NotFound, PermissionDenied, SlotConflict
from careslot.scheduling.intervals import TimeWindow
from careslot.scheduling.types import (
    Blackout,
    Booking,
    BookingStatus,
    DayOfWeek,
    SchedulingSettings,
    StatusChange,
    TERMINAL_BOOKING_STATUSES,
    WeeklyAvailabilityRule,
)

logger = logging.getLogger(__name__)

PRACTITIONER_ROLE = 'practitioner'
PATIENT_ROLE = 'patient'
CANCELLED = BookingStatus.CANCELLED.value
TERMINAL = sorted(status.value for status in TERMINAL_BOOKING_STATUSES)


def _rule_from_row(row: AvailabilityRule) -> WeeklyAvailabilityRule:
    return WeeklyAvailabilityRule(
        id=row.id,
        practitioner_id=row.practitioner_id,
        day_of_week=DayOfWeek(row.day_of_week),
        window=TimeWindow(row.start_time, row.end_time),
        active=bool(row.is_active),
    )


def _blackout_from_row(row: PractitionerBlackout) -> Blackout:
    window = None
    if row.start_time is not None and row.end_time is not None:
        window = TimeWindow(row.start_time, row.end_time)
    return Blackout(
        id=row.id,
        practitioner_id=row.practitioner_id,
        date=row.date,
        window=window,
        reason=row.reason,
    )


def _booking_from_row(row: BookingRecord) -> Booking:
    return Booking(
        id=row.id,
        practitioner_id=row.practitioner_id,
        patient_id=row.patient_id,
        date=row.date,
        window=TimeWindow(row.start_time, row.end_time),
        status=BookingStatus(row.status),
        notes=row.notes,
    )


def _history_from_row(row: BookingStatusHistory) -> StatusChange:
    return StatusChange(
        booking_id=row.booking_id,
        from_status=BookingStatus(row.from_status) if row.from_status else None,
        to_status=BookingStatus(row.to_status),
        changed_by=row.changed_by,
        note=row.note,
        created_at=row.created_at,
    )


class AvailabilityRepository:
    """Weekly rules, blackouts and slot settings for practitioners."""

    def __init__(self, db: Session):
        self.db = db

    def get_practitioner(self, practitioner_id: int) -> User:
        practitioner = self.db.query(User).filter(
            User.id == practitioner_id,
            User.role == PRACTITIONER_ROLE,
        ).first()
        if practitioner is None:
            raise NotFound(f'Practitioner {practitioner_id} not found')
        return practitioner

    def get_weekly_rules(self, practitioner_id: int) -> List[WeeklyAvailabilityRule]:
        rows = self.db.query(AvailabilityRule).filter(
            AvailabilityRule.practitioner_id == practitioner_id,
        ).order_by(AvailabilityRule.start_time.asc(), AvailabilityRule.id.asc()).all()
        return [_rule_from_row(row) for row in rows]

    def get_blackouts(self, practitioner_id: int, start: date, end: date) -> List[Blackout]:
        rows = self.db.query(PractitionerBlackout).filter(
            PractitionerBlackout.practitioner_id == practitioner_id,
            PractitionerBlackout.date >= start,
            PractitionerBlackout.date <= end,
        ).order_by(PractitionerBlackout.date.asc(), PractitionerBlackout.id.asc()).all()
        return [_blackout_from_row(row) for row in rows]

    def get_settings(self, practitioner_id: int) -> SchedulingSettings:
        row = self.db.get(PractitionerSettings, practitioner_id)
        if row is None:
            self.get_practitioner(practitioner_id)
            return SchedulingSettings(
                practitioner_id=practitioner_id,
                slot_duration_minutes=config.DEFAULT_SLOT_DURATION_MINUTES,
                buffer_minutes=config.DEFAULT_BUFFER_MINUTES,
                timezone=config.DEFAULT_TIMEZONE,
            )
        return SchedulingSettings(
            practitioner_id=practitioner_id,
            slot_duration_minutes=row.slot_duration_minutes,
            buffer_minutes=row.buffer_minutes or 0,
            timezone=row.timezone or config.DEFAULT_TIMEZONE,
        )

    def update_settings(
        self,
        practitioner_id: int,
        slot_duration_minutes: Optional[int] = None,
        buffer_minutes: Optional[int] = None,
        timezone: Optional[str] = None,
    ) -> SchedulingSettings:
        current = self.get_settings(practitioner_id)
        updated = SchedulingSettings(
            practitioner_id=practitioner_id,
            slot_duration_minutes=(
                slot_duration_minutes if slot_duration_minutes is not None else current.slot_duration_minutes
            ),
            buffer_minutes=buffer_minutes if buffer_minutes is not None else current.buffer_minutes,
            timezone=timezone or current.timezone,
        )

        row = self.db.get(PractitionerSettings, practitioner_id)
        if row is None:
            row = PractitionerSettings(practitioner_id=practitioner_id)
            self.db.add(row)
        row.slot_duration_minutes = updated.slot_duration_minutes
        row.buffer_minutes = updated.buffer_minutes
        row.timezone = updated.timezone
        self.db.commit()
        return updated

    def _owned_rule(self, practitioner_id: int, rule_id: int) -> AvailabilityRule:
        row = self.db.get(AvailabilityRule, rule_id)
        if row is None:
            raise NotFound(f'Availability rule {rule_id} not found')
        if row.practitioner_id != practitioner_id:
            raise PermissionDenied('You do not own this availability rule')
        return row

    def create_rule(self, rule: WeeklyAvailabilityRule) -> WeeklyAvailabilityRule:
        row = AvailabilityRule(
            practitioner_id=rule.practitioner_id,
            day_of_week=rule.day_of_week.value,
            start_time=rule.window.start,
            end_time=rule.window.end,
            is_active=rule.active,
        )
        self.db.add(row)
        self.db.commit()
        self.db.refresh(row)
        return _rule_from_row(row)

    def update_rule(
        self,
        practitioner_id: int,
        rule_id: int,
        start_time: Optional[time] = None,
        end_time: Optional[time] = None,
        active: Optional[bool] = None,
    ) -> WeeklyAvailabilityRule:
        row = self._owned_rule(practitioner_id, rule_id)
        # Validate the resulting window, not just the fields supplied.
        window = TimeWindow(
            start_time if start_time is not None else row.start_time,
            end_time if end_time is not None else row.end_time,
        )
        row.start_time = window.start
        row.end_time = window.end
        if active is not None:
            row.is_active = active
        self.db.commit()
        self.db.refresh(row)
        return _rule_from_row(row)

    def delete_rule(self, practitioner_id: int, rule_id: int) -> None:
        row = self._owned_rule(practitioner_id, rule_id)
        self.db.delete(row)
        self.db.commit()

    def replace_rules(
        self,
        practitioner_id: int,
        rules: Iterable[WeeklyAvailabilityRule],
    ) -> List[WeeklyAvailabilityRule]:
        """Swap the practitioner's whole weekly schedule in one transaction."""
        try:
            self.db.query(AvailabilityRule).filter(
                AvailabilityRule.practitioner_id == practitioner_id,
            ).delete(synchronize_session=False)
            rows = [
                AvailabilityRule(
                    practitioner_id=practitioner_id,
                    day_of_week=rule.day_of_week.value,
                    start_time=rule.window.start,
                    end_time=rule.window.end,
                    is_active=rule.active,
                )
                for rule in rules
            ]
            self.db.add_all(rows)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info('Replaced weekly availability for practitioner %s with %d rule(s)', practitioner_id, len(rows))
        return self.get_weekly_rules(practitioner_id)

    def create_blackout(self, blackout: Blackout) -> Blackout:
        row = PractitionerBlackout(
            practitioner_id=blackout.practitioner_id,
            date=blackout.date,
            start_time=blackout.window.start if blackout.window else None,
            end_time=blackout.window.end if blackout.window else None,
            reason=blackout.reason,
        )
        self.db.add(row)
        self.db.commit()
        self.db.refresh(row)
        return _blackout_from_row(row)

    def delete_blackout(self, practitioner_id: int, blackout_id: int) -> None:
        row = self.db.get(PractitionerBlackout, blackout_id)
        if row is None:
            raise NotFound(f'Blackout {blackout_id} not found')
        if row.practitioner_id != practitioner_id:
            raise PermissionDenied('You do not own this blackout')
        self.db.delete(row)
        self.db.commit()


class BookingRepository:
    """Committed bookings plus their status history."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, booking_id: int) -> Booking:
        row = self.db.get(BookingRecord, booking_id)
        if row is None:
            raise NotFound(f'Booking {booking_id} not found')
        return _booking_from_row(row)

    def get_bookings(self, practitioner_id: int, day: date) -> List[Booking]:
        return self.get_bookings_in_range(practitioner_id, day, day)

    def get_bookings_in_range(self, practitioner_id: int, start: date, end: date) -> List[Booking]:
        rows = self.db.query(BookingRecord).filter(
            BookingRecord.practitioner_id == practitioner_id,
            BookingRecord.date >= start,
            BookingRecord.date <= end,
        ).order_by(BookingRecord.date.asc(), BookingRecord.start_time.asc()).all()
        return [_booking_from_row(row) for row in rows]

    def list_for_user(
        self,
        user_id: int,
        role: str,
        status: Optional[BookingStatus] = None,
        upcoming: bool = False,
        today: Optional[date] = None,
    ) -> List[Booking]:
        """
        Bookings where ``user_id`` is the practitioner or the patient, depending on ``role``.

        ``upcoming`` keeps non-terminal bookings dated ``today`` or later.
        """
        if role == PRACTITIONER_ROLE:
            query = self.db.query(BookingRecord).filter(BookingRecord.practitioner_id == user_id)
        elif role == PATIENT_ROLE:
            query = self.db.query(BookingRecord).filter(BookingRecord.patient_id == user_id)
        else:
            raise PermissionDenied('Only practitioners and patients have bookings')

        if status is not None:
            query = query.filter(BookingRecord.status == status.value)
        if upcoming:
            query = query.filter(
                BookingRecord.date >= (today or date.today()),
                BookingRecord.status.notin_(TERMINAL),
            )

        rows = query.order_by(
            BookingRecord.date.asc(),
            BookingRecord.start_time.asc(),
            BookingRecord.id.asc(),
        ).all()
        return [_booking_from_row(row) for row in rows]

    def get_history(self, booking_id: int) -> List[StatusChange]:
        rows = self.db.query(BookingStatusHistory).filter(
            BookingStatusHistory.booking_id == booking_id,
        ).order_by(BookingStatusHistory.id.asc()).all()
        return [_history_from_row(row) for row in rows]

    def _lock_practitioner(self, practitioner_id: int) -> None:
        # Serialises writers per practitioner. pysqlite defers BEGIN until the first
        # write, so SQLite takes the database write lock up front instead.
        if self.db.get_bind().dialect.name == 'sqlite':
            dbapi_connection = self.db.connection().connection.dbapi_connection
            if not dbapi_connection.in_transaction:
                self.db.execute(text('BEGIN IMMEDIATE'))
            return
        self.db.query(User.id).filter(User.id == practitioner_id).with_for_update().first()

    def _find_overlap(
        self,
        practitioner_id: int,
        day: date,
        window: TimeWindow,
        exclude_booking_id: Optional[int] = None,
    ) -> Optional[BookingRecord]:
        query = self.db.query(BookingRecord).filter(
            BookingRecord.practitioner_id == practitioner_id,
            BookingRecord.date == day,
            BookingRecord.status != CANCELLED,
            BookingRecord.start_time < window.end,
            BookingRecord.end_time > window.start,
        )
        if exclude_booking_id is not None:
            query = query.filter(BookingRecord.id != exclude_booking_id)
        return query.first()

    def try_insert(self, booking: Booking, changed_by: Optional[int] = None) -> Booking:
        """Insert ``booking`` unless an overlapping active booking exists; raises ``SlotConflict``."""
        try:
            self._lock_practitioner(booking.practitioner_id)
            if self._find_overlap(booking.practitioner_id, booking.date, booking.window) is not None:
                raise SlotConflict(f'Slot {booking.date} {booking.window} was just taken')

            row = BookingRecord(
                practitioner_id=booking.practitioner_id,
                patient_id=booking.patient_id,
                date=booking.date,
                start_time=booking.window.start,
                end_time=booking.window.end,
                status=booking.status.value,
                notes=booking.notes,
            )
            self.db.add(row)
            self.db.flush()
            self.db.add(
                BookingStatusHistory(
                    booking_id=row.id,
                    from_status=None,
                    to_status=row.status,
                    changed_by=changed_by,
                    note='Booking requested',
                )
            )
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise SlotConflict(f'Slot {booking.date} {booking.window} was just taken') from exc
        except SlotConflict:
            self.db.rollback()
            raise

        self.db.refresh(row)
        return _booking_from_row(row)

    def try_update_slot(
        self,
        booking_id: int,
        new_date: date,
        new_window: TimeWindow,
        note: Optional[str] = None,
        changed_by: Optional[int] = None,
    ) -> Booking:
        """
        Move a booking to a new slot, keeping its id.

        Raises ``SlotConflict`` if the slot is held and ``InvalidState`` if the
        booking was completed or cancelled before the move landed.
        """
        practitioner_id = self.get(booking_id).practitioner_id

        try:
            self._lock_practitioner(practitioner_id)
            if self._find_overlap(practitioner_id, new_date, new_window, exclude_booking_id=booking_id):
                raise SlotConflict(f'Slot {new_date} {new_window} was just taken')

            moved_rows = self.db.query(BookingRecord).filter(
                BookingRecord.id == booking_id,
                BookingRecord.status.notin_(TERMINAL),
            ).update(
                {
                    BookingRecord.date: new_date,
                    BookingRecord.start_time: new_window.start,
                    BookingRecord.end_time: new_window.end,
                },
                synchronize_session=False,
            )
            if moved_rows == 0:
                raise InvalidState(f'Booking {booking_id} can no longer be rescheduled')

            current_status = self.db.query(BookingRecord.status).filter(BookingRecord.id == booking_id).scalar()
            self.db.add(
                BookingStatusHistory(
                    booking_id=booking_id,
                    from_status=current_status,
                    to_status=current_status,
                    changed_by=changed_by,
                    note=note,
                )
            )
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise SlotConflict(f'Slot {new_date} {new_window} was just taken') from exc
        except (SlotConflict, InvalidState):
            self.db.rollback()
            raise

        self.db.expire_all()
        return self.get(booking_id)

    def try_transition(
        self,
        booking_id: int,
        from_statuses: Iterable[BookingStatus],
        to_status: BookingStatus,
        note: Optional[str] = None,
        changed_by: Optional[int] = None,
    ) -> Booking:
        """Compare-and-swap the status; raises ``InvalidState`` when the current status is not allowed."""
        current = self.get(booking_id)
        allowed = {status.value for status in from_statuses}

        updated_rows = self.db.query(BookingRecord).filter(
            BookingRecord.id == booking_id,
            BookingRecord.status.in_(allowed),
        ).update({BookingRecord.status: to_status.value}, synchronize_session=False)

        if updated_rows == 0:
            self.db.rollback()
            latest = self.get(booking_id)
            raise InvalidState(
                f'Cannot move booking {booking_id} from {latest.status.value} to {to_status.value}'
            )

        self.db.add(
            BookingStatusHistory(
                booking_id=booking_id,
                from_status=current.status.value,
                to_status=to_status.value,
                changed_by=changed_by,
                note=note,
            )
        )
        self.db.commit()
        self.db.expire_all()
        return self.get(booking_id)
