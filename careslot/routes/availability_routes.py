from datetime import date, time
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from careslot.auth.dependencies import require_practitioner
from careslot.core import config
from careslot.database import get_db
from careslot.models.user import User
from careslot.routes.errors import bad_request, database_unavailable, ensure_database_ready, to_http_exception
from careslot.scheduling.calendar_view import get_calendar
from careslot.scheduling.errors import SchedulingError
from careslot.scheduling.intervals import TimeWindow
from careslot.scheduling.repositories import AvailabilityRepository, BookingRepository
from careslot.scheduling.slots import generate_slots_for_range
from careslot.scheduling.types import Blackout, DayOfWeek, WeeklyAvailabilityRule

router = APIRouter(tags=['scheduling'])


def _normalize_time(value: time | None) -> time | None:
    if value is None:
        return None
    return value.replace(second=0, microsecond=0, tzinfo=None)


class WeeklyRuleRequest(BaseModel):
    day_of_week: DayOfWeek
    start_time: time
    end_time: time
    is_active: bool = True

    @field_validator('day_of_week', mode='before')
    @classmethod
    def normalize_day_of_week(cls, value):
        if isinstance(value, str):
            return value.strip().upper()
        return value

    @field_validator('start_time', 'end_time')
    @classmethod
    def truncate_to_minute(cls, value: time) -> time:
        return _normalize_time(value)


class UpdateWeeklyRuleRequest(BaseModel):
    start_time: time | None = None
    end_time: time | None = None
    is_active: bool | None = None

    @field_validator('start_time', 'end_time')
    @classmethod
    def truncate_to_minute(cls, value: time | None) -> time | None:
        return _normalize_time(value)


class BulkWeeklyRulesRequest(BaseModel):
    rules: list[WeeklyRuleRequest]


class CreateBlackoutRequest(BaseModel):
    date: date
    start_time: time | None = None
    end_time: time | None = None
    reason: str | None = None

    @field_validator('start_time', 'end_time')
    @classmethod
    def truncate_to_minute(cls, value: time | None) -> time | None:
        return _normalize_time(value)

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip()
        return normalized or None


class UpdateSettingsRequest(BaseModel):
    slot_duration_minutes: int | None = Field(
        default=None,
        ge=config.MIN_SLOT_DURATION_MINUTES,
        le=config.MAX_SLOT_DURATION_MINUTES,
    )
    buffer_minutes: int | None = Field(default=None, ge=0, le=config.MAX_BUFFER_MINUTES)
    timezone: str | None = None

    @field_validator('timezone')
    @classmethod
    def validate_timezone(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip()
        try:
            ZoneInfo(normalized)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError('Unknown timezone.') from exc
        return normalized


class WeeklyRuleResponse(BaseModel):
    id: int
    day_of_week: DayOfWeek
    start_time: time
    end_time: time
    is_active: bool


class BlackoutResponse(BaseModel):
    id: int
    date: date
    start_time: time | None = None
    end_time: time | None = None
    reason: str | None = None
    is_full_day: bool


class SettingsResponse(BaseModel):
    slot_duration_minutes: int
    buffer_minutes: int
    timezone: str


class SlotResponse(BaseModel):
    start_time: time
    end_time: time
    is_available: bool


class DaySlotsResponse(BaseModel):
    date: date
    slots: list[SlotResponse]


class CalendarDayResponse(BaseModel):
    date: date
    available_slot_count: int
    total_slot_count: int
    is_blackout: bool


def rule_response(rule: WeeklyAvailabilityRule) -> WeeklyRuleResponse:
    return WeeklyRuleResponse(
        id=rule.id,
        day_of_week=rule.day_of_week,
        start_time=rule.window.start,
        end_time=rule.window.end,
        is_active=rule.active,
    )


def blackout_response(blackout: Blackout) -> BlackoutResponse:
    return BlackoutResponse(
        id=blackout.id,
        date=blackout.date,
        start_time=blackout.window.start if blackout.window else None,
        end_time=blackout.window.end if blackout.window else None,
        reason=blackout.reason,
        is_full_day=blackout.is_full_day,
    )


@router.get('/availability', response_model=list[WeeklyRuleResponse])
def list_weekly_rules(
    current_user: User = Depends(require_practitioner),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        rules = AvailabilityRepository(db).get_weekly_rules(current_user.id)
        order = list(DayOfWeek)
        rules.sort(key=lambda rule: (order.index(rule.day_of_week), rule.window))
        return [rule_response(rule) for rule in rules]
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.post('/availability', response_model=WeeklyRuleResponse, status_code=status.HTTP_201_CREATED)
def create_weekly_rule(
    data: WeeklyRuleRequest,
    current_user: User = Depends(require_practitioner),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        rule = WeeklyAvailabilityRule(
            practitioner_id=current_user.id,
            day_of_week=data.day_of_week,
            window=TimeWindow(data.start_time, data.end_time),
            active=data.is_active,
        )
        return rule_response(AvailabilityRepository(db).create_rule(rule))
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc


@router.put('/availability/{rule_id}', response_model=WeeklyRuleResponse)
def update_weekly_rule(
    rule_id: int,
    data: UpdateWeeklyRuleRequest,
    current_user: User = Depends(require_practitioner),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        rule = AvailabilityRepository(db).update_rule(
            current_user.id,
            rule_id,
            start_time=data.start_time,
            end_time=data.end_time,
            active=data.is_active,
        )
        return rule_response(rule)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc


@router.delete('/availability/{rule_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_weekly_rule(
    rule_id: int,
    current_user: User = Depends(require_practitioner),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        AvailabilityRepository(db).delete_rule(current_user.id, rule_id)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc


@router.post('/availability/bulk', response_model=list[WeeklyRuleResponse], status_code=status.HTTP_201_CREATED)
def replace_weekly_rules(
    data: BulkWeeklyRulesRequest,
    current_user: User = Depends(require_practitioner),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        rules = [
            WeeklyAvailabilityRule(
                practitioner_id=current_user.id,
                day_of_week=item.day_of_week,
                window=TimeWindow(item.start_time, item.end_time),
                active=item.is_active,
            )
            for item in data.rules
        ]
        return [rule_response(rule) for rule in AvailabilityRepository(db).replace_rules(current_user.id, rules)]
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc


@router.get('/blackouts', response_model=list[BlackoutResponse])
def list_blackouts(
    start_date: date = Query(default=date.min),
    end_date: date = Query(default=date.max),
    current_user: User = Depends(require_practitioner),
    db: Session = Depends(get_db),
):
    if start_date > end_date:
        raise bad_request('start_date must be on or before end_date.')

    ensure_database_ready()

    try:
        blackouts = AvailabilityRepository(db).get_blackouts(current_user.id, start_date, end_date)
        return [blackout_response(blackout) for blackout in blackouts]
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.post('/blackouts', response_model=BlackoutResponse, status_code=status.HTTP_201_CREATED)
def create_blackout(
    data: CreateBlackoutRequest,
    current_user: User = Depends(require_practitioner),
    db: Session = Depends(get_db),
):
    if (data.start_time is None) != (data.end_time is None):
        raise bad_request('start_time and end_time must be provided together.')

    ensure_database_ready()

    try:
        window = TimeWindow(data.start_time, data.end_time) if data.start_time is not None else None
        blackout = Blackout(
            practitioner_id=current_user.id,
            date=data.date,
            window=window,
            reason=data.reason,
        )
        return blackout_response(AvailabilityRepository(db).create_blackout(blackout))
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc


@router.delete('/blackouts/{blackout_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_blackout(
    blackout_id: int,
    current_user: User = Depends(require_practitioner),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        AvailabilityRepository(db).delete_blackout(current_user.id, blackout_id)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc


@router.get('/settings', response_model=SettingsResponse)
def get_settings(
    current_user: User = Depends(require_practitioner),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        settings = AvailabilityRepository(db).get_settings(current_user.id)
        return SettingsResponse(
            slot_duration_minutes=settings.slot_duration_minutes,
            buffer_minutes=settings.buffer_minutes,
            timezone=settings.timezone,
        )
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.patch('/settings', response_model=SettingsResponse)
def update_settings(
    data: UpdateSettingsRequest,
    current_user: User = Depends(require_practitioner),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        settings = AvailabilityRepository(db).update_settings(
            current_user.id,
            slot_duration_minutes=data.slot_duration_minutes,
            buffer_minutes=data.buffer_minutes,
            timezone=data.timezone,
        )
        return SettingsResponse(
            slot_duration_minutes=settings.slot_duration_minutes,
            buffer_minutes=settings.buffer_minutes,
            timezone=settings.timezone,
        )
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc


@router.get('/practitioners/{practitioner_id}/slots', response_model=list[DaySlotsResponse])
def list_available_slots(
    practitioner_id: int,
    start_date: date = Query(...),
    end_date: date = Query(...),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        day_slots = generate_slots_for_range(
            practitioner_id,
            start_date,
            end_date,
            AvailabilityRepository(db),
            BookingRepository(db),
        )
        return [
            DaySlotsResponse(
                date=day.date,
                slots=[
                    SlotResponse(start_time=slot.start_time, end_time=slot.end_time, is_available=slot.is_available)
                    for slot in day.slots
                ],
            )
            for day in day_slots
        ]
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except ValueError as exc:
        raise bad_request(str(exc)) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.get('/practitioners/{practitioner_id}/calendar', response_model=list[CalendarDayResponse])
def get_calendar_view(
    practitioner_id: int,
    year: int = Query(..., ge=config.CALENDAR_MIN_YEAR, le=config.CALENDAR_MAX_YEAR),
    month: int = Query(..., ge=1, le=12),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        days = get_calendar(practitioner_id, year, month, AvailabilityRepository(db), BookingRepository(db))
        return [
            CalendarDayResponse(
                date=day.date,
                available_slot_count=day.available_slot_count,
                total_slot_count=day.total_slot_count,
                is_blackout=day.is_blackout,
            )
            for day in days.values()
        ]
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except ValueError as exc:
        raise bad_request(str(exc)) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc
