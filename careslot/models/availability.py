"""Availability model definitions."""

from sqlalchemy import Boolean, CheckConstraint, Column, Date, DateTime, ForeignKey, Integer, String, Time, func
from careslot.database import Base


class AvailabilityRule(Base):
    """Recurring weekly window during which a practitioner accepts bookings."""
    __tablename__ = "availability_rules"
    __table_args__ = (
        CheckConstraint('start_time < end_time', name='ck_availability_rules_window'),
    )

    id = Column(Integer, primary_key=True)
    practitioner_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    day_of_week = Column(String, nullable=False)  # MONDAY..SUNDAY
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)


class PractitionerBlackout(Base):
    """One-off blackout; whole day when start_time/end_time are NULL."""
    __tablename__ = "blackouts"

    id = Column(Integer, primary_key=True)
    practitioner_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=True)
    end_time = Column(Time, nullable=True)
    reason = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class PractitionerSettings(Base):
    """Slot length, buffer and timezone used when cutting availability into slots."""
    __tablename__ = "scheduling_settings"

    practitioner_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    slot_duration_minutes = Column(Integer, nullable=False)
    buffer_minutes = Column(Integer, nullable=False, default=0)
    timezone = Column(String, nullable=True)
