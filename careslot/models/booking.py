"""Booking model definitions."""

from sqlalchemy import Column, Date, DateTime, ForeignKey, Index, Integer, String, Time, func, text
from careslot.database import Base


class BookingRecord(Base):
    """Represents a booked appointment slot."""
    __tablename__ = "bookings"
    __table_args__ = (
        Index('idx_bookings_practitioner_date', 'practitioner_id', 'date'),
        Index(
            'uq_bookings_active_slot',
            'practitioner_id',
            'date',
            'start_time',
            'end_time',
            unique=True,
            sqlite_where=text("status <> 'CANCELLED'"),
            postgresql_where=text("status <> 'CANCELLED'"),
        ),
    )

    id = Column(Integer, primary_key=True)
    practitioner_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    patient_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    status = Column(String, nullable=False, default='PENDING')
    notes = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class BookingStatusHistory(Base):
    """Audit trail of status changes and reschedules for a booking."""
    __tablename__ = "booking_status_history"

    id = Column(Integer, primary_key=True)
    booking_id = Column(Integer, ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True)
    from_status = Column(String, nullable=True)
    to_status = Column(String, nullable=False)
    changed_by = Column(Integer, nullable=True)
    note = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
