import os
from datetime import time

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite://')

from careslot.database import Base  # noqa: E402
from careslot.models.availability import AvailabilityRule, PractitionerSettings  # noqa: E402
from careslot.models.booking import BookingRecord, BookingStatusHistory  # noqa: E402,F401
from careslot.models.user import User  # noqa: E402


@pytest.fixture
def db():
    engine = create_engine('sqlite:///:memory:')
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    session = testing_session_local()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


def _add_user(db, email: str, role: str) -> User:
    user = User(email=email, full_name=email.split('@')[0].title(), role=role)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def practitioner(db) -> User:
    return _add_user(db, 'dr.banda@example.com', 'practitioner')


@pytest.fixture
def other_practitioner(db) -> User:
    return _add_user(db, 'dr.phiri@example.com', 'practitioner')


@pytest.fixture
def patient(db) -> User:
    return _add_user(db, 'patient.one@example.com', 'patient')


@pytest.fixture
def other_patient(db) -> User:
    return _add_user(db, 'patient.two@example.com', 'patient')


@pytest.fixture
def monday_morning(db, practitioner) -> AvailabilityRule:
    """Mondays 09:00-12:00 in 30 minute slots with no buffer."""
    db.add(PractitionerSettings(practitioner_id=practitioner.id, slot_duration_minutes=30, buffer_minutes=0))
    rule = AvailabilityRule(
        practitioner_id=practitioner.id,
        day_of_week='MONDAY',
        start_time=time(9, 0),
        end_time=time(12, 0),
        is_active=True,
    )
    db.add(rule)
    db.commit()
    db.refresh(rule)
    return rule
