from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker

from careslot.core import config


engine = create_engine(config.DATABASE_URL, echo=config.SQL_ECHO)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_availability_schema_checked = False
_booking_schema_checked = False


def ensure_availability_schema() -> None:
    global _availability_schema_checked

    if _availability_schema_checked:
        return

    with _schema_lock:
        if _availability_schema_checked:
            return

        inspector = inspect(engine)
        table_names = inspector.get_table_names()

        with engine.begin() as connection:
            if 'availability_rules' in table_names:
                existing_columns = {column['name'] for column in inspector.get_columns('availability_rules')}
                if 'is_active' not in existing_columns:
                    connection.execute(text('ALTER TABLE availability_rules ADD COLUMN is_active BOOLEAN DEFAULT TRUE'))
                connection.execute(
                    text(
                        'CREATE INDEX IF NOT EXISTS idx_availability_rules_practitioner_day '
                        'ON availability_rules(practitioner_id, day_of_week)'
                    )
                )

            if 'blackouts' in table_names:
                existing_columns = {column['name'] for column in inspector.get_columns('blackouts')}
                if 'reason' not in existing_columns:
                    connection.execute(text('ALTER TABLE blackouts ADD COLUMN reason VARCHAR'))
                connection.execute(
                    text('CREATE INDEX IF NOT EXISTS idx_blackouts_practitioner_date ON blackouts(practitioner_id, date)')
                )

            if 'scheduling_settings' in table_names:
                existing_columns = {column['name'] for column in inspector.get_columns('scheduling_settings')}
                if 'timezone' not in existing_columns:
                    connection.execute(text('ALTER TABLE scheduling_settings ADD COLUMN timezone VARCHAR'))

        _availability_schema_checked = True


def ensure_booking_schema() -> None:
    global _booking_schema_checked

    if _booking_schema_checked:
        return

    with _schema_lock:
        if _booking_schema_checked:
            return

        inspector = inspect(engine)

        if 'bookings' not in inspector.get_table_names():
            _booking_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('bookings')}
        migration_steps = [
            ('notes', 'ALTER TABLE bookings ADD COLUMN notes VARCHAR'),
            ('updated_at', 'ALTER TABLE bookings ADD COLUMN updated_at TIMESTAMP'),
        ]

        with engine.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_bookings_practitioner_date ON bookings(practitioner_id, date)')
            )
            # At most one active booking per practitioner slot.
            connection.execute(
                text(
                    'CREATE UNIQUE INDEX IF NOT EXISTS uq_bookings_active_slot '
                    'ON bookings(practitioner_id, date, start_time, end_time) '
                    "WHERE status <> 'CANCELLED'"
                )
            )

        _booking_schema_checked = True


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
