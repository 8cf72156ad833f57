import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from careslot.core import config
from careslot.database import Base, engine, ensure_availability_schema, ensure_booking_schema
from careslot.models import availability, booking, user  # noqa: F401
from careslot.routes import availability_routes, booking_routes

logging.basicConfig(
    level=config.LOG_LEVEL,
    format='%(asctime)s %(levelname)s %(name)s: %(message)s',
)

config.validate_runtime_config()

app = FastAPI(title='careslot')

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

logger = logging.getLogger(__name__)


@app.on_event('startup')
def initialize_database() -> None:
    try:
        Base.metadata.create_all(bind=engine)
        ensure_availability_schema()
        ensure_booking_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and database credentials.')


@app.get('/')
def root():
    return {'status': 'Scheduling API Running'}


app.include_router(availability_routes.router, prefix='/scheduling')
app.include_router(booking_routes.router, prefix='/bookings')
