import os

from dotenv import load_dotenv


load_dotenv()


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_list(value: str | None, default: list[str]) -> list[str]:
    if value is None:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]

APP_ENV = os.getenv("APP_ENV", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
SQL_ECHO = _get_bool(os.getenv("SQL_ECHO"), default=False)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./careslot.db")

CORS_ALLOW_ORIGINS = _get_list(os.getenv("CORS_ALLOW_ORIGINS"), ["http://localhost:3000"])

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MINUTES = int(os.getenv("JWT_EXPIRES_MINUTES", "60"))

DEFAULT_SLOT_DURATION_MINUTES = int(os.getenv("DEFAULT_SLOT_DURATION_MINUTES", "30"))
DEFAULT_BUFFER_MINUTES = int(os.getenv("DEFAULT_BUFFER_MINUTES", "0"))
DEFAULT_TIMEZONE = os.getenv("DEFAULT_TIMEZONE", "UTC")

MIN_SLOT_DURATION_MINUTES = 15
MAX_SLOT_DURATION_MINUTES = 240
MAX_BUFFER_MINUTES = 60
MAX_SLOT_RANGE_DAYS = int(os.getenv("MAX_SLOT_RANGE_DAYS", "31"))
CALENDAR_MIN_YEAR = 2020
CALENDAR_MAX_YEAR = 2100

def validate_runtime_config() -> None:
    if APP_ENV.lower() == "production" and JWT_SECRET_KEY == "change-me":
        raise RuntimeError("JWT_SECRET_KEY must be set in production.")
    if not MIN_SLOT_DURATION_MINUTES <= DEFAULT_SLOT_DURATION_MINUTES <= MAX_SLOT_DURATION_MINUTES:
        raise RuntimeError("DEFAULT_SLOT_DURATION_MINUTES is outside the supported range.")
    if not 0 <= DEFAULT_BUFFER_MINUTES <= MAX_BUFFER_MINUTES:
        raise RuntimeError("DEFAULT_BUFFER_MINUTES is outside the supported range.")
