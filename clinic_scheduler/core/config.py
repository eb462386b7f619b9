import os

from dotenv import load_dotenv


load_dotenv()


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_list(value: str | None, default: list[str]) -> list[str]:
    if not value:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]

APP_ENV = os.getenv("APP_ENV", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
SQL_ECHO = _get_bool(os.getenv("SQL_ECHO"), default=False)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./clinic_scheduler.db")

CORS_ALLOW_ORIGINS = _get_list(os.getenv("CORS_ALLOW_ORIGINS"), ["http://localhost:3000"])

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MINUTES = int(os.getenv("JWT_EXPIRES_MINUTES", "60"))

# Scheduling runs on one fixed civil calendar, whatever the host timezone is.
CIVIL_UTC_OFFSET_HOURS = int(os.getenv("CIVIL_UTC_OFFSET_HOURS", "8"))
SLOT_MINUTES = int(os.getenv("SLOT_MINUTES", "15"))
MIN_RESCHEDULE_NOTICE_DAYS = int(os.getenv("MIN_RESCHEDULE_NOTICE_DAYS", "3"))
MIN_BOOKING_LEAD_DAYS = int(os.getenv("MIN_BOOKING_LEAD_DAYS", "3"))
ARCHIVE_GRACE_HOURS = int(os.getenv("ARCHIVE_GRACE_HOURS", "24"))
MAX_REMARKS_LENGTH = int(os.getenv("MAX_REMARKS_LENGTH", "600"))

def validate_runtime_config() -> None:
    if APP_ENV.lower() == "production" and JWT_SECRET_KEY == "change-me":
        raise RuntimeError("JWT_SECRET_KEY must be set in production.")
    if not 1 <= SLOT_MINUTES <= 240:
        raise RuntimeError("SLOT_MINUTES must be between 1 and 240.")
