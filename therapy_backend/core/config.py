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

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./therapy.db")

CORS_ALLOW_ORIGINS = _get_list(os.getenv("CORS_ALLOW_ORIGINS"), ["http://localhost:4200"])

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MINUTES = int(os.getenv("JWT_EXPIRES_MINUTES", "60"))

# Practitioner defaults for new profiles.
DEFAULT_SESSION_DURATION_MINUTES = int(os.getenv("DEFAULT_SESSION_DURATION_MINUTES", "90"))
DEFAULT_BREAK_MINUTES = int(os.getenv("DEFAULT_BREAK_MINUTES", "15"))
MIN_APPOINTMENT_DURATION_MINUTES = int(os.getenv("MIN_APPOINTMENT_DURATION_MINUTES", "15"))

# Reminders are anchored on the session start.
EMAIL_REMINDER_HOURS_BEFORE = int(os.getenv("EMAIL_REMINDER_HOURS_BEFORE", "24"))
SMS_REMINDER_HOURS_BEFORE = int(os.getenv("SMS_REMINDER_HOURS_BEFORE", "2"))

DEFAULT_CANCELLATION_REASON = os.getenv("DEFAULT_CANCELLATION_REASON", "unspecified")

NOTIFICATIONS_ENABLED = _get_bool(os.getenv("NOTIFICATIONS_ENABLED"), default=True)

APPOINTMENT_PAGE_SIZE = int(os.getenv("APPOINTMENT_PAGE_SIZE", "10"))
MAX_APPOINTMENT_NOTES_LENGTH = 1000

def validate_runtime_config() -> None:
    if APP_ENV.lower() == "production" and JWT_SECRET_KEY == "change-me":
        raise RuntimeError("JWT_SECRET_KEY must be set in production.")
    if DEFAULT_SESSION_DURATION_MINUTES <= 0:
        raise RuntimeError("DEFAULT_SESSION_DURATION_MINUTES must be positive.")
    if DEFAULT_BREAK_MINUTES < 0:
        raise RuntimeError("DEFAULT_BREAK_MINUTES cannot be negative.")
