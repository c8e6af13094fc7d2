from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker

from therapy_backend.core import config


DATABASE_URL = config.DATABASE_URL


def build_engine(url: str):
    if url.startswith("sqlite"):
        # Sessions are handed across worker threads by FastAPI.
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(url, pool_pre_ping=True)


engine = build_engine(DATABASE_URL)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

ACTIVE_SLOT_INDEX_NAME = 'uq_appointments_active_slot'
ACTIVE_STATUS_SQL = "status IN ('scheduled', 'confirmed')"

_schema_lock = Lock()
_appointment_schema_checked = False


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def ensure_appointment_schema(bind=None) -> None:
    """Create the scheduling indexes on appointment tables that predate them."""
    global _appointment_schema_checked

    if _appointment_schema_checked and bind is None:
        return

    target = bind or engine

    with _schema_lock:
        if _appointment_schema_checked and bind is None:
            return

        inspector = inspect(target)

        if 'appointments' not in inspector.get_table_names():
            if bind is None:
                _appointment_schema_checked = True
            return

        has_reminders = 'reminders' in inspector.get_table_names()

        with target.begin() as connection:
            connection.execute(
                text(
                    f'CREATE UNIQUE INDEX IF NOT EXISTS {ACTIVE_SLOT_INDEX_NAME} '
                    'ON appointments(practitioner_id, scheduled_date, start_time) '
                    f'WHERE {ACTIVE_STATUS_SQL}'
                )
            )
            connection.execute(
                text(
                    'CREATE INDEX IF NOT EXISTS idx_appointments_practitioner_date '
                    'ON appointments(practitioner_id, scheduled_date)'
                )
            )
            connection.execute(
                text(
                    'CREATE INDEX IF NOT EXISTS idx_appointments_patient_date '
                    'ON appointments(patient_id, scheduled_date)'
                )
            )
            if has_reminders:
                connection.execute(
                    text('CREATE INDEX IF NOT EXISTS idx_reminders_due ON reminders(sent, scheduled_time)')
                )

        if bind is None:
            _appointment_schema_checked = True
