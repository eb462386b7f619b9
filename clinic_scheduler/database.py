import logging
import zlib
from contextlib import contextmanager
from datetime import date, datetime, timezone
from threading import Lock

from sqlalchemy import DateTime, create_engine, inspect, text
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.types import TypeDecorator

from clinic_scheduler.core import config

logger = logging.getLogger(__name__)

DATABASE_URL = config.DATABASE_URL

engine = create_engine(
    DATABASE_URL,
    echo=config.SQL_ECHO,
    connect_args={'check_same_thread': False} if DATABASE_URL.startswith('sqlite') else {},
)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_availability_schema_checked = False
_appointment_schema_checked = False

# Schedule keys hash onto a fixed set of stripes on dialects without advisory locks.
LOCK_STRIPES = 64
_stripe_locks: list[Lock] = [Lock() for _ in range(LOCK_STRIPES)]

SERIALIZATION_FAILURE_CODES = {'40001', '40P01'}
ACTIVE_SLOT_INDEX_NAME = 'uq_appointments_doctor_start_active'


class UTCDateTime(TypeDecorator):
    """Stores aware datetimes as naive UTC and hands them back as aware UTC."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError('Naive datetimes cannot be stored; attach a timezone first.')
        return value.astimezone(timezone.utc).replace(tzinfo=None)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def ensure_availability_schema() -> None:
    global _availability_schema_checked

    if _availability_schema_checked:
        return

    with _schema_lock:
        if _availability_schema_checked:
            return

        inspector = inspect(engine)

        if 'doctor_availability' not in inspector.get_table_names():
            _availability_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('doctor_availability')}
        migration_steps = [
            ('archived_at', 'ALTER TABLE doctor_availability ADD COLUMN archived_at TIMESTAMP'),
            ('created_at', 'ALTER TABLE doctor_availability ADD COLUMN created_at TIMESTAMP'),
        ]

        with engine.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text(
                    'CREATE INDEX IF NOT EXISTS idx_availability_doctor_date '
                    'ON doctor_availability(doctor_user_id, clinic_id, available_date)'
                )
            )

        _availability_schema_checked = True


def ensure_appointment_schema() -> None:
    global _appointment_schema_checked

    if _appointment_schema_checked:
        return

    with _schema_lock:
        if _appointment_schema_checked:
            return

        inspector = inspect(engine)

        if 'appointments' not in inspector.get_table_names():
            _appointment_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('appointments')}
        migration_steps = [
            ('created_by_user_id', 'ALTER TABLE appointments ADD COLUMN created_by_user_id INTEGER'),
            ('remarks', 'ALTER TABLE appointments ADD COLUMN remarks VARCHAR'),
            ('updated_at', 'ALTER TABLE appointments ADD COLUMN updated_at TIMESTAMP'),
        ]

        with engine.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text(
                    'CREATE INDEX IF NOT EXISTS idx_appointments_doctor_start '
                    'ON appointments(doctor_user_id, start_time)'
                )
            )
            connection.execute(
                text(
                    'CREATE INDEX IF NOT EXISTS idx_appointments_patient_start '
                    'ON appointments(patient_user_id, start_time)'
                )
            )

        _appointment_schema_checked = True


def schedule_lock_key(owner: str, owner_id: int, civil_date: date) -> str:
    return f'{owner}:{owner_id}:{civil_date.isoformat()}'


def _advisory_key(key: str) -> int:
    # pg_advisory_xact_lock takes a signed 64-bit integer.
    return zlib.crc32(key.encode('utf-8'))


def stripe_indexes(keys: list[str]) -> list[int]:
    """Distinct stripe indexes for ``keys`` in acquisition order."""
    return sorted({zlib.crc32(key.encode('utf-8')) % len(_stripe_locks) for key in keys})


@contextmanager
def _process_locks(keys: list[str]):
    # Keys sharing a stripe take it once.
    locks = [_stripe_locks[index] for index in stripe_indexes(keys)]

    acquired: list[Lock] = []
    try:
        for lock in locks:
            lock.acquire()
            acquired.append(lock)
        yield
    finally:
        for lock in reversed(acquired):
            lock.release()


@contextmanager
def booking_transaction(db: Session, keys: list[str]):
    """Run a check-then-write unit while holding the schedule locks for ``keys``.

    Commits on success and rolls back on any exception. On PostgreSQL the
    locks are transaction-scoped advisory locks; elsewhere they are held in
    process until the commit or rollback completes.
    """
    ordered_keys = sorted(set(keys))
    use_advisory = db.get_bind().dialect.name == 'postgresql'

    if use_advisory:
        try:
            for key in ordered_keys:
                db.execute(text('SELECT pg_advisory_xact_lock(:key)'), {'key': _advisory_key(key)})
            yield
            db.commit()
        except Exception:
            db.rollback()
            raise
        return

    with _process_locks(ordered_keys):
        try:
            yield
            db.commit()
        except Exception:
            db.rollback()
            raise


def _is_active_slot_unique_error(exc: IntegrityError) -> bool:
    message = str(exc.orig).lower()
    return (
        ACTIVE_SLOT_INDEX_NAME in message
        or 'appointments.doctor_user_id, appointments.start_time' in message
    )


def is_write_conflict(exc: SQLAlchemyError) -> bool:
    """True when the store rejected a write because a concurrent one won."""
    if isinstance(exc, IntegrityError):
        return _is_active_slot_unique_error(exc)
    if isinstance(exc, OperationalError):
        return getattr(exc.orig, 'pgcode', None) in SERIALIZATION_FAILURE_CODES
    return False


def utc_now() -> datetime:
    return datetime.now(timezone.utc)
