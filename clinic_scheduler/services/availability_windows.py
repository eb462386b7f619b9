import logging
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from clinic_scheduler.core import config
from clinic_scheduler.core.civil_time import civil_instant, parse_civil_date, parse_time_of_day, to_civil
from clinic_scheduler.core.errors import BookingRejected, NotFound, RejectionReason
from clinic_scheduler.database import booking_transaction, schedule_lock_key
from clinic_scheduler.models.availability import AvailabilityWindow
from clinic_scheduler.services.booking import get_clinic, get_doctor
from clinic_scheduler.services.intervals import overlaps_any

logger = logging.getLogger(__name__)


def require_no_window_overlap(db: Session, doctor_id: int, day, start: datetime, end: datetime, exclude_id=None) -> None:
    query = db.query(AvailabilityWindow).filter(
        AvailabilityWindow.doctor_user_id == doctor_id,
        AvailabilityWindow.available_date == day,
        AvailabilityWindow.archived_at.is_(None),
    )
    if exclude_id is not None:
        query = query.filter(AvailabilityWindow.id != exclude_id)

    if overlaps_any(start, end, query.all()):
        raise BookingRejected(RejectionReason.WINDOW_OVERLAP)


def list_doctor_windows(db: Session, doctor_id: int, include_archived: bool = False) -> list[AvailabilityWindow]:
    query = db.query(AvailabilityWindow).filter(AvailabilityWindow.doctor_user_id == doctor_id)
    if not include_archived:
        query = query.filter(AvailabilityWindow.archived_at.is_(None))
    return query.order_by(AvailabilityWindow.available_date.asc(), AvailabilityWindow.start_time.asc()).all()


def create_availability_window(
    db: Session,
    *,
    doctor_id: int,
    clinic_id: int,
    civil_date: str,
    start: str,
    end: str,
) -> AvailabilityWindow:
    day = parse_civil_date(civil_date)
    start_at = civil_instant(day, start)
    end_at = civil_instant(day, end)
    if not start_at < end_at:
        raise BookingRejected(RejectionReason.END_NOT_AFTER_START)

    get_doctor(db, doctor_id)
    get_clinic(db, clinic_id)

    with booking_transaction(db, [schedule_lock_key('doctor', doctor_id, day)]):
        require_no_window_overlap(db, doctor_id, day, start_at, end_at)
        window = AvailabilityWindow(
            doctor_user_id=doctor_id,
            clinic_id=clinic_id,
            available_date=day,
            start_time=start_at,
            end_time=end_at,
        )
        db.add(window)
        db.flush()

    db.refresh(window)
    logger.info('Availability window %s added for doctor %s on %s', window.id, doctor_id, day.isoformat())
    return window


def update_availability_window(
    db: Session,
    window_id: int,
    *,
    doctor_id: int,
    clinic_id: int | None = None,
    civil_date: str | None = None,
    start: str | None = None,
    end: str | None = None,
) -> AvailabilityWindow:
    day = parse_civil_date(civil_date) if civil_date else None
    start_clock = parse_time_of_day(start) if start else None
    end_clock = parse_time_of_day(end) if end else None

    window = db.query(AvailabilityWindow).filter(AvailabilityWindow.id == window_id).first()
    if window is None or window.doctor_user_id != doctor_id:
        raise NotFound('Availability not found.')
    if window.archived_at is not None:
        raise BookingRejected(RejectionReason.NOT_MODIFIABLE, 'Archived duty hours cannot be edited.')
    if clinic_id is not None:
        get_clinic(db, clinic_id)

    effective_day = day or window.available_date
    new_start = civil_instant(effective_day, start_clock if start_clock is not None else to_civil(window.start_time).time())
    new_end = civil_instant(effective_day, end_clock if end_clock is not None else to_civil(window.end_time).time())
    if not new_start < new_end:
        raise BookingRejected(RejectionReason.END_NOT_AFTER_START)

    keys = {schedule_lock_key('doctor', doctor_id, effective_day), schedule_lock_key('doctor', doctor_id, window.available_date)}
    with booking_transaction(db, list(keys)):
        require_no_window_overlap(db, doctor_id, effective_day, new_start, new_end, exclude_id=window.id)
        window.available_date = effective_day
        window.start_time = new_start
        window.end_time = new_end
        if clinic_id is not None:
            window.clinic_id = clinic_id
        db.flush()

    db.refresh(window)
    return window


def archive_expired_windows(db: Session, now: datetime) -> int:
    """Archive windows that ended more than the grace period before ``now``."""
    cutoff = now - timedelta(hours=config.ARCHIVE_GRACE_HOURS)

    archived = db.query(AvailabilityWindow).filter(
        AvailabilityWindow.archived_at.is_(None),
        AvailabilityWindow.end_time < cutoff,
    ).update({AvailabilityWindow.archived_at: now})
    db.commit()

    logger.info('Archived %d expired availability windows (cutoff %s)', archived, cutoff.isoformat())
    return archived
