"""Weekly duty-hour generation and the working-day rules behind it."""

import logging
from datetime import date, datetime

from sqlalchemy.orm import Session

from clinic_scheduler.core import config
from clinic_scheduler.core.civil_time import (
    add_civil_days,
    civil_instant,
    civil_weekday,
    monday_of_week,
    parse_time_of_day,
    start_of_civil_day,
    to_civil_date,
    upcoming_monday,
)
from clinic_scheduler.core.errors import BookingRejected, RejectionReason
from clinic_scheduler.database import booking_transaction, schedule_lock_key
from clinic_scheduler.models.availability import AvailabilityWindow
from clinic_scheduler.models.user import Specialization
from clinic_scheduler.services.availability_windows import require_no_window_overlap
from clinic_scheduler.services.booking import get_clinic, get_doctor

logger = logging.getLogger(__name__)

SUNDAY = 0
SATURDAY = 6
# Lookahead cap when searching for the next working day.
MAX_LOOKAHEAD_DAYS = 31


def duty_days_for(specialization: str | None) -> int:
    """Mon-Sat for dentists, Mon-Fri for everyone else."""
    return 6 if specialization == Specialization.DENTIST.value else 5


def is_working_day(weekday: int, specialization: str | None) -> bool:
    if weekday == SUNDAY:
        return False
    if specialization == Specialization.DENTIST.value:
        return True
    return weekday != SATURDAY


def earliest_booking_start(
    now: datetime,
    specialization: str | None,
    min_lead_days: int | None = None,
) -> datetime:
    lead_days = config.MIN_BOOKING_LEAD_DAYS if min_lead_days is None else min_lead_days
    cursor = add_civil_days(to_civil_date(now), lead_days)

    for _ in range(MAX_LOOKAHEAD_DAYS):
        if is_working_day(civil_weekday(cursor), specialization):
            return start_of_civil_day(cursor)
        cursor = add_civil_days(cursor, 1)

    return start_of_civil_day(cursor)


def duty_week_dates(now: datetime, specialization: str | None, week_start: str | None = None) -> list[date]:
    first_day = monday_of_week(week_start) if week_start else upcoming_monday(now)
    return [add_civil_days(first_day, offset) for offset in range(duty_days_for(specialization))]


def generate_duty_hours(
    db: Session,
    *,
    doctor_id: int,
    clinic_id: int,
    daily_start: str,
    daily_end: str,
    now: datetime,
    week_start: str | None = None,
) -> list[AvailabilityWindow]:
    """Replace a week of the doctor's windows at a clinic with identical daily hours.

    Windows of the doctor at this clinic dated inside the generated range are
    deleted and the new set inserted in the same transaction. A new window that
    overlaps one the doctor keeps at another clinic rejects the whole week.
    """
    start_clock = parse_time_of_day(daily_start)
    end_clock = parse_time_of_day(daily_end)

    doctor = get_doctor(db, doctor_id)
    get_clinic(db, clinic_id)

    days = duty_week_dates(now, doctor.specialization, week_start)

    sample_day = days[0]
    if not civil_instant(sample_day, start_clock) < civil_instant(sample_day, end_clock):
        raise BookingRejected(RejectionReason.END_NOT_AFTER_START)

    keys = [schedule_lock_key('doctor', doctor_id, day) for day in days]
    with booking_transaction(db, keys):
        removed = db.query(AvailabilityWindow).filter(
            AvailabilityWindow.doctor_user_id == doctor_id,
            AvailabilityWindow.clinic_id == clinic_id,
            AvailabilityWindow.available_date >= days[0],
            AvailabilityWindow.available_date <= days[-1],
        ).delete()

        created = [
            AvailabilityWindow(
                doctor_user_id=doctor_id,
                clinic_id=clinic_id,
                available_date=day,
                start_time=civil_instant(day, start_clock),
                end_time=civil_instant(day, end_clock),
            )
            for day in days
        ]
        for window in created:
            require_no_window_overlap(db, doctor_id, window.available_date, window.start_time, window.end_time)
        db.add_all(created)
        db.flush()

    for window in created:
        db.refresh(window)

    logger.info(
        'Duty hours for doctor %s at clinic %s replaced for %s..%s (%d removed, %d created)',
        doctor_id,
        clinic_id,
        days[0].isoformat(),
        days[-1].isoformat(),
        removed,
        len(created),
    )
    return created
