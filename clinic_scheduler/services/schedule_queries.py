"""Store reads shared by the slot generator and the booking validator."""

from datetime import date, timedelta

from sqlalchemy.orm import Session

from clinic_scheduler.core.civil_time import start_of_civil_day
from clinic_scheduler.models.appointment import BLOCKING_STATUSES, Appointment
from clinic_scheduler.models.availability import AvailabilityWindow


def active_windows_for_day(
    db: Session,
    day: date,
    clinic_id: int,
    doctor_ids: list[int],
) -> list[AvailabilityWindow]:
    return db.query(AvailabilityWindow).filter(
        AvailabilityWindow.doctor_user_id.in_(doctor_ids),
        AvailabilityWindow.clinic_id == clinic_id,
        AvailabilityWindow.available_date == day,
        AvailabilityWindow.archived_at.is_(None),
    ).order_by(AvailabilityWindow.start_time.asc(), AvailabilityWindow.id.asc()).all()


def blocking_appointments_for_day(
    db: Session,
    day: date,
    *,
    doctor_ids: list[int] | None = None,
    patient_id: int | None = None,
    exclude_appointment_id: int | None = None,
) -> list[Appointment]:
    """Appointments in a blocking status that touch the civil day ``day``."""
    day_start = start_of_civil_day(day)
    next_day_start = start_of_civil_day(day + timedelta(days=1))

    query = db.query(Appointment).filter(
        Appointment.status.in_(BLOCKING_STATUSES),
        Appointment.start_time < next_day_start,
        Appointment.end_time > day_start,
    )

    if doctor_ids is not None:
        query = query.filter(Appointment.doctor_user_id.in_(doctor_ids))
    if patient_id is not None:
        query = query.filter(Appointment.patient_user_id == patient_id)
    if exclude_appointment_id is not None:
        query = query.filter(Appointment.id != exclude_appointment_id)

    return query.order_by(Appointment.start_time.asc()).all()
