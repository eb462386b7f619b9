"""Booking validation and the appointment status machine.

Every create, move, reschedule and status change for an appointment goes
through this module. Each mutating call parses its civil-time inputs first,
then runs its store checks and its write inside one ``booking_transaction``
so that no other writer for the same doctor and day can slip in between the
check and the write.
"""

import logging
from datetime import date, datetime
from typing import NamedTuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinic_scheduler.core import config
from clinic_scheduler.core.civil_time import civil_days_between, civil_instant, parse_civil_date
from clinic_scheduler.core.errors import (
    BookingRejected,
    InvalidInput,
    NotFound,
    PermissionDenied,
    RejectionReason,
)
from clinic_scheduler.database import booking_transaction, is_write_conflict, schedule_lock_key
from clinic_scheduler.models.appointment import Appointment, AppointmentStatus
from clinic_scheduler.models.clinic import Clinic
from clinic_scheduler.models.consultation import Consultation
from clinic_scheduler.models.user import Role, User
from clinic_scheduler.services.intervals import contained_in_any, overlaps_any
from clinic_scheduler.services.schedule_queries import active_windows_for_day, blocking_appointments_for_day
from clinic_scheduler.services.service_types import resolve_service_type

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    AppointmentStatus.PENDING.value: {
        AppointmentStatus.APPROVED.value,
        AppointmentStatus.MOVED.value,
        AppointmentStatus.CANCELLED.value,
    },
    AppointmentStatus.APPROVED.value: {
        AppointmentStatus.MOVED.value,
        AppointmentStatus.CANCELLED.value,
        AppointmentStatus.COMPLETED.value,
    },
    AppointmentStatus.MOVED.value: {
        AppointmentStatus.APPROVED.value,
        AppointmentStatus.MOVED.value,
        AppointmentStatus.CANCELLED.value,
    },
}

STATUS_ACTIONS = {
    'approve': AppointmentStatus.APPROVED.value,
    'complete': AppointmentStatus.COMPLETED.value,
    'cancel': AppointmentStatus.CANCELLED.value,
}


class ActingParty(NamedTuple):
    user_id: int
    role: str


class ProposedTime(NamedTuple):
    day: date
    start: datetime
    end: datetime


def parse_proposed_time(civil_date: str, start: str, end: str) -> ProposedTime:
    if not civil_date or not start or not end:
        raise InvalidInput('Missing new schedule details.')

    day = parse_civil_date(civil_date)
    return ProposedTime(day, civil_instant(day, start), civil_instant(day, end))


def _require_time_range(proposed: ProposedTime) -> None:
    if not proposed.start < proposed.end:
        raise BookingRejected(RejectionReason.INVALID_TIME_RANGE)


def _require_aware(now: datetime) -> None:
    if now.tzinfo is None:
        raise ValueError('now must be timezone-aware')


def _normalize_remarks(remarks: str | None) -> str | None:
    if remarks is None:
        return None

    normalized = remarks.strip()
    if not normalized:
        return None

    if len(normalized) > config.MAX_REMARKS_LENGTH:
        raise InvalidInput(f'Remarks must be {config.MAX_REMARKS_LENGTH} characters or fewer.')

    return normalized


def _require_within_availability(db: Session, doctor_id: int, clinic_id: int, proposed: ProposedTime) -> None:
    windows = active_windows_for_day(db, proposed.day, clinic_id, [doctor_id])
    if not contained_in_any(proposed.start, proposed.end, windows):
        raise BookingRejected(RejectionReason.OUTSIDE_AVAILABILITY)


def _require_doctor_free(
    db: Session,
    doctor_id: int,
    proposed: ProposedTime,
    exclude_appointment_id: int | None = None,
) -> None:
    existing = blocking_appointments_for_day(
        db,
        proposed.day,
        doctor_ids=[doctor_id],
        exclude_appointment_id=exclude_appointment_id,
    )
    if overlaps_any(proposed.start, proposed.end, existing):
        raise BookingRejected(RejectionReason.SLOT_ALREADY_BOOKED)


def _require_patient_free(
    db: Session,
    patient_id: int,
    proposed: ProposedTime,
    exclude_appointment_id: int | None = None,
) -> None:
    existing = blocking_appointments_for_day(
        db,
        proposed.day,
        patient_id=patient_id,
        exclude_appointment_id=exclude_appointment_id,
    )
    if overlaps_any(proposed.start, proposed.end, existing):
        raise BookingRejected(RejectionReason.PATIENT_CONFLICT)


def _require_modifiable(appointment: Appointment) -> None:
    if appointment.is_terminal:
        raise BookingRejected(RejectionReason.NOT_MODIFIABLE)


def _require_transition(appointment: Appointment, target: str) -> None:
    _require_modifiable(appointment)
    if target not in ALLOWED_TRANSITIONS.get(appointment.status, set()):
        raise BookingRejected(
            RejectionReason.INVALID_TRANSITION,
            f'Cannot change an appointment from {appointment.status} to {target}.',
        )


def _run_booking_unit(db: Session, keys: list[str], attempt):
    """Run ``attempt`` in a booking transaction, retrying once on a write conflict."""
    for retry in range(2):
        try:
            with booking_transaction(db, keys):
                return attempt()
        except SQLAlchemyError as exc:
            if not is_write_conflict(exc):
                raise
            if retry:
                raise BookingRejected(RejectionReason.SLOT_ALREADY_BOOKED) from exc
            logger.warning('Concurrent write conflict on %s; retrying once', ', '.join(keys))


def get_appointment(db: Session, appointment_id: int) -> Appointment:
    appointment = db.query(Appointment).filter(Appointment.id == appointment_id).first()
    if appointment is None:
        raise NotFound('Appointment not found.')
    return appointment


def get_doctor(db: Session, doctor_id: int) -> User:
    doctor = db.query(User).filter(User.id == doctor_id).first()
    if doctor is None or not doctor.is_doctor:
        raise NotFound('Doctor not found.')
    return doctor


def get_clinic(db: Session, clinic_id: int) -> Clinic:
    clinic = db.query(Clinic).filter(Clinic.id == clinic_id).first()
    if clinic is None:
        raise NotFound('Clinic not found.')
    return clinic


def resolve_booking_patient(acting_party: ActingParty, patient_user_id: int | None) -> int:
    """Patients book for themselves; scholars book on behalf of a named patient."""
    if acting_party.role == Role.PATIENT.value:
        if patient_user_id is not None and patient_user_id != acting_party.user_id:
            raise PermissionDenied('Patients can only book appointments for themselves.')
        return acting_party.user_id

    if acting_party.role == Role.SCHOLAR.value:
        if patient_user_id is None:
            raise InvalidInput('A patient is required when booking on behalf of someone.')
        return patient_user_id

    raise PermissionDenied('Only patients and scholars can book appointments.')


def create_appointment(
    db: Session,
    *,
    patient_id: int,
    doctor_id: int,
    clinic_id: int,
    civil_date: str,
    start: str,
    end: str,
    service_type: str,
    created_by: int,
    now: datetime,
) -> Appointment:
    _require_aware(now)
    proposed = parse_proposed_time(civil_date, start, end)
    resolved_service_type = resolve_service_type(service_type)
    if resolved_service_type is None:
        raise InvalidInput('Service type is required.')
    _require_time_range(proposed)

    # Counted in civil dates, matching earliest_booking_start.
    if civil_days_between(now, proposed.start) < config.MIN_BOOKING_LEAD_DAYS:
        raise BookingRejected(
            RejectionReason.INSUFFICIENT_LEAD_TIME,
            f'Appointments must be booked at least {config.MIN_BOOKING_LEAD_DAYS} days in advance.',
        )

    get_clinic(db, clinic_id)
    get_doctor(db, doctor_id)
    if db.query(User.id).filter(User.id == patient_id).first() is None:
        raise NotFound('Patient not found.')

    def attempt() -> Appointment:
        _require_within_availability(db, doctor_id, clinic_id, proposed)
        _require_doctor_free(db, doctor_id, proposed)
        _require_patient_free(db, patient_id, proposed)

        appointment = Appointment(
            patient_user_id=patient_id,
            doctor_user_id=doctor_id,
            clinic_id=clinic_id,
            created_by_user_id=created_by,
            appointment_date=proposed.day,
            start_time=proposed.start,
            end_time=proposed.end,
            service_type=resolved_service_type,
            status=AppointmentStatus.PENDING.value,
        )
        db.add(appointment)
        db.flush()
        return appointment

    keys = [
        schedule_lock_key('doctor', doctor_id, proposed.day),
        schedule_lock_key('patient', patient_id, proposed.day),
    ]
    appointment = _run_booking_unit(db, keys, attempt)
    db.refresh(appointment)

    logger.info(
        'Appointment %s booked for doctor %s on %s by user %s',
        appointment.id,
        doctor_id,
        proposed.day.isoformat(),
        created_by,
    )
    return appointment


def move_appointment(
    db: Session,
    appointment_id: int,
    acting_party: ActingParty,
    *,
    civil_date: str,
    start: str,
    end: str,
    remarks: str | None,
    now: datetime,
) -> Appointment:
    """Doctor-initiated move; the remarks are the reason shown to the patient."""
    _require_aware(now)
    proposed = parse_proposed_time(civil_date, start, end)
    reason = _normalize_remarks(remarks)

    appointment = get_appointment(db, appointment_id)
    if acting_party.role != Role.DOCTOR.value or appointment.doctor_user_id != acting_party.user_id:
        raise PermissionDenied('Only the assigned doctor can move this appointment.')

    def attempt() -> Appointment:
        db.refresh(appointment)
        _require_transition(appointment, AppointmentStatus.MOVED.value)
        if reason is None:
            raise BookingRejected(RejectionReason.REASON_REQUIRED)
        _require_time_range(proposed)
        if not proposed.start > now:
            raise BookingRejected(RejectionReason.IN_THE_PAST)
        _require_within_availability(db, appointment.doctor_user_id, appointment.clinic_id, proposed)
        _require_doctor_free(db, appointment.doctor_user_id, proposed, exclude_appointment_id=appointment.id)

        appointment.appointment_date = proposed.day
        appointment.start_time = proposed.start
        appointment.end_time = proposed.end
        appointment.remarks = reason
        appointment.status = AppointmentStatus.MOVED.value
        db.flush()
        return appointment

    keys = [schedule_lock_key('doctor', appointment.doctor_user_id, proposed.day)]
    moved = _run_booking_unit(db, keys, attempt)
    db.refresh(moved)

    logger.info('Appointment %s moved by doctor %s to %s', moved.id, acting_party.user_id, proposed.day.isoformat())
    return moved


def reschedule_appointment(
    db: Session,
    appointment_id: int,
    acting_party: ActingParty,
    *,
    civil_date: str,
    start: str,
    end: str,
    remarks: str | None = None,
    now: datetime,
) -> Appointment:
    """Patient-initiated reschedule with the minimum-notice and own-conflict rules."""
    _require_aware(now)
    proposed = parse_proposed_time(civil_date, start, end)
    note = _normalize_remarks(remarks)

    appointment = get_appointment(db, appointment_id)
    if acting_party.role != Role.PATIENT.value or appointment.patient_user_id != acting_party.user_id:
        raise NotFound('Appointment not found.')

    def attempt() -> Appointment:
        db.refresh(appointment)
        _require_transition(appointment, AppointmentStatus.MOVED.value)
        _require_time_range(proposed)
        if not proposed.start > now:
            raise BookingRejected(RejectionReason.IN_THE_PAST)
        if civil_days_between(now, proposed.start) < config.MIN_RESCHEDULE_NOTICE_DAYS:
            raise BookingRejected(
                RejectionReason.INSUFFICIENT_NOTICE,
                f'Reschedules must be at least {config.MIN_RESCHEDULE_NOTICE_DAYS} days in advance.',
            )
        _require_within_availability(db, appointment.doctor_user_id, appointment.clinic_id, proposed)
        _require_doctor_free(db, appointment.doctor_user_id, proposed, exclude_appointment_id=appointment.id)
        _require_patient_free(db, appointment.patient_user_id, proposed, exclude_appointment_id=appointment.id)

        appointment.appointment_date = proposed.day
        appointment.start_time = proposed.start
        appointment.end_time = proposed.end
        if note is not None:
            appointment.remarks = note
        appointment.status = AppointmentStatus.MOVED.value
        db.flush()
        return appointment

    keys = [
        schedule_lock_key('doctor', appointment.doctor_user_id, proposed.day),
        schedule_lock_key('patient', appointment.patient_user_id, proposed.day),
    ]
    rescheduled = _run_booking_unit(db, keys, attempt)
    db.refresh(rescheduled)

    logger.info('Appointment %s rescheduled by patient %s to %s', rescheduled.id, acting_party.user_id, proposed.day.isoformat())
    return rescheduled


def move_or_reschedule(
    db: Session,
    appointment_id: int,
    acting_party: ActingParty,
    *,
    civil_date: str,
    start: str,
    end: str,
    reason: str | None = None,
    now: datetime,
) -> Appointment:
    if acting_party.role == Role.DOCTOR.value:
        return move_appointment(
            db, appointment_id, acting_party,
            civil_date=civil_date, start=start, end=end, remarks=reason, now=now,
        )

    if acting_party.role == Role.PATIENT.value:
        return reschedule_appointment(
            db, appointment_id, acting_party,
            civil_date=civil_date, start=start, end=end, remarks=reason, now=now,
        )

    raise PermissionDenied('Only the doctor or the patient can change the schedule of an appointment.')


def cancel_appointment(db: Session, appointment_id: int, acting_party: ActingParty, *, now: datetime) -> Appointment:
    _require_aware(now)
    appointment = get_appointment(db, appointment_id)

    is_owner_patient = acting_party.role == Role.PATIENT.value and appointment.patient_user_id == acting_party.user_id
    is_owner_doctor = acting_party.role == Role.DOCTOR.value and appointment.doctor_user_id == acting_party.user_id
    if acting_party.role == Role.PATIENT.value and not is_owner_patient:
        raise NotFound('Appointment not found.')
    if not (is_owner_patient or is_owner_doctor or acting_party.role == Role.SCHOLAR.value):
        raise PermissionDenied('You cannot cancel this appointment.')

    def attempt() -> Appointment:
        db.refresh(appointment)
        _require_transition(appointment, AppointmentStatus.CANCELLED.value)
        appointment.status = AppointmentStatus.CANCELLED.value
        db.flush()
        return appointment

    keys = [schedule_lock_key('doctor', appointment.doctor_user_id, appointment.appointment_date)]
    cancelled = _run_booking_unit(db, keys, attempt)
    db.refresh(cancelled)

    logger.info('Appointment %s cancelled by %s %s', cancelled.id, acting_party.role, acting_party.user_id)
    return cancelled


def _require_assigned_doctor(appointment: Appointment, acting_party: ActingParty) -> None:
    if acting_party.role != Role.DOCTOR.value or appointment.doctor_user_id != acting_party.user_id:
        raise PermissionDenied('Only the assigned doctor can change the status of this appointment.')


def approve_appointment(db: Session, appointment_id: int, acting_party: ActingParty) -> Appointment:
    appointment = get_appointment(db, appointment_id)
    _require_assigned_doctor(appointment, acting_party)

    def attempt() -> None:
        db.refresh(appointment)
        _require_transition(appointment, AppointmentStatus.APPROVED.value)
        appointment.status = AppointmentStatus.APPROVED.value
        db.flush()

    keys = [schedule_lock_key('doctor', appointment.doctor_user_id, appointment.appointment_date)]
    _run_booking_unit(db, keys, attempt)
    db.refresh(appointment)

    logger.info('Appointment %s approved by doctor %s', appointment.id, acting_party.user_id)
    return appointment


def complete_appointment(db: Session, appointment_id: int, acting_party: ActingParty) -> Appointment:
    appointment = get_appointment(db, appointment_id)
    _require_assigned_doctor(appointment, acting_party)

    def attempt() -> None:
        db.refresh(appointment)
        _require_transition(appointment, AppointmentStatus.COMPLETED.value)

        has_consultation = db.query(Consultation.id).filter(Consultation.appointment_id == appointment.id).first()
        if has_consultation is None:
            raise BookingRejected(RejectionReason.CONSULTATION_REQUIRED)

        appointment.status = AppointmentStatus.COMPLETED.value
        db.flush()

    keys = [schedule_lock_key('doctor', appointment.doctor_user_id, appointment.appointment_date)]
    _run_booking_unit(db, keys, attempt)
    db.refresh(appointment)

    logger.info('Appointment %s completed by doctor %s', appointment.id, acting_party.user_id)
    return appointment


def apply_status_action(
    db: Session,
    appointment_id: int,
    acting_party: ActingParty,
    action: str,
    *,
    now: datetime,
) -> Appointment:
    normalized = (action or '').strip().lower()
    if normalized not in STATUS_ACTIONS:
        raise InvalidInput('Invalid action.')

    if normalized == 'approve':
        return approve_appointment(db, appointment_id, acting_party)
    if normalized == 'complete':
        return complete_appointment(db, appointment_id, acting_party)
    return cancel_appointment(db, appointment_id, acting_party, now=now)


def list_appointments(db: Session, acting_party: ActingParty, limit: int = 200) -> list[Appointment]:
    query = db.query(Appointment)

    if acting_party.role == Role.PATIENT.value:
        query = query.filter(Appointment.patient_user_id == acting_party.user_id)
    elif acting_party.role == Role.DOCTOR.value:
        query = query.filter(Appointment.doctor_user_id == acting_party.user_id)
    elif acting_party.role not in {Role.SCHOLAR.value, Role.NURSE.value}:
        raise PermissionDenied()

    return query.order_by(Appointment.start_time.asc()).limit(limit).all()
