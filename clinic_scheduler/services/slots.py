"""Bookable slot generation.

Each active availability window is walked in fixed steps from its start; a
step becomes a slot when it ends inside the same window and overlaps none of
the doctor's blocking appointments. Windows are never merged, so a slot never
straddles two windows even when they touch.
"""

import logging
from datetime import datetime, timedelta
from typing import NamedTuple

from sqlalchemy.orm import Session

from clinic_scheduler.core import config
from clinic_scheduler.core.civil_time import format_civil_time, parse_civil_date
from clinic_scheduler.core.errors import InvalidInput
from clinic_scheduler.services.intervals import overlaps_any
from clinic_scheduler.services.schedule_queries import active_windows_for_day, blocking_appointments_for_day

logger = logging.getLogger(__name__)


class TimeSlot(NamedTuple):
    start: datetime
    end: datetime

    def as_civil(self) -> dict[str, str]:
        return {'start': format_civil_time(self.start), 'end': format_civil_time(self.end)}


def compute_slots_for_doctor(windows, blocking, slot_minutes: int | None = None) -> list[TimeSlot]:
    step = timedelta(minutes=slot_minutes or config.SLOT_MINUTES)
    slots: list[TimeSlot] = []

    for window in windows:
        cursor = window.start_time

        while cursor + step <= window.end_time:
            candidate_end = cursor + step
            if not overlaps_any(cursor, candidate_end, blocking):
                slots.append(TimeSlot(cursor, candidate_end))
            cursor = candidate_end

    return slots


def compute_slots_for_doctors(doctor_ids, windows, appointments, slot_minutes: int | None = None) -> dict:
    """Run the per-doctor generator for every requested doctor.

    Doctors with no windows map to an empty list instead of being left out.
    """
    windows_by_doctor: dict = {doctor_id: [] for doctor_id in doctor_ids}
    appointments_by_doctor: dict = {doctor_id: [] for doctor_id in doctor_ids}

    for window in windows:
        windows_by_doctor.setdefault(window.doctor_user_id, []).append(window)
    for appointment in appointments:
        appointments_by_doctor.setdefault(appointment.doctor_user_id, []).append(appointment)

    return {
        doctor_id: compute_slots_for_doctor(
            doctor_windows,
            appointments_by_doctor.get(doctor_id, []),
            slot_minutes,
        )
        for doctor_id, doctor_windows in windows_by_doctor.items()
    }


def generate_slots(db: Session, doctor_id: int, clinic_id: int, civil_date: str) -> list[dict[str, str]]:
    day = parse_civil_date(civil_date)

    windows = active_windows_for_day(db, day, clinic_id, [doctor_id])
    if not windows:
        return []

    blocking = blocking_appointments_for_day(db, day, doctor_ids=[doctor_id])
    return [slot.as_civil() for slot in compute_slots_for_doctor(windows, blocking)]


def generate_slots_bulk(
    db: Session,
    clinic_id: int,
    doctor_ids: list[int],
    civil_date: str,
) -> dict[int, list[dict[str, str]]]:
    day = parse_civil_date(civil_date)
    unique_ids = list(dict.fromkeys(doctor_ids))
    if not unique_ids:
        raise InvalidInput('No doctors provided.')

    windows = active_windows_for_day(db, day, clinic_id, unique_ids)
    appointments = blocking_appointments_for_day(db, day, doctor_ids=unique_ids)
    slots_by_doctor = compute_slots_for_doctors(unique_ids, windows, appointments)

    logger.debug('Generated slots for %d doctors on %s', len(unique_ids), day.isoformat())

    return {
        doctor_id: [slot.as_civil() for slot in doctor_slots]
        for doctor_id, doctor_slots in slots_by_doctor.items()
    }
