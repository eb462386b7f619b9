from datetime import timedelta
from types import SimpleNamespace

import pytest

from clinic_scheduler.core.civil_time import civil_instant
from clinic_scheduler.core.errors import InvalidInput
from clinic_scheduler.models.appointment import AppointmentStatus
from clinic_scheduler.services.slots import (
    compute_slots_for_doctor,
    compute_slots_for_doctors,
    generate_slots,
    generate_slots_bulk,
)


def at(clock: str):
    return civil_instant('2025-03-03', clock)


def span(start: str, end: str, doctor_user_id: int = 1) -> SimpleNamespace:
    return SimpleNamespace(start_time=at(start), end_time=at(end), doctor_user_id=doctor_user_id)


def starts(slots) -> list[str]:
    return [slot.as_civil()['start'] for slot in slots]


def test_one_hour_window_yields_four_quarter_hour_slots() -> None:
    slots = compute_slots_for_doctor([span('09:00', '10:00')], [])

    assert starts(slots) == ['09:00', '09:15', '09:30', '09:45']
    assert slots[-1].as_civil() == {'start': '09:45', 'end': '10:00'}


def test_blocking_appointment_removes_every_overlapping_slot() -> None:
    slots = compute_slots_for_doctor([span('09:00', '10:00')], [span('09:15', '09:45')])

    assert starts(slots) == ['09:00', '09:45']


def test_trailing_partial_step_is_not_offered() -> None:
    slots = compute_slots_for_doctor([span('09:00', '09:40')], [])

    assert starts(slots) == ['09:00', '09:15']


def test_slots_never_straddle_touching_windows() -> None:
    slots = compute_slots_for_doctor([span('09:00', '09:20'), span('09:20', '10:00')], [])

    assert starts(slots) == ['09:00', '09:20', '09:35']


def test_no_windows_means_no_slots() -> None:
    assert compute_slots_for_doctor([], [span('09:00', '09:15')]) == []


def test_custom_slot_length() -> None:
    slots = compute_slots_for_doctor([span('09:00', '10:00')], [], slot_minutes=30)

    assert starts(slots) == ['09:00', '09:30']


def test_generated_slots_are_contained_and_free() -> None:
    windows = [span('08:00', '11:10'), span('13:05', '16:00')]
    blocking = [span('08:20', '08:50'), span('14:00', '14:15'), span('15:59', '17:00')]

    slots = compute_slots_for_doctor(windows, blocking)

    assert slots
    for slot in slots:
        assert slot.end - slot.start == timedelta(minutes=15)
        assert any(w.start_time <= slot.start and slot.end <= w.end_time for w in windows)
        assert not any(slot.start < b.end_time and b.start_time < slot.end for b in blocking)


def test_bulk_computation_lists_every_requested_doctor() -> None:
    result = compute_slots_for_doctors(
        [1, 2, 3],
        [span('09:00', '09:30', doctor_user_id=1), span('10:00', '10:15', doctor_user_id=3)],
        [span('09:00', '09:15', doctor_user_id=1)],
    )

    assert set(result) == {1, 2, 3}
    assert starts(result[1]) == ['09:15']
    assert result[2] == []
    assert starts(result[3]) == ['10:00']


def test_generate_slots_reads_windows_and_bookings(db, people, add_window, add_appointment) -> None:
    add_window(people.doctor, people.clinic, '2025-03-03', '09:00', '10:00')
    add_appointment(people.patient, people.doctor, people.clinic, '2025-03-03', '09:00', '09:30')

    assert generate_slots(db, people.doctor.id, people.clinic.id, '2025-03-03') == [
        {'start': '09:30', 'end': '09:45'},
        {'start': '09:45', 'end': '10:00'},
    ]


def test_generate_slots_ignores_terminal_appointments(db, people, add_window, add_appointment) -> None:
    add_window(people.doctor, people.clinic, '2025-03-03', '09:00', '09:30')
    add_appointment(
        people.patient, people.doctor, people.clinic, '2025-03-03', '09:00', '09:15',
        status=AppointmentStatus.CANCELLED,
    )
    add_appointment(
        people.other_patient, people.doctor, people.clinic, '2025-03-03', '09:15', '09:30',
        status=AppointmentStatus.MOVED,
    )

    assert generate_slots(db, people.doctor.id, people.clinic.id, '2025-03-03') == [
        {'start': '09:00', 'end': '09:15'},
    ]


def test_generate_slots_skips_archived_windows(db, people, add_window) -> None:
    window = add_window(people.doctor, people.clinic, '2025-03-03', '09:00', '10:00')
    window.archived_at = civil_instant('2025-03-05', '09:00')
    db.commit()

    assert generate_slots(db, people.doctor.id, people.clinic.id, '2025-03-03') == []


def test_generate_slots_is_scoped_to_the_clinic(db, people, add_window) -> None:
    add_window(people.doctor, people.other_clinic, '2025-03-03', '09:00', '10:00')

    assert generate_slots(db, people.doctor.id, people.clinic.id, '2025-03-03') == []


def test_generate_slots_rejects_malformed_date(db, people) -> None:
    with pytest.raises(InvalidInput):
        generate_slots(db, people.doctor.id, people.clinic.id, '03-03-2025')


def test_generate_slots_bulk_includes_doctors_without_windows(db, people, add_window) -> None:
    add_window(people.doctor, people.clinic, '2025-03-03', '09:00', '09:30')

    result = generate_slots_bulk(db, people.clinic.id, [people.doctor.id, people.dentist.id, people.doctor.id], '2025-03-03')

    assert result == {
        people.doctor.id: [{'start': '09:00', 'end': '09:15'}, {'start': '09:15', 'end': '09:30'}],
        people.dentist.id: [],
    }


def test_generate_slots_bulk_requires_doctors(db, people) -> None:
    with pytest.raises(InvalidInput):
        generate_slots_bulk(db, people.clinic.id, [], '2025-03-03')
