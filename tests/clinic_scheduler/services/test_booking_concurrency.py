import threading
from datetime import date, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from clinic_scheduler import database
from clinic_scheduler.core.civil_time import civil_instant
from clinic_scheduler.core.errors import BookingRejected, RejectionReason
from clinic_scheduler.database import Base, booking_transaction, schedule_lock_key
from clinic_scheduler.models.appointment import BLOCKING_STATUSES, Appointment, AppointmentStatus
from clinic_scheduler.models.consultation import Consultation
from clinic_scheduler.services import booking
from clinic_scheduler.services.booking import ActingParty

NOW = civil_instant('2025-03-01', '08:00')


@pytest.fixture
def session_factory(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'clinic.db'}",
        connect_args={'check_same_thread': False},
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    finally:
        engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


def party(user) -> ActingParty:
    return ActingParty(user_id=user.id, role=user.role)


def assert_no_active_overlap(session, doctor_id: int) -> None:
    session.expire_all()
    active = (
        session.query(Appointment)
        .filter(Appointment.doctor_user_id == doctor_id, Appointment.status.in_(BLOCKING_STATUSES))
        .order_by(Appointment.start_time.asc())
        .all()
    )
    for earlier, later in zip(active, active[1:]):
        assert earlier.end_time <= later.start_time, (earlier.id, later.id)


def test_concurrent_overlapping_bookings_accept_exactly_one(db, people, add_window, session_factory) -> None:
    add_window(people.doctor, people.clinic, '2025-03-04', '09:00', '12:00')
    doctor_id = people.doctor.id
    clinic_id = people.clinic.id
    requests = [(people.patient.id, '09:00', '09:30'), (people.other_patient.id, '09:15', '09:45')]

    barrier = threading.Barrier(len(requests))
    accepted, rejected, errors = [], [], []

    def book(patient_id: int, start: str, end: str) -> None:
        session = session_factory()
        try:
            barrier.wait()
            appointment = booking.create_appointment(
                session,
                patient_id=patient_id,
                doctor_id=doctor_id,
                clinic_id=clinic_id,
                civil_date='2025-03-04',
                start=start,
                end=end,
                service_type='Consultation',
                created_by=patient_id,
                now=NOW,
            )
            accepted.append(appointment.id)
        except BookingRejected as exc:
            rejected.append(exc.reason)
        except Exception as exc:
            errors.append(exc)
        finally:
            session.close()

    threads = [threading.Thread(target=book, args=request) for request in requests]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert errors == []
    assert len(accepted) == 1
    assert rejected == [RejectionReason.SLOT_ALREADY_BOOKED]
    assert_no_active_overlap(db, doctor_id)


@pytest.mark.parametrize(
    ('starting_status', 'change_status'),
    [
        (AppointmentStatus.PENDING, booking.approve_appointment),
        (AppointmentStatus.APPROVED, booking.complete_appointment),
    ],
)
def test_cancel_committed_during_a_status_change_wins(
    db, people, add_appointment, session_factory, monkeypatch, starting_status, change_status,
) -> None:
    appointment = add_appointment(
        people.patient, people.doctor, people.clinic, '2025-03-05', '09:00', '09:15',
        status=starting_status,
    )
    appointment_id = appointment.id
    db.add(Consultation(appointment_id=appointment_id, doctor_user_id=people.doctor.id, notes='Seen'))
    db.commit()

    patient = party(people.patient)
    doctor = party(people.doctor)
    assigned_doctor_check = booking._require_assigned_doctor

    def cancel_from_another_session(target, acting_party) -> None:
        assigned_doctor_check(target, acting_party)
        other = session_factory()
        try:
            booking.cancel_appointment(other, appointment_id, patient, now=NOW)
        finally:
            other.close()

    monkeypatch.setattr(booking, '_require_assigned_doctor', cancel_from_another_session)

    with pytest.raises(BookingRejected) as exception_info:
        change_status(db, appointment_id, doctor)

    assert exception_info.value.reason == RejectionReason.NOT_MODIFIABLE
    db.expire_all()
    assert db.get(Appointment, appointment_id).status == AppointmentStatus.CANCELLED.value


def test_active_appointments_never_overlap_across_mutations(db, people, add_window) -> None:
    add_window(people.doctor, people.clinic, '2025-03-04', '09:00', '12:00')
    add_window(people.doctor, people.clinic, '2025-03-05', '09:00', '12:00')
    doctor_id = people.doctor.id
    doctor = party(people.doctor)

    def book(patient, start: str, end: str):
        return booking.create_appointment(
            db,
            patient_id=patient.id,
            doctor_id=doctor_id,
            clinic_id=people.clinic.id,
            civil_date='2025-03-04',
            start=start,
            end=end,
            service_type='Consultation',
            created_by=patient.id,
            now=NOW,
        )

    first = book(people.patient, '09:00', '09:30')
    assert_no_active_overlap(db, doctor_id)

    with pytest.raises(BookingRejected):
        book(people.other_patient, '09:15', '09:45')
    assert_no_active_overlap(db, doctor_id)

    second = book(people.other_patient, '09:30', '10:00')
    assert_no_active_overlap(db, doctor_id)

    with pytest.raises(BookingRejected):
        booking.move_appointment(
            db, first.id, doctor,
            civil_date='2025-03-04', start='09:45', end='10:15', remarks='Ward round', now=NOW,
        )
    assert_no_active_overlap(db, doctor_id)

    booking.move_appointment(
        db, first.id, doctor,
        civil_date='2025-03-04', start='10:00', end='10:30', remarks='Ward round', now=NOW,
    )
    assert_no_active_overlap(db, doctor_id)

    booking.reschedule_appointment(
        db, second.id, party(people.other_patient),
        civil_date='2025-03-05', start='09:00', end='09:30', now=NOW,
    )
    assert_no_active_overlap(db, doctor_id)

    booking.cancel_appointment(db, first.id, doctor, now=NOW)
    third = book(people.patient, '10:00', '10:30')
    assert_no_active_overlap(db, doctor_id)

    assert third.status == AppointmentStatus.PENDING.value


def test_lock_stripes_are_released_after_every_day(db) -> None:
    first_day = date(2025, 3, 1)
    for offset in range(28):
        key = schedule_lock_key('doctor', 1, first_day + timedelta(days=offset))
        with booking_transaction(db, [key]):
            pass

    assert len(database._stripe_locks) == database.LOCK_STRIPES
    assert not any(lock.locked() for lock in database._stripe_locks)


def test_keys_sharing_a_stripe_take_it_once(db, monkeypatch) -> None:
    monkeypatch.setattr(database, '_stripe_locks', [threading.Lock()])
    keys = ['doctor:1:2025-03-04', 'patient:2:2025-03-04']

    assert database.stripe_indexes(keys) == [0]
    with booking_transaction(db, keys):
        assert database._stripe_locks[0].locked()

    assert not database._stripe_locks[0].locked()


def test_failed_unit_releases_its_stripes(db) -> None:
    keys = [schedule_lock_key('doctor', 1, date(2025, 3, 4)), schedule_lock_key('patient', 2, date(2025, 3, 4))]

    with pytest.raises(BookingRejected):
        with booking_transaction(db, keys):
            raise BookingRejected(RejectionReason.SLOT_ALREADY_BOOKED)

    assert all(0 <= index < database.LOCK_STRIPES for index in database.stripe_indexes(keys))
    assert not any(lock.locked() for lock in database._stripe_locks)
