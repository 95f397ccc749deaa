# tests/test_token_allocation.py
import threading

import pytest

from clinicops import models
from clinicops.database import SessionLocal
from clinicops.errors import ForbiddenError, InvalidSlotError, TokenConflictError
from clinicops.services import booking_service

SLOT = "09:00 AM - 10:00 AM"


def _book(db, doctor, patient, day, slot=SLOT):
    return booking_service.book_appointment(
        db, doctor_id=doctor.id, day=day, slot_time=slot, patient_id=patient.id,
    )


def test_tokens_start_at_one_and_increase(db, doctor, patient, visit_day):
    tokens = [_book(db, doctor, patient, visit_day).token_number for _ in range(3)]
    assert tokens == [1, 2, 3]


def test_tokens_are_scoped_to_doctor_day_and_slot(db, make_identity, doctor, patient, visit_day):
    other_doctor = make_identity(models.IdentityRole.DOCTOR)
    _book(db, doctor, patient, visit_day)

    assert _book(db, doctor, patient, visit_day, slot="10:00 AM - 11:00 AM").token_number == 1
    assert _book(db, other_doctor, patient, visit_day).token_number == 1
    assert booking_service.preview_token(db, doctor.id, visit_day.replace(day=11), SLOT) == 1


def test_cancelled_top_token_example(db, doctor, patient, visit_day):
    appointments = [_book(db, doctor, patient, visit_day) for _ in range(3)]
    booking_service.update_appointment_status(
        db, appointments[1].id, models.AppointmentStatus.CANCELLED, doctor,
    )

    assert booking_service.preview_token(db, doctor.id, visit_day, SLOT) == 4
    assert _book(db, doctor, patient, visit_day).token_number == 4


def test_cancelled_token_not_reassigned_while_higher_tokens_live(db, doctor, patient, visit_day):
    first = _book(db, doctor, patient, visit_day)
    _book(db, doctor, patient, visit_day)
    booking_service.update_appointment_status(db, first.id, models.AppointmentStatus.CANCELLED, doctor)

    live = {
        a.token_number
        for a in db.query(models.Appointment).filter(
            models.Appointment.status != models.AppointmentStatus.CANCELLED
        )
    }
    new_token = _book(db, doctor, patient, visit_day).token_number
    assert new_token == 3
    assert new_token not in live


def test_preview_does_not_reserve(db, doctor, patient, visit_day):
    assert booking_service.preview_token(db, doctor.id, visit_day, SLOT) == 1
    assert booking_service.preview_token(db, doctor.id, visit_day, SLOT) == 1
    assert db.query(models.Appointment).count() == 0


def test_booking_without_slot_has_no_token(db, doctor, patient, visit_day):
    appointment = booking_service.book_appointment(
        db, doctor_id=doctor.id, day=visit_day, patient_id=patient.id,
    )
    assert appointment.token_number is None
    assert appointment.status == models.AppointmentStatus.PENDING


def test_unknown_or_non_doctor_is_rejected(db, patient, visit_day):
    with pytest.raises(InvalidSlotError):
        booking_service.preview_token(db, 999, visit_day, SLOT)
    with pytest.raises(InvalidSlotError):
        booking_service.book_appointment(db, doctor_id=patient.id, day=visit_day, slot_time=SLOT, patient_id=patient.id)
    assert db.query(models.Appointment).count() == 0


def test_retry_budget_exhaustion_raises_conflict(db, doctor, patient, visit_day, monkeypatch):
    _book(db, doctor, patient, visit_day)
    monkeypatch.setattr(booking_service, "next_token", lambda *args, **kwargs: 1)

    with pytest.raises(TokenConflictError):
        _book(db, doctor, patient, visit_day)
    assert db.query(models.Appointment).count() == 1


def test_concurrent_bookings_get_distinct_sequential_tokens(doctor, patient, visit_day):
    workers = 8
    doctor_id, patient_id = doctor.id, patient.id
    barrier = threading.Barrier(workers)
    tokens, errors = [], []
    lock = threading.Lock()

    def book():
        session = SessionLocal()
        try:
            barrier.wait()
            appointment = booking_service.book_appointment(
                session, doctor_id=doctor_id, day=visit_day, slot_time=SLOT, patient_id=patient_id,
            )
            with lock:
                tokens.append(appointment.token_number)
        except Exception as exc:
            with lock:
                errors.append(exc)
        finally:
            session.close()

    threads = [threading.Thread(target=book) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert sorted(tokens) == list(range(1, workers + 1))


def test_status_changes_limited_to_owners_and_admins(db, make_identity, doctor, patient, visit_day):
    appointment = _book(db, doctor, patient, visit_day)
    confirmed = models.AppointmentStatus.CONFIRMED

    for role in (models.IdentityRole.PHARMACY, models.IdentityRole.LAB):
        with pytest.raises(ForbiddenError):
            booking_service.update_appointment_status(db, appointment.id, confirmed, make_identity(role))
    with pytest.raises(ForbiddenError):
        booking_service.update_appointment_status(db, appointment.id, confirmed, make_identity(models.IdentityRole.DOCTOR))
    with pytest.raises(ForbiddenError):
        booking_service.update_appointment_status(db, appointment.id, confirmed, patient)

    admin = make_identity(models.IdentityRole.ADMIN)
    updated = booking_service.update_appointment_status(db, appointment.id, confirmed, admin)
    assert updated.status == confirmed

    cancelled = booking_service.update_appointment_status(
        db, appointment.id, models.AppointmentStatus.CANCELLED, patient,
    )
    assert cancelled.status == models.AppointmentStatus.CANCELLED
