# clinicops/services/booking_service.py
from datetime import date, datetime
from typing import Optional, Union

import structlog
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .. import models, schemas
from ..config import get_settings
from ..errors import (
    ConflictError, ForbiddenError, InvalidRequestError, InvalidSlotError,
    NotFoundError, TokenConflictError,
)
from . import identity_service
from .transaction import unit_of_work

logger = structlog.get_logger(__name__)

WALK_IN_SLOT = "Walk-in"

# Statuses a caller may set directly; COMPLETED comes only from finalization.
SETTABLE_STATUSES = (models.AppointmentStatus.CONFIRMED, models.AppointmentStatus.CANCELLED)
FINAL_STATUSES = (models.AppointmentStatus.COMPLETED, models.AppointmentStatus.CANCELLED)


def _as_day(value: Union[date, datetime]) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def _get_doctor(db: Session, doctor_id: int) -> models.Identity:
    doctor = db.get(models.Identity, doctor_id)
    if doctor is None or doctor.role != models.IdentityRole.DOCTOR:
        raise InvalidSlotError("Unknown doctor")
    return doctor


# --- Token allocation ---

def next_token(db: Session, doctor_id: int, day: Union[date, datetime], slot_time: str) -> int:
    """Highest live token for the slot plus one; 1 for an empty slot."""
    current = (
        db.query(func.max(models.Appointment.token_number))
        .filter(
            models.Appointment.doctor_id == doctor_id,
            models.Appointment.date == _as_day(day),
            models.Appointment.slot_time == slot_time,
            models.Appointment.status != models.AppointmentStatus.CANCELLED,
        )
        .scalar()
    )
    return (current or 0) + 1


def preview_token(db: Session, doctor_id: int, day: Union[date, datetime], slot_time: str) -> int:
    """Read-only estimate; two previews may return the same number."""
    if not (slot_time or "").strip():
        raise InvalidSlotError("Slot is required")
    _get_doctor(db, doctor_id)
    return next_token(db, doctor_id, day, slot_time)


# --- Booking ---

def book_appointment(
    db: Session,
    doctor_id: int,
    day: Union[date, datetime],
    slot_time: Optional[str] = None,
    patient_id: Optional[int] = None,
    guest: Optional[schemas.GuestDetails] = None,
    patient_name: Optional[str] = None,
    patient_age: Optional[int] = None,
    patient_gender: Optional[str] = None,
    status: models.AppointmentStatus = models.AppointmentStatus.PENDING,
    display_prefix: str = "PID-GUEST",
) -> models.Appointment:
    """Resolve the patient, allocate a token and create the appointment.

    Each attempt is one transaction. Losing a token race to a concurrent
    booking surfaces as an IntegrityError on the slot/token index; the
    attempt is rolled back and retried with a fresh maximum.
    """
    day = _as_day(day)
    slot_time = (slot_time or "").strip() or None

    if patient_id is None and guest is None:
        raise InvalidRequestError("Either a patient or guest details are required")
    if patient_id is None:
        identity_service.validate_phone(guest.phone)

    if guest is not None:
        patient_name = patient_name or guest.name
        patient_age = patient_age if patient_age is not None else guest.age
        patient_gender = patient_gender or guest.sex

    attempts = get_settings().token_allocation_attempts
    for attempt in range(1, attempts + 1):
        try:
            with unit_of_work(db, "book_appointment"):
                doctor = _get_doctor(db, doctor_id)
                if patient_id is not None:
                    patient = identity_service.get_patient(db, patient_id)
                    if guest is not None:
                        identity_service.backfill_identity(db, patient, name=guest.name, age=guest.age, sex=guest.sex)
                else:
                    patient = identity_service.resolve_patient(
                        db, guest.phone, name=guest.name, age=guest.age, sex=guest.sex,
                        display_prefix=display_prefix,
                    )

                token_number = next_token(db, doctor.id, day, slot_time) if slot_time else None
                appointment = models.Appointment(
                    patient_id=patient.id,
                    doctor_id=doctor.id,
                    date=day,
                    slot_time=slot_time,
                    token_number=token_number,
                    status=status,
                    patient_name=patient_name,
                    patient_age=patient_age,
                    patient_gender=patient_gender,
                )
                db.add(appointment)
                db.flush()
        except IntegrityError:
            logger.info("token.conflict_retry", doctor_id=doctor_id, date=day.isoformat(), attempt=attempt)
            continue

        db.refresh(appointment)
        logger.info(
            "booking.created",
            appointment_id=appointment.id,
            doctor_id=appointment.doctor_id,
            patient_id=appointment.patient_id,
            token_number=appointment.token_number,
            attempt=attempt,
        )
        return appointment

    logger.warning("token.allocation_exhausted", doctor_id=doctor_id, date=day.isoformat(), attempts=attempts)
    raise TokenConflictError()


def book_walk_in(
    db: Session,
    doctor: models.Identity,
    name: str,
    phone: str,
    age: Optional[int] = None,
    sex: Optional[str] = None,
) -> models.Appointment:
    """Doctor-registered walk-in for today, confirmed on creation."""
    guest = schemas.GuestDetails(name=name, phone=phone, age=age, sex=sex)
    return book_appointment(
        db,
        doctor_id=doctor.id,
        day=date.today(),
        slot_time=WALK_IN_SLOT,
        guest=guest,
        status=models.AppointmentStatus.CONFIRMED,
        display_prefix="PID-WALK",
    )


# --- Status changes ---

def update_appointment_status(
    db: Session,
    appointment_id: int,
    new_status: models.AppointmentStatus,
    actor: models.Identity,
) -> models.Appointment:
    if new_status not in SETTABLE_STATUSES:
        raise InvalidRequestError("Status can only be set to CONFIRMED or CANCELLED")

    with unit_of_work(db, "update_appointment_status"):
        appointment = (
            db.query(models.Appointment)
            .filter(models.Appointment.id == appointment_id)
            .with_for_update()
            .first()
        )
        if appointment is None:
            raise NotFoundError("Appointment not found")

        if actor.role == models.IdentityRole.PATIENT:
            if appointment.patient_id != actor.id or new_status != models.AppointmentStatus.CANCELLED:
                raise ForbiddenError()
        elif actor.role == models.IdentityRole.DOCTOR:
            if appointment.doctor_id != actor.id:
                raise ForbiddenError()
        elif actor.role != models.IdentityRole.ADMIN:
            raise ForbiddenError()

        if appointment.status in FINAL_STATUSES:
            raise ConflictError(f"Appointment is already {appointment.status.value}")
        appointment.status = new_status

    db.refresh(appointment)
    logger.info("appointment.status_changed", appointment_id=appointment.id, status=new_status.value, actor_id=actor.id)
    return appointment
