# clinicops/services/consultation_service.py
from datetime import date
from typing import Iterable, List, Optional

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .. import models, schemas
from ..errors import (
    ConflictError, ConsultationExistsError, ForbiddenError, InvalidRequestError, NotFoundError,
)
from . import catalog_service
from .transaction import unit_of_work

logger = structlog.get_logger(__name__)


def _consultation_exists(db: Session, appointment_id: int) -> bool:
    return (
        db.query(models.Consultation.id)
        .filter(models.Consultation.appointment_id == appointment_id)
        .first()
        is not None
    )


def finalize_consultation(
    db: Session,
    appointment_id: int,
    diagnosis: str,
    notes: Optional[str] = None,
    next_visit_date: Optional[date] = None,
    items: Iterable[schemas.PrescriptionItemRequest] = (),
    lab_tests: Iterable[schemas.LabTestRequest] = (),
    doctor: Optional[models.Identity] = None,
) -> models.Consultation:
    """Record a completed visit in one transaction.

    Creates the consultation, one prescription holding every item, one
    pending lab request per test, bumps catalog usage for each reference
    and marks the appointment COMPLETED. Either everything is written or
    nothing is.
    """
    diagnosis = (diagnosis or "").strip()
    if not diagnosis:
        raise InvalidRequestError("Diagnosis is required")

    items: List[schemas.PrescriptionItemRequest] = list(items or [])
    lab_tests: List[schemas.LabTestRequest] = list(lab_tests or [])
    for item in items:
        catalog_service.normalise_name(item.medicine_name)
    for test in lab_tests:
        catalog_service.normalise_name(test.test_name)

    try:
        with unit_of_work(db, "finalize_consultation"):
            appointment = (
                db.query(models.Appointment)
                .filter(models.Appointment.id == appointment_id)
                .with_for_update()
                .first()
            )
            if appointment is None:
                raise NotFoundError("Appointment not found")
            if doctor is not None and appointment.doctor_id != doctor.id:
                raise ForbiddenError("This appointment belongs to another doctor")
            if _consultation_exists(db, appointment_id):
                raise ConsultationExistsError()
            if appointment.status in (models.AppointmentStatus.CANCELLED, models.AppointmentStatus.COMPLETED):
                raise ConflictError(f"Appointment is already {appointment.status.value}")

            consultation = models.Consultation(
                appointment_id=appointment.id,
                diagnosis=diagnosis,
                notes=notes,
                next_visit_date=next_visit_date,
            )
            db.add(consultation)
            db.flush()

            if items:
                prescription = models.Prescription(consultation_id=consultation.id, is_dispensed=False)
                db.add(prescription)
                db.flush()
                for item in items:
                    medicine = catalog_service.upsert_catalog_entry(db, models.CatalogKind.medicine, item.medicine_name)
                    db.add(models.PrescriptionItem(
                        prescription_id=prescription.id,
                        medicine_id=medicine.id,
                        dosage=item.dosage,
                        duration=item.duration,
                    ))

            for test in lab_tests:
                lab_test = catalog_service.upsert_catalog_entry(db, models.CatalogKind.labtest, test.test_name)
                db.add(models.LabRequest(
                    consultation_id=consultation.id,
                    lab_test_id=lab_test.id,
                    test_name=lab_test.name,
                    status=models.LabRequestStatus.PENDING,
                ))

            appointment.status = models.AppointmentStatus.COMPLETED
            db.flush()
    except IntegrityError:
        # Lost the race against a concurrent finalization of the same appointment
        if _consultation_exists(db, appointment_id):
            raise ConsultationExistsError()
        raise

    db.refresh(consultation)
    logger.info(
        "consultation.finalized",
        consultation_id=consultation.id,
        appointment_id=appointment_id,
        items=len(items),
        lab_requests=len(lab_tests),
    )
    return consultation


def get_consultation(db: Session, consultation_id: int) -> models.Consultation:
    consultation = db.get(models.Consultation, consultation_id)
    if consultation is None:
        raise NotFoundError("Consultation not found")
    return consultation
