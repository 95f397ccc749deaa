# clinicops/services/staff_service.py
from dataclasses import dataclass, asdict
from typing import List, Optional

import structlog
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .. import models, schemas
from ..errors import (
    DuplicateDisplayIdError, InvalidRequestError, NotFoundError, ProtectedIdentityError,
)
from ..security import get_passcode_hash
from .transaction import unit_of_work

logger = structlog.get_logger(__name__)


@dataclass
class CascadeReport:
    identity_id: int
    appointments_deleted: int = 0
    consultations_deleted: int = 0
    prescriptions_deleted: int = 0
    prescription_items_deleted: int = 0
    lab_requests_deleted: int = 0
    prescriptions_unlinked: int = 0
    lab_requests_unlinked: int = 0

    def as_dict(self):
        return asdict(self)


def _ids(rows) -> List[int]:
    return [row[0] for row in rows]


def delete_staff(db: Session, identity_id: int) -> CascadeReport:
    """Remove a staff identity and every clinical record hanging off it.

    Order: prescription items, prescriptions, lab requests, consultations,
    appointments; then weak dispenser / technician references are cleared
    and the identity itself is deleted. One transaction.
    """
    report = CascadeReport(identity_id=identity_id)

    with unit_of_work(db, "delete_staff"):
        identity = (
            db.query(models.Identity)
            .filter(models.Identity.id == identity_id)
            .with_for_update()
            .first()
        )
        if identity is None:
            raise NotFoundError("Staff member not found")
        if identity.is_super_admin:
            raise ProtectedIdentityError()
        if identity.role == models.IdentityRole.PATIENT:
            raise InvalidRequestError("Patient records cannot be deleted")

        appointment_ids = _ids(
            db.query(models.Appointment.id)
            .filter(or_(
                models.Appointment.doctor_id == identity_id,
                models.Appointment.patient_id == identity_id,
            ))
            .all()
        )
        consultation_ids = _ids(
            db.query(models.Consultation.id)
            .filter(models.Consultation.appointment_id.in_(appointment_ids))
            .all()
        ) if appointment_ids else []
        prescription_ids = _ids(
            db.query(models.Prescription.id)
            .filter(models.Prescription.consultation_id.in_(consultation_ids))
            .all()
        ) if consultation_ids else []

        if prescription_ids:
            report.prescription_items_deleted = (
                db.query(models.PrescriptionItem)
                .filter(models.PrescriptionItem.prescription_id.in_(prescription_ids))
                .delete(synchronize_session=False)
            )
            report.prescriptions_deleted = (
                db.query(models.Prescription)
                .filter(models.Prescription.id.in_(prescription_ids))
                .delete(synchronize_session=False)
            )
        if consultation_ids:
            report.lab_requests_deleted = (
                db.query(models.LabRequest)
                .filter(models.LabRequest.consultation_id.in_(consultation_ids))
                .delete(synchronize_session=False)
            )
            report.consultations_deleted = (
                db.query(models.Consultation)
                .filter(models.Consultation.id.in_(consultation_ids))
                .delete(synchronize_session=False)
            )
        if appointment_ids:
            report.appointments_deleted = (
                db.query(models.Appointment)
                .filter(models.Appointment.id.in_(appointment_ids))
                .delete(synchronize_session=False)
            )

        report.prescriptions_unlinked = (
            db.query(models.Prescription)
            .filter(models.Prescription.dispensed_by_id == identity_id)
            .update({models.Prescription.dispensed_by_id: None}, synchronize_session=False)
        )
        report.lab_requests_unlinked = (
            db.query(models.LabRequest)
            .filter(models.LabRequest.technician_id == identity_id)
            .update({models.LabRequest.technician_id: None}, synchronize_session=False)
        )

        db.query(models.Identity).filter(models.Identity.id == identity_id).delete(synchronize_session=False)

    logger.info("staff.cascade_deleted", **report.as_dict())
    return report


# --- Staff management ---

def _display_id_taken(db: Session, display_id: str, exclude_id: Optional[int] = None) -> bool:
    query = db.query(models.Identity.id).filter(models.Identity.display_id == display_id)
    if exclude_id is not None:
        query = query.filter(models.Identity.id != exclude_id)
    return query.first() is not None


def create_staff(db: Session, staff: schemas.StaffCreate) -> models.Identity:
    if _display_id_taken(db, staff.display_id):
        raise DuplicateDisplayIdError()

    try:
        with unit_of_work(db, "create_staff"):
            identity = models.Identity(
                name=staff.name.strip(),
                role=staff.role,
                display_id=staff.display_id,
                passcode_hash=get_passcode_hash(staff.passcode),
                specialization=staff.specialization,
                phone=staff.phone,
                start_hour=staff.start_hour,
                end_hour=staff.end_hour,
            )
            db.add(identity)
            db.flush()
    except IntegrityError:
        raise DuplicateDisplayIdError()

    db.refresh(identity)
    logger.info("staff.created", identity_id=identity.id, role=identity.role.value)
    return identity


def get_staff(db: Session, identity_id: int) -> models.Identity:
    identity = db.get(models.Identity, identity_id)
    if identity is None or identity.role == models.IdentityRole.PATIENT:
        raise NotFoundError("Staff member not found")
    return identity


def update_staff(db: Session, identity_id: int, update: schemas.StaffUpdate) -> models.Identity:
    data = update.model_dump(exclude_unset=True, exclude_none=True)
    passcode = data.pop("passcode", None)

    identity = get_staff(db, identity_id)
    if identity.is_super_admin and data.get("role") not in (None, models.IdentityRole.ADMIN):
        raise ProtectedIdentityError("The root administrator must keep the ADMIN role")
    if identity.is_super_admin and data.get("display_id") not in (None, identity.display_id):
        raise ProtectedIdentityError("The root administrator's display ID cannot be changed")
    if data.get("display_id") and _display_id_taken(db, data["display_id"], exclude_id=identity_id):
        raise DuplicateDisplayIdError()

    try:
        with unit_of_work(db, "update_staff"):
            for field, value in data.items():
                setattr(identity, field, value)
            if passcode:
                identity.passcode_hash = get_passcode_hash(passcode)
            db.flush()
    except IntegrityError:
        raise DuplicateDisplayIdError()

    db.refresh(identity)
    logger.info("staff.updated", identity_id=identity.id, fields=sorted(data))
    return identity


def list_staff(db: Session) -> List[models.Identity]:
    return (
        db.query(models.Identity)
        .filter(models.Identity.role != models.IdentityRole.PATIENT)
        .order_by(models.Identity.role, models.Identity.name)
        .all()
    )
