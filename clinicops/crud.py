# clinicops/crud.py - reads and simple single-row writes behind the routers
from datetime import date, datetime, timezone
from typing import Optional, List, Dict, Any
import logging

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload, selectinload

from . import models
from .errors import ConflictError, NotFoundError
from .security import verify_passcode

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 50
ACTIVE_STATUSES = (models.AppointmentStatus.PENDING, models.AppointmentStatus.CONFIRMED)


class CRUDError(Exception):
    pass


def _search_filter(search: str):
    pattern = f"%{search.strip()}%"
    return or_(
        models.Appointment.patient_name.ilike(pattern),
        models.Identity.name.ilike(pattern),
        models.Identity.display_id.ilike(pattern),
    )


# ==================== IDENTITIES ====================

def get_staff_by_login(db: Session, staff_id: str) -> Optional[models.Identity]:
    """Staff member by display ID, falling back to the numeric ID."""
    staff_id = (staff_id or "").strip()
    try:
        query = db.query(models.Identity).filter(models.Identity.role != models.IdentityRole.PATIENT)
        identity = query.filter(models.Identity.display_id == staff_id).first()
        if identity is None and staff_id.isdigit():
            identity = query.filter(models.Identity.id == int(staff_id)).first()
        return identity
    except SQLAlchemyError as e:
        logger.error(f"Error fetching staff '{staff_id}': {str(e)}")
        raise CRUDError(f"Database error: {str(e)}")


def authenticate_staff(db: Session, staff_id: str, passcode: str) -> Optional[models.Identity]:
    identity = get_staff_by_login(db, staff_id)
    if identity is None or not verify_passcode(passcode, identity.passcode_hash):
        return None
    return identity


def get_doctors(db: Session) -> List[models.Identity]:
    try:
        return (
            db.query(models.Identity)
            .filter(models.Identity.role == models.IdentityRole.DOCTOR)
            .order_by(models.Identity.name)
            .all()
        )
    except SQLAlchemyError as e:
        logger.error(f"Error fetching doctors: {str(e)}")
        raise CRUDError(f"Database error: {str(e)}")


# ==================== DOCTOR VIEWS ====================

def _appointment_row(appointment: models.Appointment) -> Dict[str, Any]:
    """Appointment as a dict, booking snapshot falling back to the patient profile."""
    patient = appointment.patient
    return {
        "id": appointment.id,
        "patient_id": appointment.patient_id,
        "doctor_id": appointment.doctor_id,
        "date": appointment.date,
        "slot_time": appointment.slot_time,
        "token_number": appointment.token_number,
        "status": appointment.status,
        "patient_name": appointment.patient_name or (patient.name if patient else None),
        "patient_age": appointment.patient_age if appointment.patient_age is not None else (patient.age if patient else None),
        "patient_gender": appointment.patient_gender or (patient.sex if patient else None),
    }


def get_doctor_queue(db: Session, doctor_id: int, from_date: Optional[date] = None) -> List[Dict[str, Any]]:
    """Live appointments from today onward, in date / slot / token order."""
    from_date = from_date or date.today()
    try:
        appointments = (
            db.query(models.Appointment)
            .options(joinedload(models.Appointment.patient))
            .filter(
                models.Appointment.doctor_id == doctor_id,
                models.Appointment.date >= from_date,
                models.Appointment.status.in_(ACTIVE_STATUSES),
            )
            .order_by(models.Appointment.date, models.Appointment.slot_time, models.Appointment.token_number)
            .all()
        )
    except SQLAlchemyError as e:
        logger.error(f"Error fetching queue for doctor {doctor_id}: {str(e)}")
        raise CRUDError(f"Database error: {str(e)}")
    return [_appointment_row(a) for a in appointments]


def get_doctor_history(db: Session, doctor_id: int, search: Optional[str] = None) -> List[Dict[str, Any]]:
    try:
        query = (
            db.query(models.Appointment)
            .join(models.Identity, models.Appointment.patient_id == models.Identity.id)
            .options(joinedload(models.Appointment.patient), joinedload(models.Appointment.consultation))
            .filter(
                models.Appointment.doctor_id == doctor_id,
                models.Appointment.status == models.AppointmentStatus.COMPLETED,
            )
        )
        if search and search.strip():
            query = query.filter(_search_filter(search))
        appointments = query.order_by(models.Appointment.date.desc(), models.Appointment.id.desc()).limit(HISTORY_LIMIT).all()
    except SQLAlchemyError as e:
        logger.error(f"Error fetching history for doctor {doctor_id}: {str(e)}")
        raise CRUDError(f"Database error: {str(e)}")

    rows = []
    for appointment in appointments:
        row = _appointment_row(appointment)
        row["patient_display_id"] = appointment.patient.display_id if appointment.patient else None
        row["diagnosis"] = appointment.consultation.diagnosis if appointment.consultation else None
        rows.append(row)
    return rows


# ==================== PATIENT VIEWS ====================

def _consultation_options():
    return (
        joinedload(models.Appointment.doctor),
        selectinload(models.Appointment.consultation)
        .selectinload(models.Consultation.prescriptions)
        .selectinload(models.Prescription.items)
        .joinedload(models.PrescriptionItem.medicine),
        selectinload(models.Appointment.consultation).selectinload(models.Consultation.lab_requests),
    )


def get_patient_history(db: Session, patient_id: int) -> List[Dict[str, Any]]:
    """Every appointment of the patient with its clinical record, newest first."""
    try:
        appointments = (
            db.query(models.Appointment)
            .options(*_consultation_options())
            .filter(models.Appointment.patient_id == patient_id)
            .order_by(models.Appointment.date.desc(), models.Appointment.id.desc())
            .all()
        )
    except SQLAlchemyError as e:
        logger.error(f"Error fetching history for patient {patient_id}: {str(e)}")
        raise CRUDError(f"Database error: {str(e)}")

    rows = []
    for appointment in appointments:
        row = _appointment_row(appointment)
        row["doctor_name"] = appointment.doctor.name if appointment.doctor else None
        row["consultation"] = appointment.consultation
        rows.append(row)
    return rows


# ==================== PHARMACY ====================

def _prescription_query(db: Session):
    return (
        db.query(models.Prescription)
        .join(models.Consultation, models.Prescription.consultation_id == models.Consultation.id)
        .join(models.Appointment, models.Consultation.appointment_id == models.Appointment.id)
        .join(models.Identity, models.Appointment.patient_id == models.Identity.id)
        .options(
            selectinload(models.Prescription.items).joinedload(models.PrescriptionItem.medicine),
            joinedload(models.Prescription.consultation)
            .joinedload(models.Consultation.appointment)
            .joinedload(models.Appointment.patient),
            joinedload(models.Prescription.consultation)
            .joinedload(models.Consultation.appointment)
            .joinedload(models.Appointment.doctor),
        )
    )


def _with_visit(record, row: Dict[str, Any]) -> Dict[str, Any]:
    appointment = record.consultation.appointment
    patient = appointment.patient
    row.update({
        "appointment_id": appointment.id,
        "patient_name": appointment.patient_name or (patient.name if patient else None),
        "patient_display_id": patient.display_id if patient else None,
        "doctor_name": appointment.doctor.name if appointment.doctor else None,
    })
    return row


def _prescription_row(prescription: models.Prescription) -> Dict[str, Any]:
    return _with_visit(prescription, {
        "id": prescription.id,
        "consultation_id": prescription.consultation_id,
        "is_dispensed": prescription.is_dispensed,
        "dispensed_by_id": prescription.dispensed_by_id,
        "dispensed_at": prescription.dispensed_at,
        "items": prescription.items,
    })


def get_pharmacy_queue(db: Session) -> List[Dict[str, Any]]:
    """Undispensed prescriptions, oldest first."""
    try:
        prescriptions = (
            _prescription_query(db)
            .filter(models.Prescription.is_dispensed.is_(False))
            .order_by(models.Prescription.created_at, models.Prescription.id)
            .all()
        )
    except SQLAlchemyError as e:
        logger.error(f"Error fetching pharmacy queue: {str(e)}")
        raise CRUDError(f"Database error: {str(e)}")
    return [_prescription_row(p) for p in prescriptions]


def get_pharmacy_history(db: Session, search: Optional[str] = None) -> List[Dict[str, Any]]:
    try:
        query = _prescription_query(db).filter(models.Prescription.is_dispensed.is_(True))
        if search and search.strip():
            query = query.filter(_search_filter(search))
        prescriptions = (
            query.order_by(models.Prescription.dispensed_at.desc(), models.Prescription.id.desc())
            .limit(HISTORY_LIMIT)
            .all()
        )
    except SQLAlchemyError as e:
        logger.error(f"Error fetching pharmacy history: {str(e)}")
        raise CRUDError(f"Database error: {str(e)}")
    return [_prescription_row(p) for p in prescriptions]


def dispense_prescription(db: Session, prescription_id: int, pharmacist: models.Identity) -> models.Prescription:
    if db.get(models.Prescription, prescription_id) is None:
        raise NotFoundError("Prescription not found")

    try:
        # Matches only while undispensed; a concurrent dispense leaves 0 rows
        updated = (
            db.query(models.Prescription)
            .filter(models.Prescription.id == prescription_id, models.Prescription.is_dispensed.is_(False))
            .update(
                {
                    models.Prescription.is_dispensed: True,
                    models.Prescription.dispensed_by_id: pharmacist.id,
                    models.Prescription.dispensed_at: datetime.now(timezone.utc),
                },
                synchronize_session=False,
            )
        )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error dispensing prescription {prescription_id}: {str(e)}")
        raise CRUDError(f"Database error: {str(e)}")

    if updated != 1:
        raise ConflictError("Prescription has already been dispensed")
    prescription = db.get(models.Prescription, prescription_id)
    db.refresh(prescription)
    logger.info(f"Prescription {prescription_id} dispensed by {pharmacist.id}")
    return prescription


# ==================== LAB ====================

def _lab_request_query(db: Session):
    return (
        db.query(models.LabRequest)
        .join(models.Consultation, models.LabRequest.consultation_id == models.Consultation.id)
        .join(models.Appointment, models.Consultation.appointment_id == models.Appointment.id)
        .join(models.Identity, models.Appointment.patient_id == models.Identity.id)
        .options(
            joinedload(models.LabRequest.consultation)
            .joinedload(models.Consultation.appointment)
            .joinedload(models.Appointment.patient),
            joinedload(models.LabRequest.consultation)
            .joinedload(models.Consultation.appointment)
            .joinedload(models.Appointment.doctor),
        )
    )


def _lab_request_row(request: models.LabRequest) -> Dict[str, Any]:
    return _with_visit(request, {
        "id": request.id,
        "consultation_id": request.consultation_id,
        "test_name": request.test_name,
        "status": request.status,
        "result_report": request.result_report,
        "technician_id": request.technician_id,
        "completed_at": request.completed_at,
    })


def get_lab_queue(db: Session) -> List[Dict[str, Any]]:
    try:
        requests = (
            _lab_request_query(db)
            .filter(models.LabRequest.status == models.LabRequestStatus.PENDING)
            .order_by(models.LabRequest.created_at, models.LabRequest.id)
            .all()
        )
    except SQLAlchemyError as e:
        logger.error(f"Error fetching lab queue: {str(e)}")
        raise CRUDError(f"Database error: {str(e)}")
    return [_lab_request_row(r) for r in requests]


def get_lab_history(db: Session, search: Optional[str] = None) -> List[Dict[str, Any]]:
    try:
        query = _lab_request_query(db).filter(models.LabRequest.status == models.LabRequestStatus.COMPLETED)
        if search and search.strip():
            query = query.filter(_search_filter(search))
        requests = (
            query.order_by(models.LabRequest.completed_at.desc(), models.LabRequest.id.desc())
            .limit(HISTORY_LIMIT)
            .all()
        )
    except SQLAlchemyError as e:
        logger.error(f"Error fetching lab history: {str(e)}")
        raise CRUDError(f"Database error: {str(e)}")
    return [_lab_request_row(r) for r in requests]


def complete_lab_request(db: Session, request_id: int, result: str, technician: models.Identity) -> models.LabRequest:
    if db.get(models.LabRequest, request_id) is None:
        raise NotFoundError("Lab request not found")

    try:
        updated = (
            db.query(models.LabRequest)
            .filter(
                models.LabRequest.id == request_id,
                models.LabRequest.status != models.LabRequestStatus.COMPLETED,
            )
            .update(
                {
                    models.LabRequest.status: models.LabRequestStatus.COMPLETED,
                    models.LabRequest.result_report: result,
                    models.LabRequest.technician_id: technician.id,
                    models.LabRequest.completed_at: datetime.now(timezone.utc),
                },
                synchronize_session=False,
            )
        )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error completing lab request {request_id}: {str(e)}")
        raise CRUDError(f"Database error: {str(e)}")

    if updated != 1:
        raise ConflictError("Lab request is already completed")
    request = db.get(models.LabRequest, request_id)
    db.refresh(request)
    logger.info(f"Lab request {request_id} completed by {technician.id}")
    return request
