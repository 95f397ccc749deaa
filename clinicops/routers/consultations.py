# clinicops/routers/consultations.py
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from .. import schemas, security, models
from ..compliance_logger import compliance_logger
from ..database import get_db
from ..services import consultation_service

router = APIRouter(
    prefix="/consultations",
    tags=["Consultations"],
    responses={404: {"description": "Not found"}},
)


@router.post("/finalize", response_model=schemas.ConsultationResponse, status_code=status.HTTP_201_CREATED)
def finalize_consultation_endpoint(
    payload: schemas.ConsultationFinalizeRequest,
    db: Session = Depends(get_db),
    current_doctor: models.Identity = Depends(security.require_doctor),
):
    """
    Record the outcome of a visit: diagnosis, prescription items and lab
    orders, and mark the appointment completed. All or nothing.
    """
    consultation = consultation_service.finalize_consultation(
        db,
        appointment_id=payload.appointment_id,
        diagnosis=payload.diagnosis,
        notes=payload.notes,
        next_visit_date=payload.next_visit_date,
        items=payload.prescriptions,
        lab_tests=payload.lab_requests,
        doctor=current_doctor,
    )
    compliance_logger.log_event(
        actor_id=current_doctor.id,
        actor_role=current_doctor.role,
        action="CONSULTATION_FINALIZED",
        category="CLINICAL",
        resource_type="Consultation",
        resource_id=consultation.id,
        details=f"Appointment {payload.appointment_id}",
    )
    return consultation


@router.get("/{consultation_id}", response_model=schemas.ConsultationResponse)
def get_consultation_endpoint(
    consultation_id: int,
    db: Session = Depends(get_db),
    current_staff: models.Identity = Depends(security.require_staff),
):
    """
    Retrieve a single consultation with its prescriptions and lab requests.
    """
    return consultation_service.get_consultation(db, consultation_id)
