# clinicops/routers/patients.py
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from .. import crud, schemas, security, models
from ..compliance_logger import compliance_logger
from ..database import get_db
from ..services import identity_service

router = APIRouter(
    prefix="/patients",
    tags=["Patients"],
    responses={404: {"description": "Not found"}},
)

require_patient = security.require_role(models.IdentityRole.PATIENT)


@router.get("/me/history", response_model=List[schemas.PatientHistoryEntry])
def my_history(
    db: Session = Depends(get_db),
    current_patient: models.Identity = Depends(require_patient),
):
    """
    Every appointment of the signed-in patient with its consultation,
    prescriptions and lab requests, newest first.
    """
    return crud.get_patient_history(db, current_patient.id)


@router.put("/me", response_model=schemas.IdentityResponse)
def update_my_profile(
    profile: schemas.ProfileUpdate,
    db: Session = Depends(get_db),
    current_patient: models.Identity = Depends(require_patient),
):
    patient = identity_service.update_patient_profile(
        db, current_patient.id, name=profile.name, age=profile.age, sex=profile.sex,
    )
    compliance_logger.log_event(
        actor_id=patient.id,
        actor_role=patient.role,
        action="PROFILE_UPDATED",
        category="PATIENT",
        resource_type="Identity",
        resource_id=patient.id,
    )
    return patient
