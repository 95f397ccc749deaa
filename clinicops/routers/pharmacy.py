# clinicops/routers/pharmacy.py
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from .. import crud, schemas, security, models
from ..compliance_logger import compliance_logger
from ..database import get_db

router = APIRouter(
    prefix="/pharmacy",
    tags=["Pharmacy"],
    responses={404: {"description": "Not found"}},
)


@router.get("/queue", response_model=List[schemas.PharmacyQueueEntry])
def pharmacy_queue(
    db: Session = Depends(get_db),
    current_pharmacist: models.Identity = Depends(security.require_pharmacy),
):
    return crud.get_pharmacy_queue(db)


@router.get("/history", response_model=List[schemas.PharmacyQueueEntry])
def pharmacy_history(
    search: Optional[str] = Query(None, max_length=100),
    db: Session = Depends(get_db),
    current_pharmacist: models.Identity = Depends(security.require_pharmacy),
):
    return crud.get_pharmacy_history(db, search)


@router.post("/prescriptions/{prescription_id}/dispense", response_model=schemas.PrescriptionResponse)
def dispense(
    prescription_id: int,
    db: Session = Depends(get_db),
    current_pharmacist: models.Identity = Depends(security.require_pharmacy),
):
    prescription = crud.dispense_prescription(db, prescription_id, current_pharmacist)
    compliance_logger.log_event(
        actor_id=current_pharmacist.id,
        actor_role=current_pharmacist.role,
        action="PRESCRIPTION_DISPENSED",
        category="PHARMACY",
        resource_type="Prescription",
        resource_id=prescription.id,
    )
    return prescription
