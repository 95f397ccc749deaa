# clinicops/routers/lab.py
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from .. import crud, schemas, security, models
from ..compliance_logger import compliance_logger
from ..database import get_db

router = APIRouter(
    prefix="/lab",
    tags=["Lab"],
    responses={404: {"description": "Not found"}},
)


@router.get("/queue", response_model=List[schemas.LabQueueEntry])
def lab_queue(
    db: Session = Depends(get_db),
    current_technician: models.Identity = Depends(security.require_lab),
):
    return crud.get_lab_queue(db)


@router.get("/history", response_model=List[schemas.LabQueueEntry])
def lab_history(
    search: Optional[str] = Query(None, max_length=100),
    db: Session = Depends(get_db),
    current_technician: models.Identity = Depends(security.require_lab),
):
    return crud.get_lab_history(db, search)


@router.post("/requests/{request_id}/complete", response_model=schemas.LabRequestResponse)
def complete_request(
    request_id: int,
    payload: schemas.LabCompleteRequest,
    db: Session = Depends(get_db),
    current_technician: models.Identity = Depends(security.require_lab),
):
    lab_request = crud.complete_lab_request(db, request_id, payload.result, current_technician)
    compliance_logger.log_event(
        actor_id=current_technician.id,
        actor_role=current_technician.role,
        action="LAB_REQUEST_COMPLETED",
        category="LAB",
        resource_type="LabRequest",
        resource_id=lab_request.id,
    )
    return lab_request
