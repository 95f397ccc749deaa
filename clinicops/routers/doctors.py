# clinicops/routers/doctors.py
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from .. import crud, schemas, security, models
from ..database import get_db

router = APIRouter(
    prefix="/doctors",
    tags=["Doctors"],
    responses={404: {"description": "Not found"}},
)


@router.get("", response_model=List[schemas.DoctorResponse])
def list_doctors(db: Session = Depends(get_db)):
    """Public doctors directory for the booking form."""
    return crud.get_doctors(db)


@router.get("/me/queue", response_model=List[schemas.AppointmentResponse])
def my_queue(
    db: Session = Depends(get_db),
    current_doctor: models.Identity = Depends(security.require_doctor),
):
    return crud.get_doctor_queue(db, current_doctor.id)


@router.get("/me/history", response_model=List[schemas.DoctorHistoryEntry])
def my_history(
    search: Optional[str] = Query(None, max_length=100),
    db: Session = Depends(get_db),
    current_doctor: models.Identity = Depends(security.require_doctor),
):
    return crud.get_doctor_history(db, current_doctor.id, search)
