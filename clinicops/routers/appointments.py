# clinicops/routers/appointments.py
from typing import Optional

from fastapi import APIRouter, Depends, BackgroundTasks, Request, status
from sqlalchemy.orm import Session

from .. import schemas, models, security
from ..compliance_logger import compliance_logger
from ..database import get_db
from ..errors import InvalidRequestError
from ..limiter import limiter
from ..services import booking_service
from ..services.sms_service import get_sms_service

router = APIRouter(
    prefix="/appointments",
    tags=["Appointments"],
    responses={404: {"description": "Not found"}},
)


def _queue_confirmation(background_tasks: BackgroundTasks, appointment: models.Appointment) -> None:
    phone = appointment.patient.phone if appointment.patient else None
    if not phone:
        return
    background_tasks.add_task(
        get_sms_service().send_booking_confirmation,
        phone,
        appointment.doctor.name,
        appointment.date,
        appointment.slot_time,
        appointment.token_number,
    )


@router.post("/token-preview", response_model=schemas.TokenPreviewResponse)
def preview_token(payload: schemas.TokenPreviewRequest, db: Session = Depends(get_db)):
    """Next token for the slot. Not a reservation."""
    token_number = booking_service.preview_token(db, payload.doctor_id, payload.date, payload.slot_time)
    return {"token_number": token_number}


@router.post("/book", response_model=schemas.BookingResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("20/minute")
def book_appointment(
    request: Request,
    payload: schemas.BookingRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_identity: Optional[models.Identity] = Depends(security.get_optional_identity),
):
    """
    Book an appointment as a signed-in patient, as staff on behalf of a
    patient, or as a guest identified by phone number.
    """
    patient_id = None
    guest = payload.guest_details
    if current_identity is not None and current_identity.role == models.IdentityRole.PATIENT:
        patient_id = current_identity.id
    elif current_identity is not None:
        patient_id = payload.patient_id
    if patient_id is None and guest is None:
        raise InvalidRequestError("Guest details are required when booking without an account")

    appointment = booking_service.book_appointment(
        db,
        doctor_id=payload.doctor_id,
        day=payload.date,
        slot_time=payload.slot_time,
        patient_id=patient_id,
        guest=guest,
        patient_name=payload.patient_name,
        patient_age=payload.patient_age,
        patient_gender=payload.patient_gender,
    )

    compliance_logger.log_event(
        actor_id=current_identity.id if current_identity else appointment.patient_id,
        actor_role=current_identity.role if current_identity else models.IdentityRole.PATIENT,
        action="APPOINTMENT_BOOKED",
        category="APPOINTMENT",
        resource_type="Appointment",
        resource_id=appointment.id,
        details=f"Token {appointment.token_number} with doctor {appointment.doctor_id} on {appointment.date}",
    )
    _queue_confirmation(background_tasks, appointment)
    return {
        "appointment_id": appointment.id,
        "token_number": appointment.token_number,
        "patient_id": appointment.patient_id,
    }


@router.post("/walk-in", response_model=schemas.BookingResponse, status_code=status.HTTP_201_CREATED)
def register_walk_in(
    payload: schemas.WalkInRequest,
    db: Session = Depends(get_db),
    current_doctor: models.Identity = Depends(security.require_doctor),
):
    appointment = booking_service.book_walk_in(
        db, current_doctor, name=payload.name, phone=payload.phone, age=payload.age, sex=payload.sex,
    )
    compliance_logger.log_event(
        actor_id=current_doctor.id,
        actor_role=current_doctor.role,
        action="WALK_IN_REGISTERED",
        category="APPOINTMENT",
        resource_type="Appointment",
        resource_id=appointment.id,
    )
    return {
        "appointment_id": appointment.id,
        "token_number": appointment.token_number,
        "patient_id": appointment.patient_id,
    }


@router.patch("/{appointment_id}/status", response_model=schemas.AppointmentResponse)
def update_status(
    appointment_id: int,
    payload: schemas.AppointmentStatusUpdate,
    db: Session = Depends(get_db),
    current_identity: models.Identity = Depends(security.get_current_identity),
):
    appointment = booking_service.update_appointment_status(db, appointment_id, payload.status, current_identity)
    compliance_logger.log_event(
        actor_id=current_identity.id,
        actor_role=current_identity.role,
        action=f"APPOINTMENT_{payload.status.value}",
        category="APPOINTMENT",
        resource_type="Appointment",
        resource_id=appointment.id,
    )
    return appointment
