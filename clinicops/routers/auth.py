# clinicops/routers/auth.py
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from .. import crud, schemas, security, models
from ..compliance_logger import compliance_logger
from ..config import get_settings
from ..database import get_db
from ..limiter import limiter
from ..services import otp_service
from ..services.sms_service import get_sms_service

import logging

logger = logging.getLogger(__name__)


router = APIRouter(
    prefix="/auth",
    tags=["Authentication"]
)


@router.post("/staff-login", response_model=schemas.AuthResponse)
def staff_login(credentials: schemas.StaffLoginRequest, db: Session = Depends(get_db)):
    identity = crud.authenticate_staff(db, credentials.staff_id, credentials.passcode)
    if identity is None:
        logger.warning(f"Failed staff login attempt for: {credentials.staff_id}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect staff ID or passcode",
            headers={"WWW-Authenticate": "Bearer"},
        )

    compliance_logger.log_event(
        actor_id=identity.id,
        actor_role=identity.role,
        action="LOGIN_SUCCESS",
        category="AUTHENTICATION",
        details=f"Staff {identity.display_id} logged in",
    )
    logger.info(f"Staff '{identity.display_id}' successfully authenticated.")
    return {"access_token": security.create_access_token(identity), "identity": identity}


@router.post("/otp/send")
@limiter.limit(get_settings().otp_send_rate)
def send_otp(
    request: Request,
    payload: schemas.OtpSendRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
):
    """Issue a one-time code for the phone number and text it out after commit."""
    record = otp_service.issue_otp(db, payload.phone)
    background_tasks.add_task(get_sms_service().send_otp, record.phone, record.code)
    return {"success": True, "expires_in_minutes": get_settings().otp_ttl_minutes}


@router.post("/otp/verify", response_model=schemas.AuthResponse)
def verify_otp(payload: schemas.OtpVerifyRequest, db: Session = Depends(get_db)):
    patient = otp_service.verify_otp(db, payload.phone, payload.code)
    compliance_logger.log_event(
        actor_id=patient.id,
        actor_role=patient.role,
        action="OTP_VERIFIED",
        category="AUTHENTICATION",
        resource_type="Identity",
        resource_id=patient.id,
    )
    return {"access_token": security.create_access_token(patient), "identity": patient}


@router.get("/me", response_model=schemas.IdentityResponse)
def read_me(current_identity: models.Identity = Depends(security.get_current_identity)):
    """
    Get the current logged in identity.
    """
    return current_identity
