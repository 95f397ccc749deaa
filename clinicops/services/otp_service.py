# clinicops/services/otp_service.py
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

import structlog
from sqlalchemy.orm import Session

from .. import models
from ..config import get_settings
from ..errors import InvalidOtpError, OtpExpiredError
from . import identity_service
from .transaction import unit_of_work

logger = structlog.get_logger(__name__)

OTP_LENGTH = 6


def _utcnow() -> datetime:
    # expires_at is stored as naive UTC
    return datetime.now(timezone.utc).replace(tzinfo=None)


def generate_code() -> str:
    return f"{secrets.randbelow(10 ** OTP_LENGTH):0{OTP_LENGTH}d}"


def issue_otp(db: Session, phone: str, code: Optional[str] = None) -> models.VerificationCode:
    """Create or replace the live code for a phone number.

    Delivery is the caller's business; the returned record carries the code.
    """
    phone = identity_service.validate_phone(phone)
    settings = get_settings()
    code = code or generate_code()
    expires_at = _utcnow() + timedelta(minutes=settings.otp_ttl_minutes)

    with unit_of_work(db, "issue_otp"):
        record = (
            db.query(models.VerificationCode)
            .filter(models.VerificationCode.phone == phone)
            .with_for_update()
            .first()
        )
        if record is None:
            record = models.VerificationCode(phone=phone, code=code, expires_at=expires_at)
            db.add(record)
        else:
            record.code = code
            record.expires_at = expires_at
            record.created_at = datetime.now(timezone.utc)

    logger.info("otp.issued", otp_id=record.id)
    return record


def _check_code(db: Session, phone: str, code: str) -> Optional[models.VerificationCode]:
    """Validate the code. Returns the stored record, or None for the master code."""
    settings = get_settings()
    if settings.otp_master_code and secrets.compare_digest(code.encode(), settings.otp_master_code.encode()):
        logger.warning("otp.master_code_used")
        return None

    record = (
        db.query(models.VerificationCode)
        .filter(models.VerificationCode.phone == phone)
        .with_for_update()
        .first()
    )
    if record is None or not secrets.compare_digest(record.code.encode(), code.encode()):
        raise InvalidOtpError()
    if record.expires_at < _utcnow():
        raise OtpExpiredError()
    return record


def _consume(db: Session, record: models.VerificationCode) -> None:
    """Delete the code. Exactly one row must match or another request already used it."""
    deleted = (
        db.query(models.VerificationCode)
        .filter(
            models.VerificationCode.id == record.id,
            models.VerificationCode.phone == record.phone,
            models.VerificationCode.code == record.code,
        )
        .delete(synchronize_session=False)
    )
    if deleted != 1:
        logger.warning("otp.already_consumed", otp_id=record.id)
        raise InvalidOtpError()
    db.expunge(record)


def verify_otp(db: Session, phone: str, code: str) -> models.Identity:
    """Check the code, then resolve the patient and consume the code atomically.

    A failed check creates no identity.
    """
    phone = identity_service.validate_phone(phone)
    code = (code or "").strip()
    if not code:
        raise InvalidOtpError()

    with unit_of_work(db, "verify_otp"):
        record = _check_code(db, phone, code)
        if record is not None:
            _consume(db, record)
        patient = identity_service.resolve_patient(db, phone)

    db.refresh(patient)
    logger.info("otp.verified", identity_id=patient.id)
    return patient
