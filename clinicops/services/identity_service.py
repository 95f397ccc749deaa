# clinicops/services/identity_service.py
import re
import secrets
from typing import Optional

import structlog
from sqlalchemy.orm import Session

from .. import models
from ..errors import InvalidPhoneError, InvalidRequestError, NotFoundError

logger = structlog.get_logger(__name__)

PHONE_PATTERN = re.compile(r"^\d{10}$")
PLACEHOLDER_NAME = "Guest"


def validate_phone(phone: Optional[str]) -> str:
    """Return the normalised phone number or raise InvalidPhoneError."""
    phone = (phone or "").strip()
    if not PHONE_PATTERN.match(phone):
        raise InvalidPhoneError()
    return phone


def generate_display_id(prefix: str = "PID") -> str:
    return f"{prefix}-{secrets.randbelow(10 ** 6):06d}"


def is_incomplete(identity: models.Identity) -> bool:
    """Placeholder name or missing demographics."""
    name = (identity.name or "").strip()
    return (
        not name
        or name == PLACEHOLDER_NAME
        or identity.age is None
        or not identity.sex
    )


def find_patient_by_phone(db: Session, phone: str) -> Optional[models.Identity]:
    return (
        db.query(models.Identity)
        .filter(
            models.Identity.phone == phone,
            models.Identity.role == models.IdentityRole.PATIENT,
        )
        .first()
    )


def resolve_patient(
    db: Session,
    phone: str,
    name: Optional[str] = None,
    age: Optional[int] = None,
    sex: Optional[str] = None,
    display_prefix: str = "PID",
) -> models.Identity:
    """Find or create the PATIENT identity for a phone number.

    An existing incomplete identity is backfilled with the supplied details;
    a complete one is returned untouched. Runs inside the caller's
    transaction: the session is flushed, never committed.
    """
    phone = validate_phone(phone)
    name = (name or "").strip() or None

    patient = find_patient_by_phone(db, phone)
    if patient is None:
        patient = models.Identity(
            name=name or PLACEHOLDER_NAME,
            role=models.IdentityRole.PATIENT,
            phone=phone,
            age=age,
            sex=sex,
            display_id=generate_display_id(display_prefix),
        )
        db.add(patient)
        db.flush()
        logger.info("identity.created", identity_id=patient.id, display_id=patient.display_id)
        return patient

    backfill_identity(db, patient, name=name, age=age, sex=sex)
    return patient


def backfill_identity(
    db: Session,
    patient: models.Identity,
    name: Optional[str] = None,
    age: Optional[int] = None,
    sex: Optional[str] = None,
) -> bool:
    """Fill in an incomplete identity. Complete identities are left alone."""
    name = (name or "").strip() or None
    if not is_incomplete(patient) or not (name or age is not None or sex):
        return False
    if name:
        patient.name = name
    if age is not None:
        patient.age = age
    if sex:
        patient.sex = sex
    db.flush()
    logger.info("identity.backfilled", identity_id=patient.id)
    return True


def get_patient(db: Session, patient_id: int) -> models.Identity:
    patient = db.get(models.Identity, patient_id)
    if patient is None or patient.role != models.IdentityRole.PATIENT:
        raise NotFoundError("Patient not found")
    return patient


def update_patient_profile(
    db: Session,
    patient_id: int,
    name: str,
    age: Optional[int] = None,
    sex: Optional[str] = None,
) -> models.Identity:
    """Explicit profile edit by the patient. Overwrites complete identities too."""
    name = (name or "").strip()
    if not name:
        raise InvalidRequestError("Name is required")

    patient = get_patient(db, patient_id)
    patient.name = name
    patient.age = age
    patient.sex = sex
    db.commit()
    db.refresh(patient)
    logger.info("identity.profile_updated", identity_id=patient.id)
    return patient
