# tests/test_otp.py
from datetime import timedelta

import pytest

from clinicops import models
from clinicops.config import get_settings
from clinicops.database import SessionLocal
from clinicops.errors import InvalidOtpError, InvalidPhoneError, OtpExpiredError
from clinicops.services import otp_service

PHONE = "9876543210"


def _patient_count(db):
    return db.query(models.Identity).filter(models.Identity.role == models.IdentityRole.PATIENT).count()


def test_issue_replaces_previous_code(db):
    otp_service.issue_otp(db, PHONE, code="111111")
    otp_service.issue_otp(db, PHONE, code="222222")

    records = db.query(models.VerificationCode).filter(models.VerificationCode.phone == PHONE).all()
    assert len(records) == 1
    assert records[0].code == "222222"


def test_generated_code_is_six_digits(db):
    record = otp_service.issue_otp(db, PHONE)
    assert len(record.code) == 6 and record.code.isdigit()


def test_issue_rejects_malformed_phone(db):
    with pytest.raises(InvalidPhoneError):
        otp_service.issue_otp(db, "12345")
    assert db.query(models.VerificationCode).count() == 0


def test_mismatched_code_creates_no_identity(db):
    otp_service.issue_otp(db, PHONE, code="111111")

    with pytest.raises(InvalidOtpError):
        otp_service.verify_otp(db, PHONE, "999999")
    assert _patient_count(db) == 0
    assert db.query(models.VerificationCode).count() == 1


def test_missing_code_is_rejected(db):
    with pytest.raises(InvalidOtpError):
        otp_service.verify_otp(db, PHONE, "111111")
    assert _patient_count(db) == 0


def test_expired_code_creates_no_identity(db):
    record = otp_service.issue_otp(db, PHONE, code="111111")
    record.expires_at = otp_service._utcnow() - timedelta(minutes=1)
    db.commit()

    with pytest.raises(OtpExpiredError):
        otp_service.verify_otp(db, PHONE, "111111")
    assert _patient_count(db) == 0


def test_correct_code_consumes_record_and_creates_one_patient(db):
    otp_service.issue_otp(db, PHONE, code="111111")

    patient = otp_service.verify_otp(db, PHONE, "111111")

    assert patient.role == models.IdentityRole.PATIENT
    assert patient.name == "Guest"
    assert db.query(models.VerificationCode).count() == 0
    assert _patient_count(db) == 1

    with pytest.raises(InvalidOtpError):
        otp_service.verify_otp(db, PHONE, "111111")


def test_verification_reuses_existing_patient(db, patient):
    otp_service.issue_otp(db, patient.phone, code="123123")
    verified = otp_service.verify_otp(db, patient.phone, "123123")

    assert verified.id == patient.id
    assert _patient_count(db) == 1


def test_master_code_only_when_configured(db, monkeypatch):
    with pytest.raises(InvalidOtpError):
        otp_service.verify_otp(db, PHONE, "000000")

    monkeypatch.setattr(get_settings(), "otp_master_code", "000000")
    patient = otp_service.verify_otp(db, PHONE, "000000")
    assert patient.phone == PHONE


def test_code_used_by_a_concurrent_request_is_rejected(db, monkeypatch):
    otp_service.issue_otp(db, PHONE, code="111111")
    real_check = otp_service._check_code
    winners = []

    def check_then_lose_race(session, phone, code):
        record = real_check(session, phone, code)
        if not winners:
            other = SessionLocal()
            try:
                winners.append(otp_service.verify_otp(other, phone, code).id)
            finally:
                other.close()
        return record

    monkeypatch.setattr(otp_service, "_check_code", check_then_lose_race)

    with pytest.raises(InvalidOtpError):
        otp_service.verify_otp(db, PHONE, "111111")

    assert len(winners) == 1
    assert _patient_count(db) == 1
    assert db.query(models.VerificationCode).count() == 0
