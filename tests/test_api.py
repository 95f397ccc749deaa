# tests/test_api.py
from datetime import date

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.exc import OperationalError
from twilio.base.exceptions import TwilioRestException

from clinicops import models
from clinicops.config import get_settings
from clinicops.main import app
from clinicops.services import booking_service, sms_service

SLOT = "09:00 AM - 10:00 AM"


@pytest.fixture
async def async_client():
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


def _guest_booking(doctor, phone="9876543210", **extra):
    body = {
        "doctor_id": doctor.id,
        "date": "2024-01-10",
        "slot_time": SLOT,
        "guest_details": {"name": "Ravi Kumar", "phone": phone, "age": 41, "sex": "M"},
    }
    body.update(extra)
    return body


@pytest.mark.asyncio
async def test_health(async_client: AsyncClient):
    response = await async_client.get("/api/v1/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


@pytest.mark.asyncio
async def test_guest_booking_flow(async_client: AsyncClient, doctor):
    preview = await async_client.post(
        "/api/v1/appointments/token-preview",
        json={"doctor_id": doctor.id, "date": "2024-01-10", "slot_time": SLOT},
    )
    assert preview.status_code == 200
    assert preview.json() == {"token_number": 1}

    first = await async_client.post("/api/v1/appointments/book", json=_guest_booking(doctor))
    second = await async_client.post("/api/v1/appointments/book", json=_guest_booking(doctor))
    assert first.status_code == 201
    assert first.json()["token_number"] == 1
    assert second.json()["token_number"] == 2
    assert first.json()["patient_id"] == second.json()["patient_id"]


@pytest.mark.asyncio
async def test_booking_errors_are_mapped(async_client: AsyncClient, doctor):
    bad_phone = await async_client.post("/api/v1/appointments/book", json=_guest_booking(doctor, phone="123"))
    assert bad_phone.status_code == 400
    assert bad_phone.json()["code"] == "INVALID_PHONE"
    assert bad_phone.json()["success"] is False

    no_patient = await async_client.post(
        "/api/v1/appointments/book", json={"doctor_id": doctor.id, "date": "2024-01-10", "slot_time": SLOT},
    )
    assert no_patient.status_code == 400

    unknown_doctor = await async_client.post(
        "/api/v1/appointments/token-preview", json={"doctor_id": 999, "date": "2024-01-10", "slot_time": SLOT},
    )
    assert unknown_doctor.status_code == 400
    assert unknown_doctor.json()["code"] == "INVALID_SLOT"

    malformed = await async_client.post("/api/v1/appointments/token-preview", json={"doctor_id": "x"})
    assert malformed.status_code == 400
    assert malformed.json()["code"] == "VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_signed_in_patient_books_for_self(async_client: AsyncClient, doctor, patient, auth_headers):
    response = await async_client.post(
        "/api/v1/appointments/book",
        json={"doctor_id": doctor.id, "date": "2024-01-10", "slot_time": SLOT, "patient_name": "Asha's mother"},
        headers=auth_headers(patient),
    )
    assert response.status_code == 201
    assert response.json()["patient_id"] == patient.id


@pytest.mark.asyncio
async def test_finalize_twice_returns_conflict(async_client: AsyncClient, doctor, patient, auth_headers):
    booked = await async_client.post(
        "/api/v1/appointments/book",
        json={"doctor_id": doctor.id, "date": "2024-01-10", "slot_time": SLOT},
        headers=auth_headers(patient),
    )
    payload = {
        "appointment_id": booked.json()["appointment_id"],
        "diagnosis": "Viral fever",
        "prescriptions": [{"medicine_name": "Paracetamol", "dosage": "1-0-1", "duration": "3 days"}],
        "lab_requests": [{"test_name": "CBC"}],
    }

    unauthenticated = await async_client.post("/api/v1/consultations/finalize", json=payload)
    assert unauthenticated.status_code == 401
    as_patient = await async_client.post("/api/v1/consultations/finalize", json=payload, headers=auth_headers(patient))
    assert as_patient.status_code == 403

    first = await async_client.post("/api/v1/consultations/finalize", json=payload, headers=auth_headers(doctor))
    assert first.status_code == 201
    body = first.json()
    assert body["prescriptions"][0]["items"][0]["medicine"]["name"] == "Paracetamol"
    assert body["lab_requests"][0]["status"] == "PENDING"

    second = await async_client.post("/api/v1/consultations/finalize", json=payload, headers=auth_headers(doctor))
    assert second.status_code == 409
    assert second.json()["code"] == "CONSULTATION_EXISTS"

    search = await async_client.get("/api/v1/catalog/medicine/search", params={"query": "para"}, headers=auth_headers(doctor))
    assert search.status_code == 200
    assert search.json()[0]["usage_count"] == 1


@pytest.mark.asyncio
async def test_otp_login_flow(async_client: AsyncClient, db):
    sent = await async_client.post("/api/v1/auth/otp/send", json={"phone": "9876543210"})
    assert sent.status_code == 200
    code = db.query(models.VerificationCode).one().code

    wrong = await async_client.post("/api/v1/auth/otp/verify", json={"phone": "9876543210", "code": "not-it"})
    assert wrong.status_code == 401
    assert wrong.json()["code"] == "INVALID_OTP"

    verified = await async_client.post("/api/v1/auth/otp/verify", json={"phone": "9876543210", "code": code})
    assert verified.status_code == 200
    token = verified.json()["access_token"]
    assert verified.json()["identity"]["role"] == "PATIENT"

    me = await async_client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["phone"] == "9876543210"


@pytest.mark.asyncio
async def test_first_booking_completes_otp_created_profile(async_client: AsyncClient, db, doctor):
    await async_client.post("/api/v1/auth/otp/send", json={"phone": "9876543210"})
    code = db.query(models.VerificationCode).one().code
    verified = await async_client.post("/api/v1/auth/otp/verify", json={"phone": "9876543210", "code": code})
    assert verified.json()["identity"]["name"] == "Guest"
    headers = {"Authorization": f"Bearer {verified.json()['access_token']}"}

    booked = await async_client.post(
        "/api/v1/appointments/book",
        json={
            "doctor_id": doctor.id,
            "date": "2024-01-10",
            "slot_time": SLOT,
            "guest_details": {"name": "Ravi Kumar", "age": 41, "sex": "M"},
        },
        headers=headers,
    )
    assert booked.status_code == 201
    assert booked.json()["patient_id"] == verified.json()["identity"]["id"]

    me = await async_client.get("/api/v1/auth/me", headers=headers)
    assert me.json()["name"] == "Ravi Kumar"
    assert me.json()["age"] == 41
    assert me.json()["sex"] == "M"

    appointment = db.get(models.Appointment, booked.json()["appointment_id"])
    assert appointment.patient_name == "Ravi Kumar"
    assert appointment.patient_age == 41

    # A complete profile is not overwritten by later booking details
    await async_client.post(
        "/api/v1/appointments/book",
        json={
            "doctor_id": doctor.id,
            "date": "2024-01-10",
            "slot_time": SLOT,
            "guest_details": {"name": "Someone Else", "age": 70, "sex": "F"},
        },
        headers=headers,
    )
    me = await async_client.get("/api/v1/auth/me", headers=headers)
    assert me.json()["name"] == "Ravi Kumar"


@pytest.mark.asyncio
async def test_staff_login_and_admin_cascade(async_client: AsyncClient, root_admin, doctor):
    login = await async_client.post(
        "/api/v1/auth/staff-login", json={"staff_id": root_admin.display_id, "passcode": "root-passcode"},
    )
    assert login.status_code == 200
    headers = {"Authorization": f"Bearer {login.json()['access_token']}"}

    bad_login = await async_client.post(
        "/api/v1/auth/staff-login", json={"staff_id": root_admin.display_id, "passcode": "nope"},
    )
    assert bad_login.status_code == 401

    protected = await async_client.delete(f"/api/v1/admin/staff/{root_admin.id}", headers=headers)
    assert protected.status_code == 403
    assert protected.json()["code"] == "PROTECTED_IDENTITY"

    deleted = await async_client.delete(f"/api/v1/admin/staff/{doctor.id}", headers=headers)
    assert deleted.status_code == 200
    assert deleted.json()["identity_id"] == doctor.id

    missing = await async_client.delete(f"/api/v1/admin/staff/{doctor.id}", headers=headers)
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_admin_creates_staff_and_rejects_duplicates(async_client: AsyncClient, root_admin, auth_headers):
    staff = {"name": "Dr. Iyer", "role": "DOCTOR", "passcode": "4321", "display_id": "DOC-42"}
    created = await async_client.post("/api/v1/admin/staff", json=staff, headers=auth_headers(root_admin))
    assert created.status_code == 201
    assert created.json()["role"] == "DOCTOR"

    duplicate = await async_client.post("/api/v1/admin/staff", json=staff, headers=auth_headers(root_admin))
    assert duplicate.status_code == 409
    assert duplicate.json()["code"] == "DUPLICATE_DISPLAY_ID"

    doctors = await async_client.get("/api/v1/doctors")
    assert [d["name"] for d in doctors.json()] == ["Dr. Iyer"]


@pytest.mark.asyncio
async def test_downstream_queues_after_consultation(async_client: AsyncClient, make_identity, doctor, patient, auth_headers):
    pharmacist = make_identity(models.IdentityRole.PHARMACY)
    technician = make_identity(models.IdentityRole.LAB)
    today = date.today().isoformat()

    booked = await async_client.post(
        "/api/v1/appointments/book",
        json={"doctor_id": doctor.id, "date": today, "slot_time": SLOT},
        headers=auth_headers(patient),
    )
    appointment_id = booked.json()["appointment_id"]

    queue = await async_client.get("/api/v1/doctors/me/queue", headers=auth_headers(doctor))
    assert [a["id"] for a in queue.json()] == [appointment_id]
    assert queue.json()[0]["patient_name"] == "Asha"

    confirmed = await async_client.patch(
        f"/api/v1/appointments/{appointment_id}/status", json={"status": "CONFIRMED"}, headers=auth_headers(doctor),
    )
    assert confirmed.json()["status"] == "CONFIRMED"

    finalized = await async_client.post(
        "/api/v1/consultations/finalize",
        json={
            "appointment_id": appointment_id,
            "diagnosis": "Anaemia",
            "prescriptions": [{"medicine_name": "Iron tablets", "dosage": "0-0-1"}],
            "lab_requests": [{"test_name": "Haemoglobin"}],
        },
        headers=auth_headers(doctor),
    )
    consultation_id = finalized.json()["id"]
    fetched = await async_client.get(f"/api/v1/consultations/{consultation_id}", headers=auth_headers(pharmacist))
    assert fetched.json()["prescriptions"][0]["items"][0]["medicine"]["name"] == "Iron tablets"

    pharmacy_queue = await async_client.get("/api/v1/pharmacy/queue", headers=auth_headers(pharmacist))
    assert len(pharmacy_queue.json()) == 1
    prescription_id = pharmacy_queue.json()[0]["id"]
    dispensed = await async_client.post(
        f"/api/v1/pharmacy/prescriptions/{prescription_id}/dispense", headers=auth_headers(pharmacist),
    )
    assert dispensed.json()["dispensed_by_id"] == pharmacist.id
    again = await async_client.post(
        f"/api/v1/pharmacy/prescriptions/{prescription_id}/dispense", headers=auth_headers(pharmacist),
    )
    assert again.status_code == 409

    lab_queue = await async_client.get("/api/v1/lab/queue", headers=auth_headers(technician))
    request_id = lab_queue.json()[0]["id"]
    completed = await async_client.post(
        f"/api/v1/lab/requests/{request_id}/complete", json={"result": "Hb 10.2 g/dL"}, headers=auth_headers(technician),
    )
    assert completed.json()["status"] == "COMPLETED"

    lab_history = await async_client.get("/api/v1/lab/history", params={"search": "asha"}, headers=auth_headers(technician))
    assert [r["id"] for r in lab_history.json()] == [request_id]

    history = await async_client.get("/api/v1/patients/me/history", headers=auth_headers(patient))
    visit = history.json()[0]
    assert visit["doctor_name"] == doctor.name
    assert visit["consultation"]["diagnosis"] == "Anaemia"
    assert visit["consultation"]["prescriptions"][0]["is_dispensed"] is True

    doctor_history = await async_client.get("/api/v1/doctors/me/history", headers=auth_headers(doctor))
    assert doctor_history.json()[0]["diagnosis"] == "Anaemia"


class _UnavailableTwilio:
    attempts = []

    def __init__(self, account_sid, auth_token):
        self.messages = self

    def create(self, body, from_, to):
        self.attempts.append(to)
        raise TwilioRestException(503, "https://api.twilio.com/2010-04-01/Messages.json", msg="Service unavailable")


@pytest.mark.asyncio
async def test_booking_succeeds_when_sms_delivery_fails(async_client: AsyncClient, doctor, monkeypatch):
    settings = get_settings()
    monkeypatch.setattr(settings, "twilio_account_sid", "AC00000000000000000000000000000000")
    monkeypatch.setattr(settings, "twilio_auth_token", "token")
    monkeypatch.setattr(settings, "twilio_phone_number", "+15005550006")
    monkeypatch.setattr(sms_service, "Client", _UnavailableTwilio)
    monkeypatch.setattr(sms_service, "_sms_service", None)
    _UnavailableTwilio.attempts = []

    booked = await async_client.post("/api/v1/appointments/book", json=_guest_booking(doctor))
    assert booked.status_code == 201
    assert booked.json()["token_number"] == 1
    assert _UnavailableTwilio.attempts == ["+919876543210"]

    sent = await async_client.post("/api/v1/auth/otp/send", json={"phone": "9876543210"})
    assert sent.status_code == 200

    result = sms_service.get_sms_service().send("9876543210", "hello")
    assert result.delivered is False
    assert "503" in result.error


@pytest.mark.asyncio
async def test_busy_database_is_reported_as_retryable(async_client: AsyncClient, db, doctor, monkeypatch):
    def locked(*args, **kwargs):
        raise OperationalError("SELECT max(token_number)", {}, Exception("database is locked"))

    monkeypatch.setattr(booking_service, "next_token", locked)

    response = await async_client.post("/api/v1/appointments/book", json=_guest_booking(doctor))
    assert response.status_code == 503
    assert response.json()["code"] == "STORAGE_UNAVAILABLE"
    assert response.json()["retryable"] is True

    # The guest identity flushed earlier in the unit was rolled back
    assert db.query(models.Appointment).count() == 0
    assert db.query(models.Identity).filter(models.Identity.role == models.IdentityRole.PATIENT).count() == 0
