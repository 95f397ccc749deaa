# clinicops/schemas.py
from datetime import datetime, date
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .models import IdentityRole, AppointmentStatus, LabRequestStatus


# --- Base Schemas ---
class BaseSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# --- Identity Schemas ---
class IdentityResponse(BaseSchema):
    id: int
    name: str
    role: IdentityRole
    phone: Optional[str] = None
    age: Optional[int] = None
    sex: Optional[str] = None
    display_id: Optional[str] = None
    specialization: Optional[str] = None


class DoctorResponse(BaseSchema):
    id: int
    name: str
    specialization: Optional[str] = None
    start_hour: Optional[int] = None
    end_hour: Optional[int] = None


class StaffResponse(IdentityResponse):
    start_hour: Optional[int] = None
    end_hour: Optional[int] = None
    is_super_admin: bool = False
    created_at: Optional[datetime] = None


class StaffCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    role: IdentityRole
    passcode: str = Field(..., min_length=4, max_length=64)
    display_id: str = Field(..., min_length=1, max_length=40)
    specialization: Optional[str] = Field(None, max_length=120)
    phone: Optional[str] = Field(None, max_length=20)
    start_hour: Optional[int] = Field(None, ge=0, le=23)
    end_hour: Optional[int] = Field(None, ge=0, le=24)

    @field_validator("role")
    @classmethod
    def role_must_be_staff(cls, v):
        if v == IdentityRole.PATIENT:
            raise ValueError("Staff members cannot have the PATIENT role")
        return v

    @field_validator("display_id")
    @classmethod
    def strip_display_id(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("Display ID cannot be blank")
        return v


class StaffUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=120)
    role: Optional[IdentityRole] = None
    passcode: Optional[str] = Field(None, min_length=4, max_length=64)
    display_id: Optional[str] = Field(None, min_length=1, max_length=40)
    specialization: Optional[str] = Field(None, max_length=120)
    phone: Optional[str] = Field(None, max_length=20)
    start_hour: Optional[int] = Field(None, ge=0, le=23)
    end_hour: Optional[int] = Field(None, ge=0, le=24)

    @field_validator("role")
    @classmethod
    def role_must_be_staff(cls, v):
        if v == IdentityRole.PATIENT:
            raise ValueError("Staff members cannot have the PATIENT role")
        return v


class ProfileUpdate(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    age: Optional[int] = Field(None, ge=0, le=150)
    sex: Optional[str] = Field(None, max_length=20)


# --- Auth Schemas ---
class StaffLoginRequest(BaseModel):
    staff_id: str = Field(..., description="Display ID or numeric ID of the staff member")
    passcode: str


class OtpSendRequest(BaseModel):
    phone: str


class OtpVerifyRequest(BaseModel):
    phone: str
    code: str


class AuthResponse(BaseModel):
    success: bool = True
    access_token: str
    token_type: str = "bearer"
    identity: IdentityResponse


# --- Booking Schemas ---
class GuestDetails(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    # Optional for signed-in patients completing their profile
    phone: Optional[str] = None
    age: Optional[int] = Field(None, ge=0, le=150)
    sex: Optional[str] = Field(None, max_length=20)


class TokenPreviewRequest(BaseModel):
    doctor_id: int
    date: date
    slot_time: str = Field(..., min_length=1, max_length=60)


class TokenPreviewResponse(BaseModel):
    token_number: int


class BookingRequest(BaseModel):
    doctor_id: int
    date: date
    slot_time: Optional[str] = Field(None, max_length=60)
    patient_id: Optional[int] = None
    guest_details: Optional[GuestDetails] = None
    # Person actually examined, when booking for a family member
    patient_name: Optional[str] = Field(None, max_length=120)
    patient_age: Optional[int] = Field(None, ge=0, le=150)
    patient_gender: Optional[str] = Field(None, max_length=20)


class WalkInRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    phone: str
    age: Optional[int] = Field(None, ge=0, le=150)
    sex: Optional[str] = Field(None, max_length=20)


class BookingResponse(BaseModel):
    success: bool = True
    appointment_id: int
    token_number: Optional[int] = None
    patient_id: int


class AppointmentStatusUpdate(BaseModel):
    status: AppointmentStatus


class AppointmentResponse(BaseSchema):
    id: int
    patient_id: int
    doctor_id: int
    date: date
    slot_time: Optional[str] = None
    token_number: Optional[int] = None
    status: AppointmentStatus
    patient_name: Optional[str] = None
    patient_age: Optional[int] = None
    patient_gender: Optional[str] = None


# --- Catalog Schemas ---
class CatalogEntryResponse(BaseSchema):
    id: int
    name: str
    usage_count: int


# --- Consultation Schemas ---
class PrescriptionItemRequest(BaseModel):
    medicine_name: str = Field(..., min_length=1, max_length=255)
    dosage: Optional[str] = Field(None, max_length=100)
    duration: Optional[str] = Field(None, max_length=100)


class LabTestRequest(BaseModel):
    test_name: str = Field(..., min_length=1, max_length=255)


class ConsultationFinalizeRequest(BaseModel):
    appointment_id: int
    diagnosis: str = Field(..., min_length=1)
    notes: Optional[str] = None
    next_visit_date: Optional[date] = None
    prescriptions: List[PrescriptionItemRequest] = Field(default_factory=list)
    lab_requests: List[LabTestRequest] = Field(default_factory=list)


class PrescriptionItemResponse(BaseSchema):
    id: int
    medicine_id: int
    dosage: Optional[str] = None
    duration: Optional[str] = None
    medicine: CatalogEntryResponse


class PrescriptionResponse(BaseSchema):
    id: int
    consultation_id: int
    is_dispensed: bool
    dispensed_by_id: Optional[int] = None
    dispensed_at: Optional[datetime] = None
    items: List[PrescriptionItemResponse] = []


class LabRequestResponse(BaseSchema):
    id: int
    consultation_id: int
    test_name: str
    status: LabRequestStatus
    result_report: Optional[str] = None
    technician_id: Optional[int] = None
    completed_at: Optional[datetime] = None


class ConsultationResponse(BaseSchema):
    id: int
    appointment_id: int
    diagnosis: str
    notes: Optional[str] = None
    next_visit_date: Optional[date] = None
    prescriptions: List[PrescriptionResponse] = []
    lab_requests: List[LabRequestResponse] = []


class PatientHistoryEntry(AppointmentResponse):
    doctor_name: Optional[str] = None
    consultation: Optional[ConsultationResponse] = None


class DoctorHistoryEntry(AppointmentResponse):
    patient_display_id: Optional[str] = None
    diagnosis: Optional[str] = None


# --- Pharmacy / Lab Schemas ---
class PharmacyQueueEntry(PrescriptionResponse):
    appointment_id: int
    patient_name: Optional[str] = None
    patient_display_id: Optional[str] = None
    doctor_name: Optional[str] = None


class LabQueueEntry(LabRequestResponse):
    appointment_id: int
    patient_name: Optional[str] = None
    patient_display_id: Optional[str] = None
    doctor_name: Optional[str] = None


class LabCompleteRequest(BaseModel):
    result: str = Field(..., min_length=1)


# --- Admin Schemas ---
class CascadeReportResponse(BaseModel):
    success: bool = True
    identity_id: int
    appointments_deleted: int
    consultations_deleted: int
    prescriptions_deleted: int
    prescription_items_deleted: int
    lab_requests_deleted: int
    prescriptions_unlinked: int
    lab_requests_unlinked: int
