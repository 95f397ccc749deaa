# clinicops/models.py
from sqlalchemy import (
    Column, Integer, String, DateTime, ForeignKey, Text, Date,
    Enum as SQLAlchemyEnum, Boolean, Index, text
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from .database import Base
import enum


class IdentityRole(str, enum.Enum):
    PATIENT = "PATIENT"
    DOCTOR = "DOCTOR"
    PHARMACY = "PHARMACY"
    LAB = "LAB"
    ADMIN = "ADMIN"


STAFF_ROLES = (IdentityRole.DOCTOR, IdentityRole.PHARMACY, IdentityRole.LAB, IdentityRole.ADMIN)


class AppointmentStatus(str, enum.Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class LabRequestStatus(str, enum.Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"


class CatalogKind(str, enum.Enum):
    medicine = "medicine"
    labtest = "labtest"


# ==================== Identity ====================

class Identity(Base):
    """A person known to the clinic: patient or staff member."""
    __tablename__ = "users"
    __table_args__ = (
        # One patient record per phone number
        Index(
            "uq_users_patient_phone", "phone", unique=True,
            postgresql_where=text("role = 'PATIENT'"),
            sqlite_where=text("role = 'PATIENT'"),
        ),
        Index("idx_users_role", "role"),
    )

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(120), nullable=False)
    role = Column(SQLAlchemyEnum(IdentityRole, name="identity_role"), nullable=False)
    phone = Column(String(20), nullable=True)
    age = Column(Integer, nullable=True)
    sex = Column(String(20), nullable=True)
    display_id = Column(String(40), unique=True, nullable=True)

    # Staff only
    passcode_hash = Column(String(255), nullable=True)
    specialization = Column(String(120), nullable=True)
    start_hour = Column(Integer, nullable=True)
    end_hour = Column(Integer, nullable=True)
    is_super_admin = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    doctor_appointments = relationship("Appointment", back_populates="doctor", foreign_keys="Appointment.doctor_id")
    patient_appointments = relationship("Appointment", back_populates="patient", foreign_keys="Appointment.patient_id")


# ==================== Scheduling ====================

class Appointment(Base):
    __tablename__ = "appointments"
    __table_args__ = (
        # Token numbers are unique per doctor/day/slot among live appointments
        Index(
            "uq_appointments_slot_token", "doctor_id", "date", "slot_time", "token_number", unique=True,
            postgresql_where=text("status != 'CANCELLED'"),
            sqlite_where=text("status != 'CANCELLED'"),
        ),
        Index("idx_appointments_doctor_date", "doctor_id", "date"),
        Index("idx_appointments_patient", "patient_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    patient_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    date = Column(Date, nullable=False)
    slot_time = Column(String(60), nullable=True)  # "09:00 AM - 10:00 AM" or "Walk-in"
    token_number = Column(Integer, nullable=True)
    status = Column(SQLAlchemyEnum(AppointmentStatus, name="appointment_status"), default=AppointmentStatus.PENDING, nullable=False, index=True)

    # Who is actually examined (family / proxy bookings)
    patient_name = Column(String(120), nullable=True)
    patient_age = Column(Integer, nullable=True)
    patient_gender = Column(String(20), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    patient = relationship("Identity", back_populates="patient_appointments", foreign_keys=[patient_id])
    doctor = relationship("Identity", back_populates="doctor_appointments", foreign_keys=[doctor_id])
    consultation = relationship("Consultation", back_populates="appointment", uselist=False)


# ==================== Clinical records ====================

class Consultation(Base):
    """Clinical record produced once per completed appointment."""
    __tablename__ = "consultations"

    id = Column(Integer, primary_key=True, index=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=False, unique=True)
    diagnosis = Column(Text, nullable=False)
    notes = Column(Text, nullable=True)
    next_visit_date = Column(Date, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    appointment = relationship("Appointment", back_populates="consultation")
    prescriptions = relationship("Prescription", back_populates="consultation", order_by="Prescription.id")
    lab_requests = relationship("LabRequest", back_populates="consultation", order_by="LabRequest.id")


class Prescription(Base):
    __tablename__ = "prescriptions"
    __table_args__ = (
        Index("idx_prescriptions_dispensed", "is_dispensed", "created_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    consultation_id = Column(Integer, ForeignKey("consultations.id"), nullable=False)
    is_dispensed = Column(Boolean, default=False, nullable=False)
    dispensed_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)  # weak reference
    dispensed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    consultation = relationship("Consultation", back_populates="prescriptions")
    items = relationship("PrescriptionItem", back_populates="prescription", order_by="PrescriptionItem.id")
    dispensed_by = relationship("Identity", foreign_keys=[dispensed_by_id])


class PrescriptionItem(Base):
    __tablename__ = "prescription_items"

    id = Column(Integer, primary_key=True, index=True)
    prescription_id = Column(Integer, ForeignKey("prescriptions.id"), nullable=False)
    medicine_id = Column(Integer, ForeignKey("medicines.id"), nullable=False)
    dosage = Column(String(100), nullable=True)
    duration = Column(String(100), nullable=True)

    prescription = relationship("Prescription", back_populates="items")
    medicine = relationship("Medicine")


class LabRequest(Base):
    __tablename__ = "lab_requests"
    __table_args__ = (
        Index("idx_lab_requests_status", "status", "created_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    consultation_id = Column(Integer, ForeignKey("consultations.id"), nullable=False)
    lab_test_id = Column(Integer, ForeignKey("lab_tests.id"), nullable=True)
    test_name = Column(String(255), nullable=False)
    status = Column(SQLAlchemyEnum(LabRequestStatus, name="lab_request_status"), default=LabRequestStatus.PENDING, nullable=False)
    result_report = Column(Text, nullable=True)
    technician_id = Column(Integer, ForeignKey("users.id"), nullable=True)  # weak reference
    completed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    consultation = relationship("Consultation", back_populates="lab_requests")
    lab_test = relationship("LabTest")
    technician = relationship("Identity", foreign_keys=[technician_id])


# ==================== Catalogs ====================

class CatalogEntryMixin:
    """Deduplicated, usage-counted named entry used for autocomplete."""
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), unique=True, nullable=False)
    usage_count = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())


class Medicine(CatalogEntryMixin, Base):
    __tablename__ = "medicines"


class LabTest(CatalogEntryMixin, Base):
    __tablename__ = "lab_tests"


CATALOG_MODELS = {
    CatalogKind.medicine: Medicine,
    CatalogKind.labtest: LabTest,
}


# ==================== Verification codes ====================

class VerificationCode(Base):
    """Single live OTP per phone number."""
    __tablename__ = "otps"

    id = Column(Integer, primary_key=True, index=True)
    phone = Column(String(20), unique=True, nullable=False)
    code = Column(String(10), nullable=False)
    expires_at = Column(DateTime, nullable=False)  # naive UTC
    created_at = Column(DateTime(timezone=True), server_default=func.now())


# ==================== Audit ====================

class AuditLog(Base):
    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("idx_audit_logs_timestamp", "timestamp"),
    )

    id = Column(Integer, primary_key=True, index=True)
    # No foreign key: entries outlive the identities they mention
    actor_id = Column(Integer, nullable=True)
    actor_role = Column(String(20), nullable=True)
    action = Column(String(50), nullable=False)
    category = Column(String(50), nullable=False)
    severity = Column(String(20), default="INFO")
    resource_type = Column(String(50), nullable=True)
    resource_id = Column(Integer, nullable=True)
    details = Column(Text, nullable=True)
    timestamp = Column(DateTime(timezone=True), server_default=func.now())
