"""
Error taxonomy for the transaction engine.

Services raise these; the HTTP layer renders them through a single
exception handler in ``clinicops.main``:

- validation errors are rejected before any write
- conflict errors mean "re-fetch and retry with fresh data"
- NotFoundError is a broken reference, never silently defaulted
- TransientStorageError is retryable (lock / statement timeout)
"""


class ClinicError(Exception):
    """Base class for every business error."""
    code = "CLINIC_ERROR"
    http_status = 500
    message = "An unexpected error occurred"
    retryable = False

    def __init__(self, message=None, code=None):
        if message:
            self.message = message
        if code:
            self.code = code
        super().__init__(self.message)

    def to_dict(self):
        return {
            "success": False,
            "code": self.code,
            "error": self.message,
            "retryable": self.retryable,
        }


# --- Validation ---

class InvalidRequestError(ClinicError):
    code = "VALIDATION_ERROR"
    http_status = 400
    message = "Invalid request"


class InvalidPhoneError(InvalidRequestError):
    code = "INVALID_PHONE"
    message = "Phone number must be exactly 10 digits"


class InvalidSlotError(InvalidRequestError):
    code = "INVALID_SLOT"
    message = "Invalid doctor or date for this slot"


class InvalidOtpError(InvalidRequestError):
    code = "INVALID_OTP"
    http_status = 401
    message = "Invalid OTP"


class OtpExpiredError(InvalidOtpError):
    code = "OTP_EXPIRED"
    message = "OTP expired"


# --- Conflict ---

class ConflictError(ClinicError):
    code = "CONFLICT"
    http_status = 409
    message = "The request conflicts with the current state"


class TokenConflictError(ConflictError):
    code = "TOKEN_CONFLICT"
    message = "Could not allocate a token for this slot, please refresh and try again"


class ConsultationExistsError(ConflictError):
    code = "CONSULTATION_EXISTS"
    message = "A consultation already exists for this appointment"


class DuplicateDisplayIdError(ConflictError):
    code = "DUPLICATE_DISPLAY_ID"
    message = "Display ID already exists"


# --- Integrity ---

class NotFoundError(ClinicError):
    code = "NOT_FOUND"
    http_status = 404
    message = "Record not found"


# --- Authorization ---

class ProtectedIdentityError(ClinicError):
    code = "PROTECTED_IDENTITY"
    http_status = 403
    message = "The root administrator cannot be deleted"


class ForbiddenError(ClinicError):
    code = "FORBIDDEN"
    http_status = 403
    message = "You are not allowed to act on this record"


# --- Transient ---

class TransientStorageError(ClinicError):
    code = "STORAGE_UNAVAILABLE"
    http_status = 503
    message = "The database is busy, please retry"
    retryable = True
