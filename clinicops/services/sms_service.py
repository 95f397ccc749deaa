# clinicops/services/sms_service.py
from dataclasses import dataclass
from datetime import date
from typing import Optional

import structlog
from twilio.rest import Client
from twilio.base.exceptions import TwilioRestException

from ..config import get_settings

logger = structlog.get_logger(__name__)


@dataclass
class SmsResult:
    delivered: bool
    provider_ref: Optional[str] = None
    error: Optional[str] = None


class SmsService:
    """Best-effort SMS delivery through Twilio.

    Never raises; failures are logged and reported in the result.
    """

    def __init__(self):
        settings = get_settings()
        self.from_number = settings.twilio_phone_number
        self.country_code = settings.sms_default_country_code
        self.enabled = settings.sms_enabled

        if self.enabled:
            self.client = Client(settings.twilio_account_sid, settings.twilio_auth_token)
            logger.info("sms.enabled")
        else:
            logger.warning("sms.disabled", reason="twilio not configured")
            self.client = None

    def _format_number(self, phone: str) -> str:
        if phone.startswith("+"):
            return phone
        return f"{self.country_code}{phone}"

    def send(self, phone: str, message: str) -> SmsResult:
        if not self.enabled:
            logger.info("sms.simulated", to=phone[-4:])
            return SmsResult(delivered=False, error="SMS not configured")

        to_number = self._format_number(phone)
        try:
            sent = self.client.messages.create(body=message, from_=self.from_number, to=to_number)
        except TwilioRestException as e:
            logger.error("sms.failed", to=phone[-4:], status=e.status, error=e.msg)
            return SmsResult(delivered=False, error=f"Twilio Error: {e.status} - {e.msg}")
        except Exception as e:
            logger.error("sms.failed", to=phone[-4:], error=str(e), exc_info=True)
            return SmsResult(delivered=False, error=str(e))

        logger.info("sms.sent", to=phone[-4:], provider_ref=sent.sid)
        return SmsResult(delivered=True, provider_ref=sent.sid)

    def send_otp(self, phone: str, code: str) -> SmsResult:
        return self.send(phone, f"Your ClinicOps verification code is: {code}")

    def send_booking_confirmation(
        self,
        phone: str,
        doctor_name: str,
        appointment_date: date,
        slot_time: Optional[str],
        token_number: Optional[int],
    ) -> SmsResult:
        message = f"Appointment confirmed with Dr. {doctor_name} on {appointment_date.isoformat()}"
        if slot_time:
            message += f" ({slot_time})"
        if token_number is not None:
            message += f". Your token number is {token_number}"
        return self.send(phone, message + ".")


_sms_service: Optional[SmsService] = None


def get_sms_service() -> SmsService:
    """Lazily built so settings are read after the environment is loaded."""
    global _sms_service
    if _sms_service is None:
        _sms_service = SmsService()
    return _sms_service
