# clinicops/config.py - Configuration management
from dotenv import load_dotenv

load_dotenv()
from typing import Optional, Union
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator


class Settings(BaseSettings):
    """Application settings with validation and environment variable support (Pydantic V2 Syntax)"""

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="allow",
        case_sensitive=False,
        populate_by_name=True,
    )

    # Application
    app_name: str = "ClinicOps"
    app_version: str = "1.0.0"
    environment: str = Field(default="development", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")

    # Database
    database_url: str = Field(default="sqlite:///./clinicops.db", alias="DATABASE_URL")
    database_pool_size: int = Field(default=20, alias="DATABASE_POOL_SIZE")
    database_max_overflow: int = Field(default=30, alias="DATABASE_MAX_OVERFLOW")

    # Transaction budget for the booking / finalization / cascade units
    transaction_lock_timeout_ms: int = Field(default=5000, alias="TRANSACTION_LOCK_TIMEOUT_MS")
    transaction_statement_timeout_ms: int = Field(default=20000, alias="TRANSACTION_STATEMENT_TIMEOUT_MS")
    token_allocation_attempts: int = Field(default=10, alias="TOKEN_ALLOCATION_ATTEMPTS")

    # Security
    secret_key: str = Field(default="change-me-in-production-please-0123456789", alias="SECRET_KEY")
    algorithm: str = Field(default="HS256", alias="ALGORITHM")
    access_token_expire_minutes: int = Field(default=60 * 12, alias="ACCESS_TOKEN_EXPIRE_MINUTES")

    # Root administrator (cannot be deleted)
    root_admin_display_id: str = Field(default="ADMIN-001", alias="ROOT_ADMIN_DISPLAY_ID")
    root_admin_name: str = Field(default="Administrator", alias="ROOT_ADMIN_NAME")
    root_admin_passcode: Optional[str] = Field(default=None, alias="ROOT_ADMIN_PASSCODE")

    # OTP
    otp_ttl_minutes: int = Field(default=5, alias="OTP_TTL_MINUTES")
    otp_master_code: Optional[str] = Field(default=None, alias="OTP_MASTER_CODE")

    # Rate limiting
    rate_limit_enabled: bool = Field(default=True, alias="RATE_LIMIT_ENABLED")
    otp_send_rate: str = Field(default="5/minute", alias="OTP_SEND_RATE")

    # CORS
    cors_origins: Union[str, list[str]] = Field(default=["http://localhost:3000", "http://localhost:5173"], alias="CORS_ORIGINS")

    # SMS (Twilio)
    twilio_account_sid: Optional[str] = Field(default=None, alias="TWILIO_ACCOUNT_SID")
    twilio_auth_token: Optional[str] = Field(default=None, alias="TWILIO_AUTH_TOKEN")
    twilio_phone_number: Optional[str] = Field(default=None, alias="TWILIO_PHONE_NUMBER")
    sms_default_country_code: str = Field(default="+91", alias="SMS_DEFAULT_COUNTRY_CODE")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_json: bool = Field(default=False, alias="LOG_JSON")

    # --- Pydantic V2 Validators ---
    @field_validator("cors_origins", mode='before')
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            if not v.strip():
                return ["http://localhost:3000", "http://localhost:5173"]
            return [origin.strip() for origin in v.split(',') if origin.strip()]
        return v

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v):
        if not v:
            raise ValueError("DATABASE_URL is required")
        if not v.startswith(("postgresql://", "postgresql+psycopg2://", "sqlite:///")):
            raise ValueError("DATABASE_URL must be a valid PostgreSQL or SQLite URL")
        return v

    @field_validator("secret_key")
    @classmethod
    def validate_key_length(cls, v):
        if not v or len(v) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters long")
        return v

    @field_validator("token_allocation_attempts")
    @classmethod
    def validate_attempts(cls, v):
        if v < 1:
            raise ValueError("TOKEN_ALLOCATION_ATTEMPTS must be at least 1")
        return v

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    @property
    def sms_enabled(self) -> bool:
        return bool(self.twilio_account_sid and self.twilio_auth_token and self.twilio_phone_number)


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()

# Note: Do not instantiate settings at import time to avoid failing
# on missing environment variables. Use `get_settings()` instead.
