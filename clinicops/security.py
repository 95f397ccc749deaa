import secrets
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any

from jose import JWTError, jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer, HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from passlib.context import CryptContext

from .config import get_settings
from .database import get_db
from . import models

security_logger = logging.getLogger("clinicops.security")

# Staff passcode hashing
pwd_context = CryptContext(
    schemes=["argon2"],
    deprecated="auto",
    argon2__rounds=4,
    argon2__memory_cost=65536,
    argon2__parallelism=1,
)

# OAuth2 schemes
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="api/v1/auth/staff-login")
bearer_scheme = HTTPBearer(auto_error=False)


# Passcode utilities
def verify_passcode(plain_passcode: str, hashed_passcode: Optional[str]) -> bool:
    """Verify a passcode against its hash"""
    if not hashed_passcode:
        return False
    try:
        return pwd_context.verify(plain_passcode, hashed_passcode)
    except (ValueError, TypeError):
        # Unknown/legacy hash formats should not crash login; treat as non-match
        return False


def get_passcode_hash(passcode: str) -> str:
    """Generate passcode hash"""
    return pwd_context.hash(passcode)


# JWT utilities
def create_access_token(identity: models.Identity, expires_delta: Optional[timedelta] = None) -> str:
    """Create JWT access token for an identity"""
    settings = get_settings()
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))

    to_encode = {
        "sub": str(identity.id),
        "identity_id": identity.id,
        "role": identity.role.value,
        "exp": expire,
        "type": "access",
        "iat": now,
        "jti": secrets.token_urlsafe(16),
    }
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def verify_token(token: str, token_type: str = "access") -> Optional[Dict[str, Any]]:
    """Verify and decode JWT token"""
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        return None
    if payload.get("type") != token_type:
        return None
    return payload


def _identity_from_token(db: Session, token: str) -> Optional[models.Identity]:
    payload = verify_token(token, "access")
    if not payload or not payload.get("identity_id"):
        return None
    return db.get(models.Identity, payload["identity_id"])


# Dependencies for FastAPI
def get_current_identity(
    token: str = Depends(oauth2_scheme),
    db: Session = Depends(get_db)
) -> models.Identity:
    """Get current authenticated identity"""
    identity = _identity_from_token(db, token)
    if identity is None:
        security_logger.warning("Rejected request with invalid or stale access token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return identity


def get_optional_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db)
) -> Optional[models.Identity]:
    """Identity for endpoints that also serve guests."""
    if credentials is None:
        return None
    return _identity_from_token(db, credentials.credentials)


def require_role(*allowed_roles: models.IdentityRole):
    """Dependency factory for role-based access control"""
    def role_dependency(current_identity: models.Identity = Depends(get_current_identity)) -> models.Identity:
        if current_identity.role not in allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required roles: {', '.join(r.value for r in allowed_roles)}"
            )
        return current_identity

    return role_dependency


# Specific role dependencies
require_admin = require_role(models.IdentityRole.ADMIN)
require_doctor = require_role(models.IdentityRole.DOCTOR)
require_pharmacy = require_role(models.IdentityRole.PHARMACY)
require_lab = require_role(models.IdentityRole.LAB)
require_staff = require_role(*models.STAFF_ROLES)
