# tests/conftest.py
import os
import tempfile

# Settings and the engine are built on first import; configure them before that.
_db_dir = tempfile.mkdtemp(prefix="clinicops-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_db_dir, 'clinicops-test.db')}"
os.environ["SECRET_KEY"] = "test-secret-key-that-is-long-enough-0123456789"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["ROOT_ADMIN_PASSCODE"] = "root-passcode"
os.environ["OTP_MASTER_CODE"] = ""
os.environ["TWILIO_ACCOUNT_SID"] = ""
os.environ["TWILIO_AUTH_TOKEN"] = ""
os.environ["TWILIO_PHONE_NUMBER"] = ""

from datetime import date

import pytest

from clinicops import models, security
from clinicops.bootstrap import create_or_update_root_admin
from clinicops.database import SessionLocal, create_tables, drop_tables


@pytest.fixture(autouse=True)
def fresh_database():
    drop_tables()
    create_tables()
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_identity(db):
    counter = {"n": 0}

    def _make(role=models.IdentityRole.DOCTOR, **fields):
        counter["n"] += 1
        defaults = {
            "name": f"{role.value.title()} {counter['n']}",
            "role": role,
            "display_id": f"{role.value[:3]}-{counter['n']:03d}",
        }
        if role != models.IdentityRole.PATIENT:
            defaults["passcode_hash"] = security.get_passcode_hash("passcode")
        defaults.update(fields)
        identity = models.Identity(**defaults)
        db.add(identity)
        db.commit()
        db.refresh(identity)
        return identity

    return _make


@pytest.fixture
def doctor(make_identity):
    return make_identity(models.IdentityRole.DOCTOR, name="Dr. Rao", specialization="General")


@pytest.fixture
def patient(make_identity):
    return make_identity(models.IdentityRole.PATIENT, name="Asha", phone="9876500000", age=34, sex="F")


@pytest.fixture
def root_admin(db):
    admin_id = create_or_update_root_admin()
    return db.get(models.Identity, admin_id)


@pytest.fixture
def visit_day():
    return date(2024, 1, 10)


@pytest.fixture
def auth_headers():
    def _headers(identity):
        return {"Authorization": f"Bearer {security.create_access_token(identity)}"}

    return _headers
