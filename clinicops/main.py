import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy.exc import SQLAlchemyError

# Import our modules
from clinicops import crud
from clinicops.bootstrap import create_or_update_root_admin
from clinicops.config import get_settings
from clinicops.core.logging import setup_logging
from clinicops.database import create_tables
from clinicops.errors import ClinicError, TransientStorageError
from clinicops.limiter import limiter
from clinicops.routers import (
    auth, appointments, consultations, staff, doctors, patients, catalog, pharmacy, lab, health,
)

setup_logging()
logger = logging.getLogger(__name__)

settings = get_settings()

app = FastAPI(title="ClinicOps - Clinic Operations API", version=settings.app_version, debug=settings.debug)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.on_event("startup")
def on_startup():
    create_tables()
    create_or_update_root_admin()


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "HEAD"],
    allow_headers=["*"],
)


# ==================== ERROR MAPPING ====================
@app.exception_handler(ClinicError)
async def clinic_error_handler(request: Request, exc: ClinicError):
    if exc.http_status >= 500:
        logger.warning(f"{request.method} {request.url.path} failed: {exc.code}")
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = f"{field}: {first.get('msg', 'invalid value')}" if field else "Invalid request"
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"success": False, "code": "VALIDATION_ERROR", "error": message, "retryable": False},
    )


@app.exception_handler(crud.CRUDError)
async def crud_error_handler(request: Request, exc: crud.CRUDError):
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"success": False, "code": "DATABASE_ERROR", "error": "A database error occurred", "retryable": False},
    )


@app.exception_handler(SQLAlchemyError)
async def sqlalchemy_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error(f"Unhandled database error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=TransientStorageError.http_status, content=TransientStorageError().to_dict())


app.include_router(auth.router, prefix="/api/v1")
app.include_router(appointments.router, prefix="/api/v1")
app.include_router(consultations.router, prefix="/api/v1")
app.include_router(staff.router, prefix="/api/v1")
app.include_router(doctors.router, prefix="/api/v1")
app.include_router(patients.router, prefix="/api/v1")
app.include_router(catalog.router, prefix="/api/v1")
app.include_router(pharmacy.router, prefix="/api/v1")
app.include_router(lab.router, prefix="/api/v1")
app.include_router(health.router, prefix="/api/v1")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("clinicops.main:app", host="0.0.0.0", port=8000)
