# clinicops/routers/staff.py
from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from .. import schemas, security, models
from ..compliance_logger import compliance_logger
from ..database import get_db
from ..services import staff_service

router = APIRouter(
    prefix="/admin/staff",
    tags=["Admin"],
    responses={404: {"description": "Not found"}},
)


@router.get("", response_model=List[schemas.StaffResponse])
def list_staff(
    db: Session = Depends(get_db),
    current_admin: models.Identity = Depends(security.require_admin),
):
    return staff_service.list_staff(db)


@router.post("", response_model=schemas.StaffResponse, status_code=status.HTTP_201_CREATED)
def create_staff(
    staff: schemas.StaffCreate,
    db: Session = Depends(get_db),
    current_admin: models.Identity = Depends(security.require_admin),
):
    identity = staff_service.create_staff(db, staff)
    compliance_logger.log_event(
        actor_id=current_admin.id,
        actor_role=current_admin.role,
        action="STAFF_CREATED",
        category="ADMIN",
        resource_type="Identity",
        resource_id=identity.id,
        details=f"{identity.role.value} {identity.display_id}",
    )
    return identity


@router.put("/{identity_id}", response_model=schemas.StaffResponse)
def update_staff(
    identity_id: int,
    update: schemas.StaffUpdate,
    db: Session = Depends(get_db),
    current_admin: models.Identity = Depends(security.require_admin),
):
    identity = staff_service.update_staff(db, identity_id, update)
    compliance_logger.log_event(
        actor_id=current_admin.id,
        actor_role=current_admin.role,
        action="STAFF_UPDATED",
        category="ADMIN",
        resource_type="Identity",
        resource_id=identity.id,
    )
    return identity


@router.delete("/{identity_id}", response_model=schemas.CascadeReportResponse)
def delete_staff(
    identity_id: int,
    db: Session = Depends(get_db),
    current_admin: models.Identity = Depends(security.require_admin),
):
    """
    Delete a staff member together with the appointments and clinical
    records they own. The root administrator cannot be deleted.
    """
    admin_id, admin_role = current_admin.id, current_admin.role
    report = staff_service.delete_staff(db, identity_id)
    compliance_logger.log_event(
        actor_id=admin_id,
        actor_role=admin_role,
        action="STAFF_DELETED",
        category="ADMIN",
        severity="WARNING",
        resource_type="Identity",
        resource_id=identity_id,
        details=(
            f"appointments={report.appointments_deleted} "
            f"consultations={report.consultations_deleted} "
            f"prescriptions={report.prescriptions_deleted}"
        ),
    )
    return report.as_dict()
