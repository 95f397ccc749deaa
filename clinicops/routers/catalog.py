# clinicops/routers/catalog.py
from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from .. import schemas, security, models
from ..database import get_db
from ..services import catalog_service

router = APIRouter(
    prefix="/catalog",
    tags=["Catalog"],
    responses={404: {"description": "Not found"}},
)


@router.get("/{kind}/search", response_model=List[schemas.CatalogEntryResponse])
def search_catalog(
    kind: models.CatalogKind,
    query: str = Query("", max_length=100),
    db: Session = Depends(get_db),
    current_staff: models.Identity = Depends(security.require_staff),
):
    """Autocomplete: top matches by usage."""
    return catalog_service.search_catalog(db, kind, query)
