# clinicops/services/catalog_service.py
from typing import List, Union

import structlog
from sqlalchemy import func
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from .. import models
from ..errors import InvalidRequestError

logger = structlog.get_logger(__name__)

SEARCH_LIMIT = 10

_DIALECT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def _catalog_model(kind: Union[models.CatalogKind, str]):
    try:
        return models.CATALOG_MODELS[models.CatalogKind(kind)]
    except ValueError:
        raise InvalidRequestError(f"Unknown catalog kind: {kind}")


def normalise_name(name: str) -> str:
    name = (name or "").strip()
    if not name:
        raise InvalidRequestError("Catalog entry name cannot be empty")
    return name


def upsert_catalog_entry(db: Session, kind: Union[models.CatalogKind, str], name: str):
    """Insert the entry with usage 1, or bump its usage by one.

    A single INSERT .. ON CONFLICT statement, so concurrent callers never
    lose an increment. Executes in the caller's transaction.
    """
    model = _catalog_model(kind)
    name = normalise_name(name)

    dialect = db.get_bind().dialect.name
    try:
        insert = _DIALECT_INSERTS[dialect]
    except KeyError:
        raise NotImplementedError(f"Catalog upsert is not supported on {dialect}")

    stmt = insert(model).values(name=name, usage_count=1)
    stmt = stmt.on_conflict_do_update(
        index_elements=["name"],
        set_={"usage_count": model.usage_count + 1, "updated_at": func.now()},
    )
    db.execute(stmt)

    entry = (
        db.query(model)
        .filter(model.name == name)
        .populate_existing()
        .one()
    )
    logger.debug("catalog.upserted", kind=model.__tablename__, entry_id=entry.id, usage_count=entry.usage_count)
    return entry


def search_catalog(db: Session, kind: Union[models.CatalogKind, str], query: str) -> List:
    """Case-insensitive substring search, most used first."""
    model = _catalog_model(kind)
    query = (query or "").strip()
    if not query:
        return []
    return (
        db.query(model)
        .filter(model.name.ilike(f"%{query}%"))
        .order_by(model.usage_count.desc(), model.name)
        .limit(SEARCH_LIMIT)
        .all()
    )
