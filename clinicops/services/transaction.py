# clinicops/services/transaction.py
from contextlib import contextmanager

import structlog
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from ..database import apply_transaction_timeouts
from ..errors import TransientStorageError

logger = structlog.get_logger(__name__)


@contextmanager
def unit_of_work(db: Session, operation: str):
    """Run the block as one atomic unit.

    Commits when the block finishes, rolls back on any exception and
    re-raises it. Lock and statement timeouts surface as TransientStorageError.
    """
    try:
        apply_transaction_timeouts(db)
        yield db
        db.commit()
    except OperationalError as exc:
        db.rollback()
        logger.warning("transaction.storage_unavailable", operation=operation, error=str(exc.orig))
        raise TransientStorageError() from exc
    except Exception:
        db.rollback()
        raise
