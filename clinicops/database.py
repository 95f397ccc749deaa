# clinicops/database.py
import logging

from sqlalchemy import create_engine, event, text
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from .config import get_settings

logger = logging.getLogger(__name__)

_settings = get_settings()

if _settings.is_sqlite:
    # SQLite serialises writers; the busy timeout is its lock-wait budget.
    engine = create_engine(
        _settings.database_url,
        connect_args={
            "check_same_thread": False,
            "timeout": _settings.transaction_lock_timeout_ms / 1000,
        },
        echo=False,
    )

    @event.listens_for(engine, "connect")
    def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()
else:
    engine = create_engine(
        _settings.database_url,
        pool_pre_ping=True,
        pool_size=_settings.database_pool_size,
        max_overflow=_settings.database_max_overflow,
        echo=False,
    )

# Session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for models
Base = declarative_base()


# Dependency to get database session
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def apply_transaction_timeouts(db: Session) -> None:
    """Bound lock waits and statement runtime for the current transaction.

    PostgreSQL only; SET LOCAL expires with the transaction. SQLite relies on
    the connection busy timeout configured on the engine.
    """
    if db.get_bind().dialect.name != "postgresql":
        return
    settings = get_settings()
    db.execute(text(f"SET LOCAL lock_timeout = {int(settings.transaction_lock_timeout_ms)}"))
    db.execute(text(f"SET LOCAL statement_timeout = {int(settings.transaction_statement_timeout_ms)}"))


def create_tables():
    """Create all database tables - MUST import models first!"""
    from . import models  # noqa: F401  registers the mappers

    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created successfully")


def drop_tables():
    """Drop all database tables"""
    Base.metadata.drop_all(bind=engine)
    logger.info("Database tables dropped successfully")
