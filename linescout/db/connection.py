"""Database connection management for LineScout.

Provides synchronous database access using SQLAlchemy. Supports SQLite for
development and tests; production deployments point DATABASE_URL at
PostgreSQL or MySQL, where ``SELECT ... FOR UPDATE`` row locks are honoured.

Usage:
    # FastAPI Depends
    from linescout.db.connection import get_db, init_db

    init_db()  # Create tables
    db = next(get_db())

    # Scripts and CLI commands
    from linescout.db.connection import get_db_context

    with get_db_context() as db:
        ...
"""

import logging
import os
from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import create_engine, event, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker

from linescout.db.models import Base

logger = logging.getLogger(__name__)


# Configuration
def get_database_url() -> str:
    """Get database URL from environment or use default SQLite.

    Precedence:
    1. DATABASE_URL (canonical)
    2. LINESCOUT_DB_PATH (converted to sqlite URL)
    3. sqlite:///./linescout.db
    """
    database_url = os.environ.get("DATABASE_URL", "").strip()
    if database_url:
        return database_url

    db_path = os.environ.get("LINESCOUT_DB_PATH", "").strip()
    if db_path:
        if db_path.startswith("sqlite:"):
            return db_path
        return f"sqlite:///{db_path}"

    return "sqlite:///./linescout.db"


DATABASE_URL = get_database_url()

engine = create_engine(
    DATABASE_URL,
    connect_args={"check_same_thread": False}
    if DATABASE_URL.startswith("sqlite")
    else {},
    echo=os.environ.get("SQL_ECHO", "").lower() == "true",
)


@event.listens_for(engine, "connect")
def set_sqlite_pragma(dbapi_connection: Any, connection_record: Any) -> None:
    """Configure SQLite pragmas.

    Enables:
    - foreign_keys=ON: Referential integrity (disabled by default in SQLite).
    - journal_mode=WAL: Concurrent readers alongside a single writer.
    """
    if DATABASE_URL.startswith("sqlite"):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA journal_mode=WAL;")
        cursor.close()


SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)


def get_db() -> Generator[Session, None, None]:
    """Yield a request-scoped database session.

    Usage:
        @router.get("/wallet")
        def get_wallet(db: Session = Depends(get_db)):
            ...

    Yields:
        Session: SQLAlchemy session that will be closed after use.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def get_db_context() -> Generator[Session, None, None]:
    """Context manager for database sessions outside of FastAPI.

    Commits on success and rolls back on any exception.
    """
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def _ensure_reference_uniqueness(conn: Any) -> None:
    """Harden wallet-transaction references on databases created before the
    unique constraint existed.

    Refuses to proceed while duplicate (reference_type, reference_id) pairs
    exist, since those are double-booked ledger entries that need a manual fix.

    Args:
        conn: SQLAlchemy Connection.

    Raises:
        RuntimeError: If duplicate references are present.
    """
    dup_result = conn.execute(
        text(
            "SELECT reference_type, reference_id, COUNT(*) AS c "
            "FROM linescout_wallet_transactions "
            "WHERE reference_type IS NOT NULL AND reference_id IS NOT NULL "
            "GROUP BY reference_type, reference_id "
            "HAVING COUNT(*) > 1"
        )
    )
    duplicates = dup_result.fetchall()
    if duplicates:
        logger.error(
            "Found %d duplicated wallet transaction references: %s",
            len(duplicates),
            [(row[0], row[1]) for row in duplicates],
        )
        raise RuntimeError(
            f"Found {len(duplicates)} duplicated wallet transaction references "
            "- reconcile the ledger before starting"
        )

    try:
        conn.execute(
            text(
                "CREATE UNIQUE INDEX IF NOT EXISTS idx_wallet_transactions_reference "
                "ON linescout_wallet_transactions (reference_type, reference_id)"
            )
        )
    except OperationalError as e:
        logger.warning("wallet transaction reference index creation failed: %s", e)


def init_db() -> None:
    """Create all database tables.

    Safe to call multiple times; existing tables are left alone and the
    ledger uniqueness hardening is re-applied idempotently.
    """
    Base.metadata.create_all(bind=engine)
    with engine.begin() as conn:
        _ensure_reference_uniqueness(conn)


def close_db() -> None:
    """Dispose of the engine's connection pool."""
    engine.dispose()
