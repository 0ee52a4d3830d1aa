"""
Database connection management for Pairlog.

Provides database session management, connection handling, and transaction support.
"""

import logging
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from pairlog.config import settings
from pairlog.models.db import Base

logger = logging.getLogger(__name__)


def enable_sqlite_savepoints(engine: Engine) -> None:
    """
    Make pysqlite honour SAVEPOINT / ROLLBACK TO inside explicit transactions.

    The pysqlite driver manages BEGIN itself and silently breaks nested
    transactions, so the driver's handling is switched off and SQLAlchemy
    emits BEGIN on its own.
    """

    @event.listens_for(engine, "connect")
    def _do_connect(dbapi_connection, connection_record):  # pragma: no cover - driver hook
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _do_begin(conn):  # pragma: no cover - driver hook
        conn.exec_driver_sql("BEGIN")


def use_json_for_sqlite(metadata) -> None:
    """Replace JSONB with JSON so the schema can be created on SQLite."""
    from sqlalchemy import JSON
    from sqlalchemy.dialects import postgresql

    @event.listens_for(metadata, "before_create")
    def _set_json_type(target, connection, **kw):  # pragma: no cover - compat hook
        if connection.dialect.name != "sqlite":
            return
        for table in target.tables.values():
            for column in table.columns:
                if isinstance(column.type, postgresql.JSONB):
                    column.type = JSON()


# Create engine instance (singleton pattern)
if settings.is_sqlite:
    engine = create_engine(
        settings.database_url,
        echo=False,
        connect_args={"check_same_thread": False},
        pool_pre_ping=True,
    )
    enable_sqlite_savepoints(engine)
    use_json_for_sqlite(Base.metadata)
else:
    # Each uvicorn worker gets its own pool.
    # Total connections = workers x (pool_size + max_overflow)
    engine = create_engine(
        settings.database_url,
        echo=False,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_pool_max_overflow,
        pool_pre_ping=True,
        pool_timeout=settings.db_pool_timeout,
        pool_recycle=settings.db_pool_recycle,
    )

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

# In-memory SQLite databases do not persist schema between processes
if settings.database_url.startswith("sqlite:///:memory:"):
    Base.metadata.create_all(bind=engine)


def get_db() -> Generator[Session, None, None]:
    """
    Dependency for FastAPI to get database sessions with automatic cleanup.

    Yields:
        Session: A SQLAlchemy session

    Example (FastAPI):
        >>> @router.post("/api/analytics")
        >>> def ingest(db: Session = Depends(get_db)):
        >>>     ...
    """
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@contextmanager
def db_session() -> Generator[Session, None, None]:
    """
    Context manager for database sessions with automatic cleanup.

    Commits on success and rolls back on any exception.

    Yields:
        Session: A SQLAlchemy session

    Example:
        >>> with db_session() as db:
        >>>     user = db.query(User).first()
        >>>     print(user.email)
    """
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@contextmanager
def transaction() -> Generator[Session, None, None]:
    """
    Context manager for explicit transaction handling.

    Yields:
        Session: A SQLAlchemy session inside an open transaction

    Example:
        >>> with transaction() as db:
        >>>     db.add(User(email="a@x.edu"))
        >>>     # Commits automatically on success
        >>>     # Rolls back on exception
    """
    session = SessionLocal()
    try:
        with session.begin():
            yield session
    finally:
        session.close()


def init_db() -> None:
    """
    Create all tables that do not exist yet.

    Existing tables are left untouched; there is no migration step.
    """
    Base.metadata.create_all(bind=engine)
    logger.info("Database schema ensured (%d tables)", len(Base.metadata.tables))


def check_connection() -> bool:
    """
    Check if database connection is working.

    Returns:
        bool: True if connection successful, False otherwise
    """
    try:
        with db_session() as db:
            db.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error("Database connection failed: %s", e)
        return False
