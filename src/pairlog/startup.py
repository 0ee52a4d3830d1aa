"""
Startup dependency checks for the Pairlog backend.

Validates critical dependencies before the application starts serving requests.
Fails fast with clear, actionable error messages when requirements aren't met.
"""

import logging
import sys
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy import inspect, text

from pairlog.config import settings
from pairlog.db.connection import SessionLocal, engine
from pairlog.models.db import Base
from pairlog.utils.timeutil import utc_now

logger = logging.getLogger(__name__)


@dataclass
class StartupMetrics:
    """Metrics collected during startup checks."""

    started_at: datetime
    completed_at: Optional[datetime] = None
    total_duration_ms: Optional[float] = None
    environment_check_ms: Optional[float] = None
    database_check_ms: Optional[float] = None
    schema_check_ms: Optional[float] = None
    log_directory_check_ms: Optional[float] = None
    checks_passed: bool = False
    last_check_time: Optional[datetime] = None


# Global startup metrics (populated during startup)
startup_metrics = StartupMetrics(started_at=utc_now())


class StartupCheckError(Exception):
    """Raised when a critical startup check fails."""

    def __init__(self, message: str, hint: Optional[str] = None):
        self.message = message
        self.hint = hint
        super().__init__(message)

    def __str__(self) -> str:
        error_msg = f"\n{'='*70}\nSTARTUP CHECK FAILED\n{'='*70}\n\n{self.message}\n"
        if self.hint:
            error_msg += f"\nHint: {self.hint}\n"
        error_msg += f"{'='*70}\n"
        return error_msg


def check_required_environment() -> None:
    """
    Validate that a database is configured.

    Raises:
        StartupCheckError: If neither DATABASE_URL nor the postgres_* parts are set
    """
    if settings.database_url_override:
        return

    missing = []
    if not settings.postgres_host:
        missing.append("POSTGRES_HOST")
    if not settings.postgres_db:
        missing.append("POSTGRES_DB")
    if not settings.postgres_user:
        missing.append("POSTGRES_USER")

    if missing:
        raise StartupCheckError(
            "Missing required environment variables:\n"
            + "\n".join(f"  - {var}" for var in missing),
            "Set DATABASE_URL or these variables in your .env file",
        )


def check_database_connection() -> None:
    """
    Verify the database is accessible and responsive.

    Raises:
        StartupCheckError: If database connection fails
    """
    try:
        with SessionLocal() as session:
            result = session.execute(text("SELECT 1")).scalar()
            if result != 1:
                raise StartupCheckError(
                    "Database query returned unexpected result",
                    "Database may be corrupted or misconfigured",
                )
    except StartupCheckError:
        raise
    except Exception as e:
        error_str = str(e).lower()

        if "could not connect" in error_str or "connection refused" in error_str:
            hint = (
                "PostgreSQL is not running.\n"
                f"  - Current host: {settings.postgres_host}:{settings.postgres_port}"
            )
        elif "authentication failed" in error_str or "password" in error_str:
            hint = (
                "Database authentication failed.\n"
                "  - Check credentials in .env file\n"
                f"  - Current user: {settings.postgres_user}"
            )
        elif "does not exist" in error_str:
            hint = f"Database '{settings.postgres_db}' does not exist. Create it first."
        else:
            hint = f"Check your database configuration in .env\nError: {e}"

        raise StartupCheckError("Cannot connect to the database", hint) from e


def check_database_schema() -> None:
    """
    Verify every table of the data model exists.

    Raises:
        StartupCheckError: If tables are missing
    """
    try:
        existing = set(inspect(engine).get_table_names())
    except Exception as e:
        raise StartupCheckError(
            f"Failed to inspect database schema: {e}",
            "Verify the database user can read the catalog",
        ) from e

    missing = sorted(set(Base.metadata.tables) - existing)
    if missing:
        raise StartupCheckError(
            "Database schema is incomplete. Missing tables:\n"
            + "\n".join(f"  - {name}" for name in missing),
            "Run: pairlog init-db",
        )


def check_log_directory() -> None:
    """
    Validate the log directory is writable when file logging is enabled.

    Raises:
        StartupCheckError: If the directory cannot be created or written
    """
    if not settings.log_file_enabled:
        return

    log_dir = settings.log_directory
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        test_file = log_dir / ".write_test"
        test_file.write_text("test")
        test_file.unlink()
    except OSError as e:
        raise StartupCheckError(
            f"Log directory is not writable: {log_dir}\nError: {e}",
            "Set LOG_DIR to a writable path or disable LOG_FILE_ENABLED",
        ) from e


STARTUP_CHECKS: list[tuple[str, Callable[[], None], str]] = [
    ("Environment Variables", check_required_environment, "environment_check_ms"),
    ("Database Connection", check_database_connection, "database_check_ms"),
    ("Database Schema", check_database_schema, "schema_check_ms"),
    ("Log Directory", check_log_directory, "log_directory_check_ms"),
]


def run_all_startup_checks(exit_on_failure: bool = True) -> None:
    """
    Execute all startup dependency checks.

    Runs checks in order of dependency:
    1. Environment variables
    2. Database connection
    3. Database schema
    4. Log directory (only with file logging)

    Tracks timing metrics for each check.

    Args:
        exit_on_failure: Exit the process on the first failed check instead
            of raising

    Raises:
        StartupCheckError: If a check fails and exit_on_failure is False
        SystemExit: If a check fails and exit_on_failure is True
    """
    startup_start = time.time()
    logger.info("Running Pairlog startup checks")

    for check_name, check_func, metric_name in STARTUP_CHECKS:
        check_start = time.time()
        try:
            check_func()
        except StartupCheckError as e:
            setattr(startup_metrics, metric_name, (time.time() - check_start) * 1000)
            logger.error("Startup check failed: %s%s", check_name, e)
            if exit_on_failure:
                sys.exit(1)
            raise
        check_duration = (time.time() - check_start) * 1000
        setattr(startup_metrics, metric_name, check_duration)
        logger.info("  %s: PASS (%.1fms)", check_name, check_duration)

    startup_metrics.completed_at = utc_now()
    startup_metrics.total_duration_ms = (time.time() - startup_start) * 1000
    startup_metrics.checks_passed = True
    startup_metrics.last_check_time = utc_now()

    logger.info(
        "All startup checks passed (%.1fms)", startup_metrics.total_duration_ms
    )


def check_readiness() -> tuple[bool, dict]:
    """
    Quick readiness check for load balancer probes.

    Returns:
        tuple: (is_ready: bool, details: dict) where details contains:
            - ready: bool
            - database: str (healthy/unhealthy)
            - startup_completed: bool
            - startup_metrics: dict with timing information
            - uptime_seconds: float
    """
    db_ready = False
    try:
        with SessionLocal() as session:
            session.execute(text("SELECT 1"))
            db_ready = True
    except Exception as e:
        logger.warning("Readiness probe could not reach the database: %s", e)

    uptime = (utc_now() - startup_metrics.started_at).total_seconds()

    ready = startup_metrics.checks_passed and db_ready
    details = {
        "ready": ready,
        "database": "healthy" if db_ready else "unhealthy",
        "startup_completed": startup_metrics.checks_passed,
        "uptime_seconds": uptime,
        "startup_metrics": {
            "total_duration_ms": startup_metrics.total_duration_ms,
            "environment_check_ms": startup_metrics.environment_check_ms,
            "database_check_ms": startup_metrics.database_check_ms,
            "schema_check_ms": startup_metrics.schema_check_ms,
            "started_at": startup_metrics.started_at.isoformat(),
            "completed_at": (
                startup_metrics.completed_at.isoformat()
                if startup_metrics.completed_at
                else None
            ),
            "last_check_time": (
                startup_metrics.last_check_time.isoformat()
                if startup_metrics.last_check_time
                else None
            ),
        },
    }

    return ready, details
