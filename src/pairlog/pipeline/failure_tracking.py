"""
Failure tracking for batches that could not be processed at all.

A systemic failure rolls back the request's own transaction, so the audit
row is written through a fresh session instead.
"""

import logging
from typing import Optional

from pairlog.db.connection import db_session
from pairlog.db.repositories import IngestionBatchRepository
from pairlog.models.db import BatchStatus
from pairlog.utils.timeutil import utc_now

logger = logging.getLogger(__name__)


def track_failure(
    error: Exception,
    source_type: str,
    total_events: int = 0,
    processing_time_ms: int = 0,
    attempts: Optional[int] = None,
) -> None:
    """
    Record a failed batch in the ingestion_batches table.

    Args:
        error: The exception that aborted the batch
        source_type: Where the batch came from ('api', 'cli')
        total_events: Number of events in the batch
        processing_time_ms: Time spent before giving up
        attempts: Number of attempts made (deadlock retries included)

    This function is safe to call - it will log but not raise if tracking fails.
    """
    try:
        error_msg = f"{type(error).__name__}: {error}"
        now = utc_now()

        with db_session() as session:
            IngestionBatchRepository(session).create(
                source_type=source_type,
                status=BatchStatus.FAILED.value,
                total_events=total_events,
                succeeded=0,
                failed=total_events,
                warnings=0,
                processing_time_ms=processing_time_ms,
                error_message=error_msg[:2000],
                metrics={"attempts": attempts} if attempts else {},
                started_at=now,
                completed_at=now,
            )

        logger.debug("Tracked failed batch: %s", error_msg)

    except Exception as tracking_error:
        # Don't let failure tracking errors break the main flow
        logger.warning("Could not track batch failure in DB: %s", tracking_error)
