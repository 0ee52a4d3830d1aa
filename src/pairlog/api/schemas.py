"""
API schemas for Pairlog.

Pydantic models for the ingestion response bodies.
"""

from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from pairlog.pipeline.coordinator import BatchResult

# ===== Ingestion Schemas =====


class BatchStats(BaseModel):
    """Counts for one ingested batch."""

    total: int
    success: int
    errors: int
    warnings: int = 0
    processing_time_ms: int


class EventErrorDetail(BaseModel):
    """Why a single event failed."""

    event_id: Optional[str] = None
    event_type: Optional[str] = None
    error: str
    error_type: Optional[str] = None
    index: int


class EventWarningDetail(BaseModel):
    """Non-fatal condition reported for an accepted event."""

    event_id: Optional[str] = None
    event_type: Optional[str] = None
    warning: str


class IngestResponse(BaseModel):
    """Response body of POST /api/analytics."""

    message: str
    stats: BatchStats
    batch_id: Optional[UUID] = None
    rolled_back: bool = False
    error_details: Optional[list[EventErrorDetail]] = None
    warning_details: Optional[list[EventWarningDetail]] = None

    @classmethod
    def from_result(cls, result: BatchResult) -> "IngestResponse":
        """Build the response body from a coordinator result."""
        errors = [
            EventErrorDetail(
                event_id=o.event_id,
                event_type=o.event_type,
                error=o.error or "",
                error_type=o.error_kind,
                index=o.index,
            )
            for o in result.errors
        ]
        warnings = [
            EventWarningDetail(event_id=o.event_id, event_type=o.event_type, warning=w)
            for o in result.outcomes
            for w in o.warnings
        ]

        if result.rolled_back:
            message = (
                f"Batch rolled back: {len(errors)} of {result.total} events failed"
            )
        elif errors:
            message = (
                f"Processed {result.total} events with {len(errors)} errors"
            )
        else:
            message = f"Processed {result.total} events successfully"

        return cls(
            message=message,
            stats=BatchStats(
                total=result.total,
                success=result.succeeded,
                errors=result.failed,
                warnings=0 if result.rolled_back else len(warnings),
                processing_time_ms=result.processing_time_ms,
            ),
            batch_id=result.batch_id,
            rolled_back=result.rolled_back,
            error_details=errors or None,
            warning_details=(warnings or None) if not result.rolled_back else None,
        )


class HealthResponse(BaseModel):
    """Response body of GET /health."""

    status: str
    database: str
    details: dict[str, str] = Field(default_factory=dict)
