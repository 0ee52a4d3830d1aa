"""
Batch coordinator for the analytics ingestion pipeline.

Runs a list of raw events through normalization, the append-only log and
the type handlers, inside one unit of work:

- the whole batch runs inside a savepoint that is released when the batch
  is accepted and rolled back when too many events fail;
- every event's log write and handler run in savepoints of their own, so a
  failing event never disturbs the writes of its neighbours;
- deadlocks and serialization failures retry the whole batch with
  exponential backoff; any other storage fault aborts it.

The coordinator never commits. The caller owns the transaction (the FastAPI
`get_db` dependency or `db_session()` in the CLI) and commits once the
batch returns, which also persists the IngestionBatch audit row for
rolled-back batches.
"""

import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, NoReturn, Optional
from uuid import UUID

from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session

from pairlog.config import settings
from pairlog.db.repositories.analytics_event import AnalyticsEventRepository
from pairlog.exceptions import (
    BatchIngestionError,
    BatchRejectedError,
    DependencyResolutionError,
    DuplicateEventError,
    EventValidationError,
    is_deadlock_error,
)
from pairlog.models.db import BatchStatus, IngestionBatch
from pairlog.pipeline.failure_tracking import track_failure
from pairlog.pipeline.handlers import EventHandlers
from pairlog.pipeline.identity import IdentityCache, IdentityResolver
from pairlog.pipeline.normalizer import EventNormalizer, referenced_emails
from pairlog.pipeline.pair_state import PairSessionStore
from pairlog.pipeline.sessions import SessionResolver
from pairlog.utils.timeutil import utc_now

logger = logging.getLogger(__name__)


class ErrorKind:
    VALIDATION = "validation"
    DEPENDENCY = "dependency"
    DUPLICATE = "duplicate"
    HANDLER = "handler"
    STORAGE = "storage"


def _is_fatal(exc: BaseException) -> bool:
    """Errors that must abort the batch instead of failing a single event."""
    if is_deadlock_error(exc):
        return True
    return isinstance(exc, DBAPIError) and bool(exc.connection_invalidated)


@dataclass
class EventOutcome:
    """Result of processing one event of a batch."""

    index: int
    event_id: Optional[str]
    event_type: Optional[str]
    success: bool = True
    error: Optional[str] = None
    error_kind: Optional[str] = None
    warnings: list[str] = field(default_factory=list)

    @classmethod
    def failed(
        cls, index: int, raw: Any, error: BaseException, kind: str
    ) -> "EventOutcome":
        event_id = raw.get("event_id") if isinstance(raw, dict) else None
        event_type = raw.get("event_type") if isinstance(raw, dict) else None
        return cls(
            index=index,
            event_id=None if event_id is None else str(event_id),
            event_type=None if event_type is None else str(event_type),
            success=False,
            error=str(error) or type(error).__name__,
            error_kind=kind,
        )


@dataclass
class BatchResult:
    """Summary of one ingested batch."""

    batch_id: Optional[UUID]
    total: int
    succeeded: int
    failed: int
    rolled_back: bool
    processing_time_ms: int
    outcomes: list[EventOutcome] = field(default_factory=list)

    @property
    def errors(self) -> list[EventOutcome]:
        return [o for o in self.outcomes if not o.success]

    @property
    def warning_count(self) -> int:
        return sum(len(o.warnings) for o in self.outcomes)

    @property
    def status(self) -> str:
        if self.rolled_back:
            return BatchStatus.ROLLED_BACK.value
        if self.failed:
            return BatchStatus.PARTIAL.value
        return BatchStatus.SUCCESS.value


def validate_batch(raw_events: Any, max_events: Optional[int] = None) -> list[dict]:
    """
    Check that the input is a non-empty list of event objects.

    Args:
        raw_events: Value of the `events` field
        max_events: Largest accepted batch (defaults to settings.batch_max_events)

    Raises:
        BatchRejectedError: If the batch is unusable as a whole
    """
    limit = max_events if max_events is not None else settings.batch_max_events
    if not isinstance(raw_events, list):
        raise BatchRejectedError("'events' must be a list")
    if not raw_events:
        raise BatchRejectedError("'events' must not be empty")
    if len(raw_events) > limit:
        raise BatchRejectedError(
            f"Batch of {len(raw_events)} events exceeds the limit of {limit}"
        )
    for index, raw in enumerate(raw_events):
        if not isinstance(raw, dict):
            raise BatchRejectedError(f"events[{index}] is not an object")
    return raw_events


@dataclass
class _Pipeline:
    """Collaborators for one batch attempt. Discarded afterwards."""

    cache: IdentityCache
    identities: IdentityResolver
    normalizer: EventNormalizer
    handlers: EventHandlers
    log_repo: AnalyticsEventRepository


class BatchCoordinator:
    """Ingests batches of raw analytics events."""

    def __init__(
        self,
        session: Session,
        source_type: str = "api",
        failure_threshold: Optional[float] = None,
        max_attempts: Optional[int] = None,
        max_events: Optional[int] = None,
        default_expected_duration: Optional[int] = None,
    ):
        self.session = session
        self.source_type = source_type
        self.failure_threshold = (
            failure_threshold
            if failure_threshold is not None
            else settings.batch_failure_threshold
        )
        self.max_attempts = max(
            1, max_attempts if max_attempts is not None else settings.batch_max_attempts
        )
        self.max_events = max_events if max_events is not None else settings.batch_max_events
        self.default_expected_duration = (
            default_expected_duration
            if default_expected_duration is not None
            else settings.default_expected_duration_minutes
        )

    def ingest(self, raw_events: Any) -> BatchResult:
        """
        Ingest one batch of raw events.

        Events are processed in list order. When the share of failed events
        exceeds the failure threshold, every write of the batch is discarded
        (log rows included) and the result is marked rolled back.

        Args:
            raw_events: Parsed `events` list from the request body

        Returns:
            BatchResult with per-event outcomes

        Raises:
            BatchRejectedError: If raw_events is not a non-empty list of objects
            BatchIngestionError: On a storage fault that survives all retries
        """
        events = validate_batch(raw_events, self.max_events)
        start_time = time.time()
        total = len(events)

        batch = IngestionBatch(
            source_type=self.source_type,
            status=BatchStatus.PROCESSING.value,
            total_events=total,
            started_at=utc_now(),
            metrics={},
        )
        try:
            self.session.add(batch)
            self.session.flush()
        except DBAPIError as e:
            self._fail(e, total, start_time, attempts=1)

        for attempt in range(self.max_attempts):
            try:
                outcomes, rolled_back = self._run_attempt(events, batch.id)
                break
            except DBAPIError as e:
                if is_deadlock_error(e) and attempt < self.max_attempts - 1:
                    backoff = 0.05 * (2**attempt)
                    logger.warning(
                        "Deadlock detected during batch %s (attempt %s/%s), "
                        "retrying in %.2fs",
                        batch.id,
                        attempt + 1,
                        self.max_attempts,
                        backoff,
                    )
                    time.sleep(backoff)
                    continue
                self._fail(e, total, start_time, attempts=attempt + 1)

        processing_time_ms = int((time.time() - start_time) * 1000)
        failed = sum(1 for o in outcomes if not o.success)
        result = BatchResult(
            batch_id=batch.id,
            total=total,
            succeeded=0 if rolled_back else total - failed,
            failed=total if rolled_back else failed,
            rolled_back=rolled_back,
            processing_time_ms=processing_time_ms,
            outcomes=outcomes,
        )
        self._record(batch, result, attempts=attempt + 1)

        log = logger.warning if rolled_back else logger.info
        log(
            "Batch %s %s: %d events, %d ok, %d failed, %d warnings in %dms",
            batch.id,
            result.status,
            total,
            total - failed,
            failed,
            result.warning_count,
            processing_time_ms,
        )
        return result

    def _fail(
        self, error: DBAPIError, total: int, start_time: float, attempts: int
    ) -> NoReturn:
        processing_time_ms = int((time.time() - start_time) * 1000)
        logger.error("Batch ingestion failed: %s", error, exc_info=True)
        track_failure(
            error,
            source_type=self.source_type,
            total_events=total,
            processing_time_ms=processing_time_ms,
            attempts=attempts,
        )
        raise BatchIngestionError(f"Storage failure during ingestion: {error.orig}") from error

    def _build_pipeline(self) -> _Pipeline:
        cache = IdentityCache()
        identities = IdentityResolver(self.session, cache)
        sessions = SessionResolver(self.session)
        pair_store = PairSessionStore(self.session, self.default_expected_duration)
        return _Pipeline(
            cache=cache,
            identities=identities,
            normalizer=EventNormalizer(identities, sessions),
            handlers=EventHandlers(self.session, identities, sessions, pair_store),
            log_repo=AnalyticsEventRepository(self.session),
        )

    def _run_attempt(
        self, events: list[dict], batch_id: UUID
    ) -> tuple[list[EventOutcome], bool]:
        pipeline = self._build_pipeline()
        outcomes: list[EventOutcome] = []

        savepoint = self.session.begin_nested()
        try:
            pipeline.identities.preload(referenced_emails(events))
            for index, raw in enumerate(events):
                outcomes.append(self._process_event(pipeline, index, raw, batch_id))
        except Exception:
            if savepoint.is_active:
                savepoint.rollback()
            raise

        failed = sum(1 for o in outcomes if not o.success)
        rolled_back = failed / len(events) > self.failure_threshold
        if rolled_back:
            logger.warning(
                "Rolling back batch %s: %d of %d events failed (threshold %.0f%%)",
                batch_id,
                failed,
                len(events),
                self.failure_threshold * 100,
            )
            savepoint.rollback()
        else:
            savepoint.commit()

        return outcomes, rolled_back

    def _process_event(
        self, pipeline: _Pipeline, index: int, raw: dict, batch_id: UUID
    ) -> EventOutcome:
        # 1. Normalize (identity and session resolution included)
        try:
            with self.session.begin_nested():
                event = pipeline.normalizer.normalize(raw)
        except Exception as e:
            # Users cached during this event were rolled back with it
            pipeline.cache.clear()
            if isinstance(e, EventValidationError):
                return self._failed(index, raw, e, ErrorKind.VALIDATION)
            if _is_fatal(e):
                raise
            return self._failed(index, raw, e, ErrorKind.STORAGE)

        # 2. Append to the event log
        try:
            pipeline.log_repo.append(**event.log_values(), batch_id=batch_id)
        except DuplicateEventError as e:
            return self._failed(index, raw, e, ErrorKind.DUPLICATE)
        except Exception as e:
            if _is_fatal(e):
                raise
            return self._failed(index, raw, e, ErrorKind.STORAGE)

        # 3. Type-specific handling; failure keeps the log row
        try:
            with self.session.begin_nested():
                warnings = pipeline.handlers.dispatch(event)
        except Exception as e:
            pipeline.cache.clear()
            if isinstance(e, DependencyResolutionError):
                return self._failed(index, raw, e, ErrorKind.DEPENDENCY)
            if isinstance(e, EventValidationError):
                return self._failed(index, raw, e, ErrorKind.VALIDATION)
            if _is_fatal(e):
                raise
            return self._failed(index, raw, e, ErrorKind.HANDLER)

        for warning in warnings:
            logger.warning("Event %s (%s): %s", event.event_id, event.event_type, warning)
        return EventOutcome(
            index=index,
            event_id=event.event_id,
            event_type=event.event_type,
            warnings=warnings,
        )

    def _failed(
        self, index: int, raw: Any, error: BaseException, kind: str
    ) -> EventOutcome:
        outcome = EventOutcome.failed(index, raw, error, kind)
        logger.warning(
            "Event %s (%s) failed [%s]: %s",
            outcome.event_id,
            outcome.event_type,
            kind,
            outcome.error,
        )
        return outcome

    def _record(self, batch: IngestionBatch, result: BatchResult, attempts: int) -> None:
        by_type = Counter(o.event_type or "unknown" for o in result.outcomes)
        by_error = Counter(o.error_kind for o in result.errors)
        batch.status = result.status
        batch.succeeded = result.succeeded
        batch.failed = result.failed
        batch.warnings = result.warning_count
        batch.processing_time_ms = result.processing_time_ms
        batch.completed_at = utc_now()
        batch.metrics = {
            "events_by_type": dict(by_type),
            "errors_by_kind": dict(by_error),
            "attempts": attempts,
        }
        if result.errors:
            batch.error_message = "; ".join(
                f"{o.event_id}: {o.error}" for o in result.errors[:5]
            )[:2000]
        self.session.flush()
