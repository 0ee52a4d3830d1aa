"""Custom exceptions for Pairlog."""

from typing import Optional

from sqlalchemy.exc import DBAPIError


class PairlogError(Exception):
    """Base class for all Pairlog errors."""


class EventValidationError(PairlogError):
    """Raised when a raw event is missing required fields or has malformed values."""

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        super().__init__(message)


class DependencyResolutionError(PairlogError):
    """Raised when a handler cannot resolve an identity or record it depends on."""


class DuplicateEventError(PairlogError):
    """Raised when attempting to log an event id that has already been processed."""

    def __init__(self, event_id: str):
        self.event_id = event_id
        super().__init__(f"Event {event_id} has already been processed")


class BatchRejectedError(PairlogError):
    """Raised when the request body is not a usable batch of events."""


class BatchIngestionError(PairlogError):
    """Raised when a batch cannot be processed because of a storage fault."""


def is_deadlock_error(exc: BaseException) -> bool:
    """Check whether a database error is a deadlock or serialization failure."""
    if not isinstance(exc, DBAPIError):
        return False
    orig = exc.orig
    pgcode = getattr(orig, "pgcode", None)
    if pgcode in {"40P01", "40001"}:  # deadlock detected / serialization failure
        return True
    return orig.__class__.__name__ in {"DeadlockDetected", "SerializationFailure"}
