"""
Analytics event log repository.
"""

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from pairlog.db.repositories.base import BaseRepository
from pairlog.exceptions import DuplicateEventError
from pairlog.models.db import AnalyticsEvent


class AnalyticsEventRepository(BaseRepository[AnalyticsEvent]):
    """Repository for the append-only AnalyticsEvent log."""

    def __init__(self, session: Session):
        super().__init__(AnalyticsEvent, session)

    def exists(self, event_id: str) -> bool:
        """Check whether an event id has already been logged."""
        return (
            self.session.query(AnalyticsEvent.event_id)
            .filter(AnalyticsEvent.event_id == event_id)
            .first()
            is not None
        )

    def append(self, **values) -> AnalyticsEvent:
        """
        Insert one log row inside a savepoint.

        Args:
            **values: AnalyticsEvent column values (event_id required)

        Returns:
            The new AnalyticsEvent

        Raises:
            DuplicateEventError: If the event id is already logged
        """
        event_id = values["event_id"]
        if self.exists(event_id):
            raise DuplicateEventError(event_id)
        # A concurrent writer can still win between the check and the insert
        try:
            with self.session.begin_nested():
                row = AnalyticsEvent(**values)
                self.session.add(row)
                self.session.flush()
        except IntegrityError as e:
            raise DuplicateEventError(event_id) from e
        return row
