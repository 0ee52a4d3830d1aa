"""
Ingestion batch repository.
"""

from sqlalchemy.orm import Session

from pairlog.db.repositories.base import BaseRepository
from pairlog.models.db import IngestionBatch


class IngestionBatchRepository(BaseRepository[IngestionBatch]):
    """Repository for the IngestionBatch audit trail."""

    def __init__(self, session: Session):
        super().__init__(IngestionBatch, session)
