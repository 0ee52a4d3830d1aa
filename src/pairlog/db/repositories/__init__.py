"""
Repository layer for database operations.

Provides a clean API for CRUD operations on database models.
"""

from pairlog.db.repositories.analytics_event import AnalyticsEventRepository
from pairlog.db.repositories.base import BaseRepository
from pairlog.db.repositories.chat import ChatMessageRepository
from pairlog.db.repositories.client_session import ClientSessionRepository
from pairlog.db.repositories.code import (
    CodeAnalysisRepository,
    CodeSnapshotRepository,
    FeatureUsageRepository,
)
from pairlog.db.repositories.ingestion_batch import IngestionBatchRepository
from pairlog.db.repositories.pair_session import PairSessionRepository
from pairlog.db.repositories.user import UserRepository

__all__ = [
    "AnalyticsEventRepository",
    "BaseRepository",
    "ChatMessageRepository",
    "ClientSessionRepository",
    "CodeAnalysisRepository",
    "CodeSnapshotRepository",
    "FeatureUsageRepository",
    "IngestionBatchRepository",
    "PairSessionRepository",
    "UserRepository",
]
