"""
Code snapshot, code analysis and feature usage repositories.
"""

from sqlalchemy.orm import Session

from pairlog.db.repositories.base import BaseRepository
from pairlog.models.db import CodeAnalysis, CodeSnapshot, FeatureUsage


class CodeSnapshotRepository(BaseRepository[CodeSnapshot]):
    """Repository for CodeSnapshot model."""

    def __init__(self, session: Session):
        super().__init__(CodeSnapshot, session)


class CodeAnalysisRepository(BaseRepository[CodeAnalysis]):
    """Repository for CodeAnalysis model."""

    def __init__(self, session: Session):
        super().__init__(CodeAnalysis, session)


class FeatureUsageRepository(BaseRepository[FeatureUsage]):
    """Repository for FeatureUsage model."""

    def __init__(self, session: Session):
        super().__init__(FeatureUsage, session)
