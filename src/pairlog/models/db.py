"""
SQLAlchemy database models for Pairlog.

These models represent the relational schema that telemetry events from the
coding assistant extension are normalized into: identities, client sessions,
the append-only event log, pair-programming aggregates and the content-bearing
records (chat messages, code snapshots, code analyses).
"""

import enum
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql import func


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class PairRole(str, enum.Enum):
    """Role of a participant at the time a record was captured."""

    DRIVER = "driver"  # Actively editing
    NAVIGATOR = "navigator"  # Reviewing / guiding


class BatchStatus(str, enum.Enum):
    """Final status of an ingestion batch."""

    PROCESSING = "processing"
    SUCCESS = "success"  # Every event accepted
    PARTIAL = "partial"  # Committed with some per-event failures
    ROLLED_BACK = "rolled_back"  # Failure ratio over threshold, nothing kept
    FAILED = "failed"  # Storage fault


class User(Base):
    """Durable identity keyed by email address."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    university_domain: Mapped[Optional[str]] = mapped_column(
        String(100), nullable=True
    )  # Substring after '@'
    settings: Mapped[Optional[dict]] = mapped_column(JSONB, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    last_active_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    sessions: Mapped[list["ClientSession"]] = relationship(back_populates="user")

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email!r})>"


class ClientSession(Base):
    """Client-side extension session identified by a client-generated token."""

    __tablename__ = "sessions"

    session_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    user_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    session_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    device_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    device_info: Mapped[Optional[dict]] = mapped_column(JSONB, nullable=True)
    platform_info: Mapped[Optional[dict]] = mapped_column(JSONB, nullable=True)

    user: Mapped[Optional["User"]] = relationship(back_populates="sessions")

    def __repr__(self) -> str:
        return f"<ClientSession(session_id={self.session_id!r}, user_id={self.user_id})>"


class IngestionBatch(Base):
    """Audit trail for every batch submitted to the ingestion pipeline."""

    __tablename__ = "ingestion_batches"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    source_type: Mapped[str] = mapped_column(
        String(50), nullable=False, index=True
    )  # 'api', 'cli'
    status: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    total_events: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    succeeded: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    warnings: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    processing_time_ms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    metrics: Mapped[dict] = mapped_column(
        JSONB, nullable=False, default=dict
    )  # Per-type counts and attempt count
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return (
            f"<IngestionBatch(id={self.id}, "
            f"status={self.status!r}, "
            f"total_events={self.total_events})>"
        )


class AnalyticsEvent(Base):
    """Append-only log row. Exactly one per accepted event, never updated."""

    __tablename__ = "analytics_events"

    event_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    user_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=True, index=True
    )
    session_id: Mapped[Optional[str]] = mapped_column(
        String(255), ForeignKey("sessions.session_id"), nullable=True, index=True
    )
    pair_session_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, index=True
    )  # External pair-session token, unresolved
    conversation_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, index=True
    )
    driver_user_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=True
    )
    navigator_user_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=True
    )
    device_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    platform_info: Mapped[Optional[dict]] = mapped_column(JSONB, nullable=True)
    data: Mapped[dict] = mapped_column(
        JSONB, nullable=False, default=dict
    )  # Client payload, stored verbatim
    batch_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("ingestion_batches.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("ix_analytics_events_pair_session_timestamp", "pair_session_id", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<AnalyticsEvent(event_id={self.event_id!r}, event_type={self.event_type!r})>"


class PairSession(Base):
    """Logical pair-programming session with server-maintained counters."""

    __tablename__ = "pair_programming_sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    pair_session_id: Mapped[str] = mapped_column(
        String(255), nullable=False, unique=True
    )  # External token
    client_session_id: Mapped[Optional[str]] = mapped_column(
        String(255), ForeignKey("sessions.session_id"), nullable=True
    )
    driver_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    navigator_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=False
    )
    current_driver_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=True
    )
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )
    total_role_switches: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )
    completed_tasks_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )
    pending_tasks_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )
    expected_duration_minutes: Mapped[int] = mapped_column(
        Integer, nullable=False, default=15, server_default="15"
    )
    workspace_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    driver: Mapped["User"] = relationship(foreign_keys=[driver_id])
    navigator: Mapped["User"] = relationship(foreign_keys=[navigator_id])
    current_driver: Mapped[Optional["User"]] = relationship(
        foreign_keys=[current_driver_id]
    )
    role_switches: Mapped[list["RoleSwitch"]] = relationship(
        back_populates="pair_session",
        cascade="all, delete-orphan",
        order_by="RoleSwitch.id",
    )
    tasks: Mapped[list["PairTask"]] = relationship(
        back_populates="pair_session", cascade="all, delete-orphan"
    )

    @property
    def is_open(self) -> bool:
        return self.end_time is None

    def __repr__(self) -> str:
        return (
            f"<PairSession(pair_session_id={self.pair_session_id!r}, "
            f"switches={self.total_role_switches}, open={self.is_open})>"
        )


class RoleSwitch(Base):
    """Audit row for one driver/navigator swap. Not the source of truth."""

    __tablename__ = "role_switches"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    pp_session_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("pair_programming_sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    event_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    previous_driver: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=True
    )
    new_driver: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=True
    )

    pair_session: Mapped["PairSession"] = relationship(back_populates="role_switches")

    def __repr__(self) -> str:
        return (
            f"<RoleSwitch(id={self.id}, previous={self.previous_driver}, "
            f"new={self.new_driver})>"
        )


class PairTask(Base):
    """Task tracked inside a pair session, keyed by the client's task id."""

    __tablename__ = "pp_tasks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    pp_session_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("pair_programming_sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    external_task_id: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    completed_by_user_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=True
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        UniqueConstraint("pp_session_id", "external_task_id", name="uq_pair_session_task"),
    )

    pair_session: Mapped["PairSession"] = relationship(back_populates="tasks")

    def __repr__(self) -> str:
        return f"<PairTask(id={self.id}, external_task_id={self.external_task_id!r})>"


class ChatMessage(Base):
    """Single chat message, grouped by conversation and ordered by message_order."""

    __tablename__ = "chat_messages"

    message_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    event_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    conversation_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    pair_session_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, index=True
    )
    message_order: Mapped[int] = mapped_column(Integer, nullable=False)
    parent_message_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), nullable=True
    )  # Non-owning back-reference, not enforced
    author_user_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=True, index=True
    )
    author_role: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    driver_user_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=True
    )
    navigator_user_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=True
    )
    message_type: Mapped[str] = mapped_column(
        String(50), nullable=False
    )  # 'user_query' | 'bot_response'
    message_content: Mapped[str] = mapped_column(Text, nullable=False)
    message_length: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    included_code: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    code_language: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    code_lines_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    query_category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    response_time_ms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("ix_chat_messages_conversation_order", "conversation_id", "message_order"),
    )

    def __repr__(self) -> str:
        return (
            f"<ChatMessage(message_id={self.message_id}, "
            f"conversation_id={self.conversation_id!r}, order={self.message_order})>"
        )


class ChatInteraction(Base):
    """Legacy flat chat table, still written for older dashboards."""

    __tablename__ = "chat_interactions"

    interaction_id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True
    )
    session_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    user_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=True
    )
    message_type: Mapped[str] = mapped_column(String(50), nullable=False)
    message_content: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    included_code: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    code_language: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    query_category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    response_helpful: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    conversation_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    pair_session_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    message_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), nullable=True
    )
    author_role: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    def __repr__(self) -> str:
        return f"<ChatInteraction(interaction_id={self.interaction_id})>"


class CodeSnapshot(Base):
    """Captured file content, attributed to an author and pair roles."""

    __tablename__ = "code_snapshots"

    snapshot_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    snapshot_uuid: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), nullable=False, default=uuid.uuid4, unique=True
    )
    client_snapshot_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    event_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    session_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    pair_session_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, index=True
    )
    author_user_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=True, index=True
    )
    author_role: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    driver_user_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=True
    )
    navigator_user_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=True
    )

    # File metadata
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_path: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    language: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    workspace_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Metrics
    line_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    char_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    lines_added: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    chars_added: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Context
    task_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    git_branch: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    git_commit: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    has_git_changes: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    code_content: Mapped[str] = mapped_column(Text, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<CodeSnapshot(snapshot_id={self.snapshot_id}, file_name={self.file_name!r})>"


class CodeAnalysis(Base):
    """Result of a code analysis request made through the assistant."""

    __tablename__ = "code_analysis"

    analysis_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    session_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    user_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=True
    )
    code_snippet: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    language: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    character_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    line_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    contains_errors: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    complexity_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    analyzed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<CodeAnalysis(analysis_id={self.analysis_id}, language={self.language!r})>"


class FeatureUsage(Base):
    """Timed use of an assistant feature (e.g. API response latency)."""

    __tablename__ = "feature_usage"

    usage_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    session_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    user_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=True
    )
    feature_name: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    duration_ms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    result_status: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    def __repr__(self) -> str:
        return f"<FeatureUsage(usage_id={self.usage_id}, feature_name={self.feature_name!r})>"
