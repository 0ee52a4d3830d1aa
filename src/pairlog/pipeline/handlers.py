"""
Type-specific event handlers.

Each handler receives a NormalizedEvent whose log row has already been
written. A handler either returns a (possibly empty) list of warnings or
raises; the coordinator runs it inside its own savepoint, so a raising
handler leaves the log row intact and discards only its own writes.

Secondary side effects (legacy tables, task tracking) run in a nested
savepoint each. Their failure is rolled back alone and reported as a
warning on the event instead of failing it.
"""

import logging
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from pairlog.db.repositories.chat import ChatMessageRepository
from pairlog.db.repositories.code import (
    CodeAnalysisRepository,
    CodeSnapshotRepository,
    FeatureUsageRepository,
)
from pairlog.exceptions import EventValidationError, PairlogError, is_deadlock_error
from pairlog.models.db import PairRole, PairSession
from pairlog.pipeline.identity import IdentityResolver
from pairlog.pipeline.normalizer import NormalizedEvent
from pairlog.pipeline.pair_state import PairSessionStore
from pairlog.pipeline.payloads import (
    TASK_EVENT_TYPES,
    ApiResponseTimePayload,
    ChatPayload,
    CodeAnalysisPayload,
    CodeSnapshotPayload,
    EventType,
    PairSessionEndPayload,
    PairSessionStartPayload,
    RoleSwitchPayload,
    TaskPayload,
    project_payload,
)
from pairlog.pipeline.sessions import SessionResolver
from pairlog.utils.timeutil import parse_timestamp

logger = logging.getLogger(__name__)

Warnings = list[str]


def _author_role(event: NormalizedEvent, explicit: Optional[str]) -> Optional[str]:
    """Role of the actor at capture time: explicit value, else inferred."""
    if explicit:
        return explicit
    if event.actor is None:
        return None
    if event.driver is not None and event.actor.id == event.driver.id:
        return PairRole.DRIVER.value
    if event.navigator is not None and event.actor.id == event.navigator.id:
        return PairRole.NAVIGATOR.value
    return None


def _optional_time(value, fallback):
    if value in (None, ""):
        return fallback
    try:
        return parse_timestamp(value)
    except ValueError as e:
        raise EventValidationError(str(e), field="data") from e


class EventHandlers:
    """Dispatches normalized events to their type-specific handling."""

    def __init__(
        self,
        session: Session,
        identities: IdentityResolver,
        sessions: SessionResolver,
        pair_store: PairSessionStore,
    ):
        self.session = session
        self.identities = identities
        self.sessions = sessions
        self.pair_store = pair_store
        self.chat_repo = ChatMessageRepository(session)
        self.snapshot_repo = CodeSnapshotRepository(session)
        self.analysis_repo = CodeAnalysisRepository(session)
        self.feature_repo = FeatureUsageRepository(session)

        self._handlers: dict[str, Callable[[NormalizedEvent], Warnings]] = {
            EventType.SESSION_START: self._handle_session_start,
            EventType.SESSION_END: self._handle_session_end,
            EventType.PAIR_SESSION_START: self._handle_pair_session_start,
            EventType.PAIR_ROLE_SWITCH: self._handle_role_switch,
            EventType.PAIR_SESSION_END: self._handle_pair_session_end,
            EventType.CHAT_INTERACTION: self._handle_chat,
            EventType.CODE_SNAPSHOT: self._handle_code_snapshot,
            EventType.CODE_ANALYSIS: self._handle_code_analysis,
            EventType.CODE_ANALYSIS_RESULT: self._handle_code_analysis,
            EventType.API_RESPONSE_TIME: self._handle_api_response_time,
        }
        for task_type in TASK_EVENT_TYPES:
            self._handlers[task_type] = self._handle_task

    def dispatch(self, event: NormalizedEvent) -> Warnings:
        """
        Run the handler for the event's type.

        Unrecognized types (and USER_LOGIN / USER_LOGOUT) get generic
        handling: the log row and last-seen update are all they need.

        Args:
            event: Normalized event, already logged

        Returns:
            Warnings to attach to the event outcome

        Raises:
            PairlogError: On validation or dependency failures
            SQLAlchemyError: On storage failures inside the handler
        """
        handler = self._handlers.get(event.event_type, self._handle_generic)
        return handler(event)

    def run_secondary(
        self, event: NormalizedEvent, name: str, effect: Callable[[], None]
    ) -> Optional[str]:
        """
        Run one secondary write in its own savepoint.

        Args:
            event: Event the effect belongs to
            name: Short label used in the warning
            effect: Callable performing the write

        Returns:
            Warning message if the effect failed, otherwise None
        """
        try:
            with self.session.begin_nested():
                effect()
        except (SQLAlchemyError, PairlogError, ValueError) as e:
            if is_deadlock_error(e):
                raise
            logger.warning(
                "Secondary write %s failed for event %s: %s", name, event.event_id, e
            )
            return f"{name} failed: {e}"
        return None

    # Generic and client session events

    def _handle_generic(self, event: NormalizedEvent) -> Warnings:
        return []

    def _handle_session_start(self, event: NormalizedEvent) -> Warnings:
        if event.client_session is None:
            return ["SESSION_START without session_id, nothing to open"]
        # Type and device info were recorded when the session row was created
        return []

    def _handle_session_end(self, event: NormalizedEvent) -> Warnings:
        if event.client_session is None:
            return ["SESSION_END without session_id, nothing to close"]
        if not self.sessions.close(event.client_session.session_id, event.timestamp):
            return [f"Session {event.client_session.session_id} was already closed"]
        return []

    # Pair programming

    def _handle_pair_session_start(self, event: NormalizedEvent) -> Warnings:
        payload: PairSessionStartPayload = project_payload(event.event_type, event.data)
        self.pair_store.start(
            event.pair_session_id,
            driver=event.driver,
            navigator=event.navigator,
            start_time=_optional_time(payload.start_time, event.timestamp),
            workspace_name=payload.workspace_name,
            expected_duration_minutes=payload.expected_duration_minutes,
            client_session_id=event.session_id,
        )
        return []

    def _handle_role_switch(self, event: NormalizedEvent) -> Warnings:
        payload: RoleSwitchPayload = project_payload(event.event_type, event.data)
        new_driver = self.identities.resolve_optional(payload.new_driver_email) or event.driver
        result = self.pair_store.switch_roles(
            event.pair_session_id,
            timestamp=event.timestamp,
            new_driver=new_driver,
            event_id=event.event_id,
        )
        if result is None:
            return [f"No open pair session {event.pair_session_id}, role switch ignored"]
        return []

    def _handle_pair_session_end(self, event: NormalizedEvent) -> Warnings:
        payload: PairSessionEndPayload = project_payload(event.event_type, event.data)
        pair_session = self.pair_store.end(
            event.pair_session_id,
            end_time=_optional_time(payload.end_time, event.timestamp),
            completed_tasks=payload.completed_tasks,
            pending_tasks=payload.pending_tasks,
        )
        if pair_session is None:
            return [f"No open pair session {event.pair_session_id}, session end ignored"]
        return []

    def _handle_task(self, event: NormalizedEvent) -> Warnings:
        payload: TaskPayload = project_payload(event.event_type, event.data)
        pair_session = self.pair_store.apply_task_event(
            event.pair_session_id, event.event_type
        )
        if pair_session is None:
            return [f"No open pair session {event.pair_session_id}, {event.event_type} ignored"]

        warnings: Warnings = []
        if payload.external_task_id:
            warning = self.run_secondary(
                event,
                "task tracking",
                lambda: self._track_task(event, payload, pair_session),
            )
            if warning:
                warnings.append(warning)
        return warnings

    def _track_task(
        self, event: NormalizedEvent, payload: TaskPayload, pair_session: PairSession
    ) -> None:
        fields: dict = {"updated_at": event.timestamp}
        if payload.description is not None:
            fields["description"] = payload.description
        if event.event_type == EventType.TASK_CREATE:
            fields["created_at"] = event.timestamp
        elif event.event_type == EventType.TASK_COMPLETE:
            fields["completed_at"] = event.timestamp
            fields["completed_by_user_id"] = event.user_id
        elif event.event_type == EventType.TASK_DELETE:
            fields["deleted_at"] = event.timestamp
        fields.setdefault("created_at", event.timestamp)
        self.pair_store.repo.upsert_task(
            pair_session, payload.external_task_id, **fields
        )

    # Content-bearing records

    def _handle_chat(self, event: NormalizedEvent) -> Warnings:
        payload: ChatPayload = project_payload(event.event_type, event.data)
        conversation_id = event.conversation_id or payload.conversation_id
        if not conversation_id:
            raise EventValidationError(
                "CHAT_INTERACTION requires conversation_id", field="conversation_id"
            )

        content = payload.message_content or ""
        message_order = payload.message_order or self.chat_repo.next_message_order(
            conversation_id
        )
        author_role = _author_role(event, payload.author_role)
        values = {
            "event_id": event.event_id,
            "conversation_id": conversation_id,
            "pair_session_id": event.pair_session_id,
            "message_order": message_order,
            "parent_message_id": payload.parent_message_id,
            "author_user_id": event.user_id,
            "author_role": author_role,
            "driver_user_id": event.driver_user_id,
            "navigator_user_id": event.navigator_user_id,
            "message_type": payload.message_type,
            "message_content": content,
            "message_length": (
                payload.message_length if payload.message_length is not None else len(content)
            ),
            "included_code": payload.included_code,
            "code_language": payload.code_language,
            "code_lines_count": payload.code_lines_count,
            "query_category": payload.query_category,
            "response_time_ms": payload.response_time_ms,
            "timestamp": event.timestamp,
        }
        if payload.message_id is not None:
            values["message_id"] = payload.message_id
        message = self.chat_repo.create(**values)

        warnings: Warnings = []
        warning = self.run_secondary(
            event,
            "legacy chat_interactions",
            lambda: self.chat_repo.add_legacy_interaction(
                session_id=event.session_id,
                user_id=event.user_id,
                message_type=payload.message_type,
                message_content=content,
                timestamp=event.timestamp,
                included_code=payload.included_code,
                code_language=payload.code_language,
                query_category=payload.query_category,
                response_helpful=payload.response_helpful,
                conversation_id=conversation_id,
                pair_session_id=event.pair_session_id,
                message_id=message.message_id,
                author_role=author_role,
            ),
        )
        if warning:
            warnings.append(warning)
        return warnings

    def _handle_code_snapshot(self, event: NormalizedEvent) -> Warnings:
        payload: CodeSnapshotPayload = project_payload(event.event_type, event.data)
        metadata = payload.metadata
        changes = metadata.metrics.changes_since_last or {}
        workspace = metadata.workspace or {}
        self.snapshot_repo.create(
            client_snapshot_id=(
                None if metadata.snapshot_id is None else str(metadata.snapshot_id)
            ),
            event_id=event.event_id,
            session_id=event.session_id,
            pair_session_id=event.pair_session_id,
            author_user_id=event.user_id,
            author_role=_author_role(event, metadata.author_role),
            driver_user_id=event.driver_user_id,
            navigator_user_id=event.navigator_user_id,
            file_name=metadata.file_name,
            file_path=metadata.file_path,
            language=metadata.language,
            workspace_name=workspace.get("name"),
            line_count=metadata.metrics.line_count,
            char_count=metadata.metrics.char_count,
            lines_added=changes.get("lines_added"),
            chars_added=changes.get("chars_added"),
            task_id=(
                None if metadata.task_id_context is None else str(metadata.task_id_context)
            ),
            git_branch=metadata.git_info.branch,
            git_commit=metadata.git_info.commit_hash,
            has_git_changes=metadata.git_info.has_changes,
            code_content=payload.code_content,
            timestamp=event.timestamp,
        )
        return []

    def _handle_code_analysis(self, event: NormalizedEvent) -> Warnings:
        payload: CodeAnalysisPayload = project_payload(event.event_type, event.data)
        snippet = payload.code_snippet
        self.analysis_repo.create(
            event_id=event.event_id,
            session_id=event.session_id,
            user_id=event.user_id,
            code_snippet=snippet,
            language=payload.language,
            character_count=(
                payload.character_count
                if payload.character_count is not None
                else (len(snippet) if snippet else None)
            ),
            line_count=(
                payload.line_count
                if payload.line_count is not None
                else (len(snippet.splitlines()) if snippet else None)
            ),
            contains_errors=payload.contains_errors,
            complexity_score=payload.complexity_score,
            analyzed_at=event.timestamp,
        )
        return []

    def _handle_api_response_time(self, event: NormalizedEvent) -> Warnings:
        payload: ApiResponseTimePayload = project_payload(event.event_type, event.data)
        self.feature_repo.create(
            event_id=event.event_id,
            session_id=event.session_id,
            user_id=event.user_id,
            feature_name=payload.feature_name,
            timestamp=event.timestamp,
            duration_ms=payload.duration_ms,
            result_status=payload.result_status,
        )
        return []
