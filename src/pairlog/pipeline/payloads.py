"""
Typed projections of the per-event-type `data` payload.

The client sends an open-ended `data` object whose shape depends on the
event type. Each recognized type has a pydantic projection that pulls out the
fields handlers need; unknown fields are kept (``extra="allow"``) and the raw
payload is always stored verbatim on the log row as well.
"""

import uuid
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from pairlog.exceptions import EventValidationError


class EventType:
    """Event types with dedicated handling. Any other value is logged generically."""

    SESSION_START = "SESSION_START"
    SESSION_END = "SESSION_END"
    USER_LOGIN = "USER_LOGIN"
    USER_LOGOUT = "USER_LOGOUT"
    CHAT_INTERACTION = "CHAT_INTERACTION"
    PAIR_SESSION_START = "PAIR_SESSION_START"
    PAIR_SESSION_END = "PAIR_SESSION_END"
    PAIR_ROLE_SWITCH = "PAIR_ROLE_SWITCH"
    TASK_CREATE = "TASK_CREATE"
    TASK_COMPLETE = "TASK_COMPLETE"
    TASK_EDIT = "TASK_EDIT"
    TASK_DELETE = "TASK_DELETE"
    CODE_ANALYSIS = "CODE_ANALYSIS"
    CODE_ANALYSIS_RESULT = "CODE_ANALYSIS_RESULT"
    CODE_SNAPSHOT = "CODE_SNAPSHOT"
    API_RESPONSE_TIME = "API_RESPONSE_TIME"


TASK_EVENT_TYPES = frozenset(
    {
        EventType.TASK_CREATE,
        EventType.TASK_COMPLETE,
        EventType.TASK_EDIT,
        EventType.TASK_DELETE,
    }
)

# Event types that are valid without an active actor email
ACTOR_LESS_EVENT_TYPES = frozenset(
    {
        EventType.SESSION_END,
        EventType.PAIR_SESSION_START,
        EventType.PAIR_SESSION_END,
        EventType.PAIR_ROLE_SWITCH,
        EventType.API_RESPONSE_TIME,
        EventType.CODE_ANALYSIS_RESULT,
    }
    | TASK_EVENT_TYPES
)


class BasePayload(BaseModel):
    """Common base for projections. Unknown fields are kept."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)


class GenericPayload(BasePayload):
    """Payload for event types without dedicated handling."""


class PairSessionStartPayload(BasePayload):
    workspace_name: Optional[str] = None
    expected_duration_minutes: Optional[int] = Field(default=None, ge=0)
    start_time: Optional[Any] = None


class PairSessionEndPayload(BasePayload):
    end_time: Optional[Any] = None
    completed_tasks: int = Field(default=0, ge=0)
    pending_tasks: int = Field(default=0, ge=0)

    @field_validator("completed_tasks", "pending_tasks", mode="before")
    @classmethod
    def _none_is_zero(cls, value: Any) -> Any:
        return 0 if value is None else value


class RoleSwitchPayload(BasePayload):
    new_driver_email: Optional[str] = None
    previous_driver_email: Optional[str] = None


class TaskPayload(BasePayload):
    task_id: Optional[Union[str, int]] = None
    description: Optional[str] = Field(default=None, alias="task_description")
    current_role: Optional[str] = None

    @property
    def external_task_id(self) -> Optional[str]:
        return None if self.task_id is None else str(self.task_id)


class ChatPayload(BasePayload):
    conversation_id: Optional[str] = None
    message_id: Optional[uuid.UUID] = None
    parent_message_id: Optional[uuid.UUID] = None
    message_order: Optional[int] = Field(default=None, ge=1)
    message_type: str = "user_query"
    message_content: Optional[str] = None
    message_length: Optional[int] = None
    author_role: Optional[str] = None
    included_code: bool = False
    code_language: Optional[str] = None
    code_lines_count: Optional[int] = None
    query_category: Optional[str] = None
    response_time_ms: Optional[int] = None
    response_helpful: Optional[bool] = None


class SnapshotMetrics(BasePayload):
    line_count: Optional[int] = None
    char_count: Optional[int] = None
    changes_since_last: Optional[dict] = None


class SnapshotGitInfo(BasePayload):
    branch: Optional[str] = None
    commit_hash: Optional[str] = None
    has_changes: bool = False


class SnapshotMetadata(BasePayload):
    file_name: str
    snapshot_id: Optional[Union[str, int]] = None
    file_path: Optional[str] = None
    language: Optional[str] = None
    author_role: Optional[str] = None
    workspace: Optional[dict] = None
    metrics: SnapshotMetrics = Field(default_factory=SnapshotMetrics)
    task_id_context: Optional[Union[str, int]] = None
    git_info: SnapshotGitInfo = Field(default_factory=SnapshotGitInfo)


class CodeSnapshotPayload(BasePayload):
    metadata: SnapshotMetadata
    code_content: str = ""


class CodeAnalysisPayload(BasePayload):
    code_snippet: Optional[str] = Field(default=None, alias="code")
    language: Optional[str] = None
    character_count: Optional[int] = None
    line_count: Optional[int] = None
    contains_errors: Optional[bool] = None
    complexity_score: Optional[float] = None


class ApiResponseTimePayload(BasePayload):
    feature_name: str = "api_response"
    duration_ms: Optional[int] = Field(default=None, alias="response_time_ms")
    result_status: Optional[str] = Field(default=None, alias="status")


PAYLOAD_MODELS: dict[str, type[BasePayload]] = {
    EventType.PAIR_SESSION_START: PairSessionStartPayload,
    EventType.PAIR_SESSION_END: PairSessionEndPayload,
    EventType.PAIR_ROLE_SWITCH: RoleSwitchPayload,
    EventType.TASK_CREATE: TaskPayload,
    EventType.TASK_COMPLETE: TaskPayload,
    EventType.TASK_EDIT: TaskPayload,
    EventType.TASK_DELETE: TaskPayload,
    EventType.CHAT_INTERACTION: ChatPayload,
    EventType.CODE_SNAPSHOT: CodeSnapshotPayload,
    EventType.CODE_ANALYSIS: CodeAnalysisPayload,
    EventType.CODE_ANALYSIS_RESULT: CodeAnalysisPayload,
    EventType.API_RESPONSE_TIME: ApiResponseTimePayload,
}


def project_payload(event_type: str, data: dict) -> BasePayload:
    """
    Build the typed projection of an event's data payload.

    Args:
        event_type: Event type of the owning event
        data: Raw payload dict

    Returns:
        Typed payload, or GenericPayload for unrecognized event types

    Raises:
        EventValidationError: If the payload does not fit the projection
    """
    model = PAYLOAD_MODELS.get(event_type, GenericPayload)
    try:
        return model.model_validate(data)
    except ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first["loc"])
        raise EventValidationError(
            f"Invalid {event_type} payload: data.{location}: {first['msg']}",
            field=f"data.{location}",
        ) from e
