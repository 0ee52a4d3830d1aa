"""
Event normalization.

Validates a raw client event and maps it onto the canonical shape that is
written to the event log: parsed timestamp, resolved user ids, client session
token, and the untouched payload. The pair-session token is passed through
as-is; turning it into a PairSession row is the job of the type handlers.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Optional

from pairlog.exceptions import EventValidationError
from pairlog.models.db import ClientSession, User
from pairlog.pipeline.identity import IdentityResolver
from pairlog.pipeline.payloads import ACTOR_LESS_EVENT_TYPES, EventType
from pairlog.pipeline.sessions import SessionResolver
from pairlog.utils.timeutil import parse_timestamp

logger = logging.getLogger(__name__)

# Older clients send the actor as user_email
ACTOR_EMAIL_FIELDS = ("active_user_email", "user_email")


@dataclass
class NormalizedEvent:
    """Canonical form of one accepted event."""

    event_id: str
    event_type: str
    timestamp: datetime
    data: dict[str, Any]
    actor: Optional[User] = None
    driver: Optional[User] = None
    navigator: Optional[User] = None
    client_session: Optional[ClientSession] = None
    pair_session_id: Optional[str] = None
    conversation_id: Optional[str] = None
    device_id: Optional[str] = None
    platform_info: Any = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def user_id(self) -> Optional[int]:
        return self.actor.id if self.actor is not None else None

    @property
    def session_id(self) -> Optional[str]:
        return self.client_session.session_id if self.client_session else None

    @property
    def driver_user_id(self) -> Optional[int]:
        return self.driver.id if self.driver is not None else None

    @property
    def navigator_user_id(self) -> Optional[int]:
        return self.navigator.id if self.navigator is not None else None

    def log_values(self) -> dict[str, Any]:
        """Column values for the AnalyticsEvent log row."""
        return {
            "event_id": self.event_id,
            "event_type": self.event_type,
            "timestamp": self.timestamp,
            "user_id": self.user_id,
            "session_id": self.session_id,
            "pair_session_id": self.pair_session_id,
            "conversation_id": self.conversation_id,
            "driver_user_id": self.driver_user_id,
            "navigator_user_id": self.navigator_user_id,
            "device_id": self.device_id,
            "platform_info": self.platform_info,
            "data": self.data,
        }


def _optional_str(raw: dict[str, Any], key: str) -> Optional[str]:
    value = raw.get(key)
    if value is None or value == "":
        return None
    if isinstance(value, (str, int)) and not isinstance(value, bool):
        return str(value)
    raise EventValidationError(f"Field '{key}' must be a string", field=key)


def actor_email(raw: dict[str, Any]) -> Optional[str]:
    """Active actor email of a raw event, honouring the legacy field name."""
    for key in ACTOR_EMAIL_FIELDS:
        value = raw.get(key)
        if value:
            return value
    return None


def referenced_emails(raw_events: Iterable[Any]) -> set[str]:
    """
    Collect every email a batch refers to, for identity preloading.

    Args:
        raw_events: Raw event dicts (non-dicts are skipped)

    Returns:
        Set of distinct email strings
    """
    emails: set[str] = set()
    for raw in raw_events:
        if not isinstance(raw, dict):
            continue
        candidates = [actor_email(raw), raw.get("driver_email"), raw.get("navigator_email")]
        data = raw.get("data")
        if isinstance(data, dict):
            candidates.append(data.get("new_driver_email"))
        emails.update(c for c in candidates if isinstance(c, str) and c)
    return emails


def validate_event(raw: Any) -> tuple[str, str, datetime, dict[str, Any]]:
    """
    Check the envelope fields of a raw event without touching storage.

    Args:
        raw: Raw event as received

    Returns:
        Tuple of (event_id, event_type, timestamp, data)

    Raises:
        EventValidationError: On the first missing or malformed field
    """
    if not isinstance(raw, dict):
        raise EventValidationError("Event must be a JSON object")

    event_id = _optional_str(raw, "event_id")
    if not event_id:
        raise EventValidationError("Missing required field: event_id", field="event_id")

    event_type = raw.get("event_type")
    if not isinstance(event_type, str) or not event_type.strip():
        raise EventValidationError(
            "Missing required field: event_type", field="event_type"
        )

    if raw.get("timestamp") in (None, ""):
        raise EventValidationError(
            "Missing required field: timestamp", field="timestamp"
        )
    try:
        timestamp = parse_timestamp(raw["timestamp"])
    except ValueError as e:
        raise EventValidationError(str(e), field="timestamp") from e

    data = raw.get("data")
    if data is None:
        data = {}
    elif not isinstance(data, dict):
        raise EventValidationError("Field 'data' must be an object", field="data")

    email = actor_email(raw)
    if email is None and event_type not in ACTOR_LESS_EVENT_TYPES:
        raise EventValidationError(
            f"Missing active_user_email for {event_type} event",
            field="active_user_email",
        )
    if email is not None and not isinstance(email, str):
        raise EventValidationError(
            "Field 'active_user_email' must be a string", field="active_user_email"
        )
    for key in ("driver_email", "navigator_email"):
        if raw.get(key) is not None and not isinstance(raw[key], str):
            raise EventValidationError(f"Field '{key}' must be a string", field=key)

    return event_id, event_type, timestamp, data


class EventNormalizer:
    """Validates raw events and resolves the identities they reference."""

    def __init__(self, identities: IdentityResolver, sessions: SessionResolver):
        self.identities = identities
        self.sessions = sessions

    def validate(self, raw: Any) -> tuple[str, str, datetime, dict[str, Any]]:
        return validate_event(raw)

    def normalize(self, raw: Any) -> NormalizedEvent:
        """
        Validate a raw event and resolve its identities and session.

        Users referenced by the event are created on first sight. The active
        actor's last-seen time moves to the event timestamp; driver and
        navigator are resolved without being touched.

        Args:
            raw: Raw event as received

        Returns:
            NormalizedEvent ready for the log write and type handling

        Raises:
            EventValidationError: If the event is malformed
        """
        event_id, event_type, timestamp, data = self.validate(raw)
        session_token = _optional_str(raw, "session_id")
        pair_session_id = _optional_str(raw, "pair_session_id")
        device_id = _optional_str(raw, "device_id")
        conversation_id = _optional_str(raw, "conversation_id") or _optional_str(
            data, "conversation_id"
        )
        platform_info = raw.get("platform_info")

        actor = self.identities.resolve_optional(actor_email(raw))
        driver = self.identities.resolve_optional(raw.get("driver_email"))
        navigator = self.identities.resolve_optional(raw.get("navigator_email"))
        if actor is not None:
            self.identities.touch(actor, timestamp)

        session_meta: dict[str, Any] = {}
        if event_type == EventType.SESSION_START:
            session_type = data.get("session_type")
            session_meta = {
                "session_type": str(session_type) if session_type else None,
                "device_info": data.get("device_info"),
            }
        client_session = self.sessions.resolve(
            session_token,
            owner=actor,
            start_time=timestamp,
            device_id=device_id,
            platform_info=platform_info,
            **session_meta,
        )

        return NormalizedEvent(
            event_id=event_id,
            event_type=event_type,
            timestamp=timestamp,
            data=data,
            actor=actor,
            driver=driver,
            navigator=navigator,
            client_session=client_session,
            pair_session_id=pair_session_id,
            conversation_id=conversation_id,
            device_id=device_id,
            platform_info=platform_info,
            raw=raw,
        )
