"""
Client session resolution.

Ownership rule: the first writer wins. The event that creates a session sets
its owner (possibly none) and metadata; every later event gets the row back
unmodified, even when it claims a different owner.
"""

import logging
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.orm import Session

from pairlog.db.repositories.client_session import ClientSessionRepository
from pairlog.models.db import ClientSession, User

logger = logging.getLogger(__name__)


class SessionResolver:
    """Maps client session tokens to ClientSession rows."""

    def __init__(self, session: Session):
        self.session = session
        self.repo = ClientSessionRepository(session)

    def resolve(
        self,
        token: Optional[str],
        owner: Optional[User],
        start_time: datetime,
        device_id: Optional[str] = None,
        platform_info: Optional[Any] = None,
        session_type: Optional[str] = None,
        device_info: Optional[Any] = None,
    ) -> Optional[ClientSession]:
        """
        Get or create the session for a token.

        Args:
            token: Client session token; None is legal and yields None
            owner: Resolved active actor, if any
            start_time: Event timestamp, used when the session is created
            device_id: Client device identifier
            platform_info: Opaque platform metadata
            session_type: Session type label, used only on creation
            device_info: Opaque device description, used only on creation

        Returns:
            ClientSession, or None when no token was supplied
        """
        if not token:
            return None

        owner_id = owner.id if owner is not None else None
        client_session = self.repo.get_or_create(
            token,
            start_time=start_time,
            user_id=owner_id,
            device_id=device_id,
            platform_info=platform_info,
            session_type=session_type,
            device_info=device_info,
        )
        if owner_id is not None and client_session.user_id != owner_id:
            logger.debug(
                "Session %s owned by user %s, ignoring claim by user %s",
                token,
                client_session.user_id,
                owner_id,
            )
        return client_session

    def close(self, token: str, end_time: datetime) -> bool:
        """
        Close the session for a token. A later close does not move end_time.

        Returns:
            True if this call closed the session
        """
        closed = self.repo.close(token, end_time)
        if not closed:
            logger.debug("Session %s already closed or unknown", token)
        return closed
