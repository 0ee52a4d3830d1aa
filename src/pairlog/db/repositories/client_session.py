"""
Client session repository.
"""

from datetime import datetime
from typing import Any, Optional

from sqlalchemy.orm import Session

from pairlog.db.repositories.base import BaseRepository
from pairlog.models.db import ClientSession


class ClientSessionRepository(BaseRepository[ClientSession]):
    """Repository for ClientSession model."""

    def __init__(self, session: Session):
        super().__init__(ClientSession, session)

    def get_by_token(self, token: str) -> Optional[ClientSession]:
        """
        Get a client session by its client-generated token.

        Args:
            token: Session token sent by the extension

        Returns:
            ClientSession instance or None
        """
        return self.session.get(ClientSession, token)

    def get_or_create(
        self,
        token: str,
        start_time: datetime,
        user_id: Optional[int] = None,
        device_id: Optional[str] = None,
        platform_info: Optional[Any] = None,
        session_type: Optional[str] = None,
        device_info: Optional[Any] = None,
    ) -> ClientSession:
        """
        Get existing client session or create new one (race-safe).

        Only the first writer sets any field. An existing session is returned
        unmodified, whatever owner or metadata the later call carries.

        Args:
            token: Session token
            start_time: Timestamp of the first event seen for this token
            user_id: Owning user, if the event carried an actor
            device_id: Client device identifier
            platform_info: Client platform description
            session_type: Optional session type label
            device_info: Opaque device description

        Returns:
            ClientSession instance

        Raises:
            RuntimeError: If the session cannot be fetched after the insert
        """
        client_session = self.get_by_token(token)
        if client_session is None:
            self.insert_ignore_conflict(
                ["session_id"],
                session_id=token,
                user_id=user_id,
                start_time=start_time,
                device_id=device_id,
                platform_info=platform_info,
                session_type=session_type,
                device_info=device_info,
            )
            client_session = self.get_by_token(token)
            if client_session is None:
                raise RuntimeError(f"Session creation/fetch failed for token={token}")

        return client_session

    def close(self, token: str, end_time: datetime) -> bool:
        """
        Record the end of a client session. The first close wins.

        Args:
            token: Session token
            end_time: When the session ended

        Returns:
            True if the session was closed by this call
        """
        client_session = self.get_by_token(token)
        if client_session is None or client_session.end_time is not None:
            return False
        client_session.end_time = end_time
        self.session.flush()
        return True
