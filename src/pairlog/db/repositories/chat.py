"""
Chat message repository.
"""

from sqlalchemy import func
from sqlalchemy.orm import Session

from pairlog.db.repositories.base import BaseRepository
from pairlog.models.db import ChatInteraction, ChatMessage


class ChatMessageRepository(BaseRepository[ChatMessage]):
    """Repository for ChatMessage and the legacy ChatInteraction table."""

    def __init__(self, session: Session):
        super().__init__(ChatMessage, session)

    def next_message_order(self, conversation_id: str) -> int:
        """
        Next free message_order within a conversation.

        Args:
            conversation_id: Conversation identifier

        Returns:
            1 for a new conversation, otherwise the current maximum plus one
        """
        current = (
            self.session.query(func.max(ChatMessage.message_order))
            .filter(ChatMessage.conversation_id == conversation_id)
            .scalar()
        )
        return (current or 0) + 1

    def add_legacy_interaction(self, **values) -> ChatInteraction:
        """Write a row to the legacy chat_interactions table."""
        interaction = ChatInteraction(**values)
        self.session.add(interaction)
        self.session.flush()
        return interaction
