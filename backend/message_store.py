"""
Message persistence for chat conversations.

Append-only per conversation. The store stamps creation times itself and
never lets them go backwards inside a conversation, so history order and
timestamp order always agree.
"""
from datetime import datetime
from typing import Callable, Dict, List, Optional

from models import ChatMessage, utcnow


class InvalidMessageError(ValueError):
    """Message rejected before persistence (empty body, missing ids)."""


class MessagePersistenceError(Exception):
    """The store could not persist or read messages."""


class InMemoryMessageStore:
    """Process-local message store keyed by conversation id."""

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self._clock = clock
        self._conversations: Dict[str, List[ChatMessage]] = {}

    async def append(self, message: ChatMessage) -> ChatMessage:
        """Persist a message and return the stored copy with its server timestamp."""
        if message.temporary:
            raise MessagePersistenceError("temporary client messages cannot be persisted")
        if not message.conversation_id:
            raise MessagePersistenceError("message has no conversation id")

        messages = self._conversations.setdefault(message.conversation_id, [])
        created_at = self._clock()
        if messages and created_at < messages[-1].created_at:
            created_at = messages[-1].created_at

        stored = message.model_copy(update={"created_at": created_at})
        messages.append(stored)
        return stored

    async def recent(self, conversation_id: str, limit: int = 50) -> List[ChatMessage]:
        """Most recent `limit` messages, oldest first."""
        if limit <= 0:
            return []
        return list(self._conversations.get(conversation_id, [])[-limit:])

    async def last_message(self, conversation_id: str) -> Optional[ChatMessage]:
        messages = self._conversations.get(conversation_id)
        return messages[-1] if messages else None

    async def count(self, conversation_id: str) -> int:
        return len(self._conversations.get(conversation_id, []))

    async def conversation_ids(self) -> List[str]:
        return list(self._conversations)

    async def delete_conversation(self, conversation_id: str) -> int:
        """Remove a conversation's messages. Returns how many were deleted."""
        return len(self._conversations.pop(conversation_id, []))
