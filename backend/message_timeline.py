"""
Client-side message timeline for one conversation.

A client shows its own message immediately as a temporary copy and replaces
it once the server broadcasts the persisted version. This is the state a
chat widget (or a Python Socket.IO client) keeps for `receive_message`.
"""
import time
from typing import Callable, List

from models import ChatMessage, SenderRole


class MessageTimeline:

    def __init__(self, conversation_id: str, clock: Callable[[], float] = time.time):
        self.conversation_id = conversation_id
        self.messages: List[ChatMessage] = []
        self.unread = 0
        self.is_open = False
        self._clock = clock

    def add_optimistic(self, sender_id: str, sender_name: str, body: str,
                       sender_role: SenderRole = SenderRole.CUSTOMER) -> ChatMessage:
        """Show an outgoing message before the server has confirmed it."""
        message = ChatMessage(
            id=f"temp-{int(self._clock() * 1000)}",
            conversation_id=self.conversation_id,
            sender_id=sender_id,
            sender_name=sender_name,
            sender_role=sender_role,
            body=body,
            temporary=True,
        )
        self.messages.append(message)
        return message

    def receive(self, message: ChatMessage) -> bool:
        """
        Merge a server-confirmed message. Returns True if it was added.

        Messages for other conversations are ignored, temporary copies with the
        same body and role are dropped, and ids already shown are not repeated.
        """
        if message.conversation_id and message.conversation_id != self.conversation_id:
            return False

        self.messages = [
            m for m in self.messages
            if not (m.temporary and m.body == message.body and m.sender_role == message.sender_role)
        ]
        if any(m.id == message.id for m in self.messages):
            return False

        self.messages.append(message)
        if not self.is_open and message.sender_role is not SenderRole.CUSTOMER:
            self.unread += 1
        return True

    def receive_wire(self, data: dict) -> bool:
        return self.receive(ChatMessage.model_validate(data))

    def open(self):
        self.is_open = True
        self.unread = 0

    def close(self):
        self.is_open = False

    @property
    def pending(self) -> List[ChatMessage]:
        return [m for m in self.messages if m.temporary]
