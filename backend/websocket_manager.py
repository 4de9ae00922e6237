"""
Session router for real-time chat.

Owns room membership, agent presence broadcasts, message persistence and
fan-out over Socket.IO. Customer messages may trigger the automated
responder; its reply is delivered from a background task so the sender's
acknowledgement is not held up by generation or the natural reply delay.
"""
import asyncio
import random
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from pydantic import ValidationError

import config
from agent import AutomatedResponder, TransientResponderError
from conversation_context import ConversationContextStore
from live_agent_system import AgentPresence, PresenceTransition, ResponderDecision, select_responder
from message_store import InMemoryMessageStore, InvalidMessageError, MessagePersistenceError
from models import ChatMessage, ConversationSummary, SendMessagePayload, SenderRole
from observability import (
    record_message,
    record_presence_transition,
    record_responder_fallback,
    trace_operation,
)

FALLBACK_NOTICE = "Xin lỗi, mình đang gặp sự cố kỹ thuật. Admin sẽ hỗ trợ bạn ngay! 🛠️✨"


async def natural_delay():
    """Pause before an automated reply so it does not arrive instantly."""
    await asyncio.sleep(random.uniform(config.REPLY_DELAY_MIN_SECONDS, config.REPLY_DELAY_MAX_SECONDS))


class SessionRouter:
    """Routes chat traffic between customers, agents and the automated responder."""

    def __init__(
        self,
        sio: Any,
        presence: AgentPresence,
        store: InMemoryMessageStore,
        responder: AutomatedResponder,
        contexts: ConversationContextStore,
        reply_delay: Callable[[], Awaitable[None]] = natural_delay,
        history_limit: int = config.HISTORY_LIMIT,
    ):
        self.sio = sio
        self.presence = presence
        self.store = store
        self.responder = responder
        self.contexts = contexts
        self.reply_delay = reply_delay
        self.history_limit = history_limit

        # conversation id -> connections in its room
        self.rooms: Dict[str, Set[str]] = {}
        # connection -> conversation it joined last
        self.joined: Dict[str, str] = {}
        self._pending: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Rooms and presence
    # ------------------------------------------------------------------

    async def _enter(self, sid: str, conversation_id: str):
        await self.sio.enter_room(sid, conversation_id)
        self.rooms.setdefault(conversation_id, set()).add(sid)

    async def _leave(self, sid: str, conversation_id: str):
        await self.sio.leave_room(sid, conversation_id)
        members = self.rooms.get(conversation_id)
        if members is not None:
            members.discard(sid)

    async def _send_status(self, sid: str):
        await self.sio.emit("admin_status_changed", {"isOnline": self.presence.is_online}, to=sid)

    async def join(self, sid: str, conversation_id: str):
        """Customer joins their conversation room and learns whether an agent is online."""
        if not conversation_id:
            print(f"Ignoring join without conversation id from {sid}")
            return
        await self._enter(sid, conversation_id)
        self.joined[sid] = conversation_id
        await self._send_status(sid)

    async def check_agent_status(self, sid: str):
        await self._send_status(sid)

    async def agent_connect(self, sid: str, name: Optional[str] = None) -> Optional[PresenceTransition]:
        """Mark a connection as a human agent and subscribe it to every conversation's traffic."""
        transition = self.presence.connect(sid, name)
        await self.sio.enter_room(sid, config.AGENT_ROOM)
        if transition is PresenceTransition.CAME_ONLINE:
            record_presence_transition(True)
            await self.sio.emit(
                "admin_status_changed",
                {"isOnline": True, "adminName": name or "Admin"},
                skip_sid=self.presence.connection_ids(),
            )
            print(f"👨‍💼 Agent {name or sid} came online, automated replies paused")
        return transition

    async def agent_disconnect(self, sid: str) -> Optional[PresenceTransition]:
        if sid not in self.presence:
            return None
        transition = self.presence.disconnect(sid)
        await self.sio.leave_room(sid, config.AGENT_ROOM)
        if transition is PresenceTransition.WENT_OFFLINE:
            record_presence_transition(False)
            await self.sio.emit(
                "admin_status_changed",
                {"isOnline": False},
                skip_sid=[sid] + self.presence.connection_ids(),
            )
            print("🤖 All agents offline, automated replies enabled")
        return transition

    async def agent_join_room(self, sid: str, conversation_id: str):
        if conversation_id:
            await self._enter(sid, conversation_id)

    async def agent_leave_room(self, sid: str, conversation_id: str):
        if conversation_id:
            await self._leave(sid, conversation_id)

    async def disconnect(self, sid: str):
        """Connection closed: drop presence and room bookkeeping."""
        await self.agent_disconnect(sid)
        for members in self.rooms.values():
            members.discard(sid)
        self.joined.pop(sid, None)

    def agent_in_room(self, conversation_id: str) -> bool:
        return any(sid in self.presence for sid in self.rooms.get(conversation_id, ()))

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def _broadcast(self, message: ChatMessage):
        await self.sio.emit(
            "receive_message", message.to_wire(), to=[message.conversation_id, config.AGENT_ROOM]
        )

    async def post_message(
        self,
        conversation_id: str,
        sender_id: str,
        sender_name: str,
        sender_role: SenderRole,
        body: str,
        media_url: Optional[str] = None,
    ) -> ChatMessage:
        """
        Persist and broadcast a message, then start the automated reply if one is due.

        Raises InvalidMessageError for malformed input and MessagePersistenceError
        when the store fails; nothing is broadcast in either case.
        """
        if not conversation_id:
            raise InvalidMessageError("Missing conversation id")
        if not sender_id:
            raise InvalidMessageError("Missing sender id")
        if not body or not body.strip():
            raise InvalidMessageError("Message body is empty")

        with trace_operation(
            "session_router.post_message",
            {"chat.conversation_id": conversation_id, "chat.sender_role": sender_role.value},
        ):
            message = ChatMessage(
                conversation_id=conversation_id,
                sender_id=sender_id,
                sender_name=sender_name or sender_id,
                sender_role=sender_role,
                body=body,
                media_url=media_url,
            )
            try:
                stored = await self.store.append(message)
            except MessagePersistenceError:
                raise
            except Exception as e:
                raise MessagePersistenceError(str(e)) from e

            await self._broadcast(stored)
            record_message(sender_role.value)

        decision = select_responder(body, sender_role, len(self.presence))
        if decision.automated:
            print(
                f"👤 {conversation_id}: \"{decision.body[:80]}\" | 🤖 responding"
                f" | 👨‍💼 agents: {len(self.presence)}{' (summoned)' if decision.summoned else ''}"
            )
            self._schedule(self._automated_reply(conversation_id, decision))
        return stored

    async def handle_send_message(self, sid: str, data: Any) -> Dict[str, Any]:
        """Socket entrypoint for `send_message`. Failures are reported to `sid` only."""
        try:
            payload = SendMessagePayload.model_validate(data if data is not None else {})
        except ValidationError:
            return await self._reject(sid, "Invalid message payload")

        try:
            message = await self.post_message(
                payload.conversation_id,
                payload.sender_id,
                payload.sender_name,
                payload.sender_role,
                payload.body,
            )
        except InvalidMessageError as e:
            return await self._reject(sid, str(e))
        except MessagePersistenceError as e:
            print(f"Error persisting message from {sid}: {e}")
            return await self._reject(sid, "Failed to send message")

        return {"ok": True, "message": message.to_wire()}

    async def _reject(self, sid: str, error: str) -> Dict[str, Any]:
        await self.sio.emit("message_error", {"error": error}, to=sid)
        return {"ok": False, "error": error}

    async def typing_signal(self, sid: str, conversation_id: str, is_typing: bool, from_role: SenderRole):
        """Relay a typing indicator to the room. Nothing is stored."""
        if not conversation_id:
            return
        if from_role is SenderRole.AGENT:
            await self.sio.emit("admin_typing", {"isTyping": bool(is_typing)}, room=conversation_id)
        else:
            await self.sio.emit(
                "user_typing",
                {"sender": sid, "isTyping": bool(is_typing)},
                room=conversation_id,
                skip_sid=sid,
            )

    async def relay_read_receipt(self, sid: str, message_id: str):
        """Tell every other connection that `message_id` was read. Nothing is stored."""
        if not message_id:
            return
        await self.sio.emit("messageRead", {"messageId": message_id}, skip_sid=sid)

    # ------------------------------------------------------------------
    # Automated replies
    # ------------------------------------------------------------------

    def _schedule(self, coro: Awaitable[None]):
        task = asyncio.ensure_future(coro)
        self._pending.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task):
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            print(f"Automated reply task failed: {error!r}")

    async def drain(self):
        """Wait until every scheduled automated reply has been delivered."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _automated_reply(self, conversation_id: str, decision: ResponderDecision):
        await self.sio.emit("ai_typing_start", {"conversationId": conversation_id}, room=conversation_id)

        try:
            reply = await self.responder.respond(decision.body, conversation_id)
        except Exception as e:
            reason = "transient" if isinstance(e, TransientResponderError) else "error"
            print(f"Automated reply for {conversation_id} failed ({reason}): {e}")
            record_responder_fallback(reason)
            await self.reply_delay()
            await self._send_fallback(conversation_id)
            return

        await self.reply_delay()

        sender_name = config.ASSISTANT_NAME
        if decision.summoned:
            sender_name = f"{config.ASSISTANT_NAME} (@ai)"
        message = ChatMessage(
            conversation_id=conversation_id,
            sender_id=config.ASSISTANT_ID,
            sender_name=sender_name,
            sender_role=SenderRole.AUTOMATED,
            body=reply.text,
            media_url=reply.media_url,
        )
        # Store and broadcast run back to back, typing stops before either
        await self.sio.emit("ai_typing_stop", {"conversationId": conversation_id}, room=conversation_id)
        try:
            stored = await self.store.append(message)
        except Exception as e:
            print(f"Error persisting automated reply for {conversation_id}: {e}")
            record_responder_fallback("persistence")
            return

        await self._broadcast(stored)
        record_message(SenderRole.AUTOMATED.value)
        print(f"🤖 {conversation_id}: \"{reply.text[:100]}{'...' if len(reply.text) > 100 else ''}\"")

    async def _send_fallback(self, conversation_id: str):
        """Fixed notice to the conversation's room after the responder failed."""
        message = ChatMessage(
            conversation_id=conversation_id,
            sender_id=config.ASSISTANT_ID,
            sender_name=f"{config.ASSISTANT_NAME} (Fallback)",
            sender_role=SenderRole.AUTOMATED,
            body=FALLBACK_NOTICE,
        )
        await self.sio.emit("ai_typing_stop", {"conversationId": conversation_id}, room=conversation_id)
        try:
            message = await self.store.append(message)
        except Exception as e:
            print(f"Error persisting fallback notice for {conversation_id}: {e}")
        await self.sio.emit("receive_message", message.to_wire(), room=conversation_id)

    # ------------------------------------------------------------------
    # History and admin
    # ------------------------------------------------------------------

    async def fetch_history(self, conversation_id: str, limit: Optional[int] = None) -> List[ChatMessage]:
        """Most recent messages of a conversation, oldest first."""
        if not conversation_id:
            return []
        return await self.store.recent(conversation_id, limit or self.history_limit)

    async def history_for(self, sid: str, conversation_id: Optional[str] = None) -> List[ChatMessage]:
        """History for `getChatHistory`: the given conversation or the one the connection joined."""
        return await self.fetch_history(conversation_id or self.joined.get(sid, ""))

    async def list_conversations(self) -> List[ConversationSummary]:
        summaries = []
        for conversation_id in await self.store.conversation_ids():
            summaries.append(ConversationSummary(
                conversation_id=conversation_id,
                message_count=await self.store.count(conversation_id),
                last_message=await self.store.last_message(conversation_id),
                agent_joined=self.agent_in_room(conversation_id),
            ))
        summaries.sort(
            key=lambda s: s.last_message.created_at.timestamp() if s.last_message else 0.0,
            reverse=True,
        )
        return summaries

    async def purge_conversation(self, conversation_id: str) -> int:
        """Operator action: delete a conversation's messages and forget its context."""
        deleted = await self.store.delete_conversation(conversation_id)
        self.contexts.clear(conversation_id)
        print(f"🗑️ Purged conversation {conversation_id} ({deleted} messages)")
        return deleted
