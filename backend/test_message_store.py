"""
Tests for the in-memory message store.
"""
from datetime import datetime, timedelta, timezone

import pytest

from message_store import InMemoryMessageStore, MessagePersistenceError
from models import ChatMessage, SenderRole


def _message(body, conversation_id="user_1", **extra):
    return ChatMessage(
        conversation_id=conversation_id,
        sender_id="u1",
        sender_name="Lan",
        sender_role=SenderRole.CUSTOMER,
        body=body,
        **extra,
    )


@pytest.mark.asyncio
async def test_timestamps_never_go_backwards():
    start = datetime(2024, 1, 1, 12, tzinfo=timezone.utc)
    times = iter([start, start - timedelta(seconds=5), start + timedelta(seconds=1)])
    store = InMemoryMessageStore(clock=lambda: next(times))

    for body in ("một", "hai", "ba"):
        await store.append(_message(body))

    stamps = [m.created_at for m in await store.recent("user_1")]
    assert stamps == [start, start, start + timedelta(seconds=1)]


@pytest.mark.asyncio
async def test_temporary_messages_are_rejected():
    store = InMemoryMessageStore()
    with pytest.raises(MessagePersistenceError):
        await store.append(_message("áo thun", temporary=True))
    assert await store.count("user_1") == 0


@pytest.mark.asyncio
async def test_recent_returns_tail_oldest_first():
    store = InMemoryMessageStore()
    for i in range(60):
        await store.append(_message(f"m{i}"))

    recent = await store.recent("user_1", 50)
    assert len(recent) == 50
    assert recent[0].body == "m10"
    assert recent[-1].body == "m59"
    assert await store.recent("user_1", 0) == []
    assert await store.recent("nobody") == []


@pytest.mark.asyncio
async def test_delete_conversation():
    store = InMemoryMessageStore()
    await store.append(_message("a"))
    await store.append(_message("b", conversation_id="user_2"))

    assert await store.delete_conversation("user_1") == 1
    assert await store.conversation_ids() == ["user_2"]
    assert await store.last_message("user_1") is None
