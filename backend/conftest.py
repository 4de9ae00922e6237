"""
Shared fixtures for the chat core tests.
"""
import random
from collections import defaultdict
from typing import Any, Dict, List, Optional, Set, Tuple

import pytest

from agent import AutomatedResponder
from catalog import CatalogLookup, InMemoryCatalog
from conversation_context import ConversationContextStore
from live_agent_system import AgentPresence
from message_store import InMemoryMessageStore
from models import CatalogItem
from websocket_manager import SessionRouter


class FakeClock:
    """Manually advanced clock in seconds."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeSocketServer:
    """
    Stand-in for socketio.AsyncServer that tracks rooms and records what each
    connection would receive.
    """

    def __init__(self):
        self.connected: List[str] = []
        self.rooms: Dict[str, Set[str]] = defaultdict(set)
        self.received: Dict[str, List[Tuple[str, Any]]] = defaultdict(list)

    def connect(self, *sids: str):
        self.connected.extend(sids)

    async def enter_room(self, sid, room):
        self.rooms[room].add(sid)

    async def leave_room(self, sid, room):
        self.rooms[room].discard(sid)

    async def emit(self, event, data=None, to=None, room=None, skip_sid=None):
        target = to if to is not None else room
        if target is None:
            recipients = set(self.connected)
        else:
            recipients = set()
            for name in ([target] if isinstance(target, str) else target):
                if name in self.rooms:
                    recipients |= self.rooms[name]
                elif name in self.connected:
                    recipients.add(name)
        if isinstance(skip_sid, str):
            skip = {skip_sid}
        else:
            skip = set(skip_sid or [])
        for sid in recipients - skip:
            self.received[sid].append((event, data))

    def events(self, sid: str, name: Optional[str] = None) -> List[Any]:
        return [data for event, data in self.received[sid] if name is None or event == name]

    def event_names(self, sid: str) -> List[str]:
        return [event for event, _ in self.received[sid]]


class FakeGenerator:
    """Reply generator returning canned text (or raising) and recording prompts."""

    def __init__(self, text: str = "", error: Optional[Exception] = None):
        self.text = text
        self.error = error
        self.prompts: List[str] = []

    async def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.text


class SpyCatalog(InMemoryCatalog):
    """In-memory catalog that records every query it answers."""

    def __init__(self, items=()):
        super().__init__(items)
        self.queries = []

    async def find(self, query):
        self.queries.append(query)
        return await super().find(query)


async def no_delay():
    return None


def make_item(item_id, name, product_type, bestseller=False, date=0, price=199000, image=True):
    return CatalogItem(
        id=item_id,
        name=name,
        price=price,
        product_type=product_type,
        bestseller=bestseller,
        date=date,
        images=[f"https://img.example/{item_id}.jpg"] if image else [],
    )


@pytest.fixture
def items():
    return [
        make_item("tee1", "Áo Thun Basic Trắng", "T-shirt", bestseller=True, date=300),
        make_item("tee2", "Áo Thun Graphic Đen", "T-shirt", date=500),
        make_item("hood1", "Hoodie Nỉ Bông Kem", "Hoodie", bestseller=True, date=100),
        make_item("jog1", "Quần Jogger Kaki Đen", "Jogger", bestseller=True, date=200),
        make_item("jog2", "Quần Jogger Nỉ Xám", "Jogger", date=400),
    ]


@pytest.fixture
def catalog(items):
    return SpyCatalog(items)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def contexts(clock):
    return ConversationContextStore(clock=clock)


@pytest.fixture
def generator():
    return FakeGenerator(text="Bạn tham khảo [Áo Thun Basic Trắng](/product/tee1) nhé!")


@pytest.fixture
def responder(catalog, generator, contexts):
    return AutomatedResponder(
        lookup=CatalogLookup(catalog, rng=random.Random(7)),
        generator=generator,
        contexts=contexts,
    )


@pytest.fixture
def sio():
    return FakeSocketServer()


@pytest.fixture
def router(sio, responder, contexts):
    return SessionRouter(
        sio=sio,
        presence=AgentPresence(),
        store=InMemoryMessageStore(),
        responder=responder,
        contexts=contexts,
        reply_delay=no_delay,
    )
