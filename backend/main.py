import os
from typing import Any, Optional

import socketio
from fastapi import FastAPI, HTTPException
from starlette.middleware.cors import CORSMiddleware

import config
from agent import AutomatedResponder, OpenAIReplyGenerator
from catalog import CatalogLookup, InMemoryCatalog
from conversation_context import ConversationContextStore
from live_agent_system import AgentPresence
from message_store import InMemoryMessageStore
from models import SenderRole
from observability import setup_observability, shutdown_observability
from websocket_manager import SessionRouter

SOCKETIO_PATH = "socket.io"
SOCKETIO_PING_INTERVAL = 25  # seconds
SOCKETIO_PING_TIMEOUT = 20  # seconds


def load_catalog(path: str = config.CATALOG_PATH) -> InMemoryCatalog:
    if not os.path.exists(path):
        print(f"Warning: Catalog file not found at {path}, starting with an empty catalog")
        return InMemoryCatalog()
    catalog = InMemoryCatalog.from_json_file(path)
    print(f"Catalog loaded: {len(catalog)} products from {path}")
    return catalog


def create_router(sio: socketio.AsyncServer, catalog: Optional[InMemoryCatalog] = None) -> SessionRouter:
    """Build the chat core once per process; every service is owned by the returned router."""
    contexts = ConversationContextStore()
    responder = AutomatedResponder(
        lookup=CatalogLookup(catalog if catalog is not None else load_catalog()),
        generator=OpenAIReplyGenerator(),
        contexts=contexts,
    )
    return SessionRouter(
        sio=sio,
        presence=AgentPresence(),
        store=InMemoryMessageStore(),
        responder=responder,
        contexts=contexts,
    )


def _conversation_id(data: Any) -> str:
    """Events carry the room either as a bare string or inside an object."""
    if isinstance(data, str):
        return data
    if isinstance(data, dict):
        return data.get("conversationId") or data.get("roomId") or ""
    return ""


def _message_id(data: Any) -> str:
    if isinstance(data, dict):
        data = data.get("messageId")
    return str(data) if isinstance(data, (str, int)) else ""


sio = socketio.AsyncServer(
    async_mode="asgi",
    cors_allowed_origins=config.CORS_ORIGINS,
    ping_interval=SOCKETIO_PING_INTERVAL,
    ping_timeout=SOCKETIO_PING_TIMEOUT,
    logger=False,
    engineio_logger=False,
)
router = create_router(sio)

app = FastAPI(
    title="Storefront Support Chat",
    description="Real-time customer support chat with live agents and an automated responder.",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def startup_event():
    """Start background housekeeping and optional telemetry."""
    router.contexts.start_sweeper()
    if config.OTEL_ENABLED:
        try:
            setup_observability()
        except Exception as e:
            print(f"Failed to initialize OpenTelemetry: {e}")
    print("Support chat started.")


@app.on_event("shutdown")
async def shutdown_event():
    await router.drain()
    await router.contexts.stop_sweeper()
    shutdown_observability()


# ============================================================================
# SOCKET.IO EVENTS
# ============================================================================

@sio.event
async def connect(sid, environ, auth=None):
    print(f"Client connected: {sid}")


@sio.event
async def disconnect(sid, *args):
    await router.disconnect(sid)
    print(f"Client disconnected: {sid}")


@sio.on("join_room")
async def join_room(sid, data):
    await router.join(sid, _conversation_id(data))


@sio.on("check_admin_status")
async def check_admin_status(sid, data=None):
    await router.check_agent_status(sid)


@sio.on("send_message")
async def send_message(sid, data):
    # Returned value is the Socket.IO acknowledgement for the sender
    return await router.handle_send_message(sid, data)


@sio.on("admin_login")
async def admin_login(sid, data=None):
    name = data.get("name") if isinstance(data, dict) else None
    await router.agent_connect(sid, name)


@sio.on("adminOnline")
async def admin_online(sid, data=None):
    await router.agent_connect(sid)


@sio.on("adminOffline")
async def admin_offline(sid, data=None):
    await router.agent_disconnect(sid)


@sio.on("admin_typing")
async def admin_typing(sid, data):
    if isinstance(data, dict):
        await router.typing_signal(sid, _conversation_id(data), data.get("isTyping", False), SenderRole.AGENT)


@sio.on("typing")
async def customer_typing(sid, data):
    if isinstance(data, dict):
        await router.typing_signal(sid, _conversation_id(data), data.get("isTyping", False), SenderRole.CUSTOMER)


@sio.on("admin_join_room")
async def admin_join_room(sid, data):
    await router.agent_join_room(sid, _conversation_id(data))


@sio.on("admin_leave_room")
async def admin_leave_room(sid, data):
    await router.agent_leave_room(sid, _conversation_id(data))


@sio.on("messageRead")
async def message_read(sid, data):
    await router.relay_read_receipt(sid, _message_id(data))


@sio.on("getChatHistory")
async def get_chat_history(sid, data=None):
    try:
        messages = await router.history_for(sid, _conversation_id(data) or None)
    except Exception as e:
        print(f"Error fetching chat history: {e}")
        messages = []
    await sio.emit("chatHistory", [m.to_wire() for m in messages], to=sid)


# ============================================================================
# REST ENDPOINTS
# ============================================================================

@app.get("/health")
async def health():
    return {
        "status": "ok",
        "agentsOnline": router.presence.is_online,
        "conversations": len(router.rooms),
    }


@app.get("/api/chat/history/{room_id}")
async def chat_history(room_id: str, limit: int = config.HISTORY_LIMIT):
    """Most recent messages of a conversation, oldest first."""
    if limit <= 0:
        raise HTTPException(status_code=400, detail="limit must be positive")
    try:
        messages = await router.fetch_history(room_id, limit)
    except Exception as e:
        print(f"Error fetching history for {room_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to load chat history")
    return {"success": True, "messages": [m.to_wire() for m in messages]}


@app.get("/api/chat/rooms")
async def chat_rooms():
    """Conversation list for the admin panel, most recently active first."""
    summaries = await router.list_conversations()
    return {
        "success": True,
        "rooms": [
            {
                "conversationId": s.conversation_id,
                "messageCount": s.message_count,
                "lastMessage": s.last_message.to_wire() if s.last_message else None,
                "agentJoined": s.agent_joined,
            }
            for s in summaries
        ],
    }


@app.delete("/api/chat/admin/room/{room_id}")
async def delete_chat_room(room_id: str):
    """Purge a conversation and its responder context."""
    deleted = await router.purge_conversation(room_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return {"success": True, "deleted": deleted}


# Socket.IO handles /socket.io/, everything else goes to FastAPI
asgi_app = socketio.ASGIApp(sio, other_asgi_app=app, socketio_path=SOCKETIO_PATH)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:asgi_app", host=config.HOST, port=config.PORT, reload=True)
