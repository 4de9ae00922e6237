"""
Conversation context store for the automated responder.

Keeps the last topical state of each conversation (which items were shown,
what the responder last did) so follow-ups like "show me that" can be
resolved. Entries use a sliding TTL; expiry is checked lazily on every read
and a background sweep bounds memory for conversations nobody reads again.
"""
import asyncio
import time
from typing import Any, Callable, Dict, Optional

import config
from models import ConversationContext


class ConversationContextStore:
    """In-process TTL cache of ConversationContext keyed by conversation id."""

    def __init__(
        self,
        ttl_seconds: float = config.CONTEXT_TTL_SECONDS,
        sweep_interval_seconds: float = config.CONTEXT_SWEEP_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.ttl_seconds = ttl_seconds
        self.sweep_interval_seconds = sweep_interval_seconds
        self._clock = clock
        self._contexts: Dict[str, ConversationContext] = {}
        self._sweeper: Optional[asyncio.Task] = None

    def now(self) -> float:
        return self._clock()

    def __len__(self) -> int:
        return len(self._contexts)

    def set(self, conversation_id: str, context: ConversationContext) -> Optional[ConversationContext]:
        """Replace the context of a conversation and restart its TTL."""
        if not conversation_id:
            return None
        now = self._clock()
        stored = context.model_copy(
            update={"refreshed_at": now, "expires_at": now + self.ttl_seconds}
        )
        self._contexts[conversation_id] = stored
        return stored

    def get(self, conversation_id: str) -> Optional[ConversationContext]:
        """Return the live context, evicting it first if it has expired."""
        if not conversation_id:
            return None
        context = self._contexts.get(conversation_id)
        if context is None:
            return None
        if self._clock() > context.expires_at:
            del self._contexts[conversation_id]
            return None
        return context

    def update(self, conversation_id: str, **changes: Any) -> Optional[ConversationContext]:
        """
        Re-supply the prior fields of a live context with some of them changed.

        Does nothing when there is no live context; a fresh context must be
        written with set().
        """
        existing = self.get(conversation_id)
        if existing is None:
            return None
        return self.set(conversation_id, existing.model_copy(update=changes))

    def clear(self, conversation_id: str) -> bool:
        return self._contexts.pop(conversation_id, None) is not None

    def sweep(self) -> int:
        """Drop every expired entry. Returns how many were removed."""
        now = self._clock()
        expired = [cid for cid, ctx in self._contexts.items() if now > ctx.expires_at]
        for conversation_id in expired:
            del self._contexts[conversation_id]
        return len(expired)

    def start_sweeper(self) -> asyncio.Task:
        """Start the periodic sweep on the running event loop."""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._sweep_forever())
        return self._sweeper

    async def stop_sweeper(self):
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None

    async def _sweep_forever(self):
        while True:
            await asyncio.sleep(self.sweep_interval_seconds)
            removed = self.sweep()
            if removed:
                print(f"🧹 Swept {removed} expired conversation contexts")
