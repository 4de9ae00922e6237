"""
Data models for the support chat: messages, catalog items, conversation context.
"""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class SenderRole(str, Enum):
    """Who wrote a message."""
    CUSTOMER = "customer"
    AGENT = "agent"
    AUTOMATED = "automated"


# Role names used by older storefront clients
LEGACY_ROLES = {
    "user": SenderRole.CUSTOMER,
    "admin": SenderRole.AGENT,
    "ai": SenderRole.AUTOMATED,
}


def normalize_role(value: Any) -> Any:
    if isinstance(value, str):
        lowered = value.strip().lower()
        return LEGACY_ROLES.get(lowered, lowered)
    return value


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ChatMessage(BaseModel):
    """A single chat message. Immutable once the store has accepted it."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    conversation_id: str = Field(alias="conversationId")
    sender_id: str = Field(alias="senderId")
    sender_name: str = Field(alias="senderName")
    sender_role: SenderRole = Field(alias="senderRole")
    body: str
    media_url: Optional[str] = Field(default=None, alias="mediaUrl")
    created_at: datetime = Field(default_factory=utcnow, alias="createdAt")
    # Only ever set on the client before the server confirms the message
    temporary: bool = False

    @field_validator("sender_role", mode="before")
    @classmethod
    def _legacy_role(cls, value: Any) -> Any:
        return normalize_role(value)

    def to_wire(self) -> Dict[str, Any]:
        """Serialize for Socket.IO / JSON responses."""
        data = self.model_dump(by_alias=True, mode="json")
        if not self.temporary:
            data.pop("temporary", None)
        return data


class SendMessagePayload(BaseModel):
    """Inbound `send_message` event body. Validation of required fields is left to the router."""
    model_config = ConfigDict(populate_by_name=True)

    conversation_id: str = Field(
        default="", validation_alias=AliasChoices("conversationId", "roomId", "conversation_id")
    )
    sender_id: str = Field(
        default="", validation_alias=AliasChoices("senderId", "sender_id")
    )
    sender_name: str = Field(
        default="", validation_alias=AliasChoices("senderName", "sender_name")
    )
    sender_role: SenderRole = Field(
        default=SenderRole.CUSTOMER,
        validation_alias=AliasChoices("senderRole", "senderType", "sender_role"),
    )
    body: str = Field(default="", validation_alias=AliasChoices("body", "message"))

    @field_validator("sender_role", mode="before")
    @classmethod
    def _legacy_role(cls, value: Any) -> Any:
        return normalize_role(value)


class AgentInfo(BaseModel):
    """A connected human support agent."""
    agent_id: str
    name: str = "Admin"
    connected_at: datetime = Field(default_factory=utcnow)


class CatalogItem(BaseModel):
    """Canonical catalog item shape used everywhere inside the chat core."""
    id: str
    name: str
    price: float = 0.0
    product_type: str = ""
    sizes: List[str] = Field(default_factory=list)
    bestseller: bool = False
    # Listing date, epoch milliseconds
    date: int = 0
    images: List[str] = Field(default_factory=list)

    @property
    def image(self) -> Optional[str]:
        return self.images[0] if self.images else None

    @property
    def link(self) -> str:
        return f"/product/{self.id}"

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "CatalogItem":
        """
        Normalize a raw product record from the storefront database.

        Storefront records are not consistent about field names, so every
        known variant is mapped here exactly once.
        """
        item_id = record.get("_id", record.get("id"))
        if item_id is None:
            raise ValueError("catalog record has no id")

        images = record.get("images", record.get("image", []))
        if isinstance(images, str):
            images = [images]

        sizes = record.get("sizes", [])
        if isinstance(sizes, str):
            sizes = [s.strip() for s in sizes.split(",") if s.strip()]

        return cls(
            id=str(item_id),
            name=str(record.get("name") or record.get("title") or record.get("productName") or ""),
            price=float(record.get("price") or 0),
            product_type=str(
                record.get("productType") or record.get("product_type")
                or record.get("type") or record.get("category") or ""
            ),
            sizes=list(sizes),
            bestseller=bool(record.get("bestseller", False)),
            date=int(record.get("date") or 0),
            images=[str(i) for i in images if i],
        )


class LastAction(str, Enum):
    """What the automated responder last did in a conversation."""
    OFFERED_MEDIA = "offered_media"
    MENTIONED_ITEM = "mentioned_item"
    NONE = "none"


class ConversationContext(BaseModel):
    """Short-lived topical state of a conversation."""
    last_items: List[CatalogItem] = Field(default_factory=list)
    last_action: LastAction = LastAction.NONE
    last_query: str = ""
    last_reply: str = ""
    provider: Optional[str] = None
    # Both stamped by the context store on write, in store-clock seconds
    refreshed_at: float = 0.0
    expires_at: float = 0.0


class ReplyPath(str, Enum):
    """Which branch of the automated responder produced a reply."""
    GREETING = "greeting"
    CONFIRMATION = "confirmation"
    GENERATED = "generated"
    APOLOGY = "apology"


class AutomatedReply(BaseModel):
    """Output of the automated responder."""
    text: str
    media_url: Optional[str] = None
    path: ReplyPath = ReplyPath.GENERATED
    items: List[CatalogItem] = Field(default_factory=list)


class ConversationSummary(BaseModel):
    """Row of the admin conversation list."""
    conversation_id: str
    message_count: int
    last_message: Optional[ChatMessage] = None
    agent_joined: bool = False
