"""
Intent classification for customer messages.

Every message is classified exactly once into one tagged variant; the
automated responder and the catalog lookup both read that result instead of
re-matching the text with their own patterns.
"""
import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple


class IntentKind(str, Enum):
    GREETING = "greeting"
    SIZE_INQUIRY = "size_inquiry"
    IMAGE_CONFIRMATION = "image_confirmation"
    SET_QUERY = "set_query"
    GENERIC = "generic"


class Garment(str, Enum):
    TOP = "top"
    BOTTOM = "bottom"


@dataclass(frozen=True)
class Intent:
    kind: IntentKind
    garment: Optional[Garment] = None
    # Specific product types named in the message, e.g. ("hoodie",)
    product_terms: Tuple[str, ...] = ()
    # Outfit/combo wording, tracked even when another kind wins
    outfit: bool = False


GREETINGS = {"chào", "hello", "hi", "xin chào", "hey"}

_TRAILING_NOISE = re.compile(r"[\s!.?~,]+$")

_SIZE_INQUIRY = re.compile(
    r"(cân\s*nặng|\bkg\b|\d+\s*kg|size|\bvừa\b|\bfit\b|\blớn\b|\bnhỏ\b|\brộng\b|\bchật\b"
    r"|mặc.*có|đi.*được|phù\s*hợp|fit.*không)",
    re.IGNORECASE,
)

_AFFIRMATION = re.compile(
    r"^(có|ok|okay|yes|yes please|được|đồng\s*ý|ừ|ừm|vâng|dạ|uh)$",
    re.IGNORECASE,
)

_IMAGE_REQUEST = re.compile(
    r"(có.*xem|xem.*ảnh|show.*image|show\s*me|muốn.*xem|cho.*xem|ảnh.*sản\s*phẩm|ảnh.*đó"
    r"|cho.*mình.*xem.*ảnh|ảnh.*của.*sản.*phẩm)",
    re.IGNORECASE,
)

_OUTFIT = re.compile(
    r"\b(set|bộ|combo|outfit|phối|kết\s*hợp|cafe|chơi|đi|dự|tiệc)\b|gợi\s*ý.*đồ",
    re.IGNORECASE,
)

_TOP_WORDS = re.compile(
    r"(áo(?!\s*khoác)|shirt|tshirt|t-shirt|hoodie|sweater|ringer|relaxed)", re.IGNORECASE
)
_BOTTOM_WORDS = re.compile(r"(quần|pants|jogger|jean)", re.IGNORECASE)

# Words that name one product type rather than a garment family
PRODUCT_TERMS = ("hoodie", "sweater", "jogger", "t-shirt", "áo thun", "ringer", "relaxed")

# Replies containing these phrases invite the customer to ask for a picture
_MEDIA_OFFER = re.compile(
    r"(xem\s*ảnh|ảnh\s*sản\s*phẩm|muốn\s*xem|gửi\s*ảnh|hình\s*ảnh|see\s*a\s*photo|see\s*the\s*picture)",
    re.IGNORECASE,
)


def normalize(text: str) -> str:
    return _TRAILING_NOISE.sub("", text.strip())


def garment_of(text: str) -> Optional[Garment]:
    """Garment family named in free text. Bottom-wear wins when both appear."""
    if _BOTTOM_WORDS.search(text):
        return Garment.BOTTOM
    if _TOP_WORDS.search(text):
        return Garment.TOP
    return None


def product_terms_in(text: str) -> Tuple[str, ...]:
    lowered = text.lower()
    return tuple(term for term in PRODUCT_TERMS if term in lowered)


def is_greeting(text: str) -> bool:
    return normalize(text).lower() in GREETINGS


def is_size_inquiry(text: str) -> bool:
    return bool(_SIZE_INQUIRY.search(text))


def is_confirmation(text: str) -> bool:
    return bool(_AFFIRMATION.match(normalize(text)) or _IMAGE_REQUEST.search(text))


def is_outfit_request(text: str) -> bool:
    return bool(_OUTFIT.search(text))


def offers_media(reply_text: str) -> bool:
    return bool(_MEDIA_OFFER.search(reply_text))


def classify(text: str) -> Intent:
    """
    Classify a customer message.

    Order matters: a greeting beats everything, and a sizing question is
    never treated as a confirmation even if it contains "có".
    """
    outfit = is_outfit_request(text)
    garment = garment_of(text)
    terms = product_terms_in(text)

    if is_greeting(text):
        kind = IntentKind.GREETING
    elif is_size_inquiry(text):
        kind = IntentKind.SIZE_INQUIRY
    elif is_confirmation(text):
        kind = IntentKind.IMAGE_CONFIRMATION
    elif outfit:
        kind = IntentKind.SET_QUERY
    else:
        kind = IntentKind.GENERIC

    return Intent(kind=kind, garment=garment, product_terms=terms, outfit=outfit)
