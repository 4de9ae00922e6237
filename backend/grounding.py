"""
Grounding checks for automated replies.

A reply may only link to or show items that the catalog actually returned
for this turn, or that the conversation context already holds. Anything else
is replaced in place before the reply leaves the responder.
"""
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

from catalog import is_bottom_type
from models import CatalogItem

UNAVAILABLE_PLACEHOLDER = "[Sản phẩm không có sẵn]"

_MARKDOWN_LINK = re.compile(r"\[[^\]]*\]\((?:https?://[^\s/()]+)?/product/([^)\s]+)\)")
_BARE_LINK = re.compile(r"(?<!\()(?:https?://[^\s/()]+)?/product/([\w-]+)")
_IMAGE_EMBED = re.compile(r"!\[[^\]]*\]\(([^)\s]+)\)")

_NAME_WORD = re.compile(r"[\w-]+", re.UNICODE)
# Words shared by too many product names to identify one
GENERIC_NAME_WORDS = {"áo", "quần", "nam", "nữ", "unisex", "the", "and", "for", "with"}


@dataclass(frozen=True)
class GroundedReply:
    text: str
    media_url: Optional[str]
    violations: int = 0


def ground_reply(
    text: str,
    media_url: Optional[str],
    allowed_items: Iterable[CatalogItem],
) -> GroundedReply:
    """
    Replace links to unknown items and images no allowed item owns, and drop
    such media.
    """
    allowed = list(allowed_items)
    allowed_ids = {item.id for item in allowed}
    allowed_media = {image for item in allowed for image in item.images}
    violations = 0

    def _check_image(match: "re.Match[str]") -> str:
        nonlocal violations
        if match.group(1) in allowed_media:
            return match.group(0)
        violations += 1
        return UNAVAILABLE_PLACEHOLDER

    def _check(match: "re.Match[str]") -> str:
        nonlocal violations
        if match.group(1) in allowed_ids:
            return match.group(0)
        violations += 1
        return UNAVAILABLE_PLACEHOLDER

    grounded = _IMAGE_EMBED.sub(_check_image, text)
    grounded = _MARKDOWN_LINK.sub(_check, grounded)
    grounded = _BARE_LINK.sub(_check, grounded)

    if media_url is not None and media_url not in allowed_media:
        violations += 1
        media_url = None

    return GroundedReply(text=grounded, media_url=media_url, violations=violations)


def embedded_images(text: str) -> List[str]:
    """Image URLs embedded in a reply as markdown images."""
    return _IMAGE_EMBED.findall(text)


def referenced_ids(text: str) -> List[str]:
    """Item ids linked from a reply, in order of appearance."""
    ids = [m.group(1) for m in _MARKDOWN_LINK.finditer(text)]
    ids += [m.group(1) for m in _BARE_LINK.finditer(text) if m.group(1) not in ids]
    return ids


def significant_tokens(name: str) -> List[str]:
    return [
        word for word in _NAME_WORD.findall(name.lower())
        if len(word) > 2 and word not in GENERIC_NAME_WORDS
    ]


def mention_score(reply_text: str, item: CatalogItem) -> float:
    """
    How strongly a reply refers to an item.

    A link to the item or its full name counts as a certain mention; otherwise
    the score is the share of the item's significant name tokens found in the
    reply.
    """
    lowered = reply_text.lower()
    if f"/product/{item.id}" in reply_text:
        return 2.0
    if item.name and item.name.lower() in lowered:
        return 1.5
    tokens = significant_tokens(item.name)
    if not tokens:
        return 0.0
    return sum(1 for token in tokens if token in lowered) / len(tokens)


def _best(reply_text: str, candidates: Sequence[CatalogItem]) -> Optional[CatalogItem]:
    best, best_score = None, 0.0
    for item in candidates:
        score = mention_score(reply_text, item)
        if score > best_score:
            best, best_score = item, score
    return best


def mentioned_items(
    reply_text: str,
    candidates: Sequence[CatalogItem],
    pair: bool = False,
) -> List[CatalogItem]:
    """
    Pick the item (or top + bottom pair) a reply is talking about.

    Falls back to the first candidate when nothing in the reply matches.
    """
    if not candidates:
        return []

    if not pair:
        return [_best(reply_text, candidates) or candidates[0]]

    tops = [item for item in candidates if not is_bottom_type(item.product_type)]
    bottoms = [item for item in candidates if is_bottom_type(item.product_type)]
    chosen = []
    for group in (tops, bottoms):
        if group:
            chosen.append(_best(reply_text, group) or group[0])
    return chosen or [candidates[0]]
