"""
Catalog lookup for the automated responder.

The storefront catalog is an external collaborator; this module only needs
`find()` and `distinct_types()` from it. Results are always bounded and
ranked (bestsellers first, then newest) so the generated reply can be
checked against a small, known set of items.
"""
import json
import random
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Protocol, Sequence, Tuple

from intent import Intent, classify
from models import CatalogItem

SortSpec = Tuple[Tuple[str, int], ...]

RANKED: SortSpec = (("bestseller", -1), ("date", -1))
RECENT: SortSpec = (("date", -1),)

NAME_MATCH_LIMIT = 20
TYPE_MATCH_LIMIT = 15
OUTFIT_TOP_CANDIDATES = 10
OUTFIT_BOTTOM_CANDIDATES = 5
FALLBACK_EACH_LIMIT = 10
FALLBACK_LIMIT = 15

GARMENT_WORDS = ("áo", "shirt", "quần", "pants")

STOPWORDS = {"cho", "tôi", "xem", "mình", "một", "của", "với", "và", "có", "là", "này", "đó"}

_NON_WORD = re.compile(r"[^\w\s]", re.UNICODE)


@dataclass(frozen=True)
class CatalogQuery:
    """One `find` request against the catalog."""
    name_pattern: Optional[str] = None
    types: Optional[Tuple[str, ...]] = None
    bestseller_only: bool = False
    sort: SortSpec = RANKED
    limit: int = NAME_MATCH_LIMIT


class Catalog(Protocol):
    async def find(self, query: CatalogQuery) -> List[CatalogItem]:
        ...

    async def distinct_types(self) -> List[str]:
        ...


def is_bottom_type(product_type: str) -> bool:
    lowered = product_type.lower()
    return "jogger" in lowered or "pants" in lowered


def partition_types(types: Iterable[str]) -> Tuple[List[str], List[str]]:
    """Split catalog product types into (top-wear, bottom-wear)."""
    tops, bottoms = [], []
    for product_type in types:
        (bottoms if is_bottom_type(product_type) else tops).append(product_type)
    return tops, bottoms


def extract_keywords(text: str) -> List[str]:
    words = _NON_WORD.sub(" ", text.lower()).split()
    return [w for w in words if len(w) > 1 and w not in STOPWORDS]


def keyword_pattern(keywords: Sequence[str]) -> str:
    return "|".join(re.escape(k) for k in keywords)


def _sort_items(items: List[CatalogItem], sort: SortSpec) -> List[CatalogItem]:
    # Stable sorts applied from the least significant key up
    ordered = list(items)
    for field, direction in reversed(sort):
        ordered.sort(key=lambda item: getattr(item, field), reverse=direction < 0)
    return ordered


class InMemoryCatalog:
    """Catalog held in process memory, loaded from storefront product records."""

    def __init__(self, items: Iterable[CatalogItem] = ()):
        self._items: List[CatalogItem] = list(items)

    @classmethod
    def from_records(cls, records: Iterable[dict]) -> "InMemoryCatalog":
        return cls(CatalogItem.from_record(r) for r in records)

    @classmethod
    def from_json_file(cls, path: str) -> "InMemoryCatalog":
        with open(path, encoding="utf-8") as f:
            return cls.from_records(json.load(f))

    def __len__(self) -> int:
        return len(self._items)

    async def find(self, query: CatalogQuery) -> List[CatalogItem]:
        matches = self._items
        if query.name_pattern:
            pattern = re.compile(query.name_pattern, re.IGNORECASE)
            matches = [item for item in matches if pattern.search(item.name)]
        if query.types is not None:
            wanted = set(query.types)
            matches = [item for item in matches if item.product_type in wanted]
        if query.bestseller_only:
            matches = [item for item in matches if item.bestseller]
        return _sort_items(matches, query.sort)[: query.limit]

    async def distinct_types(self) -> List[str]:
        return sorted({item.product_type for item in self._items if item.product_type})


class CatalogLookup:
    """
    Tiered search over the catalog:

    1. name match on the message keywords when a garment word is present
    2. product-type match using the top/bottom partition of catalog types
    3. outfit requests: one random top and one random bottom from the best ranked
    4. a mix of the newest items and the bestsellers
    """

    def __init__(self, catalog: Catalog, rng: Optional[random.Random] = None):
        self.catalog = catalog
        self.rng = rng or random.Random()

    async def search(self, text: str, intent: Optional[Intent] = None) -> List[CatalogItem]:
        """Run the tiers in order. Any catalog failure yields an empty result."""
        intent = intent or classify(text)
        try:
            items = await self._by_name(text)
            if not items:
                items = await self._by_type(text)
            if intent.outfit:
                items = await self._outfit_pair()
            if not items:
                items = await self._fallback()
            return items
        except Exception as e:
            print(f"Catalog lookup failed: {e}")
            return []

    async def _by_name(self, text: str) -> List[CatalogItem]:
        lowered = text.lower()
        if not any(word in lowered for word in GARMENT_WORDS):
            return []
        keywords = extract_keywords(text)
        if not keywords:
            return []
        return await self.catalog.find(
            CatalogQuery(name_pattern=keyword_pattern(keywords), sort=RANKED, limit=NAME_MATCH_LIMIT)
        )

    async def _by_type(self, text: str) -> List[CatalogItem]:
        lowered = text.lower()
        types = await self.catalog.distinct_types()
        tops, bottoms = partition_types(types)
        type_mapping = (
            ("áo", tops),
            ("shirt", tops),
            ("quần", bottoms),
            ("pants", bottoms),
            ("hoodie", [t for t in types if "hoodie" in t.lower()]),
            ("sweater", [t for t in types if "sweater" in t.lower()]),
            ("jogger", [t for t in types if "jogger" in t.lower()]),
        )
        for keyword, matched_types in type_mapping:
            if keyword in lowered and matched_types:
                return await self.catalog.find(
                    CatalogQuery(types=tuple(matched_types), sort=RANKED, limit=TYPE_MATCH_LIMIT)
                )
        return []

    async def _outfit_pair(self) -> List[CatalogItem]:
        tops, bottoms = partition_types(await self.catalog.distinct_types())
        pair = []
        if tops:
            candidates = await self.catalog.find(
                CatalogQuery(types=tuple(tops), sort=RANKED, limit=OUTFIT_TOP_CANDIDATES)
            )
            if candidates:
                pair.append(self.rng.choice(candidates))
        if bottoms:
            candidates = await self.catalog.find(
                CatalogQuery(types=tuple(bottoms), sort=RANKED, limit=OUTFIT_BOTTOM_CANDIDATES)
            )
            if candidates:
                pair.append(self.rng.choice(candidates))
        return pair

    async def _fallback(self) -> List[CatalogItem]:
        recent = await self.catalog.find(CatalogQuery(sort=RECENT, limit=FALLBACK_EACH_LIMIT))
        bestsellers = await self.catalog.find(
            CatalogQuery(bestseller_only=True, sort=RECENT, limit=FALLBACK_EACH_LIMIT)
        )
        unique, seen = [], set()
        for item in recent + bestsellers:
            if item.id not in seen:
                seen.add(item.id)
                unique.append(item)
        return unique[:FALLBACK_LIMIT]
