"""
In-process product store.

Implements the same contract as MongoProductStore (weighted text scoring, sort
order, unique slugs, atomic updates) so the service runs without MongoDB in
development and tests. Each operation yields to the event loop once, like a real
I/O round trip, and then completes without suspending, which makes single
document updates atomic under asyncio.
"""
import asyncio
import copy
import re
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId

from database import TEXT_WEIGHTS
from errors import DuplicateKeyError
from sorting import DESCENDING, RELEVANCE
from store import LISTING_EXCLUDES, ProductStore, as_object_id

_WORD = re.compile(r"[a-z0-9]+")
_PHRASE = re.compile(r'"([^"]*)"')

_MISSING = object()


def _stem(word: str) -> str:
    if len(word) > 3 and word.endswith("s") and not word.endswith("ss"):
        return word[:-1]
    return word


def _words(text: str) -> List[str]:
    return [_stem(w) for w in _WORD.findall(text.lower())]


def parse_search(search: str) -> Tuple[List[str], List[str], List[str]]:
    """Split a text query into (terms, negated terms, phrases)."""
    phrases = [p.strip().lower() for p in _PHRASE.findall(search) if p.strip()]
    rest = _PHRASE.sub(" ", search)
    terms, negated = [], []
    for token in rest.split():
        if token.startswith("-") and len(token) > 1:
            negated.extend(_words(token[1:]))
        else:
            terms.extend(_words(token))
    for phrase in phrases:
        terms.extend(_words(phrase))
    return terms, negated, phrases


def _field_text(doc: Dict[str, Any], field: str) -> str:
    value = doc.get(field)
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return " ".join(str(v) for v in value)
    return str(value)


def text_score(doc: Dict[str, Any], search: str) -> float:
    """Weighted relevance of a document for a text query; 0.0 when it does not match."""
    terms, negated, phrases = parse_search(search)
    if not terms:
        return 0.0

    texts = {field: _field_text(doc, field) for field in TEXT_WEIGHTS}
    all_words = set()
    for text in texts.values():
        all_words.update(_words(text))

    if any(word in all_words for word in negated):
        return 0.0
    haystack = " ".join(texts.values()).lower()
    if any(phrase not in haystack for phrase in phrases):
        return 0.0

    wanted = set(terms)
    score = 0.0
    for field, weight in TEXT_WEIGHTS.items():
        words = _words(texts[field])
        hits = sum(1 for w in words if w in wanted)
        if hits:
            score += weight * (0.5 + 0.5 * hits / len(words))
    return score


def get_path(doc: Dict[str, Any], path: str, default=None):
    value: Any = doc
    for part in path.split("."):
        if not isinstance(value, dict) or part not in value:
            return default
        value = value[part]
    return value


def set_path(doc: Dict[str, Any], path: str, value) -> None:
    parts = path.split(".")
    target = doc
    for part in parts[:-1]:
        target = target.setdefault(part, {})
    target[parts[-1]] = value


def _order_key(value):
    # missing and null sort before any value, as in MongoDB
    return (0, 0) if value is None else (1, value)


class InMemoryProductStore(ProductStore):
    name = "memory"

    def __init__(self, latency: float = 0.0):
        self.latency = latency
        self._docs: Dict[ObjectId, Dict[str, Any]] = {}

    async def _round_trip(self) -> None:
        await asyncio.sleep(self.latency)

    def _matches(self, predicate, doc) -> bool:
        if doc.get("isActive") is not True:
            return False
        if predicate.category is not None and doc.get("category") != predicate.category:
            return False
        price = doc.get("price")
        if predicate.min_price is not None and (price is None or price < predicate.min_price):
            return False
        if predicate.max_price is not None and (price is None or price > predicate.max_price):
            return False
        if predicate.featured and doc.get("isFeatured") is not True:
            return False
        if predicate.search and text_score(doc, predicate.search) <= 0:
            return False
        return True

    def _slug_taken(self, slug, own_id=None) -> bool:
        return any(
            doc.get("slug") == slug and oid != own_id
            for oid, doc in self._docs.items()
        )

    async def find(self, predicate, sort, skip, limit, exclude=LISTING_EXCLUDES):
        await self._round_trip()
        matched = []
        for doc in self._docs.values():
            if not self._matches(predicate, doc):
                continue
            doc = copy.deepcopy(doc)
            if predicate.search:
                doc[RELEVANCE] = text_score(doc, predicate.search)
            matched.append(doc)

        # stable sorts applied from the least significant key up
        for key in reversed(list(sort)):
            matched.sort(
                key=lambda d, field=key.field: _order_key(get_path(d, field)),
                reverse=key.direction == DESCENDING,
            )

        page = matched[skip:skip + limit]
        for doc in page:
            for field in exclude:
                doc.pop(field, None)
        return page

    async def count(self, predicate):
        await self._round_trip()
        return sum(1 for doc in self._docs.values() if self._matches(predicate, doc))

    async def find_one(self, criteria):
        await self._round_trip()
        for oid, doc in self._docs.items():
            if all(self._equals(doc, oid, field, value) for field, value in criteria.items()):
                return copy.deepcopy(doc)
        return None

    @staticmethod
    def _equals(doc, oid, field, value) -> bool:
        if field == "_id":
            return as_object_id(value) == oid
        return get_path(doc, field, _MISSING) == value

    async def insert(self, document):
        await self._round_trip()
        doc = copy.deepcopy(document)
        oid = doc.setdefault("_id", ObjectId())
        if oid in self._docs:
            raise DuplicateKeyError({"_id": oid})
        if doc.get("slug") is not None and self._slug_taken(doc["slug"]):
            raise DuplicateKeyError({"slug": doc["slug"]})
        self._docs[oid] = doc
        return copy.deepcopy(doc)

    async def update_atomic(self, product_id, set_fields=None, increments=None):
        await self._round_trip()
        oid = as_object_id(product_id)
        doc = self._docs.get(oid) if oid is not None else None
        if doc is None:
            return None
        set_fields = set_fields or {}
        if "slug" in set_fields and self._slug_taken(set_fields["slug"], own_id=oid):
            raise DuplicateKeyError({"slug": set_fields["slug"]})
        for path, value in set_fields.items():
            set_path(doc, path, copy.deepcopy(value))
        for path, amount in (increments or {}).items():
            set_path(doc, path, (get_path(doc, path) or 0) + amount)
        return copy.deepcopy(doc)

    async def apply_rating(self, product_id, rating):
        await self._round_trip()
        oid = as_object_id(product_id)
        doc = self._docs.get(oid) if oid is not None else None
        if doc is None:
            return None
        average = get_path(doc, "stats.rating.average") or 0
        count = get_path(doc, "stats.rating.count") or 0
        set_path(doc, "stats.rating.average", (average * count + rating) / (count + 1))
        set_path(doc, "stats.rating.count", count + 1)
        return copy.deepcopy(doc)
