"""
Document store interface used by the catalog engine, and its MongoDB implementation.
"""
import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Dict, List, Optional, Sequence

from bson import ObjectId
from pymongo import ReturnDocument
from pymongo import errors as mongo_errors

import database
from errors import DuplicateKeyError, TransientStoreError
from filters import CatalogFilter
from sorting import RELEVANCE, SortKey

logger = logging.getLogger(__name__)

# large payloads never returned by listings
LISTING_EXCLUDES = ("files",)


class ProductStore(ABC):
    """Product documents, with atomic single-document updates."""

    name = "abstract"

    @abstractmethod
    async def find(self, predicate: CatalogFilter, sort: Sequence[SortKey], skip: int,
                   limit: int, exclude: Sequence[str] = LISTING_EXCLUDES) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    async def count(self, predicate: CatalogFilter) -> int:
        ...

    @abstractmethod
    async def find_one(self, criteria: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Equality lookup, e.g. {"_id": ObjectId(...)} or {"slug": "..."}."""

    @abstractmethod
    async def insert(self, document: Dict[str, Any]) -> Dict[str, Any]:
        """Insert and return the document with its `_id`. Raises DuplicateKeyError."""

    @abstractmethod
    async def update_atomic(self, product_id: str, set_fields: Optional[Dict[str, Any]] = None,
                            increments: Optional[Dict[str, int]] = None) -> Optional[Dict[str, Any]]:
        """Apply `$set` and `$inc` in one atomic step; None when the id is unknown."""

    @abstractmethod
    async def apply_rating(self, product_id: str, rating: float) -> Optional[Dict[str, Any]]:
        ...

    async def ensure_indexes(self) -> None:
        pass

    async def ping(self) -> bool:
        return True


def as_object_id(product_id) -> Optional[ObjectId]:
    if isinstance(product_id, ObjectId):
        return product_id
    if isinstance(product_id, str) and ObjectId.is_valid(product_id):
        return ObjectId(product_id)
    return None


@contextmanager
def store_errors(operation: str):
    try:
        yield
    except mongo_errors.DuplicateKeyError as exc:
        raise DuplicateKeyError((exc.details or {}).get("keyValue") or {}) from exc
    except mongo_errors.PyMongoError as exc:
        logger.error("MongoDB %s failed: %s", operation, exc)
        raise TransientStoreError() from exc


class MongoProductStore(ProductStore):
    name = "mongodb"

    def __init__(self, collection):
        self.collection = collection

    @classmethod
    def from_database(cls, db) -> "MongoProductStore":
        return cls(db[database.PRODUCT_COLLECTION])

    @staticmethod
    def build_sort(sort: Sequence[SortKey]) -> List[tuple]:
        return [
            (key.field, {"$meta": "textScore"}) if key.field == RELEVANCE else (key.field, key.direction)
            for key in sort
        ]

    @staticmethod
    def build_projection(sort: Sequence[SortKey], exclude: Sequence[str]) -> Optional[Dict[str, Any]]:
        projection: Dict[str, Any] = {field: 0 for field in exclude}
        if any(key.field == RELEVANCE for key in sort):
            projection[RELEVANCE] = {"$meta": "textScore"}
        return projection or None

    async def find(self, predicate, sort, skip, limit, exclude=LISTING_EXCLUDES):
        with store_errors("find"):
            cursor = (
                self.collection.find(predicate.to_mongo(), self.build_projection(sort, exclude))
                .sort(self.build_sort(sort))
                .skip(skip)
                .limit(limit)
            )
            return await cursor.to_list(length=None)

    async def count(self, predicate):
        with store_errors("count"):
            return await self.collection.count_documents(predicate.to_mongo())

    async def find_one(self, criteria):
        with store_errors("find_one"):
            return await self.collection.find_one(criteria)

    async def insert(self, document):
        with store_errors("insert"):
            result = await self.collection.insert_one(document)
        document["_id"] = result.inserted_id
        return document

    async def update_atomic(self, product_id, set_fields=None, increments=None):
        oid = as_object_id(product_id)
        if oid is None:
            return None
        update: Dict[str, Any] = {}
        if set_fields:
            update["$set"] = set_fields
        if increments:
            update["$inc"] = increments
        if not update:
            return await self.find_one({"_id": oid})
        with store_errors("update"):
            return await self.collection.find_one_and_update(
                {"_id": oid}, update, return_document=ReturnDocument.AFTER
            )

    async def apply_rating(self, product_id, rating):
        oid = as_object_id(product_id)
        if oid is None:
            return None
        average = {"$ifNull": ["$stats.rating.average", 0]}
        count = {"$ifNull": ["$stats.rating.count", 0]}
        # a single pipeline stage sees the old values for both fields
        pipeline = [{"$set": {
            "stats.rating.average": {
                "$divide": [
                    {"$add": [{"$multiply": [average, count]}, rating]},
                    {"$add": [count, 1]},
                ]
            },
            "stats.rating.count": {"$add": [count, 1]},
        }}]
        with store_errors("rating"):
            return await self.collection.find_one_and_update(
                {"_id": oid}, pipeline, return_document=ReturnDocument.AFTER
            )

    async def ensure_indexes(self):
        with store_errors("create_indexes"):
            await database.ensure_indexes(self.collection)

    async def ping(self):
        with store_errors("ping"):
            await self.collection.database.command("ping")
        return True


class UnavailableProductStore(ProductStore):
    """Stands in when no document store is configured. Every operation fails as transient."""

    name = "unavailable"

    def __init__(self, reason: str = "Document store not configured"):
        self.reason = reason

    def _fail(self):
        raise TransientStoreError(self.reason)

    async def find(self, predicate, sort, skip, limit, exclude=LISTING_EXCLUDES):
        self._fail()

    async def count(self, predicate):
        self._fail()

    async def find_one(self, criteria):
        self._fail()

    async def insert(self, document):
        self._fail()

    async def update_atomic(self, product_id, set_fields=None, increments=None):
        self._fail()

    async def apply_rating(self, product_id, rating):
        self._fail()

    async def ensure_indexes(self):
        self._fail()

    async def ping(self):
        self._fail()
