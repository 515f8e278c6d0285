"""
MongoProductStore: query shapes sent to MongoDB and error translation.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from bson import ObjectId
from pymongo import ReturnDocument
from pymongo import errors as mongo_errors

import database
from errors import DuplicateKeyError, TransientStoreError
from filters import CatalogFilter
from sorting import resolve_sort
from store import MongoProductStore

PRODUCT_ID = "64b7f0c2a1b2c3d4e5f60718"


@pytest.fixture
def collection():
    collection = MagicMock()
    cursor = MagicMock()
    cursor.sort.return_value = cursor
    cursor.skip.return_value = cursor
    cursor.limit.return_value = cursor
    cursor.to_list = AsyncMock(return_value=[{"name": "Kit"}])
    collection.find.return_value = cursor
    collection.count_documents = AsyncMock(return_value=7)
    collection.find_one = AsyncMock(return_value=None)
    collection.find_one_and_update = AsyncMock(return_value={"_id": ObjectId(PRODUCT_ID)})
    collection.insert_one = AsyncMock(return_value=MagicMock(inserted_id=ObjectId(PRODUCT_ID)))
    collection.create_indexes = AsyncMock(return_value=["slug_unique"])
    collection.database.command = AsyncMock(return_value={"ok": 1})
    return collection


class TestQueries:

    @pytest.mark.asyncio
    async def test_find_with_search(self, collection):
        store = MongoProductStore(collection)
        predicate = CatalogFilter(category="templates", search="dashboard")
        docs = await store.find(predicate, resolve_sort("price-low", "dashboard"), 12, 12)

        assert docs == [{"name": "Kit"}]
        query, projection = collection.find.call_args.args
        assert query == {"isActive": True, "category": "templates", "$text": {"$search": "dashboard"}}
        assert projection == {"files": 0, "score": {"$meta": "textScore"}}

        cursor = collection.find.return_value
        cursor.sort.assert_called_once_with([
            ("score", {"$meta": "textScore"}),
            ("price", 1),
            ("_id", -1),
        ])
        cursor.skip.assert_called_once_with(12)
        cursor.limit.assert_called_once_with(12)

    @pytest.mark.asyncio
    async def test_find_without_search(self, collection):
        store = MongoProductStore(collection)
        await store.find(CatalogFilter(), resolve_sort("popular"), 0, 5)

        _, projection = collection.find.call_args.args
        assert projection == {"files": 0}
        collection.find.return_value.sort.assert_called_once_with([
            ("stats.sales", -1),
            ("stats.views", -1),
            ("_id", -1),
        ])

    @pytest.mark.asyncio
    async def test_count_uses_same_predicate(self, collection):
        store = MongoProductStore(collection)
        predicate = CatalogFilter(min_price=10, max_price=50)
        assert await store.count(predicate) == 7
        collection.count_documents.assert_awaited_once_with(predicate.to_mongo())


class TestWrites:

    @pytest.mark.asyncio
    async def test_insert_sets_id(self, collection):
        store = MongoProductStore(collection)
        doc = await store.insert({"name": "Kit", "slug": "kit"})
        assert doc["_id"] == ObjectId(PRODUCT_ID)

    @pytest.mark.asyncio
    async def test_duplicate_key_translated(self, collection):
        collection.insert_one.side_effect = mongo_errors.DuplicateKeyError(
            "E11000 duplicate key error", 11000, {"keyValue": {"slug": "kit"}}
        )
        store = MongoProductStore(collection)
        with pytest.raises(DuplicateKeyError) as exc_info:
            await store.insert({"name": "Kit", "slug": "kit"})
        assert exc_info.value.key == {"slug": "kit"}

    @pytest.mark.asyncio
    async def test_set_and_inc_in_one_update(self, collection):
        store = MongoProductStore(collection)
        await store.update_atomic(PRODUCT_ID, set_fields={"price": 5}, increments={"stats.views": 1})
        collection.find_one_and_update.assert_awaited_once_with(
            {"_id": ObjectId(PRODUCT_ID)},
            {"$set": {"price": 5}, "$inc": {"stats.views": 1}},
            return_document=ReturnDocument.AFTER,
        )

    @pytest.mark.asyncio
    async def test_invalid_id_skips_store(self, collection):
        store = MongoProductStore(collection)
        assert await store.update_atomic("not-an-id", increments={"stats.views": 1}) is None
        assert await store.apply_rating("not-an-id", 4) is None
        collection.find_one_and_update.assert_not_called()

    @pytest.mark.asyncio
    async def test_rating_is_single_pipeline_update(self, collection):
        store = MongoProductStore(collection)
        await store.apply_rating(PRODUCT_ID, 4)

        (criteria, pipeline), kwargs = collection.find_one_and_update.call_args
        assert criteria == {"_id": ObjectId(PRODUCT_ID)}
        assert isinstance(pipeline, list) and len(pipeline) == 1
        assert set(pipeline[0]["$set"]) == {"stats.rating.average", "stats.rating.count"}
        assert kwargs["return_document"] == ReturnDocument.AFTER


class TestInfrastructure:

    @pytest.mark.asyncio
    async def test_connection_failure_is_transient(self, collection):
        collection.count_documents.side_effect = mongo_errors.ServerSelectionTimeoutError("no servers")
        store = MongoProductStore(collection)
        with pytest.raises(TransientStoreError):
            await store.count(CatalogFilter())

    @pytest.mark.asyncio
    async def test_ping(self, collection):
        assert await MongoProductStore(collection).ping() is True
        collection.database.command.assert_awaited_once_with("ping")

    @pytest.mark.asyncio
    async def test_ensure_indexes(self, collection):
        await MongoProductStore(collection).ensure_indexes()
        collection.create_indexes.assert_awaited_once_with(database.PRODUCT_INDEXES)

    def test_index_layout(self):
        documents = {idx.document["name"]: idx.document for idx in database.PRODUCT_INDEXES}
        assert documents["slug_unique"]["unique"] is True
        assert documents["product_text"]["weights"] == database.TEXT_WEIGHTS
        assert database.TEXT_WEIGHTS["name"] > database.TEXT_WEIGHTS["tags"]
