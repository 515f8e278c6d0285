"""
MongoDB connection and index layout for the catalog.

The client is created lazily by pymongo; nothing connects until the first
operation. When DATABASE_URL is not configured `db` stays None and catalog
operations report the store as unavailable.
"""
import logging
from typing import Optional

from pymongo import ASCENDING, DESCENDING, TEXT, AsyncMongoClient, IndexModel
from pymongo.asynchronous.database import AsyncDatabase

from config import Config

logger = logging.getLogger(__name__)

PRODUCT_COLLECTION = "product"

# relevance weights of the full-text index; a name hit outranks a tag hit
TEXT_WEIGHTS = {
    "name": 10,
    "tags": 5,
    "shortDescription": 3,
    "description": 1,
}

PRODUCT_INDEXES = [
    IndexModel([("slug", ASCENDING)], unique=True, name="slug_unique"),
    IndexModel([("category", ASCENDING)]),
    IndexModel([("isActive", ASCENDING)]),
    IndexModel([("isFeatured", ASCENDING)]),
    IndexModel([("price", ASCENDING)]),
    IndexModel([("stats.rating.average", DESCENDING)]),
    IndexModel([("createdAt", DESCENDING)]),
    IndexModel([("tags", ASCENDING)]),
    IndexModel(
        [(field, TEXT) for field in TEXT_WEIGHTS],
        weights=TEXT_WEIGHTS,
        name="product_text",
    ),
]

client: Optional[AsyncMongoClient] = None
db: Optional[AsyncDatabase] = None

if Config.DATABASE_URL:
    try:
        client = AsyncMongoClient(Config.DATABASE_URL, tz_aware=True)
        db = client[Config.DATABASE_NAME]
    except Exception as e:
        logger.warning(f"Failed to create MongoDB client: {e}; catalog store unavailable")
        client = None
        db = None
else:
    logger.info("DATABASE_URL not set; running without MongoDB")


async def ensure_indexes(collection) -> None:
    names = await collection.create_indexes(PRODUCT_INDEXES)
    logger.info("Product indexes ready: %s", ", ".join(names))
