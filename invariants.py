"""
Write-path invariants for products.

These run explicitly in the create/update path before anything reaches the store:
slug derivation, primary-image reconciliation, and the atomic counter updates that
are the only way usage statistics change.
"""
import logging
from typing import List, Sequence

from slugify import slugify

from errors import NotFound, ValidationError
from schemas import ProductImage

logger = logging.getLogger(__name__)

COUNTER_FIELDS = {
    "views": "stats.views",
    "downloads": "stats.downloads",
    "sales": "stats.sales",
}


def derive_slug(name: str) -> str:
    """Transliterate to ASCII, lowercase, collapse non-alphanumerics to single hyphens, trim."""
    return slugify(name, lowercase=True)


def require_slug(name: str) -> str:
    slug = derive_slug(name)
    if not slug:
        raise ValidationError([{
            "field": "name",
            "message": "Product name must contain at least one letter or digit",
        }])
    return slug


def reconcile_primary_image(images: Sequence[ProductImage]) -> List[ProductImage]:
    """Return a copy of images with exactly one primary entry (none if empty).

    The earliest image already marked primary keeps the flag; if none is marked
    the first image becomes primary.
    """
    if not images:
        return []
    primary_index = next((i for i, img in enumerate(images) if img.is_primary), 0)
    return [
        img.model_copy(update={"is_primary": i == primary_index})
        for i, img in enumerate(images)
    ]


class ProductCounters:
    """Atomic usage-statistics updates expressed as deltas applied by the store."""

    def __init__(self, store):
        self.store = store

    async def increment(self, product_id: str, counter: str, amount: int = 1) -> None:
        if counter not in COUNTER_FIELDS:
            raise ValueError(f"unknown counter: {counter}")
        if amount < 1:
            raise ValueError("counters only move forward")
        doc = await self.store.update_atomic(
            product_id, increments={COUNTER_FIELDS[counter]: amount}
        )
        if doc is None:
            raise NotFound()

    async def increment_views(self, product_id: str) -> None:
        await self.increment(product_id, "views")

    async def increment_downloads(self, product_id: str) -> None:
        await self.increment(product_id, "downloads")

    async def increment_sales(self, product_id: str) -> None:
        await self.increment(product_id, "sales")

    async def add_rating(self, product_id: str, rating: float) -> dict:
        if not 1 <= rating <= 5:
            raise ValidationError([{"field": "rating", "message": "Rating must be between 1 and 5"}])
        doc = await self.store.apply_rating(product_id, rating)
        if doc is None:
            raise NotFound()
        logger.debug("Rating %s recorded for product %s", rating, product_id)
        return doc
