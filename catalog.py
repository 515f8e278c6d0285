"""
Catalog query executor and product write path.

`Catalog` is what the HTTP layer talks to. Reads compile the listing parameters,
resolve the ordering, and run the windowed fetch and the count concurrently.
Writes validate the payload, apply the product invariants and hand the result to
the store. Usage counters are bumped in detached tasks that never affect the
request they were attached to.
"""
import asyncio
import functools
import logging
import re
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, NamedTuple, Optional, Set, Union

from bson import ObjectId
from pydantic import ValidationError as PydanticValidationError

from config import Config
from errors import (
    CatalogError,
    DuplicateKeyError,
    DuplicateSlug,
    NotFound,
    QueryTimeout,
    UnexpectedError,
    ValidationError,
)
from filters import compile_filters
from invariants import ProductCounters, reconcile_primary_image, require_slug
from pagination import paginate, window
from schemas import CatalogPage, DownloadLinks, Product, ProductCreate, ProductUpdate, RatingPayload
from sorting import resolve_sort
from store import ProductStore, as_object_id

logger = logging.getLogger(__name__)

OBJECT_ID_SHAPE = re.compile(r"[0-9a-fA-F]{24}")


class ById(NamedTuple):
    object_id: ObjectId


class BySlug(NamedTuple):
    slug: str


def parse_identifier(identifier: str) -> Union[ById, BySlug]:
    """24 hex characters is a store id; anything else is a slug."""
    if OBJECT_ID_SHAPE.fullmatch(identifier):
        return ById(ObjectId(identifier))
    return BySlug(identifier)


def _fields_summary(fields) -> str:
    # field names only; values may carry upload paths
    if isinstance(fields, Mapping):
        return "fields=" + ",".join(sorted(str(k) for k in fields))
    return f"fields=<{type(fields).__name__}>"


def catalog_operation(summarize: Callable[..., str]):
    """Let CatalogErrors through; log anything else with context and wrap it."""

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(self, *args, **kwargs):
            try:
                return await func(self, *args, **kwargs)
            except CatalogError:
                raise
            except Exception as exc:
                logger.exception("Unexpected error in %s (%s)", func.__name__, summarize(*args, **kwargs))
                raise UnexpectedError(func.__name__) from exc

        return wrapper

    return decorator


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Catalog:
    def __init__(self, store: ProductStore, query_timeout: Optional[float] = None):
        self.store = store
        self.counters = ProductCounters(store)
        self.query_timeout = query_timeout if query_timeout is not None else Config.QUERY_TIMEOUT
        self._background: Set[asyncio.Task] = set()

    # Reads

    @catalog_operation(lambda params=None: f"params={dict(params or {})}")
    async def list_products(self, params: Optional[Mapping[str, Any]] = None) -> CatalogPage:
        request = compile_filters(params)
        sort = resolve_sort(request.sort, request.filter.search)
        skip, limit = window(request.page, request.limit)

        try:
            docs, total = await asyncio.wait_for(
                asyncio.gather(
                    self.store.find(request.filter, sort, skip, limit),
                    self.store.count(request.filter),
                ),
                timeout=self.query_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Listing timed out after %ss (%s)", self.query_timeout, request.applied)
            raise QueryTimeout()

        return CatalogPage(
            data=[Product.model_validate(doc) for doc in docs],
            pagination=paginate(request.page, request.limit, total),
            filters=request.applied,
        )

    async def list_featured(self, limit: Any = None) -> CatalogPage:
        """Featured products only; limit is validated like any listing limit."""
        return await self.list_products({"featured": True, "limit": limit})

    @catalog_operation(lambda identifier: f"identifier={identifier!r}")
    async def get_product(self, identifier: str) -> Product:
        """Active product by id or slug. Schedules a view count on success."""
        doc = await self._lookup(identifier)
        if doc is None or not doc.get("isActive"):
            raise NotFound()
        product = Product.model_validate(doc)
        self.record_view(product.id)
        return product

    async def _lookup(self, identifier: str) -> Optional[dict]:
        ref = parse_identifier(identifier)
        if isinstance(ref, ById):
            doc = await self.store.find_one({"_id": ref.object_id})
            if doc is not None:
                return doc
            # a slug can itself look like an id
            return await self.store.find_one({"slug": identifier})
        return await self.store.find_one({"slug": ref.slug})

    async def _active_by_id(self, product_id: str) -> dict:
        oid = as_object_id(product_id)
        doc = await self.store.find_one({"_id": oid}) if oid is not None else None
        if doc is None or not doc.get("isActive"):
            raise NotFound()
        return doc

    # Writes

    @staticmethod
    def _validate(model, fields):
        if isinstance(fields, model):
            return fields
        try:
            return model.model_validate(fields)
        except PydanticValidationError as exc:
            raise ValidationError.from_pydantic(exc) from exc

    @staticmethod
    def _require_actor(actor_id: Optional[str], field: str) -> None:
        if not actor_id:
            raise ValidationError([{"field": field, "message": "An acting user is required"}])

    @catalog_operation(lambda fields, actor_id=None: _fields_summary(fields))
    async def create_product(self, fields: Union[Mapping[str, Any], ProductCreate], actor_id: str) -> Product:
        self._require_actor(actor_id, "createdBy")
        payload = self._validate(ProductCreate, fields)
        now = _now()

        data = payload.model_dump()
        data.update(
            slug=require_slug(payload.name),
            images=reconcile_primary_image(payload.images),
            created_by=actor_id,
            created_at=now,
            updated_at=now,
        )
        product = Product.model_validate(data)

        try:
            doc = await self.store.insert(product.to_document())
        except DuplicateKeyError as exc:
            if "slug" in exc.key:
                logger.info("Slug collision on create: %s", product.slug)
                raise DuplicateSlug(product.slug) from exc
            raise

        logger.info("Product %s created by %s", doc["_id"], actor_id)
        return Product.model_validate(doc)

    @catalog_operation(lambda product_id, fields, actor_id=None: f"id={product_id} {_fields_summary(fields)}")
    async def update_product(self, product_id: str, fields: Union[Mapping[str, Any], ProductUpdate],
                             actor_id: str) -> Product:
        self._require_actor(actor_id, "updatedBy")
        payload = self._validate(ProductUpdate, fields)

        oid = as_object_id(product_id)
        existing = await self.store.find_one({"_id": oid}) if oid is not None else None
        if existing is None:
            raise NotFound()

        set_fields = {}
        if "name" in payload.model_fields_set:
            slug = require_slug(payload.name)
            if slug != existing.get("slug"):
                set_fields["slug"] = slug
        if "images" in payload.model_fields_set:
            payload = payload.model_copy(update={"images": reconcile_primary_image(payload.images)})

        set_fields.update(payload.model_dump(by_alias=True, include=payload.model_fields_set))
        set_fields["updatedBy"] = actor_id
        set_fields["updatedAt"] = _now()

        try:
            doc = await self.store.update_atomic(oid, set_fields=set_fields)
        except DuplicateKeyError as exc:
            if "slug" in exc.key:
                logger.info("Slug collision on update of %s: %s", product_id, set_fields.get("slug"))
                raise DuplicateSlug(set_fields.get("slug", "")) from exc
            raise
        if doc is None:
            raise NotFound()
        return Product.model_validate(doc)

    @catalog_operation(lambda product_id, actor_id=None: f"id={product_id}")
    async def soft_delete_product(self, product_id: str, actor_id: str) -> None:
        """Active -> inactive. Repeating it is harmless; there is no way back."""
        self._require_actor(actor_id, "updatedBy")
        doc = await self.store.update_atomic(
            product_id,
            set_fields={"isActive": False, "updatedBy": actor_id, "updatedAt": _now()},
        )
        if doc is None:
            raise NotFound()
        logger.info("Product %s deactivated by %s", product_id, actor_id)

    @catalog_operation(lambda product_id, rating=None: f"id={product_id} rating={rating}")
    async def rate_product(self, product_id: str, rating: float) -> Product:
        payload = self._validate(RatingPayload, {"rating": rating})
        await self._active_by_id(product_id)
        doc = await self.counters.add_rating(product_id, payload.rating)
        return Product.model_validate(doc)

    @catalog_operation(lambda product_id: f"id={product_id}")
    async def download_product(self, product_id: str) -> DownloadLinks:
        doc = await self._active_by_id(product_id)
        product = Product.model_validate(doc)
        self.record_download(product.id)
        return DownloadLinks(
            files=product.files,
            download_url=product.files[0].url if product.files else None,
        )

    # Fire-and-forget counters

    def record_view(self, product_id: str) -> None:
        self._fire_and_forget("view", product_id, self.counters.increment_views(product_id))

    def record_download(self, product_id: str) -> None:
        self._fire_and_forget("download", product_id, self.counters.increment_downloads(product_id))

    def record_sale(self, product_id: str) -> None:
        self._fire_and_forget("sale", product_id, self.counters.increment_sales(product_id))

    def _fire_and_forget(self, counter: str, product_id: str, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(functools.partial(self._counter_done, counter, product_id))

    def _counter_done(self, counter: str, product_id: str, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("Error incrementing %s count for product %s: %r", counter, product_id, exc)

    @property
    def pending(self) -> int:
        return len(self._background)

    async def drain(self) -> None:
        """Wait for in-flight counter updates."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def health(self) -> bool:
        return await self.store.ping()
