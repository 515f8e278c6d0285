import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import Body, Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import database
from catalog import Catalog
from config import Config, setup_logging
from errors import (
    CatalogError,
    DuplicateSlug,
    NotFound,
    QueryTimeout,
    TransientStoreError,
    ValidationError,
)
from memory_store import InMemoryProductStore
from store import MongoProductStore, UnavailableProductStore

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"


def build_catalog() -> Catalog:
    if Config.CATALOG_STORE == "memory":
        logger.warning("CATALOG_STORE=memory; products live in this process only")
        store = InMemoryProductStore()
    elif database.db is not None:
        store = MongoProductStore.from_database(database.db)
    else:
        logger.error("No document store configured; catalog requests will fail with 503")
        store = UnavailableProductStore()
    return Catalog(store)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    catalog = build_catalog()
    app.state.catalog = catalog
    logger.info("Catalog backed by %s store", catalog.store.name)
    try:
        await catalog.store.ensure_indexes()
    except TransientStoreError:
        logger.warning("Could not create product indexes; they should already exist")

    yield

    await catalog.drain()
    if database.client is not None:
        await database.client.close()


app = FastAPI(title="Digital Goods Catalog API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_catalog(request: Request) -> Catalog:
    return request.app.state.catalog


ERROR_STATUS = [
    (ValidationError, 400),
    (NotFound, 404),
    (DuplicateSlug, 409),
    (QueryTimeout, 504),
    (TransientStoreError, 503),
]


@app.exception_handler(CatalogError)
async def catalog_error_handler(request: Request, exc: CatalogError):
    status_code = next((code for cls, code in ERROR_STATUS if isinstance(exc, cls)), 500)
    content: Dict[str, Any] = {"success": False, "message": exc.message}
    if isinstance(exc, ValidationError):
        content["errors"] = exc.errors
    if isinstance(exc, DuplicateSlug):
        content["slug"] = exc.slug
    return JSONResponse(status_code=status_code, content=content)


def _dump(model) -> Dict[str, Any]:
    return model.model_dump(by_alias=True, mode="json")


@app.get("/")
def read_root():
    return {"message": "Digital Goods Catalog API is running"}


@app.get("/test")
async def test_database(catalog: Catalog = Depends(get_catalog)):
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if Config.DATABASE_URL else "❌ Not Set",
        "database_name": None,
        "store": catalog.store.name,
        "connection_status": "Not Connected",
    }
    try:
        if database.db is not None:
            response["database_name"] = getattr(database.db, "name", None) or "unknown"
        await catalog.health()
        response["database"] = "✅ Connected & Working"
        response["connection_status"] = "Connected"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:50]}"
    return response


SAMPLE_PRODUCTS = [
    {
        "name": "Admin Dashboard Pro",
        "description": "Responsive admin dashboard template with charts, tables and auth pages",
        "shortDescription": "Admin dashboard template",
        "price": 49.0,
        "originalPrice": 79.0,
        "category": "templates",
        "tags": ["dashboard", "admin", "react"],
        "images": [{"url": "https://images.unsplash.com/photo-1551288049-bebda4e38f71", "alt": "Dashboard"}],
        "techStack": ["React", "Tailwind"],
        "isFeatured": True,
        "license": "commercial",
    },
    {
        "name": "UI Component Kit",
        "description": "Eighty accessible UI components with dark mode support",
        "price": 29.0,
        "category": "components",
        "tags": ["ui", "components", "accessibility"],
        "difficulty": "intermediate",
    },
    {
        "name": "Python for Data Pipelines",
        "description": "Video course on building reliable batch and streaming data pipelines",
        "price": 99.0,
        "category": "courses",
        "tags": ["python", "data", "etl"],
        "difficulty": "advanced",
    },
]


# Seed minimal data if empty
@app.post("/seed")
async def seed(catalog: Catalog = Depends(get_catalog)):
    try:
        page = await catalog.list_products({"limit": 1})
        created = 0
        if page.pagination.total_products == 0:
            for p in SAMPLE_PRODUCTS:
                await catalog.create_product(p, SYSTEM_ACTOR)
                created += 1
        return {"status": "ok", "created": created}
    except CatalogError:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


# Catalog endpoints
@app.get("/products")
async def list_products(
    page: Optional[str] = None,
    limit: Optional[str] = None,
    category: Optional[str] = None,
    min_price: Optional[str] = Query(None, alias="minPrice"),
    max_price: Optional[str] = Query(None, alias="maxPrice"),
    sort: Optional[str] = None,
    search: Optional[str] = None,
    featured: Optional[str] = None,
    catalog: Catalog = Depends(get_catalog),
):
    # raw strings: the catalog validates and reports every bad parameter at once
    params = {
        "page": page,
        "limit": limit,
        "category": category,
        "minPrice": min_price,
        "maxPrice": max_price,
        "sort": sort,
        "search": search,
        "featured": featured,
    }
    result = await catalog.list_products(params)
    return {"success": True, **_dump(result)}


@app.get("/products/featured")
async def list_featured(limit: Optional[str] = None, catalog: Catalog = Depends(get_catalog)):
    result = await catalog.list_featured(limit)
    return {"success": True, **_dump(result)}


@app.get("/products/{identifier}")
async def get_product(identifier: str, catalog: Catalog = Depends(get_catalog)):
    product = await catalog.get_product(identifier)
    return {"success": True, "data": _dump(product)}


@app.post("/products", status_code=201)
async def create_product(
    payload: Dict[str, Any] = Body(...),
    actor_id: Optional[str] = Header(None, alias="X-Actor-Id"),
    catalog: Catalog = Depends(get_catalog),
):
    product = await catalog.create_product(payload, actor_id)
    return {"success": True, "message": "Product created successfully", "data": _dump(product)}


@app.put("/products/{product_id}")
async def update_product(
    product_id: str,
    payload: Dict[str, Any] = Body(...),
    actor_id: Optional[str] = Header(None, alias="X-Actor-Id"),
    catalog: Catalog = Depends(get_catalog),
):
    product = await catalog.update_product(product_id, payload, actor_id)
    return {"success": True, "message": "Product updated successfully", "data": _dump(product)}


@app.delete("/products/{product_id}")
async def delete_product(
    product_id: str,
    actor_id: Optional[str] = Header(None, alias="X-Actor-Id"),
    catalog: Catalog = Depends(get_catalog),
):
    await catalog.soft_delete_product(product_id, actor_id)
    return {"success": True, "message": "Product deleted successfully"}


@app.get("/products/{product_id}/download")
async def download_product(product_id: str, catalog: Catalog = Depends(get_catalog)):
    links = await catalog.download_product(product_id)
    return {"success": True, "message": "Download links generated", "data": _dump(links)}


@app.post("/products/{product_id}/rating")
async def rate_product(
    product_id: str,
    payload: Dict[str, Any] = Body(...),
    catalog: Catalog = Depends(get_catalog),
):
    product = await catalog.rate_product(product_id, payload.get("rating"))
    return {"success": True, "data": _dump(product)}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=Config.PORT)
