"""
HTTP glue: routes delegate to the catalog and map catalog errors to status codes.
"""

import pytest
from fastapi.testclient import TestClient

import database
from catalog import Catalog
from config import Config
from conftest import ACTOR, product_fields
from errors import TransientStoreError
from main import app, get_catalog
from memory_store import InMemoryProductStore

HEADERS = {"X-Actor-Id": ACTOR}


@pytest.fixture
def client():
    catalog = Catalog(InMemoryProductStore())
    app.dependency_overrides[get_catalog] = lambda: catalog
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _create(client, **overrides):
    response = client.post("/products", json=product_fields(**overrides), headers=HEADERS)
    assert response.status_code == 201, response.text
    return response.json()["data"]


def test_root(client):
    assert client.get("/").status_code == 200


def test_health(client):
    body = client.get("/test").json()
    assert body["store"] == "memory"
    assert body["connection_status"] == "Connected"


def test_seed_only_when_empty(client):
    assert client.post("/seed").json() == {"status": "ok", "created": 3}
    assert client.post("/seed").json() == {"status": "ok", "created": 0}
    assert client.get("/products").json()["pagination"]["totalProducts"] == 3


def test_list_envelope(client):
    _create(client, name="Mid Template", price=20)
    _create(client, name="Upper Template", price=40)

    response = client.get("/products", params={"sort": "price-low", "minPrice": "10", "limit": "1"})
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert [p["price"] for p in body["data"]] == [20]
    assert body["pagination"] == {
        "currentPage": 1,
        "totalPages": 2,
        "totalProducts": 2,
        "hasNextPage": True,
        "hasPrevPage": False,
        "limit": 1,
    }
    assert body["filters"]["minPrice"] == 10
    assert body["filters"]["sort"] == "price-low"


def test_list_validation_errors(client):
    response = client.get("/products", params={"page": "0", "limit": "1000", "category": "music"})
    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert {e["field"] for e in body["errors"]} == {"page", "limit", "category"}


def test_featured_route(client):
    _create(client, name="Star Kit", isFeatured=True)
    _create(client, name="Plain Kit")
    body = client.get("/products/featured").json()
    assert [p["name"] for p in body["data"]] == ["Star Kit"]


def test_featured_limit_uses_catalog_validation(client):
    response = client.get("/products/featured", params={"limit": "0"})
    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert [e["field"] for e in body["errors"]] == ["limit"]

    assert client.get("/products/featured", params={"limit": "abc"}).status_code == 400
    assert client.get("/products/featured", params={"limit": "3"}).json()["pagination"]["limit"] == 3


def test_get_by_slug_and_not_found(client):
    created = _create(client, name="Admin Dashboard Pro", originalPrice=20, price=15)
    body = client.get("/products/admin-dashboard-pro").json()
    assert body["data"]["_id"] == created["_id"]
    assert body["data"]["discountPercentage"] == 25
    assert "files" not in body["data"]

    assert client.get("/products/64b7f0c2a1b2c3d4e5f60799").status_code == 404


def test_create_conflict_and_validation(client):
    _create(client, name="UI Kit")
    conflict = client.post("/products", json=product_fields(name="ui-kit"), headers=HEADERS)
    assert conflict.status_code == 409
    assert conflict.json()["slug"] == "ui-kit"

    invalid = client.post("/products", json={"name": "", "price": -3}, headers=HEADERS)
    assert invalid.status_code == 400
    assert {"name", "price", "description", "category"} <= {e["field"] for e in invalid.json()["errors"]}


def test_create_requires_actor(client):
    response = client.post("/products", json=product_fields())
    assert response.status_code == 400


def test_update_and_delete(client):
    created = _create(client, name="Blog Theme", category="themes")

    updated = client.put(f"/products/{created['_id']}", json={"name": "Magazine Theme"}, headers=HEADERS)
    assert updated.status_code == 200
    assert updated.json()["data"]["slug"] == "magazine-theme"

    deleted = client.delete(f"/products/{created['_id']}", headers=HEADERS)
    assert deleted.status_code == 200
    assert client.get(f"/products/{created['_id']}").status_code == 404
    assert client.get("/products").json()["data"] == []

    assert client.put("/products/64b7f0c2a1b2c3d4e5f60799", json={"price": 1}, headers=HEADERS).status_code == 404
    assert client.delete("/products/64b7f0c2a1b2c3d4e5f60799", headers=HEADERS).status_code == 404


def test_download_and_rating(client):
    created = _create(client, files=[{"name": "kit.zip", "url": "https://files.example.com/kit.zip"}])

    download = client.get(f"/products/{created['_id']}/download").json()
    assert download["data"]["downloadUrl"] == "https://files.example.com/kit.zip"

    rated = client.post(f"/products/{created['_id']}/rating", json={"rating": 4})
    assert rated.status_code == 200
    assert rated.json()["data"]["stats"]["rating"] == {"average": 4.0, "count": 1}

    assert client.post(f"/products/{created['_id']}/rating", json={"rating": 7}).status_code == 400


def test_store_outage_is_503():
    class Down(InMemoryProductStore):
        async def count(self, predicate):
            raise TransientStoreError()

    catalog = Catalog(Down())
    app.dependency_overrides[get_catalog] = lambda: catalog
    try:
        with TestClient(app) as client:
            response = client.get("/products")
    finally:
        app.dependency_overrides.clear()
    assert response.status_code == 503
    assert response.json()["success"] is False


def test_unconfigured_store_is_503(monkeypatch):
    monkeypatch.setattr(Config, "CATALOG_STORE", "mongodb")
    monkeypatch.setattr(database, "db", None)
    monkeypatch.setattr(database, "client", None)

    with TestClient(app) as client:
        health = client.get("/test").json()
        listing = client.get("/products")
        created = client.post("/products", json=product_fields(), headers=HEADERS)

    assert health["store"] == "unavailable"
    assert health["connection_status"] == "Not Connected"
    assert listing.status_code == 503
    assert listing.json()["success"] is False
    assert created.status_code == 503


def test_memory_store_only_when_asked_for(monkeypatch):
    monkeypatch.setattr(Config, "CATALOG_STORE", "memory")
    monkeypatch.setattr(database, "db", None)
    monkeypatch.setattr(database, "client", None)

    with TestClient(app) as client:
        assert client.get("/test").json()["store"] == "memory"
        assert client.post("/products", json=product_fields(), headers=HEADERS).status_code == 201
        assert client.get("/products").json()["pagination"]["totalProducts"] == 1
