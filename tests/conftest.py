"""
Shared fixtures for the catalog test suite.
"""

import pytest

from catalog import Catalog
from memory_store import InMemoryProductStore

ACTOR = "64b7f0c2a1b2c3d4e5f60718"


def product_fields(**overrides):
    fields = {
        "name": "Starter Template",
        "description": "A clean starter template for landing pages",
        "price": 10.0,
        "category": "templates",
    }
    fields.update(overrides)
    return fields


@pytest.fixture
def store():
    return InMemoryProductStore()


@pytest.fixture
def catalog(store):
    return Catalog(store, query_timeout=5)


@pytest.fixture
def make_product(catalog):
    """Create a product through the real write path."""

    async def _make(**overrides):
        return await catalog.create_product(product_fields(**overrides), ACTOR)

    return _make
