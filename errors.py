"""
Error taxonomy for the catalog engine.

Everything raised across the catalog boundary is a CatalogError so the service
layer can map it to a response without guessing.
"""
from typing import Any, Dict, List, Optional


class CatalogError(Exception):
    """Base class for all catalog failures."""

    message = "Catalog error"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.message)
        self.message = message or self.message


class ValidationError(CatalogError):
    """Malformed input. Lists every offending field, not just the first."""

    message = "Validation failed"

    def __init__(self, errors: List[Dict[str, Any]], message: Optional[str] = None):
        super().__init__(message)
        self.errors = errors

    @classmethod
    def from_pydantic(cls, exc, message: Optional[str] = None) -> "ValidationError":
        errors = []
        for err in exc.errors():
            loc = [str(part) for part in err.get("loc", ()) if part != "__root__"]
            errors.append({
                "field": ".".join(loc) or None,
                "message": err.get("msg", "Invalid value"),
            })
        return cls(errors, message)

    @property
    def fields(self) -> List[str]:
        return [e["field"] for e in self.errors]


class NotFound(CatalogError):
    message = "Product not found"


class DuplicateSlug(CatalogError):
    message = "Product with this name already exists"

    def __init__(self, slug: str, message: Optional[str] = None):
        super().__init__(message)
        self.slug = slug


class TransientStoreError(CatalogError):
    """The document store failed for infrastructure reasons. Reads are safe to retry."""

    message = "Document store unavailable"


class QueryTimeout(TransientStoreError):
    message = "Catalog query timed out"


class UnexpectedError(CatalogError):
    message = "Unexpected catalog error"

    def __init__(self, operation: str, message: Optional[str] = None):
        super().__init__(message)
        self.operation = operation


class DuplicateKeyError(Exception):
    """Raised by a store when a unique index rejects a write."""

    def __init__(self, key: Dict[str, Any]):
        super().__init__(f"duplicate key: {key}")
        self.key = key
