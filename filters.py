"""
Filter compiler: untrusted listing parameters -> typed predicate + page request.
"""
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from pydantic import Field, ValidationError as PydanticValidationError, field_validator

from errors import ValidationError
from schemas import AppliedFilters, CatalogModel, Category
from sorting import DEFAULT_SORT, SORT_KEYS

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 12
MAX_LIMIT = 100
MAX_SEARCH_LENGTH = 100


class CatalogQuery(CatalogModel):
    """Raw listing parameters as they arrive from the query string."""

    page: int = Field(DEFAULT_PAGE, ge=1)
    limit: int = Field(DEFAULT_LIMIT, ge=1, le=MAX_LIMIT)
    category: Optional[Category] = None
    min_price: Optional[float] = Field(None, ge=0, allow_inf_nan=False)
    max_price: Optional[float] = Field(None, ge=0, allow_inf_nan=False)
    sort: str = DEFAULT_SORT
    search: Optional[str] = Field(None, min_length=1, max_length=MAX_SEARCH_LENGTH)
    featured: bool = False

    @field_validator("sort", mode="before")
    @classmethod
    def _known_sort(cls, value):
        # unknown keys fall back to the default ordering
        if isinstance(value, str) and value in SORT_KEYS:
            return value
        return DEFAULT_SORT

    @field_validator("search", mode="before")
    @classmethod
    def _trim_search(cls, value):
        return value.strip() if isinstance(value, str) else value


@dataclass(frozen=True)
class CatalogFilter:
    """Predicate over product documents. Inactive products never match."""

    category: Optional[str] = None
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    featured: bool = False
    search: Optional[str] = None

    def to_mongo(self) -> Dict[str, Any]:
        query: Dict[str, Any] = {"isActive": True}
        if self.category is not None:
            query["category"] = self.category
        if self.min_price is not None or self.max_price is not None:
            query["price"] = {}
            if self.min_price is not None:
                query["price"]["$gte"] = self.min_price
            if self.max_price is not None:
                query["price"]["$lte"] = self.max_price
        if self.featured:
            query["isFeatured"] = True
        if self.search:
            query["$text"] = {"$search": self.search}
        return query


@dataclass(frozen=True)
class CatalogRequest:
    filter: CatalogFilter
    page: int
    limit: int
    sort: str

    @property
    def applied(self) -> AppliedFilters:
        return AppliedFilters(
            category=self.filter.category,
            min_price=self.filter.min_price,
            max_price=self.filter.max_price,
            search=self.filter.search,
            sort=self.sort,
            featured=self.filter.featured,
        )


def compile_filters(params: Optional[Mapping[str, Any]] = None) -> CatalogRequest:
    """Validate listing parameters and build the catalog request.

    Raises ValidationError naming every malformed parameter. An inverted price
    range is not an error; it simply matches nothing.
    """
    raw = {k: v for k, v in (params or {}).items() if v is not None}
    try:
        query = CatalogQuery.model_validate(raw)
    except PydanticValidationError as exc:
        raise ValidationError.from_pydantic(exc, "Invalid query parameters") from exc

    return CatalogRequest(
        filter=CatalogFilter(
            category=query.category,
            min_price=query.min_price,
            max_price=query.max_price,
            featured=query.featured,
            search=query.search,
        ),
        page=query.page,
        limit=query.limit,
        sort=query.sort,
    )
