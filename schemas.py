"""
Database Schemas for the Digital Goods Catalog

Each Pydantic model below describes either a MongoDB document (Product lives in the
"product" collection) or a payload exchanged with the service layer. Documents are
persisted with camelCase keys (isActive, stats.rating.average, ...); Python code
uses the snake_case attribute names.
"""
from __future__ import annotations

import math
from datetime import datetime
from enum import Enum
from typing import Any, List, Optional

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator
from pydantic.alias_generators import to_camel


class Category(str, Enum):
    TEMPLATES = "templates"
    COMPONENTS = "components"
    THEMES = "themes"
    PLUGINS = "plugins"
    COURSES = "courses"
    EBOOKS = "ebooks"
    GRAPHICS = "graphics"
    OTHER = "other"


class License(str, Enum):
    PERSONAL = "personal"
    COMMERCIAL = "commercial"
    EXTENDED = "extended"


class Difficulty(str, Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


class CatalogModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
    )


def split_list(value: Any) -> Any:
    """Accept "a, b,c" as well as a list; trims entries and drops empty ones."""
    if value is None:
        return value
    if isinstance(value, str):
        value = value.split(",")
    if isinstance(value, (list, tuple)):
        return [v.strip() if isinstance(v, str) else v for v in value
                if not (isinstance(v, str) and not v.strip())]
    return value


class ProductImage(CatalogModel):
    url: str = Field(..., min_length=1, description="Image URL")
    alt: Optional[str] = Field(None, description="Alternative text")
    is_primary: bool = Field(False, description="Primary image flag")


class ProductFile(CatalogModel):
    name: Optional[str] = None
    url: Optional[str] = None
    size: Optional[int] = Field(None, ge=0, description="Size in bytes")
    type: Optional[str] = None


class Rating(CatalogModel):
    average: float = Field(0, ge=0, le=5)
    count: int = Field(0, ge=0)


class ProductStats(CatalogModel):
    views: int = Field(0, ge=0)
    downloads: int = Field(0, ge=0)
    sales: int = Field(0, ge=0)
    rating: Rating = Field(default_factory=Rating)


class Seo(CatalogModel):
    meta_title: Optional[str] = None
    meta_description: Optional[str] = None
    keywords: List[str] = Field(default_factory=list)


class Product(CatalogModel):
    id: Optional[str] = Field(None, alias="_id", description="Store-assigned identifier")
    name: str = Field(..., description="Product name")
    slug: str = Field("", description="URL-safe unique slug derived from the name")
    description: str = Field("", description="Long description")
    short_description: Optional[str] = None
    price: float = Field(..., ge=0, description="Price in dollars")
    original_price: Optional[float] = Field(None, ge=0, description="Price before discount")
    category: Category
    tags: List[str] = Field(default_factory=list)
    images: List[ProductImage] = Field(default_factory=list)
    # downloadable payload, only handed out through the download path
    files: List[ProductFile] = Field(default_factory=list, exclude=True)
    demo_url: Optional[str] = None
    github_url: Optional[str] = None
    documentation: Optional[str] = None
    features: List[str] = Field(default_factory=list)
    tech_stack: List[str] = Field(default_factory=list)
    requirements: List[str] = Field(default_factory=list)
    what_included: List[str] = Field(default_factory=list)
    is_active: bool = True
    is_featured: bool = False
    is_digital: bool = True
    download_limit: int = Field(-1, description="-1 means unlimited")
    license: License = License.PERSONAL
    difficulty: Difficulty = Difficulty.BEGINNER
    stats: ProductStats = Field(default_factory=ProductStats)
    seo: Optional[Seo] = None
    created_by: str
    updated_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("id", "created_by", "updated_by", mode="before")
    @classmethod
    def _object_id_to_str(cls, value):
        if isinstance(value, ObjectId):
            return str(value)
        return value

    @computed_field
    @property
    def discount_percentage(self) -> int:
        if self.original_price and self.original_price > self.price:
            # half-up rounding
            return int(math.floor((self.original_price - self.price) / self.original_price * 100 + 0.5))
        return 0

    @computed_field
    @property
    def primary_image(self) -> Optional[ProductImage]:
        for image in self.images:
            if image.is_primary:
                return image
        return self.images[0] if self.images else None

    def to_document(self) -> dict:
        """Persisted shape, without the identifier and derived fields."""
        doc = self.model_dump(
            by_alias=True,
            exclude={"id", "discount_percentage", "primary_image"},
        )
        doc["files"] = [f.model_dump(by_alias=True) for f in self.files]
        return doc


class ProductCreate(CatalogModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str = Field(..., min_length=10, max_length=2000)
    short_description: Optional[str] = Field(None, max_length=200)
    price: float = Field(..., ge=0)
    original_price: Optional[float] = Field(None, ge=0)
    category: Category
    tags: List[str] = Field(default_factory=list)
    images: List[ProductImage] = Field(default_factory=list)
    files: List[ProductFile] = Field(default_factory=list)
    demo_url: Optional[str] = None
    github_url: Optional[str] = None
    documentation: Optional[str] = None
    features: List[str] = Field(default_factory=list)
    tech_stack: List[str] = Field(default_factory=list)
    requirements: List[str] = Field(default_factory=list)
    what_included: List[str] = Field(default_factory=list)
    is_featured: bool = False
    is_digital: bool = True
    download_limit: int = Field(-1, ge=-1)
    license: License = License.PERSONAL
    difficulty: Difficulty = Difficulty.BEGINNER
    seo: Optional[Seo] = None

    @field_validator("name", "description", "short_description", mode="before")
    @classmethod
    def _trim(cls, value):
        return value.strip() if isinstance(value, str) else value

    @field_validator("tags", "features", "tech_stack", "requirements", "what_included", mode="before")
    @classmethod
    def _split(cls, value):
        return split_list(value)


class ProductUpdate(CatalogModel):
    """Partial update: only the fields present in the payload are written.

    Server-managed fields (slug, stats, createdBy, isActive) are not part of it.
    A field left out means "unchanged"; an explicit null on a required field is
    rejected by validation.
    """

    name: str = Field(None, min_length=1, max_length=100)
    description: str = Field(None, min_length=10, max_length=2000)
    short_description: Optional[str] = Field(None, max_length=200)
    price: float = Field(None, ge=0)
    original_price: Optional[float] = Field(None, ge=0)
    category: Category = None
    tags: List[str] = None
    images: List[ProductImage] = None
    files: List[ProductFile] = None
    demo_url: Optional[str] = None
    github_url: Optional[str] = None
    documentation: Optional[str] = None
    features: List[str] = None
    tech_stack: List[str] = None
    requirements: List[str] = None
    what_included: List[str] = None
    is_featured: bool = None
    is_digital: bool = None
    download_limit: int = Field(None, ge=-1)
    license: License = None
    difficulty: Difficulty = None
    seo: Optional[Seo] = None

    @field_validator("name", "description", "short_description", mode="before")
    @classmethod
    def _trim(cls, value):
        return value.strip() if isinstance(value, str) else value

    @field_validator("tags", "features", "tech_stack", "requirements", "what_included", mode="before")
    @classmethod
    def _split(cls, value):
        return split_list(value)


class Pagination(CatalogModel):
    current_page: int
    total_pages: int
    total_products: int
    has_next_page: bool
    has_prev_page: bool
    limit: int


class AppliedFilters(CatalogModel):
    category: Optional[Category] = None
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    search: Optional[str] = None
    sort: str = "newest"
    featured: bool = False


class CatalogPage(CatalogModel):
    data: List[Product]
    pagination: Pagination
    filters: AppliedFilters


class DownloadLinks(CatalogModel):
    files: List[ProductFile]
    download_url: Optional[str] = None


class RatingPayload(CatalogModel):
    rating: float = Field(..., ge=1, le=5)
