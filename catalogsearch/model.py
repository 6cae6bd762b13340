"""Request, response and catalog data models."""

import math
from datetime import datetime
from enum import Enum
from typing import Any, Mapping

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from .errors import FilterValidationError

# The only facets either search path reports. Both paths always return
# exactly these keys so callers can render filters without checking.
FACET_NAMES = ("category_names", "tags", "is_available", "collection_title")

Facets = dict[str, dict[str, int]]


def empty_facets() -> Facets:
    return {name: {} for name in FACET_NAMES}


def normalize_facets(raw: Mapping[str, Any] | None) -> Facets:
    """Reduce a facet distribution to the fixed facet set with int counts."""
    facets = empty_facets()
    for name in FACET_NAMES:
        values = (raw or {}).get(name) or {}
        facets[name] = {str(value): int(count) for value, count in values.items()}
    return facets


class WireModel(BaseModel):
    """Base for models exchanged with callers (camelCase on the wire)."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


class Category(BaseModel):
    id: str
    name: str
    handle: str | None = None
    parent_id: str | None = None


class Collection(BaseModel):
    id: str
    title: str | None = None
    handle: str | None = None


class Money(WireModel):
    amount: float
    currency_code: str

    @field_validator("currency_code")
    @classmethod
    def _lower_currency(cls, value: str) -> str:
        return value.lower()


class Variant(BaseModel):
    id: str | None = None
    title: str | None = None
    sku: str | None = None
    prices: list[Money] = []
    manage_inventory: bool = True
    inventory_quantity: int | None = None

    @property
    def is_in_stock(self) -> bool:
        """Unmanaged inventory is always sellable; managed needs stock."""
        if not self.manage_inventory:
            return True
        return (self.inventory_quantity or 0) > 0

    def price_for(self, currency_code: str) -> float | None:
        currency_code = currency_code.lower()
        amounts = [p.amount for p in self.prices if p.currency_code == currency_code]
        return min(amounts) if amounts else None


class ProductStatus(str, Enum):
    draft = "draft"
    published = "published"


class Product(BaseModel):
    """A product as read from the relational store."""

    id: str
    title: str
    description: str | None = None
    handle: str | None = None
    thumbnail: str | None = None
    status: ProductStatus = ProductStatus.published
    tags: list[str] = []
    categories: list[Category] = []
    collection: Collection | None = None
    variants: list[Variant] = []
    created_at: datetime | None = None

    @property
    def category_ids(self) -> set[str]:
        return {category.id for category in self.categories}

    @property
    def collection_id(self) -> str | None:
        return self.collection.id if self.collection else None

    @property
    def is_available(self) -> bool:
        return any(variant.is_in_stock for variant in self.variants)

    def min_price(self, currency_code: str) -> float | None:
        """Lowest variant price in the given currency, if any variant has one."""
        prices = [
            price
            for price in (v.price_for(currency_code) for v in self.variants)
            if price is not None
        ]
        return min(prices) if prices else None


class ProductPage(BaseModel):
    """One page of rows from the relational product store."""

    products: list[Product]
    count: int


class RegionContext(BaseModel):
    region_id: str | None = None
    currency_code: str

    @field_validator("currency_code")
    @classmethod
    def _lower_currency(cls, value: str) -> str:
        return value.lower()


class Availability(str, Enum):
    all = "all"
    in_stock = "in_stock"
    out_of_stock = "out_of_stock"


class SortBy(str, Enum):
    created_at = "created_at"
    price_asc = "price_asc"
    price_desc = "price_desc"
    title_asc = "title_asc"
    title_desc = "title_desc"


class FilterRequest(WireModel):
    """The catalog query contract."""

    model_config = ConfigDict(frozen=True)

    query: str | None = None
    category_id: str | None = None
    category_handle: str | None = None
    availability: Availability = Availability.all
    price_min: float | None = Field(default=None, ge=0)
    price_max: float | None = Field(default=None, ge=0)
    tags: list[str] = []
    collection_id: str | None = None
    sort_by: SortBy = SortBy.created_at
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=12, ge=1)
    country_code: str | None = None

    @field_validator("query", "category_id", "category_handle", "collection_id")
    @classmethod
    def _blank_is_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip()
        return value or None

    @field_validator("tags")
    @classmethod
    def _clean_tags(cls, value: list[str]) -> list[str]:
        tags: list[str] = []
        for tag in value:
            tag = tag.strip()
            if tag and tag not in tags:
                tags.append(tag)
        return tags

    @model_validator(mode="after")
    def _check_price_range(self) -> "FilterRequest":
        if (
            self.price_min is not None
            and self.price_max is not None
            and self.price_min > self.price_max
        ):
            raise ValueError("priceMin must not be greater than priceMax")
        return self

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit

    @property
    def category(self) -> str | None:
        """The category reference as given; an explicit id wins over a handle."""
        return self.category_id or self.category_handle

    @classmethod
    def parse(cls, data: Mapping[str, Any]) -> "FilterRequest":
        """Build a request from loose input, raising FilterValidationError."""
        try:
            return cls.model_validate(dict(data))
        except ValidationError as e:
            raise FilterValidationError(str(e)) from e


class CatalogProduct(WireModel):
    """The product projection returned by both search paths."""

    id: str
    title: str
    handle: str | None = None
    description: str | None = None
    thumbnail: str | None = None
    tags: list[str] = []
    category_ids: list[str] = []
    collection_id: str | None = None
    is_available: bool = False
    min_price: Money | None = None
    created_at: datetime | None = None

    @classmethod
    def from_product(cls, product: Product, currency_code: str) -> "CatalogProduct":
        amount = product.min_price(currency_code)
        return cls(
            id=product.id,
            title=product.title,
            handle=product.handle,
            description=product.description,
            thumbnail=product.thumbnail,
            tags=list(product.tags),
            category_ids=sorted(product.category_ids),
            collection_id=product.collection_id,
            is_available=product.is_available,
            min_price=(
                Money(amount=amount, currency_code=currency_code)
                if amount is not None
                else None
            ),
            created_at=product.created_at,
        )


class PriceRange(WireModel):
    min: float | None = None
    max: float | None = None


class AppliedFilters(WireModel):
    """Echo of the request after category resolution."""

    query: str | None = None
    category: str | None = None
    category_ids: list[str] = []
    availability: Availability = Availability.all
    price_range: PriceRange | None = None
    tags: list[str] = []
    collection_id: str | None = None
    sort_by: SortBy = SortBy.created_at

    @classmethod
    def from_request(
        cls, request: FilterRequest, category_ids: set[str] | None = None
    ) -> "AppliedFilters":
        price_range = None
        if request.price_min is not None or request.price_max is not None:
            price_range = PriceRange(min=request.price_min, max=request.price_max)
        return cls(
            query=request.query,
            category=request.category,
            category_ids=sorted(category_ids or ()),
            availability=request.availability,
            price_range=price_range,
            tags=list(request.tags),
            collection_id=request.collection_id,
            sort_by=request.sort_by,
        )


class Pagination(WireModel):
    page: int
    limit: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "Pagination":
        return cls(
            page=page,
            limit=limit,
            total=total,
            total_pages=math.ceil(total / limit) if total > 0 else 0,
            has_next=page * limit < total,
            has_prev=page > 1,
        )


class CatalogResponse(WireModel):
    """The page of products returned to callers, whichever path served it."""

    model_config = ConfigDict(frozen=True)

    products: list[CatalogProduct] = []
    total_count: int = 0
    facets: Facets = Field(default_factory=empty_facets)
    applied_filters: AppliedFilters
    pagination: Pagination

    @classmethod
    def build(
        cls,
        request: FilterRequest,
        applied: AppliedFilters,
        products: list[CatalogProduct],
        total_count: int,
        facets: Mapping[str, Any] | None,
    ) -> "CatalogResponse":
        return cls(
            products=products[: request.limit],
            total_count=total_count,
            facets=normalize_facets(facets),
            applied_filters=applied,
            pagination=Pagination.build(request.page, request.limit, total_count),
        )

    @classmethod
    def empty(
        cls, request: FilterRequest, applied: AppliedFilters | None = None
    ) -> "CatalogResponse":
        """A well-formed response with no products, used when both paths fail."""
        return cls.build(
            request,
            applied or AppliedFilters.from_request(request),
            products=[],
            total_count=0,
            facets=None,
        )
