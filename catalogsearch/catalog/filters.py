"""Translate a filter request into search index and relational clauses.

Both representations have to select and order exactly the same products.
The index side is a Meilisearch filter/sort expression; the relational side
is a set of store query parameters plus the per-row predicates and the sort
that the fallback path applies in memory.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

from ..index.schema import price_field
from ..model import (
    FACET_NAMES,
    Availability,
    FilterRequest,
    Product,
    RegionContext,
    SortBy,
)

logger = logging.getLogger(__name__)

DEFAULT_PRODUCT_FIELDS = (
    "*variants.calculated_price,+variants.inventory_quantity,"
    "+variants.manage_inventory,+metadata,+tags,*categories,*collection"
)


@dataclass(frozen=True)
class IndexQuery:
    """One search request against the products index."""

    query: str
    filter_expr: str | None
    sort: list[str]
    facets: list[str]
    offset: int
    limit: int
    currency_code: str


@dataclass(frozen=True)
class RelationalQueryParams:
    """Query parameters for the relational store plus in-memory predicates.

    ``limit``/``offset`` bound the fetch, not the page returned to callers.
    """

    limit: int
    offset: int = 0
    category_ids: list[str] = field(default_factory=list)
    collection_id: str | None = None
    q: str | None = None
    fields: str = DEFAULT_PRODUCT_FIELDS
    region_id: str | None = None
    currency_code: str = "eur"
    availability: Availability = Availability.all
    tags: list[str] = field(default_factory=list)
    price_min: float | None = None
    price_max: float | None = None
    sort_by: SortBy = SortBy.created_at

    def to_query(self) -> dict[str, Any]:
        """Render the store-expressible part as Medusa query parameters."""
        query: dict[str, Any] = {
            "limit": self.limit,
            "offset": self.offset,
            "fields": self.fields,
        }
        if self.category_ids:
            query["category_id[]"] = list(self.category_ids)
        if self.collection_id:
            query["collection_id[]"] = [self.collection_id]
        if self.q:
            query["q"] = self.q
        if self.region_id:
            query["region_id"] = self.region_id
        return query


class FilterClauseBuilder:
    """Builds the index expression and relational parameters for a request."""

    def __init__(
        self,
        fetch_cap: int = 1000,
        index_category_names: bool = True,
        product_fields: str = DEFAULT_PRODUCT_FIELDS,
    ):
        self.fetch_cap = fetch_cap
        self.index_category_names = index_category_names
        self.product_fields = product_fields

    def build_clauses(
        self,
        request: FilterRequest,
        category_ids: Iterable[str],
        region: RegionContext,
        category_names: Iterable[str] = (),
    ) -> tuple[IndexQuery, RelationalQueryParams]:
        category_ids = sorted(set(category_ids))
        category_names = sorted(set(category_names)) if category_ids else []
        currency_code = region.currency_code

        index_query = IndexQuery(
            query=request.query or "",
            filter_expr=self.filter_expression(
                request, category_ids, category_names, currency_code
            ),
            sort=sort_keys(request.sort_by, currency_code),
            facets=list(FACET_NAMES),
            offset=request.offset,
            limit=request.limit,
            currency_code=currency_code,
        )

        params = RelationalQueryParams(
            limit=self.fetch_cap,
            offset=0,
            category_ids=category_ids,
            collection_id=request.collection_id,
            q=request.query,
            fields=self.product_fields,
            region_id=region.region_id,
            currency_code=currency_code,
            availability=request.availability,
            tags=list(request.tags),
            price_min=request.price_min,
            price_max=request.price_max,
            sort_by=request.sort_by,
        )

        logger.debug(f"Index filter: {index_query.filter_expr!r}")
        return index_query, params

    def filter_expression(
        self,
        request: FilterRequest,
        category_ids: list[str],
        category_names: list[str],
        currency_code: str,
    ) -> str | None:
        clauses = []

        if category_ids:
            terms = [f"category_ids = {quote(i)}" for i in category_ids]
            # Names are not unique; a same-named category elsewhere also matches.
            if self.index_category_names:
                terms += [f"category_names = {quote(n)}" for n in category_names]
            clauses.append(_any_of(terms))

        if request.availability != Availability.all:
            flag = "true" if request.availability == Availability.in_stock else "false"
            clauses.append(f"is_available = {flag}")

        price = price_field(currency_code)
        if request.price_min is not None:
            clauses.append(f"{price} >= {_number(request.price_min)}")
        if request.price_max is not None:
            clauses.append(f"{price} <= {_number(request.price_max)}")

        if request.tags:
            clauses.append(_any_of([f"tags = {quote(t)}" for t in request.tags]))

        if request.collection_id:
            clauses.append(f"collection_id = {quote(request.collection_id)}")

        return " AND ".join(clauses) or None


def quote(value: str) -> str:
    """Quote a string value for a filter expression."""
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _any_of(terms: list[str]) -> str:
    if len(terms) == 1:
        return terms[0]
    return "(" + " OR ".join(terms) + ")"


def _number(value: float) -> str:
    value = float(value)
    return str(int(value)) if value.is_integer() else repr(value)


def sort_keys(sort_by: SortBy, currency_code: str) -> list[str]:
    """Index sort keys for a sort option, with ``id`` as the tie breaker."""
    primary = {
        SortBy.created_at: "created_at:desc",
        SortBy.price_asc: f"{price_field(currency_code)}:asc",
        SortBy.price_desc: f"{price_field(currency_code)}:desc",
        SortBy.title_asc: "title:asc",
        SortBy.title_desc: "title:desc",
    }[sort_by]
    return [primary, "id:asc"]


# Per-row predicates used by the fallback path. Each mirrors one clause of
# the index expression above.


def matches_availability(product: Product, availability: Availability) -> bool:
    if availability == Availability.all:
        return True
    return product.is_available == (availability == Availability.in_stock)


def matches_tags(product: Product, tags: list[str]) -> bool:
    if not tags:
        return True
    return any(tag in product.tags for tag in tags)


def matches_text(product: Product, query: str | None) -> bool:
    """Case-insensitive substring match over the searchable attributes."""
    if not query:
        return True
    needle = query.casefold()
    haystack = [product.title, product.description, *product.tags]
    for variant in product.variants:
        haystack.extend([variant.title, variant.sku])
    return any(needle in text.casefold() for text in haystack if text)


def matches_price(
    product: Product,
    currency_code: str,
    price_min: float | None,
    price_max: float | None,
) -> bool:
    if price_min is None and price_max is None:
        return True
    price = product.min_price(currency_code)
    if price is None:
        return False
    if price_min is not None and price < price_min:
        return False
    if price_max is not None and price > price_max:
        return False
    return True


def sort_products(
    products: list[Product], sort_by: SortBy, currency_code: str
) -> list[Product]:
    """Order products the way the index orders them for ``sort_by``.

    Products missing the sort value (no price in the currency, no creation
    date) go last in either direction; ties fall back to ascending id.
    """
    ordered = sorted(products, key=lambda p: p.id)

    if sort_by in (SortBy.title_asc, SortBy.title_desc):
        return sorted(
            ordered,
            key=lambda p: p.title.casefold(),
            reverse=sort_by == SortBy.title_desc,
        )

    if sort_by in (SortBy.price_asc, SortBy.price_desc):
        return _sort_missing_last(
            ordered,
            lambda p: p.min_price(currency_code),
            descending=sort_by == SortBy.price_desc,
        )

    return _sort_missing_last(
        ordered,
        lambda p: int(p.created_at.timestamp()) if p.created_at else None,
        descending=True,
    )


def _sort_missing_last(products, value, descending):
    if descending:
        return sorted(
            products,
            key=lambda p: (value(p) is not None, value(p) or 0),
            reverse=True,
        )
    return sorted(products, key=lambda p: (value(p) is None, value(p) or 0))
