"""Relational fallback search.

Used when the search index is unavailable. Fetches one bounded batch of
products from the relational store and applies the rest of the filter,
the sort, the facets and the pagination in memory, so that the response
matches what the index would have returned.
"""

import logging
from collections import Counter

from ..errors import FallbackError
from ..model import (
    AppliedFilters,
    CatalogProduct,
    CatalogResponse,
    Facets,
    FilterRequest,
    Product,
    ProductStatus,
    empty_facets,
)
from ..protocol import ProductStore
from .filters import (
    RelationalQueryParams,
    matches_availability,
    matches_price,
    matches_tags,
    matches_text,
    sort_products,
)

logger = logging.getLogger(__name__)


def compute_facets(products: list[Product]) -> Facets:
    """Facet distribution over a filtered product set."""
    category_names: Counter[str] = Counter()
    tags: Counter[str] = Counter()
    availability: Counter[str] = Counter()
    collections: Counter[str] = Counter()

    for product in products:
        category_names.update({c.name for c in product.categories})
        tags.update(set(product.tags))
        availability["true" if product.is_available else "false"] += 1
        if product.collection and product.collection.title:
            collections[product.collection.title] += 1

    facets = empty_facets()
    facets["category_names"] = dict(category_names)
    facets["tags"] = dict(tags)
    facets["is_available"] = dict(availability)
    facets["collection_title"] = dict(collections)
    return facets


class FallbackEngine:
    """Answers filter requests from the relational product store."""

    def __init__(self, store: ProductStore):
        self.store = store

    def fetch(self, params: RelationalQueryParams) -> list[Product]:
        """Fetch the candidate rows for a request, drafts removed.

        Raises FallbackError when the store cannot be read.
        """
        try:
            page = self.store.list_products(params)
        except FallbackError:
            raise
        except Exception as e:
            raise FallbackError(f"Product store read failed: {e}") from e

        if page.count > len(page.products) and len(page.products) >= params.limit:
            logger.warning(
                f"Fallback fetch capped at {params.limit} of {page.count} products; "
                f"counts and facets may be incomplete"
            )

        return [p for p in page.products if p.status == ProductStatus.published]

    def filter_products(
        self, products: list[Product], params: RelationalQueryParams
    ) -> list[Product]:
        products = [p for p in products if matches_availability(p, params.availability)]
        products = [p for p in products if matches_tags(p, params.tags)]
        if not self.store.supports_text_search:
            products = [p for p in products if matches_text(p, params.q)]
        return [
            p
            for p in products
            if matches_price(p, params.currency_code, params.price_min, params.price_max)
        ]

    def fallback_search(
        self,
        request: FilterRequest,
        params: RelationalQueryParams,
        applied: AppliedFilters | None = None,
    ) -> CatalogResponse:
        products = self.filter_products(self.fetch(params), params)
        products = sort_products(products, params.sort_by, params.currency_code)

        page = products[request.offset : request.offset + request.limit]
        logger.debug(
            f"Fallback matched {len(products)} products, returning {len(page)}"
        )

        return CatalogResponse.build(
            request,
            applied or AppliedFilters.from_request(request, set(params.category_ids)),
            products=[CatalogProduct.from_product(p, params.currency_code) for p in page],
            total_count=len(products),
            facets=compute_facets(products),
        )
