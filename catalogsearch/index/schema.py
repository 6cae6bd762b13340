"""Shape of the documents in the products index.

The filter and sort expressions built for the index rely on these
attributes. Keeping the document projection next to the attribute lists
makes the contract with the indexing pipeline explicit.
"""

from typing import Any, Iterable

from ..model import Product, ProductStatus

FILTERABLE_ATTRIBUTES = [
    "category_ids",
    "category_names",
    "collection_id",
    "collection_title",
    "is_available",
    "status",
    "tags",
]

SEARCHABLE_ATTRIBUTES = [
    "title",
    "description",
    "tags",
    "variant_titles",
    "skus",
]


def price_field(currency_code: str) -> str:
    """Name of the minimum-variant-price attribute for a currency."""
    return f"min_price_{currency_code.lower()}"


def sortable_attributes(currency_codes: Iterable[str]) -> list[str]:
    return ["created_at", "id", "title"] + [price_field(c) for c in currency_codes]


def index_settings(currency_codes: Iterable[str]) -> dict[str, Any]:
    """Meilisearch index settings matching the documents built here."""
    currency_codes = list(currency_codes)
    return {
        "filterableAttributes": FILTERABLE_ATTRIBUTES
        + [price_field(c) for c in currency_codes],
        "sortableAttributes": sortable_attributes(currency_codes),
        "searchableAttributes": SEARCHABLE_ATTRIBUTES,
    }


def build_index_document(
    product: Product, currency_codes: Iterable[str]
) -> dict[str, Any] | None:
    """Project a product into an index document.

    Draft products are never indexed. Price attributes are only present
    for currencies the product is priced in.
    """
    if product.status != ProductStatus.published:
        return None

    document: dict[str, Any] = {
        "id": product.id,
        "title": product.title,
        "handle": product.handle,
        "description": product.description,
        "thumbnail": product.thumbnail,
        "status": product.status.value,
        "tags": list(product.tags),
        "category_ids": sorted(product.category_ids),
        "category_names": sorted({c.name for c in product.categories}),
        "collection_id": product.collection_id,
        "collection_title": product.collection.title if product.collection else None,
        "is_available": product.is_available,
        "variant_titles": [v.title for v in product.variants if v.title],
        "skus": [v.sku for v in product.variants if v.sku],
    }

    if product.created_at is not None:
        document["created_at"] = int(product.created_at.timestamp())

    for currency_code in currency_codes:
        amount = product.min_price(currency_code)
        if amount is not None:
            document[price_field(currency_code)] = amount

    return document
