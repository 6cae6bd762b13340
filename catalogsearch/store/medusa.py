"""Medusa store API client used as the relational category and product store."""

import logging
from typing import Any

import requests
from pydantic import ValidationError

from ..catalog.filters import RelationalQueryParams
from ..config import CatalogSettings, get_settings
from ..errors import CategoryLookupError, FallbackError, RegionLookupError
from ..model import Category, Collection, Money, Product, ProductPage, Variant

logger = logging.getLogger(__name__)


def parse_category(data: dict[str, Any]) -> Category:
    return Category(
        id=data["id"],
        name=data.get("name") or data.get("handle") or data["id"],
        handle=data.get("handle"),
        parent_id=data.get("parent_category_id"),
    )


def parse_variant(data: dict[str, Any]) -> Variant:
    prices: list[Money] = []

    calculated = data.get("calculated_price") or {}
    amount = calculated.get("calculated_amount")
    if amount is not None and calculated.get("currency_code"):
        prices.append(Money(amount=amount, currency_code=calculated["currency_code"]))

    for price in data.get("prices") or []:
        if price.get("amount") is not None and price.get("currency_code"):
            prices.append(
                Money(amount=price["amount"], currency_code=price["currency_code"])
            )

    return Variant(
        id=data.get("id"),
        title=data.get("title"),
        sku=data.get("sku"),
        prices=prices,
        # Medusa omits the flag for variants that do not track inventory.
        manage_inventory=bool(data.get("manage_inventory")),
        inventory_quantity=data.get("inventory_quantity"),
    )


def parse_product(data: dict[str, Any]) -> Product:
    tags = []
    for tag in data.get("tags") or []:
        value = tag.get("value") if isinstance(tag, dict) else tag
        if value:
            tags.append(str(value))

    collection = None
    if data.get("collection"):
        collection = Collection(
            id=data["collection"]["id"],
            title=data["collection"].get("title"),
            handle=data["collection"].get("handle"),
        )
    elif data.get("collection_id"):
        collection = Collection(id=data["collection_id"])

    return Product(
        id=data["id"],
        title=data.get("title") or "",
        description=data.get("description"),
        handle=data.get("handle"),
        thumbnail=data.get("thumbnail"),
        status=data.get("status") or "published",
        tags=tags,
        categories=[parse_category(c) for c in data.get("categories") or []],
        collection=collection,
        variants=[parse_variant(v) for v in data.get("variants") or []],
        created_at=data.get("created_at"),
    )


class MedusaStoreClient:
    """Reads categories, products and regions from the Medusa store API."""

    supports_text_search = True

    def __init__(
        self,
        settings: CatalogSettings | None = None,
        session: requests.Session | None = None,
    ):
        self.settings = settings or get_settings()
        self.base_url = self.settings.medusa_backend_url.rstrip("/")
        self.timeout = self.settings.store_timeout
        self.session = session or requests.Session()
        if self.settings.medusa_publishable_key:
            self.session.headers.update(
                {"x-publishable-api-key": self.settings.medusa_publishable_key}
            )

    def list_categories(
        self, handle: str | None = None, parent_id: str | None = None
    ) -> list[Category]:
        params: dict[str, Any] = {
            "limit": 1000,
            "fields": "id,name,handle,parent_category_id",
        }
        if handle is not None:
            params["handle"] = handle
        if parent_id is not None:
            params["parent_category_id"] = parent_id

        payload = self._get("/store/product-categories", params, CategoryLookupError)
        try:
            return [parse_category(c) for c in payload.get("product_categories") or []]
        except (ValidationError, KeyError, TypeError, AttributeError) as e:
            raise CategoryLookupError(f"Malformed category payload: {e}") from e

    def list_products(self, params: RelationalQueryParams) -> ProductPage:
        payload = self._get("/store/products", params.to_query(), FallbackError)
        try:
            products = [parse_product(p) for p in payload.get("products") or []]
            count = int(payload.get("count", len(products)))
        except (ValidationError, KeyError, TypeError, AttributeError, ValueError) as e:
            raise FallbackError(f"Malformed product payload: {e}") from e

        logger.debug(f"Fetched {len(products)} of {count} products from the store")
        return ProductPage(products=products, count=count)

    def list_regions(self) -> list[dict[str, Any]]:
        payload = self._get("/store/regions", {}, RegionLookupError)
        regions = payload.get("regions") or []
        if not isinstance(regions, list):
            raise RegionLookupError("Malformed region payload")
        return regions

    def _get(
        self, path: str, params: dict[str, Any], error: type[Exception]
    ) -> dict[str, Any]:
        try:
            response = self.session.get(
                f"{self.base_url}{path}", params=params, timeout=self.timeout
            )
            response.raise_for_status()
            payload = response.json()
        except requests.RequestException as e:
            raise error(f"GET {path} failed: {e}") from e
        except ValueError as e:
            raise error(f"GET {path} returned invalid JSON") from e

        if not isinstance(payload, dict):
            raise error(f"GET {path} returned a malformed payload")
        return payload
