from typing import Any, runtime_checkable, Protocol

from .model import Category, ProductPage


@runtime_checkable
class CategoryStore(Protocol):
    def list_categories(
        self, handle: str | None = None, parent_id: str | None = None
    ) -> list[Category]: ...


@runtime_checkable
class ProductStore(Protocol):
    supports_text_search: bool

    def list_products(self, params: Any) -> ProductPage: ...


@runtime_checkable
class RegionStore(Protocol):
    def list_regions(self) -> list[dict[str, Any]]: ...


@runtime_checkable
class SearchIndex(Protocol):
    def search(
        self,
        query: str,
        filter_expr: str | None,
        sort: list[str],
        facets: list[str],
        offset: int,
        limit: int,
        currency_code: str | None = None,
    ) -> Any: ...
