"""Catalog search orchestration.

A request is answered from the search index when it can be, and from the
relational store when it cannot. Either way the caller receives the same
response shape; backend failures never reach the caller.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

from ..config import CatalogSettings, get_settings
from ..database.connection import init_database
from ..errors import CategoryLookupError, FilterValidationError, SearchIndexError
from ..index.meilisearch import MeilisearchClient
from ..model import (
    AppliedFilters,
    CatalogResponse,
    FilterRequest,
    RegionContext,
)
from ..protocol import SearchIndex
from ..store.medusa import MedusaStoreClient
from ..store.regions import RegionResolver
from ..store.sql import SqlCatalogStore
from .categories import CategoryCache, CategoryTreeResolver, ResolvedCategories
from .fallback import FallbackEngine
from .filters import FilterClauseBuilder, IndexQuery, RelationalQueryParams
from .tree import CategoryNode, build_category_tree

logger = logging.getLogger(__name__)


class SearchState(str, Enum):
    start = "start"
    try_index = "try_index"
    index_failed = "index_failed"
    try_fallback = "try_fallback"
    success = "success"
    fallback_failed = "fallback_failed"
    done = "done"


class Outcome(str, Enum):
    ok = "ok"
    failed = "failed"


_TRANSITIONS: dict[tuple[SearchState, Outcome], SearchState] = {
    (SearchState.start, Outcome.ok): SearchState.try_index,
    (SearchState.try_index, Outcome.ok): SearchState.success,
    (SearchState.try_index, Outcome.failed): SearchState.index_failed,
    (SearchState.index_failed, Outcome.ok): SearchState.try_fallback,
    (SearchState.try_fallback, Outcome.ok): SearchState.success,
    (SearchState.try_fallback, Outcome.failed): SearchState.fallback_failed,
    (SearchState.success, Outcome.ok): SearchState.done,
    (SearchState.fallback_failed, Outcome.ok): SearchState.done,
}


def next_state(state: SearchState, outcome: Outcome) -> SearchState:
    """The state that follows ``state`` given the outcome of its step."""
    try:
        return _TRANSITIONS[(state, outcome)]
    except KeyError:
        raise ValueError(f"No transition from {state.value} on {outcome.value}")


@dataclass
class SearchResult:
    """A response plus how it was produced."""

    response: CatalogResponse
    served_by: str = "none"  # index, fallback or none
    states: list[SearchState] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    processing_time_ms: int | None = None


@dataclass
class _Trace:
    state: SearchState = SearchState.start
    states: list[SearchState] = field(default_factory=lambda: [SearchState.start])
    errors: list[str] = field(default_factory=list)
    served_by: str = "none"
    processing_time_ms: int | None = None

    def advance(self, outcome: Outcome) -> None:
        self.state = next_state(self.state, outcome)
        self.states.append(self.state)


@dataclass(frozen=True)
class _PreparedSearch:
    request: FilterRequest
    region: RegionContext
    categories: ResolvedCategories
    applied: AppliedFilters
    index_query: IndexQuery
    params: RelationalQueryParams


class CatalogOrchestrator:
    """Runs a filter request through the index and, if needed, the fallback."""

    def __init__(
        self,
        resolver: CategoryTreeResolver,
        builder: FilterClauseBuilder,
        index: SearchIndex | None,
        fallback: FallbackEngine,
        regions: RegionResolver | None = None,
        *,
        default_currency_code: str = "eur",
        default_region_id: str | None = None,
        default_country_code: str | None = None,
        index_attempts: int = 1,
        max_page_size: int = 100,
    ):
        self.resolver = resolver
        self.builder = builder
        self.index = index
        self.fallback = fallback
        self.regions = regions or RegionResolver(
            None, default_currency_code, default_region_id
        )
        self.default_country_code = default_country_code
        self.index_attempts = max(1, index_attempts)
        self.max_page_size = max_page_size

    def search(self, request: FilterRequest | Mapping[str, Any]) -> CatalogResponse:
        """Answer a filter request.

        Raises FilterValidationError for an invalid request; every backend
        failure degrades to the fallback path or to an empty response.
        """
        return self.search_with_trace(request).response

    def search_with_trace(
        self, request: FilterRequest | Mapping[str, Any]
    ) -> SearchResult:
        """Answer a filter request and report which path served it."""
        trace = _Trace()

        prepared = self._prepare(request)
        trace.advance(Outcome.ok)

        response = self._try_index(prepared, trace)
        if response is not None:
            trace.served_by = "index"
            trace.advance(Outcome.ok)
        else:
            trace.advance(Outcome.failed)
            trace.advance(Outcome.ok)
            try:
                response = self.fallback.fallback_search(
                    prepared.request, prepared.params, prepared.applied
                )
                trace.served_by = "fallback"
                trace.advance(Outcome.ok)
            except Exception as e:
                trace.errors.append(f"fallback: {e}")
                logger.error(f"Search index and fallback both failed: {e}")
                response = CatalogResponse.empty(prepared.request, prepared.applied)
                trace.advance(Outcome.failed)

        trace.advance(Outcome.ok)
        return SearchResult(
            response=response,
            served_by=trace.served_by,
            states=trace.states,
            errors=trace.errors,
            processing_time_ms=trace.processing_time_ms,
        )

    def suggest(
        self,
        query: str,
        category_handle: str | None = None,
        category_id: str | None = None,
        limit: int = 5,
        country_code: str | None = None,
    ) -> list[str]:
        """Unique product titles matching ``query`` for autocomplete."""
        query = (query or "").strip()
        if len(query) < 2:
            return []

        request = FilterRequest(
            query=query,
            category_handle=category_handle,
            category_id=category_id,
            limit=min(max(limit, 1) * 2, self.max_page_size),
            country_code=country_code,
        )
        titles: list[str] = []
        for product in self.search(request).products:
            if product.title and product.title not in titles:
                titles.append(product.title)
            if len(titles) >= limit:
                break
        return titles

    def category_tree(self, country_code: str | None = None) -> list[CategoryNode]:
        """The whole category forest with product counts per category."""
        try:
            categories = self.resolver.all_categories()
        except CategoryLookupError as e:
            logger.warning(f"Could not load categories for the menu: {e}")
            return []

        response = self.search(FilterRequest(limit=1, country_code=country_code))
        return build_category_tree(categories, response.facets["category_names"])

    def _prepare(self, request: FilterRequest | Mapping[str, Any]) -> _PreparedSearch:
        if not isinstance(request, FilterRequest):
            request = FilterRequest.parse(request)
        if request.limit > self.max_page_size:
            raise FilterValidationError(
                f"limit must not exceed {self.max_page_size}, got {request.limit}"
            )

        region = self.regions.resolve(request.country_code or self.default_country_code)

        # Resolved once; both paths filter on the same set.
        try:
            categories = self.resolver.resolve(
                category_id=request.category_id, handle=request.category_handle
            )
        except CategoryLookupError as e:
            logger.warning(
                f"Category '{request.category}' could not be resolved, "
                f"searching without a category filter: {e}"
            )
            categories = ResolvedCategories()

        index_query, params = self.builder.build_clauses(
            request, categories.ids, region, categories.names
        )
        return _PreparedSearch(
            request=request,
            region=region,
            categories=categories,
            applied=AppliedFilters.from_request(request, categories.ids),
            index_query=index_query,
            params=params,
        )

    def _try_index(
        self, prepared: _PreparedSearch, trace: _Trace
    ) -> CatalogResponse | None:
        if self.index is None:
            trace.errors.append("index: no search index configured")
            return None

        query = prepared.index_query
        for attempt in range(1, self.index_attempts + 1):
            try:
                found = self.index.search(
                    query.query,
                    query.filter_expr,
                    query.sort,
                    query.facets,
                    query.offset,
                    query.limit,
                    currency_code=query.currency_code,
                )
            except SearchIndexError as e:
                trace.errors.append(f"index: {e}")
                logger.warning(
                    f"Search index attempt {attempt}/{self.index_attempts} failed: {e}"
                )
                continue
            except Exception as e:
                trace.errors.append(f"index: {e}")
                logger.exception(f"Unexpected search index error: {e}")
                continue

            trace.processing_time_ms = found.processing_time_ms
            return CatalogResponse.build(
                prepared.request,
                prepared.applied,
                products=found.hits,
                total_count=found.total_hits,
                facets=found.facets,
            )

        logger.info("Serving request from the relational fallback")
        return None


def build_orchestrator(
    settings: CatalogSettings | None = None, use_index: bool = True
) -> CatalogOrchestrator:
    """Wire the configured stores, index and caches into an orchestrator."""
    settings = settings or get_settings()

    if settings.fallback_backend == "sql":
        category_store = product_store = SqlCatalogStore(init_database(settings))
        # Prices in the catalog tables are keyed by currency only.
        region_store = None
    else:
        category_store = product_store = region_store = MedusaStoreClient(settings)

    index = None
    if use_index and settings.meilisearch_host:
        index = MeilisearchClient(settings)
    elif use_index:
        logger.warning("No search index host configured; using the fallback only")

    return CatalogOrchestrator(
        resolver=CategoryTreeResolver(
            category_store,
            cache=CategoryCache(ttl=settings.category_cache_ttl),
            max_depth=settings.category_max_depth,
            workers=settings.category_workers,
        ),
        builder=FilterClauseBuilder(
            fetch_cap=settings.fallback_fetch_cap,
            index_category_names=settings.index_category_names,
        ),
        index=index,
        fallback=FallbackEngine(product_store),
        regions=RegionResolver(
            region_store,
            settings.default_currency_code,
            settings.default_region_id,
        ),
        default_currency_code=settings.default_currency_code,
        default_region_id=settings.default_region_id,
        default_country_code=settings.default_country_code,
        index_attempts=settings.index_attempts,
        max_page_size=settings.max_page_size,
    )
