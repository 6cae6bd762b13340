"""Meilisearch client for the products index."""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import requests
from pydantic import BaseModel, ValidationError

from ..config import CatalogSettings, get_settings
from ..errors import SearchIndexError
from ..model import FACET_NAMES, CatalogProduct, Facets, Money, normalize_facets
from .schema import price_field

logger = logging.getLogger(__name__)


@dataclass
class IndexResult:
    hits: list[CatalogProduct]
    facets: Facets
    total_hits: int
    processing_time_ms: int = 0


class _SearchPayload(BaseModel):
    hits: list[dict[str, Any]]
    facetDistribution: dict[str, dict[str, int]] | None = None
    estimatedTotalHits: int | None = None
    totalHits: int | None = None
    processingTimeMs: int = 0


def hit_to_product(hit: dict[str, Any], currency_code: str) -> CatalogProduct:
    """Project an index document onto the shared product shape."""
    amount = hit.get(price_field(currency_code))
    created_at = hit.get("created_at")
    if isinstance(created_at, (int, float)):
        created_at = datetime.fromtimestamp(created_at, tz=timezone.utc)

    tags = [t.get("value") if isinstance(t, dict) else t for t in hit.get("tags") or []]

    return CatalogProduct(
        id=str(hit["id"]),
        title=hit.get("title") or "",
        handle=hit.get("handle"),
        description=hit.get("description"),
        thumbnail=hit.get("thumbnail"),
        tags=[t for t in tags if t],
        category_ids=list(hit.get("category_ids") or []),
        collection_id=hit.get("collection_id"),
        is_available=bool(hit.get("is_available", False)),
        min_price=(
            Money(amount=amount, currency_code=currency_code)
            if amount is not None
            else None
        ),
        created_at=created_at,
    )


class MeilisearchClient:
    """Issues single search requests against the products index.

    No retries and no caching: every failure is reported as a
    SearchIndexError so that the caller can fall back.
    """

    def __init__(
        self,
        settings: CatalogSettings | None = None,
        session: requests.Session | None = None,
    ):
        self.settings = settings or get_settings()
        self.base_url = self.settings.meilisearch_host.rstrip("/")
        self.index = self.settings.meilisearch_index
        self.timeout = self.settings.index_timeout
        self.session = session or requests.Session()
        if self.settings.meilisearch_api_key:
            self.session.headers.update(
                {"Authorization": f"Bearer {self.settings.meilisearch_api_key}"}
            )

    def search(
        self,
        query: str,
        filter_expr: str | None,
        sort: list[str],
        facets: list[str],
        offset: int,
        limit: int,
        currency_code: str | None = None,
    ) -> IndexResult:
        unknown = set(facets) - set(FACET_NAMES)
        if unknown:
            raise ValueError(f"Unsupported facets: {sorted(unknown)}")

        currency_code = (currency_code or self.settings.default_currency_code).lower()
        body: dict[str, Any] = {
            "q": query,
            "sort": sort,
            "facets": facets,
            "offset": offset,
            "limit": limit,
        }
        if filter_expr:
            body["filter"] = filter_expr

        url = f"{self.base_url}/indexes/{self.index}/search"
        try:
            response = self.session.post(url, json=body, timeout=self.timeout)
        except requests.Timeout as e:
            raise SearchIndexError(f"Search index timed out after {self.timeout}s") from e
        except requests.RequestException as e:
            raise SearchIndexError(f"Search index request failed: {e}") from e

        if not 200 <= response.status_code < 300:
            raise SearchIndexError(
                f"Search index returned HTTP {response.status_code}"
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise SearchIndexError("Search index returned invalid JSON") from e

        return self._parse(payload, currency_code)

    def health(self) -> bool:
        """Check if the search index is reachable."""
        try:
            response = self.session.get(f"{self.base_url}/health", timeout=self.timeout)
            return response.status_code == 200
        except requests.RequestException as e:
            logger.error(f"Search index health check failed: {e}")
            return False

    def _parse(self, payload: Any, currency_code: str) -> IndexResult:
        # Proxies in front of the index wrap results as {success, data}.
        if isinstance(payload, dict) and "success" in payload:
            if not payload["success"]:
                raise SearchIndexError("Search index reported success=false")
            payload = payload.get("data")

        if not isinstance(payload, dict):
            raise SearchIndexError("Search index returned a malformed payload")

        try:
            parsed = _SearchPayload.model_validate(payload)
            hits = [hit_to_product(hit, currency_code) for hit in parsed.hits]
        except (ValidationError, KeyError, TypeError, ValueError) as e:
            raise SearchIndexError(f"Search index returned malformed hits: {e}") from e

        total = parsed.totalHits
        if total is None:
            total = parsed.estimatedTotalHits
        if total is None:
            raise SearchIndexError("Search index response has no hit count")

        return IndexResult(
            hits=hits,
            facets=normalize_facets(parsed.facetDistribution),
            total_hits=total,
            processing_time_ms=parsed.processingTimeMs,
        )
