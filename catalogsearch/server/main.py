"""Catalog search HTTP application."""

import logging
import sys
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

import uvicorn
from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse

from ..catalog.orchestrator import CatalogOrchestrator, build_orchestrator
from ..config import CatalogSettings, get_settings, setup_logging
from ..database.connection import close_database
from ..errors import FilterValidationError
from ..model import Availability, CatalogResponse, FilterRequest, SortBy

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application lifespan events."""
    # Startup
    settings = get_settings()
    setup_logging(settings)
    app.state.orchestrator = build_orchestrator(settings)
    logger.info("Catalog search started")

    yield

    # Shutdown
    close_database()
    logger.info("Catalog search stopped")


# Create FastAPI app
app = FastAPI(
    title="Catalog Search",
    description="Storefront product discovery with search index and relational fallback",
    version="1.0.0",
    lifespan=lifespan,
)


# Dependency to get settings
def get_current_settings() -> CatalogSettings:
    return get_settings()


def get_orchestrator(request: Request) -> CatalogOrchestrator:
    return request.app.state.orchestrator


@app.exception_handler(FilterValidationError)
async def filter_validation_error_handler(
    request: Request, exc: FilterValidationError
) -> JSONResponse:
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.post("/catalog/search", response_model=CatalogResponse)
def post_search(
    filters: FilterRequest,
    orchestrator: CatalogOrchestrator = Depends(get_orchestrator),
):
    """Search the catalog with a JSON filter request."""
    return orchestrator.search(filters)


@app.get("/catalog/search", response_model=CatalogResponse)
def get_search(
    q: str | None = None,
    category_id: str | None = Query(None, alias="categoryId"),
    category_handle: str | None = Query(None, alias="categoryHandle"),
    availability: Availability = Availability.all,
    price_min: float | None = Query(None, alias="priceMin"),
    price_max: float | None = Query(None, alias="priceMax"),
    tags: list[str] = Query([]),
    collection_id: str | None = Query(None, alias="collectionId"),
    sort_by: SortBy = Query(SortBy.created_at, alias="sortBy"),
    page: int = 1,
    limit: int | None = None,
    country_code: str | None = Query(None, alias="countryCode"),
    orchestrator: CatalogOrchestrator = Depends(get_orchestrator),
    settings: CatalogSettings = Depends(get_current_settings),
):
    """Search the catalog with query parameters."""
    data: dict[str, Any] = {
        "query": q,
        "category_id": category_id,
        "category_handle": category_handle,
        "availability": availability,
        "price_min": price_min,
        "price_max": price_max,
        "tags": tags,
        "collection_id": collection_id,
        "sort_by": sort_by,
        "page": page,
        "limit": settings.default_page_size if limit is None else limit,
        "country_code": country_code,
    }
    return orchestrator.search(FilterRequest.parse(data))


@app.get("/catalog/suggestions")
def get_suggestions(
    q: str = "",
    category_handle: str | None = Query(None, alias="categoryHandle"),
    category_id: str | None = Query(None, alias="categoryId"),
    limit: int = Query(5, ge=1, le=20),
    country_code: str | None = Query(None, alias="countryCode"),
    orchestrator: CatalogOrchestrator = Depends(get_orchestrator),
):
    """Product titles for search-as-you-type."""
    return {
        "suggestions": orchestrator.suggest(
            q,
            category_handle=category_handle,
            category_id=category_id,
            limit=limit,
            country_code=country_code,
        )
    }


@app.get("/catalog/categories")
def get_categories(
    country_code: str | None = Query(None, alias="countryCode"),
    orchestrator: CatalogOrchestrator = Depends(get_orchestrator),
):
    """Category menu with product counts."""
    tree = orchestrator.category_tree(country_code=country_code)
    return {"categories": [node.model_dump(mode="json", by_alias=True) for node in tree]}


@app.get("/health")
def health(orchestrator: CatalogOrchestrator = Depends(get_orchestrator)):
    """Service health; a backend outage only degrades search."""
    return {
        "status": "ok",
        "searchIndex": _backend_status(orchestrator.index),
        "catalogStore": _backend_status(orchestrator.fallback.store),
    }


def _backend_status(backend: Any) -> str:
    if backend is None:
        return "disabled"
    if hasattr(backend, "health"):
        return "up" if backend.health() else "down"
    return "unknown"


def run_server() -> None:
    """Entry point for the console script."""
    settings = get_settings()
    setup_logging(settings)

    logger.info(f"Starting catalog search on {settings.host}:{settings.port}")

    try:
        uvicorn.run(
            "catalogsearch.server.main:app",
            host=settings.host,
            port=settings.port,
            log_level=settings.log_level.lower(),
            access_log=True,
        )
    except KeyboardInterrupt:
        logger.info("Server stopped by user")
    except Exception as e:
        logger.error(f"Server failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    run_server()
