"""Error taxonomy for catalog search.

Everything below the orchestrator is recovered into a degraded but valid
response. ``FilterValidationError`` is the only error that reaches callers.
"""


class CatalogSearchError(Exception):
    """Base class for all catalog search errors."""


class CategoryLookupError(CatalogSearchError):
    """Reading categories from the category store failed."""


class SearchIndexError(CatalogSearchError):
    """The search index timed out, errored or returned a malformed payload."""


class FallbackError(CatalogSearchError):
    """The relational product store was unreachable or returned garbage."""


class RegionLookupError(CatalogSearchError):
    """The region/currency context could not be resolved."""


class FilterValidationError(CatalogSearchError, ValueError):
    """The filter request itself is invalid (a caller bug, not an outage)."""
