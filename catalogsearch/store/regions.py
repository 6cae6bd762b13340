"""Country code to region/currency resolution."""

import logging
import threading

from ..errors import RegionLookupError
from ..model import RegionContext
from ..protocol import RegionStore

logger = logging.getLogger(__name__)


class RegionResolver:
    """Maps a country code to the region and currency used for prices.

    The country map is loaded once from the store and kept until
    ``invalidate()``. Unknown countries and store failures resolve to the
    configured default region.
    """

    def __init__(
        self,
        store: RegionStore | None,
        default_currency_code: str = "eur",
        default_region_id: str | None = None,
    ):
        self.store = store
        self.default = RegionContext(
            region_id=default_region_id, currency_code=default_currency_code
        )
        self._regions: dict[str, RegionContext] | None = None
        self._lock = threading.Lock()

    def resolve(self, country_code: str | None) -> RegionContext:
        if not country_code or self.store is None:
            return self.default

        try:
            regions = self._load()
        except RegionLookupError as e:
            logger.warning(f"Region lookup failed, using default region: {e}")
            return self.default

        region = regions.get(country_code.lower())
        if region is None:
            logger.warning(f"No region for country '{country_code}', using default")
            return self.default
        return region

    def invalidate(self) -> None:
        with self._lock:
            self._regions = None

    def _load(self) -> dict[str, RegionContext]:
        with self._lock:
            if self._regions is not None:
                return self._regions

        try:
            raw_regions = self.store.list_regions()
            regions: dict[str, RegionContext] = {}
            for region in raw_regions:
                context = RegionContext(
                    region_id=region["id"], currency_code=region["currency_code"]
                )
                for country in region.get("countries") or []:
                    iso = (country.get("iso_2") or "").lower()
                    if iso:
                        regions[iso] = context
        except RegionLookupError:
            raise
        except Exception as e:
            raise RegionLookupError(f"Could not load regions: {e}") from e

        logger.info(f"Loaded {len(regions)} countries from {len(raw_regions)} regions")
        with self._lock:
            self._regions = regions
        return regions
