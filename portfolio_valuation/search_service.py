"""Asset search with a day-long result cache."""

import logging
from typing import Optional

from .cache_service import TimedCache
from .crypto_service import CoinGeckoClient
from .models import AssetType
from .price_service import EquityPriceService

logger = logging.getLogger(__name__)


class AssetSearchService:
    """Looks up crypto coin ids and stock tickers for new holdings."""

    def __init__(
        self,
        crypto_provider: CoinGeckoClient,
        equity_provider: EquityPriceService,
        cache: TimedCache,
    ):
        self.crypto_provider = crypto_provider
        self.equity_provider = equity_provider
        self.cache = cache

    def search(self, query: Optional[str], asset_type: AssetType) -> list[dict[str, str]]:
        """Search assets of one type, serving repeated queries from the cache."""
        if not query or not query.strip():
            return []

        normalized = query.strip().lower()
        if asset_type == AssetType.CRYPTO:
            loader = lambda: self.crypto_provider.search(normalized)
        else:
            loader = lambda: self.equity_provider.search(normalized)

        results = self.cache.get_or_load((asset_type.value, normalized), loader)
        logger.debug(f"Search '{normalized}' ({asset_type.value}): {len(results)} results")
        return results
