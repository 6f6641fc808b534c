"""CoinGecko API client for cryptocurrency prices.

Crypto holdings are keyed by their CoinGecko coin id (e.g. "bitcoin"), so no
symbol mapping is needed here.
"""

import logging
from datetime import date, datetime, time
from decimal import Decimal
from typing import Callable, Optional

import httpx
import pytz

from .cache_service import utc_now
from .config import Settings, settings as default_settings
from .dates import date_key
from .models import PriceSnapshot
from .rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

COINGECKO_BASE_URL = "https://api.coingecko.com/api/v3"
COINGECKO_PRO_URL = "https://pro-api.coingecko.com/api/v3"


class CoinGeckoAPIError(Exception):
    """Exception raised for CoinGecko API errors."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class CoinGeckoClient:
    """Client for current prices, daily history and search on CoinGecko.

    Every request is paced through the client's rate limiter and attempted
    once. Public methods never raise: failures are logged and an empty result
    is returned.
    """

    name = "coingecko"

    def __init__(
        self,
        api_key: Optional[str] = None,
        use_pro_api: Optional[bool] = None,
        rate_limiter: Optional[RateLimiter] = None,
        config: Optional[Settings] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """Initialize the CoinGecko client.

        Args:
            api_key: Optional API key for higher rate limits
            use_pro_api: Use the Pro API endpoint (requires paid plan)
            rate_limiter: Pacing shared by every request of this client
            config: Settings to read defaults from
            clock: Returns the current time (used for snapshot timestamps)
        """
        config = config or default_settings
        self.api_key = api_key if api_key is not None else config.coingecko_api_key
        self.use_pro_api = config.coingecko_use_pro_api if use_pro_api is None else use_pro_api
        self.base_url = COINGECKO_PRO_URL if self.use_pro_api else COINGECKO_BASE_URL
        self.timeout = config.http_timeout
        self.rate_limiter = rate_limiter or RateLimiter(
            config.crypto_request_interval, name=self.name
        )
        self._clock = clock

    def _get_headers(self) -> dict[str, str]:
        """Get request headers including API key if available."""
        headers = {"Accept": "application/json"}
        if self.api_key:
            if self.use_pro_api:
                headers["x-cg-pro-api-key"] = self.api_key
            else:
                headers["x-cg-demo-api-key"] = self.api_key
        return headers

    def _request(self, endpoint: str, params: Optional[dict] = None) -> dict:
        """Make a paced HTTP request to the CoinGecko API.

        Args:
            endpoint: API endpoint path (e.g., "/simple/price")
            params: Query parameters

        Returns:
            JSON response as dictionary

        Raises:
            CoinGeckoAPIError: If the request fails or the API returns an error
        """
        self.rate_limiter.wait()
        url = f"{self.base_url}{endpoint}"

        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.get(url, params=params, headers=self._get_headers())

                if response.status_code == 429:
                    raise CoinGeckoAPIError("Rate limit exceeded", status_code=429)

                response.raise_for_status()
                payload = response.json()

        except httpx.HTTPStatusError as e:
            raise CoinGeckoAPIError(f"HTTP error: {e}", status_code=e.response.status_code) from e
        except httpx.HTTPError as e:
            raise CoinGeckoAPIError(f"Request error: {e}") from e

        # Errors are sometimes reported with a 200 and a status object
        status = payload.get("status") if isinstance(payload, dict) else None
        if isinstance(status, dict) and status.get("error_code"):
            raise CoinGeckoAPIError(
                status.get("error_message", "Unknown CoinGecko error"),
                status_code=status.get("error_code"),
            )
        return payload

    def get_current_prices(self, coin_ids: list[str]) -> dict[str, PriceSnapshot]:
        """Get current USD prices for several coins in one request.

        Args:
            coin_ids: CoinGecko coin ids (e.g., ["bitcoin", "ethereum"])

        Returns:
            Dict mapping coin id to its price snapshot (missing ids omitted)
        """
        coin_ids = list(dict.fromkeys(coin_ids))
        if not coin_ids:
            return {}

        params = {"ids": ",".join(coin_ids), "vs_currencies": "usd"}
        try:
            data = self._request("/simple/price", params)
        except CoinGeckoAPIError as e:
            logger.error(f"Failed to fetch crypto prices: {e}")
            return {}

        results: dict[str, PriceSnapshot] = {}
        now = self._clock()
        for coin_id in coin_ids:
            price = data.get(coin_id, {}).get("usd")
            if not isinstance(price, (int, float)) or price <= 0:
                logger.warning(f"No current price returned for {coin_id}")
                continue
            results[coin_id] = PriceSnapshot(
                asset_key=coin_id, price=Decimal(str(price)), as_of=now
            )

        logger.info(f"Fetched prices for {len(results)}/{len(coin_ids)} cryptocurrencies")
        return results

    def get_price_history(
        self, coin_id: str, from_day: date, to_day: date
    ) -> dict[date, Decimal]:
        """Get daily USD prices for a coin over a day range.

        CoinGecko returns several samples per day for short ranges; each
        sample is keyed by its UTC day and the latest one of a day wins.

        Args:
            coin_id: CoinGecko coin id
            from_day: First day (inclusive)
            to_day: Last day (inclusive)

        Returns:
            Dict mapping days to prices, empty on failure
        """
        start_ts = int(pytz.utc.localize(datetime.combine(from_day, time.min)).timestamp())
        end_ts = int(pytz.utc.localize(datetime.combine(to_day, time.max)).timestamp())
        params = {
            "vs_currency": "usd",
            "from": str(start_ts),
            "to": str(end_ts),
            "precision": "full",
        }

        try:
            result = self._request(f"/coins/{coin_id}/market_chart/range", params)
        except CoinGeckoAPIError as e:
            logger.error(f"Failed to fetch price history for {coin_id}: {e}")
            return {}

        prices = result.get("prices") or []
        if not prices:
            logger.warning(f"CoinGecko returned no price data for {coin_id}")
            return {}

        history: dict[date, Decimal] = {}
        for timestamp_ms, price in sorted(prices, key=lambda p: p[0]):
            if price is None:
                continue
            history[date_key(timestamp_ms)] = Decimal(str(price))

        logger.info(f"Fetched {len(history)} daily prices for {coin_id}")
        return history

    def search(self, query: str) -> list[dict[str, str]]:
        """Search coins by name or symbol.

        Returns:
            List of dicts with 'id', 'symbol' and 'name' keys
        """
        if not query or not query.strip():
            return []

        try:
            result = self._request("/search", {"query": query.strip()})
        except CoinGeckoAPIError as e:
            logger.error(f"Failed to search cryptos for '{query}': {e}")
            return []

        return [
            {"id": coin["id"], "symbol": coin.get("symbol", ""), "name": coin.get("name", "")}
            for coin in result.get("coins", [])
            if coin.get("id")
        ]
