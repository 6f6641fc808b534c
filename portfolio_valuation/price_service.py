"""Equity price provider backed by yfinance."""

import logging
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Callable, Optional

import pandas as pd
import yfinance as yf

from .cache_service import utc_now
from .config import Settings, settings as default_settings
from .models import PriceSnapshot
from .rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

SEARCH_QUOTE_TYPES = {"EQUITY", "ETF", "MUTUALFUND"}


class EquityPriceService:
    """Service for fetching current and historical stock prices.

    Each ticker is requested individually and requests are paced through the
    service's rate limiter. Failures are logged and yield empty results.
    """

    name = "yfinance"

    def __init__(
        self,
        rate_limiter: Optional[RateLimiter] = None,
        config: Optional[Settings] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """Initialize the price service.

        Args:
            rate_limiter: Pacing shared by every request of this service
            config: Settings to read defaults from
            clock: Returns the current time (used for snapshot timestamps)
        """
        config = config or default_settings
        self.rate_limiter = rate_limiter or RateLimiter(
            config.equity_request_interval, name=self.name
        )
        self._clock = clock

    def get_current_price(self, symbol: str) -> Optional[Decimal]:
        """Get current price for a symbol.

        Args:
            symbol: Yahoo Finance ticker symbol

        Returns:
            Current price as Decimal, or None if not available
        """
        try:
            ticker = yf.Ticker(symbol)
            # Try intraday data first for real-time price
            self.rate_limiter.wait()
            hist = ticker.history(period="1d", interval="1m")
            if hist.empty:
                # Fallback to daily data
                self.rate_limiter.wait()
                hist = ticker.history(period="5d")

            if hist.empty:
                logger.warning(f"No price data available for {symbol}")
                return None

            closes = hist["Close"].dropna()
            if closes.empty:
                logger.warning(f"No price data available for {symbol}")
                return None
            return Decimal(str(closes.iloc[-1]))

        except Exception as e:
            logger.error(f"Error fetching price for {symbol}: {e}")
            return None

    def get_current_prices(self, symbols: list[str]) -> dict[str, PriceSnapshot]:
        """Get current prices for multiple symbols.

        Args:
            symbols: List of Yahoo Finance ticker symbols

        Returns:
            Dictionary mapping symbols to price snapshots (missing symbols omitted)
        """
        results: dict[str, PriceSnapshot] = {}

        for symbol in dict.fromkeys(symbols):
            price = self.get_current_price(symbol)
            if price is None or price <= 0:
                continue
            results[symbol] = PriceSnapshot(asset_key=symbol, price=price, as_of=self._clock())

        logger.info(f"Fetched prices for {len(results)}/{len(set(symbols))} stocks")
        return results

    def get_price_history(
        self, symbol: str, from_day: date, to_day: date
    ) -> dict[date, Decimal]:
        """Get daily closing prices for a symbol.

        Args:
            symbol: Yahoo Finance ticker symbol
            from_day: First day (inclusive)
            to_day: Last day (inclusive)

        Returns:
            Dictionary mapping dates to closing prices, empty on failure
        """
        try:
            self.rate_limiter.wait()
            ticker = yf.Ticker(symbol)
            history = ticker.history(start=from_day, end=to_day + timedelta(days=1))

            if history.empty:
                logger.warning(f"No price history for {symbol}")
                return {}

            prices: dict[date, Decimal] = {}
            for date_idx, row in history.iterrows():
                close_price = row["Close"]
                if pd.isna(close_price):
                    continue
                # Daily bars are labelled with the exchange's trading day
                prices[date_idx.to_pydatetime().date()] = Decimal(str(close_price))

            logger.info(f"Fetched {len(prices)} daily prices for {symbol}")
            return prices

        except Exception as e:
            logger.error(f"Error fetching historical prices for {symbol}: {e}")
            return {}

    def search(self, query: str) -> list[dict[str, str]]:
        """Search listed securities by name or ticker.

        Returns:
            List of dicts with 'symbol' and 'name' keys
        """
        if not query or not query.strip():
            return []

        try:
            self.rate_limiter.wait()
            quotes = yf.Search(query.strip(), max_results=10).quotes
        except Exception as e:
            logger.error(f"Error searching stocks for '{query}': {e}")
            return []

        return [
            {
                "symbol": quote["symbol"],
                "name": quote.get("longname") or quote.get("shortname") or quote["symbol"],
            }
            for quote in quotes
            if quote.get("symbol") and quote.get("quoteType") in SEARCH_QUOTE_TYPES
        ]
