"""FastAPI application entry point."""

import logging
import threading
from collections import OrderedDict
from datetime import timedelta
from decimal import Decimal
from typing import Optional

from fastapi import FastAPI, Header, HTTPException, Query
from pydantic import BaseModel, Field

from .cache_service import TimedCache
from .config import settings
from .crypto_service import CoinGeckoClient
from .fetcher import PriceFetcher
from .holdings_store import HoldingNotFoundError, HoldingsStore, InsufficientQuantityError
from .models import AssetType, Holding, HoldingCreate, PortfolioSnapshot, SaleRecord
from .portfolio import PortfolioValuator
from .price_service import EquityPriceService
from .search_service import AssetSearchService

# Configure logging
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="Portfolio Valuation",
    description="Track crypto and stock holdings and chart their value over time",
    version="1.0.0",
)

# Shared services
crypto_service = CoinGeckoClient()
equity_service = EquityPriceService()
price_fetcher = PriceFetcher({AssetType.CRYPTO: crypto_service, AssetType.STOCK: equity_service})
holdings_store = HoldingsStore()
search_service = AssetSearchService(
    crypto_service,
    equity_service,
    TimedCache(timedelta(seconds=settings.search_cache_ttl_seconds), name="asset-search"),
)

# One valuator per user, created on first use and bounded by settings.max_valuators
BACKGROUND_REFRESH = True
_valuators: "OrderedDict[str, PortfolioValuator]" = OrderedDict()
_valuators_lock = threading.Lock()


class SaleRequest(BaseModel):
    quantity: Decimal = Field(gt=0)
    sell_price: Decimal = Field(gt=0)


def get_valuator(user_id: str) -> PortfolioValuator:
    """Return the user's valuator, evicting the least recently used past the limit."""
    with _valuators_lock:
        valuator = _valuators.get(user_id)
        if valuator is not None:
            _valuators.move_to_end(user_id)
            return valuator

        valuator = PortfolioValuator(
            user_id,
            holdings_store,
            price_fetcher,
            config=settings,
            background=BACKGROUND_REFRESH,
        )
        _valuators[user_id] = valuator
        while len(_valuators) > settings.max_valuators:
            evicted_id, evicted = _valuators.popitem(last=False)
            evicted.close()
            logger.info(f"Evicted valuator for user {evicted_id}")
        valuator.request_refresh()
        return valuator


def _user(x_user_id: Optional[str]) -> str:
    return x_user_id or "default"


@app.get("/api/holdings")
async def list_holdings(x_user_id: Optional[str] = Header(None)) -> list[Holding]:
    """List the user's holdings."""
    return holdings_store.get_all(_user(x_user_id))


@app.post("/api/holdings", status_code=201)
async def create_holding(
    data: HoldingCreate, x_user_id: Optional[str] = Header(None)
) -> Holding:
    """Add a holding and trigger a revaluation."""
    user_id = _user(x_user_id)
    get_valuator(user_id)
    return holdings_store.add(user_id, data)


@app.put("/api/holdings/{holding_id}")
async def update_holding(
    holding_id: str, data: HoldingCreate, x_user_id: Optional[str] = Header(None)
) -> Holding:
    """Edit a holding."""
    user_id = _user(x_user_id)
    get_valuator(user_id)
    try:
        return holdings_store.update(user_id, holding_id, data)
    except HoldingNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@app.delete("/api/holdings/{holding_id}", status_code=204)
async def delete_holding(holding_id: str, x_user_id: Optional[str] = Header(None)) -> None:
    """Delete a holding."""
    user_id = _user(x_user_id)
    get_valuator(user_id)
    try:
        holdings_store.delete(user_id, holding_id)
    except HoldingNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@app.post("/api/holdings/{holding_id}/sell", status_code=201)
async def sell_holding(
    holding_id: str, sale: SaleRequest, x_user_id: Optional[str] = Header(None)
) -> SaleRecord:
    """Sell part or all of a holding and record the income."""
    user_id = _user(x_user_id)
    get_valuator(user_id)
    try:
        return holdings_store.sell(user_id, holding_id, sale.quantity, sale.sell_price)
    except HoldingNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InsufficientQuantityError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.get("/api/transactions")
async def list_transactions(x_user_id: Optional[str] = Header(None)) -> list[SaleRecord]:
    """List recorded sales."""
    return holdings_store.transactions(_user(x_user_id))


@app.get("/api/portfolio")
async def get_portfolio(
    period: Optional[int] = Query(None, description="Chart period in days (7, 30 or 90)"),
    currency: str = Query("USD", description="Display currency (USD or ARS)"),
    x_user_id: Optional[str] = Header(None),
) -> PortfolioSnapshot:
    """Get the latest portfolio valuation."""
    valuator = get_valuator(_user(x_user_id))
    try:
        if period is not None:
            valuator.set_period(period)
        return valuator.snapshot(currency)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.post("/api/portfolio/refresh", status_code=202)
async def refresh_portfolio(x_user_id: Optional[str] = Header(None)) -> dict:
    """Request a revaluation; ignored while one is already running."""
    valuator = get_valuator(_user(x_user_id))
    already_loading = valuator.is_loading
    valuator.request_refresh()
    return {"accepted": not already_loading, "is_loading": True}


@app.get("/api/search")
async def search_assets(
    q: str = Query("", description="Name or symbol to search for"),
    asset_type: AssetType = Query(AssetType.CRYPTO),
) -> dict:
    """Search coins or stock tickers."""
    try:
        return {"results": search_service.search(q, asset_type)}
    except Exception as e:
        logger.error(f"Error searching assets: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/api/cache/stats")
async def get_cache_stats() -> dict:
    """Get cache statistics."""
    return {"caches": [search_service.cache.get_cache_stats()]}


@app.post("/api/cache/clear")
async def clear_cache() -> dict:
    """Clear the asset search cache."""
    search_service.cache.invalidate()
    return {"message": "Cache cleared successfully"}
