"""Data models for the portfolio valuation engine."""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum, IntEnum
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .dates import date_key


class AssetType(str, Enum):
    """Kinds of assets a holding can track."""
    CRYPTO = "crypto"
    STOCK = "stock"


class Period(IntEnum):
    """Chart display windows, in days."""
    WEEK = 7
    MONTH = 30
    QUARTER = 90


def normalize_asset_key(asset_type: AssetType, key: Optional[str]) -> Optional[str]:
    """Normalize an asset key: coin ids are lowercase, tickers uppercase."""
    if key is None:
        return None
    key = key.strip()
    if not key:
        return None
    return key.lower() if asset_type == AssetType.CRYPTO else key.upper()


class HoldingCreate(BaseModel):
    """Payload used to create or edit a holding.

    The asset key is validated here, at write time, so that stored holdings
    always carry a usable price-lookup identifier.
    """
    asset_type: AssetType
    asset_key: str
    quantity: Decimal = Field(gt=0)
    purchase_timestamp: datetime
    name: Optional[str] = None
    symbol: Optional[str] = None
    purchase_price: Optional[Decimal] = Field(default=None, gt=0)

    @model_validator(mode="after")
    def validate_asset_key(self) -> "HoldingCreate":
        """Require a non-empty asset key and normalize it for its provider."""
        key = normalize_asset_key(self.asset_type, self.asset_key)
        if key is None:
            raise ValueError("asset_key is required")
        self.asset_key = key
        if self.symbol:
            self.symbol = self.symbol.strip().upper()
        return self


class Holding(BaseModel):
    """A position owned by a user."""
    id: str
    asset_type: AssetType
    asset_key: Optional[str] = None  # None only on legacy records
    quantity: Decimal
    purchase_timestamp: datetime
    name: Optional[str] = None
    symbol: Optional[str] = None
    purchase_price: Optional[Decimal] = None

    @field_validator("quantity")
    @classmethod
    def positive_quantity(cls, v: Decimal) -> Decimal:
        if v <= 0:
            raise ValueError("quantity must be positive")
        return v

    @property
    def price_key(self) -> Optional[str]:
        """Key used for price lookups, or None when it cannot be resolved."""
        return normalize_asset_key(self.asset_type, self.asset_key)

    @property
    def purchase_day(self) -> date:
        return date_key(self.purchase_timestamp)

    @property
    def display_symbol(self) -> str:
        return (self.symbol or self.asset_key or self.name or self.id).upper()


class PriceSnapshot(BaseModel):
    """A live price observation for one asset key."""
    asset_key: str
    price: Decimal = Field(gt=0)
    as_of: datetime


class FetchWindow(BaseModel):
    """Inclusive day range to request historical prices for."""
    fetch_start: date
    fetch_end: date

    @model_validator(mode="after")
    def ordered(self) -> "FetchWindow":
        if self.fetch_start > self.fetch_end:
            raise ValueError("fetch_start must not be after fetch_end")
        return self


class ValuationPoint(BaseModel):
    """Total portfolio value on one day (None before any price is known)."""
    day: date
    total_value: Optional[Decimal] = None


class HoldingRow(BaseModel):
    """Per-holding view shown next to the chart."""
    holding_id: str
    asset_type: AssetType
    asset_key: Optional[str] = None
    name: Optional[str] = None
    quantity: Decimal
    current_price: Optional[Decimal] = None
    current_value: Optional[Decimal] = None
    pnl: Optional[Decimal] = None
    pnl_percent: Optional[Decimal] = None
    needs_update: bool = False


class PortfolioSnapshot(BaseModel):
    """Published result of a valuation cycle."""
    total_value: Decimal = Decimal("0")
    chart_series: list[ValuationPoint] = []
    price_history: dict[str, dict[date, Decimal]] = {}
    rows: list[HoldingRow] = []
    is_loading: bool = False
    period: Period = Period.QUARTER
    currency: str = "USD"
    updated_at: Optional[datetime] = None


class SaleRecord(BaseModel):
    """Immutable income entry written when part of a holding is sold."""
    id: str
    holding_id: str
    asset_key: Optional[str] = None
    quantity: Decimal
    sell_price: Decimal
    total: Decimal
    timestamp: datetime
    description: str

    model_config = {"frozen": True}
