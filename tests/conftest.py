"""Shared test fixtures: fake providers, fixed clocks and holdings."""

from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Optional

import pytest
import pytz

from portfolio_valuation.config import Settings
from portfolio_valuation.dates import date_key
from portfolio_valuation.models import AssetType, Holding, PriceSnapshot

NOW = datetime(2024, 1, 13, 15, 0, tzinfo=pytz.utc)


class FakeProvider:
    """In-memory price provider that records every call."""

    def __init__(
        self,
        name: str = "fake",
        histories: Optional[dict] = None,
        current: Optional[dict] = None,
        failing: tuple = (),
        fail_current: bool = False,
    ):
        self.name = name
        self.histories = histories or {}
        self.current = current or {}
        self.failing = set(failing)
        self.fail_current = fail_current
        self.history_calls: list[tuple[str, date, date]] = []
        self.current_calls: list[list[str]] = []

    def get_current_prices(self, asset_keys):
        self.current_calls.append(list(asset_keys))
        if self.fail_current:
            raise RuntimeError("current price endpoint down")
        return {
            key: PriceSnapshot(asset_key=key, price=Decimal(str(price)), as_of=NOW)
            for key, price in self.current.items()
            if key in asset_keys
        }

    def get_price_history(self, asset_key, from_day, to_day):
        self.history_calls.append((asset_key, from_day, to_day))
        if asset_key in self.failing:
            raise RuntimeError(f"history for {asset_key} unavailable")
        return {
            date.fromisoformat(day): Decimal(str(price))
            for day, price in self.histories.get(asset_key, {}).items()
        }


class FakeClock:
    """Monotonic clock and sleep pair that never blocks."""

    def __init__(self, start: float = 100.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeDateTimeClock:
    """Wall clock returning a settable aware datetime."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def make_holding(
    holding_id: str,
    asset_key: Optional[str],
    quantity,
    purchased: str,
    asset_type: AssetType = AssetType.STOCK,
    purchase_price=None,
) -> Holding:
    """Build a stored holding purchased at midnight UTC on a day."""
    day = date.fromisoformat(purchased)
    return Holding(
        id=holding_id,
        asset_type=asset_type,
        asset_key=asset_key,
        quantity=Decimal(str(quantity)),
        purchase_timestamp=datetime(day.year, day.month, day.day, tzinfo=pytz.utc),
        purchase_price=Decimal(str(purchase_price)) if purchase_price is not None else None,
    )


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def today():
    return date_key(NOW)


@pytest.fixture
def test_settings():
    return Settings(
        _env_file=None,
        default_period=7,
        usd_to_ars_rate=1000.0,
        crypto_request_interval=0,
        equity_request_interval=0,
    )


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def wall_clock():
    return FakeDateTimeClock()
