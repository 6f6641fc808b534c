"""Portfolio valuation: fetch window, daily value series and current totals."""

from datetime import date, timedelta
from decimal import Decimal
from typing import Mapping, Optional, Sequence

from .dates import day_range
from .history import PriceHistoryStore
from .models import FetchWindow, Holding, HoldingRow, PriceSnapshot, ValuationPoint


def chart_start(today: date, period: int) -> date:
    """First day displayed for a period ending today."""
    return today - timedelta(days=period - 1)


def resolve_fetch_window(
    holdings: Sequence[Holding], period: int, today: date
) -> Optional[FetchWindow]:
    """Compute the smallest history window covering the chart and all purchases.

    Args:
        holdings: Current holdings
        period: Displayed period in days
        today: Today's day key

    Returns:
        The fetch window, or None when there are no holdings
    """
    if not holdings:
        return None

    earliest_purchase = min(h.purchase_day for h in holdings)
    fetch_start = min(chart_start(today, period), earliest_purchase)
    return FetchWindow(fetch_start=fetch_start, fetch_end=today)


def build_chart_series(
    holdings: Sequence[Holding],
    store: PriceHistoryStore,
    start: date,
    end: date,
) -> list[ValuationPoint]:
    """Calculate the total portfolio value for every day from start to end.

    A holding counts from its purchase day onwards, once its asset has a
    price for that day. Holdings without a usable asset key never count.
    When no holding has a price on a day, the previous day's total is
    repeated; days before any total was known are None.

    Returns:
        One point per day, in order
    """
    # Resolve keys once; unresolvable holdings are dropped here
    priced = [(h, h.price_key, h.purchase_day) for h in holdings]
    priced = [(h, key, day) for h, key, day in priced if key is not None]

    points = []
    last_known_total: Optional[Decimal] = None

    for day in day_range(start, end):
        daily_total = Decimal("0")
        assets_with_value = 0

        for holding, asset_key, purchase_day in priced:
            if purchase_day > day:
                continue
            price = store.get(asset_key, day)
            if price is not None:
                daily_total += holding.quantity * price
                assets_with_value += 1

        if assets_with_value > 0:
            last_known_total = daily_total
            points.append(ValuationPoint(day=day, total_value=daily_total))
        else:
            points.append(ValuationPoint(day=day, total_value=last_known_total))

    return points


def compute_total_value(
    holdings: Sequence[Holding], live_prices: Mapping[str, PriceSnapshot]
) -> Decimal:
    """Current value of all holdings that have a live price."""
    total = Decimal("0")
    for holding in holdings:
        snapshot = live_prices.get(holding.price_key) if holding.price_key else None
        if snapshot is not None:
            total += holding.quantity * snapshot.price
    return total


def build_rows(
    holdings: Sequence[Holding], live_prices: Mapping[str, PriceSnapshot]
) -> list[HoldingRow]:
    """Per-holding current value and profit/loss.

    Values that cannot be computed are left as None.
    """
    rows = []
    for holding in holdings:
        key = holding.price_key
        snapshot = live_prices.get(key) if key else None
        row = HoldingRow(
            holding_id=holding.id,
            asset_type=holding.asset_type,
            asset_key=key,
            name=holding.name,
            quantity=holding.quantity,
            needs_update=key is None,
        )
        if snapshot is not None:
            row.current_price = snapshot.price
            row.current_value = holding.quantity * snapshot.price
            if holding.purchase_price:
                cost = holding.quantity * holding.purchase_price
                row.pnl = row.current_value - cost
                row.pnl_percent = (row.pnl / cost) * 100
        rows.append(row)
    return rows


def convert(amount: Optional[Decimal], rate: Decimal) -> Optional[Decimal]:
    """Apply a fixed exchange-rate multiplier."""
    if amount is None:
        return None
    return amount * rate
