"""Per-asset daily price history for one valuation cycle."""

import logging
from datetime import date
from decimal import Decimal
from typing import Iterable, Mapping, Optional

from .dates import Instant, date_key, day_range
from .models import PriceSnapshot

logger = logging.getLogger(__name__)


class PriceHistoryStore:
    """Maps asset keys to day -> closing price series.

    A store is built from scratch for every valuation cycle and is never
    shared between cycles.
    """

    def __init__(self):
        self._series: dict[str, dict[date, Decimal]] = {}

    def __contains__(self, asset_key: str) -> bool:
        return asset_key in self._series

    def __len__(self) -> int:
        return len(self._series)

    def ensure(self, asset_key: str) -> dict[date, Decimal]:
        """Return the series for an asset key, creating an empty one."""
        return self._series.setdefault(asset_key, {})

    def merge(self, asset_key: str, prices: Mapping[Instant, object]) -> int:
        """Merge provider prices into an asset's series.

        Keys may be days, datetimes or ISO strings; they are normalized to UTC
        day keys. For a given day the last write wins.

        Returns:
            Number of entries written
        """
        series = self.ensure(asset_key)
        written = 0
        for when, price in prices.items():
            if price is None:
                continue
            series[date_key(when)] = price if isinstance(price, Decimal) else Decimal(str(price))
            written += 1
        return written

    def get(self, asset_key: str, day: date) -> Optional[Decimal]:
        series = self._series.get(asset_key)
        if series is None:
            return None
        return series.get(day)

    def series(self, asset_key: str) -> dict[date, Decimal]:
        """Return a copy of an asset's series ordered by day."""
        return dict(sorted(self._series.get(asset_key, {}).items()))

    def fill_forward(self, start: date, end: date) -> None:
        """Carry the last known price into days with no entry.

        Walks every day from start to end inclusive. Days before an asset's
        first data point stay absent.
        """
        for asset_key, series in self._series.items():
            last_known_price: Optional[Decimal] = None
            filled = 0
            for day in day_range(start, end):
                if day in series:
                    last_known_price = series[day]
                elif last_known_price is not None:
                    series[day] = last_known_price
                    filled += 1
            if filled:
                logger.debug(f"Filled {filled} missing days for {asset_key}")

    def inject_live_prices(
        self, snapshots: Iterable[PriceSnapshot], today: date
    ) -> int:
        """Overwrite today's entry with the live price for each snapshot."""
        injected = 0
        for snapshot in snapshots:
            self.ensure(snapshot.asset_key)[today] = snapshot.price
            injected += 1
        return injected

    def to_dict(self) -> dict[str, dict[date, Decimal]]:
        return {key: self.series(key) for key in self._series}
