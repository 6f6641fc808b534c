"""Portfolio valuation cycle and its single-flight worker."""

import logging
import threading
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional

from .cache_service import utc_now
from .config import Settings, settings as default_settings
from .dates import date_key
from .fetcher import PriceFetcher, group_asset_keys
from .history import PriceHistoryStore
from .holdings_store import HoldingsStore
from .models import Holding, Period, PortfolioSnapshot, ValuationPoint
from .valuation import (
    build_chart_series,
    build_rows,
    chart_start,
    compute_total_value,
    convert,
    resolve_fetch_window,
)

logger = logging.getLogger(__name__)

SUPPORTED_CURRENCIES = ("USD", "ARS")


class PortfolioValuator:
    """Recomputes a user's portfolio value whenever holdings or period change.

    Only one cycle runs at a time. A trigger that arrives while a cycle is
    running does not start a second batch; it marks the result stale so the
    running cycle repeats once with the latest holdings and period. The last
    good snapshot stays visible while a cycle runs, except that it is cleared
    as soon as the holdings become empty.
    """

    def __init__(
        self,
        user_id: str,
        store: HoldingsStore,
        fetcher: PriceFetcher,
        config: Optional[Settings] = None,
        clock: Callable[[], datetime] = utc_now,
        background: bool = True,
    ):
        """Initialize the valuator and subscribe to holdings changes.

        Args:
            user_id: Owner of the holdings
            store: Holdings collection
            fetcher: Price fetcher for live and historical prices
            config: Settings (default period, exchange rate)
            clock: Returns the current time
            background: Run triggered cycles on a worker thread
        """
        self.user_id = user_id
        self.store = store
        self.fetcher = fetcher
        self.config = config or default_settings
        self.background = background
        self._clock = clock
        self._period = Period(self.config.default_period)
        self._lock = threading.Lock()
        self._in_flight = False
        self._dirty = False
        self._worker: Optional[threading.Thread] = None
        self._snapshot = PortfolioSnapshot(period=self._period)
        self._unsubscribe = store.subscribe(self._on_holdings_changed)

    @property
    def period(self) -> Period:
        return self._period

    @property
    def is_loading(self) -> bool:
        with self._lock:
            return self._in_flight

    def close(self) -> None:
        """Stop listening to holdings changes."""
        self._unsubscribe()

    def _on_holdings_changed(self, user_id: str, holdings: list[Holding]) -> None:
        if user_id != self.user_id:
            return
        if not holdings:
            with self._lock:
                self._snapshot = PortfolioSnapshot(
                    period=self._period, is_loading=self._in_flight, updated_at=self._clock()
                )
        self.request_refresh()

    def set_period(self, period: int) -> None:
        """Change the displayed period and recompute.

        Raises:
            ValueError: If the period is not one of the supported windows
        """
        new_period = Period(period)
        if new_period == self._period:
            return
        self._period = new_period
        self.request_refresh()

    def _begin_cycle(self) -> bool:
        """Claim the in-flight slot; caller holds the lock."""
        if self._in_flight:
            self._dirty = True
            return False
        self._in_flight = True
        self._snapshot = self._snapshot.model_copy(update={"is_loading": True})
        return True

    def request_refresh(self) -> None:
        """Trigger a cycle, on a worker thread when running in background mode."""
        if not self.background:
            self.refresh()
            return

        with self._lock:
            if not self._begin_cycle():
                return
        worker = threading.Thread(
            target=self._run_cycles, name=f"valuation-{self.user_id}", daemon=True
        )
        self._worker = worker
        worker.start()

    def wait(self, timeout: Optional[float] = None) -> None:
        """Block until the current background cycle finishes."""
        worker = self._worker
        if worker is not None:
            worker.join(timeout)

    def refresh(self) -> Optional[PortfolioSnapshot]:
        """Run a valuation cycle in the calling thread.

        Returns:
            The published snapshot, or None when another cycle was already
            running (that cycle will repeat with the latest inputs)
        """
        with self._lock:
            if not self._begin_cycle():
                logger.debug(f"Valuation for {self.user_id} already running; rerun queued")
                return None
        return self._run_cycles()

    def _run_cycles(self) -> PortfolioSnapshot:
        while True:
            with self._lock:
                self._dirty = False
            try:
                snapshot = self.compute()
            except Exception as e:
                logger.error(f"Valuation cycle failed for {self.user_id}: {e}")
                snapshot = None

            with self._lock:
                if not self._dirty:
                    if snapshot is not None:
                        self._snapshot = snapshot
                    else:
                        self._snapshot = self._snapshot.model_copy(update={"is_loading": False})
                    self._in_flight = False
                    return self._snapshot
                if snapshot is not None:
                    self._snapshot = snapshot.model_copy(update={"is_loading": True})
            logger.info(f"Inputs changed during valuation for {self.user_id}; recomputing")

    def compute(self) -> PortfolioSnapshot:
        """Build a fresh snapshot from the current holdings and period.

        Nothing is shared with previous cycles, so running this twice on the
        same inputs gives the same result.
        """
        holdings = self.store.get_all(self.user_id)
        period = self._period
        now = self._clock()
        today = date_key(now)

        window = resolve_fetch_window(holdings, period, today)
        if window is None:
            return PortfolioSnapshot(period=period, updated_at=now)

        keys_by_type = group_asset_keys(holdings)
        history = PriceHistoryStore()

        live_prices = self.fetcher.fetch_current_prices(keys_by_type)
        report = self.fetcher.fetch_histories(keys_by_type, window, history)
        if report.all_failed:
            logger.warning(
                f"Price history failed for every asset of {self.user_id}; chart may be incomplete"
            )

        history.fill_forward(window.fetch_start, window.fetch_end)
        history.inject_live_prices(live_prices.values(), today)

        chart_series = build_chart_series(holdings, history, chart_start(today, period), today)
        unresolved = [h.id for h in holdings if h.price_key is None]
        if unresolved:
            logger.warning(f"Holdings without a price key (need update): {', '.join(unresolved)}")

        return PortfolioSnapshot(
            total_value=compute_total_value(holdings, live_prices),
            chart_series=chart_series,
            price_history=history.to_dict(),
            rows=build_rows(holdings, live_prices),
            period=period,
            updated_at=now,
        )

    def snapshot(self, currency: str = "USD") -> PortfolioSnapshot:
        """Return the last published snapshot in the requested currency.

        Raises:
            ValueError: If the currency is not supported
        """
        currency = currency.upper()
        if currency not in SUPPORTED_CURRENCIES:
            raise ValueError(f"Unsupported currency '{currency}'")

        with self._lock:
            current = self._snapshot.model_copy(update={"is_loading": self._in_flight})
        if currency == "USD":
            return current

        rate = Decimal(str(self.config.usd_to_ars_rate))
        return current.model_copy(
            update={
                "currency": currency,
                "total_value": convert(current.total_value, rate),
                "chart_series": [
                    ValuationPoint(day=p.day, total_value=convert(p.total_value, rate))
                    for p in current.chart_series
                ],
                "price_history": {
                    key: {day: price * rate for day, price in series.items()}
                    for key, series in current.price_history.items()
                },
                "rows": [
                    row.model_copy(
                        update={
                            "current_price": convert(row.current_price, rate),
                            "current_value": convert(row.current_value, rate),
                            "pnl": convert(row.pnl, rate),
                        }
                    )
                    for row in current.rows
                ],
            }
        )
