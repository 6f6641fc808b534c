"""Fetches price data for a set of holdings from their providers.

Requests to one provider run one after another (each provider paces itself
through its rate limiter); different providers are queried concurrently.
A failed request only costs the data for that asset key.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Callable, Iterable, Protocol, TypeVar

from .history import PriceHistoryStore
from .models import AssetType, FetchWindow, Holding, PriceSnapshot

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PriceProvider(Protocol):
    """Contract shared by the crypto and equity price services."""

    name: str

    def get_current_prices(self, asset_keys: list[str]) -> dict[str, PriceSnapshot]:
        ...

    def get_price_history(
        self, asset_key: str, from_day: date, to_day: date
    ) -> dict[date, Decimal]:
        ...


@dataclass
class FetchReport:
    """Outcome of one history batch."""
    succeeded: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def requested(self) -> int:
        return len(self.succeeded) + len(self.failed)

    @property
    def all_failed(self) -> bool:
        return self.requested > 0 and not self.succeeded


def group_asset_keys(holdings: Iterable[Holding]) -> dict[AssetType, list[str]]:
    """Distinct resolvable asset keys per asset type, in first-seen order."""
    grouped: dict[AssetType, dict[str, None]] = {}
    for holding in holdings:
        key = holding.price_key
        if key is None:
            continue
        grouped.setdefault(holding.asset_type, {})[key] = None
    return {asset_type: list(keys) for asset_type, keys in grouped.items()}


class PriceFetcher:
    """Runs history and live price batches across providers."""

    def __init__(self, providers: dict[AssetType, PriceProvider], parallel: bool = True):
        """Initialize the fetcher.

        Args:
            providers: Price provider for each asset type
            parallel: Query different providers concurrently
        """
        self.providers = providers
        self.parallel = parallel

    def _run_per_provider(
        self,
        keys_by_type: dict[AssetType, list[str]],
        task: Callable[[PriceProvider, list[str]], T],
    ) -> dict[AssetType, T]:
        jobs = {
            asset_type: (self.providers[asset_type], keys)
            for asset_type, keys in keys_by_type.items()
            if keys and asset_type in self.providers
        }
        for asset_type in keys_by_type:
            if asset_type not in self.providers:
                logger.warning(f"No price provider configured for {asset_type.value} assets")

        if not self.parallel or len(jobs) <= 1:
            return {asset_type: task(*job) for asset_type, job in jobs.items()}

        with ThreadPoolExecutor(max_workers=len(jobs), thread_name_prefix="price-fetch") as pool:
            futures = {asset_type: pool.submit(task, *job) for asset_type, job in jobs.items()}
            return {asset_type: future.result() for asset_type, future in futures.items()}

    def _fetch_histories(
        self, provider: PriceProvider, asset_keys: list[str], window: FetchWindow
    ) -> dict[str, dict[date, Decimal]]:
        results: dict[str, dict[date, Decimal]] = {}
        for asset_key in asset_keys:
            try:
                results[asset_key] = provider.get_price_history(
                    asset_key, window.fetch_start, window.fetch_end
                ) or {}
            except Exception as e:
                logger.warning(f"Could not fetch history for {asset_key} from {provider.name}: {e}")
                results[asset_key] = {}
        return results

    def fetch_histories(
        self,
        keys_by_type: dict[AssetType, list[str]],
        window: FetchWindow,
        store: PriceHistoryStore,
    ) -> FetchReport:
        """Fetch one history per asset key and merge it into the store.

        Asset keys whose request failed or returned nothing end up with an
        empty series.
        """
        report = FetchReport()
        per_provider = self._run_per_provider(
            keys_by_type, lambda provider, keys: self._fetch_histories(provider, keys, window)
        )
        for histories in per_provider.values():
            for asset_key, history in histories.items():
                store.ensure(asset_key)
                if history:
                    store.merge(asset_key, history)
                    report.succeeded.append(asset_key)
                else:
                    report.failed.append(asset_key)

        if report.failed:
            logger.warning(f"No price history for: {', '.join(report.failed)}")
        logger.info(
            f"History batch {window.fetch_start}..{window.fetch_end}: "
            f"{len(report.succeeded)}/{report.requested} assets"
        )
        return report

    def _fetch_current(
        self, provider: PriceProvider, asset_keys: list[str]
    ) -> dict[str, PriceSnapshot]:
        try:
            return provider.get_current_prices(asset_keys) or {}
        except Exception as e:
            logger.warning(f"Could not fetch current prices from {provider.name}: {e}")
            return {}

    def fetch_current_prices(
        self, keys_by_type: dict[AssetType, list[str]]
    ) -> dict[str, PriceSnapshot]:
        """Fetch live prices for every asset key, merged across providers."""
        snapshots: dict[str, PriceSnapshot] = {}
        for prices in self._run_per_provider(keys_by_type, self._fetch_current).values():
            snapshots.update(prices)
        return snapshots
