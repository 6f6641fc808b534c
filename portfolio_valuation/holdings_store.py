"""In-memory holdings collection with change notification."""

import logging
import threading
import uuid
from collections import defaultdict
from datetime import datetime
from decimal import Decimal
from typing import Callable

from .cache_service import utc_now
from .models import Holding, HoldingCreate, SaleRecord

logger = logging.getLogger(__name__)

# Remaining quantities at or below this are treated as fully sold
QUANTITY_EPSILON = Decimal("1e-8")

ChangeListener = Callable[[str, list[Holding]], None]


class HoldingNotFoundError(Exception):
    """Raised when a holding id does not exist for the user."""

    def __init__(self, holding_id: str):
        self.holding_id = holding_id
        super().__init__(f"Holding {holding_id} not found")


class InsufficientQuantityError(Exception):
    """Raised when a sale exceeds the quantity held."""

    def __init__(self, holding_id: str, requested: Decimal, available: Decimal):
        self.holding_id = holding_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Cannot sell {requested} of holding {holding_id}: only {available} held"
        )


class HoldingsStore:
    """Per-user CRUD store for holdings plus a sale transaction log.

    Every mutation notifies subscribed listeners with the user's fresh
    holdings list.
    """

    def __init__(self, clock: Callable[[], datetime] = utc_now):
        self._holdings: dict[str, dict[str, Holding]] = defaultdict(dict)
        self._transactions: dict[str, list[SaleRecord]] = defaultdict(list)
        self._listeners: list[ChangeListener] = []
        self._lock = threading.RLock()
        self._clock = clock

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        """Register a change listener.

        Returns:
            Function that removes the listener
        """
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, user_id: str) -> None:
        holdings = self.get_all(user_id)
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(user_id, holdings)
            except Exception as e:
                logger.error(f"Holdings listener failed for user {user_id}: {e}")

    def get_all(self, user_id: str) -> list[Holding]:
        with self._lock:
            return sorted(
                self._holdings[user_id].values(), key=lambda h: (h.purchase_timestamp, h.id)
            )

    def get(self, user_id: str, holding_id: str) -> Holding:
        with self._lock:
            holding = self._holdings[user_id].get(holding_id)
        if holding is None:
            raise HoldingNotFoundError(holding_id)
        return holding

    def add(self, user_id: str, data: HoldingCreate) -> Holding:
        holding = Holding(id=uuid.uuid4().hex, **data.model_dump())
        with self._lock:
            self._holdings[user_id][holding.id] = holding
        logger.info(f"Added holding {holding.id} ({holding.asset_key}) for user {user_id}")
        self._notify(user_id)
        return holding

    def load(self, user_id: str, holdings: list[Holding]) -> None:
        """Replace a user's holdings with existing records, legacy ones included."""
        with self._lock:
            self._holdings[user_id] = {h.id: h for h in holdings}
        self._notify(user_id)

    def update(self, user_id: str, holding_id: str, data: HoldingCreate) -> Holding:
        with self._lock:
            if holding_id not in self._holdings[user_id]:
                raise HoldingNotFoundError(holding_id)
            holding = Holding(id=holding_id, **data.model_dump())
            self._holdings[user_id][holding_id] = holding
        self._notify(user_id)
        return holding

    def delete(self, user_id: str, holding_id: str) -> None:
        with self._lock:
            if self._holdings[user_id].pop(holding_id, None) is None:
                raise HoldingNotFoundError(holding_id)
        logger.info(f"Deleted holding {holding_id} for user {user_id}")
        self._notify(user_id)

    def sell(
        self, user_id: str, holding_id: str, quantity: Decimal, sell_price: Decimal
    ) -> SaleRecord:
        """Sell part or all of a holding.

        The holding's quantity is reduced, or the holding is deleted when the
        remainder is negligible. An income record is appended to the user's
        transaction log in the same step.
        """
        if quantity <= 0 or sell_price <= 0:
            raise ValueError("Sale quantity and price must be positive")

        with self._lock:
            holding = self._holdings[user_id].get(holding_id)
            if holding is None:
                raise HoldingNotFoundError(holding_id)

            remaining = holding.quantity - quantity
            if remaining < -QUANTITY_EPSILON:
                raise InsufficientQuantityError(holding_id, quantity, holding.quantity)

            if remaining > QUANTITY_EPSILON:
                self._holdings[user_id][holding_id] = holding.model_copy(
                    update={"quantity": remaining}
                )
            else:
                del self._holdings[user_id][holding_id]

            record = SaleRecord(
                id=uuid.uuid4().hex,
                holding_id=holding_id,
                asset_key=holding.asset_key,
                quantity=quantity,
                sell_price=sell_price,
                total=quantity * sell_price,
                timestamp=self._clock(),
                description=f"Venta de {quantity.normalize():f} {holding.display_symbol}",
            )
            self._transactions[user_id].append(record)

        logger.info(f"Recorded sale of {quantity} {holding.display_symbol} for user {user_id}")
        self._notify(user_id)
        return record

    def transactions(self, user_id: str) -> list[SaleRecord]:
        with self._lock:
            return list(self._transactions[user_id])
