"""Paper exchange for simulated swaps."""

import logging
import threading
import uuid
from collections import deque

from swap_scheduler.data.provider import PriceOracle
from swap_scheduler.execution.base import ExchangeError, Quote, ShiftOrder

logger = logging.getLogger(__name__)


class PaperExchange:
    """Simulated exchange that issues quotes and orders without touching the network.

    Settle amounts are priced from the oracle when both legs are available;
    otherwise the quote settles at ``0``.  Quotes are single use, like the
    real provider's.  Only the most recent ``history`` orders are kept in
    memory, so a long-running paper loop does not grow without bound.
    """

    def __init__(self, prices: PriceOracle | None = None, *, history: int = 100) -> None:
        self._prices = prices
        self._quotes: dict[str, Quote] = {}
        self._orders: deque[ShiftOrder] = deque(maxlen=history)
        self._lock = threading.Lock()

    def create_quote(
        self,
        from_asset: str,
        from_network: str,
        to_asset: str,
        to_network: str,
        amount: str,
    ) -> Quote:
        quote = Quote(
            id=f"paper-quote-{uuid.uuid4().hex[:12]}",
            deposit_coin=from_asset,
            deposit_network=from_network,
            settle_coin=to_asset,
            settle_network=to_network,
            deposit_amount=str(amount),
            settle_amount=self._settle_amount(from_asset, to_asset, amount),
        )
        with self._lock:
            self._quotes[quote.id] = quote
        return quote

    def create_order(self, quote_id: str, settle_address: str, refund_address: str) -> ShiftOrder:
        with self._lock:
            quote = self._quotes.pop(quote_id, None)
        if quote is None:
            msg = f"Unknown or already used quote {quote_id}"
            raise ExchangeError(msg)
        order = ShiftOrder(
            id=f"paper-{uuid.uuid4().hex[:16]}",
            deposit_address=f"paper-deposit-{quote.deposit_coin.lower()}",
            deposit_coin=quote.deposit_coin,
            deposit_amount=quote.deposit_amount,
            settle_address=settle_address,
            settle_amount=quote.settle_amount,
        )
        with self._lock:
            self._orders.append(order)
        logger.info(
            "Paper swap %s: %s %s -> %s %s (settle to %s)",
            order.id,
            quote.deposit_amount,
            quote.deposit_coin,
            quote.settle_amount,
            quote.settle_coin,
            settle_address,
        )
        return order

    @property
    def orders(self) -> list[ShiftOrder]:
        """Most recent orders, oldest first."""
        with self._lock:
            return list(self._orders)

    def _settle_amount(self, from_asset: str, to_asset: str, amount: str) -> str:
        if self._prices is None:
            return "0"
        prices = self._prices.get_multiple_prices([from_asset, to_asset])
        from_price = prices.get(from_asset.upper())
        to_price = prices.get(to_asset.upper())
        if not from_price or not to_price:
            return "0"
        try:
            return f"{float(amount) * from_price / to_price:.8f}"
        except ValueError:
            return "0"
