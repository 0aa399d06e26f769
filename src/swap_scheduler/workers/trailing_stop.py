"""Trailing stop monitor."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from swap_scheduler.config import TrailingStopConfig
from swap_scheduler.data.provider import PriceOracle
from swap_scheduler.db import Database, utc_now
from swap_scheduler.execution.base import ExchangeClient
from swap_scheduler.monitoring.logging import order_context
from swap_scheduler.monitoring.notifier import Notifier
from swap_scheduler.orders import OrderKind, TrailingStopOrder
from swap_scheduler.workers.base import Outcome, PollingWorker

logger = logging.getLogger(__name__)


class TrailingStopMonitor(PollingWorker[TrailingStopOrder]):
    """Track each stop's peak price and sell once price falls to the trailing level.

    The peak, current price and trigger price are persisted on every poll.
    Triggering is a ``pending -> triggered`` status CAS, so only one worker
    executes the swap.  A failed swap is terminal unless
    ``retry_failed_executions`` is enabled.
    """

    name = "trailing_stops"
    kind = OrderKind.TRAILING_STOP

    def __init__(
        self,
        db: Database,
        exchange: ExchangeClient,
        notifier: Notifier,
        prices: PriceOracle,
        *,
        config: TrailingStopConfig | None = None,
        max_workers: int = 8,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        cfg = config or TrailingStopConfig()
        super().__init__(
            db,
            exchange,
            notifier,
            poll_interval=cfg.poll_interval,
            max_workers=max_workers,
            clock=clock,
        )
        self._prices = prices
        self._retry_failed = cfg.retry_failed_executions
        self._retry_delay = timedelta(minutes=cfg.retry_delay_minutes)

    def load_candidates(self, now: datetime) -> list[TrailingStopOrder]:
        return self._db.get_active_trailing_stops(now)

    def prepare(self, orders: list[TrailingStopOrder], now: datetime) -> dict[str, float | None]:
        assets = sorted({order.from_asset.upper() for order in orders})
        return self._prices.get_multiple_prices(assets)

    def process(self, order: TrailingStopOrder, context: dict[str, float | None], now: datetime) -> Outcome:
        price = context.get(order.from_asset.upper())
        if price is None:
            logger.warning("No price for %s, skipping trailing stop %d", order.from_asset, order.id)
            return Outcome.SKIPPED

        observed = self._db.update_trailing_prices(order.id, current_price=price, checked_at=now)
        if observed is None:
            logger.debug("Trailing stop %d left pending before its price update", order.id)
            return Outcome.CONTENDED
        peak, trigger = observed
        if order.peak_price is not None and peak > order.peak_price:
            logger.info("New peak for trailing stop %d: %s", order.id, peak)
        if price > trigger:
            return Outcome.WAITING

        if not self._db.trigger_trailing_stop(order.id, triggered_at=now):
            logger.debug("Trailing stop %d already triggered by another worker", order.id)
            return Outcome.CONTENDED

        logger.info(
            "Trailing stop %d triggered: price %s <= trigger %s (peak %s)",
            order.id,
            price,
            trigger,
            peak,
            extra=order_context(self.kind.value, order.id, price=price, peak=peak, trigger=trigger),
        )
        self.notify(
            order.owner_id,
            f"🚨 *Trailing Stop Triggered!*\n\n*{order.from_asset} → {order.to_asset}*\n"
            f"Amount: {order.amount}\nPeak: ${peak:,.2f}\nTrigger: ${trigger:,.2f}",
        )

        if not order.settle_address:
            return self._handle_failure(order, "Missing settle address")
        try:
            execution = self.execute_swap(order, order.settle_address)
        except Exception as exc:
            return self._handle_failure(order, str(exc))

        try:
            self._db.complete_trailing_stop(order.id, execution)
        except Exception as exc:
            return self.park_unrecorded(order, execution, exc)
        logger.info("Trailing stop %d executed, exchange order %s", order.id, execution.exchange_order_id)
        self.notify(
            order.owner_id,
            f"✅ *Trailing Stop Executed!*\n\nOrder ID: `{execution.exchange_order_id}`\n"
            f"Deposit {order.amount} {order.from_asset} to `{execution.deposit_address}`.",
        )
        return Outcome.EXECUTED

    def _handle_failure(self, order: TrailingStopOrder, error: str) -> Outcome:
        if self._retry_failed:
            retry_at = self._clock() + self._retry_delay
            self._db.requeue_trailing_stop(order.id, retry_at=retry_at, error=error)
            logger.error(
                "Trailing stop %d execution failed: %s; back to monitoring after %s",
                order.id,
                error,
                retry_at.isoformat(),
                extra=order_context(self.kind.value, order.id, error=error),
            )
            self.notify(
                order.owner_id,
                f"⚠️ *Trailing Stop Failed*\n\n{error}\n\nThe stop stays active and will retry.",
            )
            return Outcome.RETRY_SCHEDULED

        self._db.fail_trailing_stop(order.id, error=error)
        logger.error(
            "Trailing stop %d execution failed: %s",
            order.id,
            error,
            extra=order_context(self.kind.value, order.id, error=error),
        )
        self.notify(order.owner_id, f"❌ *Trailing Stop Failed*\n\n{error}")
        return Outcome.FAILED
