"""Limit order monitor."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from swap_scheduler.config import LimitOrderConfig
from swap_scheduler.data.provider import PriceOracle
from swap_scheduler.db import Database, utc_now
from swap_scheduler.execution.base import ExchangeClient
from swap_scheduler.monitoring.logging import order_context
from swap_scheduler.monitoring.notifier import Notifier
from swap_scheduler.orders import ConditionOperator, LimitOrder, OrderKind
from swap_scheduler.workers.base import Outcome, PollingWorker

logger = logging.getLogger(__name__)

_OPERATOR_TEXT = {ConditionOperator.GREATER_THAN: "≥", ConditionOperator.LESS_THAN: "≤"}


class LimitOrderMonitor(PollingWorker[LimitOrder]):
    """Fire pending limit orders whose price condition holds.

    Prices for every distinct condition asset are fetched in one batch per
    cycle.  Expiry is checked before the condition.  A failed execution keeps
    the order pending behind a retry backoff.
    """

    name = "limit_orders"
    kind = OrderKind.LIMIT

    def __init__(
        self,
        db: Database,
        exchange: ExchangeClient,
        notifier: Notifier,
        prices: PriceOracle,
        *,
        config: LimitOrderConfig | None = None,
        max_workers: int = 8,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        cfg = config or LimitOrderConfig()
        super().__init__(
            db,
            exchange,
            notifier,
            poll_interval=cfg.poll_interval,
            max_workers=max_workers,
            clock=clock,
        )
        self._prices = prices
        self._lease = timedelta(minutes=cfg.lease_minutes)
        self._retry_delay = timedelta(minutes=cfg.retry_delay_minutes)

    def load_candidates(self, now: datetime) -> list[LimitOrder]:
        return self._db.get_active_limit_orders(now)

    def prepare(self, orders: list[LimitOrder], now: datetime) -> dict[str, float | None]:
        assets = sorted({order.condition_asset.upper() for order in orders})
        return self._prices.get_multiple_prices(assets)

    def process(self, order: LimitOrder, context: dict[str, float | None], now: datetime) -> Outcome:
        if order.expires_at and datetime.fromisoformat(order.expires_at) <= now:
            if not self._db.expire_limit_order(order.id):
                return Outcome.CONTENDED
            logger.info("Limit order %d expired", order.id, extra=order_context(self.kind.value, order.id))
            self.notify(
                order.owner_id,
                f"⌛ *Limit Order Expired*\n\nYour limit order to swap {order.amount} {order.from_asset} "
                f"→ {order.to_asset} expired before {order.condition_asset} reached {order.threshold}.",
            )
            return Outcome.EXPIRED

        price = context.get(order.condition_asset.upper())
        if price is None:
            logger.warning("No price for %s, skipping limit order %d", order.condition_asset, order.id)
            return Outcome.SKIPPED

        self._db.record_limit_check(order.id, price=price, checked_at=now)
        if not order.is_triggered(price):
            return Outcome.WAITING

        if not order.settle_address:
            logger.warning(
                "Limit order %d triggered at %s but has no settle address",
                order.id,
                price,
                extra=order_context(self.kind.value, order.id, price=price),
            )
            self.notify(
                order.owner_id,
                f"⚠️ *Limit Order Needs Attention*\n\nYour limit order for {order.amount} {order.from_asset} "
                f"→ {order.to_asset} triggered but has no destination address. It stays active until one is set.",
            )
            return Outcome.NEEDS_ADDRESS

        if not self._db.claim_limit_order(order, lease_until=now + self._lease):
            logger.debug("Limit order %d claimed by another worker, skipping", order.id)
            return Outcome.CONTENDED

        logger.info(
            "Executing limit order %d: %s %s %s %s (price %s)",
            order.id,
            order.condition_asset,
            _OPERATOR_TEXT[order.operator],
            order.threshold,
            order.to_asset,
            price,
        )
        try:
            execution = self.execute_swap(order, order.settle_address)
        except Exception as exc:
            retry_at = self._clock() + self._retry_delay
            self._db.release_limit_order(order.id, retry_at=retry_at, error=str(exc))
            logger.error(
                "Limit order %d execution failed: %s; retry after %s",
                order.id,
                exc,
                retry_at.isoformat(),
                extra=order_context(self.kind.value, order.id, error=str(exc)),
            )
            self.notify(
                order.owner_id,
                f"⚠️ *Limit Order Failed*\n\nYour limit order for {order.amount} {order.from_asset} → "
                f"{order.to_asset} could not be executed.\nError: {exc}\n\n"
                "The order will remain active and retry later.",
            )
            return Outcome.RETRY_SCHEDULED

        try:
            self._db.record_limit_execution(order.id, execution, executed_at=self._clock())
        except Exception as exc:
            return self.park_unrecorded(order, execution, exc)
        logger.info("Limit order %d executed, exchange order %s", order.id, execution.exchange_order_id)
        self.notify(
            order.owner_id,
            f"✅ *Limit Order Executed!*\n\n{order.condition_asset} hit {price} "
            f"({_OPERATOR_TEXT[order.operator]} {order.threshold}).\n"
            f"Swap {order.amount} {order.from_asset} → {order.to_asset}.\n"
            f"Order ID: `{execution.exchange_order_id}`\n"
            f"Send {order.amount} {order.from_asset} to `{execution.deposit_address}`.",
        )
        return Outcome.EXECUTED
