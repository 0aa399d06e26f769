"""Recurring (DCA) order scheduler."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from swap_scheduler.config import RecurringConfig
from swap_scheduler.db import Database, utc_now
from swap_scheduler.execution.base import ExchangeClient
from swap_scheduler.monitoring.logging import order_context
from swap_scheduler.monitoring.notifier import Notifier
from swap_scheduler.orders import OrderKind, ScheduledOrder
from swap_scheduler.workers.base import Outcome, PollingWorker

logger = logging.getLogger(__name__)


class RecurringOrderScheduler(PollingWorker[ScheduledOrder]):
    """Execute due recurring schedules, one claimed run at a time.

    A run claims the row by writing a short processing lease.  On success the
    business due time moves to ``execution time + interval`` and the lease is
    cleared; on failure the lease is replaced by a fixed retry backoff and the
    execution counter is left alone.
    """

    name = "recurring"
    kind = OrderKind.RECURRING

    def __init__(
        self,
        db: Database,
        exchange: ExchangeClient,
        notifier: Notifier,
        *,
        config: RecurringConfig | None = None,
        max_workers: int = 8,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        cfg = config or RecurringConfig()
        super().__init__(
            db,
            exchange,
            notifier,
            poll_interval=cfg.poll_interval,
            max_workers=max_workers,
            clock=clock,
        )
        self._lease = timedelta(minutes=cfg.lease_minutes)
        self._retry_delay = timedelta(minutes=cfg.retry_delay_minutes)

    def load_candidates(self, now: datetime) -> list[ScheduledOrder]:
        return self._db.get_due_scheduled_orders(now)

    def process(self, order: ScheduledOrder, context: Any, now: datetime) -> Outcome:
        if order.orders_executed >= order.total_orders:
            self._db.deactivate_scheduled_order(order.id)
            logger.info(
                "Schedule %d already ran %d/%d times; deactivated", order.id, order.orders_executed, order.total_orders
            )
            return Outcome.COMPLETED

        if not self._db.claim_scheduled_order(order, lease_until=now + self._lease):
            logger.debug("Schedule %d claimed by another worker, skipping", order.id)
            return Outcome.CONTENDED

        address = self._db.get_wallet_address(order.owner_id)
        if address is None:
            self._db.release_scheduled_order(order.id, retry_at=self._clock() + self._retry_delay)
            logger.warning(
                "Skipping schedule %d: owner %d has no wallet address",
                order.id,
                order.owner_id,
                extra=order_context(self.kind.value, order.id, owner_id=order.owner_id),
            )
            self.notify(
                order.owner_id,
                f"⚠️ *DCA Skipped*\n\nYour {order.to_asset} DCA could not run because no wallet "
                "address is set. Set one to resume purchases.",
            )
            return Outcome.NEEDS_ADDRESS

        number = order.orders_executed + 1
        try:
            execution = self.execute_swap(order, address)
        except Exception as exc:
            retry_at = self._clock() + self._retry_delay
            self._db.release_scheduled_order(order.id, retry_at=retry_at)
            logger.error(
                "Schedule %d run %d/%d failed: %s; retry at %s",
                order.id,
                number,
                order.total_orders,
                exc,
                retry_at.isoformat(),
                extra=order_context(self.kind.value, order.id, error=str(exc)),
            )
            self.notify(
                order.owner_id,
                f"⚠️ *DCA Purchase Failed*\n\nPurchase {number}/{order.total_orders} for "
                f"{order.to_asset} could not be executed.\nError: {exc}\n\nWill retry shortly.",
            )
            return Outcome.RETRY_SCHEDULED

        executed_at = self._clock()
        next_due_at = executed_at + timedelta(hours=order.interval_hours)
        try:
            self._db.record_scheduled_execution(order.id, execution, next_due_at=next_due_at)
        except Exception as exc:
            return self.park_unrecorded(order, execution, exc)
        logger.info(
            "Executed schedule %d run %d/%d, exchange order %s",
            order.id,
            number,
            order.total_orders,
            execution.exchange_order_id,
            extra=order_context(self.kind.value, order.id, exchange_order_id=execution.exchange_order_id),
        )

        if number >= order.total_orders:
            next_line = "This was the final purchase. Your DCA is complete."
        else:
            next_line = f"Next purchase: {next_due_at:%Y-%m-%d %H:%M} UTC"
        self.notify(
            order.owner_id,
            f"✅ *DCA Purchase Executed!*\n\nPurchase {number}/{order.total_orders}: "
            f"{order.amount} {order.from_asset} → {order.to_asset}.\n"
            f"Order ID: `{execution.exchange_order_id}`\n"
            f"Send {order.amount} {order.from_asset} to `{execution.deposit_address}`.\n\n{next_line}",
        )
        return Outcome.EXECUTED
