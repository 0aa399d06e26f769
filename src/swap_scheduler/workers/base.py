"""Polling worker skeleton shared by every order kind.

A worker cycle is: load candidate rows → prepare shared inputs (e.g. one batch
price lookup) → process each order independently in a thread pool.  Each
order is processed inside its own exception boundary, so one failing order
never aborts its siblings.  Subclasses supply the kind-specific candidate
query, trigger evaluation and execution in :meth:`PollingWorker.process`.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from collections import Counter
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Generic, Protocol, TypeVar

from swap_scheduler.db import Database, Execution, utc_now
from swap_scheduler.execution.base import ExchangeClient, ExchangeError
from swap_scheduler.monitoring.logging import order_context
from swap_scheduler.monitoring.notifier import Notifier
from swap_scheduler.orders import OrderKind

logger = logging.getLogger(__name__)


class SwapSource(Protocol):
    """Fields every order kind carries for creating a swap."""

    id: int
    owner_id: int
    from_asset: str
    from_network: str
    to_asset: str
    to_network: str
    amount: str


OrderT = TypeVar("OrderT", bound=SwapSource)


class Outcome(str, Enum):
    """Result of processing one order in one cycle."""

    EXECUTED = "executed"
    WAITING = "waiting"
    SKIPPED = "skipped"
    CONTENDED = "contended"
    RETRY_SCHEDULED = "retry_scheduled"
    NEEDS_ADDRESS = "needs_address"
    EXPIRED = "expired"
    FAILED = "failed"
    COMPLETED = "completed"
    UNRECORDED = "unrecorded"
    ERROR = "error"


@dataclass
class CycleReport:
    """Summary of one poll cycle."""

    worker: str
    candidates: int = 0
    outcomes: Counter[str] = field(default_factory=Counter)
    load_failed: bool = False

    def count(self, outcome: Outcome) -> int:
        return self.outcomes[outcome.value]

    def to_dict(self) -> dict[str, Any]:
        return {
            "worker": self.worker,
            "candidates": self.candidates,
            "load_failed": self.load_failed,
            **dict(self.outcomes),
        }


class PollingWorker(ABC, Generic[OrderT]):
    """Timer-driven loop that claims and executes due orders of one kind."""

    name: str
    kind: OrderKind

    def __init__(
        self,
        db: Database,
        exchange: ExchangeClient,
        notifier: Notifier,
        *,
        poll_interval: float,
        max_workers: int = 8,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._db = db
        self._exchange = exchange
        self._notifier = notifier
        self._poll_interval = poll_interval
        self._max_workers = max(1, max_workers)
        self._clock = clock

    @property
    def poll_interval(self) -> float:
        return self._poll_interval

    # ------------------------------------------------------------------
    # Kind-specific strategy
    # ------------------------------------------------------------------

    @abstractmethod
    def load_candidates(self, now: datetime) -> list[OrderT]:
        """Return the orders this cycle should look at."""

    def prepare(self, orders: list[OrderT], now: datetime) -> Any:  # noqa: ARG002
        """Compute inputs shared by every order in the cycle. Override in subclasses."""
        return None

    @abstractmethod
    def process(self, order: OrderT, context: Any, now: datetime) -> Outcome:
        """Evaluate one order and act on it."""

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    def run_cycle(self) -> CycleReport:
        """Run one poll cycle and return a summary. Never raises."""
        report = CycleReport(worker=self.name)
        now = self._clock()
        try:
            orders = self.load_candidates(now)
            context = self.prepare(orders, now) if orders else None
        except Exception:
            logger.exception("%s: failed to load orders", self.name)
            report.load_failed = True
            return report

        report.candidates = len(orders)
        if not orders:
            return report
        logger.info("%s: processing %d order(s)", self.name, len(orders))

        if len(orders) == 1 or self._max_workers == 1:
            outcomes = [self._process_safely(order, context, now) for order in orders]
        else:
            with ThreadPoolExecutor(
                max_workers=min(self._max_workers, len(orders)), thread_name_prefix=self.name
            ) as pool:
                outcomes = list(pool.map(lambda order: self._process_safely(order, context, now), orders))
        report.outcomes.update(outcome.value for outcome in outcomes)
        return report

    def run_forever(self, stop: threading.Event) -> None:
        """Run cycles every ``poll_interval`` seconds until ``stop`` is set."""
        logger.info("%s worker started (poll every %ss)", self.name, self._poll_interval)
        while not stop.is_set():
            report = self.run_cycle()
            if report.candidates:
                logger.info("%s cycle: %s", self.name, report.to_dict())
            stop.wait(self._poll_interval)
        logger.info("%s worker stopped", self.name)

    def _process_safely(self, order: OrderT, context: Any, now: datetime) -> Outcome:
        try:
            return self.process(order, context, now)
        except Exception:
            logger.exception(
                "%s: unhandled error processing order %d",
                self.name,
                order.id,
                extra=order_context(self.kind.value, order.id),
            )
            return Outcome.ERROR

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    def execute_swap(self, order: OrderT, settle_address: str) -> Execution:
        """Quote and create the exchange order for ``order``.

        Raises :class:`ExchangeError` when the quote carries an error or
        either call fails; the result is ready to be recorded.
        """
        quote = self._exchange.create_quote(
            order.from_asset,
            order.from_network,
            order.to_asset,
            order.to_network,
            order.amount,
        )
        if quote.error is not None:
            msg = f"Quote error: {quote.error.message}"
            raise ExchangeError(msg)
        if not quote.id:
            msg = "Quote response did not include an id"
            raise ExchangeError(msg)
        shift = self._exchange.create_order(quote.id, settle_address, settle_address)
        if not shift.id:
            msg = "Failed to create exchange order"
            raise ExchangeError(msg)
        return Execution(
            owner_id=order.owner_id,
            exchange_order_id=shift.id,
            quote_id=quote.id,
            from_asset=order.from_asset,
            from_network=order.from_network,
            from_amount=order.amount,
            to_asset=order.to_asset,
            to_network=order.to_network,
            settle_amount=quote.settle_amount or shift.settle_amount,
            deposit_address=shift.deposit_address,
            deposit_memo=shift.deposit_memo,
            source_kind=self.kind.value,
            source_id=order.id,
        )

    def notify(self, owner_id: int, message: str) -> None:
        """Best-effort owner notification; failures are logged and dropped."""
        try:
            self._notifier.send(owner_id, message)
        except Exception:
            logger.exception("%s: notification to %s failed", self.name, owner_id)

    def park_unrecorded(self, order: OrderT, execution: Execution, exc: Exception) -> Outcome:
        """Hold an order whose exchange swap exists but whose execution record failed.

        The lease must not simply lapse, or the next poll would create a second
        swap for the same due event.  The row is parked with the exchange order
        id instead and left for an operator to reconcile.
        """
        error = f"Exchange order {execution.exchange_order_id} created but not recorded: {exc}"
        logger.critical(
            "%s: order %d %s",
            self.name,
            order.id,
            error,
            exc_info=exc,
            extra=order_context(self.kind.value, order.id, exchange_order_id=execution.exchange_order_id),
        )
        try:
            self._db.park_order(self.kind, order.id, exchange_order_id=execution.exchange_order_id, error=error)
        except Exception:
            logger.exception("%s: could not park order %d; reconcile it before its lease expires", self.name, order.id)
        self.notify(
            order.owner_id,
            f"⚠️ *Swap Needs Review*\n\nExchange order `{execution.exchange_order_id}` was created for "
            f"{order.amount} {order.from_asset} → {order.to_asset}, but could not be saved.\n"
            f"Send funds to `{execution.deposit_address}` only after support confirms it.",
        )
        return Outcome.UNRECORDED
