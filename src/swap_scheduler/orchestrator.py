"""Orchestrator: wires the order store, oracle, exchange, notifier and workers."""

import logging
import os
import threading
from collections.abc import Callable, Iterable
from datetime import datetime
from pathlib import Path
from typing import Any

from swap_scheduler.config import AppConfig
from swap_scheduler.data.client import CoinGeckoClient
from swap_scheduler.data.provider import PriceOracle
from swap_scheduler.db import Database, utc_now
from swap_scheduler.execution.base import ExchangeClient
from swap_scheduler.execution.paper import PaperExchange
from swap_scheduler.execution.sideshift import SideShiftClient
from swap_scheduler.monitoring.notifier import ConsoleSink, Notifier, TelegramSink, WebhookSink
from swap_scheduler.orders import OrderKind
from swap_scheduler.workers.base import CycleReport, PollingWorker
from swap_scheduler.workers.limit_orders import LimitOrderMonitor
from swap_scheduler.workers.recurring import RecurringOrderScheduler
from swap_scheduler.workers.trailing_stop import TrailingStopMonitor

logger = logging.getLogger(__name__)

LOOP_NAMES = (RecurringOrderScheduler.name, LimitOrderMonitor.name, TrailingStopMonitor.name)


def enabled_loops(config: AppConfig) -> list[str]:
    """Names of the loops the configuration turns on, in run order."""
    flags = (config.recurring.enabled, config.limit_orders.enabled, config.trailing_stops.enabled)
    return [name for name, enabled in zip(LOOP_NAMES, flags, strict=True) if enabled]


def order_status(config: AppConfig, db: Database) -> dict[str, Any]:
    """Return mode, enabled loops and active order counts.

    Needs only the store, so it works in live mode without exchange credentials.
    """
    return {
        "mode": config.mode,
        "loops": enabled_loops(config),
        "orders": db.count_active_orders(),
        "watched": len(db.get_watched_orders()),
    }


def cancel_order(db: Database, kind: OrderKind, order_id: int) -> bool:
    """Soft-cancel an order; the loops see it at their next poll."""
    cancelled = db.cancel_order(kind, order_id)
    if cancelled:
        logger.info("Cancelled %s order %d", kind.value, order_id)
    return cancelled


class Orchestrator:
    """Build every enabled polling loop from configuration.

    :meth:`tick` runs one cycle of each selected loop in the calling thread.
    :meth:`run` starts one timer thread per loop and blocks until ``stop`` is
    set.  Loops share nothing but the database, so several processes may run
    the same loops concurrently.
    """

    def __init__(
        self,
        config: AppConfig,
        db_path: Path,
        *,
        prices: PriceOracle | None = None,
        exchange: ExchangeClient | None = None,
        notifier: Notifier | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._config = config
        self._db = Database(db_path)
        self._prices: PriceOracle = prices if prices is not None else self._build_price_oracle(config)
        self._exchange: ExchangeClient = exchange if exchange is not None else self._build_exchange(config)
        self._notifier = notifier if notifier is not None else self._build_notifier(config)
        self._workers = self._build_workers(config, clock)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def db(self) -> Database:
        return self._db

    @property
    def workers(self) -> dict[str, PollingWorker[Any]]:
        return dict(self._workers)

    def tick(self, loops: Iterable[str] | None = None) -> dict[str, CycleReport]:
        """Run a single cycle of each selected loop and return the reports."""
        return {name: worker.run_cycle() for name, worker in self._select(loops).items()}

    def run(self, loops: Iterable[str] | None = None, *, stop: threading.Event) -> None:
        """Run the selected loops on their own threads until ``stop`` is set."""
        selected = self._select(loops)
        if not selected:
            logger.warning("No loops enabled, nothing to run")
            return
        threads = [
            threading.Thread(target=worker.run_forever, args=(stop,), name=f"{name}-loop", daemon=True)
            for name, worker in selected.items()
        ]
        for thread in threads:
            thread.start()
        logger.info("Started loops: %s", ", ".join(selected))
        try:
            while not stop.is_set():
                stop.wait(1.0)
        finally:
            stop.set()
            for thread in threads:
                thread.join(timeout=30)

    def close(self) -> None:
        """Release resources."""
        self._db.close()

    # ------------------------------------------------------------------
    # Construction helpers
    # ------------------------------------------------------------------

    def _select(self, loops: Iterable[str] | None) -> dict[str, PollingWorker[Any]]:
        if loops is None:
            return dict(self._workers)
        names = list(loops)
        unknown = [name for name in names if name not in LOOP_NAMES]
        if unknown:
            msg = f"Unknown loop(s): {', '.join(unknown)}. Choose from {', '.join(LOOP_NAMES)}"
            raise ValueError(msg)
        return {name: self._workers[name] for name in names if name in self._workers}

    def _build_workers(self, config: AppConfig, clock: Callable[[], datetime]) -> dict[str, PollingWorker[Any]]:
        workers: list[PollingWorker[Any]] = []
        if config.recurring.enabled:
            workers.append(
                RecurringOrderScheduler(
                    self._db,
                    self._exchange,
                    self._notifier,
                    config=config.recurring,
                    max_workers=config.max_workers,
                    clock=clock,
                )
            )
        if config.limit_orders.enabled:
            workers.append(
                LimitOrderMonitor(
                    self._db,
                    self._exchange,
                    self._notifier,
                    self._prices,
                    config=config.limit_orders,
                    max_workers=config.max_workers,
                    clock=clock,
                )
            )
        if config.trailing_stops.enabled:
            workers.append(
                TrailingStopMonitor(
                    self._db,
                    self._exchange,
                    self._notifier,
                    self._prices,
                    config=config.trailing_stops,
                    max_workers=config.max_workers,
                    clock=clock,
                )
            )
        return {worker.name: worker for worker in workers}

    @staticmethod
    def _build_price_oracle(config: AppConfig) -> PriceOracle:
        cfg = config.prices
        return CoinGeckoClient(
            base_url=cfg.base_url,
            api_key=os.environ.get(cfg.api_key_env) or None,
            cache_ttl=cfg.cache_ttl,
            timeout=cfg.timeout,
            asset_ids=cfg.asset_ids or None,
        )

    def _build_exchange(self, config: AppConfig) -> ExchangeClient:
        if config.mode == "live":
            cfg = config.exchange
            return SideShiftClient.from_env(
                api_key_env=cfg.api_key_env,
                affiliate_id_env=cfg.affiliate_id_env,
                base_url=cfg.base_url,
                client_ip=cfg.client_ip,
                timeout=cfg.timeout,
            )
        return PaperExchange(self._prices)

    @staticmethod
    def _build_notifier(config: AppConfig) -> Notifier:
        notifier = Notifier()
        if config.notifications.console:
            notifier.register(ConsoleSink())
        telegram = TelegramSink.from_env(config.notifications.telegram_token_env)
        if telegram is not None:
            notifier.register(telegram)
        for url in config.notifications.webhooks:
            notifier.register(WebhookSink(url))
        return notifier
