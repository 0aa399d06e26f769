"""Polling workers, one per order kind."""

from swap_scheduler.workers.base import CycleReport, Outcome, PollingWorker
from swap_scheduler.workers.limit_orders import LimitOrderMonitor
from swap_scheduler.workers.recurring import RecurringOrderScheduler
from swap_scheduler.workers.trailing_stop import TrailingStopMonitor

__all__ = [
    "CycleReport",
    "LimitOrderMonitor",
    "Outcome",
    "PollingWorker",
    "RecurringOrderScheduler",
    "TrailingStopMonitor",
]
