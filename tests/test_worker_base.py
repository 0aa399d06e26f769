"""Tests for the shared polling worker skeleton."""

import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import pytest
from swap_scheduler.execution.base import ExchangeError
from swap_scheduler.monitoring.notifier import Notifier
from swap_scheduler.orders import OrderKind
from swap_scheduler.workers.base import CycleReport, Outcome, PollingWorker


@dataclass
class _Order:
    id: int
    owner_id: int = 42
    from_asset: str = "USDC"
    from_network: str = "ethereum"
    to_asset: str = "ETH"
    to_network: str = "ethereum"
    amount: str = "50"


class _Worker(PollingWorker[_Order]):
    name = "test"
    kind = OrderKind.LIMIT

    def __init__(self, *args: Any, orders: list[_Order], failing: set[int] | None = None, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.orders = orders
        self.failing = failing or set()
        self.processed: list[int] = []
        self._processed_lock = threading.Lock()

    def load_candidates(self, now: datetime) -> list[_Order]:
        return list(self.orders)

    def prepare(self, orders: list[_Order], now: datetime) -> dict[str, int]:
        return {"count": len(orders)}

    def process(self, order: _Order, context: Any, now: datetime) -> Outcome:
        assert context == {"count": len(self.orders)}
        if order.id in self.failing:
            raise ValueError(f"bad order {order.id}")
        with self._processed_lock:
            self.processed.append(order.id)
        return Outcome.EXECUTED


def _worker(db, exchange, notifier, clock, **kwargs: Any) -> _Worker:
    return _Worker(db, exchange, notifier, poll_interval=0.01, clock=clock, **kwargs)


class TestRunCycle:
    def test_empty_cycle(self, db, exchange, notifier, clock) -> None:
        report = _worker(db, exchange, notifier, clock, orders=[]).run_cycle()
        assert report.candidates == 0
        assert report.outcomes == {}
        assert report.load_failed is False

    def test_one_failing_order_does_not_abort_siblings(self, db, exchange, notifier, clock) -> None:
        orders = [_Order(id=i) for i in range(1, 6)]
        worker = _worker(db, exchange, notifier, clock, orders=orders, failing={3}, max_workers=4)
        report = worker.run_cycle()
        assert report.candidates == 5
        assert report.count(Outcome.EXECUTED) == 4
        assert report.count(Outcome.ERROR) == 1
        assert sorted(worker.processed) == [1, 2, 4, 5]

    def test_sequential_mode(self, db, exchange, notifier, clock) -> None:
        orders = [_Order(id=1), _Order(id=2)]
        worker = _worker(db, exchange, notifier, clock, orders=orders, failing={1}, max_workers=1)
        report = worker.run_cycle()
        assert report.count(Outcome.ERROR) == 1
        assert worker.processed == [2]

    def test_load_failure_is_reported_not_raised(self, db, exchange, notifier, clock, mocker) -> None:
        worker = _worker(db, exchange, notifier, clock, orders=[])
        mocker.patch.object(worker, "load_candidates", side_effect=RuntimeError("database is locked"))
        report = worker.run_cycle()
        assert report.load_failed is True
        assert report.candidates == 0

    def test_report_to_dict(self) -> None:
        report = CycleReport(worker="test", candidates=2)
        report.outcomes.update(["executed", "waiting"])
        assert report.to_dict() == {
            "worker": "test",
            "candidates": 2,
            "load_failed": False,
            "executed": 1,
            "waiting": 1,
        }


def test_run_forever_stops_when_event_set(db, exchange, notifier, clock) -> None:
    stop = threading.Event()
    worker = _worker(db, exchange, notifier, clock, orders=[_Order(id=1)])
    cycles: list[CycleReport] = []
    original = worker.run_cycle

    def run_cycle() -> CycleReport:
        report = original()
        cycles.append(report)
        if len(cycles) == 2:
            stop.set()
        return report

    worker.run_cycle = run_cycle  # type: ignore[method-assign]
    worker.run_forever(stop)
    assert len(cycles) == 2


class TestExecuteSwap:
    def test_builds_execution_from_quote_and_order(self, db, exchange, notifier, clock) -> None:
        worker = _worker(db, exchange, notifier, clock, orders=[])
        execution = worker.execute_swap(_Order(id=9), "0xsettle")
        assert exchange.quotes == [("USDC", "ethereum", "ETH", "ethereum", "50")]
        assert exchange.orders == [("quote-1", "0xsettle", "0xsettle")]
        assert execution.exchange_order_id == "shift-1"
        assert execution.quote_id == "quote-1"
        assert execution.settle_amount == "0.02"
        assert execution.deposit_address == "deposit-1"
        assert execution.source_kind == "limit"
        assert execution.source_id == 9

    def test_quote_error_raises_without_creating_order(self, db, exchange, notifier, clock) -> None:
        exchange.quote_error = "Amount too low"
        worker = _worker(db, exchange, notifier, clock, orders=[])
        with pytest.raises(ExchangeError, match="Amount too low"):
            worker.execute_swap(_Order(id=1), "0xsettle")
        assert exchange.orders == []


def test_notify_failure_is_swallowed(db, exchange, clock, mocker) -> None:
    notifier = Notifier()
    mocker.patch.object(notifier, "send", side_effect=RuntimeError("telegram down"))
    worker = _worker(db, exchange, notifier, clock, orders=[])
    worker.notify(42, "hello")


class TestParkUnrecorded:
    def test_parks_and_notifies(self, db, exchange, notifier, sink, clock, mocker) -> None:
        park = mocker.patch.object(db, "park_order")
        worker = _worker(db, exchange, notifier, clock, orders=[])
        execution = worker.execute_swap(_Order(id=3), "0xsettle")

        outcome = worker.park_unrecorded(_Order(id=3), execution, RuntimeError("database is locked"))

        assert outcome == Outcome.UNRECORDED
        park.assert_called_once()
        assert park.call_args.args == (OrderKind.LIMIT, 3)
        assert park.call_args.kwargs["exchange_order_id"] == "shift-1"
        assert "database is locked" in park.call_args.kwargs["error"]
        assert "shift-1" in sink.texts()

    def test_park_failure_still_notifies(self, db, exchange, notifier, sink, clock, mocker) -> None:
        mocker.patch.object(db, "park_order", side_effect=RuntimeError("database is locked"))
        worker = _worker(db, exchange, notifier, clock, orders=[])
        execution = worker.execute_swap(_Order(id=3), "0xsettle")

        assert worker.park_unrecorded(_Order(id=3), execution, RuntimeError("boom")) == Outcome.UNRECORDED
        assert "Swap Needs Review" in sink.texts()
