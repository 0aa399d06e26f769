"""Tests for the recurring (DCA) order scheduler."""

import sqlite3
from datetime import timedelta

import pytest
from swap_scheduler.config import RecurringConfig
from swap_scheduler.db import PARKED_UNTIL, Database, to_db_time
from swap_scheduler.execution.base import ExchangeError
from swap_scheduler.orders import OrderKind
from swap_scheduler.workers.base import Outcome
from swap_scheduler.workers.recurring import RecurringOrderScheduler


def _schedule(db: Database, clock, *, total_orders: int = 3, interval_hours: int = 24) -> int:
    return db.create_scheduled_order(
        owner_id=42,
        from_asset="USDC",
        from_network="ethereum",
        to_asset="ETH",
        to_network="ethereum",
        amount="50",
        interval_hours=interval_hours,
        total_orders=total_orders,
        next_due_at=clock.now,
    )


@pytest.fixture
def scheduler(db, exchange, notifier, clock) -> RecurringOrderScheduler:
    db.upsert_user(42, "0xwallet")
    return RecurringOrderScheduler(db, exchange, notifier, clock=clock)


class TestExecution:
    def test_due_schedule_fires_once(self, scheduler, db, exchange, sink, clock) -> None:
        order_id = _schedule(db, clock)
        start = clock.now

        report = scheduler.run_cycle()

        assert report.count(Outcome.EXECUTED) == 1
        (executed,) = db.get_executed_orders(source_kind=OrderKind.RECURRING, source_id=order_id)
        assert executed.from_amount == "50"
        assert executed.to_asset == "ETH"
        assert executed.deposit_address == "deposit-1"
        order = db.get_scheduled_order(order_id)
        assert order.orders_executed == 1
        assert order.next_due_at == to_db_time(start + timedelta(hours=24))
        assert order.locked_until is None
        assert order.active is True
        assert exchange.orders == [("quote-1", "0xwallet", "0xwallet")]
        assert "Purchase 1/3" in sink.texts()

        # Same due event is not executed twice
        assert scheduler.run_cycle().candidates == 0
        assert len(exchange.quotes) == 1

    def test_runs_again_after_interval(self, scheduler, db, clock) -> None:
        order_id = _schedule(db, clock)
        scheduler.run_cycle()
        clock.advance(hours=23, minutes=59)
        assert scheduler.run_cycle().candidates == 0
        clock.advance(minutes=1)
        assert scheduler.run_cycle().count(Outcome.EXECUTED) == 1
        assert db.get_scheduled_order(order_id).orders_executed == 2

    def test_deactivates_after_final_execution(self, scheduler, db, exchange, sink, clock) -> None:
        order_id = _schedule(db, clock, total_orders=2)
        scheduler.run_cycle()
        clock.advance(hours=24)
        scheduler.run_cycle()

        order = db.get_scheduled_order(order_id)
        assert order.orders_executed == 2
        assert order.active is False
        assert "DCA is complete" in sink.texts()

        clock.advance(hours=24)
        assert scheduler.run_cycle().candidates == 0
        assert len(exchange.quotes) == 2

    def test_schedule_at_target_is_deactivated_without_trading(self, scheduler, db, exchange, clock) -> None:
        order_id = _schedule(db, clock, total_orders=1)
        with db._conn:
            db._conn.execute("UPDATE scheduled_orders SET orders_executed = 1 WHERE id = ?", (order_id,))

        report = scheduler.run_cycle()

        assert report.count(Outcome.COMPLETED) == 1
        assert db.get_scheduled_order(order_id).active is False
        assert exchange.quotes == []


class TestFailures:
    def test_exchange_failure_writes_fixed_backoff(self, scheduler, db, exchange, sink, clock) -> None:
        order_id = _schedule(db, clock)
        exchange.quote_exc = ExchangeError("SideShift request to /quotes failed: timed out")
        failed_at = clock.now

        report = scheduler.run_cycle()

        assert report.count(Outcome.RETRY_SCHEDULED) == 1
        order = db.get_scheduled_order(order_id)
        assert order.locked_until == to_db_time(failed_at + timedelta(minutes=5))
        assert order.orders_executed == 0
        assert order.active is True
        assert order.next_due_at == to_db_time(failed_at)
        assert db.get_executed_orders() == []
        assert "DCA Purchase Failed" in sink.texts()

    def test_retries_after_backoff(self, scheduler, db, exchange, clock) -> None:
        order_id = _schedule(db, clock)
        exchange.quote_exc = ExchangeError("boom")
        scheduler.run_cycle()

        exchange.quote_exc = None
        clock.advance(minutes=4)
        assert scheduler.run_cycle().candidates == 0
        clock.advance(minutes=1)
        assert scheduler.run_cycle().count(Outcome.EXECUTED) == 1
        assert db.get_scheduled_order(order_id).orders_executed == 1

    def test_quote_error_is_a_failure(self, scheduler, db, exchange, clock) -> None:
        _schedule(db, clock)
        exchange.quote_error = "Amount below minimum"
        report = scheduler.run_cycle()
        assert report.count(Outcome.RETRY_SCHEDULED) == 1
        assert exchange.orders == []

    def test_missing_wallet_backs_off_and_notifies(self, db, exchange, notifier, sink, clock) -> None:
        scheduler = RecurringOrderScheduler(db, exchange, notifier, clock=clock)
        order_id = _schedule(db, clock)

        report = scheduler.run_cycle()

        assert report.count(Outcome.NEEDS_ADDRESS) == 1
        order = db.get_scheduled_order(order_id)
        assert order.active is True
        assert order.locked_until == to_db_time(clock.now + timedelta(minutes=5))
        assert exchange.quotes == []
        assert "no wallet address" in sink.texts()

    def test_custom_retry_delay(self, db, exchange, notifier, clock) -> None:
        db.upsert_user(42, "0xwallet")
        config = RecurringConfig(retry_delay_minutes=15)
        scheduler = RecurringOrderScheduler(db, exchange, notifier, config=config, clock=clock)
        order_id = _schedule(db, clock)
        exchange.order_exc = ExchangeError("rejected")
        scheduler.run_cycle()
        assert db.get_scheduled_order(order_id).locked_until == to_db_time(clock.now + timedelta(minutes=15))


class TestContention:
    def test_claimed_by_another_worker_is_noop(self, scheduler, db, exchange, sink, clock) -> None:
        order_id = _schedule(db, clock)
        snapshot = db.get_scheduled_order(order_id)
        assert db.claim_scheduled_order(snapshot, lease_until=clock.now + timedelta(minutes=10))

        outcome = scheduler.process(snapshot, None, clock.now)

        assert outcome == Outcome.CONTENDED
        assert exchange.quotes == []
        assert sink.messages == []

    def test_two_schedulers_share_one_due_event(self, db, exchange, notifier, clock) -> None:
        db.upsert_user(42, "0xwallet")
        first = RecurringOrderScheduler(db, exchange, notifier, clock=clock)
        second = RecurringOrderScheduler(db, exchange, notifier, clock=clock)
        order_id = _schedule(db, clock)
        (snapshot,) = db.get_due_scheduled_orders(clock.now)

        outcomes = [first.process(snapshot, None, clock.now), second.process(snapshot, None, clock.now)]

        assert outcomes == [Outcome.EXECUTED, Outcome.CONTENDED]
        assert len(db.get_executed_orders(source_id=order_id)) == 1


class TestUnrecordedExecution:
    def test_record_failure_parks_schedule(self, scheduler, db, exchange, sink, clock, mocker) -> None:
        order_id = _schedule(db, clock)
        mocker.patch.object(
            db, "record_scheduled_execution", side_effect=sqlite3.OperationalError("database is locked")
        )

        assert scheduler.run_cycle().count(Outcome.UNRECORDED) == 1

        mocker.stopall()
        order = db.get_scheduled_order(order_id)
        assert order.locked_until == to_db_time(PARKED_UNTIL)
        assert order.exchange_order_id == "shift-1"
        assert "database is locked" in order.error
        assert order.orders_executed == 0
        assert "Swap Needs Review" in sink.texts()

        clock.advance(minutes=11)
        assert scheduler.run_cycle().candidates == 0
        clock.advance(days=3)
        assert scheduler.run_cycle().candidates == 0
        assert len(exchange.orders) == 1

    def test_successful_run_stores_exchange_order(self, scheduler, db, clock) -> None:
        order_id = _schedule(db, clock)
        scheduler.run_cycle()
        order = db.get_scheduled_order(order_id)
        assert order.exchange_order_id == "shift-1"
        assert order.error is None
