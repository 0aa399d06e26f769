"""Shared fixtures: a controllable clock, fake price oracle, fake exchange and a recording sink."""

import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from swap_scheduler.db import Database
from swap_scheduler.execution.base import Quote, QuoteError, ShiftOrder
from swap_scheduler.monitoring.notifier import NotificationSink, Notifier

T0 = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class FakePrices:
    """In-memory price oracle that records each batch request."""

    def __init__(self, prices: dict[str, float] | None = None) -> None:
        self.prices = {k.upper(): v for k, v in (prices or {}).items()}
        self.calls: list[list[str]] = []

    def set(self, asset: str, price: float | None) -> None:
        if price is None:
            self.prices.pop(asset.upper(), None)
        else:
            self.prices[asset.upper()] = price

    def get_current_price(self, asset: str) -> float | None:
        return self.prices.get(asset.upper())

    def get_multiple_prices(self, assets: list[str]) -> dict[str, float | None]:
        self.calls.append(list(assets))
        return {a.upper(): self.prices.get(a.upper()) for a in assets}


class FakeExchange:
    """Exchange double. Set ``quote_exc``, ``order_exc`` or ``quote_error`` to simulate failures."""

    def __init__(self) -> None:
        self.quotes: list[tuple[str, str, str, str, str]] = []
        self.orders: list[tuple[str, str, str]] = []
        self.quote_exc: Exception | None = None
        self.order_exc: Exception | None = None
        self.quote_error: str | None = None
        self._lock = threading.Lock()

    def create_quote(self, from_asset: str, from_network: str, to_asset: str, to_network: str, amount: str) -> Quote:
        with self._lock:
            self.quotes.append((from_asset, from_network, to_asset, to_network, amount))
            n = len(self.quotes)
        if self.quote_exc is not None:
            raise self.quote_exc
        if self.quote_error is not None:
            return Quote(id="", error=QuoteError(code="400", message=self.quote_error))
        return Quote(
            id=f"quote-{n}",
            deposit_coin=from_asset,
            settle_coin=to_asset,
            deposit_amount=amount,
            settle_amount="0.02",
        )

    def create_order(self, quote_id: str, settle_address: str, refund_address: str) -> ShiftOrder:
        with self._lock:
            self.orders.append((quote_id, settle_address, refund_address))
            n = len(self.orders)
        if self.order_exc is not None:
            raise self.order_exc
        return ShiftOrder(id=f"shift-{n}", deposit_address=f"deposit-{n}", settle_address=settle_address)


class RecordingSink(NotificationSink):
    def __init__(self) -> None:
        self.messages: list[tuple[int, str]] = []

    def send(self, owner_id: int, message: str) -> None:
        self.messages.append((owner_id, message))

    def texts(self) -> str:
        return "\n".join(message for _, message in self.messages)


@pytest.fixture
def db(tmp_path: Path):
    database = Database(tmp_path / "test.db")
    yield database
    database.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def prices() -> FakePrices:
    return FakePrices()


@pytest.fixture
def exchange() -> FakeExchange:
    return FakeExchange()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def notifier(sink: RecordingSink) -> Notifier:
    return Notifier([sink])
