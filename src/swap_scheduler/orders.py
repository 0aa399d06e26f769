"""Order types: recurring schedules, limit orders, trailing stops, executed swaps."""

from dataclasses import dataclass
from enum import Enum


class OrderKind(str, Enum):
    """Kind of order that produced an executed swap."""

    RECURRING = "recurring"
    LIMIT = "limit"
    TRAILING_STOP = "trailing_stop"


class ConditionOperator(str, Enum):
    """Comparison applied between the observed price and a limit threshold."""

    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"


class LimitOrderStatus(str, Enum):
    """Lifecycle status of a limit order. Everything except PENDING is terminal."""

    PENDING = "pending"
    EXECUTED = "executed"
    FAILED = "failed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class TrailingStopStatus(str, Enum):
    """Lifecycle status of a trailing stop order."""

    PENDING = "pending"
    TRIGGERED = "triggered"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class ScheduledOrder:
    """A recurring fixed-amount purchase (DCA schedule).

    ``next_due_at`` is the business schedule; ``locked_until`` is the
    short-lived processing lease written when a worker claims the row.
    """

    id: int
    owner_id: int
    from_asset: str
    from_network: str
    to_asset: str
    to_network: str
    amount: str
    interval_hours: int
    total_orders: int
    orders_executed: int
    active: bool
    next_due_at: str
    locked_until: str | None = None
    exchange_order_id: str | None = None
    error: str | None = None
    created_at: str = ""

    @property
    def remaining(self) -> int:
        return max(self.total_orders - self.orders_executed, 0)


@dataclass
class LimitOrder:
    """A swap that fires once the condition asset crosses a price threshold."""

    id: int
    owner_id: int
    from_asset: str
    from_network: str
    to_asset: str
    to_network: str
    amount: str
    condition_asset: str
    operator: ConditionOperator
    threshold: float
    settle_address: str | None
    status: LimitOrderStatus
    active: bool
    expires_at: str | None = None
    locked_until: str | None = None
    current_price: float | None = None
    exchange_order_id: str | None = None
    error: str | None = None
    created_at: str = ""
    executed_at: str | None = None
    last_checked_at: str | None = None

    def is_triggered(self, price: float) -> bool:
        """Return True if ``price`` satisfies the condition (boundary inclusive)."""
        if self.operator == ConditionOperator.GREATER_THAN:
            return price >= self.threshold
        return price <= self.threshold


@dataclass
class TrailingStopOrder:
    """A swap that fires when price falls ``trailing_percent`` below its peak."""

    id: int
    owner_id: int
    from_asset: str
    from_network: str
    to_asset: str
    to_network: str
    amount: str
    trailing_percent: float
    settle_address: str | None
    status: TrailingStopStatus
    active: bool
    peak_price: float | None = None
    current_price: float | None = None
    trigger_price: float | None = None
    locked_until: str | None = None
    exchange_order_id: str | None = None
    error: str | None = None
    created_at: str = ""
    last_checked_at: str | None = None
    triggered_at: str | None = None


def trailing_trigger_price(peak: float, trailing_percent: float) -> float:
    """Return the stop level for a given peak: ``peak * (1 - pct / 100)``."""
    return peak * (1 - trailing_percent / 100)


@dataclass
class ExecutedOrder:
    """A swap created on the exchange, linked back to the order that caused it."""

    id: int
    owner_id: int
    exchange_order_id: str
    quote_id: str
    from_asset: str
    from_network: str
    from_amount: str
    to_asset: str
    to_network: str
    settle_amount: str
    deposit_address: str
    source_kind: OrderKind
    source_id: int
    deposit_memo: str | None = None
    status: str = "pending"
    created_at: str = ""
