"""SQLite order store for scheduled swaps, conditional orders and executions.

Every order row carries exactly one lease column (``locked_until``) or, for
trailing stops, a guarded status transition.  Claims are single-row
conditional updates: they succeed only while the stored value still equals
the value the caller observed, so any number of poll loops can share a
database file without an external lock manager.
"""

import sqlite3
import threading
from dataclasses import astuple, dataclass
from datetime import datetime, timezone
from pathlib import Path

from swap_scheduler.orders import (
    ConditionOperator,
    ExecutedOrder,
    LimitOrder,
    LimitOrderStatus,
    OrderKind,
    ScheduledOrder,
    TrailingStopOrder,
    TrailingStopStatus,
    trailing_trigger_price,
)


PARKED_UNTIL = datetime.max.replace(tzinfo=timezone.utc)


def utc_now() -> datetime:
    """Current wall-clock time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_db_time(value: datetime) -> str:
    """Serialize a datetime to the fixed-width ISO form used in every timestamp column.

    Fixed width keeps lexicographic comparison in SQL equal to chronological order.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


@dataclass
class Execution:
    """A successfully created exchange order, ready to be recorded."""

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
    deposit_memo: str | None
    source_kind: str
    source_id: int


class Database:
    """SQLite database holding every order kind plus executions and the watch list."""

    def __init__(self, path: Path, *, timeout: float = 30.0) -> None:
        self._conn = sqlite3.connect(str(path), timeout=timeout, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._create_tables()

    def _create_tables(self) -> None:
        with self._lock, self._conn:
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    owner_id INTEGER PRIMARY KEY,
                    wallet_address TEXT,
                    created_at DATETIME DEFAULT CURRENT_TIMESTAMP
                )
            """)
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS scheduled_orders (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                    owner_id INTEGER NOT NULL,
                    from_asset TEXT NOT NULL,
                    from_network TEXT NOT NULL,
                    to_asset TEXT NOT NULL,
                    to_network TEXT NOT NULL,
                    amount TEXT NOT NULL,
                    interval_hours INTEGER NOT NULL,
                    total_orders INTEGER NOT NULL,
                    orders_executed INTEGER NOT NULL DEFAULT 0,
                    active INTEGER NOT NULL DEFAULT 1,
                    next_due_at TEXT NOT NULL,
                    locked_until TEXT,
                    exchange_order_id TEXT,
                    error TEXT
                )
            """)
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS limit_orders (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                    owner_id INTEGER NOT NULL,
                    from_asset TEXT NOT NULL,
                    from_network TEXT NOT NULL,
                    to_asset TEXT NOT NULL,
                    to_network TEXT NOT NULL,
                    amount TEXT NOT NULL,
                    condition_asset TEXT NOT NULL,
                    condition_operator TEXT NOT NULL,
                    threshold REAL NOT NULL,
                    settle_address TEXT,
                    expires_at TEXT,
                    status TEXT NOT NULL DEFAULT 'pending',
                    active INTEGER NOT NULL DEFAULT 1,
                    locked_until TEXT,
                    current_price REAL,
                    exchange_order_id TEXT,
                    error TEXT,
                    executed_at TEXT,
                    last_checked_at TEXT
                )
            """)
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS trailing_stop_orders (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                    owner_id INTEGER NOT NULL,
                    from_asset TEXT NOT NULL,
                    from_network TEXT NOT NULL,
                    to_asset TEXT NOT NULL,
                    to_network TEXT NOT NULL,
                    amount TEXT NOT NULL,
                    trailing_percent REAL NOT NULL,
                    settle_address TEXT,
                    status TEXT NOT NULL DEFAULT 'pending',
                    active INTEGER NOT NULL DEFAULT 1,
                    peak_price REAL,
                    current_price REAL,
                    trigger_price REAL,
                    locked_until TEXT,
                    exchange_order_id TEXT,
                    error TEXT,
                    last_checked_at TEXT,
                    triggered_at TEXT
                )
            """)
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS executed_orders (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                    owner_id INTEGER NOT NULL,
                    exchange_order_id TEXT NOT NULL UNIQUE,
                    quote_id TEXT NOT NULL,
                    from_asset TEXT NOT NULL,
                    from_network TEXT NOT NULL,
                    from_amount TEXT NOT NULL,
                    to_asset TEXT NOT NULL,
                    to_network TEXT NOT NULL,
                    settle_amount TEXT NOT NULL,
                    deposit_address TEXT NOT NULL,
                    deposit_memo TEXT,
                    status TEXT NOT NULL DEFAULT 'pending',
                    source_kind TEXT NOT NULL,
                    source_id INTEGER NOT NULL
                )
            """)
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS watched_orders (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                    owner_id INTEGER NOT NULL,
                    exchange_order_id TEXT NOT NULL UNIQUE,
                    last_status TEXT NOT NULL
                )
            """)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def upsert_user(self, owner_id: int, wallet_address: str | None) -> None:
        """Create or update the owner's destination wallet address."""
        with self._lock, self._conn:
            self._conn.execute(
                "INSERT INTO users (owner_id, wallet_address) VALUES (?, ?)"
                " ON CONFLICT(owner_id) DO UPDATE SET wallet_address = excluded.wallet_address",
                (owner_id, wallet_address),
            )

    def get_wallet_address(self, owner_id: int) -> str | None:
        """Return the owner's wallet address, or None if unknown or blank."""
        with self._lock:
            row = self._conn.execute("SELECT wallet_address FROM users WHERE owner_id = ?", (owner_id,)).fetchone()
        if row is None:
            return None
        return row["wallet_address"] or None

    # ------------------------------------------------------------------
    # Recurring schedules
    # ------------------------------------------------------------------

    def create_scheduled_order(
        self,
        *,
        owner_id: int,
        from_asset: str,
        from_network: str,
        to_asset: str,
        to_network: str,
        amount: str,
        interval_hours: int,
        total_orders: int,
        next_due_at: datetime | None = None,
    ) -> int:
        """Insert a recurring schedule and return its ID. First run defaults to now."""
        with self._lock, self._conn:
            cursor = self._conn.execute(
                "INSERT INTO scheduled_orders"
                " (owner_id, from_asset, from_network, to_asset, to_network, amount,"
                "  interval_hours, total_orders, next_due_at)"
                " VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    owner_id,
                    from_asset,
                    from_network,
                    to_asset,
                    to_network,
                    amount,
                    interval_hours,
                    total_orders,
                    to_db_time(next_due_at or utc_now()),
                ),
            )
        return cursor.lastrowid or 0

    def get_scheduled_order(self, order_id: int) -> ScheduledOrder | None:
        with self._lock:
            row = self._conn.execute("SELECT * FROM scheduled_orders WHERE id = ?", (order_id,)).fetchone()
        return self._row_to_scheduled_order(row) if row else None

    def get_due_scheduled_orders(self, now: datetime) -> list[ScheduledOrder]:
        """Return active schedules whose due time has passed and whose lease (if any) has expired."""
        stamp = to_db_time(now)
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM scheduled_orders WHERE active = 1 AND next_due_at <= ?"
                " AND (locked_until IS NULL OR locked_until <= ?) ORDER BY next_due_at",
                (stamp, stamp),
            ).fetchall()
        return [self._row_to_scheduled_order(row) for row in rows]

    def claim_scheduled_order(self, order: ScheduledOrder, *, lease_until: datetime) -> bool:
        """Take the processing lease if nobody touched the row since ``order`` was read.

        Both the lease and the business due time must still hold their observed
        values, so a worker holding a stale snapshot of an already-executed
        schedule cannot claim it again.
        """
        with self._lock, self._conn:
            cursor = self._conn.execute(
                "UPDATE scheduled_orders SET locked_until = ?"
                " WHERE id = ? AND active = 1 AND next_due_at = ? AND locked_until IS ?",
                (to_db_time(lease_until), order.id, order.next_due_at, order.locked_until),
            )
        return cursor.rowcount == 1

    def release_scheduled_order(self, order_id: int, *, retry_at: datetime) -> None:
        """Replace the lease with a short backoff; the schedule stays active and due."""
        with self._lock, self._conn:
            self._conn.execute(
                "UPDATE scheduled_orders SET locked_until = ? WHERE id = ?",
                (to_db_time(retry_at), order_id),
            )

    def deactivate_scheduled_order(self, order_id: int) -> None:
        with self._lock, self._conn:
            self._conn.execute(
                "UPDATE scheduled_orders SET active = 0, locked_until = NULL WHERE id = ?",
                (order_id,),
            )

    def record_scheduled_execution(
        self,
        order_id: int,
        execution: Execution,
        *,
        next_due_at: datetime,
    ) -> int:
        """Record a completed run in one transaction and return the new executed-order ID.

        Inserts the executed order and its watch entry, bumps the counter,
        moves the business due time forward, clears the lease, and deactivates
        the schedule once every execution has run.
        """
        with self._lock, self._conn:
            executed_id = self._insert_execution(execution)
            self._conn.execute(
                "UPDATE scheduled_orders SET orders_executed = orders_executed + 1,"
                " next_due_at = MAX(next_due_at, ?), locked_until = NULL, exchange_order_id = ?, error = NULL,"
                " active = CASE WHEN orders_executed + 1 >= total_orders THEN 0 ELSE active END"
                " WHERE id = ?",
                (to_db_time(next_due_at), execution.exchange_order_id, order_id),
            )
        return executed_id

    @staticmethod
    def _row_to_scheduled_order(row: sqlite3.Row) -> ScheduledOrder:
        return ScheduledOrder(
            id=row["id"],
            owner_id=row["owner_id"],
            from_asset=row["from_asset"],
            from_network=row["from_network"],
            to_asset=row["to_asset"],
            to_network=row["to_network"],
            amount=row["amount"],
            interval_hours=row["interval_hours"],
            total_orders=row["total_orders"],
            orders_executed=row["orders_executed"],
            active=bool(row["active"]),
            next_due_at=row["next_due_at"],
            locked_until=row["locked_until"],
            exchange_order_id=row["exchange_order_id"],
            error=row["error"],
            created_at=row["created_at"] or "",
        )

    # ------------------------------------------------------------------
    # Limit orders
    # ------------------------------------------------------------------

    def create_limit_order(
        self,
        *,
        owner_id: int,
        from_asset: str,
        from_network: str,
        to_asset: str,
        to_network: str,
        amount: str,
        condition_asset: str,
        operator: ConditionOperator,
        threshold: float,
        settle_address: str | None,
        expires_at: datetime | None = None,
    ) -> int:
        """Insert a pending limit order and return its ID."""
        with self._lock, self._conn:
            cursor = self._conn.execute(
                "INSERT INTO limit_orders"
                " (owner_id, from_asset, from_network, to_asset, to_network, amount,"
                "  condition_asset, condition_operator, threshold, settle_address, expires_at)"
                " VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    owner_id,
                    from_asset,
                    from_network,
                    to_asset,
                    to_network,
                    amount,
                    condition_asset.upper(),
                    operator.value,
                    threshold,
                    settle_address,
                    to_db_time(expires_at) if expires_at else None,
                ),
            )
        return cursor.lastrowid or 0

    def get_limit_order(self, order_id: int) -> LimitOrder | None:
        with self._lock:
            row = self._conn.execute("SELECT * FROM limit_orders WHERE id = ?", (order_id,)).fetchone()
        return self._row_to_limit_order(row) if row else None

    def get_active_limit_orders(self, now: datetime) -> list[LimitOrder]:
        """Return active pending limit orders that are not leased by another worker."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM limit_orders WHERE active = 1 AND status = 'pending'"
                " AND (locked_until IS NULL OR locked_until <= ?) ORDER BY id",
                (to_db_time(now),),
            ).fetchall()
        return [self._row_to_limit_order(row) for row in rows]

    def record_limit_check(self, order_id: int, *, price: float, checked_at: datetime) -> None:
        """Store the last observed price for a still-pending limit order."""
        with self._lock, self._conn:
            self._conn.execute(
                "UPDATE limit_orders SET current_price = ?, last_checked_at = ? WHERE id = ? AND status = 'pending'",
                (price, to_db_time(checked_at), order_id),
            )

    def expire_limit_order(self, order_id: int) -> bool:
        """Move a pending limit order to ``expired``. Returns False if it already left pending."""
        return self._finish_limit_order(order_id, LimitOrderStatus.EXPIRED)

    def claim_limit_order(self, order: LimitOrder, *, lease_until: datetime) -> bool:
        """Take the execution lease on a pending limit order (CAS on ``locked_until``)."""
        with self._lock, self._conn:
            cursor = self._conn.execute(
                "UPDATE limit_orders SET locked_until = ?"
                " WHERE id = ? AND active = 1 AND status = 'pending' AND locked_until IS ?",
                (to_db_time(lease_until), order.id, order.locked_until),
            )
        return cursor.rowcount == 1

    def release_limit_order(self, order_id: int, *, retry_at: datetime, error: str) -> None:
        """Keep the order pending, remember the error and back off until ``retry_at``."""
        with self._lock, self._conn:
            self._conn.execute(
                "UPDATE limit_orders SET locked_until = ?, error = ? WHERE id = ? AND status = 'pending'",
                (to_db_time(retry_at), error, order_id),
            )

    def record_limit_execution(self, order_id: int, execution: Execution, *, executed_at: datetime) -> int:
        """Mark the limit order executed and record the swap in one transaction."""
        with self._lock, self._conn:
            executed_id = self._insert_execution(execution)
            self._conn.execute(
                "UPDATE limit_orders SET status = ?, active = 0, locked_until = NULL, error = NULL,"
                " exchange_order_id = ?, executed_at = ? WHERE id = ? AND status = 'pending'",
                (
                    LimitOrderStatus.EXECUTED.value,
                    execution.exchange_order_id,
                    to_db_time(executed_at),
                    order_id,
                ),
            )
        return executed_id

    def _finish_limit_order(self, order_id: int, status: LimitOrderStatus) -> bool:
        with self._lock, self._conn:
            cursor = self._conn.execute(
                "UPDATE limit_orders SET status = ?, active = 0, locked_until = NULL"
                " WHERE id = ? AND status = 'pending'",
                (status.value, order_id),
            )
        return cursor.rowcount == 1

    @staticmethod
    def _row_to_limit_order(row: sqlite3.Row) -> LimitOrder:
        return LimitOrder(
            id=row["id"],
            owner_id=row["owner_id"],
            from_asset=row["from_asset"],
            from_network=row["from_network"],
            to_asset=row["to_asset"],
            to_network=row["to_network"],
            amount=row["amount"],
            condition_asset=row["condition_asset"],
            operator=ConditionOperator(row["condition_operator"]),
            threshold=row["threshold"],
            settle_address=row["settle_address"] or None,
            status=LimitOrderStatus(row["status"]),
            active=bool(row["active"]),
            expires_at=row["expires_at"],
            locked_until=row["locked_until"],
            current_price=row["current_price"],
            exchange_order_id=row["exchange_order_id"],
            error=row["error"],
            created_at=row["created_at"] or "",
            executed_at=row["executed_at"],
            last_checked_at=row["last_checked_at"],
        )

    # ------------------------------------------------------------------
    # Trailing stops
    # ------------------------------------------------------------------

    def create_trailing_stop(
        self,
        *,
        owner_id: int,
        from_asset: str,
        from_network: str,
        to_asset: str,
        to_network: str,
        amount: str,
        trailing_percent: float,
        settle_address: str | None,
        peak_price: float | None = None,
    ) -> int:
        """Insert a pending trailing stop. ``peak_price`` is normally the price at creation."""
        with self._lock, self._conn:
            cursor = self._conn.execute(
                "INSERT INTO trailing_stop_orders"
                " (owner_id, from_asset, from_network, to_asset, to_network, amount,"
                "  trailing_percent, settle_address, peak_price)"
                " VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    owner_id,
                    from_asset.upper(),
                    from_network,
                    to_asset,
                    to_network,
                    amount,
                    trailing_percent,
                    settle_address,
                    peak_price,
                ),
            )
        return cursor.lastrowid or 0

    def get_trailing_stop(self, order_id: int) -> TrailingStopOrder | None:
        with self._lock:
            row = self._conn.execute("SELECT * FROM trailing_stop_orders WHERE id = ?", (order_id,)).fetchone()
        return self._row_to_trailing_stop(row) if row else None

    def get_active_trailing_stops(self, now: datetime) -> list[TrailingStopOrder]:
        """Return active pending trailing stops outside any retry backoff."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM trailing_stop_orders WHERE active = 1 AND status = 'pending'"
                " AND (locked_until IS NULL OR locked_until <= ?) ORDER BY id",
                (to_db_time(now),),
            ).fetchall()
        return [self._row_to_trailing_stop(row) for row in rows]

    def update_trailing_prices(
        self,
        order_id: int,
        *,
        current_price: float,
        checked_at: datetime,
    ) -> tuple[float, float] | None:
        """Fold ``current_price`` into the stored peak and return ``(peak, trigger)``.

        The peak never decreases, and the trigger is recomputed from the stored
        peak inside the same transaction, so concurrent monitors always agree on
        both.  Returns None once the stop has left ``pending``.
        """
        with self._lock, self._conn:
            cursor = self._conn.execute(
                "UPDATE trailing_stop_orders SET peak_price = MAX(COALESCE(peak_price, ?), ?),"
                " current_price = ?, last_checked_at = ?"
                " WHERE id = ? AND status = 'pending'",
                (current_price, current_price, current_price, to_db_time(checked_at), order_id),
            )
            if cursor.rowcount != 1:
                return None
            row = self._conn.execute(
                "SELECT peak_price, trailing_percent FROM trailing_stop_orders WHERE id = ?", (order_id,)
            ).fetchone()
            peak = row["peak_price"]
            trigger = trailing_trigger_price(peak, row["trailing_percent"])
            self._conn.execute(
                "UPDATE trailing_stop_orders SET trigger_price = ? WHERE id = ?",
                (trigger, order_id),
            )
        return peak, trigger

    def trigger_trailing_stop(self, order_id: int, *, triggered_at: datetime) -> bool:
        """CAS ``pending -> triggered``. Only the caller that gets True may execute."""
        with self._lock, self._conn:
            cursor = self._conn.execute(
                "UPDATE trailing_stop_orders SET status = ?, active = 0, triggered_at = ?"
                " WHERE id = ? AND active = 1 AND status = 'pending'",
                (TrailingStopStatus.TRIGGERED.value, to_db_time(triggered_at), order_id),
            )
        return cursor.rowcount == 1

    def complete_trailing_stop(self, order_id: int, execution: Execution) -> int:
        """Mark a triggered stop completed and record the swap in one transaction."""
        with self._lock, self._conn:
            executed_id = self._insert_execution(execution)
            self._conn.execute(
                "UPDATE trailing_stop_orders SET status = ?, exchange_order_id = ?, error = NULL,"
                " locked_until = NULL WHERE id = ? AND status = 'triggered'",
                (TrailingStopStatus.COMPLETED.value, execution.exchange_order_id, order_id),
            )
        return executed_id

    def fail_trailing_stop(self, order_id: int, *, error: str) -> None:
        """Move a triggered stop to the terminal ``failed`` status."""
        with self._lock, self._conn:
            self._conn.execute(
                "UPDATE trailing_stop_orders SET status = ?, error = ? WHERE id = ? AND status = 'triggered'",
                (TrailingStopStatus.FAILED.value, error, order_id),
            )

    def requeue_trailing_stop(self, order_id: int, *, retry_at: datetime, error: str) -> None:
        """Return a triggered stop to monitoring after a failed execution, with a backoff."""
        with self._lock, self._conn:
            self._conn.execute(
                "UPDATE trailing_stop_orders SET status = ?, active = 1, locked_until = ?, error = ?"
                " WHERE id = ? AND status = 'triggered'",
                (TrailingStopStatus.PENDING.value, to_db_time(retry_at), error, order_id),
            )

    @staticmethod
    def _row_to_trailing_stop(row: sqlite3.Row) -> TrailingStopOrder:
        return TrailingStopOrder(
            id=row["id"],
            owner_id=row["owner_id"],
            from_asset=row["from_asset"],
            from_network=row["from_network"],
            to_asset=row["to_asset"],
            to_network=row["to_network"],
            amount=row["amount"],
            trailing_percent=row["trailing_percent"],
            settle_address=row["settle_address"] or None,
            status=TrailingStopStatus(row["status"]),
            active=bool(row["active"]),
            peak_price=row["peak_price"],
            current_price=row["current_price"],
            trigger_price=row["trigger_price"],
            locked_until=row["locked_until"],
            exchange_order_id=row["exchange_order_id"],
            error=row["error"],
            created_at=row["created_at"] or "",
            last_checked_at=row["last_checked_at"],
            triggered_at=row["triggered_at"],
        )

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def cancel_order(self, kind: OrderKind, order_id: int) -> bool:
        """Soft-cancel an order. Returns False if it was already inactive or terminal."""
        with self._lock, self._conn:
            if kind == OrderKind.RECURRING:
                cursor = self._conn.execute(
                    "UPDATE scheduled_orders SET active = 0 WHERE id = ? AND active = 1", (order_id,)
                )
            elif kind == OrderKind.LIMIT:
                cursor = self._conn.execute(
                    "UPDATE limit_orders SET status = ?, active = 0 WHERE id = ? AND status = 'pending'",
                    (LimitOrderStatus.CANCELLED.value, order_id),
                )
            else:
                cursor = self._conn.execute(
                    "UPDATE trailing_stop_orders SET status = ?, active = 0 WHERE id = ? AND status = 'pending'",
                    (TrailingStopStatus.CANCELLED.value, order_id),
                )
        return cursor.rowcount == 1

    _KIND_TABLES = {
        OrderKind.RECURRING: "scheduled_orders",
        OrderKind.LIMIT: "limit_orders",
        OrderKind.TRAILING_STOP: "trailing_stop_orders",
    }

    def park_order(self, kind: OrderKind, order_id: int, *, exchange_order_id: str, error: str) -> None:
        """Hold an order whose exchange swap exists but could not be recorded.

        A single-row update that pushes the lease to :data:`PARKED_UNTIL` and
        stores the exchange order id, so no poll re-claims the row until an
        operator reconciles it.
        """
        table = self._KIND_TABLES[kind]
        with self._lock, self._conn:
            self._conn.execute(
                f"UPDATE {table} SET locked_until = ?, exchange_order_id = ?, error = ? WHERE id = ?",  # noqa: S608
                (to_db_time(PARKED_UNTIL), exchange_order_id, error, order_id),
            )

    # ------------------------------------------------------------------
    # Executed orders and watch list
    # ------------------------------------------------------------------

    def _insert_execution(self, execution: Execution) -> int:
        """Insert the executed order and its watch entry. Caller owns the transaction."""
        cursor = self._conn.execute(
            "INSERT INTO executed_orders"
            " (owner_id, exchange_order_id, quote_id, from_asset, from_network, from_amount,"
            "  to_asset, to_network, settle_amount, deposit_address, deposit_memo, source_kind, source_id)"
            " VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            astuple(execution),
        )
        self._conn.execute(
            "INSERT INTO watched_orders (owner_id, exchange_order_id, last_status) VALUES (?, ?, 'pending')"
            " ON CONFLICT(exchange_order_id) DO NOTHING",
            (execution.owner_id, execution.exchange_order_id),
        )
        return cursor.lastrowid or 0

    def get_executed_orders(
        self,
        *,
        source_kind: OrderKind | None = None,
        source_id: int | None = None,
    ) -> list[ExecutedOrder]:
        """Retrieve executed orders, optionally filtered by originating order."""
        query = "SELECT * FROM executed_orders"
        conditions: list[str] = []
        params: list[str | int] = []
        if source_kind is not None:
            conditions.append("source_kind = ?")
            params.append(source_kind.value)
        if source_id is not None:
            conditions.append("source_id = ?")
            params.append(source_id)
        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        query += " ORDER BY id"
        with self._lock:
            rows = self._conn.execute(query, params).fetchall()
        return [self._row_to_executed_order(row) for row in rows]

    def get_watched_orders(self) -> list[dict[str, object]]:
        with self._lock:
            rows = self._conn.execute("SELECT * FROM watched_orders ORDER BY id").fetchall()
        return [dict(row) for row in rows]

    def count_active_orders(self) -> dict[str, int]:
        """Return the number of active orders per kind."""
        with self._lock:
            recurring = self._conn.execute("SELECT COUNT(*) FROM scheduled_orders WHERE active = 1").fetchone()[0]
            limit = self._conn.execute("SELECT COUNT(*) FROM limit_orders WHERE active = 1").fetchone()[0]
            trailing = self._conn.execute("SELECT COUNT(*) FROM trailing_stop_orders WHERE active = 1").fetchone()[0]
            executed = self._conn.execute("SELECT COUNT(*) FROM executed_orders").fetchone()[0]
        return {
            OrderKind.RECURRING.value: recurring,
            OrderKind.LIMIT.value: limit,
            OrderKind.TRAILING_STOP.value: trailing,
            "executed": executed,
        }

    @staticmethod
    def _row_to_executed_order(row: sqlite3.Row) -> ExecutedOrder:
        return ExecutedOrder(
            id=row["id"],
            owner_id=row["owner_id"],
            exchange_order_id=row["exchange_order_id"],
            quote_id=row["quote_id"],
            from_asset=row["from_asset"],
            from_network=row["from_network"],
            from_amount=row["from_amount"],
            to_asset=row["to_asset"],
            to_network=row["to_network"],
            settle_amount=row["settle_amount"],
            deposit_address=row["deposit_address"],
            deposit_memo=row["deposit_memo"],
            status=row["status"],
            source_kind=OrderKind(row["source_kind"]),
            source_id=row["source_id"],
            created_at=row["created_at"] or "",
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._conn.close()

    def __enter__(self) -> "Database":
        return self

    def __exit__(self, *_args: object) -> None:
        self.close()
