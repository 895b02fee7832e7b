"""SQLite persistence for orders, their transitions and distributor events."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from decimal import Decimal
from pathlib import Path
from typing import Mapping, Sequence

from storefront_gateway.errors import InvalidTransitionError, PersistenceError
from storefront_gateway.orders.models import (
    DISTRIBUTOR_STATUS_FIELD,
    STATUS_FIELD,
    DistributorEventRecord,
    DistributorStatus,
    Order,
    OrderItem,
    OrderStatus,
    OrderTransition,
    can_transition,
)
from storefront_gateway.utils.serialization import dumps
from storefront_gateway.utils.time import utc_now_iso

logger = logging.getLogger(__name__)

_SqlValue = str | bytes | int | float | None
_SqlParams = Sequence[_SqlValue] | Mapping[str, _SqlValue]

_TRANSITION_COLUMNS = {
    STATUS_FIELD: "status",
    DISTRIBUTOR_STATUS_FIELD: "distributor_status",
}


class SqliteOrderStore:
    """Durable order and audit collections.

    ``orders.source_session_id`` carries a UNIQUE constraint; that constraint,
    not a prior read, is what makes order creation idempotent.
    """

    def __init__(self, path: str, wal: bool = True) -> None:
        if path != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._closed = False
        if wal:
            self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._init_schema()

    def _init_schema(self) -> None:
        self._conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS orders (
                order_id TEXT PRIMARY KEY,
                source_session_id TEXT NOT NULL UNIQUE,
                payment_reference TEXT,
                amount_total TEXT NOT NULL,
                status TEXT NOT NULL,
                distributor_status TEXT NOT NULL,
                customer_info TEXT NOT NULL,
                shipping_address TEXT NOT NULL,
                items TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS order_transitions (
                transition_id INTEGER PRIMARY KEY AUTOINCREMENT,
                order_id TEXT NOT NULL,
                field TEXT NOT NULL,
                from_state TEXT,
                to_state TEXT NOT NULL,
                changed_at TEXT NOT NULL,
                FOREIGN KEY(order_id) REFERENCES orders(order_id)
            );

            CREATE TABLE IF NOT EXISTS distributor_events (
                event_id INTEGER PRIMARY KEY AUTOINCREMENT,
                event_type TEXT NOT NULL,
                raw_payload TEXT NOT NULL,
                received_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_orders_status ON orders(status);
            CREATE INDEX IF NOT EXISTS idx_order_transitions_order_id
                ON order_transitions(order_id);
            CREATE INDEX IF NOT EXISTS idx_distributor_events_type
                ON distributor_events(event_type);
            """
        )
        self._conn.commit()

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._conn.close()
            self._closed = True

    def fetch_one(self, query: str, params: _SqlParams) -> sqlite3.Row | None:
        try:
            with self._lock:
                cur = self._conn.execute(query, params)
                return cur.fetchone()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Store read failed: {exc}") from exc

    def fetch_all(self, query: str, params: _SqlParams) -> list[sqlite3.Row]:
        try:
            with self._lock:
                return self._conn.execute(query, params).fetchall()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Store read failed: {exc}") from exc

    # -- orders --------------------------------------------------------------

    def create_order_if_absent(self, order: Order) -> tuple[Order, bool]:
        """Insert ``order`` unless one already exists for its session.

        Returns the stored order and whether this call created it.
        """
        updated_at = order.updated_at or order.created_at
        try:
            with self._lock:
                try:
                    cursor = self._conn.execute(
                        """
                        INSERT INTO orders (
                            order_id, source_session_id, payment_reference, amount_total,
                            status, distributor_status, customer_info, shipping_address,
                            items, created_at, updated_at
                        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                        ON CONFLICT(source_session_id) DO NOTHING
                        """,
                        (
                            order.order_id,
                            order.source_session_id,
                            order.payment_reference,
                            str(order.amount_total),
                            OrderStatus(order.status).value,
                            DistributorStatus(order.distributor_status).value,
                            dumps(order.customer_info),
                            dumps(order.shipping_address),
                            dumps([item.to_dict() for item in order.items]),
                            order.created_at,
                            updated_at,
                        ),
                    )
                    created = cursor.rowcount == 1
                    if created:
                        for field_name, state in (
                            (STATUS_FIELD, OrderStatus(order.status).value),
                            (
                                DISTRIBUTOR_STATUS_FIELD,
                                DistributorStatus(order.distributor_status).value,
                            ),
                        ):
                            self._insert_transition(order.order_id, field_name, None, state)
                    self._conn.commit()
                except sqlite3.Error:
                    self._conn.rollback()
                    raise
                row = self._conn.execute(
                    "SELECT * FROM orders WHERE source_session_id = ?",
                    (order.source_session_id,),
                ).fetchone()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Order write failed: {exc}") from exc

        if row is None:
            raise PersistenceError("Order row missing after insert")
        return _row_to_order(row), created

    def get_order(self, order_id: str) -> Order | None:
        row = self.fetch_one("SELECT * FROM orders WHERE order_id = ?", (order_id,))
        return _row_to_order(row) if row else None

    def get_order_by_session(self, source_session_id: str) -> Order | None:
        row = self.fetch_one(
            "SELECT * FROM orders WHERE source_session_id = ?", (source_session_id,)
        )
        return _row_to_order(row) if row else None

    def count_orders(self) -> int:
        row = self.fetch_one("SELECT COUNT(*) AS n FROM orders", ())
        return int(row["n"]) if row else 0

    def transition(
        self, order_id: str, field_name: str, expected: str, new_state: str
    ) -> bool:
        """Atomically move ``field_name`` from ``expected`` to ``new_state``.

        Returns True if this call performed the change, False if the order was
        missing or no longer in ``expected`` (a concurrent writer won).
        """
        expected = getattr(expected, "value", expected)
        new_state = getattr(new_state, "value", new_state)
        column = _TRANSITION_COLUMNS.get(field_name)
        if column is None:
            raise InvalidTransitionError(f"Unknown order field: {field_name}")
        if not can_transition(field_name, expected, new_state):
            raise InvalidTransitionError(
                f"{field_name} cannot move from {expected} to {new_state}"
            )

        now = utc_now_iso()
        try:
            with self._lock:
                try:
                    cursor = self._conn.execute(
                        f"UPDATE orders SET {column} = ?, updated_at = ? "
                        f"WHERE order_id = ? AND {column} = ?",
                        (new_state, now, order_id, expected),
                    )
                    claimed = cursor.rowcount == 1
                    if claimed:
                        self._insert_transition(order_id, field_name, expected, new_state, now)
                    self._conn.commit()
                except sqlite3.Error:
                    self._conn.rollback()
                    raise
        except sqlite3.Error as exc:
            raise PersistenceError(f"Order transition failed: {exc}") from exc

        if claimed:
            logger.info(
                "Order %s %s: %s -> %s", order_id, field_name, expected, new_state
            )
        return claimed

    def list_transitions(self, order_id: str) -> list[OrderTransition]:
        rows = self.fetch_all(
            "SELECT * FROM order_transitions WHERE order_id = ? ORDER BY transition_id",
            (order_id,),
        )
        return [OrderTransition(**dict(row)) for row in rows]

    def _insert_transition(
        self,
        order_id: str,
        field_name: str,
        from_state: str | None,
        to_state: str,
        changed_at: str | None = None,
    ) -> None:
        # Caller holds the lock and commits.
        self._conn.execute(
            """
            INSERT INTO order_transitions (order_id, field, from_state, to_state, changed_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (order_id, field_name, from_state, to_state, changed_at or utc_now_iso()),
        )

    # -- distributor events ------------------------------------------------------

    def append_distributor_event(self, record: DistributorEventRecord) -> int:
        try:
            with self._lock:
                cursor = self._conn.execute(
                    """
                    INSERT INTO distributor_events (event_type, raw_payload, received_at)
                    VALUES (?, ?, ?)
                    """,
                    (record.event_type, dumps(record.raw_payload), record.received_at),
                )
                self._conn.commit()
                return int(cursor.lastrowid)
        except sqlite3.Error as exc:
            raise PersistenceError(f"Distributor event write failed: {exc}") from exc

    def list_distributor_events(self, limit: int = 100) -> list[DistributorEventRecord]:
        rows = self.fetch_all(
            "SELECT * FROM distributor_events ORDER BY event_id LIMIT ?", (limit,)
        )
        return [
            DistributorEventRecord(
                event_id=row["event_id"],
                event_type=row["event_type"],
                raw_payload=json.loads(row["raw_payload"]),
                received_at=row["received_at"],
            )
            for row in rows
        ]


def _row_to_order(row: sqlite3.Row) -> Order:
    return Order(
        order_id=row["order_id"],
        source_session_id=row["source_session_id"],
        payment_reference=row["payment_reference"],
        amount_total=Decimal(row["amount_total"]),
        status=OrderStatus(row["status"]),
        distributor_status=DistributorStatus(row["distributor_status"]),
        customer_info=json.loads(row["customer_info"]),
        shipping_address=json.loads(row["shipping_address"]),
        items=[OrderItem.from_dict(item) for item in json.loads(row["items"])],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )
