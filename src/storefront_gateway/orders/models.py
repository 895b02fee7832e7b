"""Order lifecycle records and allowed state transitions."""

from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any


class OrderStatus(str, enum.Enum):
    PAID = "paid"
    SENT_TO_DISTRIBUTOR = "sent_to_distributor"
    SHIPPED = "shipped"
    FAILED = "failed"


class DistributorStatus(str, enum.Enum):
    PENDING = "pending"
    SUBMITTED = "submitted"
    ACKNOWLEDGED = "acknowledged"
    ERROR = "error"


STATUS_FIELD = "status"
DISTRIBUTOR_STATUS_FIELD = "distributor_status"

_TRANSITIONS: dict[str, dict[str, frozenset[str]]] = {
    STATUS_FIELD: {
        OrderStatus.PAID.value: frozenset(
            {OrderStatus.SENT_TO_DISTRIBUTOR.value, OrderStatus.FAILED.value}
        ),
        OrderStatus.SENT_TO_DISTRIBUTOR.value: frozenset(
            {OrderStatus.SHIPPED.value, OrderStatus.FAILED.value}
        ),
        OrderStatus.SHIPPED.value: frozenset(),
        OrderStatus.FAILED.value: frozenset(),
    },
    DISTRIBUTOR_STATUS_FIELD: {
        DistributorStatus.PENDING.value: frozenset(
            {DistributorStatus.SUBMITTED.value, DistributorStatus.ERROR.value}
        ),
        DistributorStatus.SUBMITTED.value: frozenset(
            {DistributorStatus.ACKNOWLEDGED.value, DistributorStatus.ERROR.value}
        ),
        DistributorStatus.ACKNOWLEDGED.value: frozenset(),
        DistributorStatus.ERROR.value: frozenset(),
    },
}


def can_transition(field_name: str, from_state: str, to_state: str) -> bool:
    """Return True if ``field_name`` may move from ``from_state`` to ``to_state``."""
    table = _TRANSITIONS.get(field_name)
    if table is None:
        return False
    return to_state in table.get(str(from_state), frozenset())


def is_terminal(field_name: str, state: str) -> bool:
    table = _TRANSITIONS.get(field_name, {})
    return not table.get(str(state))


@dataclass(frozen=True)
class OrderItem:
    sku: str
    quantity: int
    unit_price: Decimal
    name: str
    vendor: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "sku": self.sku,
            "quantity": self.quantity,
            "unit_price": str(self.unit_price),
            "name": self.name,
            "vendor": self.vendor,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OrderItem":
        return cls(
            sku=str(data["sku"]),
            quantity=int(data["quantity"]),
            unit_price=Decimal(str(data["unit_price"])),
            name=str(data.get("name", "")),
            vendor=str(data.get("vendor", "")),
        )


@dataclass
class Order:
    source_session_id: str
    payment_reference: str | None
    amount_total: Decimal
    customer_info: dict[str, Any]
    shipping_address: dict[str, Any]
    items: list[OrderItem]
    created_at: str
    status: OrderStatus = OrderStatus.PAID
    distributor_status: DistributorStatus = DistributorStatus.PENDING
    order_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    updated_at: str | None = None


@dataclass
class OrderTransition:
    order_id: str
    field: str
    from_state: str
    to_state: str
    changed_at: str
    transition_id: int | None = None


@dataclass
class DistributorEventRecord:
    event_type: str
    raw_payload: Any
    received_at: str
    event_id: int | None = None
