"""Order lifecycle and persistence."""

from storefront_gateway.orders.models import (
    DistributorEventRecord,
    DistributorStatus,
    Order,
    OrderItem,
    OrderStatus,
    OrderTransition,
    can_transition,
)
from storefront_gateway.orders.store import SqliteOrderStore

__all__ = [
    "DistributorEventRecord",
    "DistributorStatus",
    "Order",
    "OrderItem",
    "OrderStatus",
    "OrderTransition",
    "SqliteOrderStore",
    "can_transition",
]
