"""Order snapshot carried in the checkout session's metadata.

The payment processor stores metadata as a flat ``str -> str`` mapping with
values capped at 500 characters. Customer and shipping fields go in their own
keys. The item list is serialized as compact JSON with prices kept as exact
decimal strings. When that JSON is longer than one value allows it is split
across ``items_json_0 .. items_json_{n-1}`` and ``items_json_parts`` records n.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping

from storefront_gateway.errors import ValidationError
from storefront_gateway.orders.models import OrderItem
from storefront_gateway.payments.models import CheckoutRequest

MAX_METADATA_VALUE_LENGTH = 500

_CUSTOMER_KEYS = {
    "name": "customer_name",
    "email": "customer_email",
    "phone": "customer_phone",
}
_SHIPPING_KEYS = {
    "street": "shipping_street",
    "locality": "shipping_locality",
    "postal_code": "shipping_postal_code",
    "city": "shipping_city",
    "region": "shipping_region",
    "notes": "shipping_notes",
}


@dataclass(frozen=True)
class OrderSnapshot:
    customer: dict[str, str]
    shipping_address: dict[str, str]
    items: list[OrderItem]


def encode_order_metadata(request: CheckoutRequest) -> dict[str, str]:
    metadata: dict[str, str] = {}
    for attr, key in _CUSTOMER_KEYS.items():
        metadata[key] = getattr(request.customer, attr) or ""
    for attr, key in _SHIPPING_KEYS.items():
        metadata[key] = getattr(request.shipping_address, attr) or ""

    compact = [
        {
            "sku": item.sku,
            "qty": item.quantity,
            "price": str(item.unit_price),
            "name": item.name,
            "vendor": item.vendor,
        }
        for item in request.items
    ]
    items_json = json.dumps(compact, separators=(",", ":"), ensure_ascii=False)

    if len(items_json) <= MAX_METADATA_VALUE_LENGTH:
        metadata["items_json"] = items_json
    else:
        parts = [
            items_json[i : i + MAX_METADATA_VALUE_LENGTH]
            for i in range(0, len(items_json), MAX_METADATA_VALUE_LENGTH)
        ]
        metadata["items_json_parts"] = str(len(parts))
        for index, part in enumerate(parts):
            metadata[f"items_json_{index}"] = part
    return metadata


def _items_json(metadata: Mapping[str, Any]) -> str:
    if "items_json" in metadata:
        return str(metadata["items_json"])
    raw_parts = metadata.get("items_json_parts")
    if raw_parts is None:
        raise ValidationError("Session metadata has no items")
    try:
        count = int(raw_parts)
    except (TypeError, ValueError) as exc:
        raise ValidationError("Session metadata has an invalid items_json_parts") from exc
    try:
        return "".join(str(metadata[f"items_json_{i}"]) for i in range(count))
    except KeyError as exc:
        raise ValidationError(f"Session metadata is missing {exc.args[0]}") from exc


def decode_order_metadata(metadata: Mapping[str, Any] | None) -> OrderSnapshot:
    """Rebuild the order snapshot written by ``encode_order_metadata``."""
    if not metadata:
        raise ValidationError("Session metadata is empty")

    try:
        raw_items = json.loads(_items_json(metadata))
    except json.JSONDecodeError as exc:
        raise ValidationError("Session metadata items are not valid JSON") from exc
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("Session metadata items must be a non-empty list")

    items: list[OrderItem] = []
    for raw in raw_items:
        try:
            items.append(
                OrderItem(
                    sku=str(raw["sku"]),
                    quantity=int(raw["qty"]),
                    unit_price=Decimal(str(raw["price"])),
                    name=str(raw.get("name", "")),
                    vendor=str(raw.get("vendor", "")),
                )
            )
        except (KeyError, TypeError, ValueError, InvalidOperation) as exc:
            raise ValidationError(f"Malformed item in session metadata: {raw!r}") from exc

    customer = {attr: str(metadata.get(key) or "") for attr, key in _CUSTOMER_KEYS.items()}
    shipping = {attr: str(metadata.get(key) or "") for attr, key in _SHIPPING_KEYS.items()}
    return OrderSnapshot(customer=customer, shipping_address=shipping, items=items)
