"""Payment-processor webhook handling and order creation."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Protocol

import stripe

from storefront_gateway.errors import GatewayError, SignatureError, ValidationError
from storefront_gateway.orders.models import DistributorStatus, Order, OrderStatus
from storefront_gateway.orders.store import SqliteOrderStore
from storefront_gateway.payments.checkout import to_minor_units
from storefront_gateway.payments.metadata import decode_order_metadata
from storefront_gateway.utils.time import utc_now_iso

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"

_CENTS = Decimal("0.01")


@dataclass(frozen=True)
class WebhookAck:
    event_type: str
    processed: bool
    order_id: str | None = None
    created: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {"received": True}


class EventVerifier(Protocol):
    def verify(self, raw_body: bytes, signature_header: str | None) -> dict[str, Any]: ...


class StripeSignatureVerifier:
    """Checks the ``Stripe-Signature`` header against the raw request body."""

    def __init__(self, webhook_secret: str | None, tolerance: int | None = None) -> None:
        self._secret = webhook_secret
        self._tolerance = tolerance or stripe.Webhook.DEFAULT_TOLERANCE

    def verify(self, raw_body: bytes, signature_header: str | None) -> dict[str, Any]:
        if not self._secret:
            raise GatewayError(
                "Payment webhook secret is not configured", code="NOT_CONFIGURED"
            )
        if not signature_header:
            raise SignatureError("Missing signature header")

        try:
            payload = raw_body.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise SignatureError("Webhook body is not valid UTF-8") from exc

        try:
            stripe.WebhookSignature.verify_header(
                payload, signature_header, self._secret, self._tolerance
            )
        except stripe.SignatureVerificationError as exc:
            raise SignatureError(f"Webhook signature verification failed: {exc}") from exc

        try:
            event = json.loads(payload)
        except json.JSONDecodeError as exc:
            raise SignatureError("Webhook body is not valid JSON") from exc
        if not isinstance(event, dict):
            raise SignatureError("Webhook body is not an event object")
        return event


def _amount_from_cents(value: Any) -> Decimal:
    return (Decimal(int(value)) / 100).quantize(_CENTS)


class PaymentEventConsumer:
    """Turns verified checkout-completion events into exactly one order each."""

    def __init__(self, verifier: EventVerifier, store: SqliteOrderStore) -> None:
        self._verifier = verifier
        self._store = store

    async def handle_event(self, raw_body: bytes, signature_header: str | None) -> WebhookAck:
        event = self._verifier.verify(raw_body, signature_header)
        event_type = str(event.get("type") or "unknown")

        if event_type != CHECKOUT_COMPLETED:
            logger.info("Ignoring payment event %s (%s)", event.get("id"), event_type)
            return WebhookAck(event_type=event_type, processed=False)

        session = (event.get("data") or {}).get("object") or {}
        order = self._build_order(session)

        stored, created = await asyncio.to_thread(self._store.create_order_if_absent, order)
        if created:
            logger.info(
                "Order %s created for session %s (total=%s)",
                stored.order_id,
                stored.source_session_id,
                stored.amount_total,
            )
        else:
            logger.info(
                "Duplicate completion for session %s; order %s already exists",
                stored.source_session_id,
                stored.order_id,
            )
        return WebhookAck(
            event_type=event_type,
            processed=True,
            order_id=stored.order_id,
            created=created,
        )

    def _build_order(self, session: dict[str, Any]) -> Order:
        session_id = session.get("id")
        if not session_id:
            raise ValidationError("Completion event has no session id")

        snapshot = decode_order_metadata(session.get("metadata"))

        amount_total = session.get("amount_total")
        if amount_total is None:
            amount = _amount_from_cents(
                sum(to_minor_units(item.unit_price) * item.quantity for item in snapshot.items)
            )
        else:
            try:
                amount = _amount_from_cents(amount_total)
            except (TypeError, ValueError) as exc:
                raise ValidationError("Completion event has an invalid amount_total") from exc

        customer = dict(snapshot.customer)
        if not customer.get("email"):
            details = session.get("customer_details") or {}
            customer["email"] = details.get("email") or session.get("customer_email") or ""

        payment_reference = session.get("payment_intent")
        if isinstance(payment_reference, dict):
            payment_reference = payment_reference.get("id")

        return Order(
            source_session_id=str(session_id),
            payment_reference=payment_reference,
            amount_total=amount,
            customer_info=customer,
            shipping_address=dict(snapshot.shipping_address),
            items=list(snapshot.items),
            created_at=utc_now_iso(),
            status=OrderStatus.PAID,
            distributor_status=DistributorStatus.PENDING,
        )
