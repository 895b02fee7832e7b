"""Tests for payment webhook verification and idempotent order creation."""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import json
import time
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from storefront_gateway.errors import (
    GatewayError,
    PersistenceError,
    SignatureError,
    ValidationError,
)
from storefront_gateway.orders.models import DistributorStatus, OrderStatus
from storefront_gateway.orders.store import SqliteOrderStore
from storefront_gateway.payments.checkout import CheckoutOrchestrator
from storefront_gateway.payments.models import CheckoutRequest
from storefront_gateway.payments.webhook import (
    CHECKOUT_COMPLETED,
    PaymentEventConsumer,
    StripeSignatureVerifier,
)

WEBHOOK_SECRET = "whsec_test_secret"


def _sign(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    ts = int(time.time()) if timestamp is None else timestamp
    signed = f"{ts}.{payload.decode('utf-8')}".encode("utf-8")
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={ts},v1={digest}"


def _metadata() -> dict[str, str]:
    request = CheckoutRequest.model_validate(
        {
            "items": [
                {
                    "sku": "SKU-1",
                    "name": "USB-C Cable",
                    "vendor": "Acme",
                    "unitPrice": Decimal("19.995"),
                    "quantity": 2,
                }
            ],
            "customer": {"name": "Ana Diaz", "email": "ana@example.com", "phone": ""},
            "shippingAddress": {
                "street": "Av. Reforma 100",
                "postalCode": "06000",
                "city": "CDMX",
                "region": "CDMX",
            },
        }
    )
    orchestrator = CheckoutOrchestrator(MagicMock(), "https://shop.example")
    return orchestrator.build_session_params(request)["metadata"]


def _event(
    session_id: str = "sess_123",
    event_type: str = CHECKOUT_COMPLETED,
    amount_total: int | None = 4000,
    metadata: dict[str, str] | None = None,
) -> bytes:
    session: dict = {
        "id": session_id,
        "object": "checkout.session",
        "payment_intent": "pi_123",
        "metadata": _metadata() if metadata is None else metadata,
    }
    if amount_total is not None:
        session["amount_total"] = amount_total
    body = {"id": "evt_1", "type": event_type, "data": {"object": session}}
    return json.dumps(body).encode("utf-8")


@pytest.fixture
def store(tmp_path):
    sqlite_store = SqliteOrderStore(str(tmp_path / "webhook.db"))
    yield sqlite_store
    sqlite_store.close()


@pytest.fixture
def consumer(store):
    return PaymentEventConsumer(StripeSignatureVerifier(WEBHOOK_SECRET), store)


class TestSignatureVerifier:
    def test_valid_signature_returns_event(self) -> None:
        payload = _event()
        event = StripeSignatureVerifier(WEBHOOK_SECRET).verify(payload, _sign(payload))
        assert event["type"] == CHECKOUT_COMPLETED

    def test_missing_header_rejected(self) -> None:
        with pytest.raises(SignatureError):
            StripeSignatureVerifier(WEBHOOK_SECRET).verify(_event(), None)

    def test_wrong_secret_rejected(self) -> None:
        payload = _event()
        with pytest.raises(SignatureError):
            StripeSignatureVerifier(WEBHOOK_SECRET).verify(
                payload, _sign(payload, secret="whsec_other")
            )

    def test_tampered_body_rejected(self) -> None:
        payload = _event()
        header = _sign(payload)
        with pytest.raises(SignatureError):
            StripeSignatureVerifier(WEBHOOK_SECRET).verify(payload.replace(b"4000", b"1"), header)

    def test_stale_timestamp_rejected(self) -> None:
        payload = _event()
        header = _sign(payload, timestamp=int(time.time()) - 3600)
        with pytest.raises(SignatureError):
            StripeSignatureVerifier(WEBHOOK_SECRET, tolerance=300).verify(payload, header)

    def test_unconfigured_secret_is_server_error(self) -> None:
        payload = _event()
        with pytest.raises(GatewayError) as exc_info:
            StripeSignatureVerifier(None).verify(payload, _sign(payload))
        assert exc_info.value.status_code == 500
        assert not isinstance(exc_info.value, SignatureError)


class TestPaymentEventConsumer:
    @pytest.mark.asyncio
    async def test_completed_session_creates_order(self, consumer, store) -> None:
        payload = _event()
        ack = await consumer.handle_event(payload, _sign(payload))

        assert ack.processed is True
        assert ack.created is True
        assert ack.to_dict() == {"received": True}

        order = store.get_order_by_session("sess_123")
        assert order.order_id == ack.order_id
        assert order.amount_total == Decimal("40.00")
        assert order.payment_reference == "pi_123"
        assert order.status is OrderStatus.PAID
        assert order.distributor_status is DistributorStatus.PENDING
        assert order.customer_info["email"] == "ana@example.com"
        assert order.shipping_address["postal_code"] == "06000"
        item = order.items[0]
        assert (item.sku, item.quantity, item.unit_price) == ("SKU-1", 2, Decimal("19.995"))

    @pytest.mark.asyncio
    async def test_amount_falls_back_to_items(self, consumer, store) -> None:
        payload = _event(amount_total=None)
        await consumer.handle_event(payload, _sign(payload))

        assert store.get_order_by_session("sess_123").amount_total == Decimal("40.00")

    @pytest.mark.asyncio
    async def test_sequential_duplicates_create_one_order(self, consumer, store) -> None:
        payload = _event()
        first = await consumer.handle_event(payload, _sign(payload))
        second = await consumer.handle_event(payload, _sign(payload))

        assert first.created is True
        assert second.created is False
        assert second.order_id == first.order_id
        assert store.count_orders() == 1

    @pytest.mark.asyncio
    async def test_concurrent_duplicates_create_one_order(self, consumer, store) -> None:
        payload = _event()
        header = _sign(payload)

        acks = await asyncio.gather(
            *(consumer.handle_event(payload, header) for _ in range(8))
        )

        assert store.count_orders() == 1
        assert sum(1 for ack in acks if ack.created) == 1
        assert {ack.order_id for ack in acks} == {acks[0].order_id}

    @pytest.mark.asyncio
    async def test_bad_signature_never_touches_store(self) -> None:
        store = MagicMock()
        consumer = PaymentEventConsumer(StripeSignatureVerifier(WEBHOOK_SECRET), store)
        payload = _event()

        with pytest.raises(SignatureError):
            await consumer.handle_event(payload, _sign(payload, secret="whsec_wrong"))
        assert store.mock_calls == []

    @pytest.mark.asyncio
    async def test_other_event_types_are_acknowledged_and_ignored(self, consumer, store) -> None:
        payload = _event(event_type="payment_intent.succeeded")
        ack = await consumer.handle_event(payload, _sign(payload))

        assert ack.processed is False
        assert ack.to_dict() == {"received": True}
        assert store.count_orders() == 0

    @pytest.mark.asyncio
    async def test_malformed_metadata_rejected(self, consumer, store) -> None:
        payload = _event(metadata={"customer_email": "x@y.z"})
        with pytest.raises(ValidationError):
            await consumer.handle_event(payload, _sign(payload))
        assert store.count_orders() == 0

    @pytest.mark.asyncio
    async def test_missing_session_id_rejected(self, consumer) -> None:
        payload = _event(session_id="")
        with pytest.raises(ValidationError):
            await consumer.handle_event(payload, _sign(payload))

    @pytest.mark.asyncio
    async def test_store_failure_surfaces_as_persistence_error(self) -> None:
        store = MagicMock()
        store.create_order_if_absent.side_effect = PersistenceError("disk full")
        consumer = PaymentEventConsumer(StripeSignatureVerifier(WEBHOOK_SECRET), store)
        payload = _event()

        with pytest.raises(PersistenceError):
            await consumer.handle_event(payload, _sign(payload))
