from __future__ import annotations

import hashlib
import hmac
import json
import time
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from starlette.testclient import TestClient

from storefront_gateway.app import AppContext
from storefront_gateway.config import Settings
from storefront_gateway.distributor.client import CatalogPage, PriceAvailability, ProductSummary
from storefront_gateway.distributor.events import DistributorEventSink
from storefront_gateway.errors import (
    CheckoutCreationError,
    PersistenceError,
    UpstreamError,
    ValidationError,
)
from storefront_gateway.orders.store import SqliteOrderStore
from storefront_gateway.payments.models import CheckoutSession
from storefront_gateway.payments.webhook import PaymentEventConsumer, StripeSignatureVerifier
from storefront_gateway.transport.http_server import create_http_app

WEBHOOK_SECRET = "whsec_http"


def _sign(payload: bytes) -> str:
    ts = int(time.time())
    digest = hmac.new(
        WEBHOOK_SECRET.encode(), f"{ts}.{payload.decode()}".encode(), hashlib.sha256
    ).hexdigest()
    return f"t={ts},v1={digest}"


@pytest.fixture
def store(tmp_path):
    sqlite_store = SqliteOrderStore(str(tmp_path / "http.db"))
    yield sqlite_store
    sqlite_store.close()


@pytest.fixture
def context(store) -> AppContext:
    return AppContext(
        settings=Settings(),
        store=store,
        token_cache=MagicMock(),
        distributor_gateway=AsyncMock(),
        checkout_orchestrator=AsyncMock(),
        payment_consumer=PaymentEventConsumer(StripeSignatureVerifier(WEBHOOK_SECRET), store),
        event_sink=DistributorEventSink(store, "shared-key"),
    )


@pytest.fixture
def client(context) -> TestClient:
    return TestClient(create_http_app(context))


def test_health(client) -> None:
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


def test_search_products(client, context) -> None:
    context.distributor_gateway.search_products.return_value = CatalogPage(
        total=1,
        page_number=1,
        page_size=24,
        products=[
            ProductSummary(
                sku="IM-1",
                vendor_part_number="VP-1",
                vendor="Acme",
                description="Laptop",
                category=None,
                upc=None,
                product_type=None,
            )
        ],
    )

    response = client.get("/searchProducts", params={"keyword": "laptop", "pageSize": "500"})

    assert response.status_code == 200
    assert response.json()["products"][0]["sku"] == "IM-1"
    assert "x-request-id" in response.headers
    context.distributor_gateway.search_products.assert_awaited_once_with(
        keyword="laptop", vendor=None, page_number=1, page_size=500
    )


def test_search_products_bad_integer(client, context) -> None:
    response = client.get("/searchProducts", params={"pageNumber": "two"})

    assert response.status_code == 400
    assert response.json()["code"] == "VALIDATION_ERROR"
    context.distributor_gateway.search_products.assert_not_called()


def test_search_products_upstream_error(client, context) -> None:
    context.distributor_gateway.search_products.side_effect = UpstreamError(
        "Distributor returned status 502", upstream_status=502, upstream_body="bad gateway"
    )

    response = client.get("/searchProducts")

    assert response.status_code == 500
    assert response.json() == {
        "error": "Distributor returned status 502",
        "code": "UPSTREAM_ERROR",
        "details": {"status": 502, "body": "bad gateway"},
    }


def test_unexpected_error_is_generic_500(client, context) -> None:
    context.distributor_gateway.search_products.side_effect = RuntimeError("boom")

    response = client.get("/searchProducts")

    assert response.status_code == 500
    assert response.json()["code"] == "INTERNAL_ERROR"
    assert "boom" not in response.text


def test_price_and_availability(client, context) -> None:
    context.distributor_gateway.get_price_and_availability.return_value = {
        "SKU-1": PriceAvailability(
            sku="SKU-1",
            price=Decimal("19.995"),
            retail_price=None,
            currency="USD",
            available=True,
            quantity_available=3,
            status="E",
        )
    }

    response = client.post("/getPriceAndAvailability", json={"skus": ["SKU-1"]})

    assert response.status_code == 200
    assert response.json()["SKU-1"]["price"] == "19.995"
    assert response.json()["SKU-1"]["available"] is True


@pytest.mark.parametrize("body", [{"skus": "SKU-1"}, {}, [], "nope"])
def test_price_and_availability_requires_list(client, context, body) -> None:
    response = client.post("/getPriceAndAvailability", json=body)

    assert response.status_code == 400
    context.distributor_gateway.get_price_and_availability.assert_not_called()


def test_price_and_availability_validation_from_gateway(client, context) -> None:
    context.distributor_gateway.get_price_and_availability.side_effect = ValidationError(
        "At most 50 skus per request (got 51)"
    )

    response = client.post("/getPriceAndAvailability", json={"skus": ["x"] * 51})

    assert response.status_code == 400


def test_invalid_json_body(client) -> None:
    response = client.post(
        "/getPriceAndAvailability",
        content=b"{not json",
        headers={"content-type": "application/json"},
    )
    assert response.status_code == 400


def _checkout_body() -> dict:
    return {
        "items": [
            {"sku": "SKU-1", "name": "Cable", "vendor": "Acme", "unitPrice": 19.995, "quantity": 2}
        ],
        "customer": {"name": "Ana", "email": "ana@example.com", "phone": ""},
        "shippingAddress": {
            "street": "Main 1",
            "postalCode": "06000",
            "city": "CDMX",
            "region": "CDMX",
        },
    }


def test_create_checkout_session(client, context) -> None:
    context.checkout_orchestrator.create_checkout.return_value = CheckoutSession(
        session_id="cs_1", redirect_url="https://pay/cs_1", metadata={}
    )

    response = client.post("/createCheckoutSession", json=_checkout_body())

    assert response.status_code == 200
    assert response.json() == {"url": "https://pay/cs_1", "sessionId": "cs_1"}
    request = context.checkout_orchestrator.create_checkout.await_args.args[0]
    assert request.items[0].unit_price == Decimal("19.995")


def test_create_checkout_session_invalid_body(client, context) -> None:
    body = _checkout_body()
    del body["customer"]

    response = client.post("/createCheckoutSession", json=body)

    assert response.status_code == 400
    payload = response.json()
    assert payload["code"] == "VALIDATION_ERROR"
    assert payload["details"]
    context.checkout_orchestrator.create_checkout.assert_not_called()


def test_create_checkout_session_rejects_overlong_address(client, context) -> None:
    body = _checkout_body()
    body["shippingAddress"]["street"] = "x" * 501

    response = client.post("/createCheckoutSession", json=body)

    assert response.status_code == 400
    assert response.json()["code"] == "VALIDATION_ERROR"
    context.checkout_orchestrator.create_checkout.assert_not_called()


def test_create_checkout_session_processor_failure(client, context) -> None:
    context.checkout_orchestrator.create_checkout.side_effect = CheckoutCreationError(
        "Payment processor timed out"
    )

    response = client.post("/createCheckoutSession", json=_checkout_body())

    assert response.status_code == 500
    assert response.json()["code"] == "CHECKOUT_CREATION_FAILED"


def _completion_event(session_id: str = "sess_http", metadata: dict | None = None) -> bytes:
    items_json = json.dumps(
        [{"sku": "SKU-1", "qty": 1, "price": "10.00", "name": "Cable", "vendor": "Acme"}]
    )
    if metadata is None:
        metadata = {"customer_email": "ana@example.com", "items_json": items_json}
    return json.dumps(
        {
            "id": "evt_1",
            "type": "checkout.session.completed",
            "data": {
                "object": {
                    "id": session_id,
                    "amount_total": 1000,
                    "metadata": metadata,
                }
            },
        }
    ).encode()


def test_stripe_webhook_creates_one_order(client, store) -> None:
    payload = _completion_event()

    for _ in range(2):
        response = client.post(
            "/stripeWebhook", content=payload, headers={"Stripe-Signature": _sign(payload)}
        )
        assert response.status_code == 200
        assert response.json() == {"received": True}

    assert store.count_orders() == 1


def test_stripe_webhook_bad_signature(client, store) -> None:
    payload = _completion_event()

    response = client.post(
        "/stripeWebhook", content=payload, headers={"Stripe-Signature": "t=1,v1=deadbeef"}
    )

    assert response.status_code == 400
    assert response.json() == {"error": "SIGNATURE_ERROR"}
    assert store.count_orders() == 0


@pytest.mark.parametrize(
    "payload",
    [
        _completion_event(metadata={"items_json": "not json"}),
        _completion_event(metadata={}),
        _completion_event(session_id=""),
    ],
)
def test_stripe_webhook_unusable_completion_is_400(client, store, payload) -> None:
    response = client.post(
        "/stripeWebhook", content=payload, headers={"Stripe-Signature": _sign(payload)}
    )

    assert response.status_code == 400
    assert response.json() == {"error": "VALIDATION_ERROR"}
    assert store.count_orders() == 0


def test_stripe_webhook_persistence_failure(context) -> None:
    failing_store = MagicMock()
    failing_store.create_order_if_absent.side_effect = PersistenceError("disk full")
    context.payment_consumer = PaymentEventConsumer(
        StripeSignatureVerifier(WEBHOOK_SECRET), failing_store
    )
    client = TestClient(create_http_app(context))
    payload = _completion_event()

    response = client.post(
        "/stripeWebhook", content=payload, headers={"Stripe-Signature": _sign(payload)}
    )

    assert response.status_code == 500
    assert response.json() == {"error": "PERSISTENCE_ERROR"}


def test_distributor_webhook(client, store) -> None:
    response = client.post(
        "/distributorWebhook",
        content=b'{"topic": "orders/shipped"}',
        headers={"X-Hub-Signature": "not-the-key"},
    )

    assert response.status_code == 200
    assert response.json()["status"] == "received"
    assert store.list_distributor_events()[0].event_type == "orders/shipped"


def test_distributor_webhook_store_failure(context) -> None:
    context.event_sink = AsyncMock()
    context.event_sink.ingest.side_effect = PersistenceError("locked")
    client = TestClient(create_http_app(context))

    response = client.post("/distributorWebhook", content=b"{}")

    assert response.status_code == 500


def test_wrong_method_is_405(client) -> None:
    assert client.get("/createCheckoutSession").status_code == 405


def test_cors_preflight(client) -> None:
    response = client.options(
        "/createCheckoutSession",
        headers={
            "Origin": "https://shop.example",
            "Access-Control-Request-Method": "POST",
        },
    )
    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "*"
