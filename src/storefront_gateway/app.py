"""Application context assembly."""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

from storefront_gateway.config import Settings, load_settings
from storefront_gateway.credentials.cache import TokenCache
from storefront_gateway.distributor.api import DistributorApi
from storefront_gateway.distributor.client import DistributorGateway
from storefront_gateway.distributor.events import DistributorEventSink
from storefront_gateway.orders.store import SqliteOrderStore
from storefront_gateway.payments.checkout import CheckoutOrchestrator, StripeCheckoutProcessor
from storefront_gateway.payments.webhook import PaymentEventConsumer, StripeSignatureVerifier


@dataclass
class AppContext:
    """Application-wide dependency container.

    Holds the single token cache and order store shared by every request.
    Initialized once at startup and cached for the lifetime of the process.
    """

    settings: Settings
    store: SqliteOrderStore
    token_cache: TokenCache
    distributor_gateway: DistributorGateway
    checkout_orchestrator: CheckoutOrchestrator
    payment_consumer: PaymentEventConsumer
    event_sink: DistributorEventSink


def build_app_context(settings: Settings) -> AppContext:
    store = SqliteOrderStore(settings.storage.sqlite_path, wal=settings.storage.sqlite_wal)

    distributor_api = DistributorApi(settings.distributor)
    token_cache = TokenCache(
        distributor_api.exchange_credential,
        safety_margin_seconds=settings.distributor.token_safety_margin_seconds,
    )
    gateway = DistributorGateway(distributor_api, token_cache, settings.distributor.sender_id)

    orchestrator = CheckoutOrchestrator(
        StripeCheckoutProcessor(
            settings.payment.secret_key,
            timeout_seconds=settings.payment.timeout_seconds,
        ),
        public_base_url=settings.server.public_base_url,
        currency=settings.payment.currency,
    )
    consumer = PaymentEventConsumer(
        StripeSignatureVerifier(settings.payment.webhook_secret),
        store,
    )
    sink = DistributorEventSink(store, settings.distributor.secret_key)

    return AppContext(
        settings=settings,
        store=store,
        token_cache=token_cache,
        distributor_gateway=gateway,
        checkout_orchestrator=orchestrator,
        payment_consumer=consumer,
        event_sink=sink,
    )


@lru_cache(maxsize=1)
def get_app_context() -> AppContext:
    """Get or create the application context from the loaded settings."""
    return build_app_context(load_settings())
