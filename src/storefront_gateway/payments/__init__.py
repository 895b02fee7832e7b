"""Checkout session creation and payment webhook handling."""

from storefront_gateway.payments.checkout import (
    CheckoutOrchestrator,
    StripeCheckoutProcessor,
    to_minor_units,
)
from storefront_gateway.payments.models import (
    CartItem,
    CheckoutRequest,
    CheckoutSession,
    Customer,
    ShippingAddress,
)
from storefront_gateway.payments.webhook import (
    PaymentEventConsumer,
    StripeSignatureVerifier,
    WebhookAck,
)

__all__ = [
    "CartItem",
    "CheckoutOrchestrator",
    "CheckoutRequest",
    "CheckoutSession",
    "Customer",
    "PaymentEventConsumer",
    "ShippingAddress",
    "StripeCheckoutProcessor",
    "StripeSignatureVerifier",
    "WebhookAck",
    "to_minor_units",
]
