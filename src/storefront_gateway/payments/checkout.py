"""Cart to payment-processor checkout session conversion."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Protocol

import stripe

from storefront_gateway.errors import CheckoutCreationError, ValidationError
from storefront_gateway.payments.metadata import encode_order_metadata
from storefront_gateway.payments.models import CartItem, CheckoutRequest, CheckoutSession

logger = logging.getLogger(__name__)

SUCCESS_PATH = "/order-confirmation.html?session_id={CHECKOUT_SESSION_ID}"
CANCEL_PATH = "/checkout.html"


def to_minor_units(amount: Decimal) -> int:
    """Convert a currency amount to cents, rounding half up."""
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class ProcessorSession:
    session_id: str
    url: str


class PaymentProcessor(Protocol):
    async def create_session(self, params: dict[str, Any]) -> ProcessorSession: ...


class StripeCheckoutProcessor:
    """Creates Stripe Checkout sessions with a bounded wait."""

    def __init__(self, api_key: str | None, timeout_seconds: float = 20.0) -> None:
        self._api_key = api_key
        self._timeout_seconds = timeout_seconds

    async def create_session(self, params: dict[str, Any]) -> ProcessorSession:
        if not self._api_key:
            raise CheckoutCreationError("Payment processor is not configured")

        try:
            session = await asyncio.wait_for(
                asyncio.to_thread(
                    stripe.checkout.Session.create, api_key=self._api_key, **params
                ),
                timeout=self._timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            raise CheckoutCreationError("Payment processor timed out") from exc
        except stripe.StripeError as exc:
            logger.error(
                "Checkout session rejected: %s: %s", type(exc).__name__, exc.user_message or exc
            )
            raise CheckoutCreationError(
                exc.user_message or "Payment processor rejected the checkout session",
                details={"type": type(exc).__name__, "code": exc.code},
            ) from exc

        return ProcessorSession(session_id=session.id, url=session.url)


class CheckoutOrchestrator:
    """Builds processor sessions whose metadata is enough to rebuild the order."""

    def __init__(
        self,
        processor: PaymentProcessor,
        public_base_url: str,
        currency: str = "usd",
    ) -> None:
        self._processor = processor
        self._public_base_url = public_base_url.rstrip("/")
        self._currency = currency.lower()

    def _line_item(self, item: CartItem) -> dict[str, Any]:
        return {
            "price_data": {
                "currency": self._currency,
                "product_data": {
                    "name": item.name,
                    "description": f"SKU: {item.sku} | Vendor: {item.vendor}",
                    "metadata": {"sku": item.sku, "vendor": item.vendor},
                },
                "unit_amount": to_minor_units(item.unit_price),
            },
            "quantity": item.quantity,
        }

    def build_session_params(self, request: CheckoutRequest) -> dict[str, Any]:
        return {
            "mode": "payment",
            "payment_method_types": ["card"],
            "submit_type": "pay",
            "line_items": [self._line_item(item) for item in request.items],
            "success_url": f"{self._public_base_url}{SUCCESS_PATH}",
            "cancel_url": f"{self._public_base_url}{CANCEL_PATH}",
            "customer_email": request.customer.email,
            "metadata": encode_order_metadata(request),
        }

    async def create_checkout(self, request: CheckoutRequest) -> CheckoutSession:
        if not request.items:
            raise ValidationError("The cart is empty")

        params = self.build_session_params(request)
        logger.info(
            "Creating checkout session: items=%d currency=%s",
            len(request.items),
            self._currency,
        )
        session = await self._processor.create_session(params)
        logger.info("Checkout session created: %s", session.session_id)
        return CheckoutSession(
            session_id=session.session_id,
            redirect_url=session.url,
            metadata=params["metadata"],
        )
