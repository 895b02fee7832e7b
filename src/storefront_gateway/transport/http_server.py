"""Starlette HTTP server assembly for the storefront and webhook endpoints."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable

from pydantic import ValidationError as PydanticValidationError
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from storefront_gateway.app import AppContext, get_app_context
from storefront_gateway.errors import GatewayError, SignatureError, ValidationError
from storefront_gateway.middleware.access_log import AccessLogMiddleware
from storefront_gateway.payments.models import CheckoutRequest
from storefront_gateway.utils.serialization import dumps, loads_decimal

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "stripe-signature"
DISTRIBUTOR_SIGNATURE_HEADERS = ("x-hub-signature", "authorization")


class GatewayJSONResponse(JSONResponse):
    """JSON response that renders ``Decimal`` money values exactly."""

    def render(self, content: Any) -> bytes:
        return dumps(content).encode("utf-8")


def _error_response(exc: GatewayError) -> Response:
    return GatewayJSONResponse(exc.to_dict(), status_code=exc.status_code)


async def _run_storefront(
    operation: str, handler: Callable[[], Awaitable[Any]]
) -> Response:
    try:
        return GatewayJSONResponse(await handler())
    except GatewayError as exc:
        log = logger.warning if exc.status_code < 500 else logger.error
        log("%s failed: %s (%s) details=%s", operation, exc.message, exc.code, exc.details)
        return _error_response(exc)
    except Exception:
        logger.exception("%s failed unexpectedly", operation)
        return _error_response(GatewayError("Internal server error"))


async def _read_json(request: Request) -> Any:
    raw = await request.body()
    if not raw.strip():
        raise ValidationError("Request body is required")
    try:
        return loads_decimal(raw)
    except ValueError as exc:
        raise ValidationError("Request body is not valid JSON") from exc


def _query_int(request: Request, name: str, default: int) -> int:
    value = request.query_params.get(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise ValidationError(f"{name} must be an integer") from exc


def create_http_app(context: AppContext | None = None) -> Starlette:
    """Create the gateway HTTP application."""
    ctx = context or get_app_context()
    settings = ctx.settings

    async def search_products(request: Request) -> Response:
        async def handler() -> Any:
            page = await ctx.distributor_gateway.search_products(
                keyword=request.query_params.get("keyword") or None,
                vendor=request.query_params.get("vendor") or None,
                page_number=_query_int(request, "pageNumber", 1),
                page_size=_query_int(request, "pageSize", 24),
            )
            return page.to_dict()

        return await _run_storefront("searchProducts", handler)

    async def price_and_availability(request: Request) -> Response:
        async def handler() -> Any:
            body = await _read_json(request)
            skus = body.get("skus") if isinstance(body, dict) else None
            if not isinstance(skus, list):
                raise ValidationError("skus must be a list")
            result = await ctx.distributor_gateway.get_price_and_availability(skus)
            return {sku: item.to_dict() for sku, item in result.items()}

        return await _run_storefront("getPriceAndAvailability", handler)

    async def create_checkout_session(request: Request) -> Response:
        async def handler() -> Any:
            body = await _read_json(request)
            try:
                checkout_request = CheckoutRequest.model_validate(body)
            except PydanticValidationError as exc:
                raise ValidationError(
                    "Invalid checkout request",
                    details=exc.errors(include_url=False),
                ) from exc
            session = await ctx.checkout_orchestrator.create_checkout(checkout_request)
            return {"url": session.redirect_url, "sessionId": session.session_id}

        return await _run_storefront("createCheckoutSession", handler)

    async def stripe_webhook(request: Request) -> Response:
        raw_body = await request.body()
        try:
            ack = await ctx.payment_consumer.handle_event(
                raw_body, request.headers.get(SIGNATURE_HEADER)
            )
        except (SignatureError, ValidationError) as exc:
            logger.warning("Payment webhook rejected: %s (%s)", exc.message, exc.code)
            return JSONResponse({"error": exc.code}, status_code=400)
        except GatewayError as exc:
            logger.error("Payment webhook failed: %s (%s)", exc.message, exc.code)
            return JSONResponse({"error": exc.code}, status_code=exc.status_code)
        except Exception:
            logger.exception("Payment webhook failed unexpectedly")
            return JSONResponse({"error": "INTERNAL_ERROR"}, status_code=500)
        return JSONResponse(ack.to_dict())

    async def distributor_webhook(request: Request) -> Response:
        raw_body = await request.body()
        signature = None
        for header in DISTRIBUTOR_SIGNATURE_HEADERS:
            signature = request.headers.get(header)
            if signature:
                break
        try:
            result = await ctx.event_sink.ingest(raw_body, signature)
        except GatewayError as exc:
            logger.error("Distributor webhook failed: %s (%s)", exc.message, exc.code)
            return JSONResponse({"error": exc.code}, status_code=500)
        except Exception:
            logger.exception("Distributor webhook failed unexpectedly")
            return JSONResponse({"error": "INTERNAL_ERROR"}, status_code=500)
        return JSONResponse(result)

    async def health_handler(request: Request) -> Response:
        return JSONResponse({"status": "healthy"})

    routes = [
        Route("/searchProducts", endpoint=search_products, methods=["GET"]),
        Route("/getPriceAndAvailability", endpoint=price_and_availability, methods=["POST"]),
        Route("/createCheckoutSession", endpoint=create_checkout_session, methods=["POST"]),
        Route("/stripeWebhook", endpoint=stripe_webhook, methods=["POST"]),
        Route("/distributorWebhook", endpoint=distributor_webhook, methods=["POST"]),
        Route("/health", endpoint=health_handler, methods=["GET"]),
    ]

    # CORS must be outermost so preflight requests are answered first.
    middleware = [
        Middleware(
            CORSMiddleware,
            allow_origins=list(settings.server.cors_allowed_origins),
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["Content-Type", "Accept"],
        ),
        Middleware(AccessLogMiddleware),
    ]

    @asynccontextmanager
    async def lifespan(app: Starlette):
        logger.info("Starting storefront gateway HTTP server...")
        try:
            yield
        finally:
            logger.info("Stopping storefront gateway HTTP server...")
            ctx.store.close()

    return Starlette(routes=routes, middleware=middleware, lifespan=lifespan)
