"""Storefront-facing catalog and pricing operations."""

from __future__ import annotations

import logging
import uuid
from dataclasses import asdict, dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable

from storefront_gateway.credentials.cache import TokenCache
from storefront_gateway.distributor.api import DistributorApi
from storefront_gateway.errors import UpstreamError, ValidationError
from storefront_gateway.utils.http import truncate_body
from storefront_gateway.utils.serialization import dumps

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 24
MAX_PAGE_SIZE = 100
MAX_SKUS_PER_REQUEST = 50


@dataclass(frozen=True)
class ProductSummary:
    sku: str
    vendor_part_number: str | None
    vendor: str | None
    description: str | None
    category: str | None
    upc: str | None
    product_type: str | None


@dataclass(frozen=True)
class CatalogPage:
    total: int
    page_number: int
    page_size: int
    products: list[ProductSummary] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class PriceAvailability:
    sku: str
    price: Decimal | None
    retail_price: Decimal | None
    currency: str | None
    available: bool
    quantity_available: int
    status: str | None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _to_decimal(value: Any) -> Decimal | None:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def _to_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def normalize_skus(skus: Iterable[Any]) -> list[str]:
    """Strip and de-duplicate SKUs, keeping first-seen order."""
    seen: dict[str, None] = {}
    for raw in skus:
        if not isinstance(raw, str) or not raw.strip():
            raise ValidationError("Every sku must be a non-empty string")
        seen.setdefault(raw.strip(), None)
    return list(seen)


def _shape_error(what: str, payload: Any) -> UpstreamError:
    return UpstreamError(
        f"Unexpected {what} shape in distributor response",
        upstream_status=200,
        upstream_body=truncate_body(dumps(payload)),
    )


def _nested(raw: dict[str, Any], key: str) -> dict[str, Any]:
    value = raw.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise _shape_error(key, raw)
    return value


def _normalize_product(raw: Any) -> ProductSummary:
    if not isinstance(raw, dict):
        raise _shape_error("catalog entry", raw)
    return ProductSummary(
        sku=str(raw.get("ingramPartNumber") or ""),
        vendor_part_number=raw.get("vendorPartNumber"),
        vendor=raw.get("vendorName"),
        description=raw.get("description"),
        category=raw.get("category"),
        upc=raw.get("upcCode"),
        product_type=raw.get("productType"),
    )


def _normalize_price(raw: Any) -> PriceAvailability:
    if not isinstance(raw, dict):
        raise _shape_error("price/availability entry", raw)
    pricing = _nested(raw, "pricing")
    availability = _nested(raw, "availability")
    return PriceAvailability(
        sku=str(raw.get("ingramPartNumber") or ""),
        price=_to_decimal(pricing.get("customerPrice")),
        retail_price=_to_decimal(pricing.get("retailPrice")),
        currency=pricing.get("currencyCode"),
        available=bool(availability.get("available", False)),
        quantity_available=_to_int(availability.get("totalAvailability")),
        status=raw.get("productStatusCode"),
    )


class DistributorGateway:
    """Live (uncached) catalog search and price/availability lookups."""

    def __init__(self, api: DistributorApi, token_cache: TokenCache, sender_id: str) -> None:
        self._api = api
        self._token_cache = token_cache
        self._sender_id = sender_id

    def _correlation_id(self, operation: str) -> str:
        return f"{self._sender_id}-{operation}-{uuid.uuid4().hex[:16]}"

    async def search_products(
        self,
        keyword: str | None = None,
        vendor: str | None = None,
        page_number: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> CatalogPage:
        if page_number < 1:
            raise ValidationError("pageNumber must be >= 1")
        if page_size < 1:
            raise ValidationError("pageSize must be >= 1")
        page_size = min(page_size, MAX_PAGE_SIZE)

        params: dict[str, Any] = {"pageNumber": page_number, "pageSize": page_size}
        if keyword:
            params["keyword"] = keyword
        if vendor:
            params["vendor"] = vendor

        correlation_id = self._correlation_id("search")
        token = await self._token_cache.get_token()
        try:
            payload = await self._api.product_search(token, correlation_id, params)
        except UpstreamError as exc:
            await self._invalidate_on_unauthorized(exc)
            raise

        if payload is None:
            return CatalogPage(total=0, page_number=page_number, page_size=page_size)
        if not isinstance(payload, dict):
            raise _shape_error("catalog response", payload)

        catalog = payload.get("catalog")
        if catalog is None:
            catalog = []
        if not isinstance(catalog, list):
            raise _shape_error("catalog", payload)
        return CatalogPage(
            total=_to_int(payload.get("recordsFound"), default=len(catalog)),
            page_number=_to_int(payload.get("pageNumber"), default=page_number),
            page_size=_to_int(payload.get("pageSize"), default=page_size),
            products=[_normalize_product(item) for item in catalog],
        )

    async def get_price_and_availability(self, skus: Iterable[Any]) -> dict[str, PriceAvailability]:
        unique = normalize_skus(skus)
        if not unique:
            raise ValidationError("At least one sku is required")
        if len(unique) > MAX_SKUS_PER_REQUEST:
            raise ValidationError(
                f"At most {MAX_SKUS_PER_REQUEST} skus per request (got {len(unique)})"
            )

        correlation_id = self._correlation_id("pa")
        token = await self._token_cache.get_token()
        try:
            payload = await self._api.price_and_availability(token, correlation_id, unique)
        except UpstreamError as exc:
            await self._invalidate_on_unauthorized(exc)
            raise

        if payload is None:
            return {}
        if isinstance(payload, dict):
            # Some regions wrap the list in a single object.
            wrapped = payload.get("products")
            if wrapped is None:
                wrapped = payload.get("productDetails")
            if wrapped is None:
                raise _shape_error("price/availability response", payload)
            payload = wrapped
        if not isinstance(payload, list):
            raise _shape_error("price/availability response", payload)

        result: dict[str, PriceAvailability] = {}
        for item in payload:
            normalized = _normalize_price(item)
            if normalized.sku:
                result[normalized.sku] = normalized
        return result

    async def _invalidate_on_unauthorized(self, exc: UpstreamError) -> None:
        if exc.upstream_status == 401:
            logger.warning("Distributor rejected the cached token; it will be refreshed")
            await self._token_cache.invalidate()
