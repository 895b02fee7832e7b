"""Distributor catalog/pricing client and notification sink."""

from storefront_gateway.distributor.api import DistributorApi
from storefront_gateway.distributor.client import (
    CatalogPage,
    DistributorGateway,
    PriceAvailability,
    ProductSummary,
)
from storefront_gateway.distributor.events import DistributorEventSink

__all__ = [
    "CatalogPage",
    "DistributorApi",
    "DistributorEventSink",
    "DistributorGateway",
    "PriceAvailability",
    "ProductSummary",
]
