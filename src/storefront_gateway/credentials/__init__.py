"""Distributor credential caching."""

from storefront_gateway.credentials.cache import AccessCredential, TokenCache

__all__ = ["AccessCredential", "TokenCache"]
