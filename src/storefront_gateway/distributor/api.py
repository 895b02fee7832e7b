"""Raw HTTP calls against the distributor reseller API."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from storefront_gateway.config import DistributorSettings
from storefront_gateway.credentials.cache import AccessCredential
from storefront_gateway.errors import AuthError, UpstreamError
from storefront_gateway.utils.http import truncate_body
from storefront_gateway.utils.serialization import loads_decimal

logger = logging.getLogger(__name__)

CATALOG_PATH = "/resellers/v6/catalog"
PRICE_AVAILABILITY_PATH = "/resellers/v6/catalog/priceandavailability"

_DEFAULT_TOKEN_VALIDITY_SECONDS = 3600


class DistributorApi:
    """Thin async wrapper over the three upstream endpoints the gateway uses.

    Every request is bounded by ``settings.timeout_seconds``. No retries are
    performed here; a failure surfaces as ``AuthError`` or ``UpstreamError``.
    """

    def __init__(
        self,
        settings: DistributorSettings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings
        self._transport = transport
        self._base_url = settings.base_url.rstrip("/")

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            transport=self._transport,
            timeout=httpx.Timeout(self._settings.timeout_seconds),
        )

    def _headers(self, token: str, correlation_id: str) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
            "IM-CustomerNumber": self._settings.customer_number,
            "IM-CountryCode": self._settings.country_code,
            "IM-SenderID": self._settings.sender_id,
            "IM-CorrelationID": correlation_id,
        }
        if self._settings.secret_key:
            headers["IM-SecretKey"] = self._settings.secret_key
        return headers

    async def exchange_credential(self) -> AccessCredential:
        """Run the client-credentials grant and return a fresh credential."""
        if not self._settings.client_id or not self._settings.client_secret:
            raise AuthError("Distributor client credentials are not configured")

        form = {
            "grant_type": "client_credentials",
            "client_id": self._settings.client_id,
            "client_secret": self._settings.client_secret,
        }
        try:
            async with self._client() as client:
                resp = await client.post(self._settings.oauth_url, data=form)
        except httpx.TimeoutException as exc:
            raise AuthError("Credential exchange timed out") from exc
        except httpx.HTTPError as exc:
            raise AuthError(f"Credential exchange failed: {exc}") from exc

        if resp.status_code >= 400:
            logger.error("Credential exchange rejected: status=%s", resp.status_code)
            raise AuthError(
                f"Credential exchange rejected with status {resp.status_code}",
                details={"status": resp.status_code, "body": truncate_body(resp.text)},
            )

        try:
            payload = resp.json()
        except ValueError as exc:
            raise AuthError("Credential exchange returned a non-JSON body") from exc

        token = payload.get("access_token") if isinstance(payload, dict) else None
        if not token:
            raise AuthError("Credential exchange response has no access_token")

        try:
            validity = int(payload.get("expires_in") or _DEFAULT_TOKEN_VALIDITY_SECONDS)
        except (TypeError, ValueError):
            validity = _DEFAULT_TOKEN_VALIDITY_SECONDS

        return AccessCredential.issued(str(token), validity)

    async def product_search(
        self, token: str, correlation_id: str, params: dict[str, Any]
    ) -> Any:
        return await self._send(
            "GET",
            CATALOG_PATH,
            token=token,
            correlation_id=correlation_id,
            params=params,
        )

    async def price_and_availability(
        self, token: str, correlation_id: str, skus: list[str]
    ) -> Any:
        return await self._send(
            "POST",
            PRICE_AVAILABILITY_PATH,
            token=token,
            correlation_id=correlation_id,
            params={"includeAvailability": "true", "includePricing": "true"},
            json={"products": [{"ingramPartNumber": sku} for sku in skus]},
        )

    async def _send(
        self,
        method: str,
        path: str,
        *,
        token: str,
        correlation_id: str,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> Any:
        url = f"{self._base_url}{path}"
        try:
            async with self._client() as client:
                resp = await client.request(
                    method,
                    url,
                    params=params,
                    json=json,
                    headers=self._headers(token, correlation_id),
                )
        except httpx.TimeoutException as exc:
            logger.warning("Distributor call timed out: %s %s (%s)", method, path, correlation_id)
            raise UpstreamError(f"Distributor request timed out: {path}") from exc
        except httpx.HTTPError as exc:
            logger.warning("Distributor call failed: %s %s (%s): %s", method, path, correlation_id, exc)
            raise UpstreamError(f"Distributor request failed: {exc}") from exc

        if resp.status_code >= 400:
            logger.error(
                "Distributor returned error: %s %s status=%s correlation_id=%s",
                method,
                path,
                resp.status_code,
                correlation_id,
            )
            raise UpstreamError(
                f"Distributor returned status {resp.status_code}",
                upstream_status=resp.status_code,
                upstream_body=truncate_body(resp.text),
            )

        if not resp.content:
            return None
        try:
            return loads_decimal(resp.content)
        except ValueError as exc:
            raise UpstreamError(
                "Distributor returned a malformed response",
                upstream_status=resp.status_code,
                upstream_body=truncate_body(resp.text),
            ) from exc
