"""Distributor access-token cache with single-flight refresh."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable

from storefront_gateway.utils.time import utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccessCredential:
    """Bearer token issued by the distributor's credential exchange."""

    token: str
    expires_at: datetime

    def __repr__(self) -> str:
        return (
            f"AccessCredential(token={self.token[:6]}***, "
            f"expires_at={self.expires_at.isoformat()})"
        )

    @classmethod
    def issued(
        cls, token: str, validity_seconds: int, now: datetime | None = None
    ) -> "AccessCredential":
        issued_at = now or utc_now()
        return cls(token=token, expires_at=issued_at + timedelta(seconds=validity_seconds))

    def is_expiring_soon(self, now: datetime, margin_seconds: int) -> bool:
        return self.seconds_remaining(now) <= margin_seconds

    def seconds_remaining(self, now: datetime) -> float:
        exp = self.expires_at
        if exp.tzinfo is None:
            exp = exp.replace(tzinfo=timezone.utc)
        return (exp - now).total_seconds()


class TokenCache:
    """Process-wide holder of one distributor credential.

    Concurrent callers that find the credential missing or expiring share a
    single in-flight exchange and all receive its token or its exception.
    The exchange runs in its own task, so cancelling any caller (including
    the one that started it) leaves the other callers unaffected.
    """

    def __init__(
        self,
        exchange_fn: Callable[[], Awaitable[AccessCredential]],
        *,
        safety_margin_seconds: int = 300,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._exchange_fn = exchange_fn
        self._safety_margin_seconds = safety_margin_seconds
        self._margin_seconds = safety_margin_seconds
        self._clock = clock
        self._credential: AccessCredential | None = None
        self._in_flight: asyncio.Task[AccessCredential] | None = None
        self._lock = asyncio.Lock()

    @property
    def credential(self) -> AccessCredential | None:
        return self._credential

    async def get_token(self) -> str:
        credential = await self.get_credential()
        return credential.token

    async def get_credential(self) -> AccessCredential:
        async with self._lock:
            current = self._credential
            if current and not current.is_expiring_soon(self._clock(), self._margin_seconds):
                return current

            task = self._in_flight
            if task is None or task.done():
                task = asyncio.create_task(self._refresh())
                task.add_done_callback(self._refresh_done)
                self._in_flight = task

        return await asyncio.shield(task)

    async def _refresh(self) -> AccessCredential:
        logger.info("Refreshing distributor access token")
        credential = await self._exchange_fn()

        validity = credential.seconds_remaining(self._clock())
        margin = self._safety_margin_seconds
        if margin > validity / 2:
            # Margin never exceeds half the token lifetime.
            margin = max(int(validity // 2), 0)
            logger.warning(
                "Distributor token lifetime %ds is short for the %ds safety margin; "
                "using %ds",
                int(validity),
                self._safety_margin_seconds,
                margin,
            )
        self._credential = credential
        self._margin_seconds = margin

        logger.info("Distributor access token valid until %s", credential.expires_at.isoformat())
        return credential

    def _refresh_done(self, task: asyncio.Task[AccessCredential]) -> None:
        if self._in_flight is task:
            self._in_flight = None
        if not task.cancelled():
            # Mark the exception retrieved.
            task.exception()

    async def invalidate(self) -> None:
        """Forget the cached credential so the next call re-authenticates."""
        async with self._lock:
            self._credential = None
