"""Audit sink for asynchronous distributor notifications."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from storefront_gateway.orders.models import DistributorEventRecord
from storefront_gateway.orders.store import SqliteOrderStore
from storefront_gateway.utils.masking import redact_sensitive_fields
from storefront_gateway.utils.time import utc_now_iso

logger = logging.getLogger(__name__)

_EVENT_TYPE_KEYS = ("topic", "eventType", "event_type")


def _parse_body(raw_body: bytes) -> Any:
    text = raw_body.decode("utf-8", errors="replace")
    if not text.strip():
        return {}
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return {"raw": text}


def _event_type(payload: Any) -> str:
    if isinstance(payload, dict):
        for key in _EVENT_TYPE_KEYS:
            value = payload.get(key)
            if value:
                return str(value)
    return "unknown"


class DistributorEventSink:
    """Appends every distributor notification to the audit log.

    A signature mismatch is logged and the event is stored anyway. Nothing here
    changes order state.
    """

    def __init__(self, store: SqliteOrderStore, secret_key: str | None) -> None:
        self._store = store
        self._secret_key = secret_key

    def signature_matches(self, signature: str | None) -> bool:
        if not self._secret_key or not signature:
            return True
        return self._secret_key in signature

    async def ingest(self, raw_body: bytes, signature: str | None) -> dict[str, Any]:
        if not self.signature_matches(signature):
            logger.warning("Distributor webhook signature mismatch; storing event anyway")

        payload = _parse_body(raw_body)
        record = DistributorEventRecord(
            event_type=_event_type(payload),
            raw_payload=payload,
            received_at=utc_now_iso(),
        )
        logger.info(
            "Distributor event %s: %s",
            record.event_type,
            json.dumps(redact_sensitive_fields(payload), default=str)[:1000],
        )

        event_id = await asyncio.to_thread(self._store.append_distributor_event, record)
        return {"status": "received", "event_id": event_id}
