"""JSON serialization utilities."""

from __future__ import annotations

import datetime
import decimal
import json
from typing import Any


def json_default(obj: object) -> object:
    """JSON serializer for objects not serializable by default json code."""
    if isinstance(obj, (datetime.date, datetime.datetime)):
        return obj.isoformat()
    if isinstance(obj, decimal.Decimal):
        # Money values keep their exact decimal text.
        return str(obj)
    if isinstance(obj, bytes):
        return obj.decode("utf-8", errors="replace")
    if hasattr(obj, "model_dump"):
        return obj.model_dump(mode="json")
    return str(obj)


def dumps(value: Any) -> str:
    return json.dumps(value, default=json_default, separators=(",", ":"))


def loads_decimal(raw: str | bytes) -> Any:
    """Parse JSON keeping non-integer numbers as ``Decimal``."""
    return json.loads(raw, parse_float=decimal.Decimal)
