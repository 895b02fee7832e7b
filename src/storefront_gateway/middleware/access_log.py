"""Request access logging middleware."""

from __future__ import annotations

import logging
import re
import time
import uuid
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

# Control character pattern for log injection prevention.
_CONTROL_CHAR_RE = re.compile(r"[\x00-\x08\x0a-\x1f\x7f]")

REQUEST_ID_HEADER = "x-request-id"


def _sanitize_log_value(value: str) -> str:
    """Replace control characters (newlines, tabs, etc.) to prevent log injection."""
    return _CONTROL_CHAR_RE.sub("_", value)


def _client_ip(request: Request) -> str:
    if request.client:
        return request.client.host
    return "unknown"


class AccessLogMiddleware(BaseHTTPMiddleware):
    """Logs method, path, status and duration for every request.

    The request id is taken from ``X-Request-ID`` when present, exposed on
    ``request.state.request_id`` and echoed back in the response header.
    """

    EXEMPT_PATHS = frozenset({"/health"})

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in self.EXEMPT_PATHS:
            return await call_next(request)

        request_id = _sanitize_log_value(
            request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        )[:64]
        request.state.request_id = request_id
        start_time = time.monotonic()
        safe_path = _sanitize_log_value(request.url.path)

        logger.info(
            "REQUEST_START request_id=%s method=%s path=%s client_ip=%s",
            request_id,
            request.method,
            safe_path,
            _sanitize_log_value(_client_ip(request)),
        )

        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        finally:
            duration_ms = int((time.monotonic() - start_time) * 1000)
            log = logger.warning if status_code >= 500 else logger.info
            log(
                "REQUEST_END request_id=%s method=%s path=%s status=%s duration_ms=%d",
                request_id,
                request.method,
                safe_path,
                status_code,
                duration_ms,
            )
