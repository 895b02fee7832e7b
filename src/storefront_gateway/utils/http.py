"""Shared HTTP utilities."""

from __future__ import annotations

from urllib.parse import urlparse

_PUBLIC_BASE_URL_ALLOWED_SCHEMES = frozenset({"http", "https"})


def normalize_public_base_url(value: str) -> str:
    """Normalize and validate the externally visible storefront base URL."""
    candidate = value.strip()
    if not candidate:
        raise ValueError("public_base_url must not be empty")

    parsed = urlparse(candidate)
    if parsed.scheme.lower() not in _PUBLIC_BASE_URL_ALLOWED_SCHEMES:
        raise ValueError("public_base_url must use http or https")
    if not parsed.netloc:
        raise ValueError("public_base_url must include host")
    if parsed.query or parsed.fragment:
        raise ValueError("public_base_url must not include query or fragment")
    if parsed.username or parsed.password:
        raise ValueError("public_base_url must not include userinfo")

    normalized_path = parsed.path.rstrip("/")
    if normalized_path == "/":
        normalized_path = ""
    return f"{parsed.scheme.lower()}://{parsed.netloc}{normalized_path}"


def truncate_body(body: str | bytes | None, limit: int = 2000) -> str | None:
    """Shorten an upstream response body for error diagnostics."""
    if body is None:
        return None
    if isinstance(body, bytes):
        body = body.decode("utf-8", errors="replace")
    if len(body) <= limit:
        return body
    return body[:limit] + "...[truncated]"
