"""Entrypoint for the storefront gateway HTTP server."""

from __future__ import annotations

import sys
from pathlib import Path

if __package__ in (None, ""):
    sys.path.insert(0, str(Path(__file__).resolve().parents[1]))  # pragma: no cover

import uvicorn

from storefront_gateway import __version__
from storefront_gateway.config import load_settings
from storefront_gateway.logging_utils import configure_logging, get_logger


def run_entrypoint() -> None:
    """Configure logging and serve the gateway with uvicorn."""
    settings = load_settings()
    configure_logging()
    logger = get_logger(__name__)
    logger.info("Initializing storefront gateway v%s", __version__)
    if settings.logging.file:
        logger.info("Log file configured at: %s", settings.logging.file)

    from storefront_gateway.transport.http_server import create_http_app

    app = create_http_app()
    uvicorn.run(
        app,
        host=settings.server.host,
        port=settings.server.port,
        ws="none",
        log_config=None,
    )


if __name__ == "__main__":  # pragma: no cover
    run_entrypoint()
