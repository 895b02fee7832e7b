from __future__ import annotations

import asyncio
import contextlib
import os

import pytest

from storefront_gateway import config


def pytest_sessionstart(session: pytest.Session) -> None:
    # Keep unit test runs away from real distributor and payment accounts.
    for key in (
        "DISTRIBUTOR_CLIENT_ID",
        "DISTRIBUTOR_CLIENT_SECRET",
        "DISTRIBUTOR_SECRET_KEY",
        "STRIPE_SECRET_KEY",
        "STRIPE_WEBHOOK_SECRET",
    ):
        os.environ.pop(key, None)


@pytest.fixture(autouse=True)
def _reset_settings_cache() -> None:
    config._load_settings_cached.cache_clear()
    yield
    config._load_settings_cached.cache_clear()


@pytest.fixture(autouse=True)
def _close_default_event_loop() -> None:
    yield
    policy = asyncio.get_event_loop_policy()
    local = getattr(policy, "_local", None)
    loop = getattr(local, "_loop", None) if local is not None else None
    if loop is not None and not loop.is_running() and not loop.is_closed():
        with contextlib.suppress(Exception):
            loop.close()
    if loop is not None:
        with contextlib.suppress(Exception):
            policy.set_event_loop(None)
