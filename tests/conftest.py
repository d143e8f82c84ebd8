"""Pytest configuration and fixtures shared across all test modules.

Environment defaults are set before any ratelab import so the global
settings never pick up a developer's .env file.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["APP_ENV"] = "testing"

os.environ.setdefault("PROBE_DELAY_MS", "0")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import time
from unittest.mock import Mock

import httpx
import pytest

from ratelab.adapters.http.httpx_client import HttpxTargetClient
from ratelab.core.app_factory import create_app
from ratelab.core.config import Settings
from ratelab.core.container import build_container


def make_target_client(handler) -> HttpxTargetClient:
    """Target client whose upstream is answered by ``handler``."""
    return HttpxTargetClient(transport=httpx.MockTransport(handler))


@pytest.fixture
def clock() -> Mock:
    return Mock(return_value=1_700_000_000.0)


@pytest.fixture
def app_settings() -> Settings:
    return Settings()


@pytest.fixture
def build_app(app_settings: Settings, clock: Mock):
    """Return a factory building an isolated app around an upstream handler."""

    def _build(handler=None, *, settings: Settings | None = None, use_clock: bool = False):
        handler = handler or (lambda request: httpx.Response(200))
        container = build_container(
            settings or app_settings,
            client=make_target_client(handler),
            clock=clock if use_clock else time.time,
        )
        return create_app(container)

    return _build
