"""Factory for the client used to reach tested targets."""

from __future__ import annotations

import httpx

from ratelab.adapters.http.base import AbstractTargetClient
from ratelab.adapters.http.httpx_client import HttpxTargetClient
from ratelab.core.config import ProbeSettings, settings


def create_target_client(
    probe_settings: ProbeSettings | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> AbstractTargetClient:
    """Build the target client from probe settings.

    Args:
        probe_settings: Settings to use; defaults to the global settings.
        transport: Optional httpx transport override.

    Returns:
        AbstractTargetClient: Configured client instance.
    """
    cfg = probe_settings or settings.probe
    return HttpxTargetClient(
        timeout_seconds=cfg.request_timeout_seconds,
        user_agent=cfg.user_agent,
        transport=transport,
    )
