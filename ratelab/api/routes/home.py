from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated

from fastapi import APIRouter, Depends

from ratelab.api.deps import get_container
from ratelab.core.container import ServiceContainer
from ratelab.core.rate_limit import enforce_ip_rate_limit

router = APIRouter(tags=["Limiter"])

ENDPOINTS = {
    "GET /home": "Rate-limited endpoint (per client address, ?ip= to simulate clients)",
    "POST /test-url": "Test an external URL and learn its rate limit from headers",
    "POST /test-custom": "Test an endpoint under a configured limit",
    "GET /monitor": "Client address limiter state",
    "GET /monitor-urls": "Tested URL limiter state",
    "GET /monitor-custom": "Custom endpoint limiter state",
    "GET /analytics": "Aggregate counters",
    "POST /clear-data": "Reset all limiter state",
    "POST /v1/probes": "Flood test a target until it rate limits",
    "GET /v1/probes/{probe_id}": "Probe report",
    "POST /v1/probes/{probe_id}/cancel": "Cancel a running probe",
    "GET /health": "Liveness check",
}


@router.get("/")
def index(container: Annotated[ServiceContainer, Depends(get_container)]) -> dict:
    """List the available endpoints."""
    return {
        "message": container.settings.app.title,
        "version": container.settings.app.version,
        "endpoints": ENDPOINTS,
    }


@router.get("/home")
def home(
    identifier: Annotated[str, Depends(enforce_ip_rate_limit)],
    container: Annotated[ServiceContainer, Depends(get_container)],
) -> dict:
    """Endpoint guarded by the client-address limiter.

    Returns 429 with ``timeLeft`` once the caller exceeds its window.
    """
    limits = container.ip_limiter.get_limits(identifier)
    return {
        "message": "Welcome! Your request was allowed.",
        "client_ip": identifier,
        "timestamp": datetime.now(timezone.utc),
        "limit": limits.max_requests,
        "window_seconds": limits.window_seconds,
    }
