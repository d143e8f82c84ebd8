from __future__ import annotations

import time
from typing import Annotated

from fastapi import APIRouter, Depends

from ratelab.api.deps import get_container
from ratelab.core.container import ServiceContainer

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check(container: Annotated[ServiceContainer, Depends(get_container)]) -> dict:
    """Health check endpoint.

    Used by load balancers and monitoring systems to determine service
    health. Never rate limited.

    Returns:
        dict: status, process uptime in seconds and service version.
    """

    return {
        "status": "ok",
        "uptime_seconds": round(time.monotonic() - container.started_at, 2),
        "version": container.settings.app.version,
    }
