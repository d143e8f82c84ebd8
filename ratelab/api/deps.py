from __future__ import annotations

from fastapi import Request

from ratelab.core.container import ServiceContainer


def get_container(request: Request) -> ServiceContainer:
    """Return the service container attached by the app factory."""
    return request.app.state.container
