"""Application factory for the FastAPI app.

Centralizes app construction (metadata, middleware, handlers, routers,
service container and its lifespan) so tests can build isolated apps.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from ratelab.api.routes import health_router, home_router, monitor_router, probe_router, testing_router
from ratelab.core.config import settings
from ratelab.core.container import ServiceContainer, build_container
from ratelab.core.exception_handlers import setup_exception_handlers
from ratelab.core.logging import configure_logging
from ratelab.core.middleware import request_id_middleware
from ratelab.core.openapi import apply_openapi_customizations

logger = logging.getLogger(__name__)


def create_app(container: ServiceContainer | None = None) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        container: Pre-built services (tests inject clocks and mock
            transports); built from settings when omitted.

    Returns:
        Configured FastAPI app with middleware, handlers, routers and docs.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    services = container or build_container(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        services.sweeper.start()
        logger.info("app.startup", extra={"app_env": services.settings.app_env})
        yield
        await services.aclose()
        logger.info("app.shutdown")

    app = FastAPI(
        title=services.settings.app.title,
        description=(
            "Admission control and rate-limit discovery service: sliding-window "
            "limiters per client address, tested URL and custom endpoint, "
            "header-based detection of remote policies, and flood-test probes "
            "that find the request where a target starts answering 429."
        ),
        version=services.settings.app.version,
        debug=services.settings.app.debug,
        lifespan=lifespan,
    )
    app.state.container = services

    # Middleware
    app.middleware("http")(request_id_middleware)

    # Exception handlers
    setup_exception_handlers(app)

    # Routers
    app.include_router(home_router)
    app.include_router(testing_router)
    app.include_router(monitor_router)
    app.include_router(probe_router, prefix="/v1")
    app.include_router(health_router)

    apply_openapi_customizations(app)

    return app
