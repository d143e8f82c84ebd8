from __future__ import annotations

from ratelab.api.routes.health import router as health_router
from ratelab.api.routes.home import router as home_router
from ratelab.api.routes.monitor import router as monitor_router
from ratelab.api.routes.probe import router as probe_router
from ratelab.api.routes.testing import router as testing_router

__all__ = ["health_router", "home_router", "monitor_router", "probe_router", "testing_router"]
