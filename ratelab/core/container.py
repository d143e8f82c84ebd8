"""Owned service graph shared by request handlers.

Built once by the app factory and attached to ``app.state``; handlers reach
it through ``ratelab.api.deps.get_container``. Each logical purpose gets its
own isolated limiter instance.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable

from ratelab.adapters.http.base import AbstractTargetClient
from ratelab.adapters.http.factory import create_target_client
from ratelab.adapters.rate_limit.in_memory import WindowLimiter
from ratelab.adapters.rate_limit.sweeper import LimiterSweeper
from ratelab.core.config import Settings, settings as global_settings
from ratelab.services.probe_service import ProbeOrchestrator, ProbeRegistry
from ratelab.services.target_tester import TargetTester, UsageCounters


@dataclass
class ServiceContainer:
    settings: Settings
    ip_limiter: WindowLimiter
    url_limiter: WindowLimiter
    custom_limiter: WindowLimiter
    client: AbstractTargetClient
    counters: UsageCounters
    tester: TargetTester
    orchestrator: ProbeOrchestrator
    probes: ProbeRegistry
    sweeper: LimiterSweeper
    started_at: float = field(default_factory=time.monotonic)

    @property
    def limiters(self) -> tuple[WindowLimiter, WindowLimiter, WindowLimiter]:
        return (self.ip_limiter, self.url_limiter, self.custom_limiter)

    def clear(self) -> None:
        for limiter in self.limiters:
            limiter.clear()
        self.tester.clear()
        self.probes.clear()

    async def aclose(self) -> None:
        await self.sweeper.stop()
        await self.probes.shutdown()
        await self.client.aclose()


def build_container(
    app_settings: Settings | None = None,
    *,
    client: AbstractTargetClient | None = None,
    clock: Callable[[], float] = time.time,
) -> ServiceContainer:
    """Wire limiters, tester and probe services from settings.

    Args:
        app_settings: Settings to use; defaults to the global settings.
        client: Target client override (tests inject a mock transport).
        clock: Time source shared by limiters and the probe orchestrator.
    """
    cfg = app_settings or global_settings
    limiter_cfg = cfg.limiter

    ip_limiter = WindowLimiter(
        max_requests=limiter_cfg.default_max_requests,
        window_ms=limiter_cfg.default_window_seconds * 1000,
        name="ip",
        clock=clock,
    )
    url_limiter = WindowLimiter(
        max_requests=limiter_cfg.url_fallback_max_requests,
        window_ms=limiter_cfg.url_fallback_window_seconds * 1000,
        name="url",
        clock=clock,
    )
    custom_limiter = WindowLimiter(
        max_requests=limiter_cfg.custom_default_limit,
        window_ms=limiter_cfg.custom_default_window_seconds * 1000,
        name="custom",
        clock=clock,
    )

    target_client = client or create_target_client(cfg.probe)
    counters = UsageCounters()
    tester = TargetTester(
        url_limiter=url_limiter,
        custom_limiter=custom_limiter,
        client=target_client,
        limiter_settings=limiter_cfg,
        counters=counters,
    )
    orchestrator = ProbeOrchestrator(clock=clock)

    return ServiceContainer(
        settings=cfg,
        ip_limiter=ip_limiter,
        url_limiter=url_limiter,
        custom_limiter=custom_limiter,
        client=target_client,
        counters=counters,
        tester=tester,
        orchestrator=orchestrator,
        probes=ProbeRegistry(orchestrator),
        sweeper=LimiterSweeper(
            (ip_limiter, url_limiter, custom_limiter),
            interval_seconds=limiter_cfg.sweep_interval_seconds,
        ),
    )
