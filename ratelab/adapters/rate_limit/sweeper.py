"""Periodic eviction of idle limiter identifiers."""

from __future__ import annotations

import asyncio
import logging
from typing import Iterable

from ratelab.adapters.rate_limit.base import AbstractWindowLimiter

logger = logging.getLogger(__name__)


class LimiterSweeper:
    """Runs ``sweep()`` on a set of limiters at a fixed interval.

    Started and stopped by the application lifespan.
    """

    def __init__(self, limiters: Iterable[AbstractWindowLimiter], *, interval_seconds: float = 30.0) -> None:
        self._limiters = list(limiters)
        self._interval = interval_seconds
        self._task: asyncio.Task | None = None
        self._shutdown_event = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def sweep_once(self) -> int:
        return sum(limiter.sweep() for limiter in self._limiters)

    def start(self) -> None:
        if self.running:
            return
        self._shutdown_event.clear()
        self._task = asyncio.create_task(self._sweep_loop())
        logger.debug("sweeper.started", extra={"interval_s": self._interval})

    async def stop(self) -> None:
        if self._task is None:
            return
        self._shutdown_event.set()
        try:
            await asyncio.wait_for(self._task, timeout=5.0)
        except asyncio.TimeoutError:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        logger.debug("sweeper.stopped")

    async def _sweep_loop(self) -> None:
        while not self._shutdown_event.is_set():
            try:
                await asyncio.wait_for(self._shutdown_event.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                pass
            if self._shutdown_event.is_set():
                break
            try:
                self.sweep_once()
            except Exception:
                logger.exception("sweeper.failed")
