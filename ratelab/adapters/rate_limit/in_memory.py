"""In-memory sliding-window limiter with block/cooldown.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: each identifier owns a lock held for the whole
  check-then-act sequence; a short registry lock only guards membership.
- Lock order is always identifier lock -> registry lock.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

from ratelab.adapters.rate_limit.base import (
    AbstractWindowLimiter,
    AdmitResult,
    EntryStatus,
    LimitConfig,
    LimiterEntry,
    LimitSource,
)

logger = logging.getLogger(__name__)


@dataclass
class _LimiterState:
    timestamps: list[float] = field(default_factory=list)
    blocked: bool = False
    blocked_until: float | None = None
    last_request_at: datetime | None = None
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    # Set by sweep(); an admission that raced the sweep must retry on a fresh state
    evicted: bool = False


class WindowLimiter(AbstractWindowLimiter):
    """Sliding-window limiter with an explicit block/cooldown state machine.

    Once an identifier exceeds its limit it is blocked for one full window.
    When the cooldown ends its recorded requests are discarded entirely, so
    usage restarts from zero rather than sliding out gradually.
    """

    def __init__(
        self,
        *,
        max_requests: int = 3,
        window_ms: int = 60_000,
        name: str = "default",
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the limiter.

        Args:
            max_requests: Default requests per window for identifiers without
                their own policy.
            window_ms: Default window length in milliseconds.
            name: Label used in logs to tell limiter instances apart.
            clock: Time source returning UNIX time in seconds.

        Raises:
            ValueError: If the defaults are invalid.
        """
        _validate_limits(max_requests, window_ms)

        self.name = name
        self._default = LimitConfig(max_requests, window_ms, LimitSource.DEFAULT)
        self._clock = clock
        self._registry_lock = threading.Lock()
        self._states: dict[str, _LimiterState] = {}
        self._configs: dict[str, LimitConfig] = {}

    @property
    def default_limits(self) -> LimitConfig:
        return self._default

    def _now_ms(self) -> float:
        return self._clock() * 1000.0

    def set_limits(
        self,
        identifier: str,
        max_requests: int,
        window_ms: int,
        source: LimitSource = LimitSource.CUSTOM,
    ) -> LimitConfig:
        _validate_limits(max_requests, window_ms)
        config = LimitConfig(max_requests=max_requests, window_ms=window_ms, source=source)
        with self._registry_lock:
            self._configs[identifier] = config
        logger.debug(
            "limiter.limits_set",
            extra={
                "limiter": self.name,
                "identifier": identifier,
                "max_requests": max_requests,
                "window_ms": window_ms,
                "source": source.value,
            },
        )
        return config

    def get_limits(self, identifier: str) -> LimitConfig:
        with self._registry_lock:
            return self._configs.get(identifier, self._default)

    def get_existing_limits(self, identifier: str) -> LimitConfig | None:
        with self._registry_lock:
            return self._configs.get(identifier)

    def _get_or_create_state(self, identifier: str) -> _LimiterState:
        with self._registry_lock:
            state = self._states.get(identifier)
            if state is None:
                state = _LimiterState()
                self._states[identifier] = state
            return state

    def check_limit(self, identifier: str) -> AdmitResult:
        """Decide admission for one request against ``identifier``'s policy.

        Args:
            identifier: Client address, tested URL or custom endpoint.

        Returns:
            AdmitResult; ``time_left_seconds`` is the remaining cooldown when
            denied.
        """
        while True:
            state = self._get_or_create_state(identifier)
            with state.lock:
                if state.evicted:
                    continue
                return self._admit_locked(identifier, state)

    def _admit_locked(self, identifier: str, state: _LimiterState) -> AdmitResult:
        config = self.get_limits(identifier)
        now = self._now_ms()

        if state.blocked and state.blocked_until is not None and now < state.blocked_until:
            return self._result(
                config,
                allowed=False,
                time_left=math.ceil((state.blocked_until - now) / 1000),
                count=len(state.timestamps),
            )

        if state.blocked:
            _unblock(state)
            logger.info(
                "limiter.unblocked",
                extra={"limiter": self.name, "identifier": identifier},
            )

        _prune(state, now, config.window_ms)

        if len(state.timestamps) >= config.max_requests:
            state.blocked = True
            state.blocked_until = now + config.window_ms
            logger.warning(
                "limiter.blocked",
                extra={
                    "limiter": self.name,
                    "identifier": identifier,
                    "current_count": len(state.timestamps),
                    "max_requests": config.max_requests,
                    "cooldown_ms": config.window_ms,
                },
            )
            return self._result(
                config,
                allowed=False,
                time_left=math.ceil(config.window_ms / 1000),
                count=len(state.timestamps),
            )

        state.timestamps.append(now)
        state.last_request_at = datetime.fromtimestamp(now / 1000, tz=timezone.utc)
        return self._result(config, allowed=True, time_left=0, count=len(state.timestamps))

    @staticmethod
    def _result(config: LimitConfig, *, allowed: bool, time_left: int, count: int) -> AdmitResult:
        return AdmitResult(
            allowed=allowed,
            time_left_seconds=time_left,
            current_count=count,
            limit=config.max_requests,
            window_seconds=math.ceil(config.window_ms / 1000),
        )

    def get_all_entries(self) -> list[LimiterEntry]:
        """Snapshot every tracked identifier.

        Identifiers whose cooldown has elapsed are moved back to Active here,
        with the same reset as an admission check would apply.
        """
        with self._registry_lock:
            tracked = list(self._states.items())

        entries: list[LimiterEntry] = []
        for identifier, state in tracked:
            with state.lock:
                if state.evicted:
                    continue
                config = self.get_limits(identifier)
                now = self._now_ms()

                status = EntryStatus.ACTIVE
                time_left = 0
                if state.blocked and state.blocked_until is not None and now < state.blocked_until:
                    status = EntryStatus.BLOCKED
                    time_left = math.ceil((state.blocked_until - now) / 1000)
                elif state.blocked:
                    _unblock(state)

                _prune(state, now, config.window_ms)
                entries.append(
                    LimiterEntry(
                        identifier=identifier,
                        current_count=len(state.timestamps),
                        status=status,
                        time_left_seconds=time_left,
                        last_request_at=state.last_request_at,
                        limits=config,
                    )
                )
        return entries

    def sweep(self) -> int:
        """Evict identifiers that are not blocked and have no recent requests.

        The identifier's own policy is dropped together with its state.

        Returns:
            Number of identifiers removed.
        """
        with self._registry_lock:
            tracked = list(self._states.items())

        removed = 0
        for identifier, state in tracked:
            with state.lock:
                if state.evicted:
                    continue
                config = self.get_limits(identifier)
                now = self._now_ms()
                if state.blocked and state.blocked_until is not None and now >= state.blocked_until:
                    _unblock(state)
                _prune(state, now, config.window_ms)
                if state.blocked or state.timestamps:
                    continue

                state.evicted = True
                with self._registry_lock:
                    if self._states.get(identifier) is state:
                        del self._states[identifier]
                    self._configs.pop(identifier, None)
                removed += 1

        if removed:
            logger.info(
                "limiter.sweep",
                extra={"limiter": self.name, "removed": removed, "remaining": len(self._states)},
            )
        return removed

    def clear(self) -> None:
        with self._registry_lock:
            for state in self._states.values():
                state.evicted = True
            self._states.clear()
            self._configs.clear()

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._states)


def _validate_limits(max_requests: int, window_ms: int) -> None:
    if max_requests < 1:
        raise ValueError("max_requests must be >= 1")
    if window_ms < 1:
        raise ValueError("window_ms must be >= 1")


def _unblock(state: _LimiterState) -> None:
    state.blocked = False
    state.blocked_until = None
    state.timestamps.clear()


def _prune(state: _LimiterState, now: float, window_ms: int) -> None:
    state.timestamps = [t for t in state.timestamps if now - t < window_ms]
