"""Window limiter interfaces and value types.

Request handlers depend on this abstraction (not the concrete in-memory
implementation) so each logical purpose can own an isolated limiter
instance and tests can build their own.
"""

from __future__ import annotations

import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime


class LimitSource(str, enum.Enum):
    """Where a limit configuration came from."""

    DEFAULT = "default"
    DETECTED = "detected"
    CUSTOM = "custom"


class EntryStatus(str, enum.Enum):
    ACTIVE = "Active"
    BLOCKED = "Blocked"


@dataclass(frozen=True)
class LimitConfig:
    """Admission policy for one identifier.

    Attributes:
        max_requests: Requests admitted per window.
        window_ms: Sliding window length, also used as the cooldown length.
        source: Origin of the policy.
    """

    max_requests: int
    window_ms: int
    source: LimitSource = LimitSource.DEFAULT

    @property
    def window_seconds(self) -> int:
        return self.window_ms // 1000


@dataclass(frozen=True)
class AdmitResult:
    """Result of an admission check.

    Attributes:
        allowed: Whether the request may proceed.
        time_left_seconds: Seconds until the cooldown ends (0 when allowed).
        current_count: Requests recorded in the current window.
        limit: Max requests per window applied to this check.
        window_seconds: Window length applied to this check.
    """

    allowed: bool
    time_left_seconds: int
    current_count: int
    limit: int
    window_seconds: int

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.current_count)


@dataclass(frozen=True)
class LimiterEntry:
    """Monitoring snapshot of one tracked identifier."""

    identifier: str
    current_count: int
    status: EntryStatus
    time_left_seconds: int
    last_request_at: datetime | None
    limits: LimitConfig


class AbstractWindowLimiter(ABC):
    """Interface for per-identifier window limiters."""

    @abstractmethod
    def set_limits(
        self,
        identifier: str,
        max_requests: int,
        window_ms: int,
        source: LimitSource = LimitSource.CUSTOM,
    ) -> LimitConfig:
        """Replace the admission policy for ``identifier``."""
        raise NotImplementedError

    @abstractmethod
    def get_limits(self, identifier: str) -> LimitConfig:
        """Return the effective policy (custom or default)."""
        raise NotImplementedError

    @abstractmethod
    def get_existing_limits(self, identifier: str) -> LimitConfig | None:
        """Return the per-identifier policy, or None when only defaults apply."""
        raise NotImplementedError

    @abstractmethod
    def check_limit(self, identifier: str) -> AdmitResult:
        """Decide admission for one request and record it when admitted."""
        raise NotImplementedError

    @abstractmethod
    def get_all_entries(self) -> list[LimiterEntry]:
        """Snapshot every tracked identifier."""
        raise NotImplementedError

    @abstractmethod
    def sweep(self) -> int:
        """Evict idle identifiers; returns how many were removed."""
        raise NotImplementedError

    @abstractmethod
    def clear(self) -> None:
        """Forget all state and per-identifier policies."""
        raise NotImplementedError
