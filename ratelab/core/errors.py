"""Application-level exception types.

Admission denials and "nothing detected" results are normal outcomes and are
never raised; these types cover invalid input, missing resources and
upstream transport failures.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients."""

    code: str
    message: str
    hint: str
    identifier: str
    probe_id: str
    url: str
    method: str
    http_status: int
    retry_after: float
    request_id: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        super().__init__(self.message)


class ValidationAppError(AppError):
    """Raised when input/config validation fails."""


class NotFoundAppError(AppError):
    """Raised when a referenced resource (e.g. a probe run) does not exist."""


class ProbeConflictError(AppError):
    """Raised when a probe is already running for the same identifier."""


class TargetTransportError(AppError):
    """Raised when a tested target could not be reached (no HTTP response)."""
