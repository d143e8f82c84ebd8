from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field


@dataclass(frozen=True)
class TargetResponse:
    """Status and headers of one upstream response.

    Header names are stored lower-cased.
    """

    status: int
    headers: dict[str, str] = field(default_factory=dict)
    elapsed_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 400


class AbstractTargetClient(ABC):
    """Interface for clients that send a single request to a tested target."""

    @abstractmethod
    async def send(self, method: str, url: str) -> TargetResponse:
        """Send one request and return its status and headers.

        Args:
            method: HTTP method (case-insensitive).
            url: Absolute target URL.

        Returns:
            TargetResponse for any HTTP status, including 4xx/5xx.

        Raises:
            TargetTransportError: If no HTTP response was received.
        """
        ...

    async def aclose(self) -> None:
        """Release pooled connections."""
