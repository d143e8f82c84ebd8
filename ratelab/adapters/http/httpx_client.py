"""httpx-based target client."""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Any

import httpx

from ratelab.adapters.http.base import AbstractTargetClient, TargetResponse
from ratelab.core.errors import TargetTransportError

logger = logging.getLogger(__name__)

_METHODS_WITH_BODY = {"POST", "PUT", "PATCH"}


class HttpxTargetClient(AbstractTargetClient):
    """Sends test requests with a shared ``httpx.AsyncClient``.

    Bodies are never read beyond what httpx needs to complete the exchange;
    only status and headers matter for rate-limit discovery.
    """

    def __init__(
        self,
        *,
        timeout_seconds: float = 10.0,
        user_agent: str = "Rate-Limiter-Test/1.0",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the async client.

        Args:
            timeout_seconds: Timeout applied to each request.
            user_agent: User-Agent header sent to targets.
            transport: Optional transport override (tests use
                ``httpx.MockTransport``).
        """
        self.client = httpx.AsyncClient(
            timeout=timeout_seconds,
            transport=transport,
            follow_redirects=True,
            headers={
                "User-Agent": user_agent,
                "Accept": "application/json, text/plain, */*",
                "Accept-Language": "en-US,en;q=0.9",
            },
        )

    async def send(self, method: str, url: str) -> TargetResponse:
        method = method.upper()
        request_kwargs: dict[str, Any] = {}
        if method in _METHODS_WITH_BODY:
            request_kwargs["json"] = {
                "test": True,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }

        start = time.perf_counter()
        try:
            response = await self.client.request(method, url, **request_kwargs)
        except httpx.HTTPError as exc:
            logger.warning(
                "target.transport_error",
                extra={"url": url, "method": method, "error_type": type(exc).__name__},
            )
            raise TargetTransportError(
                code="target_unreachable",
                message=str(exc) or type(exc).__name__,
                details={"url": url, "method": method},
            ) from exc
        elapsed_ms = (time.perf_counter() - start) * 1000

        logger.debug(
            "target.response",
            extra={"url": url, "method": method, "status": response.status_code, "elapsed_ms": round(elapsed_ms, 2)},
        )
        return TargetResponse(
            status=response.status_code,
            headers={k.lower(): v for k, v in response.headers.items()},
            elapsed_ms=elapsed_ms,
        )

    async def aclose(self) -> None:
        await self.client.aclose()
