"""Client-address rate limiting dependency for FastAPI routes.

Identifier strategy:
- An explicit ``?ip=`` query parameter wins (lets a single browser simulate
  several clients).
- Otherwise the connection's client address, with loopback forms collapsed
  to ``localhost``.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import Depends, HTTPException, Query, Request, status

from ratelab.adapters.rate_limit.base import AdmitResult
from ratelab.api.deps import get_container
from ratelab.core.container import ServiceContainer

logger = logging.getLogger(__name__)

_LOOPBACK = {"::1", "127.0.0.1", "::ffff:127.0.0.1", "localhost"}


def normalize_ip(address: str | None) -> str:
    if not address or address in _LOOPBACK:
        return "localhost"
    return address


def client_identifier(request: Request, ip_override: str | None = None) -> str:
    if ip_override:
        return ip_override
    return normalize_ip(request.client.host if request.client else None)


def rate_limit_headers(result: AdmitResult) -> dict[str, str]:
    return {
        "Retry-After": str(result.time_left_seconds),
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": str(result.time_left_seconds),
    }


async def enforce_ip_rate_limit(
    request: Request,
    container: Annotated[ServiceContainer, Depends(get_container)],
    ip: Annotated[str | None, Query(description="Simulated client address")] = None,
) -> str:
    """FastAPI dependency admitting one request for the calling client.

    Returns:
        The identifier the request was admitted under.

    Raises:
        HTTPException: 429 Too Many Requests while the client is blocked.
    """

    identifier = client_identifier(request, ip)
    result = container.ip_limiter.check_limit(identifier)

    if result.allowed:
        container.counters.increment("ip")
        logger.info(
            "rate_limit.allowed",
            extra={"identifier": identifier, "current_count": result.current_count, "limit": result.limit},
        )
        return identifier

    logger.warning(
        "rate_limit.exceeded",
        extra={"identifier": identifier, "limit": result.limit, "retry_after_s": result.time_left_seconds},
    )
    raise HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail={
            "error": "Too Many Requests",
            "message": f"Rate limit exceeded. Try again in {result.time_left_seconds} seconds.",
            "timeLeft": result.time_left_seconds,
        },
        headers=rate_limit_headers(result) if container.settings.limiter.include_headers else None,
    )
