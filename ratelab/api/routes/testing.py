from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, status

from ratelab.api.deps import get_container
from ratelab.core.container import ServiceContainer
from ratelab.core.rate_limit import client_identifier, rate_limit_headers
from ratelab.schemas.limits import (
    CustomTestRequest,
    CustomTestResponse,
    DetectionModel,
    LimitConfigModel,
    UrlTestRequest,
    UrlTestResponse,
    UsageModel,
)
from ratelab.services.limit_detector import DetectionResult
from ratelab.services.target_tester import TargetTestOutcome

router = APIRouter(tags=["Testing"])


def _local_denial(outcome: TargetTestOutcome, container: ServiceContainer, label: str) -> HTTPException:
    admission = outcome.admission
    return HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail={
            "error": "Too Many Requests",
            "message": (
                f"{label} rate limit exceeded for {outcome.url}. "
                f"Try again in {admission.time_left_seconds} seconds."
            ),
            "timeLeft": admission.time_left_seconds,
            "url": outcome.url,
            "limit": admission.limit,
            "window_seconds": admission.window_seconds,
        },
        headers=rate_limit_headers(admission) if container.settings.limiter.include_headers else None,
    )


@router.post(
    "/test-url",
    response_model=UrlTestResponse,
    responses={429: {"description": "The URL's learned policy denied the request locally"}},
)
async def run_url_test(
    payload: UrlTestRequest,
    request: Request,
    container: Annotated[ServiceContainer, Depends(get_container)],
) -> UrlTestResponse:
    """Send one request to ``url`` and learn its rate limit from the response.

    A URL whose policy is exhausted is answered with 429 without contacting
    it. Unreachable targets are reported in ``error`` with status 200 since
    the tester itself worked.
    """
    client_ip = client_identifier(request)
    outcome = await container.tester.test_url(payload.url, payload.method, client_ip=client_ip)
    if not outcome.allowed:
        raise _local_denial(outcome, container, "URL")

    response = outcome.response
    if outcome.error is not None:
        message = f"Could not reach {payload.url}"
    elif outcome.detected is not None and outcome.detected.found:
        message = f"URL tested; rate limit detected from {outcome.detected.source} headers"
    else:
        message = "URL tested; no rate limit headers found, conservative limit applied"

    return UrlTestResponse(
        message=message,
        url=outcome.url,
        method=outcome.method,
        client_ip=client_ip,
        timestamp=datetime.now(timezone.utc),
        response_status=response.status if response else None,
        response_time_ms=round(response.elapsed_ms, 2) if response else None,
        detected=DetectionModel.from_result(outcome.detected or DetectionResult()),
        applied=LimitConfigModel.from_config(outcome.applied),
        current_usage=UsageModel(request_count=outcome.current_count, allowed=True),
        response_headers=outcome.rate_limit_headers,
        error=outcome.error,
    )


@router.post(
    "/test-custom",
    response_model=CustomTestResponse,
    responses={429: {"description": "Configured or detected limit exceeded"}},
)
async def run_custom_test(
    payload: CustomTestRequest,
    request: Request,
    container: Annotated[ServiceContainer, Depends(get_container)],
) -> CustomTestResponse:
    """Send one request to an endpoint under a configured limit.

    ``limit`` and ``window`` default to ``LIMITER_CUSTOM_DEFAULT_LIMIT`` and
    ``LIMITER_CUSTOM_DEFAULT_WINDOW_SECONDS``. When the endpoint itself
    answers 429 with a detectable policy, that policy replaces the configured
    one and the 429 is relayed.
    """
    limiter_cfg = container.settings.limiter
    client_ip = client_identifier(request)
    outcome = await container.tester.test_custom(
        payload.url,
        payload.method,
        limit=payload.limit or limiter_cfg.custom_default_limit,
        window_seconds=payload.window or limiter_cfg.custom_default_window_seconds,
        client_ip=client_ip,
    )
    if not outcome.allowed:
        raise _local_denial(outcome, container, "Custom")

    response = outcome.response
    detected = outcome.detected
    if response is not None and response.status == 429 and detected is not None and detected.found:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={
                "error": "Too Many Requests",
                "message": (
                    f"Endpoint enforces {detected.limit} requests per {detected.window} seconds "
                    f"({detected.source})."
                ),
                "timeLeft": detected.window,
                "url": outcome.url,
                "detected": DetectionModel.from_result(detected).model_dump(mode="json"),
            },
            headers={"Retry-After": str(detected.window)},
        )

    applied = outcome.applied
    if outcome.error is not None:
        message = f"Could not reach {payload.url}"
    else:
        message = "Custom endpoint tested"

    return CustomTestResponse(
        message=message,
        url=outcome.url,
        method=outcome.method,
        client_ip=client_ip,
        timestamp=datetime.now(timezone.utc),
        response_status=response.status if response else None,
        response_time_ms=round(response.elapsed_ms, 2) if response else None,
        configured=LimitConfigModel.from_config(outcome.configured),
        applied=LimitConfigModel.from_config(applied),
        detected=DetectionModel.from_result(detected) if detected is not None else None,
        remaining=max(0, applied.max_requests - outcome.current_count),
        current_usage=UsageModel(request_count=outcome.current_count, allowed=True),
        error=outcome.error,
    )
