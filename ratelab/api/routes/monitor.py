from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Annotated

from fastapi import APIRouter, Depends

from ratelab.adapters.rate_limit.base import EntryStatus, LimiterEntry, LimitSource
from ratelab.api.deps import get_container
from ratelab.core.container import ServiceContainer
from ratelab.schemas.limits import AnalyticsResponse, MonitorEntryModel, MonitorResponse
from ratelab.services.target_tester import TargetTester

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Monitor"])


def _with_clients(tester: TargetTester, kind: str, entries: list[LimiterEntry]) -> list[MonitorEntryModel]:
    data = []
    for entry in entries:
        mark = tester.last_client(kind, entry.identifier)
        data.append(MonitorEntryModel.from_entry(entry, client_ip=mark.client_ip if mark else None))
    return data


@router.get("/monitor", response_model=MonitorResponse)
def monitor_clients(container: Annotated[ServiceContainer, Depends(get_container)]) -> MonitorResponse:
    """Snapshot of the client-address limiter."""
    entries = container.ip_limiter.get_all_entries()
    return MonitorResponse(
        endpoint="ip",
        total_tracked=len(entries),
        data=[MonitorEntryModel.from_entry(e, client_ip=e.identifier) for e in entries],
    )


@router.get("/monitor-urls", response_model=MonitorResponse)
def monitor_urls(container: Annotated[ServiceContainer, Depends(get_container)]) -> MonitorResponse:
    """Snapshot of tested URLs with their applied policy and last caller."""
    entries = container.url_limiter.get_all_entries()
    return MonitorResponse(
        endpoint="url",
        total_tracked=len(entries),
        data=_with_clients(container.tester, "url", entries),
    )


@router.get("/monitor-custom", response_model=MonitorResponse)
def monitor_custom(container: Annotated[ServiceContainer, Depends(get_container)]) -> MonitorResponse:
    entries = container.custom_limiter.get_all_entries()
    return MonitorResponse(
        endpoint="custom",
        total_tracked=len(entries),
        data=_with_clients(container.tester, "custom", entries),
    )


@router.get("/analytics", response_model=AnalyticsResponse)
def analytics(container: Annotated[ServiceContainer, Depends(get_container)]) -> AnalyticsResponse:
    """Aggregate view across the URL and custom limiters.

    ``total_requests`` and ``breakdown`` are cumulative admitted requests;
    they are only reset by ``/clear-data``.
    """
    url_entries = container.url_limiter.get_all_entries()
    custom_entries = container.custom_limiter.get_all_entries()
    return AnalyticsResponse(
        total_urls=len(url_entries),
        total_custom_endpoints=len(custom_entries),
        blocked_urls=sum(1 for e in url_entries if e.status is EntryStatus.BLOCKED),
        blocked_custom=sum(1 for e in custom_entries if e.status is EntryStatus.BLOCKED),
        total_requests=container.counters.total,
        breakdown=container.counters.as_dict(),
        detected_limits=sum(
            1 for e in (*url_entries, *custom_entries) if e.limits.source is LimitSource.DETECTED
        ),
        timestamp=datetime.now(timezone.utc),
    )


@router.post("/clear-data")
async def clear_data(container: Annotated[ServiceContainer, Depends(get_container)]) -> dict:
    """Forget every tracked identifier, learned policy, counter and probe."""
    container.clear()
    logger.info("limiter.cleared")
    return {
        "message": "All rate limiting data cleared",
        "timestamp": datetime.now(timezone.utc),
    }
