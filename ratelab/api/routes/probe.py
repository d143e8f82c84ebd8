from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request, Response, status

from ratelab.api.deps import get_container
from ratelab.core.container import ServiceContainer
from ratelab.core.rate_limit import client_identifier
from ratelab.schemas.probe import ProbeReportModel, ProbeRequest, ProbeStartedResponse
from ratelab.services.probe_service import ProbePolicy

router = APIRouter(tags=["Probe"])


@router.post(
    "/probes",
    response_model=ProbeReportModel | ProbeStartedResponse,
    responses={
        202: {"model": ProbeStartedResponse, "description": "Probe started in the background"},
        409: {"description": "A probe is already running for this target and mode"},
    },
)
async def start_probe(
    payload: ProbeRequest,
    request: Request,
    response: Response,
    container: Annotated[ServiceContainer, Depends(get_container)],
    wait: Annotated[bool, Query(description="Run to completion and return the final report")] = False,
) -> ProbeReportModel | ProbeStartedResponse:
    """Flood test a target until it rate limits, errors or reaches the cap.

    ``url`` mode goes through the URL tester and learns the target's policy;
    ``custom`` mode enforces ``limit``/``window`` locally, so the probe
    reports the configured boundary unless the endpoint stops it first.
    """
    limiter_cfg = container.settings.limiter
    probe_cfg = container.settings.probe

    limit = window = None
    if payload.mode == "custom":
        limit = payload.limit or limiter_cfg.custom_default_limit
        window = payload.window or limiter_cfg.custom_default_window_seconds
        policy = ProbePolicy.for_custom(probe_cfg, limit)
    else:
        policy = ProbePolicy.for_url(probe_cfg)

    send = container.tester.probe_sender(
        payload.mode,
        payload.url,
        payload.method,
        limit=limit,
        window_seconds=window,
        client_ip=client_identifier(request),
    )
    identifier = f"{payload.mode}:{payload.url}"

    if wait:
        report = await container.probes.run(
            identifier=identifier, target=payload.url, method=payload.method, policy=policy, send=send
        )
        return ProbeReportModel.from_report(report)

    run = container.probes.start(
        identifier=identifier, target=payload.url, method=payload.method, policy=policy, send=send
    )
    response.status_code = status.HTTP_202_ACCEPTED
    return ProbeStartedResponse(
        probe_id=run.probe_id,
        state=run.report.state.value,
        target=run.report.target,
        policy=policy.name,
        max_requests_cap=policy.max_requests_cap,
    )


@router.get("/probes/{probe_id}", response_model=ProbeReportModel)
async def get_probe(
    probe_id: str,
    container: Annotated[ServiceContainer, Depends(get_container)],
) -> ProbeReportModel:
    """Current report of a running or finished probe."""
    return ProbeReportModel.from_report(container.probes.get(probe_id).report)


@router.post("/probes/{probe_id}/cancel", response_model=ProbeReportModel)
async def cancel_probe(
    probe_id: str,
    container: Annotated[ServiceContainer, Depends(get_container)],
) -> ProbeReportModel:
    """Request cancellation; the request in flight is allowed to complete.

    The returned report may still be ``Running`` until the probe observes
    the signal.
    """
    return ProbeReportModel.from_report(container.probes.cancel(probe_id).report)
