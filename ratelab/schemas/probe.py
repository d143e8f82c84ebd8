"""Pydantic schemas for probe (flood test) requests and reports."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from ratelab.schemas.limits import DetectionModel, HttpMethod, TargetUrl
from ratelab.services.probe_service import ProbeReport


class ProbeRequest(BaseModel):
    url: TargetUrl = Field(..., description="Target to probe.")
    method: HttpMethod = "GET"
    mode: Literal["url", "custom"] = Field(
        "url",
        description="'url' learns limits from headers; 'custom' enforces the given limit.",
    )
    limit: int | None = Field(None, ge=1, description="Configured limit (custom mode).")
    window: int | None = Field(None, ge=1, description="Configured window in seconds (custom mode).")


class ProbeResponseModel(BaseModel):
    request_number: int
    status: int
    elapsed_ms: float
    timestamp: datetime
    headers: dict[str, str] = Field(default_factory=dict)


class ProbeErrorModel(BaseModel):
    request_number: int
    message: str


class ProbeReportModel(BaseModel):
    probe_id: str | None = None
    target: str
    method: str
    policy: str
    max_requests_cap: int
    state: str
    started_at: datetime
    ended_at: datetime | None = None
    total_requests: int
    successful_requests: int
    rate_limit_hit: bool
    rate_limit_at: int | None = None
    error_at: int | None = None
    error_status: int | None = None
    cancelled: bool
    requests_per_second: float | None = None
    detected_limits: DetectionModel | None = None
    responses: list[ProbeResponseModel] = Field(default_factory=list)
    errors: list[ProbeErrorModel] = Field(default_factory=list)

    @classmethod
    def from_report(cls, report: ProbeReport) -> "ProbeReportModel":
        return cls(
            probe_id=report.probe_id,
            target=report.target,
            method=report.method,
            policy=report.policy.name,
            max_requests_cap=report.policy.max_requests_cap,
            state=report.state.value,
            started_at=report.started_at,
            ended_at=report.ended_at,
            total_requests=report.total_requests,
            successful_requests=report.successful_requests,
            rate_limit_hit=report.rate_limit_hit,
            rate_limit_at=report.rate_limit_at,
            error_at=report.error_at,
            error_status=report.error_status,
            cancelled=report.cancelled,
            requests_per_second=report.requests_per_second,
            detected_limits=(
                DetectionModel.from_result(report.detected_limits) if report.detected_limits else None
            ),
            responses=[
                ProbeResponseModel(
                    request_number=r.request_number,
                    status=r.status,
                    elapsed_ms=r.elapsed_ms,
                    timestamp=r.timestamp,
                    headers=r.headers,
                )
                for r in list(report.responses)
            ],
            errors=[
                ProbeErrorModel(request_number=e.request_number, message=e.message)
                for e in list(report.errors)
            ],
        )


class ProbeStartedResponse(BaseModel):
    probe_id: str
    state: str
    target: str
    policy: str
    max_requests_cap: int
