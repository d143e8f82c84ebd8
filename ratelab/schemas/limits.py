"""Pydantic schemas for limiter, tester and monitoring responses."""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Literal

from pydantic import AfterValidator, BaseModel, Field

from ratelab.adapters.rate_limit.base import LimitConfig, LimiterEntry
from ratelab.services.limit_detector import DetectionResult

HttpMethod = Literal["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]


def validate_target_url(value: str) -> str:
    value = value.strip()
    if not value.lower().startswith(("http://", "https://")):
        raise ValueError("url must be an absolute http(s) URL")
    return value


TargetUrl = Annotated[str, AfterValidator(validate_target_url)]


class LimitConfigModel(BaseModel):
    max_requests: int
    window_seconds: int
    source: str

    @classmethod
    def from_config(cls, config: LimitConfig) -> "LimitConfigModel":
        return cls(
            max_requests=config.max_requests,
            window_seconds=config.window_seconds,
            source=config.source.value,
        )


class DetectionModel(BaseModel):
    """Rate-limit policy inferred from upstream headers."""

    limit: int | None = None
    remaining: int | None = None
    window: int | None = Field(None, description="Window length in seconds.")
    reset_time: datetime | None = None
    source: str = "unknown"

    @classmethod
    def from_result(cls, result: DetectionResult) -> "DetectionModel":
        return cls(
            limit=result.limit,
            remaining=result.remaining,
            window=result.window,
            reset_time=result.reset_time,
            source=result.source,
        )


class UrlTestRequest(BaseModel):
    url: TargetUrl = Field(..., description="URL to test (e.g. https://api.github.com).")
    method: HttpMethod = Field("GET", description="HTTP method used against the URL.")


class CustomTestRequest(BaseModel):
    url: TargetUrl = Field(..., description="API endpoint to test.")
    method: HttpMethod = "GET"
    limit: int | None = Field(None, ge=1, description="Max requests per window.")
    window: int | None = Field(None, ge=1, description="Window length in seconds.")


class UsageModel(BaseModel):
    request_count: int
    allowed: bool


class UrlTestResponse(BaseModel):
    message: str
    url: str
    method: str
    client_ip: str
    timestamp: datetime
    response_status: int | None = None
    response_time_ms: float | None = None
    detected: DetectionModel
    applied: LimitConfigModel
    current_usage: UsageModel
    response_headers: dict[str, str] = Field(default_factory=dict)
    error: str | None = None


class CustomTestResponse(BaseModel):
    message: str
    url: str
    method: str
    client_ip: str
    timestamp: datetime
    response_status: int | None = None
    response_time_ms: float | None = None
    configured: LimitConfigModel
    applied: LimitConfigModel
    detected: DetectionModel | None = None
    remaining: int
    current_usage: UsageModel
    error: str | None = None


class MonitorEntryModel(BaseModel):
    identifier: str
    request_count: int
    status: Literal["Active", "Blocked"]
    time_left: int
    last_request: datetime | None = None
    limits: LimitConfigModel
    client_ip: str | None = None

    @classmethod
    def from_entry(cls, entry: LimiterEntry, *, client_ip: str | None = None) -> "MonitorEntryModel":
        return cls(
            identifier=entry.identifier,
            request_count=entry.current_count,
            status=entry.status.value,
            time_left=entry.time_left_seconds,
            last_request=entry.last_request_at,
            limits=LimitConfigModel.from_config(entry.limits),
            client_ip=client_ip,
        )


class MonitorResponse(BaseModel):
    endpoint: str
    total_tracked: int
    data: list[MonitorEntryModel]


class AnalyticsResponse(BaseModel):
    total_urls: int
    total_custom_endpoints: int
    blocked_urls: int
    blocked_custom: int
    total_requests: int
    breakdown: dict[str, int]
    detected_limits: int
    timestamp: datetime
