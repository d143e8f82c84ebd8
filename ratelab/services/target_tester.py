"""Single-request tests against external targets.

Each test runs the admission cycle: ask the local limiter, call the target
when admitted, detect the target's own policy from the response and align
the local policy for that URL with it.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone

from ratelab.adapters.http.base import AbstractTargetClient, TargetResponse
from ratelab.adapters.rate_limit.base import AbstractWindowLimiter, AdmitResult, LimitConfig, LimitSource
from ratelab.core.config import LimiterSettings
from ratelab.core.errors import TargetTransportError
from ratelab.services.limit_detector import DetectionResult, detect, filter_rate_limit_headers
from ratelab.services.probe_service import Sender

logger = logging.getLogger(__name__)


@dataclass
class UsageCounters:
    """Cumulative admitted-request counters; they never reset with windows."""

    ip: int = 0
    url: int = 0
    custom: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def increment(self, kind: str) -> None:
        with self._lock:
            setattr(self, kind, getattr(self, kind) + 1)

    def reset(self) -> None:
        with self._lock:
            self.ip = self.url = self.custom = 0

    @property
    def total(self) -> int:
        return self.ip + self.url + self.custom

    def as_dict(self) -> dict[str, int]:
        return {"ip": self.ip, "url": self.url, "custom": self.custom}


@dataclass(frozen=True)
class ClientMark:
    client_ip: str
    last_at: datetime


@dataclass
class TargetTestOutcome:
    """Result of one tester call.

    ``response`` is None when the request was denied locally or the target
    could not be reached (``error`` is set in the latter case).
    """

    url: str
    method: str
    admission: AdmitResult
    response: TargetResponse | None = None
    detected: DetectionResult | None = None
    applied: LimitConfig | None = None
    configured: LimitConfig | None = None
    current_count: int = 0
    error: str | None = None

    @property
    def allowed(self) -> bool:
        return self.admission.allowed

    @property
    def rate_limit_headers(self) -> dict[str, str]:
        if self.response is None:
            return {}
        return filter_rate_limit_headers(self.response.headers)


def denial_response(admission: AdmitResult) -> TargetResponse:
    """Express a local denial as the 429 a remote limiter would send."""
    return TargetResponse(
        status=429,
        headers={
            "retry-after": str(admission.time_left_seconds),
            "x-ratelimit-limit": str(admission.limit),
            "x-ratelimit-remaining": str(admission.remaining),
            "x-ratelimit-reset": str(admission.time_left_seconds),
        },
    )


class TargetTester:
    """Runs URL and custom-endpoint tests through their own limiters."""

    def __init__(
        self,
        *,
        url_limiter: AbstractWindowLimiter,
        custom_limiter: AbstractWindowLimiter,
        client: AbstractTargetClient,
        limiter_settings: LimiterSettings,
        counters: UsageCounters | None = None,
    ) -> None:
        self.url_limiter = url_limiter
        self.custom_limiter = custom_limiter
        self.client = client
        self.counters = counters or UsageCounters()
        self._settings = limiter_settings
        self._clients_lock = threading.Lock()
        self._last_client: dict[str, dict[str, ClientMark]] = {"url": {}, "custom": {}}

    def _remember_client(self, kind: str, url: str, client_ip: str | None) -> None:
        if not client_ip:
            return
        with self._clients_lock:
            self._last_client[kind][url] = ClientMark(client_ip, datetime.now(timezone.utc))

    def last_client(self, kind: str, url: str) -> ClientMark | None:
        with self._clients_lock:
            return self._last_client[kind].get(url)

    def clear(self) -> None:
        with self._clients_lock:
            for marks in self._last_client.values():
                marks.clear()
        self.counters.reset()

    def _count_in_window(self, limiter: AbstractWindowLimiter, url: str) -> int:
        for entry in limiter.get_all_entries():
            if entry.identifier == url:
                return entry.current_count
        return 0

    async def test_url(self, url: str, method: str = "GET", *, client_ip: str | None = None) -> TargetTestOutcome:
        """Test ``url`` and learn its rate-limit policy from the response.

        The URL limiter is consulted first, so even the first request
        registers the URL; a denial short-circuits without contacting the
        target.
        """
        method = method.upper()
        existing = self.url_limiter.get_existing_limits(url)
        admission = self.url_limiter.check_limit(url)
        if not admission.allowed:
            logger.warning(
                "tester.url_denied",
                extra={"url": url, "time_left_s": admission.time_left_seconds, "limit": admission.limit},
            )
            return TargetTestOutcome(
                url=url,
                method=method,
                admission=admission,
                applied=existing,
                current_count=admission.current_count,
            )

        self.counters.increment("url")
        self._remember_client("url", url, client_ip)

        try:
            response = await self.client.send(method, url)
        except TargetTransportError as exc:
            return TargetTestOutcome(
                url=url,
                method=method,
                admission=admission,
                detected=DetectionResult(source="failed_request"),
                applied=self._apply_fallback(url, existing),
                current_count=self._count_in_window(self.url_limiter, url),
                error=exc.message,
            )

        detected = detect(response.headers, response.status)
        if detected.limit and detected.window:
            applied = self.url_limiter.set_limits(url, detected.limit, detected.window * 1000, LimitSource.DETECTED)
        else:
            applied = self._apply_fallback(url, existing)

        logger.info(
            "tester.url_tested",
            extra={
                "url": url,
                "method": method,
                "status": response.status,
                "detected_source": detected.source,
                "applied_limit": applied.max_requests,
                "applied_window_s": applied.window_seconds,
            },
        )
        return TargetTestOutcome(
            url=url,
            method=method,
            admission=admission,
            response=response,
            detected=detected,
            applied=applied,
            current_count=self._count_in_window(self.url_limiter, url),
        )

    def _apply_fallback(self, url: str, existing: LimitConfig | None) -> LimitConfig:
        # Never leave an undetected URL unconstrained, but keep a policy learned earlier
        if existing is not None and existing.source is LimitSource.DETECTED:
            return existing
        return self.url_limiter.set_limits(
            url,
            self._settings.url_fallback_max_requests,
            self._settings.url_fallback_window_seconds * 1000,
            LimitSource.DEFAULT,
        )

    async def test_custom(
        self,
        url: str,
        method: str = "GET",
        *,
        limit: int,
        window_seconds: int,
        client_ip: str | None = None,
    ) -> TargetTestOutcome:
        """Test an endpoint under a caller-configured limit.

        When the endpoint itself answers 429 with a detectable policy, that
        policy replaces the configured one.
        """
        method = method.upper()
        configured = self.custom_limiter.set_limits(url, limit, window_seconds * 1000, LimitSource.CUSTOM)
        admission = self.custom_limiter.check_limit(url)
        if not admission.allowed:
            logger.warning(
                "tester.custom_denied",
                extra={"url": url, "time_left_s": admission.time_left_seconds, "limit": limit},
            )
            return TargetTestOutcome(
                url=url,
                method=method,
                admission=admission,
                applied=configured,
                configured=configured,
                current_count=admission.current_count,
            )

        self.counters.increment("custom")
        self._remember_client("custom", url, client_ip)

        try:
            response = await self.client.send(method, url)
        except TargetTransportError as exc:
            return TargetTestOutcome(
                url=url,
                method=method,
                admission=admission,
                applied=configured,
                configured=configured,
                current_count=admission.current_count,
                error=exc.message,
            )

        applied = configured
        detected = None
        if response.status == 429:
            detected = detect(response.headers, response.status)
            if detected.limit and detected.window:
                applied = self.custom_limiter.set_limits(
                    url, detected.limit, detected.window * 1000, LimitSource.DETECTED
                )
                logger.info(
                    "tester.custom_limit_detected",
                    extra={"url": url, "limit": detected.limit, "window_s": detected.window, "source": detected.source},
                )

        return TargetTestOutcome(
            url=url,
            method=method,
            admission=admission,
            response=response,
            detected=detected,
            applied=applied,
            configured=configured,
            current_count=self._count_in_window(self.custom_limiter, url),
        )

    def probe_sender(
        self,
        kind: str,
        url: str,
        method: str,
        *,
        limit: int | None = None,
        window_seconds: int | None = None,
        client_ip: str | None = None,
    ) -> Sender:
        """Adapt tester calls into the ``send`` callable of a probe.

        Local denials become a synthetic 429 so the probe treats the local
        limiter exactly like a remote one.
        """

        async def send() -> TargetResponse:
            if kind == "custom":
                outcome = await self.test_custom(
                    url,
                    method,
                    limit=limit or self._settings.custom_default_limit,
                    window_seconds=window_seconds or self._settings.custom_default_window_seconds,
                    client_ip=client_ip,
                )
            else:
                outcome = await self.test_url(url, method, client_ip=client_ip)

            if outcome.error is not None:
                raise TargetTransportError(
                    code="target_unreachable",
                    message=outcome.error,
                    details={"url": url, "method": outcome.method},
                )
            if outcome.response is not None:
                return outcome.response
            return denial_response(outcome.admission)

        return send

