"""Flood-test probing: discover an unknown limit by sending requests until a
boundary is reached.

A probe is strictly sequential, with one outstanding request at a time, so
that the request which tripped the remote limit is unambiguous. It stops on
the first 429 (rate limited) or other 4xx/5xx (error), on cancellation, or
when the policy's safety cap is reached. Transport failures are recorded and
probing continues.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import time
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable

from ratelab.adapters.http.base import TargetResponse
from ratelab.core.config import ProbeSettings
from ratelab.core.errors import NotFoundAppError, ProbeConflictError, TargetTransportError
from ratelab.services.limit_detector import DetectionResult, detect, filter_rate_limit_headers

logger = logging.getLogger(__name__)

Sender = Callable[[], Awaitable[TargetResponse]]


class CancelToken:
    """Cooperative cancellation signal shared by a probe and its caller."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    async def sleep(self, seconds: float) -> bool:
        """Wait up to ``seconds``; wake early on cancellation.

        Returns:
            True if cancellation was signalled before or during the wait.
        """
        if self._event.is_set() or seconds <= 0:
            return self._event.is_set()
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True


class ProbeState(str, enum.Enum):
    RUNNING = "Running"
    COMPLETED = "Completed"
    RATE_LIMITED = "RateLimited"
    ERROR_STOPPED = "ErrorStopped"
    CANCELLED = "Cancelled"


@dataclass(frozen=True)
class ProbePolicy:
    """How a probe run is bounded.

    Attributes:
        name: ``url`` for auto-detecting probes, ``custom`` for probes
            against an endpoint with a configured limit.
        max_requests_cap: Safety ceiling on requests in one run.
        delay_seconds: Pause between consecutive requests.
    """

    name: str
    max_requests_cap: int
    delay_seconds: float

    @classmethod
    def for_url(cls, probe_settings: ProbeSettings) -> "ProbePolicy":
        return cls(
            name="url",
            max_requests_cap=probe_settings.max_requests,
            delay_seconds=probe_settings.delay_ms / 1000,
        )

    @classmethod
    def for_custom(cls, probe_settings: ProbeSettings, configured_limit: int) -> "ProbePolicy":
        return cls(
            name="custom",
            max_requests_cap=min(
                probe_settings.max_requests,
                configured_limit + probe_settings.custom_margin,
            ),
            delay_seconds=probe_settings.delay_ms / 1000,
        )


@dataclass
class ProbeResponseLog:
    request_number: int
    status: int
    elapsed_ms: float
    timestamp: datetime
    headers: dict[str, str] = field(default_factory=dict)


@dataclass
class ProbeErrorLog:
    request_number: int
    message: str


@dataclass
class ProbeReport:
    """Accounting for one probe run, owned by that run only."""

    target: str
    method: str
    policy: ProbePolicy
    started_at: datetime
    probe_id: str | None = None
    ended_at: datetime | None = None
    state: ProbeState = ProbeState.RUNNING
    total_requests: int = 0
    successful_requests: int = 0
    rate_limit_hit: bool = False
    rate_limit_at: int | None = None
    error_at: int | None = None
    error_status: int | None = None
    cancelled: bool = False
    detected_limits: DetectionResult | None = None
    responses: list[ProbeResponseLog] = field(default_factory=list)
    errors: list[ProbeErrorLog] = field(default_factory=list)

    @property
    def finished(self) -> bool:
        return self.state is not ProbeState.RUNNING

    @property
    def requests_per_second(self) -> float | None:
        if self.ended_at is None:
            return None
        duration = (self.ended_at - self.started_at).total_seconds()
        if duration <= 0:
            return None
        return round(self.total_requests / duration, 2)


def _terminal_state(report: ProbeReport) -> ProbeState:
    if report.cancelled:
        return ProbeState.CANCELLED
    if report.rate_limit_hit:
        return ProbeState.RATE_LIMITED
    if report.error_at is not None:
        return ProbeState.ERROR_STOPPED
    return ProbeState.COMPLETED


class ProbeOrchestrator:
    """Runs the sequential request loop of a probe."""

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc)

    def new_report(self, target: str, method: str, policy: ProbePolicy) -> ProbeReport:
        return ProbeReport(
            target=target,
            method=method.upper(),
            policy=policy,
            started_at=self._now(),
        )

    async def run_probe(
        self,
        target: str,
        method: str,
        policy: ProbePolicy,
        cancel_token: CancelToken,
        send: Sender,
        *,
        report: ProbeReport | None = None,
    ) -> ProbeReport:
        """Probe ``target`` until a limit, an error, cancellation or the cap.

        Args:
            target: URL (or endpoint) being probed; used for reporting.
            method: HTTP method used by ``send``.
            policy: Safety cap and inter-request delay.
            cancel_token: Checked before every request and during the delay.
                A request already in flight is allowed to complete.
            send: Performs one request; raises TargetTransportError when no
                response was received.
            report: Pre-created report to fill in (lets callers observe a
                running probe); a new one is created when omitted.

        Returns:
            The finalized ProbeReport.
        """
        if report is None:
            report = self.new_report(target, method, policy)

        logger.info(
            "probe.start",
            extra={
                "probe_id": report.probe_id,
                "target": target,
                "method": report.method,
                "policy": policy.name,
                "cap": policy.max_requests_cap,
            },
        )

        count = 0
        while count < policy.max_requests_cap:
            if cancel_token.cancelled:
                report.cancelled = True
                break

            count += 1
            report.total_requests = count
            started = time.perf_counter()
            try:
                response = await send()
            except TargetTransportError as exc:
                report.errors.append(ProbeErrorLog(request_number=count, message=exc.message))
                logger.warning(
                    "probe.transport_error",
                    extra={"probe_id": report.probe_id, "request_number": count, "error_msg": exc.message},
                )
            else:
                elapsed_ms = (time.perf_counter() - started) * 1000
                report.responses.append(
                    ProbeResponseLog(
                        request_number=count,
                        status=response.status,
                        elapsed_ms=round(elapsed_ms, 2),
                        timestamp=self._now(),
                        headers=filter_rate_limit_headers(response.headers),
                    )
                )

                if response.status == 429:
                    report.rate_limit_hit = True
                    report.rate_limit_at = count
                    report.detected_limits = detect(response.headers, response.status, now=self._clock())
                    break
                if response.status >= 400:
                    report.error_at = count
                    report.error_status = response.status
                    break
                if response.status >= 200:
                    report.successful_requests += 1
                    if report.successful_requests == 1 and report.detected_limits is None:
                        report.detected_limits = detect(response.headers, response.status, now=self._clock())

            if count >= policy.max_requests_cap:
                break
            if await cancel_token.sleep(policy.delay_seconds):
                report.cancelled = True
                break

        report.ended_at = self._now()
        report.state = _terminal_state(report)

        logger.info(
            "probe.finished",
            extra={
                "probe_id": report.probe_id,
                "target": target,
                "state": report.state.value,
                "total_requests": report.total_requests,
                "successful_requests": report.successful_requests,
                "rate_limit_at": report.rate_limit_at,
                "error_status": report.error_status,
                "transport_errors": len(report.errors),
            },
        )
        return report


@dataclass
class ProbeRun:
    probe_id: str
    identifier: str
    report: ProbeReport
    token: CancelToken
    task: asyncio.Task | None = None


class ProbeRegistry:
    """Tracks probe runs so callers can poll and cancel them.

    Only one active probe is allowed per identifier; finished runs are kept
    for polling up to ``max_finished`` entries, oldest evicted first.
    """

    def __init__(self, orchestrator: ProbeOrchestrator, *, max_finished: int = 100) -> None:
        self._orchestrator = orchestrator
        self._max_finished = max_finished
        self._runs: OrderedDict[str, ProbeRun] = OrderedDict()

    def _active_for(self, identifier: str) -> ProbeRun | None:
        for run in self._runs.values():
            if run.identifier == identifier and not run.report.finished:
                return run
        return None

    def _register(self, identifier: str, target: str, method: str, policy: ProbePolicy) -> ProbeRun:
        active = self._active_for(identifier)
        if active is not None:
            raise ProbeConflictError(
                code="probe_already_running",
                message=f"A probe is already running for {target}",
                details={"probe_id": active.probe_id, "identifier": identifier},
            )

        probe_id = uuid.uuid4().hex
        report = self._orchestrator.new_report(target, method, policy)
        report.probe_id = probe_id
        run = ProbeRun(probe_id=probe_id, identifier=identifier, report=report, token=CancelToken())
        self._runs[probe_id] = run
        self._evict_finished()
        return run

    def _evict_finished(self) -> None:
        finished = [pid for pid, run in self._runs.items() if run.report.finished]
        for probe_id in finished[: max(0, len(finished) - self._max_finished)]:
            del self._runs[probe_id]

    async def _execute(self, run: ProbeRun, send: Sender) -> ProbeReport:
        report = run.report
        try:
            return await self._orchestrator.run_probe(
                report.target, report.method, report.policy, run.token, send, report=report
            )
        except asyncio.CancelledError:
            report.cancelled = True
            report.ended_at = datetime.now(timezone.utc)
            report.state = ProbeState.CANCELLED
            raise
        except Exception as exc:
            logger.exception("probe.crashed", extra={"probe_id": run.probe_id})
            report.errors.append(ProbeErrorLog(request_number=report.total_requests, message=str(exc)))
            report.ended_at = datetime.now(timezone.utc)
            report.state = ProbeState.ERROR_STOPPED
            return report

    def start(self, *, identifier: str, target: str, method: str, policy: ProbePolicy, send: Sender) -> ProbeRun:
        """Start a probe in the background (requires a running event loop)."""
        run = self._register(identifier, target, method, policy)
        run.task = asyncio.create_task(self._execute(run, send))
        return run

    async def run(self, *, identifier: str, target: str, method: str, policy: ProbePolicy, send: Sender) -> ProbeReport:
        """Run a probe to completion in the caller's task; still cancellable by id."""
        run = self._register(identifier, target, method, policy)
        return await self._execute(run, send)

    def get(self, probe_id: str) -> ProbeRun:
        run = self._runs.get(probe_id)
        if run is None:
            raise NotFoundAppError(
                code="probe_not_found",
                message=f"Unknown probe id: {probe_id}",
                details={"probe_id": probe_id},
            )
        return run

    def cancel(self, probe_id: str) -> ProbeRun:
        run = self.get(probe_id)
        if not run.report.finished:
            run.token.cancel()
            logger.info("probe.cancel_requested", extra={"probe_id": probe_id})
        return run

    def clear(self) -> None:
        """Cancel active probes and forget finished ones.

        Active runs stay registered until they observe the cancellation.
        """
        for run in self._runs.values():
            run.token.cancel()
        for probe_id in [pid for pid, run in self._runs.items() if run.report.finished]:
            del self._runs[probe_id]

    async def shutdown(self) -> None:
        tasks = [run.task for run in self._runs.values() if run.task is not None and not run.task.done()]
        for run in self._runs.values():
            run.token.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
