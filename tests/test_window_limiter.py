"""Unit tests for the in-memory sliding-window limiter."""

import asyncio
import threading
from unittest.mock import Mock

import pytest

from ratelab.adapters.rate_limit.base import EntryStatus, LimitSource
from ratelab.adapters.rate_limit.in_memory import WindowLimiter
from ratelab.adapters.rate_limit.sweeper import LimiterSweeper


def test_allows_up_to_limit_then_blocks() -> None:
    clock = Mock(return_value=1000.0)
    limiter = WindowLimiter(max_requests=3, window_ms=60_000, clock=clock)

    for expected_count in (1, 2, 3):
        result = limiter.check_limit("k")
        assert result.allowed is True
        assert result.current_count == expected_count
        assert result.time_left_seconds == 0

    blocked = limiter.check_limit("k")
    assert blocked.allowed is False
    assert blocked.time_left_seconds == 60
    assert blocked.current_count == 3
    assert blocked.remaining == 0


def test_blocked_until_cooldown_boundary_then_resets_to_zero() -> None:
    clock = Mock(return_value=1000.0)
    limiter = WindowLimiter(max_requests=2, window_ms=10_000, clock=clock)

    limiter.check_limit("k")
    limiter.check_limit("k")
    assert limiter.check_limit("k").allowed is False

    clock.return_value = 1009.5
    still_blocked = limiter.check_limit("k")
    assert still_blocked.allowed is False
    assert still_blocked.time_left_seconds == 1

    clock.return_value = 1010.0
    result = limiter.check_limit("k")
    assert result.allowed is True
    assert result.current_count == 1


def test_denials_while_blocked_do_not_extend_cooldown() -> None:
    clock = Mock(return_value=1000.0)
    limiter = WindowLimiter(max_requests=1, window_ms=30_000, clock=clock)

    limiter.check_limit("k")
    assert limiter.check_limit("k").time_left_seconds == 30

    clock.return_value = 1020.0
    assert limiter.check_limit("k").time_left_seconds == 10

    clock.return_value = 1030.0
    assert limiter.check_limit("k").allowed is True


def test_old_requests_slide_out_of_window() -> None:
    clock = Mock(return_value=0.0)
    limiter = WindowLimiter(max_requests=2, window_ms=10_000, clock=clock)

    limiter.check_limit("k")
    clock.return_value = 5.0
    limiter.check_limit("k")

    clock.return_value = 10.0
    result = limiter.check_limit("k")
    assert result.allowed is True
    assert result.current_count == 2


def test_time_left_rounds_up() -> None:
    clock = Mock(return_value=1000.0)
    limiter = WindowLimiter(max_requests=1, window_ms=1_500, clock=clock)

    limiter.check_limit("k")
    result = limiter.check_limit("k")
    assert result.allowed is False
    assert result.time_left_seconds == 2


def test_isolated_by_identifier() -> None:
    clock = Mock(return_value=1000.0)
    limiter = WindowLimiter(max_requests=1, window_ms=60_000, clock=clock)

    assert limiter.check_limit("k1").allowed is True
    assert limiter.check_limit("k1").allowed is False
    assert limiter.check_limit("k2").allowed is True


def test_per_identifier_limits_override_defaults() -> None:
    clock = Mock(return_value=1000.0)
    limiter = WindowLimiter(max_requests=1, window_ms=60_000, clock=clock)

    assert limiter.get_existing_limits("k") is None
    assert limiter.get_limits("k").source is LimitSource.DEFAULT

    config = limiter.set_limits("k", 3, 5_000, LimitSource.DETECTED)
    assert config.max_requests == 3
    assert config.window_seconds == 5
    assert limiter.get_existing_limits("k") == config

    assert all(limiter.check_limit("k").allowed for _ in range(3))
    result = limiter.check_limit("k")
    assert result.allowed is False
    assert result.time_left_seconds == 5


@pytest.mark.parametrize(
    "kwargs",
    [
        {"max_requests": 0, "window_ms": 60_000},
        {"max_requests": 1, "window_ms": 0},
    ],
)
def test_invalid_constructor_args(kwargs: dict) -> None:
    with pytest.raises(ValueError):
        WindowLimiter(**kwargs)


def test_set_limits_rejects_invalid_values() -> None:
    limiter = WindowLimiter()

    with pytest.raises(ValueError):
        limiter.set_limits("k", 0, 1_000)
    with pytest.raises(ValueError):
        limiter.set_limits("k", 1, -5)
    assert limiter.get_existing_limits("k") is None


def test_snapshot_reports_blocked_with_time_left() -> None:
    clock = Mock(return_value=1000.0)
    limiter = WindowLimiter(max_requests=1, window_ms=60_000, clock=clock)

    limiter.check_limit("k")
    limiter.check_limit("k")
    clock.return_value = 1015.0

    (entry,) = limiter.get_all_entries()
    assert entry.identifier == "k"
    assert entry.status is EntryStatus.BLOCKED
    assert entry.time_left_seconds == 45
    assert entry.current_count == 1


def test_snapshot_never_reports_blocked_after_cooldown() -> None:
    clock = Mock(return_value=1000.0)
    limiter = WindowLimiter(max_requests=1, window_ms=60_000, clock=clock)

    limiter.check_limit("k")
    limiter.check_limit("k")
    clock.return_value = 1060.0

    (entry,) = limiter.get_all_entries()
    assert entry.status is EntryStatus.ACTIVE
    assert entry.time_left_seconds == 0
    assert entry.current_count == 0

    # The read-triggered unblock leaves the identifier usable immediately
    assert limiter.check_limit("k").allowed is True


def test_sweep_evicts_idle_identifiers_only() -> None:
    clock = Mock(return_value=1000.0)
    limiter = WindowLimiter(max_requests=1, window_ms=60_000, clock=clock)

    limiter.check_limit("idle")
    clock.return_value = 1050.0
    limiter.check_limit("blocked")
    limiter.check_limit("blocked")
    limiter.set_limits("idle", 5, 60_000)

    clock.return_value = 1070.0
    assert limiter.sweep() == 1
    assert len(limiter) == 1
    assert [e.identifier for e in limiter.get_all_entries()] == ["blocked"]
    assert limiter.get_existing_limits("idle") is None

    clock.return_value = 1111.0
    assert limiter.sweep() == 1
    assert len(limiter) == 0


def test_identifier_usable_after_sweep() -> None:
    clock = Mock(return_value=1000.0)
    limiter = WindowLimiter(max_requests=1, window_ms=1_000, clock=clock)

    limiter.check_limit("k")
    clock.return_value = 1002.0
    limiter.sweep()

    assert limiter.check_limit("k").allowed is True
    assert len(limiter) == 1


def test_clear_forgets_state_and_limits() -> None:
    limiter = WindowLimiter(max_requests=1)
    limiter.set_limits("k", 2, 1_000)
    limiter.check_limit("k")

    limiter.clear()

    assert len(limiter) == 0
    assert limiter.get_existing_limits("k") is None
    assert limiter.get_all_entries() == []


def test_concurrent_checks_admit_exactly_limit() -> None:
    limiter = WindowLimiter(max_requests=1, window_ms=60_000)
    barrier = threading.Barrier(16)
    results: list[bool] = []
    results_lock = threading.Lock()

    def worker() -> None:
        barrier.wait()
        allowed = limiter.check_limit("shared").allowed
        with results_lock:
            results.append(allowed)

    threads = [threading.Thread(target=worker) for _ in range(16)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert results.count(True) == 1
    assert results.count(False) == 15


def test_sweeper_sweeps_every_limiter() -> None:
    clock = Mock(return_value=1000.0)
    first = WindowLimiter(max_requests=1, window_ms=1_000, clock=clock)
    second = WindowLimiter(max_requests=1, window_ms=1_000, clock=clock)
    first.check_limit("a")
    second.check_limit("b")
    second.check_limit("c")

    clock.return_value = 1005.0
    sweeper = LimiterSweeper([first, second])

    assert sweeper.sweep_once() == 3
    assert len(first) == 0
    assert len(second) == 0


@pytest.mark.asyncio
async def test_sweeper_runs_periodically_until_stopped() -> None:
    clock = Mock(return_value=1000.0)
    limiter = WindowLimiter(max_requests=1, window_ms=1_000, clock=clock)
    limiter.check_limit("k")
    clock.return_value = 1005.0

    sweeper = LimiterSweeper([limiter], interval_seconds=0.01)
    sweeper.start()
    assert sweeper.running is True
    for _ in range(100):
        if len(limiter) == 0:
            break
        await asyncio.sleep(0.01)
    await sweeper.stop()

    assert len(limiter) == 0
    assert sweeper.running is False
