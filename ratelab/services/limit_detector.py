"""Infer a remote service's rate-limit policy from its response headers.

Vendors disagree on header names and on what a reset value means, so the
detector walks a fixed table of conventions and stops at the first one whose
limit header parses to a positive integer. A present but unusable limit
header (``"unlimited"``, ``"-1"``, ``"0"``) hands over to the next convention.
When a response carries usable headers from two conventions only the earlier
table entry is honoured.

``detect`` never fails: an all-empty result with ``source="unknown"`` means
nothing was detected, and callers must fall back to a conservative policy.
"""

from __future__ import annotations

import math
import re
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Iterable, Mapping

# Reset values above this are epoch seconds, below one day they are offsets
EPOCH_FLOOR_SECONDS = 1_000_000_000
# Above this an absolute reset is in epoch milliseconds
EPOCH_CEILING_SECONDS = 100_000_000_000
MAX_RELATIVE_RESET_SECONDS = 86_400

DEFAULT_WINDOW_SECONDS = 3600
RETRY_AFTER_FALLBACK_LIMIT = 10


@dataclass(frozen=True)
class HeaderConvention:
    source: str
    limit: str
    remaining: str | None = None
    reset: str | None = None
    composite: bool = False


HEADER_CONVENTIONS: tuple[HeaderConvention, ...] = (
    # GitHub, GitLab
    HeaderConvention("x-ratelimit", "x-ratelimit-limit", "x-ratelimit-remaining", "x-ratelimit-reset"),
    # Twitter
    HeaderConvention("x-rate-limit", "x-rate-limit-limit", "x-rate-limit-remaining", "x-rate-limit-reset"),
    # IETF RateLimit header fields draft
    HeaderConvention("ratelimit", "ratelimit-limit", "ratelimit-remaining", "ratelimit-reset"),
    HeaderConvention("cloudflare", "cf-ratelimit-limit", "cf-ratelimit-remaining", "cf-ratelimit-reset"),
    # AWS API Gateway
    HeaderConvention("aws", "x-amzn-ratelimit-limit", "x-amzn-ratelimit-remaining", "x-amzn-ratelimit-reset"),
    # "current/max" in a single header
    HeaderConvention("shopify", "x-shopify-shop-api-call-limit", composite=True),
    HeaderConvention("stripe", "stripe-ratelimit-limit", "stripe-ratelimit-remaining", "stripe-ratelimit-reset"),
)

CUSTOM_QUOTA_HEADERS: tuple[str, ...] = (
    "x-rps-limit",
    "x-requests-per-second",
    "x-quota-limit",
    "api-rate-limit",
    "rate-limit",
    "x-api-rate-limit",
)

# Header values longer than this are not counts or timestamps
MAX_INT_DIGITS = 18

_LEADING_INT = re.compile(r"\s*\+?(\d+)")


@dataclass(frozen=True)
class DetectionResult:
    """Best-effort view of a remote rate-limit policy.

    Attributes:
        limit: Requests allowed per window.
        remaining: Requests left in the current window.
        window: Window length in seconds.
        reset_time: When the remote window resets.
        source: Convention the values came from, or ``"unknown"``.
    """

    limit: int | None = None
    remaining: int | None = None
    window: int | None = None
    reset_time: datetime | None = None
    source: str = "unknown"

    @property
    def found(self) -> bool:
        return self.limit is not None


def _parse_int(value: str | None) -> int | None:
    """Parse a leading non-negative integer, ignoring trailing parameters (``"40;w=60"``).

    Signed and absurdly long values yield ``None``.
    """
    if value is None:
        return None
    match = _LEADING_INT.match(value)
    if match is None or len(match.group(1)) > MAX_INT_DIGITS:
        return None
    return int(match.group(1))


def _normalize_headers(headers: Mapping[str, str] | Iterable[tuple[str, str]]) -> dict[str, str]:
    items = headers.items() if isinstance(headers, Mapping) else headers
    normalized: dict[str, str] = {}
    for key, value in items:
        normalized.setdefault(key.lower(), value)
    return normalized


def _window_from_reset(raw: str | None, now: float) -> tuple[int | None, datetime | None]:
    reset = _parse_int(raw)
    if reset is None:
        return None, None

    if reset > EPOCH_CEILING_SECONDS:
        reset = math.ceil(reset / 1000)

    now_s = math.floor(now)
    try:
        if reset > EPOCH_FLOOR_SECONDS and reset > now_s:
            return reset - now_s, datetime.fromtimestamp(reset, tz=timezone.utc)
        if 0 <= reset < MAX_RELATIVE_RESET_SECONDS:
            return reset, datetime.fromtimestamp(now + reset, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        # Beyond the platform's datetime range
        return None, None
    # An epoch timestamp already in the past says nothing about the window
    return None, None


def _retry_after_seconds(raw: str | None, now: float) -> int | None:
    if raw is None:
        return None
    stripped = raw.strip()
    if stripped.lstrip("+-").isdigit():
        # Negative delays are invalid, not "retry immediately"
        return _parse_int(stripped)
    try:
        when = parsedate_to_datetime(raw)
    except (TypeError, ValueError, IndexError, OverflowError):
        return _parse_int(raw)
    if when is None:
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0, math.ceil(when.timestamp() - now))


def _match_convention(headers: dict[str, str], now: float) -> DetectionResult | None:
    for convention in HEADER_CONVENTIONS:
        raw_limit = headers.get(convention.limit)
        if not raw_limit:
            continue

        if convention.composite and "/" in raw_limit:
            current_raw, _, max_raw = raw_limit.partition("/")
            limit = _parse_int(max_raw)
            current = _parse_int(current_raw)
            remaining = limit - current if limit is not None and current is not None else None
        else:
            limit = _parse_int(raw_limit)
            remaining = _parse_int(headers.get(convention.remaining)) if convention.remaining else None

        if not limit:
            continue

        window, reset_time = (None, None)
        if convention.reset:
            window, reset_time = _window_from_reset(headers.get(convention.reset), now)
        if not window:
            window = DEFAULT_WINDOW_SECONDS

        return DetectionResult(
            limit=limit,
            remaining=remaining,
            window=window,
            reset_time=reset_time,
            source=convention.source,
        )
    return None


def detect(
    headers: Mapping[str, str] | Iterable[tuple[str, str]],
    status_code: int,
    *,
    now: float | None = None,
) -> DetectionResult:
    """Infer the remote rate-limit policy from one HTTP response.

    Args:
        headers: Response headers; names are matched case-insensitively and
            the first value of a repeated header wins.
        status_code: HTTP status of the response.
        now: UNIX time in seconds used to interpret reset values
            (defaults to the current time).

    Returns:
        DetectionResult, all-None with ``source="unknown"`` when nothing matched.
    """
    now = time.time() if now is None else now
    normalized = _normalize_headers(headers)

    result = _match_convention(normalized, now)
    if result is not None:
        return result

    if status_code == 429:
        window = _retry_after_seconds(normalized.get("retry-after"), now)
        if window:
            # A guess, not a detection: the source tag marks it as low confidence
            return DetectionResult(
                limit=RETRY_AFTER_FALLBACK_LIMIT,
                window=window,
                source="retry-after-429",
            )

    for name in CUSTOM_QUOTA_HEADERS:
        limit = _parse_int(normalized.get(name))
        if limit:
            return DetectionResult(
                limit=limit,
                window=DEFAULT_WINDOW_SECONDS,
                source=f"custom-{name}",
            )

    return DetectionResult()


def filter_rate_limit_headers(headers: Mapping[str, str] | Iterable[tuple[str, str]]) -> dict[str, str]:
    """Keep only headers that describe rate limiting, names lower-cased."""
    return {
        name: value
        for name, value in _normalize_headers(headers).items()
        if "ratelimit" in name or "rate-limit" in name or "retry-after" in name
    }
