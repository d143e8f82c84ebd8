"""Tests for sensitive data filtering and JSON log formatting."""

from __future__ import annotations

import json
import logging
from io import StringIO

from ratelab.core.logging import (
    JsonFormatter,
    RequestIdFilter,
    SensitiveDataFilter,
    clear_request_id,
    redact,
    set_request_id,
)


def _capture(name: str) -> tuple[logging.Logger, StringIO]:
    logger = logging.getLogger(name)
    logger.setLevel(logging.INFO)
    logger.handlers.clear()
    logger.propagate = False

    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.addFilter(RequestIdFilter())
    handler.addFilter(SensitiveDataFilter())
    handler.setFormatter(JsonFormatter())
    logger.addHandler(handler)
    return logger, stream


def test_sensitive_filter_redacts_credentials():
    """Ensure SensitiveDataFilter redacts credential fields."""
    logger, stream = _capture("test_redaction")

    logger.info(
        "test_event",
        extra={
            "api_key": "sk-secret-123",
            "authorization": "Bearer another-secret",
            "safe_field": "visible",
        },
    )

    output = stream.getvalue()

    assert "sk-secret-123" not in output
    assert "another-secret" not in output
    assert "[REDACTED]" in output
    assert "visible" in output


def test_upstream_headers_are_redacted_when_logged():
    """Echoed upstream headers keep rate-limit values but drop cookies."""
    logger, stream = _capture("test_header_redaction")

    logger.info(
        "probe.response",
        extra={
            "headers": {
                "Set-Cookie": "session=abc123",
                "x-ratelimit-limit": "60",
            },
        },
    )

    payload = json.loads(stream.getvalue())

    assert payload["headers"]["Set-Cookie"] == "[REDACTED]"
    assert payload["headers"]["x-ratelimit-limit"] == "60"
    assert "abc123" not in stream.getvalue()


def test_sensitive_filter_allows_safe_fields():
    """Verify safe fields pass through unmodified."""
    logger, stream = _capture("test_safe_fields")

    logger.info(
        "safe_event",
        extra={
            "identifier": "10.0.0.1",
            "route": "/test-url",
            "status": 200,
            "duration_ms": 150.5,
        },
    )

    payload = json.loads(stream.getvalue())

    assert payload["message"] == "safe_event"
    assert payload["level"] == "info"
    assert payload["identifier"] == "10.0.0.1"
    assert payload["status"] == 200
    assert "[REDACTED]" not in stream.getvalue()


def test_request_id_is_attached_from_context():
    logger, stream = _capture("test_request_id")

    set_request_id("req-123")
    try:
        logger.info("with_id")
    finally:
        clear_request_id()
    logger.info("without_id")

    first, second = (json.loads(line) for line in stream.getvalue().splitlines())
    assert first["request_id"] == "req-123"
    assert "request_id" not in second


def test_exception_info_is_formatted():
    logger, stream = _capture("test_exc_info")

    try:
        raise RuntimeError("boom")
    except RuntimeError:
        logger.exception("probe.crashed")

    payload = json.loads(stream.getvalue())
    assert payload["level"] == "error"
    assert "RuntimeError: boom" in payload["exc_info"]


def test_redact_handles_nested_lists():
    value = {"items": [{"token": "t-1", "name": "a"}], "password": "p"}

    assert redact(value, {"token", "password"}) == {
        "items": [{"token": "[REDACTED]", "name": "a"}],
        "password": "[REDACTED]",
    }
