"""HTTP surface tests using FastAPI's TestClient and a mocked upstream."""

import time

import httpx
import pytest
from fastapi.testclient import TestClient

from ratelab.core.config import ProbeSettings, Settings

TARGET = "https://api.example.com/items"


def upstream(status: int = 200, headers: dict | None = None):
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(status, headers=headers or {})

    handler.calls = calls
    return handler


def wait_until_finished(client: TestClient, probe_id: str, timeout: float = 5.0) -> dict:
    deadline = time.monotonic() + timeout
    while True:
        body = client.get(f"/v1/probes/{probe_id}").json()
        if body["state"] != "Running" or time.monotonic() > deadline:
            return body
        time.sleep(0.02)


class TestInfoEndpoints:
    def test_index_lists_endpoints(self, build_app) -> None:
        client = TestClient(build_app())

        resp = client.get("/")

        assert resp.status_code == 200
        assert "POST /test-url" in resp.json()["endpoints"]

    def test_health(self, build_app) -> None:
        client = TestClient(build_app())

        body = client.get("/health").json()

        assert body["status"] == "ok"
        assert body["version"] == "1.0.0"
        assert body["uptime_seconds"] >= 0


class TestHomeRateLimit:
    def test_blocks_after_default_limit(self, build_app) -> None:
        client = TestClient(build_app())

        for _ in range(3):
            assert client.get("/home").status_code == 200

        resp = client.get("/home")
        assert resp.status_code == 429
        detail = resp.json()["detail"]
        assert detail["error"] == "Too Many Requests"
        assert detail["timeLeft"] == 60
        assert resp.headers["Retry-After"] == "60"
        assert resp.headers["X-RateLimit-Limit"] == "3"
        assert resp.headers["X-RateLimit-Remaining"] == "0"

    def test_ip_override_isolates_clients(self, build_app) -> None:
        client = TestClient(build_app())

        for _ in range(3):
            client.get("/home", params={"ip": "10.0.0.1"})
        assert client.get("/home", params={"ip": "10.0.0.1"}).status_code == 429

        resp = client.get("/home", params={"ip": "10.0.0.2"})
        assert resp.status_code == 200
        assert resp.json()["client_ip"] == "10.0.0.2"

    def test_allowed_again_after_cooldown(self, build_app, clock) -> None:
        client = TestClient(build_app(use_clock=True))

        for _ in range(4):
            client.get("/home")
        clock.return_value += 59
        assert client.get("/home").json()["detail"]["timeLeft"] == 1

        clock.return_value += 1
        assert client.get("/home").status_code == 200

    def test_monitor_lists_clients(self, build_app) -> None:
        client = TestClient(build_app())
        for _ in range(4):
            client.get("/home", params={"ip": "10.0.0.9"})

        body = client.get("/monitor").json()

        assert body["endpoint"] == "ip"
        assert body["total_tracked"] == 1
        entry = body["data"][0]
        assert entry["identifier"] == "10.0.0.9"
        assert entry["status"] == "Blocked"
        assert entry["request_count"] == 3
        assert entry["limits"]["max_requests"] == 3


class TestUrlEndpoint:
    def test_learns_limit_then_denies_locally(self, build_app) -> None:
        handler = upstream(headers={"x-ratelimit-limit": "1", "x-ratelimit-remaining": "0", "x-ratelimit-reset": "30"})
        client = TestClient(build_app(handler))

        first = client.post("/test-url", json={"url": TARGET})
        assert first.status_code == 200
        body = first.json()
        assert body["response_status"] == 200
        assert body["detected"]["limit"] == 1
        assert body["detected"]["source"] == "x-ratelimit"
        assert body["applied"] == {"max_requests": 1, "window_seconds": 30, "source": "detected"}
        assert body["response_headers"]["x-ratelimit-limit"] == "1"
        assert body["current_usage"]["request_count"] == 1

        second = client.post("/test-url", json={"url": TARGET})
        assert second.status_code == 429
        assert second.json()["detail"]["timeLeft"] == 30
        assert len(handler.calls) == 1

    @pytest.mark.parametrize(
        ("status", "headers"),
        [
            (429, {"retry-after": "-5"}),
            (200, {"x-ratelimit-limit": "-1"}),
            (200, {"x-ratelimit-limit": "100", "x-ratelimit-reset": "1700000060000"}),
        ],
    )
    def test_malformed_upstream_headers_never_fail_the_request(self, build_app, status, headers) -> None:
        client = TestClient(build_app(upstream(status=status, headers=headers)))

        resp = client.post("/test-url", json={"url": TARGET})

        assert resp.status_code == 200
        body = resp.json()
        assert body["response_status"] == status
        assert body["applied"]["max_requests"] >= 1
        assert body["applied"]["window_seconds"] >= 1

    def test_rejects_non_http_url(self, build_app) -> None:
        client = TestClient(build_app())

        resp = client.post("/test-url", json={"url": "ftp://example.com"})

        assert resp.status_code == 422

    def test_unreachable_target_reports_error(self, build_app) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("timed out", request=request)

        client = TestClient(build_app(handler))

        resp = client.post("/test-url", json={"url": TARGET, "method": "GET"})

        assert resp.status_code == 200
        body = resp.json()
        assert body["error"]
        assert body["response_status"] is None
        assert body["detected"]["source"] == "failed_request"

    def test_monitor_urls_shows_last_client(self, build_app) -> None:
        client = TestClient(build_app())
        client.post("/test-url", json={"url": TARGET})

        body = client.get("/monitor-urls").json()

        assert body["total_tracked"] == 1
        assert body["data"][0]["identifier"] == TARGET
        assert body["data"][0]["client_ip"] == "testclient"
        assert body["data"][0]["limits"]["source"] == "default"


class TestCustomEndpoint:
    def test_enforces_configured_limit(self, build_app) -> None:
        client = TestClient(build_app())
        payload = {"url": TARGET, "method": "POST", "limit": 1, "window": 20}

        first = client.post("/test-custom", json=payload)
        assert first.status_code == 200
        assert first.json()["configured"] == {"max_requests": 1, "window_seconds": 20, "source": "custom"}
        assert first.json()["remaining"] == 0

        second = client.post("/test-custom", json=payload)
        assert second.status_code == 429
        assert second.json()["detail"]["timeLeft"] == 20

    def test_defaults_apply_when_limit_omitted(self, build_app) -> None:
        client = TestClient(build_app())

        body = client.post("/test-custom", json={"url": TARGET}).json()

        assert body["configured"]["max_requests"] == 10
        assert body["configured"]["window_seconds"] == 60

    def test_rejects_non_positive_limit(self, build_app) -> None:
        client = TestClient(build_app())

        resp = client.post("/test-custom", json={"url": TARGET, "limit": 0})

        assert resp.status_code == 422

    def test_upstream_429_with_negative_retry_after_keeps_configured_limit(self, build_app) -> None:
        client = TestClient(build_app(upstream(status=429, headers={"retry-after": "-5"})))

        resp = client.post("/test-custom", json={"url": TARGET, "limit": 5, "window": 30})

        assert resp.status_code == 200
        body = resp.json()
        assert body["response_status"] == 429
        assert body["applied"] == {"max_requests": 5, "window_seconds": 30, "source": "custom"}
        assert body["detected"]["source"] == "unknown"

    def test_relays_upstream_429_with_detected_policy(self, build_app) -> None:
        handler = upstream(status=429, headers={"retry-after": "15"})
        client = TestClient(build_app(handler))

        resp = client.post("/test-custom", json={"url": TARGET, "limit": 5})

        assert resp.status_code == 429
        detail = resp.json()["detail"]
        assert detail["detected"]["source"] == "retry-after-429"
        assert detail["timeLeft"] == 15
        assert resp.headers["Retry-After"] == "15"

        entry = client.get("/monitor-custom").json()["data"][0]
        assert entry["limits"]["source"] == "detected"
        assert entry["limits"]["window_seconds"] == 15


class TestAnalytics:
    def test_counts_and_clear(self, build_app) -> None:
        handler = upstream(headers={"ratelimit-limit": "50", "ratelimit-reset": "60"})
        client = TestClient(build_app(handler))
        client.get("/home")
        client.post("/test-url", json={"url": TARGET})
        client.post("/test-custom", json={"url": "https://other.example.com", "limit": 1})
        client.post("/test-custom", json={"url": "https://other.example.com", "limit": 1})

        body = client.get("/analytics").json()
        assert body["total_urls"] == 1
        assert body["total_custom_endpoints"] == 1
        assert body["blocked_custom"] == 1
        assert body["blocked_urls"] == 0
        assert body["breakdown"] == {"ip": 1, "url": 1, "custom": 1}
        assert body["total_requests"] == 3
        assert body["detected_limits"] == 1

        assert client.post("/clear-data").status_code == 200
        cleared = client.get("/analytics").json()
        assert cleared["total_urls"] == 0
        assert cleared["total_requests"] == 0
        assert client.get("/monitor").json()["total_tracked"] == 0


class TestProbeEndpoints:
    def test_wait_returns_final_report(self, build_app) -> None:
        client = TestClient(build_app())

        resp = client.post(
            "/v1/probes",
            params={"wait": "true"},
            json={"url": TARGET, "mode": "custom", "limit": 2, "window": 60},
        )

        assert resp.status_code == 200
        report = resp.json()
        assert report["state"] == "RateLimited"
        assert report["max_requests_cap"] == 7
        assert report["total_requests"] == 3
        assert report["successful_requests"] == 2
        assert report["rate_limit_at"] == 3
        assert report["detected_limits"]["limit"] == 2
        assert [r["status"] for r in report["responses"]] == [200, 200, 429]

    def test_url_probe_completes_at_cap(self, build_app) -> None:
        settings = Settings(probe=ProbeSettings(max_requests=4, delay_ms=0))
        client = TestClient(build_app(settings=settings))

        report = client.post("/v1/probes", params={"wait": "true"}, json={"url": TARGET}).json()

        assert report["state"] == "Completed"
        assert report["total_requests"] == 4
        assert report["detected_limits"]["source"] == "unknown"

    def test_background_probe_can_be_polled(self, build_app) -> None:
        handler = upstream(status=503)
        with TestClient(build_app(handler)) as client:
            resp = client.post("/v1/probes", json={"url": TARGET})
            assert resp.status_code == 202
            started = resp.json()
            assert started["policy"] == "url"
            assert started["max_requests_cap"] == 100

            report = wait_until_finished(client, started["probe_id"])

        assert report["state"] == "ErrorStopped"
        assert report["error_at"] == 1
        assert report["error_status"] == 503

    def test_conflict_and_cancel(self, build_app) -> None:
        settings = Settings(probe=ProbeSettings(delay_ms=60_000))
        with TestClient(build_app(settings=settings)) as client:
            probe_id = client.post("/v1/probes", json={"url": TARGET}).json()["probe_id"]

            conflict = client.post("/v1/probes", json={"url": TARGET})
            assert conflict.status_code == 409
            assert conflict.json()["error"]["code"] == "probe_already_running"
            assert conflict.json()["error"]["details"]["probe_id"] == probe_id

            assert client.post(f"/v1/probes/{probe_id}/cancel").status_code == 200
            report = wait_until_finished(client, probe_id)

        assert report["state"] == "Cancelled"
        assert report["cancelled"] is True
        assert report["total_requests"] <= 1

    def test_unknown_probe_returns_404(self, build_app) -> None:
        client = TestClient(build_app())

        resp = client.get("/v1/probes/does-not-exist")

        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "probe_not_found"
        assert client.post("/v1/probes/does-not-exist/cancel").status_code == 404
