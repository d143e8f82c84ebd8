from __future__ import annotations

from fastapi.testclient import TestClient

from ratelab.main import app


client = TestClient(app)


def test_preserves_incoming_request_id_header():
    incoming_id = "test-request-id-123"
    resp = client.get("/health", headers={"X-Request-ID": incoming_id})

    assert resp.status_code == 200
    assert resp.headers.get("X-Request-ID") == incoming_id


def test_generates_request_id_when_missing():
    resp = client.get("/health")

    assert resp.status_code == 200
    generated = resp.headers.get("X-Request-ID")
    assert generated
    assert len(generated) > 0

    duration = resp.headers.get("X-Request-Duration-ms")
    assert duration is not None
    assert float(duration) >= 0


def test_request_id_present_on_rate_limited_responses():
    for _ in range(3):
        client.get("/home", params={"ip": "198.51.100.7"})

    resp = client.get("/home", params={"ip": "198.51.100.7"}, headers={"X-Request-ID": "limited-1"})

    assert resp.status_code == 429
    assert resp.headers.get("X-Request-ID") == "limited-1"
