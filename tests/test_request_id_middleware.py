from __future__ import annotations

import logging

from fastapi.testclient import TestClient

from gateway.main import app


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
    assert isinstance(generated, str)

    duration = resp.headers.get("X-Request-Duration-ms")
    assert duration is not None


def test_emits_access_log_event(caplog):
    with caplog.at_level(logging.INFO, logger="gateway.access"):
        client.get("/health", headers={"X-Request-ID": "req-access-1"})

    records = [r for r in caplog.records if r.getMessage() == "http.access"]
    assert records
    record = records[-1]
    assert record.method == "GET"
    assert record.path == "/health"
    assert record.status_code == 200
    assert record.duration_ms >= 0
