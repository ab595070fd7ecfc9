"""Tests for the request context middleware.

Verifies that every response gets:
- An X-Request-ID header (generated or echoed from the request)
- A summary log line carrying that ID
"""

from __future__ import annotations

import logging
import uuid

import pytest
from fastapi.testclient import TestClient


def test_request_id_generated_when_not_provided(client: TestClient) -> None:
    """When no X-Request-ID header is sent, one is generated."""
    resp = client.get("/health")
    req_id = resp.headers.get("x-request-id")
    assert req_id is not None
    uuid.UUID(req_id)  # raises ValueError if invalid


def test_request_id_echoed_when_provided(client: TestClient) -> None:
    custom_id = "my-custom-request-id-123"
    resp = client.get("/health", headers={"X-Request-ID": custom_id})
    assert resp.headers.get("x-request-id") == custom_id


def test_long_request_id_is_truncated(client: TestClient) -> None:
    resp = client.get("/health", headers={"X-Request-ID": "r" * 500})
    assert resp.headers["x-request-id"] == "r" * 128


def test_request_id_present_on_error_responses(client: TestClient) -> None:
    """Even error responses (400, 401) get an X-Request-ID header."""
    assert client.get("/resource/me").headers.get("x-request-id") is not None
    resp = client.post("/oauth/token", data={"grant_type": "password"})
    assert resp.headers.get("x-request-id") is not None


def test_summary_log_omits_query_string(
    client: TestClient, caplog: pytest.LogCaptureFixture
) -> None:
    with caplog.at_level(logging.INFO, logger="authserver.middleware.request_context"):
        client.get(
            "/oauth/authorize",
            params={"client_id": "demo", "state": "sensitive-state"},
            headers={"X-Request-ID": "req-42"},
        )
    summaries = [
        r for r in caplog.records if r.name == "authserver.middleware.request_context"
    ]
    assert len(summaries) == 1
    assert summaries[0].request_id == "req-42"  # type: ignore[attr-defined]
    assert "sensitive-state" not in summaries[0].getMessage()
