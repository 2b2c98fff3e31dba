from __future__ import annotations

import logging

import pytest
from fastapi.testclient import TestClient

from courseflow.middleware.request_context import REQUEST_ID_HEADER


def test_request_id_is_generated(client: TestClient) -> None:
    resp = client.get("/health")
    assert len(resp.headers[REQUEST_ID_HEADER]) == 36


def test_client_request_id_is_echoed(client: TestClient) -> None:
    resp = client.get("/health", headers={REQUEST_ID_HEADER: "recalc-run-7"})
    assert resp.headers[REQUEST_ID_HEADER] == "recalc-run-7"


def test_summary_line_carries_request_context(
    client: TestClient, caplog: pytest.LogCaptureFixture
) -> None:
    with caplog.at_level(logging.INFO, logger="courseflow.middleware.request_context"):
        client.get("/health", headers={REQUEST_ID_HEADER: "abc"})

    (record,) = [
        r for r in caplog.records if r.name == "courseflow.middleware.request_context"
    ]
    assert record.request_id == "abc"
    assert record.path == "/health"
    assert record.status_code == 200
