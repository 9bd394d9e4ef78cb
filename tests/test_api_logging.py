from __future__ import annotations

import json
import logging

import httpx
import pytest

from apps.api.main import app


def _api_events(caplog: pytest.LogCaptureFixture) -> list[dict[str, object]]:
    return [json.loads(record.message) for record in caplog.records if record.name == "docmatch.api"]


@pytest.mark.anyio
async def test_api_logs_request_complete(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO, logger="docmatch.api")

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        response = await client.post(
            "/v1/resolve",
            json={"bundle": {"templates": [{"id": "a", "name": "A"}]}, "template_id": "a"},
        )

    assert response.status_code == 200
    request_id = response.headers["X-Docmatch-Request-Id"]
    events = _api_events(caplog)
    complete = [event for event in events if event["event"] == "request_complete"]
    assert complete
    assert complete[-1]["request_id"] == request_id
    assert complete[-1]["operation"] == "resolve"


@pytest.mark.anyio
async def test_api_logs_error_code_for_failure(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO, logger="docmatch.api")

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        response = await client.post(
            "/v1/resolve",
            json={"bundle": {"templates": []}, "template_id": "missing"},
        )

    assert response.status_code == 404
    request_id = response.headers["X-Docmatch-Request-Id"]
    errors = [event for event in _api_events(caplog) if event["event"] == "error"]
    assert errors[-1] == {
        "event": "error",
        "request_id": request_id,
        "error_code": "TEMPLATE_NOT_FOUND",
        "status_code": 404,
        "failure_stage": "resolve",
    }
