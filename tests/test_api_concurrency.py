from __future__ import annotations

import httpx
import pytest

import apps.api.main as api_main
from apps.api.main import app


@pytest.mark.anyio
async def test_match_returns_429_when_concurrency_slot_unavailable(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("DOCMATCH_API_MAX_CONCURRENCY", "1")
    monkeypatch.setenv("DOCMATCH_API_QUEUE_TIMEOUT_SECONDS", "0")

    async def _fake_try_acquire(limiter):  # noqa: ANN001
        return False, 0

    monkeypatch.setattr(api_main, "_try_acquire_concurrency_slot", _fake_try_acquire)

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        response = await client.post(
            "/v1/resolve",
            json={"bundle": {"templates": [{"id": "a", "name": "A"}]}, "template_id": "a"},
        )

    assert response.status_code == 429
    assert response.headers["X-Docmatch-Request-Id"]

    payload = response.json()
    assert payload["error_code"] == "TOO_MANY_REQUESTS"
    assert payload["detail"]["max_concurrency"] == 1
    assert payload["detail"]["queue_timeout_seconds"] == 0
    assert payload["request_id"] == response.headers["X-Docmatch-Request-Id"]


@pytest.mark.anyio
async def test_slot_is_released_after_each_request(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DOCMATCH_API_MAX_CONCURRENCY", "1")
    monkeypatch.setenv("DOCMATCH_API_QUEUE_TIMEOUT_SECONDS", "0")
    body = {"bundle": {"templates": [{"id": "a", "name": "A"}]}, "template_id": "a"}

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        first = await client.post("/v1/resolve", json=body)
        missing = await client.post("/v1/resolve", json={**body, "template_id": "b"})
        second = await client.post("/v1/resolve", json=body)

    assert first.status_code == 200
    assert missing.status_code == 404
    assert second.status_code == 200


def test_invalid_limits_fall_back_to_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DOCMATCH_API_MAX_CONCURRENCY", "-2")
    monkeypatch.setenv("DOCMATCH_API_QUEUE_TIMEOUT_SECONDS", "soon")

    limiter = api_main._get_concurrency_limiter()

    assert limiter.max_concurrency == 4
    assert limiter.queue_timeout_seconds == 0.0
