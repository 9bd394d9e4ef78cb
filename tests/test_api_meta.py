from __future__ import annotations

import httpx
import pytest

from apps.api.main import app


@pytest.mark.anyio
async def test_meta_reports_version_concurrency_and_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DOCMATCH_API_MAX_CONCURRENCY", "3")

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        response = await client.get("/v1/meta")

    assert response.status_code == 200
    assert response.headers["X-Docmatch-Request-Id"]

    payload = response.json()
    assert payload["version"] == "0.1.0"
    assert payload["package_version"]
    assert payload["max_concurrency"] == 3
    settings = payload["settings"]
    assert set(settings["criteria"]) >= {
        "format_weight",
        "keyword_weight",
        "pattern_weight",
        "structure_weight",
        "metadata_weight",
        "filename_weight",
    }
    assert settings["enable_fuzzy_matching"] is True
