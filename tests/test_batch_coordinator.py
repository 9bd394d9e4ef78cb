from __future__ import annotations

import json
import logging
from typing import Any

import pytest

from core.config.models import MatchingSettings
from core.extraction.content import DocumentSource, InMemoryDocumentContent
from core.fingerprint.models import DocumentStats
from core.matching.batch import BatchCoordinator
from core.matching.service import TemplateMatchingService
from core.templates.models import ExtractionZone, ImportTemplate, KeywordRule, TemplateField
from core.utils.cancellation import CancellationToken

INVOICE = ImportTemplate(
    id="invoice",
    name="Invoice",
    supported_formats=("pdf",),
    fields=(TemplateField(name="total", rules=(KeywordRule(keyword="Invoice Total"),)),),
)

_TEXT = "Invoice total due 120"


class _BrokenContent:
    page_count = 1

    def full_text(self) -> str:
        raise RuntimeError("content unavailable")

    def page_text(self, page: int) -> str:
        return ""

    def zone_text(self, page: int, zone: ExtractionZone) -> str:
        return ""

    def structural_stats(self) -> DocumentStats:
        return DocumentStats()

    def metadata(self) -> dict[str, Any]:
        return {}


class _CancellingContent(InMemoryDocumentContent):
    def __init__(self, token: CancellationToken) -> None:
        super().__init__([_TEXT])
        self._token = token

    def full_text(self) -> str:
        self._token.cancel()
        return super().full_text()


def _source(document_id: str, content: Any = None) -> DocumentSource:
    return DocumentSource(
        document_id=document_id,
        content=content or InMemoryDocumentContent([_TEXT]),
        document_format="pdf",
        filename=f"invoice_{document_id}.pdf",
    )


def _coordinator(max_concurrent: int | None = None) -> BatchCoordinator:
    service = TemplateMatchingService(MatchingSettings(enable_fingerprint_caching=False))
    return BatchCoordinator(service, max_concurrent_operations=max_concurrent)


def test_failing_document_does_not_stop_batch(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO, logger="docmatch.batch")
    sources = [
        _source("doc-1"),
        _source("doc-2"),
        _source("doc-3", _BrokenContent()),
        _source("doc-4"),
        _source("doc-5"),
    ]

    result = _coordinator(3).match_documents_batch(sources, [INVOICE])

    assert list(result.document_matches) == ["doc-1", "doc-2", "doc-3", "doc-4", "doc-5"]
    assert result.document_matches["doc-3"] is None
    assert result.unmatched_documents == ["doc-3"]
    assert result.errors["doc-3"].error_type == "RuntimeError"
    assert result.errors["doc-3"].message == "content unavailable"
    assert set(result.errors) == {"doc-3"}
    for document_id in ("doc-1", "doc-2", "doc-4", "doc-5"):
        match = result.document_matches[document_id]
        assert match is not None
        assert match.template_id == "invoice"
    assert result.success_rate == pytest.approx(0.8)
    assert result.average_confidence == pytest.approx(1.0)
    assert result.cancelled is False

    events = [json.loads(record.getMessage()) for record in caplog.records if record.name == "docmatch.batch"]
    names = [event["event"] for event in events]
    assert names[0] == "batch_match_start"
    assert names[-1] == "batch_match_complete"
    assert "batch_document_failed" in names
    assert events[-1]["success_rate"] == 0.8
    assert events[-1]["error_count"] == 1


def test_documents_below_threshold_are_unmatched() -> None:
    result = _coordinator().match_documents_batch([_source("doc-1")], [INVOICE], minimum_confidence=1.01)

    assert result.document_matches == {"doc-1": None}
    assert result.unmatched_documents == ["doc-1"]
    assert result.errors == {}
    assert result.success_rate == 0.0
    assert result.average_confidence == 0.0


def test_batch_threshold_defaults_to_settings() -> None:
    letter = ImportTemplate(
        id="letter",
        name="Letter",
        supported_formats=("docx",),
        fields=(TemplateField(name="greeting", rules=(KeywordRule(keyword="Dear Customer"),)),),
    )
    lenient = TemplateMatchingService(
        MatchingSettings(enable_fingerprint_caching=False, batch_minimum_confidence=0.0)
    )

    strict_result = _coordinator().match_documents_batch([_source("doc-1")], [letter])
    lenient_result = BatchCoordinator(lenient).match_documents_batch([_source("doc-1")], [letter])
    override = _coordinator().match_documents_batch([_source("doc-1")], [letter], minimum_confidence=0.0)

    assert strict_result.unmatched_documents == ["doc-1"]
    assert lenient_result.document_matches["doc-1"] is not None
    assert override.document_matches["doc-1"] is not None


def test_pre_cancelled_batch_starts_nothing() -> None:
    token = CancellationToken()
    token.cancel()

    result = _coordinator().match_documents_batch(
        [_source("doc-1"), _source("doc-2")], [INVOICE], cancel_token=token
    )

    assert result.cancelled is True
    assert result.cancelled_documents == ["doc-1", "doc-2"]
    assert result.document_matches == {}
    assert result.success_rate == 0.0


def test_cancel_mid_run_lets_running_document_finish() -> None:
    token = CancellationToken()
    sources = [
        _source("doc-1"),
        _source("doc-2", _CancellingContent(token)),
        _source("doc-3"),
        _source("doc-4"),
        _source("doc-5"),
    ]

    result = _coordinator(1).match_documents_batch(sources, [INVOICE], cancel_token=token)

    assert result.cancelled is True
    assert result.cancelled_documents == ["doc-3", "doc-4", "doc-5"]
    assert list(result.document_matches) == ["doc-1", "doc-2"]
    assert result.document_matches["doc-2"] is not None
    assert result.success_rate == 1.0


def test_duplicate_document_ids_are_rejected() -> None:
    with pytest.raises(ValueError, match="Duplicate document ids"):
        _coordinator().match_documents_batch([_source("doc-1"), _source("doc-1")], [INVOICE])


def test_concurrency_limit_falls_back_to_settings() -> None:
    service = TemplateMatchingService(MatchingSettings(max_concurrent_operations=2))

    assert BatchCoordinator(service).max_concurrent_operations == 2
    assert BatchCoordinator(service, max_concurrent_operations=0).max_concurrent_operations == 2
    assert BatchCoordinator(service, max_concurrent_operations=7).max_concurrent_operations == 7
    with pytest.raises(ValueError):
        BatchCoordinator(service, max_concurrent_operations=-1)


def test_fingerprint_batch_collects_results_and_errors() -> None:
    result = _coordinator(2).create_fingerprints_batch(
        [_source("doc-1"), _source("doc-2", _BrokenContent()), _source("doc-3")]
    )

    assert list(result.fingerprints) == ["doc-1", "doc-3"]
    assert result.fingerprints["doc-1"].content_keywords == ("invoice", "total", "due")
    assert result.errors["doc-2"].error_type == "RuntimeError"
    assert result.cancelled is False


def test_fingerprint_batch_honours_cancellation() -> None:
    token = CancellationToken()
    token.cancel()

    result = _coordinator().create_fingerprints_batch([_source("doc-1")], cancel_token=token)

    assert result.fingerprints == {}
    assert result.cancelled_documents == ["doc-1"]
