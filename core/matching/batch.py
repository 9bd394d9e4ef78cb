"""Bounded thread-pool fan-out of matching and fingerprinting."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import TypeVar

from core.extraction.content import DocumentSource
from core.fingerprint.models import DocumentFingerprint
from core.matching.models import BatchMatchResult, DocumentError, FingerprintBatchResult
from core.matching.service import TemplateLike, TemplateMatchingService
from core.scoring.models import TemplateMatchResult
from core.utils.cancellation import CancellationToken
from core.utils.events import elapsed_ms, log_event

logger = logging.getLogger("docmatch.batch")

T = TypeVar("T")

_NOT_STARTED = object()


class BatchCoordinator:
    """Run per-document work on at most ``max_concurrent_operations`` threads.

    Results are keyed by document id. A failing document is recorded and the
    batch continues. Once the cancel token fires no new document is started;
    documents already running finish normally.
    """

    def __init__(
        self,
        service: TemplateMatchingService,
        *,
        max_concurrent_operations: int | None = None,
    ) -> None:
        self.service = service
        limit = max_concurrent_operations or service.settings.max_concurrent_operations
        if limit < 1:
            raise ValueError("max_concurrent_operations must be at least 1")
        self.max_concurrent_operations = limit

    def match_documents_batch(
        self,
        sources: Iterable[DocumentSource],
        templates: Iterable[TemplateLike],
        *,
        minimum_confidence: float | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> BatchMatchResult:
        """Best match per document at or above ``minimum_confidence``.

        ``None`` uses the service settings' ``batch_minimum_confidence``.
        """

        start = time.perf_counter()
        if minimum_confidence is None:
            minimum_confidence = self.service.settings.batch_minimum_confidence
        documents = _unique_sources(sources)
        candidates = list(templates)
        log_event(
            logger,
            logging.INFO,
            "batch_match_start",
            document_count=len(documents),
            template_count=len(candidates),
            max_concurrent_operations=self.max_concurrent_operations,
        )

        def best_match(source: DocumentSource) -> TemplateMatchResult | None:
            matches = self.service.get_all_matches(
                source,
                candidates,
                minimum_confidence=minimum_confidence,
                max_results=1,
            )
            return matches[0] if matches else None

        outcomes, errors, cancelled = self._run(documents, best_match, cancel_token)

        result = BatchMatchResult(cancelled=bool(cancelled), cancelled_documents=cancelled)
        for source in documents:
            document_id = source.document_id
            if document_id in cancelled:
                continue
            match = outcomes.get(document_id)
            result.document_matches[document_id] = match
            if match is None:
                result.unmatched_documents.append(document_id)
            if document_id in errors:
                result.errors[document_id] = errors[document_id]

        matched = [match for match in result.document_matches.values() if match is not None]
        completed = len(result.document_matches)
        result.success_rate = len(matched) / completed if completed else 0.0
        result.average_confidence = (
            sum(match.confidence for match in matched) / len(matched) if matched else 0.0
        )
        result.total_processing_ms = elapsed_ms(start)

        log_event(
            logger,
            logging.INFO,
            "batch_match_complete",
            document_count=len(documents),
            matched_count=len(matched),
            unmatched_count=len(result.unmatched_documents),
            error_count=len(result.errors),
            cancelled_count=len(cancelled),
            success_rate=round(result.success_rate, 4),
            average_confidence=round(result.average_confidence, 4),
            duration_ms=result.total_processing_ms,
        )
        return result

    def create_fingerprints_batch(
        self,
        sources: Iterable[DocumentSource],
        *,
        cancel_token: CancellationToken | None = None,
    ) -> FingerprintBatchResult:
        start = time.perf_counter()
        documents = _unique_sources(sources)
        outcomes, errors, cancelled = self._run(
            documents, self.service.fingerprint_document, cancel_token
        )

        fingerprints: dict[str, DocumentFingerprint] = {
            source.document_id: outcomes[source.document_id]
            for source in documents
            if source.document_id in outcomes
        }
        result = FingerprintBatchResult(
            fingerprints=fingerprints,
            errors={
                source.document_id: errors[source.document_id]
                for source in documents
                if source.document_id in errors
            },
            total_processing_ms=elapsed_ms(start),
            cancelled=bool(cancelled),
            cancelled_documents=cancelled,
        )
        log_event(
            logger,
            logging.INFO,
            "batch_fingerprint_complete",
            document_count=len(documents),
            fingerprint_count=len(result.fingerprints),
            error_count=len(result.errors),
            cancelled_count=len(cancelled),
            duration_ms=result.total_processing_ms,
        )
        return result

    def _run(
        self,
        documents: list[DocumentSource],
        work: Callable[[DocumentSource], T],
        cancel_token: CancellationToken | None,
    ) -> tuple[dict[str, T], dict[str, DocumentError], list[str]]:
        outcomes: dict[str, T] = {}
        errors: dict[str, DocumentError] = {}
        not_started: list[str] = []

        def guarded(source: DocumentSource) -> object:
            if cancel_token is not None and cancel_token.cancelled:
                return _NOT_STARTED
            return work(source)

        queue = list(documents)
        queue.reverse()
        in_flight: dict[Future[object], DocumentSource] = {}

        with ThreadPoolExecutor(max_workers=self.max_concurrent_operations) as executor:
            while queue or in_flight:
                while queue and len(in_flight) < self.max_concurrent_operations:
                    if cancel_token is not None and cancel_token.cancelled:
                        not_started.extend(source.document_id for source in reversed(queue))
                        queue.clear()
                        break
                    source = queue.pop()
                    in_flight[executor.submit(guarded, source)] = source

                if not in_flight:
                    break
                done, _ = wait(in_flight, return_when=FIRST_COMPLETED)
                for future in done:
                    source = in_flight.pop(future)
                    self._collect(source, future, outcomes, errors, not_started)

        order = {source.document_id: index for index, source in enumerate(documents)}
        not_started.sort(key=order.__getitem__)
        return outcomes, errors, not_started

    def _collect(
        self,
        source: DocumentSource,
        future: Future[object],
        outcomes: dict[str, object],
        errors: dict[str, DocumentError],
        not_started: list[str],
    ) -> None:
        try:
            value = future.result()
        except Exception as exc:  # noqa: BLE001
            errors[source.document_id] = DocumentError(
                document_id=source.document_id,
                error_type=type(exc).__name__,
                message=str(exc),
            )
            log_event(
                logger,
                logging.WARNING,
                "batch_document_failed",
                document_id=source.document_id,
                error_type=type(exc).__name__,
                detail=str(exc),
            )
            return

        if value is _NOT_STARTED:
            not_started.append(source.document_id)
            return
        outcomes[source.document_id] = value


def _unique_sources(sources: Iterable[DocumentSource]) -> list[DocumentSource]:
    documents = list(sources)
    seen: set[str] = set()
    duplicates: set[str] = set()
    for source in documents:
        if source.document_id in seen:
            duplicates.add(source.document_id)
        seen.add(source.document_id)
    if duplicates:
        raise ValueError(f"Duplicate document ids in batch: {sorted(duplicates)}")
    return documents
