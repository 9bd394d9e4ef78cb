"""Single-document matching: fingerprint, score, and rank templates."""

from __future__ import annotations

import hashlib
import logging
import time
from collections.abc import Iterable

from core.config.models import MatchingSettings
from core.extraction.content import DocumentSource
from core.fingerprint.document import build_document_fingerprint, document_fingerprint_key
from core.fingerprint.models import DocumentFingerprint, TemplateFingerprint
from core.fingerprint.template import build_template_fingerprint, template_fingerprint_key
from core.matching.cache import FingerprintCache
from core.scoring.models import ConfidenceScore, MatchingCriteria, TemplateMatchResult
from core.scoring.scorer import ConfidenceScorer, match_reasons, match_warnings, rank_matches
from core.templates.models import EffectiveTemplate, ImportTemplate
from core.utils.events import elapsed_ms, log_event

logger = logging.getLogger("docmatch.matching")

TemplateLike = ImportTemplate | EffectiveTemplate


class TemplateMatchingService:
    """Match documents against templates using cached fingerprints.

    Every method is safe to call from several threads at once; the only
    shared state is the optional ``FingerprintCache``.
    """

    def __init__(
        self,
        settings: MatchingSettings | None = None,
        *,
        scorer: ConfidenceScorer | None = None,
        cache: FingerprintCache | None = None,
    ) -> None:
        self.settings = settings or MatchingSettings()
        self.scorer = scorer or ConfidenceScorer(self.settings)
        if cache is None and self.settings.enable_fingerprint_caching:
            cache = FingerprintCache(
                self.settings.cache_expiration_hours, max_entries=self.settings.cache_max_entries
            )
        self.cache = cache
        self._settings_digest = hashlib.sha256(
            self.scorer.settings.model_dump_json().encode("utf-8")
        ).hexdigest()[:16]

    def fingerprint_document(self, source: DocumentSource) -> DocumentFingerprint:
        content = source.content
        text = content.full_text()
        metadata = content.metadata()
        stats = content.structural_stats()
        options = {
            "document_format": source.document_format,
            "filename": source.filename,
            "keyword_limit": self.settings.keyword_limit,
        }

        if self.cache is not None:
            cached = self.cache.get_document(document_fingerprint_key(text, metadata, stats, **options))
            if cached is not None:
                return cached

        fingerprint = build_document_fingerprint(text, metadata, stats, **options)
        if self.cache is not None:
            self.cache.put_document(fingerprint)
        return fingerprint

    def fingerprint_template(self, template: TemplateLike) -> TemplateFingerprint:
        if self.cache is not None:
            cached = self.cache.get_template(template_fingerprint_key(template))
            if cached is not None:
                return cached

        fingerprint = build_template_fingerprint(template)
        if self.cache is not None:
            self.cache.put_template(fingerprint)
        return fingerprint

    def score(
        self,
        doc: DocumentFingerprint,
        tpl: TemplateFingerprint,
        criteria: MatchingCriteria | None = None,
    ) -> ConfidenceScore:
        if self.cache is None:
            return self.scorer.score(doc, tpl, criteria)

        key = (doc.fingerprint_key, tpl.fingerprint_key, self._criteria_digest(criteria))
        cached = self.cache.get_score(key)
        if cached is not None:
            return cached
        score = self.scorer.score(doc, tpl, criteria)
        self.cache.put_score(key, score)
        return score

    def match_document(
        self,
        source: DocumentSource,
        template: TemplateLike,
        *,
        criteria: MatchingCriteria | None = None,
    ) -> TemplateMatchResult:
        start = time.perf_counter()
        doc = self.fingerprint_document(source)
        return self._match_fingerprint(doc, template, criteria, start)

    def get_all_matches(
        self,
        source: DocumentSource,
        templates: Iterable[TemplateLike],
        *,
        minimum_confidence: float | None = None,
        max_results: int | None = None,
        criteria: MatchingCriteria | None = None,
    ) -> list[TemplateMatchResult]:
        """Score every active template and return the ranked matches.

        A template that fails to fingerprint or score is logged and skipped.
        """

        start = time.perf_counter()
        minimum = self.settings.minimum_confidence if minimum_confidence is None else minimum_confidence
        limit = self.settings.max_results if max_results is None else max_results
        doc = self.fingerprint_document(source)

        results: list[TemplateMatchResult] = []
        for template in templates:
            if not _template_header(template).is_active:
                continue
            try:
                results.append(self._match_fingerprint(doc, template, criteria, time.perf_counter()))
            except Exception as exc:  # noqa: BLE001
                log_event(
                    logger,
                    logging.WARNING,
                    "template_match_failed",
                    document_id=source.document_id,
                    template_id=template.id,
                    error_type=type(exc).__name__,
                    detail=str(exc),
                )

        ranked = rank_matches(results, minimum_confidence=minimum, max_results=limit)
        log_event(
            logger,
            logging.INFO,
            "matches_ranked",
            document_id=source.document_id,
            candidate_count=len(results),
            match_count=len(ranked),
            best_template_id=ranked[0].template_id if ranked else None,
            best_confidence=round(ranked[0].confidence, 4) if ranked else None,
            duration_ms=elapsed_ms(start),
        )
        return ranked

    def find_best_match(
        self,
        source: DocumentSource,
        templates: Iterable[TemplateLike],
        *,
        minimum_confidence: float | None = None,
        criteria: MatchingCriteria | None = None,
    ) -> TemplateMatchResult | None:
        """Best match at or above ``minimum_confidence`` (default: the auto-apply threshold)."""

        effective_criteria = criteria or self.settings.criteria
        minimum = (
            effective_criteria.auto_application_threshold
            if minimum_confidence is None
            else minimum_confidence
        )
        matches = self.get_all_matches(
            source,
            templates,
            minimum_confidence=minimum,
            max_results=1,
            criteria=criteria,
        )
        return matches[0] if matches else None

    def _match_fingerprint(
        self,
        doc: DocumentFingerprint,
        template: TemplateLike,
        criteria: MatchingCriteria | None,
        start: float,
    ) -> TemplateMatchResult:
        tpl = self.fingerprint_template(template)
        score = self.score(doc, tpl, criteria)
        threshold = (criteria or self.settings.criteria).auto_application_threshold
        return TemplateMatchResult(
            template_id=tpl.template_id,
            template_name=tpl.template_name,
            template_version=tpl.template_version,
            confidence=score.overall,
            breakdown=score,
            reasons=match_reasons(score),
            warnings=match_warnings(score),
            auto_apply=score.overall >= threshold,
            complexity_score=tpl.complexity_score,
            matching_time_ms=elapsed_ms(start),
            metadata={
                "document_format": doc.document_format,
                "word_count": doc.structure.word_count,
                "page_count": doc.structure.page_count,
                "template_complexity": tpl.complexity_score,
            },
        )

    def _criteria_digest(self, criteria: MatchingCriteria | None) -> str:
        if criteria is None:
            return self._settings_digest
        digest = hashlib.sha256(criteria.model_dump_json().encode("utf-8")).hexdigest()[:16]
        return f"{self._settings_digest}:{digest}"


def _template_header(template: TemplateLike) -> ImportTemplate:
    return template.template if isinstance(template, EffectiveTemplate) else template
