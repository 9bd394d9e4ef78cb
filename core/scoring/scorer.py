"""Six-factor confidence scoring between document and template fingerprints."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable

from rapidfuzz import fuzz

from core.config.models import MatchingSettings
from core.fingerprint.models import (
    DocumentFingerprint,
    DocumentStructure,
    ExpectedStructure,
    TemplateFingerprint,
)
from core.scoring.models import (
    ConfidenceScore,
    MatchingCriteria,
    StructureWeights,
    TemplateMatchResult,
)
from core.utils.events import log_event

logger = logging.getLogger("docmatch.matching")

_SUBSCORE_NAMES = {"format", "keyword", "pattern", "structure", "metadata", "filename"}


class ConfidenceScorer:
    """Stateless scorer bound to one settings snapshot."""

    def __init__(self, settings: MatchingSettings | None = None) -> None:
        self.settings = settings or MatchingSettings()

    def score(
        self,
        doc: DocumentFingerprint,
        tpl: TemplateFingerprint,
        criteria: MatchingCriteria | None = None,
    ) -> ConfidenceScore:
        return score_fingerprints(doc, tpl, criteria or self.settings.criteria, self.settings)


def score_fingerprints(
    doc: DocumentFingerprint,
    tpl: TemplateFingerprint,
    criteria: MatchingCriteria,
    settings: MatchingSettings,
) -> ConfidenceScore:
    """Score one document against one template.

    Sub-scores are always reported. The overall score is the weighted sum of
    the sub-scores, or 0.0 when any required keyword is absent from the
    document keywords.
    """

    doc_keywords = {keyword.lower() for keyword in doc.content_keywords}
    missing_required = tuple(
        keyword for keyword in tpl.required_keywords if keyword.lower() not in doc_keywords
    )

    subscores = {
        "format": format_score(doc.document_format, tpl.supported_formats),
        "keyword": keyword_score(doc_keywords, tpl.expected_keywords),
        "pattern": pattern_score(doc.text_patterns, tpl.expected_patterns),
        "structure": structure_score(
            doc.structure,
            tpl.expected_structure,
            weights=settings.structure_weights,
            page_tolerance=settings.page_count_tolerance,
        ),
        "metadata": metadata_score(doc.metadata, tpl.expected_metadata),
        "filename": filename_score(
            doc.filename_stem,
            tpl.filename_patterns,
            tpl.name_tokens,
            fuzzy=settings.enable_fuzzy_matching,
            threshold=settings.fuzzy_matching_threshold,
        ),
    }
    overall = 0.0 if missing_required else weighted_overall(subscores, criteria)

    score = ConfidenceScore(
        **subscores,
        overall=overall,
        required_keywords_satisfied=not missing_required,
        missing_required_keywords=missing_required,
        detailed_scores={
            "required_keyword_match": _required_keyword_match(doc_keywords, tpl.required_keywords),
            "complexity_match": _complexity_match(doc, tpl),
            "language_match": 1.0 if doc.language == "en" else 0.8,
            "weight_total": round(criteria.total_weight(), 6),
        },
    )
    if missing_required:
        log_event(
            logger,
            logging.DEBUG,
            "required_keyword_gate",
            template_id=tpl.template_id,
            missing=list(missing_required),
        )
    return score


def weighted_overall(subscores: dict[str, float] | ConfidenceScore, criteria: MatchingCriteria) -> float:
    """Weighted sum of the six sub-scores, clamped to [0, 1]."""

    if isinstance(subscores, ConfidenceScore):
        subscores = subscores.model_dump(include=_SUBSCORE_NAMES)
    weights = criteria.normalized()
    total = (
        subscores.get("format", 0.0) * weights.format_weight
        + subscores.get("keyword", 0.0) * weights.keyword_weight
        + subscores.get("pattern", 0.0) * weights.pattern_weight
        + subscores.get("structure", 0.0) * weights.structure_weight
        + subscores.get("metadata", 0.0) * weights.metadata_weight
        + subscores.get("filename", 0.0) * weights.filename_weight
    )
    return min(1.0, max(0.0, total))


def format_score(document_format: str, supported_formats: Iterable[str]) -> float:
    supported = {fmt.lower() for fmt in supported_formats}
    return 1.0 if document_format.lower() in supported else 0.0


def keyword_score(doc_keywords: set[str], expected_keywords: Iterable[str]) -> float:
    expected = list(expected_keywords)
    if not expected:
        return 1.0
    matched = sum(1 for keyword in expected if keyword.lower() in doc_keywords)
    return matched / len(expected)


def pattern_score(doc_patterns: Iterable[str], expected_patterns: Iterable[str]) -> float:
    expected = list(expected_patterns)
    if not expected:
        return 1.0
    available = [pattern.lower() for pattern in doc_patterns]
    matched = sum(1 for pattern in expected if _pattern_present(pattern, available))
    return matched / len(expected)


def structure_score(
    doc: DocumentStructure,
    expected: ExpectedStructure,
    *,
    weights: StructureWeights,
    page_tolerance: int,
) -> float:
    declared = expected.declared()
    if not declared:
        return 1.0

    weighted = 0.0
    total_weight = 0.0
    for dimension, expected_value in declared.items():
        weight = getattr(weights, dimension)
        if dimension == "page_count":
            agreement = _page_count_agreement(doc.page_count, expected_value, page_tolerance)
        else:
            agreement = 1.0 if getattr(doc, dimension) == expected_value else 0.0
        weighted += weight * agreement
        total_weight += weight

    if total_weight == 0:
        return 1.0
    return weighted / total_weight


def metadata_score(doc_metadata: dict[str, str], expected_metadata: dict[str, str]) -> float:
    if not expected_metadata:
        return 1.0
    available = {key.lower(): value for key, value in doc_metadata.items()}
    matched = sum(
        1
        for key, value in expected_metadata.items()
        if available.get(key.lower(), "").casefold() == value.casefold()
    )
    return matched / len(expected_metadata)


def filename_score(
    filename_stem: str | None,
    filename_patterns: Iterable[str],
    name_tokens: Iterable[str],
    *,
    fuzzy: bool,
    threshold: float,
) -> float:
    if not filename_stem:
        return 0.0
    stem = filename_stem.lower()

    for pattern in filename_patterns:
        try:
            if re.search(pattern, stem, re.IGNORECASE):
                return 1.0
        except re.error:
            continue

    tokens = [token.lower() for token in name_tokens]
    if not tokens:
        return 0.0
    matched = sum(1 for token in tokens if _token_in_stem(token, stem, fuzzy=fuzzy, threshold=threshold))
    return matched / len(tokens)


def match_reasons(score: ConfidenceScore) -> list[str]:
    reasons: list[str] = []
    if score.format > 0.8:
        reasons.append("Document format matches template requirements")
    if score.keyword > 0.6:
        reasons.append("High keyword similarity detected")
    if score.pattern > 0.7:
        reasons.append("Text patterns match template expectations")
    if score.structure > 0.5:
        reasons.append("Document structure is compatible")
    if score.filename > 0.5:
        reasons.append("Filename resembles template name")
    return reasons


def match_warnings(score: ConfidenceScore) -> list[str]:
    warnings: list[str] = []
    if not score.required_keywords_satisfied:
        warnings.append(
            "Required keywords missing: " + ", ".join(score.missing_required_keywords)
        )
    weight_total = score.detailed_scores.get("weight_total", 1.0)
    if weight_total > 1.0:
        warnings.append(
            f"Criteria weights sum to {weight_total:g}; overall uses weights rescaled to sum to 1"
        )
    if score.format < 0.5:
        warnings.append("Document format may not be fully supported")
    if score.keyword < 0.3:
        warnings.append("Low keyword match - manual verification recommended")
    if score.overall < 0.6:
        warnings.append("Low overall confidence - consider manual template selection")
    return warnings


def rank_matches(
    results: Iterable[TemplateMatchResult],
    *,
    minimum_confidence: float,
    max_results: int | None = None,
) -> list[TemplateMatchResult]:
    """Drop results below ``minimum_confidence`` and order best first.

    Ties on confidence prefer the more complex template, then the template
    name.
    """

    kept = [result for result in results if result.confidence >= minimum_confidence]
    kept.sort(key=lambda result: (-result.confidence, -result.complexity_score, result.template_name))
    if max_results is not None:
        return kept[:max_results]
    return kept


def _pattern_present(expected: str, available: list[str]) -> bool:
    needle = expected.lower()
    try:
        compiled = re.compile(expected, re.IGNORECASE)
    except re.error:
        compiled = None
    for pattern in available:
        if pattern == needle or needle in pattern:
            return True
        if compiled is not None and compiled.fullmatch(pattern):
            return True
    return False


def _page_count_agreement(actual: int, expected: int, tolerance: int) -> float:
    if abs(actual - expected) <= tolerance:
        return 1.0
    high = max(actual, expected)
    if high == 0:
        return 1.0
    return min(actual, expected) / high


def _token_in_stem(token: str, stem: str, *, fuzzy: bool, threshold: float) -> bool:
    if token in stem:
        return True
    if not fuzzy:
        return False
    return fuzz.partial_ratio(token, stem) >= threshold * 100


def _required_keyword_match(doc_keywords: set[str], required: Iterable[str]) -> float:
    required_list = list(required)
    if not required_list:
        return 1.0
    matched = sum(1 for keyword in required_list if keyword.lower() in doc_keywords)
    return matched / len(required_list)


def _complexity_match(doc: DocumentFingerprint, tpl: TemplateFingerprint) -> float:
    doc_complexity = (
        doc.structure.word_count / 100.0
        + len(doc.content_keywords) / 10.0
        + doc.structure.page_count
    )
    high = max(doc_complexity, tpl.complexity_score)
    if high == 0:
        return 1.0
    return min(doc_complexity, tpl.complexity_score) / high
