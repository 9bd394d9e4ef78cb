from __future__ import annotations

import pytest

from core.config.models import MatchingSettings
from core.fingerprint.models import (
    DocumentFingerprint,
    DocumentStructure,
    ExpectedStructure,
    TemplateFingerprint,
)
from core.scoring.models import ConfidenceScore, MatchingCriteria, StructureWeights, TemplateMatchResult
from core.scoring.scorer import (
    ConfidenceScorer,
    filename_score,
    format_score,
    keyword_score,
    match_reasons,
    match_warnings,
    metadata_score,
    pattern_score,
    rank_matches,
    structure_score,
    weighted_overall,
)


def _doc(**overrides: object) -> DocumentFingerprint:
    payload: dict[str, object] = {
        "document_format": "pdf",
        "content_keywords": ("invoice", "total", "due"),
        "content_hash": "0" * 64,
        "fingerprint_key": "doc-key",
    }
    payload.update(overrides)
    return DocumentFingerprint.model_validate(payload)


def _tpl(**overrides: object) -> TemplateFingerprint:
    payload: dict[str, object] = {
        "template_id": "invoice",
        "template_name": "Invoice",
        "supported_formats": ("pdf",),
        "expected_keywords": ("invoice", "total"),
    }
    payload.update(overrides)
    return TemplateFingerprint.model_validate(payload)


def test_end_to_end_weighting_scenario() -> None:
    doc_keywords = {"invoice", "total", "due"}
    keyword = keyword_score(doc_keywords, ["invoice", "total"])
    fmt = format_score("pdf", ["pdf"])
    criteria = MatchingCriteria(
        format_weight=0.2,
        keyword_weight=0.3,
        pattern_weight=0.2,
        structure_weight=0.15,
        metadata_weight=0.1,
        filename_weight=0.05,
    )

    overall = weighted_overall(
        {"format": fmt, "keyword": keyword, "pattern": 0.0, "structure": 0.0, "metadata": 0.0, "filename": 0.0},
        criteria,
    )

    assert keyword == 1.0
    assert fmt == 1.0
    assert overall == pytest.approx(0.5)


def test_weighted_overall_accepts_score_model() -> None:
    score = ConfidenceScore(format=1.0, keyword=1.0, overall=0.0)

    assert weighted_overall(score, MatchingCriteria()) == pytest.approx(0.5)


def test_full_scoring_reports_every_subscore() -> None:
    score = ConfidenceScorer().score(_doc(), _tpl())

    assert score.format == 1.0
    assert score.keyword == 1.0
    assert score.pattern == 1.0
    assert score.structure == 1.0
    assert score.metadata == 1.0
    assert score.filename == 0.0
    assert score.overall == pytest.approx(0.95)
    assert score.required_keywords_satisfied is True
    assert score.detailed_scores["required_keyword_match"] == 1.0
    assert score.detailed_scores["language_match"] == 1.0


def test_missing_required_keyword_forces_zero_overall() -> None:
    score = ConfidenceScorer().score(_doc(), _tpl(required_keywords=("signature", "invoice")))

    assert score.overall == 0.0
    assert score.keyword == 1.0
    assert score.required_keywords_satisfied is False
    assert score.missing_required_keywords == ("signature",)
    assert score.detailed_scores["required_keyword_match"] == 0.5
    assert "Required keywords missing: signature" in match_warnings(score)


def test_empty_expectations_score_full_but_missing_filename_scores_zero() -> None:
    assert keyword_score(set(), []) == 1.0
    assert pattern_score([], []) == 1.0
    assert metadata_score({}, {}) == 1.0
    assert structure_score(
        DocumentStructure(), ExpectedStructure(), weights=StructureWeights(), page_tolerance=1
    ) == 1.0
    assert filename_score(None, ["inv"], ["invoice"], fuzzy=True, threshold=0.8) == 0.0
    assert filename_score("report", [], [], fuzzy=True, threshold=0.8) == 0.0


def test_format_score_is_case_insensitive() -> None:
    assert format_score("PDF", ["pdf", "docx"]) == 1.0
    assert format_score("xlsx", ["pdf"]) == 0.0
    assert format_score("pdf", []) == 0.0


def test_pattern_score_matching_modes() -> None:
    available = ["date_iso", "ticket_number"]

    assert pattern_score(available, ["ticket_number"]) == 1.0
    assert pattern_score(available, ["date"]) == 1.0
    assert pattern_score(available, [r"date_(iso|us)"]) == 1.0
    assert pattern_score(available, ["email", "ticket_number"]) == 0.5


def test_structure_score_uses_page_tolerance_and_ratio() -> None:
    weights = StructureWeights()

    near = structure_score(
        DocumentStructure(page_count=3), ExpectedStructure(page_count=2), weights=weights, page_tolerance=1
    )
    far = structure_score(
        DocumentStructure(page_count=10), ExpectedStructure(page_count=2), weights=weights, page_tolerance=1
    )
    mixed = structure_score(
        DocumentStructure(page_count=2, has_tables=False),
        ExpectedStructure(page_count=2, has_tables=True),
        weights=StructureWeights(has_tables=3.0),
        page_tolerance=0,
    )

    assert near == 1.0
    assert far == pytest.approx(0.2)
    assert mixed == pytest.approx(0.25)


def test_metadata_score_ignores_case() -> None:
    score = metadata_score({"Department": "FINANCE", "author": "ops"}, {"department": "finance", "region": "eu"})

    assert score == 0.5


def test_filename_score_patterns_tokens_and_fuzzy() -> None:
    assert filename_score("inv_001", [r"^inv_\d+"], [], fuzzy=False, threshold=0.8) == 1.0
    assert filename_score("incident_report_7", [], ["incident", "report"], fuzzy=False, threshold=0.8) == 1.0
    assert filename_score("incidnt_summary", [], ["incident"], fuzzy=False, threshold=0.8) == 0.0
    assert filename_score("incidnt_summary", [], ["incident"], fuzzy=True, threshold=0.8) == 1.0
    assert filename_score("incident_x", ["[bad"], ["incident", "missing"], fuzzy=False, threshold=0.8) == 0.5


def test_language_match_penalty() -> None:
    score = ConfidenceScorer().score(_doc(language="unknown"), _tpl())

    assert score.detailed_scores["language_match"] == 0.8


def test_weights_above_one_are_normalized() -> None:
    criteria = MatchingCriteria(format_weight=1.0, keyword_weight=1.0, pattern_weight=0.0,
                                structure_weight=0.0, metadata_weight=0.0, filename_weight=0.0)

    normalized = criteria.normalized()

    assert normalized.format_weight == 0.5
    assert weighted_overall({"format": 1.0, "keyword": 0.0}, criteria) == pytest.approx(0.5)


def test_rescaled_weights_are_reported_in_breakdown() -> None:
    heavy = MatchingCriteria(format_weight=1.0, keyword_weight=1.0, pattern_weight=0.5,
                             structure_weight=0.0, metadata_weight=0.0, filename_weight=0.0)

    rescaled = ConfidenceScorer().score(_doc(), _tpl(), heavy)
    default = ConfidenceScorer().score(_doc(), _tpl())

    assert rescaled.detailed_scores["weight_total"] == 2.5
    assert rescaled.overall == pytest.approx(1.0)
    assert "Criteria weights sum to 2.5; overall uses weights rescaled to sum to 1" in match_warnings(rescaled)
    assert default.detailed_scores["weight_total"] == pytest.approx(1.0)
    assert not any(warning.startswith("Criteria weights") for warning in match_warnings(default))


def test_reasons_and_warnings() -> None:
    strong = ConfidenceScore(format=1.0, keyword=0.9, pattern=0.8, structure=0.6, filename=0.9, overall=0.9)
    weak = ConfidenceScore(format=0.0, keyword=0.1, overall=0.2)

    assert match_reasons(strong) == [
        "Document format matches template requirements",
        "High keyword similarity detected",
        "Text patterns match template expectations",
        "Document structure is compatible",
        "Filename resembles template name",
    ]
    assert match_warnings(weak) == [
        "Document format may not be fully supported",
        "Low keyword match - manual verification recommended",
        "Low overall confidence - consider manual template selection",
    ]


def _result(template_id: str, name: str, confidence: float, complexity: float = 0.0) -> TemplateMatchResult:
    return TemplateMatchResult(
        template_id=template_id,
        template_name=name,
        template_version=1,
        confidence=confidence,
        breakdown=ConfidenceScore(overall=confidence),
        complexity_score=complexity,
    )


def test_rank_matches_orders_and_filters() -> None:
    results = [
        _result("a", "Alpha", 0.7),
        _result("b", "Beta", 0.9),
        _result("c", "Gamma", 0.7, complexity=2.0),
        _result("d", "Delta", 0.2),
        _result("e", "Aardvark", 0.7),
    ]

    ranked = rank_matches(results, minimum_confidence=0.5)

    assert [item.template_id for item in ranked] == ["b", "c", "e", "a"]
    assert [item.template_id for item in rank_matches(results, minimum_confidence=0.5, max_results=2)] == [
        "b",
        "c",
    ]
    assert rank_matches(results, minimum_confidence=0.95) == []


def test_scorer_respects_fuzzy_setting() -> None:
    doc = _doc(filename_stem="invoic_march")
    tpl = _tpl(name_tokens=("invoice",))

    fuzzy = ConfidenceScorer(MatchingSettings()).score(doc, tpl)
    strict = ConfidenceScorer(MatchingSettings(enable_fuzzy_matching=False)).score(doc, tpl)

    assert fuzzy.filename == 1.0
    assert strict.filename == 0.0


def test_scoring_is_deterministic() -> None:
    scorer = ConfidenceScorer()
    doc = _doc(filename_stem="invoice_3", text_patterns=("date_iso",))
    tpl = _tpl(expected_patterns=("date",), name_tokens=("invoice",))

    assert scorer.score(doc, tpl) == scorer.score(doc, tpl)


def test_required_gate_applies_when_no_required_keyword_is_present() -> None:
    score = ConfidenceScorer().score(_doc(content_keywords=()), _tpl(required_keywords=("invoice",)))

    assert score.overall == 0.0
    assert score.format == 1.0
