"""Template fingerprint derived from static template declarations."""

from __future__ import annotations

import hashlib
import logging
import re
from collections.abc import Iterable

from core.fingerprint.document import tokenize_keywords
from core.fingerprint.models import ExpectedStructure, TemplateFingerprint
from core.templates.models import EffectiveTemplate, ImportTemplate, KeywordRule, RegexRule
from core.utils.events import log_event

logger = logging.getLogger("docmatch.fingerprint")

_MAX_COMPLEXITY = 10.0
_FIELD_TYPE_PATTERNS = {
    "ticket_number": "ticket_number",
    "email": "email",
    "date": "date",
}
_FORM_FIELD_TYPES = frozenset({"username", "email"})
_REGEX_SYNTAX_RE = re.compile(r"\[[^\]]*\]|\{[^}]*\}|\(\?[:=!<>P]*|\\.")


def build_template_fingerprint(template: ImportTemplate | EffectiveTemplate) -> TemplateFingerprint:
    """Summarise a template for matching. Pass an effective template to include inherited fields."""

    effective = (
        template if isinstance(template, EffectiveTemplate) else EffectiveTemplate.from_template(template)
    )
    fields = effective.fields
    hints = effective.matching

    keyword_sources: list[str] = []
    required_sources: list[str] = list(hints.required_keywords)
    for field in fields:
        for rule in field.rules:
            if isinstance(rule, KeywordRule):
                keyword_sources.append(rule.keyword)
                if rule.mandatory:
                    required_sources.append(rule.keyword)
            elif isinstance(rule, RegexRule):
                keyword_sources.append(regex_literal_text(rule.pattern))
    keyword_sources.extend(hints.required_keywords)
    keyword_sources.extend(hints.optional_keywords)

    expected_patterns = list(hints.expected_patterns)
    expected_patterns.extend(
        _FIELD_TYPE_PATTERNS[field.field_type]
        for field in fields
        if field.field_type in _FIELD_TYPE_PATTERNS
    )

    fingerprint = TemplateFingerprint(
        template_id=effective.id,
        template_name=effective.name,
        template_version=effective.version,
        supported_formats=tuple(fmt.lower() for fmt in effective.supported_formats),
        expected_keywords=tuple(_distinct_tokens(keyword_sources)),
        required_keywords=tuple(_distinct_tokens(required_sources)),
        expected_patterns=tuple(_distinct(expected_patterns)),
        expected_structure=_expected_structure(effective),
        expected_metadata=dict(hints.metadata),
        filename_patterns=hints.filename_patterns,
        name_tokens=tuple(_distinct(tokenize_keywords(effective.name))),
        complexity_score=template_complexity(effective),
        fingerprint_key=template_fingerprint_key(effective),
    )
    log_event(
        logger,
        logging.DEBUG,
        "template_fingerprint",
        template_id=fingerprint.template_id,
        template_version=fingerprint.template_version,
        keyword_count=len(fingerprint.expected_keywords),
        required_count=len(fingerprint.required_keywords),
        complexity=fingerprint.complexity_score,
    )
    return fingerprint


def template_fingerprint_key(template: ImportTemplate | EffectiveTemplate) -> str:
    """Digest of the flattened template, so an edit anywhere in the ancestor chain yields a new key."""

    effective = (
        template if isinstance(template, EffectiveTemplate) else EffectiveTemplate.from_template(template)
    )
    return hashlib.sha256(effective.model_dump_json().encode("utf-8")).hexdigest()


def template_complexity(template: EffectiveTemplate) -> float:
    score = 0.1 * len(template.fields)
    for field in template.fields:
        score += 0.05 * len(field.rules) + 0.1 * len(field.zones) + 0.05 * len(field.conditionals)
    return round(min(score, _MAX_COMPLEXITY), 6)


def regex_literal_text(pattern: str) -> str:
    """Strip classes, quantifiers, and escapes so only literal words remain."""

    return _REGEX_SYNTAX_RE.sub(" ", pattern)


def _expected_structure(template: EffectiveTemplate) -> ExpectedStructure:
    hints = template.matching
    zones = [zone for field in template.fields for zone in field.zones]

    has_tables = hints.expects_tables
    if has_tables is None and zones:
        has_tables = True
    is_scanned = hints.expects_scanned
    if is_scanned is None and any(zone.ocr_hint for zone in zones):
        is_scanned = True
    layout = hints.expected_layout
    if layout is None and any(field.field_type in _FORM_FIELD_TYPES for field in template.fields):
        layout = "form"

    return ExpectedStructure(
        page_count=hints.expected_page_count,
        has_tables=has_tables,
        has_images=hints.expects_images,
        is_scanned=is_scanned,
        layout_type=layout,
    )


def _distinct_tokens(sources: Iterable[str]) -> list[str]:
    return _distinct(token for source in sources for token in tokenize_keywords(source))


def _distinct(items: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(items))
