"""Human-readable summaries rendered by the CLI."""

from __future__ import annotations

from collections import Counter

from core.extraction.models import ExtractionResult
from core.fingerprint.models import DocumentFingerprint
from core.matching.models import BatchMatchResult
from core.scoring.models import TemplateMatchResult
from core.templates.models import EffectiveTemplate
from core.templates.validation import TemplateValidationReport


def render_resolution(effective: EffectiveTemplate) -> str:
    lines: list[str] = []
    lines.append("resolution:")
    lines.append(f"template={effective.id} version={effective.version} name={effective.name}")
    lines.append(f"chain: {' -> '.join(effective.ancestor_chain)}")
    lines.append(f"formats: {', '.join(effective.supported_formats) or 'none'}")
    lines.append(f"fields: {len(effective.fields)} (inherited={len(effective.inherited_field_names())})")
    for field in effective.fields:
        origin = effective.field_origins.get(field.name, effective.id)
        flag = " required" if field.required else ""
        lines.append(f"field: {field.name} type={field.field_type} from={origin}{flag}")
    return "\n".join(lines)


def render_fingerprint(document_id: str, fingerprint: DocumentFingerprint) -> str:
    structure = fingerprint.structure
    lines: list[str] = []
    lines.append(f"fingerprint for {document_id}:")
    lines.append(
        f"format={fingerprint.document_format} language={fingerprint.language} "
        f"pages={structure.page_count} words={structure.word_count} layout={structure.layout_type}"
    )
    lines.append(f"tables={structure.has_tables} images={structure.has_images} scanned={structure.is_scanned}")
    lines.append(f"keywords: {', '.join(fingerprint.content_keywords[:10]) or 'none'}")
    lines.append(f"patterns: {', '.join(fingerprint.text_patterns) or 'none'}")
    lines.append(f"key={fingerprint.fingerprint_key[:16]}")
    return "\n".join(lines)


def render_matches(document_id: str, matches: list[TemplateMatchResult]) -> str:
    lines: list[str] = []
    lines.append(f"matches for {document_id}:")
    if not matches:
        lines.append("result=NO_MATCH")
        return "\n".join(lines)

    for rank, match in enumerate(matches, start=1):
        score = match.breakdown
        lines.append(
            f"{rank}. {match.template_name} ({match.template_id} v{match.template_version}) "
            f"confidence={match.confidence:.3f} auto_apply={'yes' if match.auto_apply else 'no'}"
        )
        lines.append(
            "   scores: "
            f"format={score.format:.2f} keyword={score.keyword:.2f} pattern={score.pattern:.2f} "
            f"structure={score.structure:.2f} metadata={score.metadata:.2f} filename={score.filename:.2f}"
        )
        for warning in match.warnings[:3]:
            lines.append(f"   warning: {warning}")
    return "\n".join(lines)


def render_extraction(result: ExtractionResult) -> str:
    lines: list[str] = []
    lines.append("extraction:")
    lines.append(
        f"template={result.template_id} version={result.template_version} "
        f"overall_confidence={result.overall_confidence:.3f}"
    )
    for name, item in result.fields.items():
        if item.resolved:
            page = f" page={item.page}" if item.page is not None else ""
            lines.append(
                f"field: {name}={item.value!r} method={item.method} "
                f"confidence={item.confidence:.2f}{page}"
            )
        else:
            lines.append(f"field: {name} UNRESOLVED ({', '.join(item.failure_reasons())})")

    reason_counter: Counter[str] = Counter(
        reason for reasons in result.failed_fields.values() for reason in reasons
    )
    if reason_counter:
        top_items = sorted(reason_counter.items(), key=lambda item: (-item[1], item[0]))[:5]
        lines.append("failures: " + ", ".join(f"{reason}={count}" for reason, count in top_items))
    else:
        lines.append("failures: none")
    for warning in result.warnings:
        lines.append(f"warning: {warning}")
    for error in result.errors:
        lines.append(f"error: {error}")
    return "\n".join(lines)


def render_batch(result: BatchMatchResult) -> str:
    lines: list[str] = []
    lines.append("batch:")
    lines.append(
        f"documents={len(result.document_matches) + len(result.cancelled_documents)} "
        f"success_rate={result.success_rate:.1%} average_confidence={result.average_confidence:.3f}"
    )
    for document_id, match in result.document_matches.items():
        if match is not None:
            lines.append(
                f"document: {document_id} -> {match.template_id} confidence={match.confidence:.3f}"
            )
        elif document_id in result.errors:
            error = result.errors[document_id]
            lines.append(f"document: {document_id} FAILED {error.error_type}: {error.message}")
        else:
            lines.append(f"document: {document_id} UNMATCHED")
    if result.cancelled:
        lines.append(f"cancelled: {', '.join(result.cancelled_documents)}")
    return "\n".join(lines)


def render_validation(reports: list[TemplateValidationReport], set_errors: list[str]) -> str:
    lines: list[str] = []
    lines.append("validation:")
    for report in reports:
        lines.append(f"template={report.template_id} result={'VALID' if report.is_valid else 'INVALID'}")
        for error in report.errors:
            lines.append(f"  error: {error}")
        for warning in report.warnings:
            lines.append(f"  warning: {warning}")
    for error in set_errors:
        lines.append(f"error: {error}")
    return "\n".join(lines)
