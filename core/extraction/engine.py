"""Rule, zone, and conditional field extraction over document content."""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field as dataclass_field

from core.extraction.content import DocumentContent
from core.extraction.models import (
    ExtractionMethod,
    ExtractionResult,
    FieldDiagnostic,
    FieldExtractionResult,
)
from core.extraction.transform import apply_transformation, validation_failure
from core.templates.models import (
    Condition,
    EffectiveTemplate,
    ExtractFieldAction,
    ImportTemplate,
    KeywordRule,
    RegexRule,
    SetDefaultAction,
    TemplateField,
)
from core.templates.validation import REGEX_FLAGS, compile_pattern
from core.utils.cancellation import CancellationToken
from core.utils.errors import InvalidPatternError
from core.utils.events import elapsed_ms, log_event

logger = logging.getLogger("docmatch.extraction")

DEFAULT_VALUE_CONFIDENCE = 0.1
MIN_HIT_CONFIDENCE = 0.2

# Keyword windows end at the first line break and drop these leading separators.
_WINDOW_LEAD_CHARS = " \t:#-="
_KEYWORD_TOKEN_RES = {
    "username": re.compile(r"([a-zA-Z0-9._-]+@[a-zA-Z0-9.-]+|[a-zA-Z0-9._-]+)"),
    "ticket_number": re.compile(r"([A-Z0-9-]+)"),
    "date": re.compile(r"(\d{1,2}[/-]\d{1,2}[/-]\d{2,4}|\d{4}-\d{2}-\d{2})"),
    "email": re.compile(r"([a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,})"),
}


def hit_confidence(distinct_hits: int) -> float:
    """1.0 for a unique hit, decaying with ambiguity but never below 0.2."""

    if distinct_hits <= 0:
        return 0.0
    if distinct_hits == 1:
        return 1.0
    return max(MIN_HIT_CONFIDENCE, 1.0 / distinct_hits)


@dataclass
class _Outcome:
    values: list[str] = dataclass_field(default_factory=list)
    confidence: float = 0.0
    method: ExtractionMethod | None = None
    page: int | None = None
    diagnostics: list[FieldDiagnostic] = dataclass_field(default_factory=list)
    rejections: list[str] = dataclass_field(default_factory=list)

    @property
    def found(self) -> bool:
        return bool(self.values)


class ExtractionEngine:
    """Apply a template's field rules to one document.

    Extraction never mutates the template or the content. Soft failures are
    reported as field diagnostics; only malformed patterns and cancellation
    raise.
    """

    def extract(
        self,
        template: ImportTemplate | EffectiveTemplate,
        content: DocumentContent,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> ExtractionResult:
        start = time.perf_counter()
        effective = (
            template if isinstance(template, EffectiveTemplate) else EffectiveTemplate.from_template(template)
        )
        patterns = _compile_template_patterns(effective)

        run = _ExtractionRun(effective, content, patterns)
        field_results: dict[str, FieldExtractionResult] = {}
        for field in effective.fields:
            if cancel_token is not None:
                cancel_token.raise_if_cancelled(f"field {field.name}")
            field_results[field.name] = run.extract_field(field)

        result = _assemble_result(effective, field_results, run, elapsed_ms(start))
        log_event(
            logger,
            logging.INFO,
            "extraction_complete",
            template_id=effective.id,
            template_version=effective.version,
            field_count=len(field_results),
            resolved_count=sum(1 for item in field_results.values() if item.resolved),
            failed_fields=sorted(result.failed_fields),
            overall_confidence=round(result.overall_confidence, 4),
            duration_ms=result.processing_ms,
        )
        return result


class _ExtractionRun:
    """Per-call state: compiled patterns plus accumulated messages."""

    def __init__(
        self,
        template: EffectiveTemplate,
        content: DocumentContent,
        patterns: dict[tuple[str, int], re.Pattern[str]],
    ) -> None:
        self.template = template
        self.content = content
        self.patterns = patterns
        self.page_count = content.page_count
        self.warnings: list[str] = []
        self.errors: list[str] = []
        self._full_text: str | None = None

    @property
    def full_text(self) -> str:
        if self._full_text is None:
            self._full_text = self.content.full_text()
        return self._full_text

    def extract_field(self, field: TemplateField) -> FieldExtractionResult:
        diagnostics: list[FieldDiagnostic] = []

        outcome = self._apply_conditionals(field, diagnostics)
        if outcome is None or not outcome.found:
            outcome = self._apply_rules(field, diagnostics)
        if not outcome.found:
            outcome = self._apply_zones(field, diagnostics)

        if outcome.found:
            return self._resolved(field, outcome, diagnostics)

        if field.default_value is not None:
            return FieldExtractionResult(
                field_name=field.name,
                required=field.required,
                resolved=True,
                value=field.default_value,
                all_values=[field.default_value],
                confidence=DEFAULT_VALUE_CONFIDENCE,
                method="default",
                diagnostics=diagnostics,
            )

        if not diagnostics:
            diagnostics.append(
                FieldDiagnostic(reason="missing_pattern", message="Field has no applicable rules or zones")
            )
        return FieldExtractionResult(
            field_name=field.name,
            required=field.required,
            diagnostics=diagnostics,
        )

    def _resolved(
        self, field: TemplateField, outcome: _Outcome, diagnostics: list[FieldDiagnostic]
    ) -> FieldExtractionResult:
        values = list(dict.fromkeys(outcome.values))
        value = field.multi_value_separator.join(values) if field.allow_multiple_values else values[0]
        return FieldExtractionResult(
            field_name=field.name,
            required=field.required,
            resolved=True,
            value=value,
            all_values=values,
            confidence=outcome.confidence,
            method=outcome.method,
            page=outcome.page,
            diagnostics=diagnostics,
        )

    def _apply_conditionals(
        self, field: TemplateField, diagnostics: list[FieldDiagnostic]
    ) -> _Outcome | None:
        for index, conditional in enumerate(field.conditionals):
            if not self._condition_holds(conditional.condition):
                continue

            action = conditional.action
            if isinstance(action, SetDefaultAction):
                return _Outcome(values=[action.value], confidence=1.0, method="conditional")

            if isinstance(action, ExtractFieldAction):
                target = self.template.field(action.target_field)
                if target is None or target.name == field.name:
                    diagnostics.append(
                        FieldDiagnostic(
                            reason="conditional_target_missing",
                            message=f"Conditional {index + 1} targets unknown field {action.target_field}",
                        )
                    )
                    continue
                redirected = self._apply_rules(target, [])
                if not redirected.found:
                    redirected = self._apply_zones(target, [])
                if redirected.found:
                    return redirected
        return None

    def _condition_holds(self, condition: Condition) -> bool:
        if condition.metadata_key is not None:
            raw = self.content.metadata().get(condition.metadata_key)
            subject = "" if raw is None else str(raw)
        else:
            subject = self.full_text

        expected = condition.value
        if not condition.case_sensitive:
            subject_cmp, expected_cmp = subject.casefold(), expected.casefold()
        else:
            subject_cmp, expected_cmp = subject, expected

        operator = condition.operator
        if operator == "contains":
            return expected_cmp in subject_cmp
        if operator == "not_contains":
            return expected_cmp not in subject_cmp
        if operator == "equals":
            return subject_cmp.strip() == expected_cmp.strip()
        if operator == "not_equals":
            return subject_cmp.strip() != expected_cmp.strip()
        if operator == "regex_match":
            return self.patterns[(condition.value, _condition_flags(condition))].search(subject) is not None
        if operator in ("greater_than", "less_than"):
            left, right = _as_number(subject), _as_number(expected)
            if left is None or right is None:
                return False
            return left > right if operator == "greater_than" else left < right
        return False

    def _search_segments(self, field: TemplateField, diagnostics: list[FieldDiagnostic]) -> list[tuple[int | None, str]]:
        if field.page_range is None:
            return [(None, self.full_text)]

        requested_end = field.page_range.end
        if field.page_range.start > self.page_count or (
            requested_end is not None and requested_end > self.page_count
        ):
            message = (
                f"Page range {field.page_range.start}-{requested_end if requested_end else 'end'} "
                f"exceeds document page count {self.page_count}"
            )
            diagnostics.append(FieldDiagnostic(reason="page_out_of_range", message=message))
            self.warnings.append(f"Field '{field.name}': {message}")
        return [(page, self.content.page_text(page)) for page in field.page_range.pages(self.page_count)]

    def _apply_rules(self, field: TemplateField, diagnostics: list[FieldDiagnostic]) -> _Outcome:
        indexed = sorted(enumerate(field.rules), key=lambda item: item[1].priority)
        rules = [
            (index, rule)
            for index, rule in indexed
            if not (isinstance(rule, RegexRule) and rule.zone_post_filter)
        ]
        if not rules:
            return _Outcome()

        segments = self._search_segments(field, diagnostics)
        combined = _Outcome()
        for index, rule in rules:
            if isinstance(rule, RegexRule):
                outcome = self._try_regex(field, index, rule, segments)
            else:
                outcome = self._try_keyword(field, index, rule, segments)
            diagnostics.extend(outcome.diagnostics)
            self._record_rejections(field, outcome)

            if not outcome.found:
                continue
            if not field.allow_multiple_values:
                return outcome
            if not combined.found:
                combined.method = outcome.method
                combined.page = outcome.page
            combined.values.extend(outcome.values)

        if combined.found:
            combined.confidence = 1.0
        return combined

    def _try_regex(
        self,
        field: TemplateField,
        index: int,
        rule: RegexRule,
        segments: list[tuple[int | None, str]],
    ) -> _Outcome:
        compiled = self.patterns[(rule.pattern, REGEX_FLAGS)]
        outcome = _Outcome(method="regex")
        any_hits = False
        for page, text in segments:
            hits = _regex_hits(compiled, rule.group, text)
            if not hits:
                continue
            any_hits = True
            if self._accept(field, index, hits, page, outcome):
                return outcome

        if not any_hits:
            outcome.diagnostics.append(
                FieldDiagnostic(
                    reason="missing_pattern",
                    message=f"Pattern did not match: {rule.pattern}",
                    rule_index=index,
                )
            )
        return outcome

    def _try_keyword(
        self,
        field: TemplateField,
        index: int,
        rule: KeywordRule,
        segments: list[tuple[int | None, str]],
    ) -> _Outcome:
        outcome = _Outcome(method="keyword")
        any_hits = False
        for page, text in segments:
            hits = _keyword_hits(text, rule, field.field_type)
            if not hits:
                continue
            any_hits = True
            if self._accept(field, index, hits, page, outcome):
                return outcome

        if not any_hits:
            outcome.diagnostics.append(
                FieldDiagnostic(
                    reason="keyword_not_found",
                    message=f"Keyword not found: {rule.keyword}",
                    rule_index=index,
                )
            )
        return outcome

    def _accept(
        self,
        field: TemplateField,
        index: int,
        hits: list[str],
        page: int | None,
        outcome: _Outcome,
    ) -> bool:
        validation_re = (
            self.patterns[(field.validation_pattern, REGEX_FLAGS)] if field.validation_pattern else None
        )
        candidates = hits if field.allow_multiple_values else hits[:1]

        accepted: list[str] = []
        for hit in candidates:
            value = apply_transformation(hit, field.transformation)
            failure = validation_failure(value, field, validation_re)
            if failure is None and value:
                accepted.append(value)
                continue
            message = f"{failure or 'Value is empty'}: {value!r}"
            outcome.diagnostics.append(
                FieldDiagnostic(
                    reason="validation_rejected", message=message, rule_index=index, page=page
                )
            )
            outcome.rejections.append(message)

        if not accepted:
            return False
        outcome.values = accepted
        outcome.page = page
        outcome.confidence = hit_confidence(len(hits))
        return True

    def _apply_zones(self, field: TemplateField, diagnostics: list[FieldDiagnostic]) -> _Outcome:
        if not field.zones:
            return _Outcome()

        post_filters = [
            (index, rule)
            for index, rule in sorted(enumerate(field.rules), key=lambda item: item[1].priority)
            if isinstance(rule, RegexRule) and rule.zone_post_filter
        ]
        validation_re = (
            self.patterns[(field.validation_pattern, REGEX_FLAGS)] if field.validation_pattern else None
        )

        for zone_index, zone in enumerate(field.zones):
            if zone.page > self.page_count:
                message = (
                    f"Zone {zone_index + 1} references page {zone.page} "
                    f"but document has {self.page_count} pages"
                )
                diagnostics.append(
                    FieldDiagnostic(
                        reason="zone_out_of_page_range",
                        message=message,
                        zone_index=zone_index,
                        page=zone.page,
                    )
                )
                self.warnings.append(f"Field '{field.name}': {message}")
                continue

            text = self.content.zone_text(zone.page, zone)
            if not text.strip():
                diagnostics.append(
                    FieldDiagnostic(
                        reason="zone_empty",
                        message=f"Zone {zone_index + 1} contains no text",
                        zone_index=zone_index,
                        page=zone.page,
                    )
                )
                continue

            value = text
            if post_filters:
                value = self._post_filter(text, post_filters)
                if value is None:
                    diagnostics.append(
                        FieldDiagnostic(
                            reason="missing_pattern",
                            message=f"No post-filter pattern matched zone {zone_index + 1}",
                            zone_index=zone_index,
                            page=zone.page,
                        )
                    )
                    continue

            failure = validation_failure(value, field, validation_re)
            if failure is not None:
                message = f"{failure}: {value!r}"
                diagnostics.append(
                    FieldDiagnostic(
                        reason="validation_rejected",
                        message=message,
                        zone_index=zone_index,
                        page=zone.page,
                    )
                )
                self.errors.append(f"Field '{field.name}': {message}")
                continue

            return _Outcome(values=[value], confidence=1.0, method="zone", page=zone.page)
        return _Outcome()

    def _post_filter(self, text: str, post_filters: list[tuple[int, RegexRule]]) -> str | None:
        for _, rule in post_filters:
            hits = _regex_hits(self.patterns[(rule.pattern, REGEX_FLAGS)], rule.group, text)
            if hits:
                return hits[0]
        return None

    def _record_rejections(self, field: TemplateField, outcome: _Outcome) -> None:
        for message in outcome.rejections:
            self.errors.append(f"Field '{field.name}': {message}")


def _assemble_result(
    template: EffectiveTemplate,
    field_results: dict[str, FieldExtractionResult],
    run: _ExtractionRun,
    processing_ms: int,
) -> ExtractionResult:
    warnings = list(run.warnings)
    failed_fields: dict[str, list[str]] = {}
    for name, item in field_results.items():
        if item.resolved:
            continue
        reasons = item.failure_reasons()
        failed_fields[name] = reasons
        if item.required:
            warnings.append(f"Required field '{name}' was not extracted ({', '.join(reasons)})")

    return ExtractionResult(
        template_id=template.id,
        template_version=template.version,
        fields=field_results,
        overall_confidence=overall_confidence(list(field_results.values())),
        failed_fields=failed_fields,
        warnings=warnings,
        errors=list(run.errors),
        processing_ms=processing_ms,
    )


def overall_confidence(results: list[FieldExtractionResult]) -> float:
    """Mean over required fields; optional fields only count when none are required."""

    required = [item for item in results if item.required]
    if required:
        return sum(item.confidence if item.resolved else 0.0 for item in required) / len(required)
    resolved = [item for item in results if item.resolved]
    if not resolved:
        return 0.0
    return sum(item.confidence for item in resolved) / len(resolved)


def _compile_template_patterns(template: EffectiveTemplate) -> dict[tuple[str, int], re.Pattern[str]]:
    compiled: dict[tuple[str, int], re.Pattern[str]] = {}

    def add(pattern: str, field_name: str, flags: int = REGEX_FLAGS) -> re.Pattern[str]:
        key = (pattern, flags)
        if key not in compiled:
            compiled[key] = compile_pattern(
                pattern, field_name=field_name, template_id=template.id, flags=flags
            )
        return compiled[key]

    for field in template.fields:
        for rule in field.rules:
            if not isinstance(rule, RegexRule):
                continue
            regex = add(rule.pattern, field.name)
            if rule.group is not None and rule.group > regex.groups:
                raise InvalidPatternError(
                    f"Capture group {rule.group} out of range in field {field.name}: {rule.pattern}",
                    pattern=rule.pattern,
                    field_name=field.name,
                    template_id=template.id,
                )
        if field.validation_pattern:
            add(field.validation_pattern, field.name)
        for conditional in field.conditionals:
            if conditional.condition.operator == "regex_match":
                add(conditional.condition.value, field.name, _condition_flags(conditional.condition))
    return compiled


def _condition_flags(condition: Condition) -> int:
    return re.MULTILINE if condition.case_sensitive else REGEX_FLAGS


def _regex_hits(compiled: re.Pattern[str], group: int | None, text: str) -> list[str]:
    hits: list[str] = []
    for match in compiled.finditer(text):
        raw = match.group(group) if group is not None else match.group(0)
        if raw is None:
            continue
        raw = raw.strip()
        if raw:
            hits.append(raw)
    return list(dict.fromkeys(hits))


def _keyword_hits(text: str, rule: KeywordRule, field_type: str) -> list[str]:
    token_re = _KEYWORD_TOKEN_RES.get(field_type)
    hits: list[str] = []
    for match in re.finditer(re.escape(rule.keyword), text, re.IGNORECASE):
        window = text[match.end(): match.end() + rule.window]
        window = re.split(r"[\r\n]", window, maxsplit=1)[0]
        window = window.lstrip(_WINDOW_LEAD_CHARS)
        if token_re is not None:
            token_match = token_re.match(window)
            token = token_match.group(1) if token_match else ""
        else:
            token = window.strip()
        if token:
            hits.append(token)
    return list(dict.fromkeys(hits))


def _as_number(raw: str) -> float | None:
    try:
        return float(raw.strip().replace(",", ""))
    except ValueError:
        return None


