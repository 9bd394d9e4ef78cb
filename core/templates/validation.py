"""Static template checks run before templates are accepted for matching."""

from __future__ import annotations

import re
from collections import Counter
from collections.abc import Iterable

from pydantic import BaseModel, ConfigDict, Field

from core.templates.models import (
    EffectiveTemplate,
    ExtractFieldAction,
    ImportTemplate,
    KeywordRule,
    RegexRule,
    TemplateField,
)
from core.utils.errors import InvalidPatternError

_FIELD_NAME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_]*$")
REGEX_FLAGS = re.IGNORECASE | re.MULTILINE


class TemplateValidationReport(BaseModel):
    """Validation outcome; ``is_valid == (not errors)``."""

    model_config = ConfigDict(extra="forbid")

    template_id: str | None = None
    is_valid: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    @classmethod
    def from_messages(
        cls, template_id: str | None, errors: list[str], warnings: list[str]
    ) -> TemplateValidationReport:
        return cls(
            template_id=template_id,
            is_valid=not errors,
            errors=errors,
            warnings=warnings,
        )


def compile_pattern(
    pattern: str,
    *,
    field_name: str | None = None,
    template_id: str | None = None,
    flags: int = REGEX_FLAGS,
) -> re.Pattern[str]:
    """Compile an author-supplied regex, by default with the extraction flags."""

    try:
        return re.compile(pattern, flags)
    except re.error as exc:
        raise InvalidPatternError(
            f"Invalid regex pattern {pattern!r}"
            + (f" in field {field_name}" if field_name else "")
            + f": {exc}",
            pattern=pattern,
            field_name=field_name,
            template_id=template_id,
        ) from exc


def iter_field_patterns(field: TemplateField) -> Iterable[str]:
    for rule in field.rules:
        if isinstance(rule, RegexRule):
            yield rule.pattern
    if field.validation_pattern:
        yield field.validation_pattern
    for conditional in field.conditionals:
        if conditional.condition.operator == "regex_match":
            yield conditional.condition.value


def validate_template(template: ImportTemplate | EffectiveTemplate) -> TemplateValidationReport:
    """Check names, patterns, rule coverage, and field-type conventions."""

    errors: list[str] = []
    warnings: list[str] = []

    header = template.template if isinstance(template, EffectiveTemplate) else template
    fields = template.fields
    supported_formats = template.supported_formats

    if not header.name.strip():
        errors.append("Template name is required")
    if not fields:
        errors.append("Template must have at least one field")
    if not supported_formats:
        errors.append("Template must support at least one document format")

    names = Counter(field.name for field in fields)
    for name in sorted(name for name, count in names.items() if count > 1):
        errors.append(f"Duplicate field name: {name}")

    for position, field in enumerate(fields, start=1):
        prefix = f"Field {position} ({field.name})"
        for message in _field_errors(field, names):
            errors.append(f"{prefix}: {message}")
        for message in _field_warnings(field):
            warnings.append(f"{prefix}: {message}")

    for pattern in header.matching.filename_patterns:
        try:
            re.compile(pattern, re.IGNORECASE)
        except re.error:
            errors.append(f"Invalid filename pattern: {pattern}")

    return TemplateValidationReport.from_messages(header.id, errors, warnings)


def validate_active_set(templates: Iterable[ImportTemplate]) -> list[str]:
    """Return errors for case-sensitive name clashes among active templates."""

    counter = Counter(template.name for template in templates if template.is_active)
    return [
        f"Duplicate active template name: {name}"
        for name in sorted(name for name, count in counter.items() if count > 1)
    ]


def _field_errors(field: TemplateField, names: Counter[str]) -> list[str]:
    errors: list[str] = []
    if not _FIELD_NAME_RE.match(field.name):
        errors.append(
            "Field name must start with a letter and contain only letters, numbers, and underscores"
        )

    if not (field.rules or field.zones or field.conditionals or field.default_value is not None):
        errors.append("Field must have at least one rule, zone, conditional, or default value")

    for pattern in iter_field_patterns(field):
        try:
            re.compile(pattern, REGEX_FLAGS)
        except re.error:
            errors.append(f"Invalid regex pattern: {pattern}")

    for rule in field.rules:
        if isinstance(rule, RegexRule) and rule.group is not None:
            try:
                group_count = re.compile(rule.pattern, REGEX_FLAGS).groups
            except re.error:
                continue
            if rule.group > group_count:
                errors.append(
                    f"Capture group {rule.group} out of range for pattern: {rule.pattern}"
                )

    if (
        field.min_length is not None
        and field.max_length is not None
        and field.min_length > field.max_length
    ):
        errors.append("min_length is greater than max_length")

    for conditional in field.conditionals:
        action = conditional.action
        if isinstance(action, ExtractFieldAction):
            if action.target_field == field.name:
                errors.append("Conditional rule cannot redirect a field to itself")
            elif action.target_field not in names:
                errors.append(f"Conditional target field not found: {action.target_field}")
    return errors


def _field_warnings(field: TemplateField) -> list[str]:
    warnings: list[str] = []
    has_regex = any(isinstance(rule, RegexRule) for rule in field.rules)
    has_keyword = any(isinstance(rule, KeywordRule) for rule in field.rules)

    if field.field_type == "username" and field.validation_pattern is None:
        warnings.append("Username field should have a validation pattern")
    elif field.field_type == "ticket_number" and not has_regex:
        warnings.append("Ticket number field should have regex rules for extraction")
    elif field.field_type == "date" and not field.transformation.format_as_date:
        warnings.append("Date field should enable date formatting in transformation")
    elif field.field_type == "email" and field.validation_pattern is None:
        warnings.append("Email field should have a validation pattern")

    post_filters = [
        rule for rule in field.rules if isinstance(rule, RegexRule) and rule.zone_post_filter
    ]
    if post_filters and not field.zones:
        warnings.append("Zone post-filter rules have no zones to filter")
    if field.zones and not (has_regex or has_keyword) and field.page_range is not None:
        warnings.append("Page range does not restrict zone extraction")
    return warnings
