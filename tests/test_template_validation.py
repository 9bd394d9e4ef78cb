from __future__ import annotations

import re

import pytest

from core.templates.models import (
    Condition,
    ConditionalExtractionRule,
    DataTransformation,
    ExtractFieldAction,
    ExtractionZone,
    ImportTemplate,
    KeywordRule,
    RegexRule,
    TemplateField,
)
from core.templates.presets import date_field, ticket_number_field, username_field
from core.templates.validation import compile_pattern, validate_active_set, validate_template
from core.utils.errors import InvalidPatternError


def _template(*fields: TemplateField, **overrides: object) -> ImportTemplate:
    payload: dict[str, object] = {
        "id": "t1",
        "name": "Incident",
        "supported_formats": ("pdf",),
        "fields": fields,
    }
    payload.update(overrides)
    return ImportTemplate.model_validate(payload)


def test_preset_template_is_valid() -> None:
    report = validate_template(_template(username_field(), ticket_number_field(), date_field()))

    assert report.is_valid is True
    assert report.errors == []
    assert report.template_id == "t1"


def test_template_level_errors() -> None:
    report = validate_template(_template(name=" ", supported_formats=()))

    assert report.is_valid is False
    assert "Template name is required" in report.errors
    assert "Template must have at least one field" in report.errors
    assert "Template must support at least one document format" in report.errors


def test_invalid_regex_is_an_error_not_an_exception() -> None:
    field = TemplateField(name="broken", rules=(RegexRule(pattern="(unclosed"),))

    report = validate_template(_template(field))

    assert report.is_valid is False
    assert "Field 1 (broken): Invalid regex pattern: (unclosed" in report.errors


def test_capture_group_out_of_range() -> None:
    field = TemplateField(name="ticket", rules=(RegexRule(pattern=r"INC-(\d+)", group=2),))

    report = validate_template(_template(field))

    assert any("Capture group 2 out of range" in error for error in report.errors)


def test_field_name_and_rule_coverage() -> None:
    report = validate_template(_template(TemplateField(name="1bad")))

    assert any("Field name must start with a letter" in error for error in report.errors)
    assert any("at least one rule, zone, conditional, or default value" in error for error in report.errors)


def test_conditional_targets_are_checked() -> None:
    field = TemplateField(
        name="status",
        rules=(KeywordRule(keyword="Status"),),
        conditionals=(
            ConditionalExtractionRule(
                condition=Condition(value="urgent"),
                action=ExtractFieldAction(target_field="status"),
            ),
            ConditionalExtractionRule(
                condition=Condition(value="urgent"),
                action=ExtractFieldAction(target_field="nowhere"),
            ),
        ),
    )

    report = validate_template(_template(field))

    assert "Field 1 (status): Conditional rule cannot redirect a field to itself" in report.errors
    assert "Field 1 (status): Conditional target field not found: nowhere" in report.errors


def test_length_bounds_must_be_ordered() -> None:
    field = TemplateField(name="code", default_value="x", min_length=5, max_length=2)

    report = validate_template(_template(field))

    assert "Field 1 (code): min_length is greater than max_length" in report.errors


def test_field_type_warnings() -> None:
    fields = (
        TemplateField(name="author", field_type="username", rules=(KeywordRule(keyword="Author"),)),
        TemplateField(name="ticket", field_type="ticket_number", rules=(KeywordRule(keyword="Ticket"),)),
        TemplateField(
            name="created",
            field_type="date",
            rules=(RegexRule(pattern=r"\d{4}-\d{2}-\d{2}"),),
            transformation=DataTransformation(),
        ),
        TemplateField(
            name="stamp",
            rules=(RegexRule(pattern=r"\d+", zone_post_filter=True),),
            zones=(),
            default_value="0",
        ),
    )

    report = validate_template(_template(*fields))

    assert report.is_valid is True
    assert "Field 1 (author): Username field should have a validation pattern" in report.warnings
    assert "Field 2 (ticket): Ticket number field should have regex rules for extraction" in report.warnings
    assert "Field 3 (created): Date field should enable date formatting in transformation" in report.warnings
    assert "Field 4 (stamp): Zone post-filter rules have no zones to filter" in report.warnings


def test_zone_only_field_is_valid() -> None:
    field = TemplateField(
        name="total",
        zones=(ExtractionZone(page=1, x=0, y=0, width=100, height=20),),
    )

    assert validate_template(_template(field)).is_valid is True


def test_invalid_filename_pattern() -> None:
    template = _template(
        TemplateField(name="a", default_value="x"),
        matching={"filename_patterns": ["[oops"]},
    )

    report = validate_template(template)

    assert "Invalid filename pattern: [oops" in report.errors


def test_active_set_name_clashes() -> None:
    templates = [
        _template(id="a", name="Invoice"),
        _template(id="b", name="Invoice"),
        _template(id="c", name="Invoice", is_active=False),
        _template(id="d", name="invoice"),
    ]

    assert validate_active_set(templates) == ["Duplicate active template name: Invoice"]


def test_compile_pattern_uses_extraction_flags() -> None:
    compiled = compile_pattern(r"^total$")

    assert compiled.flags & re.IGNORECASE
    assert compiled.flags & re.MULTILINE
    assert compiled.search("Header\nTOTAL") is not None


def test_compile_pattern_raises_with_context() -> None:
    with pytest.raises(InvalidPatternError) as exc_info:
        compile_pattern("(oops", field_name="ticket", template_id="t1")

    assert exc_info.value.pattern == "(oops"
    assert exc_info.value.field_name == "ticket"
    assert exc_info.value.template_id == "t1"
