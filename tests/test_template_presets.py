from __future__ import annotations

from core.extraction.content import InMemoryDocumentContent
from core.extraction.engine import ExtractionEngine
from core.templates.models import ImportTemplate
from core.templates.presets import custom_field, date_field, ticket_number_field, username_field


def _run(*pages: str):
    template = ImportTemplate(
        id="presets",
        name="Presets",
        supported_formats=("pdf",),
        fields=(username_field(), ticket_number_field(), date_field()),
    )
    return ExtractionEngine().extract(template, InMemoryDocumentContent(list(pages)))


def test_presets_extract_common_fields() -> None:
    result = _run("Author: John.Smith\nTicket: inc-4521\nDate: 03/15/2024")

    assert result.values() == {
        "document_author": "john.smith",
        "ticket_number": "INC-4521",
        "document_date": "2024-03-15",
    }
    assert result.overall_confidence == 1.0


def test_ticket_preset_collects_every_ticket() -> None:
    result = _run("Created by: ops\nTicket: ABC-1234 duplicates REQ-99812")

    item = result.fields["ticket_number"]
    assert item.all_values == ["ABC-1234", "REQ-99812"]
    assert item.value == "ABC-1234; REQ-99812"


def test_required_author_missing_is_warned() -> None:
    result = _run("Ticket: ABC-1234")

    assert result.fields["document_author"].resolved is False
    assert any("Required field 'document_author'" in warning for warning in result.warnings)
    assert result.overall_confidence == 0.0


def test_custom_field_defaults() -> None:
    field = custom_field("notes", "Notes")

    assert field.field_type == "custom"
    assert field.min_length == 1
    assert field.max_length == 500
    assert field.rules == ()
