"""Ready-made field definitions for author, ticket number, and date fields."""

from __future__ import annotations

from core.templates.models import (
    DataTransformation,
    FieldType,
    KeywordRule,
    RegexRule,
    TemplateField,
)


def username_field(name: str = "document_author", display_name: str = "Document Author") -> TemplateField:
    return TemplateField(
        name=name,
        display_name=display_name,
        field_type="username",
        required=True,
        rules=(
            RegexRule(pattern=r"author:?\s*([a-zA-Z]+\.?[a-zA-Z]+)", group=1, priority=1),
            RegexRule(pattern=r"created\s+by:?\s*([a-zA-Z]+\.?[a-zA-Z]+)", group=1, priority=2),
            RegexRule(pattern=r"submitted\s+by:?\s*([a-zA-Z]+\.?[a-zA-Z]+)", group=1, priority=3),
            RegexRule(pattern=r"([a-zA-Z]+\.[a-zA-Z]+)@\w+\.\w+", group=1, priority=4),
            KeywordRule(keyword="requestor", priority=5),
        ),
        validation_pattern=r"^[a-zA-Z]+\.?[a-zA-Z]+$",
        min_length=2,
        max_length=50,
        transformation=DataTransformation(to_lower_case=True),
    )


def ticket_number_field(name: str = "ticket_number", display_name: str = "Ticket Number") -> TemplateField:
    return TemplateField(
        name=name,
        display_name=display_name,
        field_type="ticket_number",
        rules=(
            RegexRule(pattern=r"ticket\s*#?:?\s*([A-Z]+-?\d+)", group=1, priority=1),
            RegexRule(pattern=r"case\s*#?:?\s*([A-Z]+-?\d+)", group=1, priority=2),
            RegexRule(pattern=r"request\s*#?:?\s*([A-Z]+-?\d+)", group=1, priority=3),
            RegexRule(pattern=r"incident\s*#?:?\s*([A-Z]+-?\d+)", group=1, priority=4),
            RegexRule(pattern=r"\b([A-Z]{2,5}-\d{3,8})\b", group=1, priority=5),
            RegexRule(pattern=r"\b(INC\d{7,10})\b", group=1, priority=6),
            RegexRule(pattern=r"\b(REQ\d{7,10})\b", group=1, priority=7),
        ),
        validation_pattern=r"^[A-Z]+-?\d+$",
        min_length=3,
        max_length=20,
        transformation=DataTransformation(to_upper_case=True),
        allow_multiple_values=True,
    )


def date_field(name: str = "document_date", display_name: str = "Document Date") -> TemplateField:
    return TemplateField(
        name=name,
        display_name=display_name,
        field_type="date",
        rules=(
            RegexRule(pattern=r"date:?\s*(\d{1,2}[/-]\d{1,2}[/-]\d{2,4})", group=1, priority=1),
            RegexRule(pattern=r"created:?\s*(\d{1,2}[/-]\d{1,2}[/-]\d{2,4})", group=1, priority=2),
            RegexRule(pattern=r"\b(\d{4}[/-]\d{1,2}[/-]\d{1,2})\b", group=1, priority=3),
            RegexRule(pattern=r"\b(\d{1,2}[/-]\d{1,2}[/-]\d{2,4})\b", group=1, priority=4),
            RegexRule(
                pattern=(
                    r"\b((?:Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec)[a-z]*\.?"
                    r"\s+\d{1,2},?\s+\d{4})\b"
                ),
                group=1,
                priority=5,
            ),
        ),
        min_length=8,
        max_length=20,
        transformation=DataTransformation(format_as_date=True),
    )


def custom_field(name: str, display_name: str, field_type: FieldType = "custom") -> TemplateField:
    """Bare field with length limits; callers add rules or zones."""

    return TemplateField(
        name=name,
        display_name=display_name,
        field_type=field_type,
        min_length=1,
        max_length=500,
    )
