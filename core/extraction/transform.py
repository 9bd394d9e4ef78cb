"""Value normalisation and validation applied to extracted candidates."""

from __future__ import annotations

import re

from dateutil import parser as date_parser
from dateutil.parser import ParserError

from core.templates.models import DataTransformation, TemplateField

_SPECIAL_CHARS_RE = re.compile(r"[^a-zA-Z0-9\s]")


def apply_transformation(value: str, transformation: DataTransformation) -> str:
    if not value:
        return value

    result = value
    if transformation.trim_whitespace:
        result = result.strip()
    if transformation.to_lower_case:
        result = result.lower()
    if transformation.to_upper_case:
        result = result.upper()
    if transformation.remove_special_characters:
        result = _SPECIAL_CHARS_RE.sub("", result)
    if transformation.format_as_date:
        result = _format_date(result, transformation.date_format)
    return result


def validation_failure(
    value: str, field: TemplateField, validation_re: re.Pattern[str] | None
) -> str | None:
    """Return a rejection message, or ``None`` when ``value`` is acceptable."""

    if field.min_length is not None and len(value) < field.min_length:
        return f"Value is too short (minimum {field.min_length} characters)"
    if field.max_length is not None and len(value) > field.max_length:
        return f"Value is too long (maximum {field.max_length} characters)"
    if validation_re is not None and not validation_re.search(value):
        return "Value does not match required pattern"
    return None


def _format_date(value: str, date_format: str) -> str:
    # Unparseable dates are kept as extracted.
    try:
        parsed = date_parser.parse(value)
    except (ParserError, OverflowError, ValueError):
        return value
    return parsed.strftime(date_format)
