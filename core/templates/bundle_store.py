"""Local JSON bundle of templates and inheritance edges."""

from __future__ import annotations

import json
from pathlib import Path

from pydantic import ValidationError

from core.templates.models import ImportTemplate, InheritanceRelationship
from core.templates.store import InMemoryTemplateStore

_BUNDLE_VERSION = 1


def load_template_bundle(path: Path) -> InMemoryTemplateStore:
    """Read a bundle file into a read-only store snapshot."""

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise ValueError(f"Template bundle not found: {path}") from exc
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid template bundle JSON: {path}") from exc

    if not isinstance(raw, dict):
        raise ValueError(f"Template bundle must contain an object: {path}")
    return parse_template_bundle(raw, source=str(path))


def parse_template_bundle(raw: dict[str, object], *, source: str = "<bundle>") -> InMemoryTemplateStore:
    """Validate an already-decoded bundle payload."""

    version = raw.get("version", _BUNDLE_VERSION)
    if version != _BUNDLE_VERSION:
        raise ValueError(f"Unsupported template bundle version {version!r}: {source}")

    templates_raw = raw.get("templates", [])
    relationships_raw = raw.get("relationships", [])
    if not isinstance(templates_raw, list) or not isinstance(relationships_raw, list):
        raise ValueError(f"Template bundle 'templates' and 'relationships' must be lists: {source}")

    try:
        templates = [ImportTemplate.model_validate(item) for item in templates_raw]
        relationships = [
            InheritanceRelationship.model_validate(item) for item in relationships_raw
        ]
    except ValidationError as exc:
        raise ValueError(f"Invalid template bundle schema: {source}: {exc}") from exc

    ids = [template.id for template in templates]
    duplicates = sorted({template_id for template_id in ids if ids.count(template_id) > 1})
    if duplicates:
        raise ValueError(f"Duplicate template ids in bundle {source}: {duplicates}")

    return InMemoryTemplateStore(templates, relationships)
