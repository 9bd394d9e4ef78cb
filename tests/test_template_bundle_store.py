from __future__ import annotations

import json
from pathlib import Path

import pytest

from core.templates.bundle_store import load_template_bundle, parse_template_bundle


def _bundle() -> dict[str, object]:
    return {
        "version": 1,
        "templates": [
            {"id": "base", "name": "Base", "supported_formats": ["pdf"]},
            {"id": "child", "name": "Child", "is_active": False},
        ],
        "relationships": [
            {
                "child_id": "child",
                "parent_id": "base",
                "config": {"override_policy": "keep_parent"},
            }
        ],
    }


def test_load_bundle_builds_store(tmp_path: Path) -> None:
    path = tmp_path / "bundle.json"
    path.write_text(json.dumps(_bundle()), encoding="utf-8")

    store = load_template_bundle(path)

    assert store.get_template("base") is not None
    assert store.get_parent_id("child") == "base"
    assert store.get_child_relationships("base")[0].config.override_policy == "keep_parent"
    assert [template.id for template in store.list_templates()] == ["base", "child"]
    assert [template.id for template in store.list_templates(active_only=True)] == ["base"]


def test_missing_bundle_raises_value_error(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="Template bundle not found"):
        load_template_bundle(tmp_path / "missing.json")


def test_invalid_json_raises_value_error(tmp_path: Path) -> None:
    path = tmp_path / "bundle.json"
    path.write_text("{not json", encoding="utf-8")

    with pytest.raises(ValueError, match="Invalid template bundle JSON"):
        load_template_bundle(path)


def test_non_object_bundle_raises_value_error(tmp_path: Path) -> None:
    path = tmp_path / "bundle.json"
    path.write_text("[]", encoding="utf-8")

    with pytest.raises(ValueError, match="must contain an object"):
        load_template_bundle(path)


def test_unsupported_version_is_rejected() -> None:
    payload = _bundle()
    payload["version"] = 2

    with pytest.raises(ValueError, match="Unsupported template bundle version"):
        parse_template_bundle(payload)


def test_schema_errors_are_reported() -> None:
    payload = _bundle()
    payload["templates"] = [{"id": "base", "name": "Base", "unexpected": True}]

    with pytest.raises(ValueError, match="Invalid template bundle schema"):
        parse_template_bundle(payload)


def test_duplicate_template_ids_are_rejected() -> None:
    payload = _bundle()
    payload["templates"] = [{"id": "dup", "name": "One"}, {"id": "dup", "name": "Two"}]

    with pytest.raises(ValueError, match="Duplicate template ids"):
        parse_template_bundle(payload)


def test_rule_kinds_are_discriminated() -> None:
    payload = {
        "templates": [
            {
                "id": "t",
                "name": "T",
                "fields": [
                    {
                        "name": "ticket",
                        "rules": [
                            {"kind": "regex", "pattern": "INC-\\d+", "priority": 2},
                            {"kind": "keyword", "keyword": "Ticket", "priority": 1},
                        ],
                    }
                ],
            }
        ]
    }

    store = parse_template_bundle(payload)
    template = store.get_template("t")

    assert template is not None
    assert [rule.kind for rule in template.fields[0].ordered_rules()] == ["keyword", "regex"]
