from __future__ import annotations

import json
from pathlib import Path

import pytest

from apps.cli.io import dump_payload, load_document_input, write_json_atomic


def test_load_document_input(tmp_path: Path) -> None:
    path = tmp_path / "doc.json"
    path.write_text(
        json.dumps({"document_id": "doc-1", "filename": "a.pdf", "pages": ["hello"]}),
        encoding="utf-8",
    )

    payload = load_document_input(path)

    assert payload.document_id == "doc-1"
    assert payload.pages == ["hello"]
    assert payload.resolved_format() == "pdf"


def test_missing_document_file(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="Document file not found"):
        load_document_input(tmp_path / "missing.json")


def test_invalid_document_json(tmp_path: Path) -> None:
    path = tmp_path / "doc.json"
    path.write_text("{oops", encoding="utf-8")

    with pytest.raises(ValueError, match="Invalid document JSON"):
        load_document_input(path)


def test_document_json_must_be_object(tmp_path: Path) -> None:
    path = tmp_path / "doc.json"
    path.write_text("[1, 2]", encoding="utf-8")

    with pytest.raises(ValueError, match="must be an object"):
        load_document_input(path)


def test_document_schema_errors(tmp_path: Path) -> None:
    path = tmp_path / "doc.json"
    path.write_text(json.dumps({"document_id": "doc-1", "pagez": []}), encoding="utf-8")

    with pytest.raises(ValueError, match="Invalid document schema"):
        load_document_input(path)


def test_write_json_atomic_creates_parent_and_cleans_tmp(tmp_path: Path) -> None:
    target = tmp_path / "nested" / "result.json"

    write_json_atomic(target, {"b": 1, "a": "é"})
    write_json_atomic(target, {"c": 2})

    assert json.loads(target.read_text(encoding="utf-8")) == {"c": 2}
    assert [path.name for path in target.parent.iterdir()] == ["result.json"]


def test_dump_payload_is_sorted_and_indented() -> None:
    assert dump_payload({"b": 1, "a": 2}) == '{\n  "a": 2,\n  "b": 1\n}'
