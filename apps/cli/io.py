"""CLI I/O helpers: document payload loading and atomic JSON output."""

from __future__ import annotations

import json
import tempfile
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from core.extraction.content import DocumentInput


def load_document_input(path: Path) -> DocumentInput:
    """Read one document JSON payload."""

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise ValueError(f"Document file not found: {path}") from exc
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid document JSON: {path}") from exc

    if not isinstance(raw, dict):
        raise ValueError(f"Document JSON must be an object: {path}")

    try:
        return DocumentInput.model_validate(raw)
    except ValidationError as exc:
        raise ValueError(f"Invalid document schema: {path}: {exc}") from exc


def dump_payload(payload: dict[str, Any]) -> str:
    return json.dumps(payload, ensure_ascii=False, sort_keys=True, indent=2)


def write_json_atomic(path: Path, payload: dict[str, Any]) -> None:
    """Write JSON via a temporary file in the target directory, then replace."""

    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(
        mode="w",
        encoding="utf-8",
        dir=path.parent,
        delete=False,
        prefix=f"{path.name}.",
        suffix=".tmp",
    ) as tmp:
        tmp_path = Path(tmp.name)
        json.dump(payload, tmp, ensure_ascii=False, sort_keys=True, separators=(",", ":"))

    tmp_path.replace(path)
