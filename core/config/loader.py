"""Settings loading from YAML with environment overrides."""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path

import yaml  # type: ignore[import-untyped]
from pydantic import ValidationError

from core.config.models import MatchingSettings

DEFAULT_SETTINGS_PATH = Path(__file__).with_name("matching.yaml")


def load_settings(
    path: Path | None = None, *, environ: Mapping[str, str] | None = None
) -> MatchingSettings:
    """Load and validate matching settings, then apply ``DOCMATCH_*`` overrides."""

    settings_path = path or DEFAULT_SETTINGS_PATH

    try:
        raw = yaml.safe_load(settings_path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise ValueError(f"Settings file not found: {settings_path}") from exc
    except yaml.YAMLError as exc:
        raise ValueError(f"Invalid YAML in settings file: {settings_path}") from exc

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ValueError(f"Settings file must contain a mapping: {settings_path}")

    try:
        settings = MatchingSettings.model_validate(raw)
    except ValidationError as exc:
        raise ValueError(f"Invalid settings schema: {settings_path}") from exc

    return apply_env_overrides(settings, os.environ if environ is None else environ)


def apply_env_overrides(settings: MatchingSettings, environ: Mapping[str, str]) -> MatchingSettings:
    updates: dict[str, object] = {}

    max_ops = _positive_int(environ.get("DOCMATCH_MAX_CONCURRENT_OPERATIONS"))
    if max_ops is not None:
        updates["max_concurrent_operations"] = max_ops

    ttl_hours = _positive_float(environ.get("DOCMATCH_CACHE_EXPIRATION_HOURS"))
    if ttl_hours is not None:
        updates["cache_expiration_hours"] = ttl_hours

    max_entries = _positive_int(environ.get("DOCMATCH_CACHE_MAX_ENTRIES"))
    if max_entries is not None:
        updates["cache_max_entries"] = max_entries

    minimum = _unit_float(environ.get("DOCMATCH_MINIMUM_CONFIDENCE"))
    if minimum is not None:
        updates["minimum_confidence"] = minimum

    if not updates:
        return settings
    return settings.model_copy(update=updates)


def _positive_int(raw: str | None) -> int | None:
    if raw is None:
        return None
    try:
        parsed = int(raw)
    except ValueError:
        return None
    return parsed if parsed > 0 else None


def _positive_float(raw: str | None) -> float | None:
    if raw is None:
        return None
    try:
        parsed = float(raw)
    except ValueError:
        return None
    return parsed if parsed > 0 else None


def _unit_float(raw: str | None) -> float | None:
    if raw is None:
        return None
    try:
        parsed = float(raw)
    except ValueError:
        return None
    return parsed if 0.0 <= parsed <= 1.0 else None
