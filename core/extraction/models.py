"""Extraction result models."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

DiagnosticReason = Literal[
    "missing_pattern",
    "validation_rejected",
    "zone_out_of_page_range",
    "keyword_not_found",
    "zone_empty",
    "conditional_target_missing",
    "page_out_of_range",
]
ExtractionMethod = Literal["regex", "keyword", "zone", "conditional", "default"]


class FieldDiagnostic(BaseModel):
    """Soft failure recorded while trying one rule, zone, or conditional."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    reason: DiagnosticReason
    message: str
    rule_index: int | None = None
    zone_index: int | None = None
    page: int | None = None


class FieldExtractionResult(BaseModel):
    model_config = ConfigDict(extra="forbid")

    field_name: str
    required: bool = False
    resolved: bool = False
    value: str | None = None
    all_values: list[str] = Field(default_factory=list)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    method: ExtractionMethod | None = None
    page: int | None = None
    diagnostics: list[FieldDiagnostic] = Field(default_factory=list)

    def failure_reasons(self) -> list[str]:
        return list(dict.fromkeys(diagnostic.reason for diagnostic in self.diagnostics))


class ExtractionResult(BaseModel):
    """Best-effort extraction outcome for one document and template."""

    model_config = ConfigDict(extra="forbid")

    template_id: str
    template_version: int
    fields: dict[str, FieldExtractionResult] = Field(default_factory=dict)
    overall_confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    failed_fields: dict[str, list[str]] = Field(default_factory=dict)
    warnings: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    processing_ms: int = 0

    def values(self) -> dict[str, str | None]:
        return {name: result.value for name, result in self.fields.items()}
