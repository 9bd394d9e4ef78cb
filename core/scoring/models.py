"""Scoring inputs and results for document/template matching."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class MatchingCriteria(BaseModel):
    """Weights of the six sub-scores plus the auto-apply threshold."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    format_weight: float = Field(default=0.2, ge=0.0)
    keyword_weight: float = Field(default=0.3, ge=0.0)
    pattern_weight: float = Field(default=0.2, ge=0.0)
    structure_weight: float = Field(default=0.15, ge=0.0)
    metadata_weight: float = Field(default=0.1, ge=0.0)
    filename_weight: float = Field(default=0.05, ge=0.0)
    auto_application_threshold: float = Field(default=0.8, ge=0.0, le=1.0)
    # Accepted for compatibility with stored criteria; no adaptive scorer exists.
    use_machine_learning: bool = False

    def total_weight(self) -> float:
        return (
            self.format_weight
            + self.keyword_weight
            + self.pattern_weight
            + self.structure_weight
            + self.metadata_weight
            + self.filename_weight
        )

    def normalized(self) -> MatchingCriteria:
        """Rescale weights to sum to 1 when they exceed it; otherwise return self."""

        total = self.total_weight()
        if total <= 1.0:
            return self
        return self.model_copy(
            update={
                "format_weight": self.format_weight / total,
                "keyword_weight": self.keyword_weight / total,
                "pattern_weight": self.pattern_weight / total,
                "structure_weight": self.structure_weight / total,
                "metadata_weight": self.metadata_weight / total,
                "filename_weight": self.filename_weight / total,
            }
        )


class StructureWeights(BaseModel):
    """Relative weight of each declared structure dimension."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    page_count: float = Field(default=1.0, ge=0.0)
    has_tables: float = Field(default=1.0, ge=0.0)
    has_images: float = Field(default=1.0, ge=0.0)
    is_scanned: float = Field(default=1.0, ge=0.0)
    layout_type: float = Field(default=1.0, ge=0.0)


class ConfidenceScore(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    format: float = Field(default=0.0, ge=0.0, le=1.0)
    keyword: float = Field(default=0.0, ge=0.0, le=1.0)
    pattern: float = Field(default=0.0, ge=0.0, le=1.0)
    structure: float = Field(default=0.0, ge=0.0, le=1.0)
    metadata: float = Field(default=0.0, ge=0.0, le=1.0)
    filename: float = Field(default=0.0, ge=0.0, le=1.0)
    overall: float = Field(default=0.0, ge=0.0, le=1.0)
    required_keywords_satisfied: bool = True
    missing_required_keywords: tuple[str, ...] = ()
    detailed_scores: dict[str, float] = Field(default_factory=dict)


class TemplateMatchResult(BaseModel):
    """One template ranked against one document."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    template_id: str
    template_name: str
    template_version: int
    confidence: float
    breakdown: ConfidenceScore
    reasons: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    auto_apply: bool = False
    complexity_score: float = 0.0
    matching_time_ms: int = 0
    metadata: dict[str, Any] = Field(default_factory=dict)
