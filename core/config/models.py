"""Matching settings value object."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from core.scoring.models import MatchingCriteria, StructureWeights


class MatchingSettings(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    criteria: MatchingCriteria = Field(default_factory=MatchingCriteria)
    enable_fuzzy_matching: bool = True
    fuzzy_matching_threshold: float = Field(default=0.8, ge=0.0, le=1.0)
    enable_fingerprint_caching: bool = True
    cache_expiration_hours: float = Field(default=24, gt=0)
    cache_max_entries: int = Field(default=10_000, ge=1)
    max_concurrent_operations: int = Field(default=4, ge=1)
    minimum_confidence: float = Field(default=0.1, ge=0.0, le=1.0)
    batch_minimum_confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    max_results: int = Field(default=10, ge=1)
    page_count_tolerance: int = Field(default=1, ge=0)
    keyword_limit: int = Field(default=50, ge=1)
    structure_weights: StructureWeights = Field(default_factory=StructureWeights)
