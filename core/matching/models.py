"""Batch result models keyed by document identity."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from core.fingerprint.models import DocumentFingerprint
from core.scoring.models import TemplateMatchResult


class DocumentError(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    document_id: str
    error_type: str
    message: str


class BatchMatchResult(BaseModel):
    """Per-document outcome of a batch match.

    ``document_matches`` holds ``None`` for documents that finished without a
    match above the threshold or that failed; failures also appear in
    ``errors``. Documents never started because of cancellation are listed in
    ``cancelled_documents`` only.
    """

    model_config = ConfigDict(extra="forbid")

    document_matches: dict[str, TemplateMatchResult | None] = Field(default_factory=dict)
    unmatched_documents: list[str] = Field(default_factory=list)
    errors: dict[str, DocumentError] = Field(default_factory=dict)
    success_rate: float = 0.0
    average_confidence: float = 0.0
    total_processing_ms: int = 0
    cancelled: bool = False
    cancelled_documents: list[str] = Field(default_factory=list)


class FingerprintBatchResult(BaseModel):
    model_config = ConfigDict(extra="forbid")

    fingerprints: dict[str, DocumentFingerprint] = Field(default_factory=dict)
    errors: dict[str, DocumentError] = Field(default_factory=dict)
    total_processing_ms: int = 0
    cancelled: bool = False
    cancelled_documents: list[str] = Field(default_factory=list)
