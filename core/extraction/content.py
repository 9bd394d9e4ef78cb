"""Document content access consumed by fingerprinting and extraction."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field, model_validator

from core.fingerprint.document import document_format_from_filename
from core.fingerprint.models import DocumentStats
from core.templates.models import ExtractionZone

# Tolerance for boundary tokens in zone containment checks.
EPS = 1e-6


class DocumentContent(Protocol):
    """Already-materialised document text, layout, and metadata."""

    @property
    def page_count(self) -> int: ...

    def full_text(self) -> str: ...

    def page_text(self, page: int) -> str: ...

    def zone_text(self, page: int, zone: ExtractionZone) -> str: ...

    def structural_stats(self) -> DocumentStats: ...

    def metadata(self) -> dict[str, Any]: ...


class PositionedToken(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    page: int = Field(ge=1)
    x0: float
    y0: float
    x1: float
    y1: float
    text: str

    @model_validator(mode="after")
    def _check_box(self) -> PositionedToken:
        if self.x1 < self.x0 or self.y1 < self.y0:
            raise ValueError(f"token box is inverted: {self.text!r}")
        return self


class DocumentInput(BaseModel):
    """JSON payload describing one extracted document."""

    model_config = ConfigDict(extra="forbid")

    document_id: str = Field(min_length=1)
    filename: str | None = None
    format: str | None = None
    pages: list[str] = Field(default_factory=list)
    tokens: list[PositionedToken] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    stats: DocumentStats | None = None

    def resolved_format(self) -> str:
        if self.format:
            return self.format.lower()
        if self.filename:
            return document_format_from_filename(self.filename)
        return "unknown"


class InMemoryDocumentContent:
    """``DocumentContent`` over page strings and positioned tokens."""

    def __init__(
        self,
        pages: list[str],
        *,
        tokens: list[PositionedToken] | None = None,
        metadata: dict[str, Any] | None = None,
        stats: DocumentStats | None = None,
    ) -> None:
        self._pages = list(pages)
        self._tokens = list(tokens or [])
        self._metadata = dict(metadata or {})
        self._stats = stats or DocumentStats(page_count=len(self._pages))

    @classmethod
    def from_input(cls, payload: DocumentInput) -> InMemoryDocumentContent:
        return cls(payload.pages, tokens=payload.tokens, metadata=payload.metadata, stats=payload.stats)

    @property
    def page_count(self) -> int:
        return self._stats.page_count

    def full_text(self) -> str:
        return "\n".join(self._pages)

    def page_text(self, page: int) -> str:
        if 1 <= page <= len(self._pages):
            return self._pages[page - 1]
        return ""

    def zone_text(self, page: int, zone: ExtractionZone) -> str:
        """Join tokens whose boxes lie fully inside the zone, top-to-bottom then left-to-right."""

        inside = [
            token
            for token in self._tokens
            if token.page == page and _bbox_fully_inside(token, zone)
        ]
        inside.sort(key=lambda token: (token.y0, token.x0))
        return " ".join(token.text for token in inside).strip()

    def structural_stats(self) -> DocumentStats:
        return self._stats

    def metadata(self) -> dict[str, Any]:
        return dict(self._metadata)


@dataclass(frozen=True)
class DocumentSource:
    """A document identity paired with its content provider."""

    document_id: str
    content: DocumentContent
    document_format: str
    filename: str | None = None

    @classmethod
    def from_input(cls, payload: DocumentInput) -> DocumentSource:
        return cls(
            document_id=payload.document_id,
            content=InMemoryDocumentContent.from_input(payload),
            document_format=payload.resolved_format(),
            filename=payload.filename,
        )


def _bbox_fully_inside(token: PositionedToken, zone: ExtractionZone) -> bool:
    return (
        token.x0 >= zone.x - EPS
        and token.y0 >= zone.y - EPS
        and token.x1 <= zone.x1 + EPS
        and token.y1 <= zone.y1 + EPS
    )
