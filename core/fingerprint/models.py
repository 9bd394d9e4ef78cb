"""Fingerprint value objects compared by the confidence scorer."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from core.templates.models import LayoutType


class _FrozenModel(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class DocumentStats(_FrozenModel):
    """Structural facts supplied by the document content provider.

    ``has_tables`` and ``word_count`` may be left unset; the builder then
    derives them from the text.
    """

    page_count: int = Field(default=1, ge=0)
    word_count: int | None = Field(default=None, ge=0)
    has_tables: bool | None = None
    has_images: bool = False
    is_scanned: bool = False


class DocumentStructure(_FrozenModel):
    page_count: int = Field(default=0, ge=0)
    word_count: int = Field(default=0, ge=0)
    has_tables: bool = False
    has_images: bool = False
    is_scanned: bool = False
    layout_type: LayoutType = "standard"


class DocumentFingerprint(_FrozenModel):
    """Comparable summary of one document; a pure function of its inputs."""

    document_format: str
    filename_stem: str | None = None
    metadata: dict[str, str] = Field(default_factory=dict)
    content_keywords: tuple[str, ...] = ()
    structure: DocumentStructure = Field(default_factory=DocumentStructure)
    text_patterns: tuple[str, ...] = ()
    language: str = "en"
    content_hash: str
    fingerprint_key: str


class ExpectedStructure(_FrozenModel):
    """Structure a template expects; ``None`` means the dimension is not declared."""

    page_count: int | None = Field(default=None, ge=1)
    has_tables: bool | None = None
    has_images: bool | None = None
    is_scanned: bool | None = None
    layout_type: LayoutType | None = None

    def declared(self) -> dict[str, object]:
        return {key: value for key, value in self.model_dump().items() if value is not None}


class TemplateFingerprint(_FrozenModel):
    template_id: str
    template_name: str
    template_version: int = 1
    supported_formats: tuple[str, ...] = ()
    expected_keywords: tuple[str, ...] = ()
    required_keywords: tuple[str, ...] = ()
    expected_patterns: tuple[str, ...] = ()
    expected_structure: ExpectedStructure = Field(default_factory=ExpectedStructure)
    expected_metadata: dict[str, str] = Field(default_factory=dict)
    filename_patterns: tuple[str, ...] = ()
    name_tokens: tuple[str, ...] = ()
    complexity_score: float = Field(default=0.0, ge=0.0)
    fingerprint_key: str = ""
