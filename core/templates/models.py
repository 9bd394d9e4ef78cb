"""Data models for import templates, field rules, and inheritance."""

from __future__ import annotations

from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

FieldType = Literal[
    "text",
    "username",
    "ticket_number",
    "date",
    "email",
    "number",
    "boolean",
    "custom",
    "approval_status",
    "priority",
    "category",
]
LayoutType = Literal["standard", "form", "table", "report", "letter", "technical", "scanned"]
ConditionOperator = Literal[
    "contains",
    "not_contains",
    "equals",
    "not_equals",
    "regex_match",
    "greater_than",
    "less_than",
]
OverridePolicy = Literal["replace", "keep_parent"]


class _FrozenModel(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class RegexRule(_FrozenModel):
    """Regex extraction rule; ``group=None`` takes the whole match."""

    kind: Literal["regex"] = "regex"
    pattern: str
    priority: int = 0
    group: int | None = Field(default=None, ge=0)
    zone_post_filter: bool = False


class KeywordRule(_FrozenModel):
    """Keyword-anchored rule reading a fixed window after the keyword."""

    kind: Literal["keyword"] = "keyword"
    keyword: str = Field(min_length=1)
    priority: int = 0
    window: int = Field(default=100, ge=1)
    mandatory: bool = False


ExtractionRule = Annotated[RegexRule | KeywordRule, Field(discriminator="kind")]


class ExtractionZone(_FrozenModel):
    """Page-relative rectangle in document coordinate space."""

    page: int = Field(default=1, ge=1)
    x: float = Field(ge=0)
    y: float = Field(ge=0)
    width: float = Field(ge=0)
    height: float = Field(ge=0)
    name: str = ""
    ocr_hint: str | None = None

    @property
    def x1(self) -> float:
        return self.x + self.width

    @property
    def y1(self) -> float:
        return self.y + self.height


class Condition(_FrozenModel):
    """Predicate over the document text, or one metadata value when keyed."""

    operator: ConditionOperator = "contains"
    value: str
    case_sensitive: bool = False
    metadata_key: str | None = None


class ExtractFieldAction(_FrozenModel):
    kind: Literal["extract_field"] = "extract_field"
    target_field: str


class SetDefaultAction(_FrozenModel):
    kind: Literal["set_default"] = "set_default"
    value: str


ConditionalAction = Annotated[
    ExtractFieldAction | SetDefaultAction, Field(discriminator="kind")
]


class ConditionalExtractionRule(_FrozenModel):
    condition: Condition
    action: ConditionalAction


class DataTransformation(_FrozenModel):
    """Post-extraction value normalisation applied before validation."""

    trim_whitespace: bool = True
    to_lower_case: bool = False
    to_upper_case: bool = False
    remove_special_characters: bool = False
    format_as_date: bool = False
    date_format: str = "%Y-%m-%d"


class PageRange(_FrozenModel):
    start: int = Field(default=1, ge=1)
    end: int | None = Field(default=None, ge=1)

    @model_validator(mode="after")
    def _check_bounds(self) -> PageRange:
        if self.end is not None and self.end < self.start:
            raise ValueError(f"page range end {self.end} is before start {self.start}")
        return self

    def pages(self, page_count: int) -> list[int]:
        last = page_count if self.end is None else min(self.end, page_count)
        return list(range(self.start, last + 1))


class TemplateField(_FrozenModel):
    """One extractable field and its ordered rules, zones, and conditionals."""

    name: str = Field(min_length=1)
    display_name: str = ""
    field_type: FieldType = "text"
    required: bool = False
    rules: tuple[ExtractionRule, ...] = ()
    zones: tuple[ExtractionZone, ...] = ()
    conditionals: tuple[ConditionalExtractionRule, ...] = ()
    default_value: str | None = None
    validation_pattern: str | None = None
    min_length: int | None = Field(default=None, ge=0)
    max_length: int | None = Field(default=None, ge=0)
    transformation: DataTransformation = Field(default_factory=DataTransformation)
    page_range: PageRange | None = None
    allow_multiple_values: bool = False
    multi_value_separator: str = "; "

    def ordered_rules(self) -> list[ExtractionRule]:
        """Rules by ascending priority; ``sorted`` keeps declaration order on ties."""

        return sorted(self.rules, key=lambda rule: rule.priority)


class TemplateMatchingHints(_FrozenModel):
    """Template-level expectations used only for document matching."""

    required_keywords: tuple[str, ...] = ()
    optional_keywords: tuple[str, ...] = ()
    filename_patterns: tuple[str, ...] = ()
    metadata: dict[str, str] = Field(default_factory=dict)
    expected_patterns: tuple[str, ...] = ()
    expected_page_count: int | None = Field(default=None, ge=1)
    expected_layout: LayoutType | None = None
    expects_tables: bool | None = None
    expects_images: bool | None = None
    expects_scanned: bool | None = None

    def is_empty(self) -> bool:
        return self == TemplateMatchingHints()


class ImportTemplate(_FrozenModel):
    """Immutable template snapshot handed over by the template store."""

    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    description: str | None = None
    category: str = "General"
    fields: tuple[TemplateField, ...] = ()
    supported_formats: tuple[str, ...] = ()
    parent_id: str | None = None
    version: int = Field(default=1, ge=1)
    is_active: bool = True
    matching: TemplateMatchingHints = Field(default_factory=TemplateMatchingHints)

    @model_validator(mode="after")
    def _check_unique_field_names(self) -> ImportTemplate:
        seen: set[str] = set()
        duplicates: list[str] = []
        for field in self.fields:
            if field.name in seen:
                duplicates.append(field.name)
            seen.add(field.name)
        if duplicates:
            raise ValueError(f"Duplicate field names in template {self.id}: {sorted(duplicates)}")
        return self

    def field(self, name: str) -> TemplateField | None:
        for field in self.fields:
            if field.name == name:
                return field
        return None


class InheritanceConfig(_FrozenModel):
    """Per-edge merge rules applied when a child inherits from its parent."""

    inherited_field_types: frozenset[FieldType] | None = None
    append_only_field_types: frozenset[FieldType] = frozenset()
    override_policy: OverridePolicy = "replace"

    def inherits(self, field_type: FieldType) -> bool:
        return self.inherited_field_types is None or field_type in self.inherited_field_types


class InheritanceRelationship(_FrozenModel):
    child_id: str
    parent_id: str
    config: InheritanceConfig = Field(default_factory=InheritanceConfig)


class EffectiveTemplate(_FrozenModel):
    """Flattened template after walking its ancestor chain."""

    template: ImportTemplate
    fields: tuple[TemplateField, ...]
    own_fields: tuple[TemplateField, ...]
    ancestor_chain: tuple[str, ...]
    field_origins: dict[str, str] = Field(default_factory=dict)
    supported_formats: tuple[str, ...] = ()
    matching: TemplateMatchingHints = Field(default_factory=TemplateMatchingHints)

    @property
    def id(self) -> str:
        return self.template.id

    @property
    def name(self) -> str:
        return self.template.name

    @property
    def version(self) -> int:
        return self.template.version

    def field(self, name: str) -> TemplateField | None:
        for field in self.fields:
            if field.name == name:
                return field
        return None

    def inherited_field_names(self) -> list[str]:
        return [name for name, origin in self.field_origins.items() if origin != self.id]

    @classmethod
    def from_template(cls, template: ImportTemplate) -> EffectiveTemplate:
        """Wrap a template without ancestors as its own effective template."""

        return cls(
            template=template,
            fields=template.fields,
            own_fields=template.fields,
            ancestor_chain=(template.id,),
            field_origins={field.name: template.id for field in template.fields},
            supported_formats=template.supported_formats,
            matching=template.matching,
        )
