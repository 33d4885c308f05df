"""Mapping registry models and the portable snapshot schema."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from surveydoc.templates.models import PlaceholderKind

SNAPSHOT_VERSION = "1.0"


class FieldMapping(BaseModel):
    """Association between a data field and a template placeholder."""

    model_config = ConfigDict(extra="forbid")

    id: str
    data_field: str
    placeholder_name: str
    placeholder_kind: PlaceholderKind
    required: bool
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    notes: str | None = None


class MappingSuggestion(BaseModel):
    """Auto-suggested mapping produced by name similarity."""

    model_config = ConfigDict(extra="forbid")

    data_field: str
    placeholder_name: str
    confidence: float
    reason: str


class MappingValidation(BaseModel):
    """Hard errors and warnings for the current mapping set."""

    model_config = ConfigDict(extra="forbid")

    is_valid: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    mapped_count: int
    required_count: int
    completeness: int


class MappingStatistics(BaseModel):
    """Aggregate counts over the current mapping set."""

    model_config = ConfigDict(extra="forbid")

    total_mappings: int
    by_kind: dict[str, int]
    unmapped_fields: int
    unmapped_placeholders: int
    completeness: int


class SnapshotPlaceholder(BaseModel):
    """Placeholder entry of an exported snapshot."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    type: PlaceholderKind
    is_required: bool = Field(default=False, alias="isRequired")


class SnapshotMapping(BaseModel):
    """Mapping entry of an exported snapshot."""

    model_config = ConfigDict(populate_by_name=True)

    survey_field: str = Field(alias="surveyField")
    placeholder: str
    placeholder_type: PlaceholderKind | None = Field(default=None, alias="placeholderType")
    is_required: bool = Field(default=False, alias="isRequired")
    notes: str | None = None


class MappingSnapshot(BaseModel):
    """Portable JSON shape for mapping export/import."""

    model_config = ConfigDict(populate_by_name=True)

    version: str = SNAPSHOT_VERSION
    created_at: str = Field(alias="createdAt")
    survey_fields: list[str] = Field(default_factory=list, alias="surveyFields")
    placeholders: list[SnapshotPlaceholder] = Field(default_factory=list)
    mappings: list[SnapshotMapping] = Field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)
