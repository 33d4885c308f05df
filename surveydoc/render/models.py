"""Render pipeline models."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from surveydoc.mapping.models import FieldMapping


class CompletenessReport(BaseModel):
    """Pre-flight check of field values against mappings."""

    model_config = ConfigDict(extra="forbid")

    is_valid: bool
    missing_required: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class TemplateJob(BaseModel):
    """One template of a multi-template generation request."""

    model_config = ConfigDict(extra="forbid")

    template_id: str | None = None
    file_name: str = "template.docx"
    template_bytes: bytes
    mappings: list[FieldMapping] = Field(default_factory=list)


class BatchItemResult(BaseModel):
    """Outcome of rendering one template of a batch."""

    model_config = ConfigDict(extra="forbid")

    template_id: str | None = None
    file_name: str
    document: bytes | None = None
    error_type: str | None = None
    error_message: str | None = None

    @property
    def ok(self) -> bool:
        return self.document is not None
