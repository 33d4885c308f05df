"""Orchestration for mapping-driven document generation."""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from pathlib import PurePosixPath
from typing import Any

from surveydoc.mapping.models import FieldMapping
from surveydoc.render.docx_renderer import render_docx
from surveydoc.render.models import BatchItemResult, TemplateJob
from surveydoc.render.template_data import build_template_data
from surveydoc.utils.errors import (
    BatchRenderError,
    FormatError,
    TemplateProcessingError,
    ValidationError,
)

logger = logging.getLogger(__name__)

DEFAULT_EXTENSION = "docx"
DEFAULT_TITLE = "document"
DEFAULT_MAX_WORKERS = 4

_TITLE_STRIP_RE = re.compile(r"[^a-zA-Z0-9\s]")
_WHITESPACE_RE = re.compile(r"\s+")


def render_document(
    field_values: Mapping[str, Any],
    mappings: Sequence[FieldMapping],
    template_bytes: bytes,
    *,
    now: datetime | None = None,
) -> bytes:
    """Execute values -> template data -> substitution and return docx bytes.

    Raises:
        ValidationError: no field values or no mappings were given.
        FormatError: the template is not a docx container.
        TemplateProcessingError: the substitution engine rejected the template.
    """

    if not field_values:
        raise ValidationError("Field values are required for document generation")
    if not mappings:
        raise ValidationError("Field mappings are required for document generation")

    data = build_template_data(field_values, mappings, now=now)
    logger.info("Rendering template with %d placeholders", len(data))
    return render_docx(template_bytes, data)


def render_batch(
    field_values: Mapping[str, Any],
    jobs: Sequence[TemplateJob],
    *,
    title: str,
    max_workers: int = DEFAULT_MAX_WORKERS,
    now: datetime | None = None,
) -> list[BatchItemResult]:
    """Render every job independently; one failure does not stop the others.

    Results keep the order of ``jobs``.

    Raises:
        ValidationError: ``jobs`` is empty.
        BatchRenderError: every job failed.
    """

    if not jobs:
        raise ValidationError("At least one template is required for document generation")

    generated_at = now or datetime.now()
    with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(jobs)))) as executor:
        futures = [
            executor.submit(_render_job, field_values, job, title, generated_at) for job in jobs
        ]
        results = [future.result() for future in futures]

    failed = [item for item in results if not item.ok]
    if failed and len(failed) == len(results):
        raise BatchRenderError(
            f"All {len(results)} templates failed to render",
            results=results,
        )
    if failed:
        logger.warning("%d of %d templates failed to render", len(failed), len(results))
    return results


def build_output_filename(
    title: str,
    original_file_name: str,
    *,
    template_id: str | None = None,
    now: datetime | None = None,
) -> str:
    """Build ``{title}[_{template_id}]_{YYYY-MM-DD}.{ext}`` for a generated document."""

    base_name = _WHITESPACE_RE.sub("_", _TITLE_STRIP_RE.sub("", title).strip()) or DEFAULT_TITLE
    stamp = (now or datetime.now()).date().isoformat()
    extension = PurePosixPath(original_file_name).suffix.lstrip(".") or DEFAULT_EXTENSION

    parts = [base_name]
    if template_id:
        parts.append(template_id)
    parts.append(stamp)
    return f"{'_'.join(parts)}.{extension}"


def _render_job(
    field_values: Mapping[str, Any],
    job: TemplateJob,
    title: str,
    now: datetime,
) -> BatchItemResult:
    file_name = build_output_filename(
        title, job.file_name, template_id=job.template_id, now=now
    )
    try:
        document = render_document(field_values, job.mappings, job.template_bytes, now=now)
    except (ValidationError, FormatError, TemplateProcessingError) as exc:
        logger.warning("Template %s failed: %s", job.template_id or job.file_name, exc)
        return BatchItemResult(
            template_id=job.template_id,
            file_name=file_name,
            error_type=type(exc).__name__,
            error_message=str(exc),
        )

    return BatchItemResult(template_id=job.template_id, file_name=file_name, document=document)
