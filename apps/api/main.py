"""FastAPI wrapper for the surveydoc template pipeline."""

from __future__ import annotations

import asyncio
import importlib.metadata
import json
import logging
import os
import time
import uuid
from typing import Annotated, Any
from urllib.parse import quote

from fastapi import FastAPI, File, Form, Request, UploadFile
from fastapi.responses import JSONResponse, Response

from surveydoc.config.settings import GeneratorSettings, load_settings
from surveydoc.mapping.registry import MappingRegistry
from surveydoc.orchestrator.pipeline import build_output_filename, render_document
from surveydoc.render.template_data import validate_completeness
from surveydoc.templates.models import ParseResult, PlaceholderKind
from surveydoc.templates.placeholder_parser import parse_docx, parse_result_payload
from surveydoc.utils.errors import (
    DocumentTooLargeError,
    FormatError,
    TemplateProcessingError,
    UnsupportedFileTypeError,
    ValidationError,
)

app = FastAPI(title="surveydoc API", version="0.1.0")
logger = logging.getLogger("surveydoc.api")

DOCX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
REQUEST_ID_HEADER = "X-Surveydoc-Request-Id"


class ApiRequestError(Exception):
    def __init__(
        self,
        *,
        status_code: int,
        error_code: str,
        message: str,
        detail: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code
        self.message = message
        self.detail = detail or {}


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    """Ensure every response has a request id header."""

    request_id = uuid.uuid4().hex
    request.state.request_id = request_id
    try:
        response = await call_next(request)
    except Exception:  # noqa: BLE001
        _log_event(
            logging.ERROR,
            "error",
            request_id,
            error_code="INTERNAL_ERROR",
            status_code=500,
            failure_stage="middleware",
        )
        response = _error_response(
            status_code=500,
            error_code="INTERNAL_ERROR",
            message="internal server error",
            request_id=request_id,
            detail={"path": request.url.path},
        )
    response.headers.setdefault(REQUEST_ID_HEADER, request_id)
    return response


@app.get("/healthz")
async def healthz() -> dict[str, str]:
    """Liveness endpoint."""

    return {"status": "ok"}


@app.get("/v1/meta")
async def meta_v1(request: Request) -> JSONResponse:
    """Limits and grammar metadata for clients."""

    request_id = _request_id_from_request(request)
    settings = _settings()
    payload = {
        "version": _package_version(),
        "placeholder_kinds": [kind.value for kind in PlaceholderKind],
        "template_suffixes": settings.template_suffixes,
        "max_template_bytes": settings.max_template_bytes,
        "max_package_bytes": settings.max_package_bytes,
        "suggestion_min_confidence": settings.suggestion_min_confidence,
    }
    return JSONResponse(status_code=200, headers={REQUEST_ID_HEADER: request_id}, content=payload)


@app.post("/v1/extract", response_model=None)
async def extract_v1(
    request: Request,
    template: Annotated[UploadFile, File(...)],
) -> JSONResponse:
    """Parse an uploaded template and return its placeholders."""

    started = time.perf_counter()
    request_id = _request_id_from_request(request)
    _log_event(logging.INFO, "start", request_id, endpoint="extract")

    try:
        settings = _settings()
        result = await _parse_upload(template, settings)
    except ApiRequestError as exc:
        return _request_error_response(exc, request_id, "parse_template")

    _log_event(
        logging.INFO,
        "done",
        request_id,
        endpoint="extract",
        placeholders=len(result.placeholders),
        parse_errors=len(result.parse_errors),
        total_ms=_elapsed_ms(started),
    )
    return JSONResponse(
        status_code=200,
        headers={REQUEST_ID_HEADER: request_id},
        content=parse_result_payload(result),
    )


@app.post("/v1/suggest", response_model=None)
async def suggest_v1(
    request: Request,
    template: Annotated[UploadFile, File(...)],
    fields: Annotated[str, Form()],
    apply: Annotated[bool, Form()] = False,
    min_confidence: Annotated[float | None, Form()] = None,
) -> JSONResponse:
    """Suggest mappings for a template and a list of field names."""

    started = time.perf_counter()
    request_id = _request_id_from_request(request)
    _log_event(logging.INFO, "start", request_id, endpoint="suggest")
    failure_stage = "validate_inputs"

    try:
        settings = _settings()
        field_names = _parse_field_names(fields)
        failure_stage = "parse_template"
        result = await _parse_upload(template, settings)
    except ApiRequestError as exc:
        return _request_error_response(exc, request_id, failure_stage)

    registry = MappingRegistry(field_names, result.placeholders)
    suggestions = registry.generate_suggestions()
    payload: dict[str, Any] = {
        "suggestions": [item.model_dump(mode="json") for item in suggestions],
        "parse_errors": list(result.parse_errors),
    }
    if apply:
        threshold = (
            min_confidence if min_confidence is not None else settings.suggestion_min_confidence
        )
        payload["applied"] = registry.apply_suggestions(threshold)
        payload["snapshot"] = registry.export_snapshot()
        payload["validation"] = registry.validate().model_dump(mode="json")

    _log_event(
        logging.INFO,
        "done",
        request_id,
        endpoint="suggest",
        suggestions=len(suggestions),
        total_ms=_elapsed_ms(started),
    )
    return JSONResponse(status_code=200, headers={REQUEST_ID_HEADER: request_id}, content=payload)


@app.post("/v1/render", response_model=None)
async def render_v1(
    request: Request,
    template: Annotated[UploadFile, File(...)],
    mappings: Annotated[UploadFile, File(...)],
    values: Annotated[UploadFile, File(...)],
    title: Annotated[str, Form()],
    template_id: Annotated[str | None, Form()] = None,
    strict: Annotated[bool, Form()] = False,
) -> Response:
    """Render one document and return it as a docx download."""

    started = time.perf_counter()
    request_id = _request_id_from_request(request)
    _log_event(logging.INFO, "start", request_id, endpoint="render")
    failure_stage = "validate_inputs"

    try:
        settings = _settings()
        snapshot = await _read_json_upload(mappings, "mappings", settings.max_package_bytes)
        field_values = await _read_json_upload(values, "values", settings.max_package_bytes)
        if not isinstance(field_values, dict):
            raise ApiRequestError(
                status_code=400,
                error_code="INVALID_VALUES",
                message="values must be a JSON object",
            )

        failure_stage = "parse_template"
        template_bytes = await _read_upload_with_limit(
            template, field_name="template", max_bytes=settings.max_template_bytes
        )
        result = _parse_bytes(template_bytes, template.filename, settings)
        if result.parse_errors:
            raise ApiRequestError(
                status_code=400,
                error_code="INVALID_TEMPLATE",
                message="template could not be parsed",
                detail={"parse_errors": result.parse_errors},
            )

        failure_stage = "load_mappings"
        snapshot_fields = snapshot.get("surveyFields", []) if isinstance(snapshot, dict) else []
        field_names = [name for name in snapshot_fields if isinstance(name, str)]
        registry = MappingRegistry([*field_names, *field_values], result.placeholders)
        try:
            registry.import_snapshot(snapshot)
        except FormatError as exc:
            raise ApiRequestError(
                status_code=400,
                error_code="INVALID_MAPPINGS",
                message=str(exc),
                detail=exc.detail,
            ) from exc
        field_mappings = registry.get_mappings()

        failure_stage = "validate_values"
        report = validate_completeness(field_values, field_mappings)
        if strict and report.missing_required:
            raise ApiRequestError(
                status_code=422,
                error_code="MISSING_REQUIRED_FIELDS",
                message="required field values are missing",
                detail={"missing_required": report.missing_required},
            )

        failure_stage = "render"
        document = await asyncio.to_thread(
            render_document, field_values, field_mappings, template_bytes
        )
    except ApiRequestError as exc:
        return _request_error_response(exc, request_id, failure_stage)
    except ValidationError as exc:
        return _request_error_response(
            ApiRequestError(
                status_code=422,
                error_code="VALIDATION_ERROR",
                message=str(exc),
                detail={"missing": exc.missing},
            ),
            request_id,
            failure_stage,
        )
    except TemplateProcessingError as exc:
        return _request_error_response(
            ApiRequestError(
                status_code=422,
                error_code="TEMPLATE_ERROR",
                message=str(exc),
                detail={"details": _jsonable(exc.details)},
            ),
            request_id,
            failure_stage,
        )
    except FormatError as exc:
        return _request_error_response(
            ApiRequestError(
                status_code=400,
                error_code="INVALID_TEMPLATE",
                message=str(exc),
                detail=exc.detail,
            ),
            request_id,
            failure_stage,
        )

    filename = build_output_filename(
        title, template.filename or "template.docx", template_id=template_id
    )
    _log_event(
        logging.INFO,
        "done",
        request_id,
        endpoint="render",
        mappings=len(field_mappings),
        missing_required=len(report.missing_required),
        total_ms=_elapsed_ms(started),
    )
    return Response(
        content=document,
        media_type=DOCX_MEDIA_TYPE,
        headers={
            REQUEST_ID_HEADER: request_id,
            "Content-Disposition": f"attachment; filename*=UTF-8''{quote(filename)}",
            "X-Surveydoc-Missing-Required": str(len(report.missing_required)),
            "X-Surveydoc-Warnings": str(len(report.warnings)),
        },
    )


def _settings() -> GeneratorSettings:
    settings = load_settings()
    overrides: dict[str, int] = {}
    for env_name, key in (
        ("SURVEYDOC_MAX_TEMPLATE_BYTES", "max_template_bytes"),
        ("SURVEYDOC_MAX_PACKAGE_BYTES", "max_package_bytes"),
    ):
        parsed = _positive_int_env(env_name)
        if parsed is not None:
            overrides[key] = parsed
    return settings.model_copy(update=overrides) if overrides else settings


def _positive_int_env(name: str) -> int | None:
    raw = os.getenv(name)
    if raw is None:
        return None
    try:
        parsed = int(raw)
    except ValueError:
        return None
    return parsed if parsed > 0 else None


async def _parse_upload(upload: UploadFile, settings: GeneratorSettings) -> ParseResult:
    _validate_upload_name(upload.filename, settings)
    content = await _read_upload_with_limit(
        upload, field_name="template", max_bytes=settings.max_template_bytes
    )
    return _parse_bytes(content, upload.filename, settings)


def _parse_bytes(content: bytes, filename: str | None, settings: GeneratorSettings) -> ParseResult:
    try:
        return parse_docx(content, filename or "", settings=settings)
    except UnsupportedFileTypeError as exc:
        raise ApiRequestError(
            status_code=415,
            error_code="INVALID_MEDIA_TYPE",
            message=str(exc),
            detail=exc.detail,
        ) from exc
    except DocumentTooLargeError as exc:
        raise ApiRequestError(
            status_code=413,
            error_code="UPLOAD_TOO_LARGE",
            message=str(exc),
            detail=exc.detail,
        ) from exc


def _validate_upload_name(filename: str | None, settings: GeneratorSettings) -> None:
    suffixes = tuple(suffix.lower() for suffix in settings.template_suffixes)
    if filename is None or not filename.lower().endswith(suffixes):
        raise ApiRequestError(
            status_code=415,
            error_code="INVALID_MEDIA_TYPE",
            message=f"template must be one of: {', '.join(suffixes)}",
            detail={"field": "template", "filename": filename},
        )


async def _read_upload_with_limit(upload: UploadFile, *, field_name: str, max_bytes: int) -> bytes:
    chunks: list[bytes] = []
    total_size = 0

    while True:
        chunk = await upload.read(1024 * 1024)
        if not chunk:
            break
        total_size += len(chunk)
        if total_size > max_bytes:
            raise ApiRequestError(
                status_code=413,
                error_code="UPLOAD_TOO_LARGE",
                message=f"{field_name} exceeds upload size limit",
                detail={
                    "field": field_name,
                    "max_bytes": max_bytes,
                    "received_bytes": total_size,
                },
            )
        chunks.append(chunk)

    await upload.close()
    return b"".join(chunks)


async def _read_json_upload(upload: UploadFile, field_name: str, max_bytes: int) -> Any:
    content = await _read_upload_with_limit(upload, field_name=field_name, max_bytes=max_bytes)
    try:
        return json.loads(content.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ApiRequestError(
            status_code=400,
            error_code="INVALID_JSON",
            message=f"{field_name} must be valid UTF-8 JSON",
            detail={"field": field_name},
        ) from exc


def _parse_field_names(raw: str) -> list[str]:
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ApiRequestError(
            status_code=400,
            error_code="INVALID_FIELDS",
            message="fields must be a JSON list of strings",
        ) from exc
    if isinstance(parsed, dict):
        parsed = list(parsed)
    if not isinstance(parsed, list) or not all(isinstance(item, str) for item in parsed):
        raise ApiRequestError(
            status_code=400,
            error_code="INVALID_FIELDS",
            message="fields must be a JSON list of strings",
        )
    return parsed


def _jsonable(payload: dict[str, Any]) -> dict[str, Any]:
    return json.loads(json.dumps(payload, default=str))


def _request_id_from_request(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if isinstance(request_id, str) and request_id:
        return request_id
    return uuid.uuid4().hex


def _request_error_response(exc: ApiRequestError, request_id: str, stage: str) -> JSONResponse:
    _log_event(
        logging.ERROR,
        "error",
        request_id,
        error_code=exc.error_code,
        status_code=exc.status_code,
        failure_stage=stage,
    )
    return _error_response(
        status_code=exc.status_code,
        error_code=exc.error_code,
        message=exc.message,
        request_id=request_id,
        detail=exc.detail,
    )


def _error_response(
    *,
    status_code: int,
    error_code: str,
    message: str,
    request_id: str,
    detail: dict[str, Any] | None = None,
) -> JSONResponse:
    payload_detail = dict(detail or {})
    payload_detail["request_id"] = request_id

    return JSONResponse(
        status_code=status_code,
        headers={REQUEST_ID_HEADER: request_id},
        content={
            "error_code": error_code,
            "message": message,
            "detail": payload_detail,
        },
    )


def _package_version() -> str:
    try:
        return importlib.metadata.version("surveydoc")
    except importlib.metadata.PackageNotFoundError:
        return app.version


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


def _log_event(level: int, event: str, request_id: str, **fields: Any) -> None:
    payload = {
        "event": event,
        "request_id": request_id,
        **fields,
    }
    logger.log(level, json.dumps(payload, ensure_ascii=False, sort_keys=True, separators=(",", ":")))
