"""Typer CLI entrypoint for surveydoc."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated, Any

import typer

from apps.cli.io import (
    read_field_names,
    read_field_values,
    read_json_file,
    write_bytes_atomic,
    write_json_atomic,
)
from surveydoc.config.settings import GeneratorSettings, load_settings
from surveydoc.mapping.registry import MappingRegistry
from surveydoc.orchestrator.pipeline import build_output_filename, render_batch, render_document
from surveydoc.render.models import TemplateJob
from surveydoc.render.template_data import validate_completeness
from surveydoc.templates.models import ParseResult
from surveydoc.templates.placeholder_parser import parse_docx_path, parse_result_payload
from surveydoc.utils.errors import (
    BatchRenderError,
    FormatError,
    NotFoundError,
    TemplateProcessingError,
    ValidationError,
)

app = typer.Typer(help="Survey to document template CLI", rich_markup_mode=None)

TemplateOption = Annotated[Path, typer.Option(..., exists=True, dir_okay=False, file_okay=True)]
JsonOption = Annotated[Path, typer.Option(..., exists=True, dir_okay=False, file_okay=True)]
SettingsOption = Annotated[
    Path | None,
    typer.Option("--settings", help="Settings YAML overriding the bundled defaults."),
]

EXIT_OK = 0
EXIT_INPUT_ERROR = 1
EXIT_VALIDATION_FAILED = 2
EXIT_TEMPLATE_ERROR = 3


@app.callback()
def cli_callback() -> None:
    """CLI root callback to keep subcommands explicit."""


@app.command("extract")
def extract_command(
    template: TemplateOption,
    out: Annotated[Path | None, typer.Option(help="Write the result JSON here.")] = None,
    settings: SettingsOption = None,
) -> None:
    """List placeholders found in a template."""

    settings_model = _load_settings_or_exit(settings)
    result = _parse_or_exit(template, settings_model)
    payload = parse_result_payload(result)
    _emit(payload, out)

    for error in result.parse_errors:
        typer.echo(f"ERROR(parse): {error}", err=True)
    raise typer.Exit(code=EXIT_INPUT_ERROR if result.parse_errors else EXIT_OK)


@app.command("suggest")
def suggest_command(
    template: TemplateOption,
    fields: JsonOption,
    apply: Annotated[
        bool, typer.Option("--apply", help="Apply suggestions and emit a mapping snapshot.")
    ] = False,
    min_confidence: Annotated[float | None, typer.Option(min=0.0, max=1.0)] = None,
    out: Annotated[Path | None, typer.Option(help="Write the result JSON here.")] = None,
    settings: SettingsOption = None,
) -> None:
    """Suggest field-to-placeholder mappings by name similarity."""

    settings_model = _load_settings_or_exit(settings)
    result = _parse_or_exit(template, settings_model)
    field_names = _run_or_exit(
        lambda: read_field_names(fields, max_bytes=settings_model.max_package_bytes)
    )

    registry = MappingRegistry(field_names, result.placeholders)
    suggestions = registry.generate_suggestions()
    if not apply:
        _emit({"suggestions": [item.model_dump(mode="json") for item in suggestions]}, out)
        raise typer.Exit(code=EXIT_OK)

    threshold = (
        min_confidence if min_confidence is not None else settings_model.suggestion_min_confidence
    )
    applied = registry.apply_suggestions(threshold)
    typer.echo(f"INFO: applied {applied} of {len(suggestions)} suggestions", err=True)
    _emit(registry.export_snapshot(), out)
    raise typer.Exit(code=EXIT_OK)


@app.command("validate")
def validate_command(
    template: TemplateOption,
    mappings: JsonOption,
    fields: Annotated[
        Path | None,
        typer.Option(exists=True, dir_okay=False, help="Field names; defaults to the snapshot's."),
    ] = None,
    settings: SettingsOption = None,
) -> None:
    """Validate a mapping snapshot against a template."""

    settings_model = _load_settings_or_exit(settings)
    result = _parse_or_exit(template, settings_model)
    snapshot = _run_or_exit(
        lambda: read_json_file(mappings, max_bytes=settings_model.max_package_bytes)
    )
    field_names = (
        _run_or_exit(lambda: read_field_names(fields, max_bytes=settings_model.max_package_bytes))
        if fields is not None
        else _snapshot_fields(snapshot)
    )

    registry = MappingRegistry(field_names, result.placeholders)
    imported = _run_or_exit(lambda: registry.import_snapshot(snapshot))
    validation = registry.validate()

    _emit(
        {
            "imported": imported,
            "validation": validation.model_dump(mode="json"),
            "statistics": registry.statistics().model_dump(mode="json"),
        },
        None,
    )
    for warning in validation.warnings:
        typer.echo(f"WARNING(mapping): {warning}", err=True)
    raise typer.Exit(code=EXIT_OK if validation.is_valid else EXIT_VALIDATION_FAILED)


@app.command("render")
def render_command(
    template: TemplateOption,
    mappings: JsonOption,
    values: JsonOption,
    title: Annotated[str, typer.Option(...)],
    template_id: Annotated[str | None, typer.Option()] = None,
    out_dir: Annotated[Path, typer.Option()] = Path("."),
    strict: Annotated[
        bool, typer.Option("--strict", help="Fail when required field values are missing.")
    ] = False,
    settings: SettingsOption = None,
) -> None:
    """Render a document from field values and a mapping snapshot."""

    settings_model = _load_settings_or_exit(settings)
    result = _parse_or_exit(template, settings_model)
    snapshot = _run_or_exit(
        lambda: read_json_file(mappings, max_bytes=settings_model.max_package_bytes)
    )
    field_values = _run_or_exit(
        lambda: read_field_values(values, max_bytes=settings_model.max_package_bytes)
    )

    field_names = list(dict.fromkeys([*_snapshot_fields(snapshot), *field_values]))
    registry = MappingRegistry(field_names, result.placeholders)
    _run_or_exit(lambda: registry.import_snapshot(snapshot))
    field_mappings = registry.get_mappings()

    report = validate_completeness(field_values, field_mappings)
    for warning in report.warnings:
        typer.echo(f"WARNING(values): {warning}", err=True)
    if report.missing_required:
        missing = ", ".join(report.missing_required)
        if strict:
            typer.echo(f"ERROR: missing required fields: {missing}", err=True)
            raise typer.Exit(code=EXIT_VALIDATION_FAILED)
        typer.echo(f"WARNING(values): missing required fields: {missing}", err=True)

    try:
        document = render_document(field_values, field_mappings, template.read_bytes())
    except ValidationError as exc:
        typer.echo(f"ERROR: {exc}", err=True)
        raise typer.Exit(code=EXIT_VALIDATION_FAILED) from exc
    except FormatError as exc:
        typer.echo(f"ERROR: {exc}", err=True)
        raise typer.Exit(code=EXIT_INPUT_ERROR) from exc
    except TemplateProcessingError as exc:
        typer.echo(f"ERROR: {exc}", err=True)
        typer.echo(json.dumps(exc.details, ensure_ascii=False, default=str), err=True)
        raise typer.Exit(code=EXIT_TEMPLATE_ERROR) from exc

    output_path = out_dir / build_output_filename(title, template.name, template_id=template_id)
    write_bytes_atomic(output_path, document)
    typer.echo(str(output_path))
    raise typer.Exit(code=EXIT_OK)


@app.command("render-batch")
def render_batch_command(
    template: Annotated[
        list[Path], typer.Option(..., exists=True, dir_okay=False, help="Repeat per template.")
    ],
    mappings: Annotated[
        list[Path],
        typer.Option(..., exists=True, dir_okay=False, help="One snapshot per --template."),
    ],
    values: JsonOption,
    title: Annotated[str, typer.Option(...)],
    out_dir: Annotated[Path, typer.Option()] = Path("."),
    settings: SettingsOption = None,
) -> None:
    """Render one document per template from the same field values."""

    if len(template) != len(mappings):
        typer.echo("ERROR: pass exactly one --mappings per --template", err=True)
        raise typer.Exit(code=EXIT_INPUT_ERROR)

    settings_model = _load_settings_or_exit(settings)
    field_values = _run_or_exit(
        lambda: read_field_values(values, max_bytes=settings_model.max_package_bytes)
    )

    jobs: list[TemplateJob] = []
    for template_path, mappings_path in zip(template, mappings):
        result = _parse_or_exit(template_path, settings_model)
        snapshot = _run_or_exit(
            lambda: read_json_file(mappings_path, max_bytes=settings_model.max_package_bytes)
        )
        field_names = list(dict.fromkeys([*_snapshot_fields(snapshot), *field_values]))
        registry = MappingRegistry(field_names, result.placeholders)
        _run_or_exit(lambda: registry.import_snapshot(snapshot))
        jobs.append(
            TemplateJob(
                template_id=template_path.stem,
                file_name=template_path.name,
                template_bytes=template_path.read_bytes(),
                mappings=registry.get_mappings(),
            )
        )

    try:
        results = render_batch(
            field_values, jobs, title=title, max_workers=settings_model.batch_max_workers
        )
    except BatchRenderError as exc:
        for item in exc.results:
            typer.echo(f"ERROR({item.template_id}): {item.error_message}", err=True)
        raise typer.Exit(code=EXIT_TEMPLATE_ERROR) from exc

    for item in results:
        if item.document is None:
            typer.echo(f"ERROR({item.template_id}): {item.error_message}", err=True)
            continue
        output_path = out_dir / item.file_name
        write_bytes_atomic(output_path, item.document)
        typer.echo(str(output_path))

    failed = any(not item.ok for item in results)
    raise typer.Exit(code=EXIT_TEMPLATE_ERROR if failed else EXIT_OK)


def _load_settings_or_exit(path: Path | None) -> GeneratorSettings:
    try:
        return load_settings(path)
    except ValueError as exc:
        typer.echo(f"ERROR: {exc}", err=True)
        raise typer.Exit(code=EXIT_INPUT_ERROR) from exc


def _parse_or_exit(template: Path, settings: GeneratorSettings) -> ParseResult:
    return _run_or_exit(lambda: parse_docx_path(template, settings=settings))


def _run_or_exit(action: Any) -> Any:
    try:
        return action()
    except (FormatError, NotFoundError) as exc:
        typer.echo(f"ERROR: {exc}", err=True)
        raise typer.Exit(code=EXIT_INPUT_ERROR) from exc


def _snapshot_fields(snapshot: Any) -> list[str]:
    if not isinstance(snapshot, dict):
        return []
    names = snapshot.get("surveyFields") or []
    return [name for name in names if isinstance(name, str)]


def _emit(payload: dict[str, Any], out: Path | None) -> None:
    if out is not None:
        write_json_atomic(out, payload)
        typer.echo(f"INFO: wrote {out}", err=True)
        return
    typer.echo(json.dumps(payload, ensure_ascii=False, indent=2))


def main() -> None:
    """Console script entrypoint."""

    app()


if __name__ == "__main__":
    main()
