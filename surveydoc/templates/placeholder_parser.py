"""Mustache-style placeholder parser for docx templates.

Rules:
- Conditional block: {{#name}} ... {{/name}}. A body that refers to the
  current item ({{.}}), the loop index ({{@index}}) or a dotted path
  ({{item.field}}) makes the block a loop.
- Inverted block: {{^name}} ... {{/name}}, always classified conditional.
- Simple field: {{name}}, excluding section tags and the bare {{.}} token.

Blocks are scanned before simple fields so a name is only reported once.
"""

from __future__ import annotations

import logging
import re
import zipfile
import zlib
from collections.abc import Iterable
from dataclasses import asdict
from pathlib import Path
from typing import Any

from surveydoc.config.settings import GeneratorSettings
from surveydoc.templates.models import (
    ParseResult,
    Placeholder,
    PlaceholderKind,
    PlaceholderStats,
    PlaceholderValidation,
)
from surveydoc.utils.docx_xml import DOCUMENT_PART, extract_text_from_xml, read_document_xml
from surveydoc.utils.errors import DocumentTooLargeError, UnsupportedFileTypeError

logger = logging.getLogger(__name__)

CONTEXT_CHARS = 50
MAX_BLOCK_BODY_LENGTH = 200
ELLIPSIS = "..."

_SIMPLE_RE = re.compile(r"\{\{([^}]+)\}\}")
_CONDITIONAL_RE = re.compile(r"\{\{#([^}]+)\}\}(.*?)\{\{/\1\}\}", re.DOTALL)
_INVERTED_RE = re.compile(r"\{\{\^([^}]+)\}\}(.*?)\{\{/\1\}\}", re.DOTALL)
_LOOP_MARKERS = (
    re.compile(r"\{\{\.\}\}"),
    re.compile(r"\{\{@index\}\}"),
    re.compile(r"\{\{[^}]+\.[^}]+\}\}"),
)
_WHITESPACE_RE = re.compile(r"\s+")
_SECTION_PREFIXES = ("#", "^", "/")


def extract_placeholders(
    document_text: str,
    *,
    context_chars: int = CONTEXT_CHARS,
    max_block_length: int = MAX_BLOCK_BODY_LENGTH,
) -> list[Placeholder]:
    """Extract and classify placeholders from normalized document text.

    Args:
        document_text: Plain text produced by ``extract_text_from_xml``.
        context_chars: Characters of surrounding text kept on each side.
        max_block_length: Longest block body kept verbatim in ``full_match``.

    Returns:
        Placeholders deduplicated by name and sorted by name.
    """

    placeholders: list[Placeholder] = []
    seen: set[str] = set()

    for match in _CONDITIONAL_RE.finditer(document_text):
        kind = PlaceholderKind.CONDITIONAL
        if _is_loop_body(match.group(2)):
            kind = PlaceholderKind.LOOP
        _add_block(placeholders, seen, document_text, match, kind, context_chars, max_block_length)

    for match in _INVERTED_RE.finditer(document_text):
        _add_block(
            placeholders,
            seen,
            document_text,
            match,
            PlaceholderKind.CONDITIONAL,
            context_chars,
            max_block_length,
        )

    for match in _SIMPLE_RE.finditer(document_text):
        name = match.group(1).strip()
        if name.startswith(_SECTION_PREFIXES) or name == ".":
            continue
        if name in seen:
            continue
        placeholders.append(
            Placeholder(
                name=name,
                kind=PlaceholderKind.SIMPLE,
                full_match=match.group(0),
                required=True,
                context=build_context(
                    document_text, match.start(), len(match.group(0)), context_chars
                ),
            )
        )
        seen.add(name)

    return sorted(placeholders, key=lambda item: item.name)


def parse_docx(
    content: bytes,
    file_name: str,
    *,
    settings: GeneratorSettings | None = None,
) -> ParseResult:
    """Parse an uploaded docx container into placeholders.

    Raises:
        UnsupportedFileTypeError: file name does not carry an accepted suffix.
        DocumentTooLargeError: content exceeds ``max_template_bytes``.

    Malformed but readable input never raises: problems are reported in
    ``ParseResult.parse_errors`` next to an empty placeholder list.
    """

    settings = settings or GeneratorSettings()
    _check_upload_policy(file_name, len(content), settings)

    result = ParseResult(file_name=file_name, file_size=len(content))

    try:
        xml_content = read_document_xml(content)
    except zipfile.BadZipFile as exc:
        result.parse_errors.append(f"Parse error: not a valid docx container ({exc})")
        return result
    except KeyError:
        result.parse_errors.append(f"Invalid DOCX file: missing {DOCUMENT_PART}")
        return result
    except UnicodeDecodeError as exc:
        result.parse_errors.append(f"Parse error: {DOCUMENT_PART} is not UTF-8 ({exc.reason})")
        return result
    except (zlib.error, EOFError, NotImplementedError, RuntimeError) as exc:
        # Member data zipfile cannot inflate or decrypt.
        result.parse_errors.append(f"Parse error: cannot read {DOCUMENT_PART} ({exc})")
        return result

    result.document_content = xml_content
    result.placeholders = extract_placeholders(
        extract_text_from_xml(xml_content),
        context_chars=settings.context_chars,
        max_block_length=settings.max_block_length,
    )
    logger.info("Parsed %s: found %d placeholders", file_name, len(result.placeholders))
    return result


def parse_docx_path(path: Path, *, settings: GeneratorSettings | None = None) -> ParseResult:
    """Load a .docx file and parse its placeholders."""

    return parse_docx(path.read_bytes(), path.name, settings=settings)


def build_context(text: str, index: int, length: int, context_chars: int = CONTEXT_CHARS) -> str:
    """Return whitespace-collapsed text around a match, with edge ellipses."""

    start = max(0, index - context_chars)
    end = min(len(text), index + length + context_chars)

    context = _WHITESPACE_RE.sub(" ", text[start:end]).strip()
    if start > 0:
        context = ELLIPSIS + context
    if end < len(text):
        context = context + ELLIPSIS
    return context


def truncate_block(
    open_tag: str, body: str, close_tag: str, max_length: int = MAX_BLOCK_BODY_LENGTH
) -> str:
    """Shorten a block body longer than ``max_length``; tags are always kept."""

    if len(body) <= max_length:
        return f"{open_tag}{body}{close_tag}"

    budget = max(0, max_length - len(ELLIPSIS))
    head = budget // 2
    tail = budget - head
    suffix = body[len(body) - tail :] if tail else ""
    return f"{open_tag}{body[:head]}{ELLIPSIS}{suffix}{close_tag}"


def parse_result_payload(result: ParseResult) -> dict[str, Any]:
    """Serialize a parse result for JSON output."""

    return {
        "file_name": result.file_name,
        "file_size": result.file_size,
        "placeholders": [asdict(item) for item in result.placeholders],
        "parse_errors": list(result.parse_errors),
        "stats": asdict(placeholder_stats(result.placeholders)),
    }


def validate_placeholders(
    placeholders: Iterable[Placeholder], data_fields: Iterable[str]
) -> PlaceholderValidation:
    """Split placeholders by whether a data field with the same name exists."""

    field_list = list(data_fields)
    field_set = set(field_list)
    result = PlaceholderValidation()
    found: set[str] = set()

    for placeholder in placeholders:
        if placeholder.name in field_set:
            result.valid.append(placeholder)
            found.add(placeholder.name)
        else:
            result.invalid.append(placeholder)

    result.missing = [name for name in field_list if name not in found]
    return result


def placeholder_stats(placeholders: Iterable[Placeholder]) -> PlaceholderStats:
    """Count placeholders by kind and requiredness."""

    stats = PlaceholderStats()
    for placeholder in placeholders:
        stats.total += 1
        stats.by_kind[placeholder.kind.value] += 1
        if placeholder.required:
            stats.required += 1
        else:
            stats.optional += 1
    return stats


def _add_block(
    placeholders: list[Placeholder],
    seen: set[str],
    text: str,
    match: re.Match[str],
    kind: PlaceholderKind,
    context_chars: int,
    max_block_length: int,
) -> None:
    name = match.group(1).strip()
    if name in seen:
        return

    open_tag = text[match.start() : match.start(2)]
    close_tag = text[match.end(2) : match.end()]
    placeholders.append(
        Placeholder(
            name=name,
            kind=kind,
            full_match=truncate_block(open_tag, match.group(2), close_tag, max_block_length),
            required=False,
            context=build_context(text, match.start(), len(match.group(0)), context_chars),
        )
    )
    seen.add(name)


def _is_loop_body(body: str) -> bool:
    return any(pattern.search(body) for pattern in _LOOP_MARKERS)


def _check_upload_policy(file_name: str, size: int, settings: GeneratorSettings) -> None:
    suffixes = tuple(suffix.lower() for suffix in settings.template_suffixes)
    if not file_name.lower().endswith(suffixes):
        raise UnsupportedFileTypeError(
            f"File must be one of: {', '.join(suffixes)}",
            detail={"file_name": file_name},
        )
    if size > settings.max_template_bytes:
        raise DocumentTooLargeError(
            f"Template exceeds size limit of {settings.max_template_bytes} bytes",
            max_bytes=settings.max_template_bytes,
            actual_bytes=size,
        )
