"""Docx substitution engine for mustache-style templates.

docxtpl merges placeholder tokens split across runs and renders the part XML
with Jinja2. Mustache tokens are translated to Jinja2 after that merge, with
every name looked up literally as a key of the render data:

- {{name}}   -> {{ __values__["name"] }}
- {{#name}}  -> {% if __values__["name"] %}
- {{^name}}  -> {% if not __values__["name"] %}
- {{/name}}  -> {% endif %}
- {{.}}      -> value of the innermost open section
- {{@index}} -> 0

A section tag that is the only text of its paragraph replaces the whole
paragraph, so the tag paragraphs do not survive into the output.
"""

from __future__ import annotations

import html
import io
import json
import re
import zipfile
from collections.abc import Mapping

from docx.opc.exceptions import PackageNotFoundError
from docxtpl import DocxTemplate
from jinja2 import ChainableUndefined, Environment, TemplateError

from surveydoc.utils.docx_xml import crosses_structure, unwrap_tag_paragraphs
from surveydoc.utils.errors import FormatError, TemplateProcessingError

VALUES_VARIABLE = "__values__"

_SECTION_ONLY_RE = re.compile(r"\{\{\s*[#^/][^{}]*\}\}")
_MUSTACHE_TOKEN_RE = re.compile(r"\{\{(?P<body>[^{}]+)\}\}")


class MustacheDocxTemplate(DocxTemplate):
    """DocxTemplate that accepts mustache tag syntax."""

    def patch_xml(self, src_xml: str) -> str:
        src_xml = super().patch_xml(src_xml)
        src_xml = unwrap_tag_paragraphs(src_xml, _SECTION_ONLY_RE)
        return translate_mustache(src_xml)


def translate_mustache(src: str) -> str:
    """Translate mustache tokens into Jinja2 lookups and statements.

    Raises:
        TemplateProcessingError: a closing tag does not match the open section,
            a section is never closed, or a section opens and closes at
            different levels of the document structure.
    """

    stack: list[tuple[str, int]] = []

    def replace(match: re.Match[str]) -> str:
        body = match.group("body").strip()
        if not body:
            return match.group(0)
        if body == ".":
            return ("{{ %s }}" % _lookup(stack[-1][0])) if stack else ""
        if body == "@index":
            return "0"

        marker = body[0]
        if marker not in "#^/":
            return "{{ %s }}" % _lookup(body)

        name = body[1:].strip()
        if marker == "/":
            if not stack or stack[-1][0] != name:
                raise TemplateProcessingError(
                    f"Unexpected closing tag {match.group(0)!r}",
                    details={
                        "tag": match.group(0),
                        "expected": stack[-1][0] if stack else None,
                        "reason": "unmatched_close",
                    },
                )
            _, body_start = stack.pop()
            if crosses_structure(src[body_start : match.start()]):
                raise TemplateProcessingError(
                    f"Section {{{{#{name}}}}} opens and closes in different document blocks",
                    details={"section": name, "reason": "section_spans_structure"},
                )
            return "{% endif %}"

        stack.append((name, match.end()))
        if marker == "^":
            return "{%% if not %s %%}" % _lookup(name)
        return "{%% if %s %%}" % _lookup(name)

    translated = _MUSTACHE_TOKEN_RE.sub(replace, src)
    if stack:
        raise TemplateProcessingError(
            f"Unclosed section {{{{#{stack[-1][0]}}}}}",
            details={"open_sections": [name for name, _ in stack], "reason": "unclosed_section"},
        )
    return translated


def render_docx(template_bytes: bytes, data: Mapping[str, str]) -> bytes:
    """Substitute ``data`` into a docx template and return the new container.

    Raises:
        FormatError: template bytes are not a docx container.
        TemplateProcessingError: the engine rejected the template/data pair.
    """

    try:
        template = MustacheDocxTemplate(io.BytesIO(template_bytes))
        template.init_docx()
    except (PackageNotFoundError, zipfile.BadZipFile, KeyError, ValueError) as exc:
        raise FormatError(
            "Template is not a valid docx container",
            detail={"error": str(exc)},
        ) from exc

    jinja_env = Environment(undefined=ChainableUndefined, autoescape=True)
    try:
        template.render({VALUES_VARIABLE: dict(data)}, jinja_env=jinja_env)
    except TemplateError as exc:
        raise TemplateProcessingError(
            f"Template processing error: {exc.message or exc}",
            details=_engine_details(exc),
        ) from exc

    buffer = io.BytesIO()
    template.save(buffer)
    return buffer.getvalue()


def _lookup(name: str) -> str:
    # Tag text inside the part is still XML-escaped; data keys are not.
    key = html.unescape(name)
    return "%s[%s]" % (VALUES_VARIABLE, json.dumps(key, ensure_ascii=False))


def _engine_details(exc: TemplateError) -> dict[str, object]:
    details: dict[str, object] = {"engine_error": type(exc).__name__, "message": str(exc)}
    lineno = getattr(exc, "lineno", None)
    if lineno is not None:
        details["lineno"] = lineno
    docx_context = getattr(exc, "docx_context", None)
    if docx_context is not None:
        details["context"] = [line for line in docx_context if line.strip()]
    return details
