from __future__ import annotations

import io

import pytest
from docx import Document

from surveydoc.render.docx_renderer import render_docx, translate_mustache
from surveydoc.utils.errors import FormatError, TemplateProcessingError


def _build_docx_bytes(*paragraphs: str) -> bytes:
    document = Document()
    for text in paragraphs:
        document.add_paragraph(text)
    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


def _paragraph_texts(content: bytes) -> list[str]:
    return [paragraph.text for paragraph in Document(io.BytesIO(content)).paragraphs]


def test_render_substitutes_simple_fields() -> None:
    template = _build_docx_bytes("Dear {{employee_name}},", "Welcome to {{company_name}}.")

    output = render_docx(template, {"employee_name": "Ada", "company_name": "Acme & Co"})

    assert _paragraph_texts(output) == ["Dear Ada,", "Welcome to Acme & Co."]


def test_render_leaves_unknown_fields_empty() -> None:
    output = render_docx(_build_docx_bytes("Hello {{nobody}}!"), {})

    assert _paragraph_texts(output) == ["Hello !"]


def test_render_keeps_section_body_for_truthy_value() -> None:
    template = _build_docx_bytes("{{#has_car}}", "Car: {{car}}", "{{/has_car}}", "End")

    output = render_docx(template, {"has_car": "Yes", "car": "Volvo"})

    assert _paragraph_texts(output) == ["Car: Volvo", "End"]


def test_render_drops_section_body_for_empty_value() -> None:
    template = _build_docx_bytes("{{#has_car}}", "Car: {{car}}", "{{/has_car}}", "End")

    output = render_docx(template, {"has_car": ""})

    assert _paragraph_texts(output) == ["End"]


def test_render_inverted_section_shows_for_empty_value() -> None:
    template = _build_docx_bytes("{{^pets}}No pets{{/pets}}", "{{^name}}Anonymous{{/name}}")

    output = render_docx(template, {"pets": "", "name": "Ada"})

    assert _paragraph_texts(output) == ["No pets", ""]


def test_render_dot_token_uses_section_value() -> None:
    template = _build_docx_bytes("{{#skills}}Skills: {{.}}{{/skills}}")

    output = render_docx(template, {"skills": "python, sql"})

    assert _paragraph_texts(output) == ["Skills: python, sql"]


def test_render_merges_placeholder_split_across_runs() -> None:
    document = Document()
    paragraph = document.add_paragraph()
    paragraph.add_run("Name: {{first_")
    paragraph.add_run("name}}")
    buffer = io.BytesIO()
    document.save(buffer)

    output = render_docx(buffer.getvalue(), {"first_name": "Grace"})

    assert _paragraph_texts(output) == ["Name: Grace"]


def test_render_mismatched_section_raises_template_processing_error() -> None:
    template = _build_docx_bytes("{{#a}}", "body", "{{/b}}")

    with pytest.raises(TemplateProcessingError) as exc_info:
        render_docx(template, {"a": "x"})

    assert exc_info.value.details["reason"] == "unmatched_close"


def test_render_unclosed_section_raises_template_processing_error() -> None:
    with pytest.raises(TemplateProcessingError) as exc_info:
        render_docx(_build_docx_bytes("{{#a}} open forever"), {"a": "x"})

    assert exc_info.value.details["open_sections"] == ["a"]


def test_render_looks_up_tag_names_literally() -> None:
    template = _build_docx_bytes(
        "Dear {{employee-name}} / {{Employee Name}}",
        "{{#has-car}}Car: {{.}}{{/has-car}}",
    )

    output = render_docx(
        template, {"employee-name": "Ada", "Employee Name": "Grace", "has-car": "Volvo"}
    )

    assert _paragraph_texts(output) == ["Dear Ada / Grace", "Car: Volvo"]


def test_render_decodes_entities_in_tag_names() -> None:
    output = render_docx(_build_docx_bytes("{{R&D budget}}"), {"R&D budget": "$5.00"})

    assert _paragraph_texts(output) == ["$5.00"]


def test_render_section_crossing_table_cell_raises() -> None:
    document = Document()
    document.add_paragraph("{{#show}}")
    table = document.add_table(rows=1, cols=1)
    table.cell(0, 0).paragraphs[0].text = "{{/show}}"
    document.add_paragraph("End {{x}}")
    buffer = io.BytesIO()
    document.save(buffer)

    with pytest.raises(TemplateProcessingError) as exc_info:
        render_docx(buffer.getvalue(), {"show": "", "x": "1"})

    assert exc_info.value.details == {"section": "show", "reason": "section_spans_structure"}


def test_render_section_inside_table_cell_keeps_table() -> None:
    document = Document()
    table = document.add_table(rows=1, cols=1)
    cell = table.cell(0, 0)
    cell.paragraphs[0].text = "{{#show}}"
    cell.add_paragraph("Shown")
    cell.add_paragraph("{{/show}}")
    cell.add_paragraph("Always")
    document.add_paragraph("End {{x}}")
    buffer = io.BytesIO()
    document.save(buffer)

    output = Document(io.BytesIO(render_docx(buffer.getvalue(), {"show": "", "x": "1"})))

    assert [paragraph.text for paragraph in output.tables[0].cell(0, 0).paragraphs] == ["Always"]
    assert [paragraph.text for paragraph in output.paragraphs] == ["End 1"]


def test_render_malformed_tag_carries_engine_details() -> None:
    with pytest.raises(TemplateProcessingError) as exc_info:
        render_docx(_build_docx_bytes("Hello {{ }}"), {})

    assert exc_info.value.details["engine_error"] == "TemplateSyntaxError"
    assert "message" in exc_info.value.details


def test_render_rejects_non_docx_bytes() -> None:
    with pytest.raises(FormatError):
        render_docx(b"not a docx", {"a": "b"})


def test_translate_mustache_rewrites_tokens() -> None:
    source = "{{#a}}[{{.}}]{{/a}}{{^b}}none{{/b}}#{{@index}}"

    assert translate_mustache(source) == (
        '{% if __values__["a"] %}[{{ __values__["a"] }}]{% endif %}'
        '{% if not __values__["b"] %}none{% endif %}#0'
    )


def test_translate_mustache_quotes_simple_names() -> None:
    assert translate_mustache('{{name}} and {{ first "nick" name }}') == (
        '{{ __values__["name"] }} and {{ __values__["first \\"nick\\" name"] }}'
    )


def test_translate_mustache_nested_sections_close_in_order() -> None:
    source = "{{#outer}}{{#inner}}{{.}}{{/inner}}{{.}}{{/outer}}"

    assert translate_mustache(source) == (
        '{% if __values__["outer"] %}{% if __values__["inner"] %}'
        '{{ __values__["inner"] }}{% endif %}{{ __values__["outer"] }}{% endif %}'
    )


def test_translate_mustache_accepts_section_across_runs_of_one_paragraph() -> None:
    source = '<w:p><w:r><w:t>{{#a}}x</w:t></w:r><w:r><w:t>y{{/a}}</w:t></w:r></w:p>'

    assert "{% endif %}" in translate_mustache(source)
