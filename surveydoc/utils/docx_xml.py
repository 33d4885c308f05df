"""Raw WordprocessingML helpers.

Text extraction for placeholder scanning and the paragraph-level rewrites the
renderer applies to a part before it reaches the template engine. Callers work
on strings; nothing here loads python-docx objects.
"""

from __future__ import annotations

import io
import re
import zipfile

DOCUMENT_PART = "word/document.xml"

_PARAGRAPH_RE = re.compile(r"<w:p\b[^>]*>")
_BREAK_RE = re.compile(r"<w:br\b[^>]*/?>")
_TAB_RE = re.compile(r"<w:tab\b[^>]*/?>")
_TAG_RE = re.compile(r"<[^>]+>")
_BLANK_LINES_RE = re.compile(r"\n\s*\n")
_PARAGRAPH_XML_RE = re.compile(r"<w:p[ >](?:(?!<w:p[ >]).)*?</w:p>", re.DOTALL)
_ELEMENT_TAG_RE = re.compile(r"<(/?)([\w:.-]+)[^>]*?(/?)>")

# &amp; must be decoded last so "&amp;lt;" stays "&lt;".
_ENTITIES = (
    ("&lt;", "<"),
    ("&gt;", ">"),
    ("&quot;", '"'),
    ("&#39;", "'"),
    ("&apos;", "'"),
    ("&amp;", "&"),
)


def read_document_xml(content: bytes) -> str:
    """Return the main document part of a docx container as text.

    Raises:
        zipfile.BadZipFile: content is not a zip container.
        KeyError: the container has no ``word/document.xml`` part.
        UnicodeDecodeError: the part is not valid UTF-8.
        zlib.error, EOFError, NotImplementedError, RuntimeError: the part data
            is corrupt, truncated, compressed with an unsupported method or
            encrypted.
    """

    with zipfile.ZipFile(io.BytesIO(content), "r") as archive:
        raw = archive.read(DOCUMENT_PART)
    return raw.decode("utf-8")


def extract_text_from_xml(xml_content: str) -> str:
    """Reduce WordprocessingML to plain text, keeping line breaks and tab stops."""

    text = _PARAGRAPH_RE.sub("\n", xml_content)
    text = _BREAK_RE.sub("\n", text)
    text = _TAB_RE.sub("\t", text)
    text = _TAG_RE.sub("", text)
    for entity, char in _ENTITIES:
        text = text.replace(entity, char)

    text = _BLANK_LINES_RE.sub("\n", text)
    return text.strip()


def unwrap_tag_paragraphs(xml_content: str, tag_pattern: re.Pattern[str]) -> str:
    """Replace every paragraph whose whole text is one template tag by the bare tag."""

    def unwrap(match: re.Match[str]) -> str:
        text = _TAG_RE.sub("", match.group(0)).strip()
        if tag_pattern.fullmatch(text):
            return text
        return match.group(0)

    return _PARAGRAPH_XML_RE.sub(unwrap, xml_content)


def crosses_structure(fragment: str) -> bool:
    """Return True when cutting ``fragment`` out of a part breaks its nesting.

    A fragment may close elements opened before it only when it reopens the
    same elements, outermost first, before it ends.
    """

    closed: list[str] = []
    opened: list[str] = []
    for match in _ELEMENT_TAG_RE.finditer(fragment):
        closing, name, self_closing = match.groups()
        if self_closing:
            continue
        if not closing:
            opened.append(name)
        elif opened:
            if opened.pop() != name:
                return True
        else:
            closed.append(name)
    return closed[::-1] != opened
