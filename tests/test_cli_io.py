from __future__ import annotations

from pathlib import Path

import pytest

from apps.cli.io import read_json_file, write_bytes_atomic, write_json_atomic
from surveydoc.utils.errors import DocumentTooLargeError, FormatError


def test_read_json_file_rejects_non_utf8_content(tmp_path: Path) -> None:
    path = tmp_path / "values.json"
    path.write_bytes(b'{"name": "\xff\xfe"}')

    with pytest.raises(FormatError, match="Invalid JSON in values.json"):
        read_json_file(path, max_bytes=1024)


def test_read_json_file_enforces_size_limit(tmp_path: Path) -> None:
    path = tmp_path / "values.json"
    path.write_text('{"name": "Ada"}', encoding="utf-8")

    with pytest.raises(DocumentTooLargeError):
        read_json_file(path, max_bytes=4)


def test_write_json_atomic_cleans_tmp_on_success(tmp_path: Path) -> None:
    out = tmp_path / "nested" / "mappings.json"

    write_json_atomic(out, {"name": "Ada"})

    assert out.read_text(encoding="utf-8") == '{\n  "name": "Ada"\n}'
    assert list(out.parent.glob("mappings.json.*.tmp")) == []


def test_write_json_atomic_cleans_tmp_on_failure(tmp_path: Path) -> None:
    out = tmp_path / "mappings.json"

    with pytest.raises(TypeError):
        write_json_atomic(out, {"bad": object()})

    assert not out.exists()
    assert list(tmp_path.glob("mappings.json.*.tmp")) == []


def test_write_bytes_atomic_replaces_existing_file(tmp_path: Path) -> None:
    out = tmp_path / "letter.docx"
    out.write_bytes(b"old")

    write_bytes_atomic(out, b"new")

    assert out.read_bytes() == b"new"
    assert list(tmp_path.glob("letter.docx.*.tmp")) == []
