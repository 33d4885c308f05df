"""CLI I/O helpers for bounded JSON input and atomic output writing."""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any

from surveydoc.utils.errors import DocumentTooLargeError, FormatError


def read_json_file(path: Path, *, max_bytes: int) -> Any:
    """Read a JSON document no larger than ``max_bytes``."""

    size = path.stat().st_size
    if size > max_bytes:
        raise DocumentTooLargeError(
            f"{path.name} exceeds size limit of {max_bytes} bytes",
            max_bytes=max_bytes,
            actual_bytes=size,
        )

    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise FormatError(f"Invalid JSON in {path.name}", detail={"error": str(exc)}) from exc


def read_field_names(path: Path, *, max_bytes: int) -> list[str]:
    """Read field names from a JSON list, or from the keys of a JSON object."""

    raw = read_json_file(path, max_bytes=max_bytes)
    if isinstance(raw, dict):
        raw = list(raw)
    if not isinstance(raw, list) or not all(isinstance(item, str) for item in raw):
        raise FormatError(f"{path.name} must contain a list of field names")
    return raw


def read_field_values(path: Path, *, max_bytes: int) -> dict[str, Any]:
    raw = read_json_file(path, max_bytes=max_bytes)
    if not isinstance(raw, dict):
        raise FormatError(f"{path.name} must contain a JSON object of field values")
    return raw


def write_json_atomic(path: Path, payload: Any) -> None:
    """Write JSON atomically using a temporary file + replace."""

    path.parent.mkdir(parents=True, exist_ok=True)
    fd, raw_tmp_path = tempfile.mkstemp(
        dir=path.parent,
        prefix=f"{path.name}.",
        suffix=".tmp",
    )
    tmp_path = Path(raw_tmp_path)

    try:
        with os.fdopen(fd, "w", encoding="utf-8") as tmp:
            json.dump(payload, tmp, ensure_ascii=False, indent=2)
        tmp_path.replace(path)
    except Exception:
        if tmp_path.exists():
            tmp_path.unlink(missing_ok=True)
        raise


def write_bytes_atomic(path: Path, content: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, raw_tmp_path = tempfile.mkstemp(
        dir=path.parent,
        prefix=f"{path.name}.",
        suffix=".tmp",
    )
    os.close(fd)
    tmp_path = Path(raw_tmp_path)

    try:
        tmp_path.write_bytes(content)
        tmp_path.replace(path)
    except Exception:
        if tmp_path.exists():
            tmp_path.unlink(missing_ok=True)
        raise
