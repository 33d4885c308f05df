"""Data models for template placeholder parsing."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class PlaceholderKind(str, Enum):
    """Classification of a placeholder found in a template."""

    SIMPLE = "simple"
    CONDITIONAL = "conditional"
    LOOP = "loop"


@dataclass(frozen=True)
class Placeholder:
    """A named slot inside a template document."""

    name: str
    kind: PlaceholderKind
    full_match: str
    required: bool
    context: str = ""


@dataclass
class ParseResult:
    """Placeholder parsing output for one uploaded document."""

    file_name: str
    file_size: int
    placeholders: list[Placeholder] = field(default_factory=list)
    parse_errors: list[str] = field(default_factory=list)
    document_content: str = ""


@dataclass
class PlaceholderValidation:
    """Placeholders split by whether a data field of the same name exists."""

    valid: list[Placeholder] = field(default_factory=list)
    invalid: list[Placeholder] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)


@dataclass
class PlaceholderStats:
    """Counts of placeholders by kind and requiredness."""

    total: int = 0
    by_kind: dict[str, int] = field(
        default_factory=lambda: {kind.value: 0 for kind in PlaceholderKind}
    )
    required: int = 0
    optional: int = 0
