"""Custom exceptions for core logic."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from surveydoc.render.models import BatchItemResult


class FormatError(Exception):
    """Raised when an input container or JSON payload has an unexpected shape."""

    def __init__(self, message: str, *, detail: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.detail = detail or {}


class UnsupportedFileTypeError(FormatError):
    """Raised when a template upload does not carry an accepted extension."""


class DocumentTooLargeError(FormatError):
    """Raised when an input exceeds the configured size cap."""

    def __init__(self, message: str, *, max_bytes: int, actual_bytes: int) -> None:
        super().__init__(message, detail={"max_bytes": max_bytes, "actual_bytes": actual_bytes})
        self.max_bytes = max_bytes
        self.actual_bytes = actual_bytes


class NotFoundError(Exception):
    """Raised when a referenced field or placeholder is not in the known sets."""

    def __init__(self, message: str, *, kind: str, name: str) -> None:
        super().__init__(message)
        self.kind = kind
        self.name = name


class ValidationError(Exception):
    """Raised when an operation precondition is violated."""

    def __init__(self, message: str, *, missing: list[str] | None = None) -> None:
        super().__init__(message)
        self.missing = missing or []


class TemplateProcessingError(Exception):
    """Raised when the substitution engine rejects a template/data pair."""

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details = details or {}


class BatchRenderError(Exception):
    """Raised when every template of a batch generation failed."""

    def __init__(self, message: str, *, results: list[BatchItemResult]) -> None:
        super().__init__(message)
        self.results = results
