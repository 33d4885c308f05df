"""Name similarity scoring between data fields and placeholders."""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass

MATCH_THRESHOLD = 0.5
EXACT_CONFIDENCE = 1.0
PARTIAL_CONFIDENCE = 0.9
WORD_OVERLAP_WEIGHT = 0.8

_CAMEL_BOUNDARY_RE = re.compile(r"([a-z0-9])([A-Z])")
_SEPARATOR_RE = re.compile(r"[_\-\s]+")


@dataclass(frozen=True)
class MatchResult:
    """Best candidate field for a placeholder name."""

    field: str
    confidence: float
    reason: str


def split_field_name(name: str) -> list[str]:
    """Split a field name into lower-case words of two or more characters."""

    spaced = _CAMEL_BOUNDARY_RE.sub(r"\1 \2", name)
    words: list[str] = []
    for word in _SEPARATOR_RE.split(spaced.lower()):
        if len(word) > 1 and word not in words:
            words.append(word)
    return words


def score_match(placeholder_name: str, field_name: str) -> tuple[float, str]:
    """Score one field against a placeholder name; returns (confidence, reason)."""

    placeholder = placeholder_name.lower()
    field = field_name.lower()
    if not placeholder or not field:
        return 0.0, ""

    if field == placeholder:
        return EXACT_CONFIDENCE, "exact"
    if field in placeholder or placeholder in field:
        return PARTIAL_CONFIDENCE, "partial"

    field_words = split_field_name(field_name)
    placeholder_words = split_field_name(placeholder_name)
    common = [word for word in field_words if word in placeholder_words]
    if not common:
        return 0.0, ""

    confidence = len(common) / max(len(field_words), len(placeholder_words)) * WORD_OVERLAP_WEIGHT
    return confidence, f"common words: {', '.join(common)}"


def best_match(placeholder_name: str, candidate_fields: Iterable[str]) -> MatchResult | None:
    """Return the best scoring field, or None when no score exceeds the threshold.

    Ties are broken by field name so the result does not depend on input order.
    """

    best: MatchResult | None = None
    for field in candidate_fields:
        confidence, reason = score_match(placeholder_name, field)
        if confidence <= 0:
            continue
        if (
            best is None
            or confidence > best.confidence
            or (confidence == best.confidence and field < best.field)
        ):
            best = MatchResult(field=field, confidence=confidence, reason=reason)

    if best is None or best.confidence <= MATCH_THRESHOLD:
        return None
    return best
