"""Session-scoped registry of data field to placeholder mappings."""

from __future__ import annotations

import itertools
import logging
import math
import time
from collections import Counter
from collections.abc import Iterable, Mapping
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from surveydoc.mapping.matcher import best_match
from surveydoc.mapping.models import (
    FieldMapping,
    MappingSnapshot,
    MappingStatistics,
    MappingSuggestion,
    MappingValidation,
    SnapshotMapping,
    SnapshotPlaceholder,
)
from surveydoc.templates.models import Placeholder, PlaceholderKind
from surveydoc.utils.errors import FormatError, NotFoundError

logger = logging.getLogger(__name__)

DEFAULT_MIN_CONFIDENCE = 0.8


class MappingRegistry:
    """Own the mapping set for one editing session.

    Mappings are keyed by generated id. Known fields and placeholders are
    checked when a mapping is created; use ``revalidate`` after the known sets
    change to find mappings that no longer resolve.
    """

    def __init__(
        self,
        fields: Iterable[str] | None = None,
        placeholders: Iterable[Placeholder] | None = None,
    ) -> None:
        self._mappings: dict[str, FieldMapping] = {}
        self._fields: list[str] = []
        self._placeholders: dict[str, Placeholder] = {}
        self._sequence = itertools.count(1)
        if fields is not None or placeholders is not None:
            self.initialize(fields or [], placeholders or [])

    @property
    def fields(self) -> list[str]:
        return list(self._fields)

    @property
    def placeholders(self) -> list[Placeholder]:
        return list(self._placeholders.values())

    def initialize(self, fields: Iterable[str], placeholders: Iterable[Placeholder]) -> None:
        """Replace the known fields and placeholders and drop every mapping."""

        self.update_fields(fields)
        self.update_placeholders(placeholders)
        self._mappings.clear()
        logger.info(
            "Initialized mapping registry with %d fields and %d placeholders",
            len(self._fields),
            len(self._placeholders),
        )

    def update_fields(self, fields: Iterable[str]) -> None:
        """Replace the known fields, keeping existing mappings."""

        self._fields = list(dict.fromkeys(fields))

    def update_placeholders(self, placeholders: Iterable[Placeholder]) -> None:
        """Replace the known placeholders, keeping existing mappings."""

        self._placeholders = {}
        for placeholder in placeholders:
            self._placeholders.setdefault(placeholder.name, placeholder)

    def create_mapping(
        self,
        field: str,
        placeholder_name: str,
        *,
        confidence: float = 1.0,
        notes: str | None = None,
    ) -> str:
        """Create a mapping and return its id.

        Raises:
            NotFoundError: field or placeholder is not known to the registry.
        """

        placeholder = self._placeholders.get(placeholder_name)
        if placeholder is None:
            raise NotFoundError(
                f'Placeholder "{placeholder_name}" not found',
                kind="placeholder",
                name=placeholder_name,
            )
        if field not in self._fields:
            raise NotFoundError(f'Field "{field}" not found', kind="field", name=field)

        mapping_id = self._generate_mapping_id(field, placeholder_name)
        self._mappings[mapping_id] = FieldMapping(
            id=mapping_id,
            data_field=field,
            placeholder_name=placeholder_name,
            placeholder_kind=placeholder.kind,
            required=placeholder.required or placeholder.kind is PlaceholderKind.SIMPLE,
            confidence=confidence,
            notes=notes,
        )
        logger.debug("Created mapping %s -> %s", field, placeholder_name)
        return mapping_id

    def remove_mapping(self, mapping_id: str) -> bool:
        return self._mappings.pop(mapping_id, None) is not None

    def update_mapping_notes(self, mapping_id: str, notes: str | None) -> bool:
        mapping = self._mappings.get(mapping_id)
        if mapping is None:
            return False
        self._mappings[mapping_id] = mapping.model_copy(update={"notes": notes})
        return True

    def clear_mappings(self) -> None:
        self._mappings.clear()

    def get_mapping(self, mapping_id: str) -> FieldMapping | None:
        return self._mappings.get(mapping_id)

    def get_mappings(self) -> list[FieldMapping]:
        return list(self._mappings.values())

    def get_mappings_for_field(self, field: str) -> list[FieldMapping]:
        return [item for item in self._mappings.values() if item.data_field == field]

    def get_mappings_for_placeholder(self, placeholder_name: str) -> list[FieldMapping]:
        return [
            item for item in self._mappings.values() if item.placeholder_name == placeholder_name
        ]

    def generate_suggestions(self) -> list[MappingSuggestion]:
        """Suggest fields for unmapped simple placeholders, best confidence first."""

        mapped = {item.placeholder_name for item in self._mappings.values()}
        suggestions: list[MappingSuggestion] = []

        for placeholder in self._placeholders.values():
            if placeholder.name in mapped or placeholder.kind is not PlaceholderKind.SIMPLE:
                continue
            match = best_match(placeholder.name, self._fields)
            if match is None:
                continue
            suggestions.append(
                MappingSuggestion(
                    data_field=match.field,
                    placeholder_name=placeholder.name,
                    confidence=match.confidence,
                    reason=match.reason,
                )
            )

        return sorted(suggestions, key=lambda item: item.confidence, reverse=True)

    def apply_suggestions(self, min_confidence: float = DEFAULT_MIN_CONFIDENCE) -> int:
        """Apply suggestions at or above ``min_confidence`` to unmapped fields."""

        applied = 0
        for suggestion in self.generate_suggestions():
            if suggestion.confidence < min_confidence:
                continue
            if self.get_mappings_for_field(suggestion.data_field):
                continue
            self.create_mapping(
                suggestion.data_field,
                suggestion.placeholder_name,
                confidence=suggestion.confidence,
            )
            applied += 1

        logger.info("Applied %d automatic suggestions", applied)
        return applied

    def validate(self) -> MappingValidation:
        mappings = self.get_mappings()
        errors: list[str] = []
        warnings: list[str] = []

        field_counts = Counter(item.data_field for item in mappings)
        for field, count in field_counts.items():
            if count > 1:
                warnings.append(f'Field "{field}" is mapped to multiple placeholders')

        placeholder_counts = Counter(item.placeholder_name for item in mappings)
        for name, count in placeholder_counts.items():
            if count > 1:
                errors.append(f'Placeholder "{name}" is mapped to multiple fields')

        mapped_placeholders = set(placeholder_counts)
        required = [
            placeholder
            for placeholder in self._placeholders.values()
            if placeholder.required or placeholder.kind is PlaceholderKind.SIMPLE
        ]
        for placeholder in required:
            if placeholder.name not in mapped_placeholders:
                errors.append(f'Required placeholder "{placeholder.name}" is not mapped')

        mapped_required = sum(1 for item in required if item.name in mapped_placeholders)
        completeness = mapped_required / len(required) * 100 if required else 100.0

        return MappingValidation(
            is_valid=not errors,
            errors=errors,
            warnings=warnings,
            mapped_count=len(mappings),
            required_count=len(required),
            completeness=math.floor(completeness + 0.5),
        )

    def statistics(self) -> MappingStatistics:
        mappings = self.get_mappings()
        by_kind = {kind.value: 0 for kind in PlaceholderKind}
        for item in mappings:
            by_kind[item.placeholder_kind.value] += 1

        mapped_fields = {item.data_field for item in mappings}
        mapped_placeholders = {item.placeholder_name for item in mappings}
        return MappingStatistics(
            total_mappings=len(mappings),
            by_kind=by_kind,
            unmapped_fields=len([name for name in self._fields if name not in mapped_fields]),
            unmapped_placeholders=len(
                [name for name in self._placeholders if name not in mapped_placeholders]
            ),
            completeness=self.validate().completeness,
        )

    def revalidate(self, *, prune: bool = False) -> list[FieldMapping]:
        """Return mappings whose field or placeholder is no longer known."""

        stale = [
            item
            for item in self._mappings.values()
            if item.data_field not in self._fields
            or item.placeholder_name not in self._placeholders
        ]
        if prune:
            for item in stale:
                del self._mappings[item.id]
            if stale:
                logger.warning("Pruned %d stale mappings", len(stale))
        return stale

    def export_snapshot(self) -> dict[str, Any]:
        snapshot = MappingSnapshot(
            created_at=_utc_timestamp(),
            survey_fields=list(self._fields),
            placeholders=[
                SnapshotPlaceholder(name=item.name, type=item.kind, is_required=item.required)
                for item in self._placeholders.values()
            ],
            mappings=[
                SnapshotMapping(
                    survey_field=item.data_field,
                    placeholder=item.placeholder_name,
                    placeholder_type=item.placeholder_kind,
                    is_required=item.required,
                    notes=item.notes,
                )
                for item in self._mappings.values()
            ],
        )
        return snapshot.to_payload()

    def import_snapshot(self, data: Mapping[str, Any]) -> int:
        """Replace mappings from a snapshot and return how many were imported.

        Raises:
            FormatError: payload is not a mapping or has no ``mappings`` list.

        Entries that are malformed or reference unknown names are skipped.
        """

        if not isinstance(data, Mapping) or not isinstance(data.get("mappings"), list):
            raise FormatError("Invalid mapping data format", detail={"expected": "mappings[]"})

        self._mappings.clear()
        imported = 0

        for raw_entry in data["mappings"]:
            try:
                entry = SnapshotMapping.model_validate(raw_entry)
            except PydanticValidationError:
                logger.warning("Skipped malformed mapping entry: %r", raw_entry)
                continue

            known = (
                entry.survey_field in self._fields and entry.placeholder in self._placeholders
            )
            if not known:
                logger.warning(
                    "Skipped mapping %s -> %s: not in current fields/placeholders",
                    entry.survey_field,
                    entry.placeholder,
                )
                continue

            self.create_mapping(entry.survey_field, entry.placeholder, notes=entry.notes or None)
            imported += 1

        logger.info("Imported %d mappings", imported)
        return imported

    def _generate_mapping_id(self, field: str, placeholder_name: str) -> str:
        return f"{field}_to_{placeholder_name}_{time.time_ns()}_{next(self._sequence)}"


def _utc_timestamp() -> str:
    now = datetime.now(timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")
