"""Build placeholder-keyed render data from field values and mappings."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any

from surveydoc.mapping.models import FieldMapping
from surveydoc.render.coercion import coerce_value
from surveydoc.render.models import CompletenessReport

logger = logging.getLogger(__name__)

# Reserved keys use a leading underscore so they never collide with field names.
GENERATED_DATE_KEY = "_generated_date"
GENERATED_TIME_KEY = "_generated_time"
GENERATED_DATETIME_KEY = "_generated_datetime"


def build_template_data(
    field_values: Mapping[str, Any],
    mappings: Iterable[FieldMapping],
    *,
    now: datetime | None = None,
) -> dict[str, str]:
    """Coerce mapped field values into a placeholder-keyed record.

    Missing values render as empty strings and are logged, not raised.
    """

    data: dict[str, str] = {}
    for mapping in mappings:
        key = placeholder_key(mapping.placeholder_name)
        value = field_values.get(mapping.data_field)
        if value is None:
            logger.warning("Field value missing for %s", mapping.data_field)
            data[key] = ""
            continue
        data[key] = coerce_value(value)

    data.update(generated_fields(now or datetime.now()))
    return data


def generated_fields(now: datetime) -> dict[str, str]:
    """Return generation timestamp fields in US short formats."""

    date_text = f"{now.month}/{now.day}/{now.year}"
    hour = now.hour % 12 or 12
    meridiem = "AM" if now.hour < 12 else "PM"
    time_text = f"{hour}:{now.minute:02d}:{now.second:02d} {meridiem}"
    return {
        GENERATED_DATE_KEY: date_text,
        GENERATED_TIME_KEY: time_text,
        GENERATED_DATETIME_KEY: f"{date_text}, {time_text}",
    }


def placeholder_key(placeholder_name: str) -> str:
    """Strip template braces from a placeholder reference."""

    return placeholder_name.replace("{", "").replace("}", "").strip()


def validate_completeness(
    field_values: Mapping[str, Any], mappings: Iterable[FieldMapping]
) -> CompletenessReport:
    """List required fields without a value and warn on empty optional ones."""

    missing_required: list[str] = []
    warnings: list[str] = []

    for mapping in mappings:
        value = field_values.get(mapping.data_field)
        if mapping.required and (value is None or value == ""):
            missing_required.append(mapping.data_field)
        if not mapping.required and value is None:
            warnings.append(f"Optional field '{mapping.data_field}' is empty, using default value")

    return CompletenessReport(
        is_valid=not missing_required,
        missing_required=missing_required,
        warnings=warnings,
    )
