"""Conversion of typed answer values into document display strings."""

from __future__ import annotations

import re
from datetime import date
from decimal import Decimal
from typing import Any

# Whole numbers above this are rendered as money. Kept as a named constant so
# callers can see the heuristic; values at the threshold stay plain.
CURRENCY_THRESHOLD = 1000
CURRENCY_SYMBOL = "$"

_ISO_DATE_PREFIX_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})")


def coerce_value(value: Any) -> str:
    """Return the string a rendered document shows for ``value``.

    Order: sequences, booleans, dates (objects or ISO ``YYYY-MM-DD`` strings),
    numbers, then plain ``str``. ``None`` becomes an empty string.
    """

    if isinstance(value, (list, tuple, set, frozenset)):
        return ", ".join("" if item is None else str(item) for item in value)

    if isinstance(value, bool):
        return "Yes" if value else "No"

    if isinstance(value, date):
        return format_long_date(value)

    if isinstance(value, str):
        parsed = _parse_iso_date_prefix(value)
        return format_long_date(parsed) if parsed is not None else value

    if isinstance(value, (int, float, Decimal)):
        return _format_number(value)

    return "" if value is None else str(value)


def format_long_date(value: date) -> str:
    """Format as ``January 15, 2024``."""

    return f"{value:%B} {value.day}, {value.year}"


def format_currency(value: int | float | Decimal) -> str:
    return f"{CURRENCY_SYMBOL}{value:,.2f}"


def _format_number(value: int | float | Decimal) -> str:
    whole = _is_whole(value)
    if whole and value > CURRENCY_THRESHOLD:
        return format_currency(value)
    if whole and not isinstance(value, int):
        return str(int(value))
    return str(value)


def _is_whole(value: int | float | Decimal) -> bool:
    if isinstance(value, int):
        return True
    if isinstance(value, float):
        return value.is_integer()
    return value.is_finite() and value == value.to_integral_value()


def _parse_iso_date_prefix(value: str) -> date | None:
    match = _ISO_DATE_PREFIX_RE.match(value)
    if match is None:
        return None
    try:
        return date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
    except ValueError:
        return None
