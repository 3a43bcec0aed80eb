"""
Calendar month helpers

Budget months are keyed by the first day of the month; the external key format
is ``YYYY-MM``.
"""

from __future__ import annotations

import re
from datetime import date

from budget_backend.core.errors import ValidationFailedError

MONTH_KEY_PATTERN = re.compile(r"^(\d{4})-(0[1-9]|1[0-2])$")


def parse_month_key(value: str) -> date:
    """
    Convert a ``YYYY-MM`` key into the first day of that month.

    Raises:
        ValidationFailedError: when the key does not match ``^\\d{4}-(0[1-9]|1[0-2])$``

    Example:
        >>> parse_month_key("2025-03")
        datetime.date(2025, 3, 1)
    """
    match = MONTH_KEY_PATTERN.match(value or "")
    if not match:
        raise ValidationFailedError(f"Invalid month key: {value!r} (expected YYYY-MM)")
    year, month = match.groups()
    return date(int(year), int(month), 1)


def format_month_key(value: date) -> str:
    return f"{value.year:04d}-{value.month:02d}"


def month_start(value: date) -> date:
    return value.replace(day=1)


def next_month(value: date) -> date:
    if value.month == 12:
        return date(value.year + 1, 1, 1)
    return date(value.year, value.month + 1, 1)


def previous_month(value: date) -> date:
    if value.month == 1:
        return date(value.year - 1, 12, 1)
    return date(value.year, value.month - 1, 1)


def months_between_inclusive(start: date, end: date) -> int:
    """Number of calendar months from ``start`` to ``end`` counting both ends; 0 if ``end`` precedes ``start``."""
    start_index = start.year * 12 + start.month - 1
    end_index = end.year * 12 + end.month - 1
    if end_index < start_index:
        return 0
    return end_index - start_index + 1
