"""
Utils package
"""

from .months import (
    format_month_key,
    month_start,
    months_between_inclusive,
    next_month,
    parse_month_key,
    previous_month,
)

__all__ = [
    "format_month_key",
    "month_start",
    "months_between_inclusive",
    "next_month",
    "parse_month_key",
    "previous_month",
]
