"""fieldkit kernel utilities."""

from .accessor_path import (
    DYNAMIC_PREFIX,
    AccessorPathError,
    dynamic_accessor,
    is_dynamic_accessor,
    parse_dynamic_accessor,
    try_parse_dynamic_accessor,
)
from .dates import format_date_for_display, parse_date_for_submit, to_iso_date, to_time_string

__all__ = [
    "DYNAMIC_PREFIX",
    "AccessorPathError",
    "dynamic_accessor",
    "format_date_for_display",
    "is_dynamic_accessor",
    "parse_date_for_submit",
    "parse_dynamic_accessor",
    "to_iso_date",
    "to_time_string",
    "try_parse_dynamic_accessor",
]
