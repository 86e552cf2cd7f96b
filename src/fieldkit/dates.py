"""Date and time conversion between display, canonical and spreadsheet forms.

Display format is ``DD/MM/YYYY``; canonical (wire) format is ISO ``YYYY-MM-DD``.
Times are canonical as ``HH:MM``.
"""

from __future__ import annotations

import math
import re
from datetime import date, datetime, time, timedelta
from typing import Any

DISPLAY_FORMAT = "%d/%m/%Y"
ISO_FORMAT = "%Y-%m-%d"

# Spreadsheet day zero (accounts for the 1900 leap year bug).
_SERIAL_EPOCH = date(1899, 12, 30)
_SERIAL_MIN = 10000
_SERIAL_MAX = 2958465

_DISPLAY_RE = re.compile(r"^(\d{1,2})[/.\-](\d{1,2})[/.\-](\d{4})$")
_ISO_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")
_ISO_PREFIX_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})[T ]")
_SERIAL_RE = re.compile(r"^\d{5,7}(\.\d+)?$")
_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2})(?:\.\d+)?)?$")


def _safe_date(year: int, month: int, day: int) -> date | None:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def serial_to_date(serial: float) -> date | None:
    if isinstance(serial, bool) or not isinstance(serial, (int, float)):
        return None
    if not math.isfinite(serial) or serial < _SERIAL_MIN or serial > _SERIAL_MAX:
        return None
    return _SERIAL_EPOCH + timedelta(days=int(serial))


def parse_date(value: Any) -> date | None:
    """Best-effort parse of any supported date representation."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, (int, float)):
        return serial_to_date(value)
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text:
        return None
    match = _ISO_RE.match(text) or _ISO_PREFIX_RE.match(text)
    if match:
        year, month, day = (int(part) for part in match.groups())
        return _safe_date(year, month, day)
    match = _DISPLAY_RE.match(text)
    if match:
        day, month, year = (int(part) for part in match.groups())
        return _safe_date(year, month, day)
    if _SERIAL_RE.match(text):
        return serial_to_date(float(text))
    return None


def to_iso_date(value: Any) -> str | None:
    parsed = parse_date(value)
    return parsed.strftime(ISO_FORMAT) if parsed else None


def is_iso_date(value: Any) -> bool:
    if not isinstance(value, str) or not _ISO_RE.match(value):
        return False
    return parse_date(value) is not None


def format_date_for_display(value: Any) -> str:
    """Render a date for forms and tables; unparsable text is returned as-is."""
    if value is None or value == "":
        return ""
    parsed = parse_date(value)
    if parsed is None:
        return str(value)
    return parsed.strftime(DISPLAY_FORMAT)


def parse_date_for_submit(value: Any) -> str:
    """Display or ISO date -> ISO string, ``""`` when it cannot be parsed."""
    return to_iso_date(value) or ""


def to_time_string(value: Any) -> str | None:
    """Normalize a time of day to ``HH:MM``.

    Accepts ``time``/``datetime`` objects, ``H:MM[:SS]`` strings and
    spreadsheet day fractions (``0 <= x < 1``).
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value.strftime("%H:%M")
    if isinstance(value, time):
        return value.strftime("%H:%M")
    if isinstance(value, (int, float)):
        if not math.isfinite(value) or value < 0 or value >= 1:
            return None
        minutes = int(round(value * 24 * 60))
        if minutes >= 24 * 60:
            return None
        return f"{minutes // 60:02d}:{minutes % 60:02d}"
    if not isinstance(value, str):
        return None
    match = _TIME_RE.match(value.strip())
    if not match:
        return None
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        return None
    return f"{hours:02d}:{minutes:02d}"
