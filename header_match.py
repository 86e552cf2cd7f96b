"""Spreadsheet header matching and positional row extraction."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Any, Callable, Dict, Iterable, List, Sequence

from fieldkit.dates import format_date_for_display, to_time_string
from field_schema import ColumnSpec, FieldDefinition

logger = logging.getLogger("fieldkit.imports")


@dataclass
class ImportFileError(Exception):
    """File-level import failure; terminal for one import attempt."""

    code: str
    message: str

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        return f"{self.code}: {self.message}"

    def as_issue(self) -> dict:
        return {"code": self.code, "message": self.message, "path": None, "detail": None}


def normalize_header(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip().lower()


def stringify_cell(value: Any) -> str:
    """Spreadsheet cell -> trimmed string (dates in display format)."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (datetime, date)):
        return format_date_for_display(value)
    if isinstance(value, time):
        return to_time_string(value) or ""
    if isinstance(value, float):
        if not math.isfinite(value):
            return ""
        if value.is_integer():
            return str(int(value))
    return str(value).strip()


@dataclass(frozen=True)
class HeaderCandidate:
    key: str
    texts: tuple


class HeaderMatcher:
    """Maps free-text headers to internal field keys.

    Candidates are registered per column (label, name, header text) in column
    order; the first registration of a normalized string wins.
    """

    def __init__(self, candidates: Iterable[HeaderCandidate]) -> None:
        self._lookup: Dict[str, str] = {}
        for candidate in candidates:
            for text in candidate.texts:
                normalized = normalize_header(text)
                if normalized and normalized not in self._lookup:
                    self._lookup[normalized] = candidate.key

    @classmethod
    def from_columns(cls, columns: Iterable[ColumnSpec]) -> "HeaderMatcher":
        return cls(HeaderCandidate(key=c.key, texts=tuple(c.header_candidates())) for c in columns)

    @classmethod
    def from_definitions(
        cls,
        definitions: Iterable[FieldDefinition],
        key: Callable[[FieldDefinition], str] | None = None,
    ) -> "HeaderMatcher":
        key_fn = key or (lambda d: d.name)
        return cls(
            HeaderCandidate(key=key_fn(d), texts=(d.label, d.name, d.column_header or ""))
            for d in definitions
        )

    def lookup(self, header: Any) -> str | None:
        return self._lookup.get(normalize_header(header))

    def match(self, header_row: Sequence[Any]) -> List[str | None]:
        return [self.lookup(cell) for cell in header_row]

    def read_rows(self, sheet_rows: Sequence[Sequence[Any]]) -> "ImportPreview":
        return read_rows(sheet_rows, self)


@dataclass
class ImportPreview:
    rows: List[Dict[str, str]]
    mapping: Dict[int, str]
    unmatched_headers: List[str] = field(default_factory=list)
    skipped_rows: int = 0


def read_rows(sheet_rows: Sequence[Sequence[Any]], matcher: HeaderMatcher) -> ImportPreview:
    """Read body rows positionally through the header map built once per import."""
    if not sheet_rows:
        raise ImportFileError("FILE_EMPTY", "The file is empty")
    header_row = list(sheet_rows[0] or [])
    if not any(normalize_header(cell) for cell in header_row):
        raise ImportFileError("FILE_EMPTY", "No headers found in the file")

    mapping: Dict[int, str] = {}
    unmatched: List[str] = []
    for index, key in enumerate(matcher.match(header_row)):
        if key is None:
            text = stringify_cell(header_row[index])
            if text:
                unmatched.append(text)
            continue
        mapping[index] = key
    if not mapping:
        raise ImportFileError("NO_MATCHING_HEADERS", "No matching headers between the file and the table")

    rows: List[Dict[str, str]] = []
    skipped = 0
    for raw in sheet_rows[1:]:
        if not raw:
            skipped += 1
            continue
        row: Dict[str, str] = {}
        for index, key in mapping.items():
            if index >= len(raw):
                continue
            text = stringify_cell(raw[index])
            if text:
                row[key] = text
        if row:
            rows.append(row)
        else:
            skipped += 1
    if not rows:
        raise ImportFileError("NO_DATA_ROWS", "No data rows found in the file")
    logger.info(
        "import_rows_read rows=%s skipped=%s matched_columns=%s unmatched=%s",
        len(rows),
        skipped,
        len(mapping),
        len(unmatched),
    )
    return ImportPreview(rows=rows, mapping=mapping, unmatched_headers=unmatched, skipped_rows=skipped)
