"""Spreadsheet file reading and writing for record import/export."""

from __future__ import annotations

import csv
import io
import logging
from typing import Any, List, Sequence

from openpyxl import Workbook, load_workbook
from openpyxl.utils import get_column_letter

from header_match import ImportFileError

logger = logging.getLogger("fieldkit.imports")

EXPORT_SHEET_TITLE = "Export"
EXPORT_COLUMN_WIDTH = 15
_EXCEL_SUFFIXES = (".xlsx", ".xlsm")


def _read_workbook(data: bytes) -> List[List[Any]]:
    wb = load_workbook(io.BytesIO(data), read_only=True, data_only=True)
    try:
        if not wb.sheetnames:
            return []
        ws = wb[wb.sheetnames[0]]
        return [list(row) for row in ws.iter_rows(values_only=True)]
    finally:
        wb.close()


def _read_csv(data: bytes) -> List[List[Any]]:
    text = data.decode("utf-8-sig")
    return [row for row in csv.reader(io.StringIO(text))]


def read_sheet(filename: str, data: bytes) -> List[List[Any]]:
    """Rows of the first worksheet; header row first."""
    name = (filename or "").strip().lower()
    try:
        if name.endswith(_EXCEL_SUFFIXES):
            rows = _read_workbook(data)
        elif name.endswith(".csv"):
            rows = _read_csv(data)
        else:
            raise ImportFileError("FILE_UNREADABLE", "Only .xlsx, .xlsm and .csv files are supported")
    except ImportFileError:
        raise
    except Exception as exc:
        logger.warning("import_file_unreadable filename=%s error=%s", filename, exc)
        raise ImportFileError("FILE_UNREADABLE", "The file could not be read") from exc
    logger.info("import_file_read filename=%s rows=%s", filename, len(rows))
    return rows


def write_sheet(header: Sequence[str], rows: Sequence[Sequence[Any]]) -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = EXPORT_SHEET_TITLE
    ws.append(list(header))
    for row in rows:
        ws.append(list(row))
    for idx in range(1, len(header) + 1):
        ws.column_dimensions[get_column_letter(idx)].width = EXPORT_COLUMN_WIDTH
    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()
