"""Turn the first sheet of an Excel workbook into records.

Supports:
    .xlsx / .xlsm   openpyxl
    .xls            xlrd

Row 1 names the fields. Each later row with at least one value becomes a
Record with a fresh id; empty cells are left out of that record.
"""

from __future__ import annotations

import io
import logging
import uuid
from datetime import date, datetime, time
from pathlib import Path
from typing import Any, Optional

from openpyxl.utils import get_column_letter

from ..config import settings
from ..errors import ValidationError
from .document_store import Record, Scalar

logger = logging.getLogger(__name__)

XLSX_SUFFIXES = (".xlsx", ".xlsm")
XLS_SUFFIXES = (".xls",)
SPREADSHEET_CONTENT_TYPES = {
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "application/vnd.ms-excel.sheet.macroenabled.12",
    "application/vnd.ms-excel",
}

EMPTY_SHEET_MESSAGE = "The spreadsheet appears to be empty or has no valid data."


def validate_upload(filename: str, size: int, content_type: Optional[str] = None) -> None:
    """Reject files that are not spreadsheets or exceed the import size limit."""
    suffix = Path(filename or "").suffix.lower()
    known_suffix = suffix in XLSX_SUFFIXES + XLS_SUFFIXES
    known_type = (content_type or "").lower() in SPREADSHEET_CONTENT_TYPES
    if not (known_suffix or (known_type and not suffix)):
        raise ValidationError("Please upload a valid Excel file (.xlsx or .xls)")
    if size <= 0:
        raise ValidationError("Empty file")
    if size > settings.max_import_bytes:
        limit_mb = settings.max_import_bytes // (1024 * 1024)
        raise ValidationError(f"File size must be less than {limit_mb}MB")


def document_name_from_filename(filename: str, override: Optional[str] = None) -> str:
    if override and override.strip():
        return override.strip()
    return Path(filename or "").stem or "Imported sheet"


def _read_rows_xlsx(content: bytes) -> list[list[Any]]:
    import openpyxl

    wb = openpyxl.load_workbook(io.BytesIO(content), data_only=True, read_only=True)
    try:
        ws = wb[wb.sheetnames[0]]
        return [list(row) for row in ws.iter_rows(values_only=True)]
    finally:
        wb.close()


def _read_rows_xls(content: bytes) -> list[list[Any]]:
    import xlrd

    book = xlrd.open_workbook(file_contents=content)
    sheet = book.sheet_by_index(0)
    rows: list[list[Any]] = []
    for row_idx in range(sheet.nrows):
        row: list[Any] = []
        for cell in sheet.row(row_idx):
            if cell.ctype in (xlrd.XL_CELL_EMPTY, xlrd.XL_CELL_BLANK):
                row.append(None)
            elif cell.ctype == xlrd.XL_CELL_DATE:
                row.append(xlrd.xldate_as_datetime(cell.value, book.datemode))
            elif cell.ctype == xlrd.XL_CELL_BOOLEAN:
                row.append(bool(cell.value))
            elif cell.ctype == xlrd.XL_CELL_NUMBER and float(cell.value).is_integer():
                row.append(int(cell.value))
            else:
                row.append(cell.value)
        rows.append(row)
    return rows


def _header_names(header_row: list[Any]) -> list[str]:
    names: list[str] = []
    seen: dict[str, int] = {}
    for idx, raw in enumerate(header_row, start=1):
        name = str(raw).strip() if raw is not None else ""
        if not name:
            name = f"Column {get_column_letter(idx)}"
        if name in seen:
            seen[name] += 1
            name = f"{name}_{seen[name]}"
        else:
            seen[name] = 0
        names.append(name)
    return names


def _to_scalar(value: Any) -> Scalar:
    if isinstance(value, str):
        return value if value.strip() else None
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, (bool, int, float)):
        return value
    if value is None:
        return None
    return str(value)


def rows_to_records(rows: list[list[Any]]) -> list[Record]:
    if not rows:
        return []

    header = _header_names(rows[0])
    records: list[Record] = []
    for raw_row in rows[1:]:
        fields: list[tuple[str, Scalar]] = []
        for idx, raw_value in enumerate(raw_row):
            value = _to_scalar(raw_value)
            if value is None:
                continue
            if idx >= len(header):
                # cells to the right of the header row have no field name
                continue
            fields.append((header[idx], value))
        if fields:
            records.append(Record(id=str(uuid.uuid4()), fields=tuple(fields)))
    return records


def parse_workbook(content: bytes, filename: str) -> list[Record]:
    """Parse the first sheet of ``content`` into records.

    Raises ``ValidationError`` when the file cannot be read or holds no data rows.
    """
    suffix = Path(filename or "").suffix.lower()
    reader = _read_rows_xls if suffix in XLS_SUFFIXES else _read_rows_xlsx

    try:
        rows = reader(content)
    except Exception as exc:
        logger.warning("workbook_unreadable filename=%s error=%s", filename, exc)
        raise ValidationError("Failed to process the Excel file. Please check the file and try again.") from exc

    records = rows_to_records(rows)
    if not records:
        raise ValidationError(EMPTY_SHEET_MESSAGE)

    logger.info("workbook_parsed filename=%s records=%s", filename, len(records))
    return records
