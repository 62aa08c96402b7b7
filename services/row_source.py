"""
Row source - read an uploaded order export into rows of text fields.

CSV files go through the csv module; .xlsx/.xlsm workbooks through
openpyxl (first sheet, cached values). The first non-empty row is the
header row.
"""

import csv
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional
from zipfile import BadZipFile

import openpyxl
from openpyxl.utils.exceptions import InvalidFileException

from services.errors import OrderImportError
from services.row_normalizer import COLUMN_LABELS, OrderField

logger = logging.getLogger(__name__)

CSV_EXTENSIONS = ('.csv',)
EXCEL_EXTENSIONS = ('.xlsx', '.xlsm')
SUPPORTED_EXTENSIONS = CSV_EXTENSIONS + EXCEL_EXTENSIONS


@dataclass
class RowSet:
    """Headers plus rows keyed by header."""
    headers: List[str] = field(default_factory=list)
    rows: List[Dict[str, str]] = field(default_factory=list)

    def preview(self, limit: int) -> List[Dict[str, str]]:
        return self.rows[:limit]


def unique_headers(raw: Iterable[Any]) -> List[str]:
    """
    Stringify headers, naming blanks ``Column N`` and suffixing repeats
    with ``_2``, ``_3`` and so on.
    """
    headers = []
    seen: Dict[str, int] = {}
    for position, value in enumerate(raw, 1):
        name = cell_text(value) or f"Column {position}"
        count = seen.get(name, 0) + 1
        seen[name] = count
        headers.append(name if count == 1 else f"{name}_{count}")
    return headers


def cell_text(value: Any) -> str:
    """Render a cell value as the text a user would see."""
    if value is None:
        return ''
    if isinstance(value, datetime):
        return value.isoformat(sep=' ')
    if isinstance(value, (date, time)):
        return value.isoformat()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def _build(records: Iterable[List[Any]]) -> RowSet:
    result = RowSet()
    for record in records:
        values = [cell_text(value) for value in record]
        if not any(values):
            continue
        if not result.headers:
            result.headers = unique_headers(values)
            continue
        values += [''] * (len(result.headers) - len(values))
        result.rows.append(dict(zip(result.headers, values)))
    return result


def read_csv(path: Path) -> RowSet:
    # utf-8-sig drops the BOM spreadsheet tools put in front of exports
    try:
        with open(path, newline='', encoding='utf-8-sig') as handle:
            return _build(csv.reader(handle))
    except (UnicodeDecodeError, csv.Error) as e:
        raise OrderImportError(f"Could not read {path.name}: save it as UTF-8 csv ({e})") from e


def read_workbook(path: Path) -> RowSet:
    try:
        workbook = openpyxl.load_workbook(path, read_only=True, data_only=True)
    except (InvalidFileException, BadZipFile) as e:
        raise OrderImportError(f"Could not open workbook {path.name}: {e}") from e
    try:
        sheet = workbook.worksheets[0]
        return _build(list(row) for row in sheet.iter_rows(values_only=True))
    finally:
        workbook.close()


def read_rows(file_path: str) -> RowSet:
    """
    Read ``file_path`` into a ``RowSet``.

    Raises:
        OrderImportError: unsupported extension, missing file, or a file
            that cannot be decoded or opened.
    """
    path = Path(file_path)
    suffix = path.suffix.lower()
    if suffix not in SUPPORTED_EXTENSIONS:
        raise OrderImportError(
            f"Unsupported file type '{suffix}'. Allowed: {', '.join(SUPPORTED_EXTENSIONS)}"
        )
    if not path.exists():
        raise OrderImportError(f"File not found: {file_path}")

    rows = read_csv(path) if suffix in CSV_EXTENSIONS else read_workbook(path)
    logger.info(f"Read {len(rows.rows)} rows with {len(rows.headers)} columns from {path.name}")
    return rows


def suggest_mapping(headers: List[str]) -> Dict[str, Optional[str]]:
    """
    Propose a header mapping by matching each header against the
    conventional column labels, case-insensitively. Each field is
    proposed for one column at most; unmatched columns map to None.
    """
    by_label = {label.lower(): order_field for order_field, label in COLUMN_LABELS.items()}
    by_label.update({order_field.value: order_field for order_field in OrderField
                     if order_field is not OrderField.CUSTOM_FIELD})

    used = set()
    mapping: Dict[str, Optional[str]] = {}
    for header in headers:
        order_field = by_label.get(header.strip().lower())
        if order_field is None or order_field in used:
            mapping[header] = None
            continue
        used.add(order_field)
        mapping[header] = order_field.value
    return mapping
