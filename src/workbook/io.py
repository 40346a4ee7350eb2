"""
Workbook input/output (openpyxl).

Canonical sheets are read as a header row plus one dict per data row and
rewritten in place from those dicts; every other sheet is left exactly as
loaded (formulas and styles included).
"""

import base64
import binascii
import zipfile
from dataclasses import dataclass, field
from io import BytesIO
from typing import Any, Dict, Iterable, List, Sequence

from openpyxl import Workbook, load_workbook
from openpyxl.utils.exceptions import InvalidFileException
from openpyxl.worksheet.worksheet import Worksheet

from config.constants import ERRORS_SHEET_COLUMNS, ERRORS_SHEET_NAME, XLSX_MIME_TYPE
from core.exceptions import InvalidWorkbookError

_DATA_URL_PREFIX = f"data:{XLSX_MIME_TYPE};base64,"


@dataclass
class SheetRows:
    """Data rows of one sheet, keyed by header, in sheet order."""
    name: str
    headers: List[str]
    rows: List[Dict[str, Any]] = field(default_factory=list)

    def all_headers(self) -> List[str]:
        """Original headers followed by any column added to the rows."""
        headers = list(self.headers)
        seen = set(headers)
        for row in self.rows:
            for key in row:
                if key not in seen:
                    seen.add(key)
                    headers.append(key)
        return headers


@dataclass
class LoadedWorkbook:
    book: Workbook
    values: Workbook  # same file, cached formula values instead of formulas

    @property
    def sheet_names(self) -> List[str]:
        return list(self.book.sheetnames)


def load(file_bytes: bytes) -> LoadedWorkbook:
    """
    Read an .xlsx file.

    Raises:
        InvalidWorkbookError: empty or unreadable bytes
    """
    if not file_bytes:
        raise InvalidWorkbookError("Empty workbook file")
    try:
        book = load_workbook(BytesIO(file_bytes))
        values = load_workbook(BytesIO(file_bytes), data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, ValueError, OSError) as e:
        raise InvalidWorkbookError(f"Unreadable workbook: {e}") from e
    return LoadedWorkbook(book=book, values=values)


def _dedupe_headers(raw_headers: Sequence[Any]) -> List[str]:
    headers = []
    counts: Dict[str, int] = {}
    for index, raw in enumerate(raw_headers):
        name = str(raw).strip() if raw is not None and str(raw).strip() else f"colonne_{index + 1}"
        if name in counts:
            counts[name] += 1
            name = f"{name}_{counts[name]}"
        else:
            counts[name] = 0
        headers.append(name)
    return headers


def read_rows(loaded: LoadedWorkbook, sheet_name: str) -> SheetRows:
    """
    Header row + data rows of one sheet.

    Empty cells read as "", fully blank rows are skipped, trailing unnamed
    empty columns are dropped, duplicate headers get a _1, _2 suffix.
    """
    ws = loaded.values[sheet_name]
    grid = [list(r) for r in ws.iter_rows(values_only=True)]
    if not grid:
        return SheetRows(name=sheet_name, headers=[])

    width = 0
    for line in grid:
        for index, value in enumerate(line):
            if value is not None and str(value).strip() != "":
                width = max(width, index + 1)

    header_line = (grid[0] + [None] * width)[:width]
    headers = _dedupe_headers(header_line)

    rows = []
    for line in grid[1:]:
        cells = (line + [None] * width)[:width]
        if all(c is None or str(c).strip() == "" for c in cells):
            continue
        rows.append({h: ("" if c is None else c) for h, c in zip(headers, cells)})

    return SheetRows(name=sheet_name, headers=headers, rows=rows)


def _write_table(ws: Worksheet, headers: List[str], rows: Iterable[Dict[str, Any]]) -> None:
    # Explicit coordinates: append() would resume after the deleted rows
    if ws.max_row:
        ws.delete_rows(1, ws.max_row)
    for col, header in enumerate(headers, start=1):
        ws.cell(row=1, column=col, value=header)
    for row_idx, row in enumerate(rows, start=2):
        for col, header in enumerate(headers, start=1):
            ws.cell(row=row_idx, column=col, value=row.get(header, ""))


def write_rows(loaded: LoadedWorkbook, sheet: SheetRows) -> None:
    """Replace a sheet's content with its (mutated) rows."""
    _write_table(loaded.book[sheet.name], sheet.all_headers(), sheet.rows)


def replace_errors_sheet(loaded: LoadedWorkbook, error_rows: List[Dict[str, Any]]) -> None:
    """Drop any previous Erreurs sheet and rebuild it at the end of the workbook."""
    if ERRORS_SHEET_NAME in loaded.book.sheetnames:
        del loaded.book[ERRORS_SHEET_NAME]
    ws = loaded.book.create_sheet(ERRORS_SHEET_NAME)
    _write_table(ws, list(ERRORS_SHEET_COLUMNS), error_rows)


def save(loaded: LoadedWorkbook) -> bytes:
    buffer = BytesIO()
    loaded.book.save(buffer)
    return buffer.getvalue()


def to_data_url(file_bytes: bytes) -> str:
    """Encode an .xlsx file as a base64 data URL."""
    return _DATA_URL_PREFIX + base64.b64encode(file_bytes).decode("ascii")


def from_data_url(url: str) -> bytes:
    """Decode a data URL produced by to_data_url()."""
    if not url or not url.startswith(_DATA_URL_PREFIX):
        raise ValueError("Not an xlsx data URL")
    try:
        return base64.b64decode(url[len(_DATA_URL_PREFIX):], validate=True)
    except binascii.Error as e:
        raise ValueError(f"Invalid base64 payload: {e}") from e
