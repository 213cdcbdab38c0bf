"""Local workbook backend that mimics the Google Sheets ``values`` API.

The remote stores only speak to a Sheets-like ``service`` object.  When the
configured spreadsheet id is a file path, :func:`core.sheets_client.build_client`
hands them a :class:`WorkbookService` instead of a googleapiclient resource, so
the application can run against a JSON file shared on a network drive, and the
test-suite can exercise the real request flow without network access.

Cells are stored as strings, which is also what Sheets returns for the default
``FORMATTED_VALUE`` render option.
"""

from __future__ import annotations

import json
import re
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

_FILE_LOCK = threading.RLock()

EXCEL_SUFFIXES = frozenset({".xlsx", ".xls", ".xlsm"})


@dataclass(frozen=True)
class _CellRef:
    row: Optional[int]
    column: Optional[int]


class _WorkbookRequest:
    def __init__(self, callback: Callable[[], Mapping[str, object]]) -> None:
        self._callback = callback

    def execute(self) -> Mapping[str, object]:
        with _FILE_LOCK:
            return self._callback()


class _WorkbookFile:
    def __init__(self, path: Path) -> None:
        self.path = path

    def load(self) -> Dict[str, List[List[str]]]:
        if self.path.suffix.lower() in EXCEL_SUFFIXES:
            raise WorkbookError(
                f"{self.path.name} is an Excel file; use a .json workbook file or a Google Sheet ID."
            )
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as handle:
                payload = json.load(handle)
        except ValueError as exc:
            raise WorkbookError(f"{self.path} is not a JSON workbook: {exc}") from exc
        sheets = payload.get("sheets") if isinstance(payload, dict) else None
        if not isinstance(sheets, dict):
            raise WorkbookError(f"{self.path} has no 'sheets' object.")
        return {title: [[str(cell) for cell in row] for row in rows] for title, rows in sheets.items()}

    def save(self, sheets: Mapping[str, Sequence[Sequence[str]]]) -> None:
        if self.path.parent:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {title: [list(row) for row in rows] for title, rows in sheets.items()}
        temp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(temp_path, "w", encoding="utf-8") as handle:
            json.dump({"sheets": payload}, handle, indent=2, ensure_ascii=False)
        temp_path.replace(self.path)


class WorkbookValuesApi:
    def __init__(self, workbook: _WorkbookFile) -> None:
        self._workbook = workbook

    def get(self, spreadsheetId: str, range: str) -> _WorkbookRequest:  # noqa: N803 - API compatibility
        return _WorkbookRequest(lambda: self._handle_get(range))

    def batchGet(  # noqa: N802 - API compatibility
        self,
        spreadsheetId: str,
        ranges: Sequence[str],
        *,
        majorDimension: str = "ROWS",
    ) -> _WorkbookRequest:
        return _WorkbookRequest(lambda: self._handle_batch_get(ranges, majorDimension))

    def batchUpdate(  # noqa: N802 - API compatibility
        self,
        spreadsheetId: str,
        body: Mapping[str, object],
    ) -> _WorkbookRequest:
        return _WorkbookRequest(lambda: self._handle_batch_update(body))

    def append(  # noqa: D401 - API compatibility
        self,
        spreadsheetId: str,
        range: str,
        body: Mapping[str, object],
        valueInputOption: str = "RAW",
        insertDataOption: str = "INSERT_ROWS",
    ) -> _WorkbookRequest:
        return _WorkbookRequest(lambda: self._handle_append(range, body))

    # ------------------------------------------------------------------
    # Range operations
    # ------------------------------------------------------------------
    def _handle_get(self, range_spec: str) -> Mapping[str, object]:
        sheets = self._workbook.load()
        title, start, end = _parse_range(range_spec)
        if title not in sheets:
            raise WorkbookError(f"Unable to parse range: {range_spec}")
        return {"range": range_spec, "values": _slice_rows(sheets[title], start, end)}

    def _handle_batch_get(self, ranges: Sequence[str], major_dimension: str) -> Mapping[str, object]:
        if major_dimension != "ROWS":
            raise WorkbookError("Only ROWS major dimension is supported")
        return {"valueRanges": [self._handle_get(range_spec) for range_spec in ranges]}

    def _handle_batch_update(self, body: Mapping[str, object]) -> Mapping[str, object]:
        sheets = self._workbook.load()
        updated = 0
        for entry in body.get("data", []) or []:
            if not isinstance(entry, Mapping):
                continue
            title, start, _end = _parse_range(str(entry.get("range", "")))
            rows = sheets.setdefault(title, [])
            base_row = start.row or 1
            base_col = start.column or 1
            for row_offset, values in enumerate(entry.get("values", []) or []):
                _write_row(rows, base_row + row_offset, base_col, values)
                updated += 1
        self._workbook.save(sheets)
        return {"totalUpdatedRows": updated}

    def _handle_append(self, range_spec: str, body: Mapping[str, object]) -> Mapping[str, object]:
        sheets = self._workbook.load()
        title, start, _end = _parse_range(range_spec)
        if title not in sheets:
            raise WorkbookError(f"Unable to parse range: {range_spec}")
        rows = sheets[title]
        _trim_trailing_blank_rows(rows)
        base_col = start.column or 1
        values = list(body.get("values", []) or [])
        first_row = len(rows) + 1
        for offset, row_values in enumerate(values):
            _write_row(rows, first_row + offset, base_col, row_values)
        self._workbook.save(sheets)
        return {"updates": {"updatedRows": len(values)}}


class WorkbookSpreadsheetsApi:
    def __init__(self, workbook: _WorkbookFile) -> None:
        self._workbook = workbook

    def values(self) -> WorkbookValuesApi:  # noqa: D401 - compatibility proxy
        return WorkbookValuesApi(self._workbook)

    def get(
        self,
        spreadsheetId: str,
        includeGridData: bool = False,
        ranges: Iterable[str] | None = None,
        fields: Optional[str] = None,
    ) -> _WorkbookRequest:
        def _describe() -> Mapping[str, object]:
            sheets = self._workbook.load()
            return {
                "spreadsheetId": str(self._workbook.path),
                "sheets": [
                    {"properties": {"sheetId": index, "title": title}}
                    for index, title in enumerate(sheets)
                ],
            }

        return _WorkbookRequest(_describe)

    def batchUpdate(  # noqa: N802 - API compatibility
        self,
        spreadsheetId: str,
        body: Mapping[str, object],
    ) -> _WorkbookRequest:
        return _WorkbookRequest(lambda: self._handle_batch_update(body))

    def _handle_batch_update(self, body: Mapping[str, object]) -> Mapping[str, object]:
        # Requests apply to one loaded copy and are saved together, so a
        # rejected request leaves the file as it was.
        sheets = self._workbook.load()
        replies: List[Mapping[str, object]] = []
        for request in body.get("requests", []) or []:
            if not isinstance(request, Mapping):
                replies.append({})
            elif isinstance(request.get("addSheet"), Mapping):
                replies.append(_add_sheet(sheets, request["addSheet"]))
            elif isinstance(request.get("deleteDimension"), Mapping):
                _delete_rows(sheets, request["deleteDimension"])
                replies.append({})
            else:
                replies.append({})
        self._workbook.save(sheets)
        return {"replies": replies}


class WorkbookService:
    """Sheets API drop-in that stores worksheets in a JSON file."""

    def __init__(self, workbook_path: Path) -> None:
        self._workbook = _WorkbookFile(Path(workbook_path))

    @property
    def path(self) -> Path:
        return self._workbook.path

    def spreadsheets(self) -> WorkbookSpreadsheetsApi:  # noqa: D401 - compatibility proxy
        return WorkbookSpreadsheetsApi(self._workbook)


class WorkbookError(RuntimeError):
    """Raised for requests the real API would reject with a 400 response."""


_A1_RE = re.compile(r"^(?:'(?P<quoted>(?:[^']|'')+)'|(?P<bare>[^!]+))(?:!(?P<cells>[A-Za-z0-9:]+))?$")
_CELL_RE = re.compile(r"^(?P<col>[A-Z]*)(?P<row>\d+)?$")


def _add_sheet(sheets: Dict[str, List[List[str]]], request: Mapping[str, object]) -> Mapping[str, object]:
    title = (request.get("properties") or {}).get("title")
    if not isinstance(title, str) or not title:
        raise WorkbookError("addSheet requires a title")
    if title in sheets:
        raise WorkbookError(f'A sheet with the name "{title}" already exists.')
    sheets[title] = []
    return {"addSheet": {"properties": {"sheetId": len(sheets) - 1, "title": title}}}


def _delete_rows(sheets: Dict[str, List[List[str]]], request: Mapping[str, object]) -> None:
    grid = request.get("range")
    if not isinstance(grid, Mapping) or grid.get("dimension") != "ROWS":
        raise WorkbookError("deleteDimension only supports ROWS ranges")
    titles = list(sheets)
    sheet_id = grid.get("sheetId")
    if not isinstance(sheet_id, int) or not 0 <= sheet_id < len(titles):
        raise WorkbookError(f"No grid with id: {sheet_id}")
    start = int(grid.get("startIndex", 0))
    end = int(grid.get("endIndex", start + 1))
    if start < 0 or end <= start:
        raise WorkbookError("deleteDimension requires startIndex < endIndex")
    del sheets[titles[sheet_id]][start:end]


def _write_row(rows: List[List[str]], row_number: int, base_col: int, values: object) -> None:
    while len(rows) < row_number:
        rows.append([])
    row = rows[row_number - 1]
    cells = list(values) if isinstance(values, Sequence) and not isinstance(values, str) else []
    needed = base_col - 1 + len(cells)
    while len(row) < needed:
        row.append("")
    for offset, cell in enumerate(cells):
        row[base_col - 1 + offset] = "" if cell is None else str(cell)


def _trim_trailing_blank_rows(rows: List[List[str]]) -> None:
    while rows and all(cell == "" for cell in rows[-1]):
        rows.pop()


def _slice_rows(rows: Sequence[Sequence[str]], start: _CellRef, end: _CellRef) -> List[List[str]]:
    if not rows:
        return []
    min_row = max(1, start.row or 1)
    min_col = max(1, start.column or 1)
    max_row = end.row or len(rows)
    sliced: List[List[str]] = []
    for row_index in range(min_row - 1, min(max_row, len(rows))):
        row = rows[row_index]
        max_col = end.column or len(row)
        current = [str(row[col]) for col in range(min_col - 1, min(max_col, len(row)))]
        while current and current[-1] == "":
            current.pop()
        sliced.append(current)
    while sliced and not sliced[-1]:
        sliced.pop()
    return sliced


def _parse_range(range_spec: str) -> Tuple[str, _CellRef, _CellRef]:
    match = _A1_RE.match(range_spec.strip())
    if not match:
        raise WorkbookError(f"Invalid range specification: {range_spec!r}")
    if match.group("quoted") is not None:
        title = match.group("quoted").replace("''", "'")
    else:
        title = match.group("bare")
    cells = match.group("cells")
    if not cells:
        return title, _CellRef(row=None, column=None), _CellRef(row=None, column=None)
    if ":" in cells:
        start_text, end_text = cells.split(":", 1)
    else:
        start_text = end_text = cells
    return title, _parse_cell(start_text), _parse_cell(end_text)


def _parse_cell(value: str) -> _CellRef:
    value = value.strip().upper()
    if not value:
        return _CellRef(row=None, column=None)
    match = _CELL_RE.match(value)
    if not match:
        raise WorkbookError(f"Invalid cell reference: {value!r}")
    column_label = match.group("col")
    row_text = match.group("row")
    column = _column_index(column_label) if column_label else None
    row = int(row_text) if row_text else None
    return _CellRef(row=row, column=column)


def _column_index(label: str) -> int:
    index = 0
    for char in label:
        index = index * 26 + (ord(char) - ord("A") + 1)
    return max(1, index)


__all__ = ["WorkbookService", "WorkbookError"]
