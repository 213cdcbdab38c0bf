"""Google Sheets client used by the StockGrid remote stores.

Every remote table (current state, snapshots, area inventories) lives in its
own worksheet of a single spreadsheet.  This module owns all direct API calls
and keeps a deliberately small surface:

* ``ensure_tab`` creates a worksheet with its header row when missing.
* ``read_table`` returns the data rows as dictionaries keyed by header.
* ``update_row`` overwrites a single data row in place.
* ``delete_row`` removes one data row with a single ``deleteDimension`` request.
* ``append_rows`` adds rows at the end of a worksheet.

Failures are raised as subclasses of :class:`SheetsClientError` so callers can
report a single error family to the user.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Mapping, MutableSequence, Sequence, Tuple

from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from core.google_credentials import CredentialsFileInvalidError, ensure_service_account_file
from core.workbook_service import WorkbookError, WorkbookService

logger = logging.getLogger(__name__)

SCOPES: Sequence[str] = ("https://www.googleapis.com/auth/spreadsheets",)
LOCAL_WORKBOOK_SUFFIXES = {".json", ".xlsx", ".xls", ".xlsm"}

_API_ERRORS = (HttpError, WorkbookError, OSError)


class SheetsClientError(RuntimeError):
    """Base error raised for Sheets API failures."""


class SheetsDependencyError(SheetsClientError):
    """Raised when the Google API client could not be initialised."""


class SheetsCredentialsError(SheetsClientError):
    """Raised when the provided credential file is invalid or missing."""


class SheetsApiResponseError(SheetsClientError):
    """Raised when the API (or the local workbook) rejects a request."""


def _normalise_title(title: str) -> str:
    """Return a worksheet title quoted according to A1 notation rules."""

    safe = (title or "").strip()
    if not safe:
        raise SheetsClientError("Worksheet title must not be empty.")
    safe = safe.replace("'", "''")
    return f"'{safe}'"


def column_letter(index: int) -> str:
    if index < 1:
        raise ValueError("Column index must be >= 1")
    letters: MutableSequence[str] = []
    while index:
        index, remainder = divmod(index - 1, 26)
        letters.append(chr(65 + remainder))
    return "".join(reversed(letters))


def a1_headers_range(title: str, *, columns: int) -> str:
    return f"{_normalise_title(title)}!A1:{column_letter(max(1, columns))}1"


def a1_full_column_range(title: str, *, columns: int) -> str:
    return f"{_normalise_title(title)}!A1:{column_letter(max(1, columns))}"


def a1_row_range(title: str, row_index: int, *, columns: int) -> str:
    if row_index < 1:
        raise ValueError("Row index must be >= 1")
    last_column = column_letter(max(1, columns))
    return f"{_normalise_title(title)}!A{row_index}:{last_column}{row_index}"


def a1_append_range(title: str, *, columns: int) -> str:
    return f"{_normalise_title(title)}!A:{column_letter(max(1, columns))}"


def _build_service(path: Path):
    if not path.exists():
        raise SheetsCredentialsError(f"Service account file not found: {path}")
    try:
        payload = ensure_service_account_file(path)
    except CredentialsFileInvalidError as exc:
        raise SheetsCredentialsError(str(exc)) from exc

    try:
        credentials = service_account.Credentials.from_service_account_info(payload, scopes=list(SCOPES))
    except ValueError as exc:
        raise SheetsCredentialsError(str(exc)) from exc

    try:
        return build("sheets", "v4", credentials=credentials, cache_discovery=False)
    except Exception as exc:  # pragma: no cover - discovery / transport failures
        raise SheetsDependencyError(str(exc)) from exc


class GoogleSheetsClient:
    """Table-oriented helper over a Sheets ``service`` resource."""

    def __init__(self, spreadsheet_id: str, credential_path: Path, *, service=None) -> None:
        self._spreadsheet_id = spreadsheet_id
        self._credential_path = credential_path
        self._service = service or _build_service(credential_path)

    @property
    def spreadsheet_id(self) -> str:
        return self._spreadsheet_id

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def health_check(self) -> None:
        """Perform a lightweight check to confirm the spreadsheet is reachable."""

        self._tab_titles()

    def ensure_tab(self, title: str, headers: Sequence[str]) -> None:
        """Create ``title`` with a header row unless it already exists."""

        if title not in self._tab_titles():
            logger.info("Creating worksheet %s", title)
            body = {"requests": [{"addSheet": {"properties": {"title": title}}}]}
            self._execute(
                self._service.spreadsheets().batchUpdate(spreadsheetId=self._spreadsheet_id, body=body)
            )

        response = self._execute(
            self._service.spreadsheets()
            .values()
            .get(spreadsheetId=self._spreadsheet_id, range=a1_headers_range(title, columns=len(headers)))
        )
        existing = response.get("values", []) if isinstance(response, Mapping) else []
        if not existing or list(existing[0]) != list(headers):
            self._write_rows(title, [list(headers)])

    def read_table(self, title: str, headers: Sequence[str]) -> List[Dict[str, str]]:
        """Return data rows of ``title`` keyed by ``headers``."""

        return [row for _number, row in self.read_numbered_rows(title, headers)]

    def read_numbered_rows(
        self, title: str, headers: Sequence[str]
    ) -> List[Tuple[int, Dict[str, str]]]:
        """Return ``(sheet_row_number, row)`` pairs for the data rows of ``title``.

        Blank rows are skipped; missing trailing cells read as empty strings.
        """

        response = self._execute(
            self._service.spreadsheets()
            .values()
            .get(spreadsheetId=self._spreadsheet_id, range=a1_full_column_range(title, columns=len(headers)))
        )
        values = response.get("values", []) if isinstance(response, Mapping) else []
        rows: List[Tuple[int, Dict[str, str]]] = []
        for number, raw in enumerate(values[1:], start=2):
            cells = [str(cell) for cell in raw]
            if not any(cell.strip() for cell in cells):
                continue
            cells.extend([""] * (len(headers) - len(cells)))
            rows.append((number, dict(zip(headers, cells))))
        return rows

    def delete_row(self, title: str, row_number: int, *, expected_id: str) -> bool:
        """Remove sheet row ``row_number`` when its first cell still reads ``expected_id``.

        Returns ``False`` and leaves the sheet untouched when the row now holds
        something else, e.g. because another client deleted a row above it.
        """

        if row_number < 2:
            raise ValueError("Data rows start at row 2")
        sheet_id = self._sheet_id(title)
        response = self._execute(
            self._service.spreadsheets()
            .values()
            .get(spreadsheetId=self._spreadsheet_id, range=a1_row_range(title, row_number, columns=1))
        )
        values = response.get("values", []) if isinstance(response, Mapping) else []
        current = str(values[0][0]) if values and values[0] else ""
        if current != expected_id:
            return False

        body = {
            "requests": [
                {
                    "deleteDimension": {
                        "range": {
                            "sheetId": sheet_id,
                            "dimension": "ROWS",
                            "startIndex": row_number - 1,
                            "endIndex": row_number,
                        }
                    }
                }
            ]
        }
        self._execute(
            self._service.spreadsheets().batchUpdate(spreadsheetId=self._spreadsheet_id, body=body)
        )
        return True

    def update_row(self, title: str, row_number: int, values: Sequence[str]) -> None:
        """Overwrite the sheet row ``row_number`` (1-based, header is row 1)."""

        if row_number < 2:
            raise ValueError("Data rows start at row 2")
        body = {
            "valueInputOption": "RAW",
            "data": [
                {
                    "range": a1_row_range(title, row_number, columns=len(values)),
                    "values": [list(values)],
                    "majorDimension": "ROWS",
                }
            ],
        }
        self._execute(
            self._service.spreadsheets().values().batchUpdate(spreadsheetId=self._spreadsheet_id, body=body)
        )

    def append_rows(self, title: str, headers: Sequence[str], rows: Sequence[Sequence[str]]) -> None:
        if not rows:
            return
        self._execute(
            self._service.spreadsheets()
            .values()
            .append(
                spreadsheetId=self._spreadsheet_id,
                range=a1_append_range(title, columns=len(headers)),
                valueInputOption="RAW",
                insertDataOption="INSERT_ROWS",
                body={"values": [list(row) for row in rows]},
            )
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _sheet_properties(self) -> List[Mapping[str, object]]:
        response = self._execute(
            self._service.spreadsheets().get(spreadsheetId=self._spreadsheet_id, includeGridData=False)
        )
        sheets = response.get("sheets", []) if isinstance(response, Mapping) else []
        return [sheet.get("properties") or {} for sheet in sheets if isinstance(sheet, Mapping)]

    def _tab_titles(self) -> List[str]:
        return [str(properties.get("title", "")) for properties in self._sheet_properties()]

    def _sheet_id(self, title: str) -> int:
        for properties in self._sheet_properties():
            if properties.get("title") == title:
                return int(properties.get("sheetId", 0))
        raise SheetsApiResponseError(f"Worksheet {title!r} does not exist.")

    def _write_rows(self, title: str, rows: Sequence[Sequence[str]]) -> None:
        column_count = max((len(row) for row in rows), default=1)
        body = {
            "valueInputOption": "RAW",
            "data": [
                {
                    "range": f"{_normalise_title(title)}!A1:{column_letter(max(1, column_count))}{len(rows)}",
                    "values": [list(row) for row in rows],
                    "majorDimension": "ROWS",
                }
            ],
        }
        self._execute(
            self._service.spreadsheets().values().batchUpdate(spreadsheetId=self._spreadsheet_id, body=body)
        )

    @staticmethod
    def _execute(request) -> Mapping[str, object]:
        try:
            return request.execute()
        except _API_ERRORS as exc:
            raise SheetsApiResponseError(str(exc)) from exc


def is_local_workbook(spreadsheet_id: str) -> bool:
    candidate = Path(spreadsheet_id).expanduser()
    if candidate.suffix.lower() in LOCAL_WORKBOOK_SUFFIXES:
        return True
    return candidate.exists()


def build_client(spreadsheet_id: str, credential_path: Path | str) -> GoogleSheetsClient:
    """Return a client for ``spreadsheet_id``.

    Paths are served by :class:`~core.workbook_service.WorkbookService`; any
    other value is treated as a Google spreadsheet id.
    """

    if not spreadsheet_id:
        raise SheetsClientError("Spreadsheet ID is not configured.")

    if is_local_workbook(spreadsheet_id):
        path = Path(spreadsheet_id).expanduser()
        if not path.is_absolute():
            path = Path.cwd() / path
        return GoogleSheetsClient(str(path), Path(credential_path), service=WorkbookService(path))

    return GoogleSheetsClient(spreadsheet_id, Path(credential_path))


__all__ = [
    "GoogleSheetsClient",
    "SheetsApiResponseError",
    "SheetsClientError",
    "SheetsCredentialsError",
    "SheetsDependencyError",
    "a1_append_range",
    "a1_full_column_range",
    "a1_headers_range",
    "a1_row_range",
    "build_client",
    "column_letter",
    "is_local_workbook",
]
