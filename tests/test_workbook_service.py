import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

import pytest

from core import sheets_client
from core.sheets_client import GoogleSheetsClient, SheetsApiResponseError, SheetsClientError
from core.workbook_service import WorkbookService


@pytest.mark.parametrize(
    "index, expected",
    [(1, "A"), (5, "E"), (26, "Z"), (27, "AA"), (52, "AZ")],
)
def test_column_letter(index, expected):
    assert sheets_client.column_letter(index) == expected


def test_range_helpers_quote_titles():
    assert sheets_client.a1_headers_range("inventory_state", columns=5) == "'inventory_state'!A1:E1"
    assert sheets_client.a1_full_column_range("Bob's", columns=2) == "'Bob''s'!A1:B"
    assert sheets_client.a1_row_range("t", 3, columns=4) == "'t'!A3:D3"
    assert sheets_client.a1_append_range("t", columns=6) == "'t'!A:F"
    with pytest.raises(ValueError):
        sheets_client.a1_row_range("t", 0, columns=1)


def _client(tmp_path: Path) -> GoogleSheetsClient:
    path = tmp_path / "book.json"
    return GoogleSheetsClient(str(path), tmp_path / "creds.json", service=WorkbookService(path))


def test_ensure_tab_is_idempotent(tmp_path):
    client = _client(tmp_path)
    client.ensure_tab("items", ["id", "name"])
    client.ensure_tab("items", ["id", "name"])
    client.health_check()

    assert client.read_table("items", ["id", "name"]) == []


def test_append_update_and_delete_row(tmp_path):
    client = _client(tmp_path)
    headers = ["id", "name"]
    client.ensure_tab("items", headers)
    client.append_rows("items", headers, [["1", "Broom"], ["2", "Towels"]])
    client.update_row("items", 3, ["2", "Bath towels"])

    assert client.read_numbered_rows("items", headers) == [
        (2, {"id": "1", "name": "Broom"}),
        (3, {"id": "2", "name": "Bath towels"}),
    ]

    assert client.delete_row("items", 2, expected_id="2") is False
    assert client.delete_row("items", 2, expected_id="1") is True
    assert client.read_numbered_rows("items", headers) == [(2, {"id": "2", "name": "Bath towels"})]


def test_short_rows_are_padded(tmp_path):
    client = _client(tmp_path)
    headers = ["id", "name", "note"]
    client.ensure_tab("items", headers)
    client.append_rows("items", headers, [["1", "Broom"]])

    assert client.read_table("items", headers) == [{"id": "1", "name": "Broom", "note": ""}]


def test_missing_sheet_is_reported_as_api_error(tmp_path):
    client = _client(tmp_path)
    with pytest.raises(SheetsApiResponseError):
        client.read_table("missing", ["id"])


def test_build_client_routes_paths_and_requires_id(tmp_path):
    client = sheets_client.build_client(str(tmp_path / "remote.json"), tmp_path / "creds.json")
    assert client.spreadsheet_id.endswith("remote.json")
    with pytest.raises(SheetsClientError):
        sheets_client.build_client("", tmp_path / "creds.json")


def test_google_ids_require_credentials(tmp_path):
    with pytest.raises(sheets_client.SheetsCredentialsError):
        sheets_client.build_client("1AbCdEfGhIjKlMnOp", tmp_path / "missing.json")


def test_delete_row_on_missing_sheet_is_an_api_error(tmp_path):
    client = _client(tmp_path)
    client.ensure_tab("items", ["id"])
    with pytest.raises(SheetsApiResponseError):
        client.delete_row("missing", 2, expected_id="1")


def test_non_json_workbook_is_reported_as_api_error(tmp_path):
    path = tmp_path / "book.json"
    path.write_bytes(b"PK\x03\x04 not json")
    client = GoogleSheetsClient(str(path), tmp_path / "creds.json", service=WorkbookService(path))

    with pytest.raises(SheetsApiResponseError):
        client.health_check()


def test_excel_paths_are_rejected_without_touching_the_file(tmp_path):
    path = tmp_path / "stock.xlsx"
    path.write_bytes(b"PK\x03\x04 zipped sheet")
    client = sheets_client.build_client(str(path), tmp_path / "creds.json")

    with pytest.raises(SheetsApiResponseError, match="Excel"):
        client.ensure_tab("items", ["id"])
    assert path.read_bytes() == b"PK\x03\x04 zipped sheet"
