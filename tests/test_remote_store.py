import json
from pathlib import Path

import pytest

from core import inventory
from core.models import AreaInventoryLine, default_state
from core.remote_store import (
    AreaInventoryStore,
    RemoteStateStore,
    RemoteStoreError,
    SnapshotStore,
    build_lines,
)
from core.sheets_client import GoogleSheetsClient, SheetsApiResponseError, build_client
from core.workbook_service import WorkbookError, WorkbookService, WorkbookSpreadsheetsApi


def _client(tmp_path: Path):
    return build_client(str(tmp_path / "remote.json"), tmp_path / "unused.json")


def test_state_store_returns_none_until_written(tmp_path):
    store = RemoteStateStore(_client(tmp_path), "inventory_state", "current")
    assert store.fetch() is None
    assert store.fetch_version() is None


def test_state_store_upsert_keeps_a_single_row(tmp_path):
    client = _client(tmp_path)
    store = RemoteStateStore(client, "inventory_state", "current")

    first = store.upsert(default_state(), origin="client-a")
    changed = inventory.set_quantity(default_state(), 0, 0, 11)
    second = store.upsert(changed, origin="client-b")

    rows = client.read_table("inventory_state", store.headers)
    assert len(rows) == 1
    assert first.write_token != second.write_token

    document = store.fetch()
    assert document is not None
    assert document.state == changed
    assert document.origin == "client-b"
    assert store.fetch_version() == second.version


def test_state_store_reports_malformed_payload(tmp_path):
    client = _client(tmp_path)
    store = RemoteStateStore(client, "inventory_state", "current")
    store.upsert(default_state())
    client.update_row("inventory_state", 2, ["current", "{not json", "", "", ""])

    with pytest.raises(RemoteStoreError):
        store.fetch()


def test_snapshot_store_lists_newest_first_with_limit(tmp_path):
    store = SnapshotStore(_client(tmp_path), "inventory_snapshots")
    created = [store.insert(f"snap {index}", default_state()) for index in range(4)]

    recent = store.list_recent(2)
    assert [snapshot.id for snapshot in recent] == [created[3].id, created[2].id]
    assert recent[0].title == "snap 3"
    assert recent[0].data == default_state()
    assert recent[0].id and recent[0].created_at


def test_snapshot_store_delete(tmp_path):
    store = SnapshotStore(_client(tmp_path), "inventory_snapshots")
    keep = store.insert("keep", default_state())
    drop = store.insert("drop", default_state())

    assert store.delete(drop.id) is True
    assert store.delete(drop.id) is False
    assert [snapshot.id for snapshot in store.list_recent(5)] == [keep.id]


def test_area_inventory_store_round_trip(tmp_path):
    store = AreaInventoryStore(_client(tmp_path), "area_inventories")
    lines = build_lines(default_state(), 1)
    assert lines == [
        AreaInventoryLine("Broom", 5),
        AreaInventoryLine("Towels", 40),
        AreaInventoryLine("Pencils", 0),
    ]

    record = store.insert("Spa", 1, "2024-03-01", lines)
    fetched = store.list_recent(20)

    assert fetched == [record]
    assert record.area_name == "Spa"
    assert record.area_index == 1
    assert record.inventory_date == "2024-03-01"
    assert record.total() == 45


def test_unreadable_history_rows_are_skipped(tmp_path):
    client = _client(tmp_path)
    store = SnapshotStore(client, "inventory_snapshots")
    good = store.insert("good", default_state())
    client.append_rows(
        "inventory_snapshots",
        store.headers,
        [["bad", "9999-01-01T00:00:00+00:00", "broken", "{"]],
    )

    assert [snapshot.id for snapshot in store.list_recent(5)] == [good.id]


def test_workbook_file_holds_expected_headers(tmp_path):
    store = RemoteStateStore(_client(tmp_path), "inventory_state", "current")
    store.upsert(default_state())

    payload = json.loads((tmp_path / "remote.json").read_text(encoding="utf-8"))
    assert payload["sheets"]["inventory_state"][0] == [
        "id",
        "data",
        "updated_at",
        "origin",
        "write_token",
    ]


class _RejectingRowDeletes(WorkbookSpreadsheetsApi):
    def _handle_batch_update(self, body):
        if any("deleteDimension" in request for request in body.get("requests", [])):
            raise WorkbookError("quota exceeded")
        return super()._handle_batch_update(body)


class _FlakyWorkbook(WorkbookService):
    def spreadsheets(self):
        return _RejectingRowDeletes(self._workbook)


class _SnapshotStoreWithRival(SnapshotStore):
    """Runs ``interfere`` once, right after the first row lookup."""

    def __init__(self, client, title, interfere) -> None:
        super().__init__(client, title)
        self._interfere = interfere

    def _rows(self):
        rows = super()._rows()
        if self._interfere is not None:
            interfere, self._interfere = self._interfere, None
            interfere()
        return rows


def test_failed_delete_keeps_every_record(tmp_path):
    path = tmp_path / "remote.json"
    client = GoogleSheetsClient(str(path), tmp_path / "unused.json", service=_FlakyWorkbook(path))
    store = SnapshotStore(client, "inventory_snapshots")
    created = [store.insert(f"snap {index}", default_state()) for index in range(3)]

    with pytest.raises(SheetsApiResponseError):
        store.delete(created[1].id)

    assert {snapshot.id for snapshot in store.list_recent(10)} == {snapshot.id for snapshot in created}


def test_delete_keeps_rows_appended_by_another_client(tmp_path):
    client = _client(tmp_path)
    rival = SnapshotStore(_client(tmp_path), "inventory_snapshots")
    added = []
    store = _SnapshotStoreWithRival(
        client,
        "inventory_snapshots",
        lambda: added.append(rival.insert("rival", default_state())),
    )
    first = rival.insert("first", default_state())
    second = rival.insert("second", default_state())

    assert store.delete(first.id) is True

    remaining = {snapshot.id for snapshot in store.list_recent(10)}
    assert remaining == {second.id, added[0].id}


def test_delete_looks_row_up_again_after_rows_shift(tmp_path):
    client = _client(tmp_path)
    rival = SnapshotStore(_client(tmp_path), "inventory_snapshots")
    first = rival.insert("first", default_state())
    second = rival.insert("second", default_state())
    third = rival.insert("third", default_state())
    store = _SnapshotStoreWithRival(client, "inventory_snapshots", lambda: rival.delete(first.id))

    assert store.delete(second.id) is True

    assert [snapshot.id for snapshot in store.list_recent(10)] == [third.id]
