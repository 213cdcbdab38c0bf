import db
from core.models import AreaInventory, AreaInventoryLine, Snapshot, default_state


def test_state_slot_round_trip():
    assert db.load_cached_state() is None
    db.save_cached_state(default_state())
    assert db.load_cached_state() == default_state()


def test_incomplete_state_payload_is_rejected():
    db.write_slot(db.STATE_SLOT, {"areas": [], "items": []})
    assert db.load_cached_state() is None


def test_unreadable_slot_reads_as_missing():
    with db.transaction() as conn:
        conn.execute(
            "INSERT INTO cache_slot (slot, payload, updated_at) VALUES (?, ?, ?)",
            (db.STATE_SLOT, "{oops", "2024-01-01T00:00:00+00:00"),
        )
    assert db.read_slot(db.STATE_SLOT) is None


def test_write_slot_overwrites_previous_value():
    db.write_slot("example", [1])
    db.write_slot("example", [2])
    assert db.read_slot("example") == [2]
    db.clear_slot("example")
    assert db.read_slot("example") is None


def test_history_slots_keep_order():
    snapshots = [
        Snapshot(id="b", created_at="2024-01-02T00:00:00+00:00", data=default_state(), title="two"),
        Snapshot(id="a", created_at="2024-01-01T00:00:00+00:00", data=default_state()),
    ]
    db.save_cached_snapshots(snapshots)
    assert db.load_cached_snapshots() == snapshots

    records = [
        AreaInventory(
            id="r1",
            area_name="Kitchen",
            area_index=0,
            inventory_date="2024-01-15",
            items=[AreaInventoryLine("Broom", 3)],
            created_at="2024-01-15T10:00:00+00:00",
        )
    ]
    db.save_cached_area_inventories(records)
    assert db.load_cached_area_inventories() == records


def test_set_database_path_switches_files(tmp_path):
    db.set_database_path(tmp_path / "first.db")
    db.save_cached_state(default_state())
    db.set_database_path(tmp_path / "second.db")
    assert db.load_cached_state() is None
    assert (tmp_path / "first.db").exists()
