import json

import settings
from settings import (
    PERSIST_DEBOUNCED,
    PERSIST_IMMEDIATE,
    AppSettings,
    load_settings,
    save_settings,
    settings_from_mapping,
)


def test_first_load_creates_defaults(tmp_path, monkeypatch):
    monkeypatch.delenv("STOCKGRID_SPREADSHEET_ID", raising=False)
    monkeypatch.delenv("STOCKGRID_CREDENTIALS_PATH", raising=False)
    path = tmp_path / "settings.json"

    loaded = load_settings(str(path))

    assert path.exists()
    assert loaded.debounce_seconds == 0.7
    assert loaded.document_id == "current"
    assert loaded.persist_mode("quantity") == PERSIST_DEBOUNCED
    assert loaded.persist_mode("remove_area") == PERSIST_IMMEDIATE


def test_values_are_clamped_and_validated():
    parsed = settings_from_mapping(
        {
            "debounce_seconds": 99,
            "poll_interval_seconds": "abc",
            "snapshot_limit": 0,
            "history_mode": "everything",
            "area_names_case_sensitive": "yes",
            "persist_modes": {"quantity": "immediate", "add_area": "sometimes", "unknown": "debounced"},
        }
    )

    assert parsed.debounce_seconds == 10.0
    assert parsed.poll_interval_seconds == 5.0
    assert parsed.snapshot_limit == 1
    assert parsed.history_mode == settings.HISTORY_MODE_SNAPSHOTS
    assert parsed.area_names_case_sensitive is True
    assert parsed.persist_mode("quantity") == PERSIST_IMMEDIATE
    assert parsed.persist_mode("add_area") == PERSIST_IMMEDIATE
    assert "unknown" not in parsed.persist_modes


def test_save_and_reload_round_trip(tmp_path, monkeypatch):
    monkeypatch.delenv("STOCKGRID_SPREADSHEET_ID", raising=False)
    monkeypatch.delenv("STOCKGRID_CREDENTIALS_PATH", raising=False)
    path = tmp_path / "settings.json"
    original = AppSettings(spreadsheet_id="sheet-123", ignore_own_echo=True, area_history_limit=7)

    save_settings(original, str(path))

    assert json.loads(path.read_text(encoding="utf-8"))["spreadsheet_id"] == "sheet-123"
    assert load_settings(str(path)) == original


def test_environment_overrides_stored_values(tmp_path, monkeypatch):
    path = tmp_path / "settings.json"
    save_settings(AppSettings(spreadsheet_id="stored"), str(path))
    monkeypatch.setenv("STOCKGRID_SPREADSHEET_ID", "from-env")

    assert load_settings(str(path)).spreadsheet_id == "from-env"


def test_unreadable_file_falls_back_to_defaults(tmp_path, monkeypatch):
    monkeypatch.delenv("STOCKGRID_SPREADSHEET_ID", raising=False)
    path = tmp_path / "settings.json"
    path.write_text("{broken", encoding="utf-8")

    assert load_settings(str(path)).snapshot_limit == 5
