"""Application configuration helpers for StockGrid."""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional

from core import app_paths


logger = logging.getLogger(__name__)


SETTINGS_PATH = str(app_paths.data_path("settings.json"))

DEFAULT_SPREADSHEET_ID = os.getenv(
    "STOCKGRID_SPREADSHEET_ID",
    str(app_paths.data_path("stockgrid_remote.json")),
)
DEFAULT_CREDENTIALS_PATH = os.getenv(
    "STOCKGRID_CREDENTIALS_PATH",
    str(app_paths.credentials_path("service_account.json")),
)
DEFAULT_DOCUMENT_ID = "current"
DEFAULT_STATE_TAB = "inventory_state"
DEFAULT_SNAPSHOTS_TAB = "inventory_snapshots"
DEFAULT_AREA_INVENTORIES_TAB = "area_inventories"

HISTORY_MODE_SNAPSHOTS = "snapshots"
HISTORY_MODE_AREA_INVENTORIES = "area_inventories"
HISTORY_MODES = (HISTORY_MODE_SNAPSHOTS, HISTORY_MODE_AREA_INVENTORIES)

PERSIST_DEBOUNCED = "debounced"
PERSIST_IMMEDIATE = "immediate"

DEFAULT_PERSIST_MODES: Dict[str, str] = {
    "quantity": PERSIST_DEBOUNCED,
    "threshold": PERSIST_DEBOUNCED,
    "add_area": PERSIST_IMMEDIATE,
    "add_item": PERSIST_IMMEDIATE,
    "rename_area": PERSIST_IMMEDIATE,
    "rename_item": PERSIST_IMMEDIATE,
    "remove_area": PERSIST_IMMEDIATE,
    "remove_item": PERSIST_IMMEDIATE,
    "move_area": PERSIST_IMMEDIATE,
    "move_item": PERSIST_IMMEDIATE,
}


@dataclass
class AppSettings:
    spreadsheet_id: str = DEFAULT_SPREADSHEET_ID
    credential_path: str = DEFAULT_CREDENTIALS_PATH
    document_id: str = DEFAULT_DOCUMENT_ID
    state_tab: str = DEFAULT_STATE_TAB
    snapshots_tab: str = DEFAULT_SNAPSHOTS_TAB
    area_inventories_tab: str = DEFAULT_AREA_INVENTORIES_TAB
    debounce_seconds: float = 0.7
    poll_interval_seconds: float = 5.0
    snapshot_limit: int = 5
    area_history_limit: int = 20
    area_names_case_sensitive: bool = False
    realtime_enabled: bool = True
    ignore_own_echo: bool = False
    history_mode: str = HISTORY_MODE_SNAPSHOTS
    export_dir: str = str(app_paths.EXPORT_DIR)
    persist_modes: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_PERSIST_MODES))

    def persist_mode(self, kind: str) -> str:
        return self.persist_modes.get(kind, DEFAULT_PERSIST_MODES.get(kind, PERSIST_IMMEDIATE))

    def to_json(self) -> Dict[str, object]:
        return {
            "spreadsheet_id": self.spreadsheet_id,
            "credential_path": self.credential_path,
            "document_id": self.document_id,
            "state_tab": self.state_tab,
            "snapshots_tab": self.snapshots_tab,
            "area_inventories_tab": self.area_inventories_tab,
            "debounce_seconds": self.debounce_seconds,
            "poll_interval_seconds": self.poll_interval_seconds,
            "snapshot_limit": self.snapshot_limit,
            "area_history_limit": self.area_history_limit,
            "area_names_case_sensitive": self.area_names_case_sensitive,
            "realtime_enabled": self.realtime_enabled,
            "ignore_own_echo": self.ignore_own_echo,
            "history_mode": self.history_mode,
            "export_dir": self.export_dir,
            "persist_modes": dict(self.persist_modes),
        }


def _clamp_float(value: object, default: float, lower: float, upper: float) -> float:
    try:
        return max(lower, min(upper, float(value)))  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default


def _clamp_int(value: object, default: int, lower: int, upper: int) -> int:
    try:
        return max(lower, min(upper, int(value)))  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default


def _coerce_bool(value: object, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    return default


def _coerce_persist_modes(value: object) -> Dict[str, str]:
    modes = dict(DEFAULT_PERSIST_MODES)
    if not isinstance(value, Mapping):
        return modes
    for kind, mode in value.items():
        if kind in modes and mode in (PERSIST_DEBOUNCED, PERSIST_IMMEDIATE):
            modes[kind] = mode
        else:
            logger.warning("Ignoring persist mode %r for %r", mode, kind)
    return modes


def settings_from_mapping(data: Mapping[str, object]) -> AppSettings:
    """Build :class:`AppSettings` from raw JSON, clamping out-of-range values."""

    defaults = AppSettings()

    def _text(key: str, fallback: str) -> str:
        value = data.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
        return fallback

    history_mode = _text("history_mode", defaults.history_mode)
    if history_mode not in HISTORY_MODES:
        logger.warning("Unknown history mode %r, using %s", history_mode, defaults.history_mode)
        history_mode = defaults.history_mode

    return AppSettings(
        spreadsheet_id=_text("spreadsheet_id", defaults.spreadsheet_id),
        credential_path=_text("credential_path", defaults.credential_path),
        document_id=_text("document_id", defaults.document_id),
        state_tab=_text("state_tab", defaults.state_tab),
        snapshots_tab=_text("snapshots_tab", defaults.snapshots_tab),
        area_inventories_tab=_text("area_inventories_tab", defaults.area_inventories_tab),
        debounce_seconds=_clamp_float(data.get("debounce_seconds"), defaults.debounce_seconds, 0.1, 10.0),
        poll_interval_seconds=_clamp_float(
            data.get("poll_interval_seconds"), defaults.poll_interval_seconds, 1.0, 600.0
        ),
        snapshot_limit=_clamp_int(data.get("snapshot_limit"), defaults.snapshot_limit, 1, 100),
        area_history_limit=_clamp_int(
            data.get("area_history_limit"), defaults.area_history_limit, 1, 200
        ),
        area_names_case_sensitive=_coerce_bool(
            data.get("area_names_case_sensitive"), defaults.area_names_case_sensitive
        ),
        realtime_enabled=_coerce_bool(data.get("realtime_enabled"), defaults.realtime_enabled),
        ignore_own_echo=_coerce_bool(data.get("ignore_own_echo"), defaults.ignore_own_echo),
        history_mode=history_mode,
        export_dir=_text("export_dir", defaults.export_dir),
        persist_modes=_coerce_persist_modes(data.get("persist_modes")),
    )


def _apply_env_overrides(settings: AppSettings) -> AppSettings:
    spreadsheet_id = os.getenv("STOCKGRID_SPREADSHEET_ID")
    if spreadsheet_id:
        settings.spreadsheet_id = spreadsheet_id
    credential_path = os.getenv("STOCKGRID_CREDENTIALS_PATH")
    if credential_path:
        settings.credential_path = credential_path
    return settings


def load_settings(path: Optional[str] = None) -> AppSettings:
    """Load settings from ``path``, creating the file with defaults on first run.

    Environment variables win over the stored values so that a deployment can
    point every workstation at the same spreadsheet.
    """

    path = path or SETTINGS_PATH
    if not os.path.exists(path):
        settings = AppSettings()
        save_settings(settings, path)
        return _apply_env_overrides(settings)

    try:
        with open(path, "r", encoding="utf-8") as handle:
            data = json.load(handle)
    except (OSError, json.JSONDecodeError):
        logger.warning("Settings file %s is unreadable, using defaults", path, exc_info=True)
        return _apply_env_overrides(AppSettings())

    if not isinstance(data, Mapping):
        return _apply_env_overrides(AppSettings())
    return _apply_env_overrides(settings_from_mapping(data))


def save_settings(settings: AppSettings, path: Optional[str] = None) -> None:
    path = path or SETTINGS_PATH
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)

    with open(path, "w", encoding="utf-8") as handle:
        json.dump(settings.to_json(), handle, indent=2)


__all__ = [
    "AppSettings",
    "DEFAULT_CREDENTIALS_PATH",
    "DEFAULT_DOCUMENT_ID",
    "DEFAULT_PERSIST_MODES",
    "DEFAULT_SPREADSHEET_ID",
    "HISTORY_MODES",
    "HISTORY_MODE_AREA_INVENTORIES",
    "HISTORY_MODE_SNAPSHOTS",
    "PERSIST_DEBOUNCED",
    "PERSIST_IMMEDIATE",
    "load_settings",
    "save_settings",
    "settings_from_mapping",
]
