"""SQLite-backed local cache for StockGrid.

The cache is a small key/value table.  Each slot holds a JSON document that
mirrors what the remote backend returned or accepted last, so the application
can start with the most recent data when the backend is unreachable.
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, List, Mapping, Optional

from core import app_paths
from core.models import AreaInventory, InventoryState, Snapshot

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Database path handling
# ---------------------------------------------------------------------------
_DEFAULT_DB_PATH = Path(
    os.environ.get("STOCKGRID_DB_PATH", str(app_paths.data_path("stockgrid.db")))
).resolve()
_DB_PATH = _DEFAULT_DB_PATH
DB_PATH = _DB_PATH

_SCHEMA_LOCK = threading.Lock()
_SCHEMA_READY = False

STATE_SLOT = "inventory_matrix_v2"
SNAPSHOTS_SLOT = "inventory_snapshots_cache_v1"
AREA_INVENTORIES_SLOT = "area_inventories_cache_v1"

SLOT_COLUMN_DEFINITIONS = {
    "slot": "TEXT PRIMARY KEY",
    "payload": "TEXT NOT NULL",
    "updated_at": "TEXT NOT NULL",
}


# ---------------------------------------------------------------------------
# Database helpers
# ---------------------------------------------------------------------------

def set_database_path(path: Path) -> None:
    """Override the SQLite file used for the cache."""

    global _DB_PATH, DB_PATH, _SCHEMA_READY
    _DB_PATH = Path(path).resolve()
    DB_PATH = _DB_PATH
    _SCHEMA_READY = False


def _ensure_schema(conn: sqlite3.Connection) -> None:
    columns = ",\n        ".join(
        f"{column} {definition}" for column, definition in SLOT_COLUMN_DEFINITIONS.items()
    )
    conn.execute(f"CREATE TABLE IF NOT EXISTS cache_slot (\n        {columns}\n    )")


def _ensure_database() -> None:
    global _SCHEMA_READY
    if _SCHEMA_READY:
        return
    with _SCHEMA_LOCK:
        if _SCHEMA_READY:
            return
        if _DB_PATH.parent:
            _DB_PATH.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(_DB_PATH)
        try:
            _ensure_schema(conn)
            conn.commit()
        finally:
            conn.close()
        _SCHEMA_READY = True


def get_connection() -> sqlite3.Connection:
    _ensure_database()
    conn = sqlite3.connect(_DB_PATH)
    conn.row_factory = sqlite3.Row
    return conn


@contextmanager
def transaction() -> Iterator[sqlite3.Connection]:
    conn = get_connection()
    try:
        conn.execute("BEGIN")
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


# ---------------------------------------------------------------------------
# Raw slot access
# ---------------------------------------------------------------------------

def write_slot(slot: str, payload: Any) -> None:
    """Serialise ``payload`` as JSON and store it under ``slot``."""

    text = json.dumps(payload, ensure_ascii=False)
    with transaction() as conn:
        conn.execute(
            "INSERT INTO cache_slot (slot, payload, updated_at) VALUES (?, ?, ?) "
            "ON CONFLICT(slot) DO UPDATE SET payload = excluded.payload, "
            "updated_at = excluded.updated_at",
            (slot, text, _utc_now_iso()),
        )


def read_slot(slot: str) -> Optional[Any]:
    """Return the decoded JSON stored under ``slot`` or ``None``."""

    conn = get_connection()
    try:
        row = conn.execute("SELECT payload FROM cache_slot WHERE slot = ?", (slot,)).fetchone()
    finally:
        conn.close()
    if row is None:
        return None
    try:
        return json.loads(row["payload"])
    except json.JSONDecodeError:
        logger.warning("Discarding unreadable cache slot %s", slot)
        return None


def clear_slot(slot: str) -> None:
    with transaction() as conn:
        conn.execute("DELETE FROM cache_slot WHERE slot = ?", (slot,))


# ---------------------------------------------------------------------------
# Typed helpers
# ---------------------------------------------------------------------------

def save_cached_state(state: InventoryState) -> None:
    write_slot(STATE_SLOT, state.to_dict())


def load_cached_state() -> Optional[InventoryState]:
    """Return the cached state if it is structurally valid."""

    payload = read_slot(STATE_SLOT)
    if not InventoryState.is_valid_payload(payload):
        return None
    return InventoryState.from_dict(payload)


def save_cached_snapshots(snapshots: List[Snapshot]) -> None:
    write_slot(SNAPSHOTS_SLOT, [snapshot.to_dict() for snapshot in snapshots])


def load_cached_snapshots() -> List[Snapshot]:
    payload = read_slot(SNAPSHOTS_SLOT)
    if not isinstance(payload, list):
        return []
    return [Snapshot.from_dict(entry) for entry in payload if isinstance(entry, Mapping)]


def save_cached_area_inventories(records: List[AreaInventory]) -> None:
    write_slot(AREA_INVENTORIES_SLOT, [record.to_dict() for record in records])


def load_cached_area_inventories() -> List[AreaInventory]:
    payload = read_slot(AREA_INVENTORIES_SLOT)
    if not isinstance(payload, list):
        return []
    return [AreaInventory.from_dict(entry) for entry in payload if isinstance(entry, Mapping)]


__all__ = [
    "AREA_INVENTORIES_SLOT",
    "DB_PATH",
    "SNAPSHOTS_SLOT",
    "STATE_SLOT",
    "clear_slot",
    "get_connection",
    "load_cached_area_inventories",
    "load_cached_snapshots",
    "load_cached_state",
    "read_slot",
    "save_cached_area_inventories",
    "save_cached_snapshots",
    "save_cached_state",
    "set_database_path",
    "transaction",
    "write_slot",
]
