"""In-memory inventory state and its synchronisation with the remote stores.

The :class:`Synchronizer` is the only owner of the live
:class:`~core.models.InventoryState`.  Every edit is applied optimistically,
mirrored to the local cache straight away and then written to the remote
state document, either after a debounce delay or immediately depending on
the configured persist mode of the edit.  Remote writes are serialised
through a single lock and always carry the state that is current when the
write starts.
"""
from __future__ import annotations

import logging
import sqlite3
import threading
import uuid
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

import db
from core import inventory
from core.debounce import Debouncer, TimerFactory
from core.excel import default_export_name, export_inventory
from core.inventory import InventoryValidationError
from core.models import (
    AreaInventory,
    InventoryState,
    Snapshot,
    default_state,
    normalise_inventory_date,
)
from core.remote_store import (
    AreaInventoryStore,
    RemoteStateStore,
    RemoteStoreError,
    SnapshotStore,
    StateDocument,
    build_lines,
)
from core.remote_watch import RemoteChangeWatcher
from core.sheets_client import SheetsClientError, build_client
from settings import PERSIST_IMMEDIATE, AppSettings

logger = logging.getLogger(__name__)

STATUS_IDLE = "idle"
STATUS_PENDING = "pending"
STATUS_SYNCING = "syncing"
STATUS_SYNCED = "synced"
STATUS_ERROR = "error"

TIER_REMOTE = "remote"
TIER_CACHE = "cache"
TIER_DEFAULT = "default"

DELETE_PHRASE = "DELETE"
DISCARD = -1

_REMOTE_ERRORS = (SheetsClientError, RemoteStoreError)

StatusPayload = Dict[str, object]
StatusCallback = Callable[[str, StatusPayload], None]
StateListener = Callable[[InventoryState], None]
HistoryListener = Callable[[str], None]
Exporter = Callable[[InventoryState, Path], Any]
HistoryRecord = Union[Snapshot, AreaInventory]


class SyncError(RuntimeError):
    """A remote write, save or delete failed; ``cause`` holds the original error."""

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.cause = cause


@dataclass(frozen=True)
class SnapshotSaveResult:
    snapshot: Snapshot
    export_path: Optional[Path]
    export_error: Optional[str] = None


class Synchronizer:
    def __init__(
        self,
        state_store: RemoteStateStore,
        snapshot_store: SnapshotStore,
        area_store: AreaInventoryStore,
        *,
        settings: Optional[AppSettings] = None,
        timer_factory: Optional[TimerFactory] = None,
        exporter: Exporter = export_inventory,
        status_callback: Optional[StatusCallback] = None,
        client_id: Optional[str] = None,
    ) -> None:
        self._state_store = state_store
        self._snapshot_store = snapshot_store
        self._area_store = area_store
        self._settings = settings or AppSettings()
        self._exporter = exporter
        self.client_id = client_id or uuid.uuid4().hex

        self._state_lock = threading.RLock()
        self._write_lock = threading.Lock()
        self._state = InventoryState()
        self._revision = 0
        self._synced_revision = 0
        self._last_write_token: Optional[str] = None

        self._snapshots: List[Snapshot] = []
        self._area_inventories: List[AreaInventory] = []
        self._viewed: Optional[HistoryRecord] = None

        self._status = STATUS_IDLE
        self._status_callbacks: List[StatusCallback] = []
        if status_callback is not None:
            self._status_callbacks.append(status_callback)
        self._state_listeners: List[StateListener] = []
        self._history_listeners: List[HistoryListener] = []

        self._debouncer = Debouncer(
            self._settings.debounce_seconds, self._debounced_flush, timer_factory=timer_factory
        )
        self._watcher: Optional[RemoteChangeWatcher] = None

    @classmethod
    def from_settings(cls, settings: AppSettings, **kwargs: Any) -> "Synchronizer":
        """Build the stores for ``settings`` and wrap them in a synchronizer."""

        client = build_client(settings.spreadsheet_id, settings.credential_path)
        return cls(
            RemoteStateStore(client, settings.state_tab, settings.document_id),
            SnapshotStore(client, settings.snapshots_tab),
            AreaInventoryStore(client, settings.area_inventories_tab),
            settings=settings,
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------
    @property
    def settings(self) -> AppSettings:
        return self._settings

    @property
    def state(self) -> InventoryState:
        with self._state_lock:
            return self._state

    @property
    def dirty(self) -> bool:
        with self._state_lock:
            return self._revision != self._synced_revision

    @property
    def status(self) -> str:
        return self._status

    @property
    def snapshots(self) -> List[Snapshot]:
        return list(self._snapshots)

    @property
    def area_inventories(self) -> List[AreaInventory]:
        return list(self._area_inventories)

    @property
    def viewed_record(self) -> Optional[HistoryRecord]:
        return self._viewed

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------
    def add_status_listener(self, callback: StatusCallback) -> None:
        self._status_callbacks.append(callback)

    def add_state_listener(self, callback: StateListener) -> None:
        self._state_listeners.append(callback)

    def add_history_listener(self, callback: HistoryListener) -> None:
        """``callback`` receives ``"snapshots"``, ``"area_inventories"`` or ``"viewed"``."""

        self._history_listeners.append(callback)

    def _set_status(self, status: str, payload: Optional[StatusPayload] = None) -> None:
        self._status = status
        data: StatusPayload = dict(payload or {})
        data["dirty"] = self.dirty
        for callback in list(self._status_callbacks):
            try:
                callback(status, data)
            except Exception:  # pragma: no cover - listener guard
                logger.exception("Status callback failed")

    def _notify_state(self, state: InventoryState) -> None:
        for listener in list(self._state_listeners):
            try:
                listener(state)
            except Exception:  # pragma: no cover - listener guard
                logger.exception("State listener failed")

    def _notify_history(self, kind: str) -> None:
        for listener in list(self._history_listeners):
            try:
                listener(kind)
            except Exception:  # pragma: no cover - listener guard
                logger.exception("History listener failed")

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------
    def load(self) -> str:
        """Adopt the remote document, else the cache, else the defaults.

        Returns the tier that supplied the state.
        """

        read_error: Optional[Exception] = None
        try:
            document = self._state_store.fetch()
        except _REMOTE_ERRORS as exc:
            logger.warning("Could not read the remote state: %s", exc)
            document = None
            read_error = exc

        if document is not None:
            self._adopt(document.state, synced=True)
            self._write_cache(document.state)
            self._set_status(STATUS_SYNCED)
            logger.info("Loaded inventory from the remote store")
            return TIER_REMOTE

        cached = self._read_cache()
        if cached is not None:
            tier, state = TIER_CACHE, cached
        else:
            tier, state = TIER_DEFAULT, default_state()
            self._write_cache(state)
        self._adopt(state, synced=False)
        logger.info("Loaded inventory from the %s tier", tier)

        if read_error is not None:
            self._set_status(STATUS_ERROR, {"message": f"Remote store unavailable: {read_error}"})
            return tier

        # Nothing stored remotely yet: publish what we have.
        try:
            self._write_current()
        except _REMOTE_ERRORS as exc:
            logger.warning("Could not persist the initial state: %s", exc)
        return tier

    def _adopt(self, state: InventoryState, *, synced: bool) -> None:
        with self._state_lock:
            self._state = state
            self._revision += 1
            if synced:
                self._synced_revision = self._revision
        self._notify_state(state)

    # ------------------------------------------------------------------
    # Local cache
    # ------------------------------------------------------------------
    @staticmethod
    def _read_cache() -> Optional[InventoryState]:
        try:
            return db.load_cached_state()
        except sqlite3.Error as exc:
            logger.warning("Could not read the local cache: %s", exc)
            return None

    @staticmethod
    def _write_cache(state: InventoryState) -> None:
        try:
            db.save_cached_state(state)
        except sqlite3.Error as exc:
            logger.warning("Could not write the local cache: %s", exc)

    # ------------------------------------------------------------------
    # Edits
    # ------------------------------------------------------------------
    def _apply(
        self, kind: str, mutate: Callable[[InventoryState], InventoryState]
    ) -> InventoryState:
        with self._state_lock:
            state = mutate(self._state)
            self._state = state
            self._revision += 1
        self._write_cache(state)
        self._notify_state(state)

        if self._settings.persist_mode(kind) == PERSIST_IMMEDIATE:
            self.flush()
        else:
            self._debouncer.trigger()
            self._set_status(STATUS_PENDING)
        return state

    def set_quantity(self, row: int, column: int, value: object) -> InventoryState:
        return self._apply("quantity", lambda s: inventory.set_quantity(s, row, column, value))

    def set_threshold(self, index: int, value: object) -> InventoryState:
        return self._apply("threshold", lambda s: inventory.set_threshold(s, index, value))

    def add_area(self, name: str) -> InventoryState:
        return self._apply("add_area", lambda s: inventory.add_area(s, name))

    def add_item(self, name: str, threshold: object = 0) -> InventoryState:
        return self._apply("add_item", lambda s: inventory.add_item(s, name, threshold))

    def rename_area(self, index: int, name: str) -> InventoryState:
        case_sensitive = self._settings.area_names_case_sensitive
        return self._apply(
            "rename_area",
            lambda s: inventory.rename_area(s, index, name, case_sensitive=case_sensitive),
        )

    def rename_item(self, index: int, name: str) -> InventoryState:
        return self._apply("rename_item", lambda s: inventory.rename_item(s, index, name))

    def move_area(self, source: int, destination: int) -> InventoryState:
        return self._apply("move_area", lambda s: inventory.move_area(s, source, destination))

    def move_item(self, source: int, destination: int) -> InventoryState:
        return self._apply("move_item", lambda s: inventory.move_item(s, source, destination))

    def remove_item(self, index: int, *, confirm: Callable[[str], bool]) -> bool:
        """Remove the item at ``index`` once ``confirm`` accepts the prompt.

        Returns ``False`` when the user cancelled.
        """

        state = self.state
        if not 0 <= index < len(state.items):
            raise InventoryValidationError(f"Item index {index!r} is out of range.")
        name = state.items[index].name
        total = state.row_totals()[index]
        message = f'Delete item "{name}"?'
        if total:
            message += f" This discards a total of {total} across all areas."
        if not confirm(message):
            return False
        self._apply("remove_item", lambda s: inventory.remove_item(s, index))
        return True

    def remove_area(
        self,
        index: int,
        *,
        choose_destination: Callable[[str, int, Sequence[Tuple[int, str]]], Optional[int]],
    ) -> bool:
        """Remove the area at ``index``.

        ``choose_destination(area_name, column_total, options)`` returns
        ``None`` to cancel, :data:`DISCARD` to drop the quantities, or the
        index of the area that receives them.  ``options`` lists the other
        areas and is empty when only one area exists.
        """

        state = self.state
        if not 0 <= index < len(state.areas):
            raise InventoryValidationError(f"Area index {index!r} is out of range.")
        options = [(position, name) for position, name in enumerate(state.areas) if position != index]
        choice = choose_destination(state.areas[index], state.column_totals()[index], options)
        if choice is None:
            return False
        reassign_to = None if choice == DISCARD else choice
        self._apply("remove_area", lambda s: inventory.remove_area(s, index, reassign_to=reassign_to))
        return True

    # ------------------------------------------------------------------
    # Remote writes
    # ------------------------------------------------------------------
    def _write_current(self) -> StateDocument:
        with self._write_lock:
            with self._state_lock:
                state = self._state
                revision = self._revision
            self._set_status(STATUS_SYNCING)
            try:
                document = self._state_store.upsert(state, origin=self.client_id)
            except _REMOTE_ERRORS as exc:
                logger.warning("Remote state write failed: %s", exc)
                self._set_status(STATUS_ERROR, {"message": str(exc)})
                raise
            with self._state_lock:
                self._synced_revision = max(self._synced_revision, revision)
                self._last_write_token = document.write_token
            self._write_cache(state)
        self._set_status(STATUS_PENDING if self._debouncer.pending else STATUS_SYNCED)
        return document

    def _debounced_flush(self) -> None:
        try:
            self._write_current()
        except _REMOTE_ERRORS:
            # Status already reports the error; the next edit or retry_sync writes again.
            pass

    def flush(self) -> StateDocument:
        """Write the current state now, cancelling any pending debounced write."""

        self._debouncer.cancel()
        try:
            return self._write_current()
        except _REMOTE_ERRORS as exc:
            raise SyncError(f"Could not save the inventory: {exc}", exc) from exc

    def retry_sync(self) -> bool:
        """Flush if there are unsynced edits; returns ``True`` when a write happened."""

        if not self.dirty:
            return False
        self.flush()
        return True

    # ------------------------------------------------------------------
    # Remote changes
    # ------------------------------------------------------------------
    def handle_remote_change(self, version: Optional[str] = None) -> bool:
        """Re-read the state document and overwrite the in-memory state.

        Returns ``True`` when the state was replaced.  Applying remote state
        never schedules a write.
        """

        try:
            document = self._state_store.fetch()
        except _REMOTE_ERRORS as exc:
            logger.warning("Could not read the remote state after a change: %s", exc)
            return False
        if document is None:
            return False

        own_echo = document.origin == self.client_id and document.write_token == self._last_write_token
        if own_echo and self._settings.ignore_own_echo:
            logger.debug("Ignoring echo of own write %s", document.write_token)
            return False
        if own_echo and self.dirty:
            # The local state already holds this write plus newer edits.
            logger.debug("Keeping local edits made after own write %s", document.write_token)
            return False

        self._debouncer.cancel()
        self._adopt(document.state, synced=True)
        self._write_cache(document.state)
        self._set_status(STATUS_SYNCED)
        logger.info("Applied remote state version %s", version or document.version)
        return True

    def start_realtime(self) -> bool:
        if not self._settings.realtime_enabled:
            return False
        if self._watcher is None:
            self._watcher = RemoteChangeWatcher(
                self._state_store.fetch_version,
                self.handle_remote_change,
                poll_interval=self._settings.poll_interval_seconds,
            )
        self._watcher.start()
        return True

    def close(self) -> None:
        """Stop the watcher and push any pending debounced edit."""

        if self._watcher is not None:
            self._watcher.stop()
            self._watcher = None
        self._debouncer.flush_pending()

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------
    def refresh_snapshots(self) -> List[Snapshot]:
        try:
            records = self._snapshot_store.list_recent(self._settings.snapshot_limit)
        except _REMOTE_ERRORS as exc:
            logger.warning("Could not load snapshots, using the cache: %s", exc)
            records = self._cached(db.load_cached_snapshots)
        else:
            self._cache_history(db.save_cached_snapshots, records)
        self._snapshots = records
        self._notify_history("snapshots")
        return list(records)

    def refresh_area_inventories(self) -> List[AreaInventory]:
        try:
            records = self._area_store.list_recent(self._settings.area_history_limit)
        except _REMOTE_ERRORS as exc:
            logger.warning("Could not load area inventories, using the cache: %s", exc)
            records = self._cached(db.load_cached_area_inventories)
        else:
            self._cache_history(db.save_cached_area_inventories, records)
        self._area_inventories = records
        self._notify_history("area_inventories")
        return list(records)

    @staticmethod
    def _cached(loader: Callable[[], list]) -> list:
        try:
            return loader()
        except sqlite3.Error as exc:
            logger.warning("Could not read the history cache: %s", exc)
            return []

    @staticmethod
    def _cache_history(saver: Callable[[list], None], records: list) -> None:
        try:
            saver(records)
        except sqlite3.Error as exc:
            logger.warning("Could not write the history cache: %s", exc)

    def save_area_inventory(self, area_index: int, inventory_date: object) -> AreaInventory:
        """Persist the state, then record a dated count of one area."""

        state = self.state
        if not 0 <= area_index < len(state.areas):
            raise InventoryValidationError(f"Area index {area_index!r} is out of range.")
        try:
            day = normalise_inventory_date(inventory_date)
        except ValueError as exc:
            raise InventoryValidationError(f"Inventory date is invalid: {exc}") from exc

        document = self.flush()
        saved = document.state
        if area_index >= len(saved.areas):
            raise SyncError("The area no longer exists in the saved inventory.")
        try:
            record = self._area_store.insert(
                saved.areas[area_index], area_index, day, build_lines(saved, area_index)
            )
        except _REMOTE_ERRORS as exc:
            raise SyncError(f"Inventory saved, but the area count was not recorded: {exc}", exc) from exc
        logger.info("Recorded area inventory %s for %s", record.id, record.area_name)

        records = self.refresh_area_inventories()
        if not records or records[0].id != record.id:
            records = [record, *[entry for entry in records if entry.id != record.id]]
            self._area_inventories = records[: self._settings.area_history_limit]
            self._cache_history(db.save_cached_area_inventories, self._area_inventories)
            self._notify_history("area_inventories")
        return record

    def save_snapshot(
        self,
        title: Optional[str] = None,
        *,
        export_path: Optional[Union[str, Path]] = None,
    ) -> SnapshotSaveResult:
        """Persist the state, export it to Excel and store a snapshot."""

        final_title = (title or "").strip() or date.today().isoformat()
        document = self.flush()

        target = Path(export_path) if export_path else Path(self._settings.export_dir) / default_export_name()
        exported: Optional[Path] = None
        export_error: Optional[str] = None
        try:
            result = self._exporter(document.state, target)
            exported = Path(result) if result else target
        except OSError as exc:
            logger.warning("Excel export to %s failed: %s", target, exc)
            export_error = str(exc)

        try:
            snapshot = self._snapshot_store.insert(final_title, document.state)
        except _REMOTE_ERRORS as exc:
            raise SyncError(f"Inventory saved, but the snapshot was not stored: {exc}", exc) from exc
        logger.info("Stored snapshot %s (%s)", snapshot.id, final_title)

        self._snapshots = [snapshot, *self._snapshots][: self._settings.snapshot_limit]
        self._cache_history(db.save_cached_snapshots, self._snapshots)
        self._notify_history("snapshots")
        return SnapshotSaveResult(snapshot=snapshot, export_path=exported, export_error=export_error)

    def delete_snapshot(self, record: Snapshot, *, ask_text: Callable[[str], Optional[str]]) -> bool:
        prompt = (
            f"To permanently delete this snapshot, type: {DELETE_PHRASE}\n\n"
            f"Snapshot: {record.display_name()}"
        )
        if not self._confirm_delete(prompt, ask_text):
            return False
        self._delete(self._snapshot_store, record)
        self._snapshots = [entry for entry in self._snapshots if entry.id != record.id]
        self._cache_history(db.save_cached_snapshots, self._snapshots)
        self._after_delete(record, "snapshots")
        return True

    def delete_area_inventory(
        self, record: AreaInventory, *, ask_text: Callable[[str], Optional[str]]
    ) -> bool:
        prompt = (
            f"To permanently delete this area inventory, type: {DELETE_PHRASE}\n\n"
            f"Inventory: {record.display_name()}"
        )
        if not self._confirm_delete(prompt, ask_text):
            return False
        self._delete(self._area_store, record)
        self._area_inventories = [entry for entry in self._area_inventories if entry.id != record.id]
        self._cache_history(db.save_cached_area_inventories, self._area_inventories)
        self._after_delete(record, "area_inventories")
        return True

    @staticmethod
    def _confirm_delete(prompt: str, ask_text: Callable[[str], Optional[str]]) -> bool:
        answer = ask_text(prompt)
        if answer is None or answer.strip() != DELETE_PHRASE:
            logger.info("History deletion cancelled")
            return False
        return True

    @staticmethod
    def _delete(store: Any, record: HistoryRecord) -> None:
        try:
            found = store.delete(record.id)
        except _REMOTE_ERRORS as exc:
            raise SyncError(f"Could not delete the record: {exc}", exc) from exc
        if not found:
            logger.info("Record %s was already gone remotely", record.id)

    def _after_delete(self, record: HistoryRecord, kind: str) -> None:
        if self._viewed is not None and self._viewed.id == record.id:
            self.close_record()
        self._notify_history(kind)

    def open_record(self, record: HistoryRecord) -> None:
        self._viewed = record
        self._notify_history("viewed")

    def close_record(self) -> None:
        self._viewed = None
        self._notify_history("viewed")


__all__ = [
    "DELETE_PHRASE",
    "DISCARD",
    "STATUS_ERROR",
    "STATUS_IDLE",
    "STATUS_PENDING",
    "STATUS_SYNCED",
    "STATUS_SYNCING",
    "SnapshotSaveResult",
    "SyncError",
    "Synchronizer",
    "TIER_CACHE",
    "TIER_DEFAULT",
    "TIER_REMOTE",
]
