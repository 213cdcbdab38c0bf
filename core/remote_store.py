"""Remote tables backing StockGrid: the current state and the history logs."""
from __future__ import annotations

import json
import logging
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from core.models import AreaInventory, AreaInventoryLine, InventoryState, Snapshot
from core.sheets_client import GoogleSheetsClient

logger = logging.getLogger(__name__)

STATE_HEADERS: Tuple[str, ...] = ("id", "data", "updated_at", "origin", "write_token")
SNAPSHOT_HEADERS: Tuple[str, ...] = ("id", "created_at", "title", "data")
AREA_INVENTORY_HEADERS: Tuple[str, ...] = (
    "id",
    "area_name",
    "area_index",
    "inventory_date",
    "items",
    "created_at",
)

# Lookups repeated when another client shifts rows during a delete.
_DELETE_ATTEMPTS = 3


class RemoteStoreError(Exception):
    """Raised when a remote row cannot be decoded or addressed."""


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def _new_id() -> str:
    return uuid.uuid4().hex


def _decode_json(raw: str, *, context: str) -> Any:
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise RemoteStoreError(f"Malformed JSON in {context}: {exc.msg}") from exc


def _encode_json(payload: Any) -> str:
    return json.dumps(payload, ensure_ascii=False, separators=(",", ":"))


class _Table:
    """Shared plumbing: lazily create the worksheet before the first request."""

    headers: Tuple[str, ...] = ()

    def __init__(self, client: GoogleSheetsClient, title: str) -> None:
        self._client = client
        self._title = title
        self._ready = False
        self._ready_lock = threading.Lock()

    @property
    def title(self) -> str:
        return self._title

    def _prepare(self) -> None:
        if self._ready:
            return
        with self._ready_lock:
            if not self._ready:
                self._client.ensure_tab(self._title, self.headers)
                self._ready = True

    def _rows(self) -> List[Tuple[int, Dict[str, str]]]:
        self._prepare()
        return self._client.read_numbered_rows(self._title, self.headers)

    def _row_values(self, row: Dict[str, str]) -> List[str]:
        return [row.get(header, "") for header in self.headers]


@dataclass(frozen=True)
class StateDocument:
    state: InventoryState
    updated_at: str
    origin: str
    write_token: str

    @property
    def version(self) -> str:
        return f"{self.updated_at}|{self.write_token}"


class RemoteStateStore(_Table):
    """Single-document table addressed by a fixed key (``current`` by default).

    ``upsert`` replaces the whole document, so the last writer wins.
    """

    headers = STATE_HEADERS

    def __init__(self, client: GoogleSheetsClient, title: str, document_id: str) -> None:
        super().__init__(client, title)
        self._document_id = document_id

    @property
    def document_id(self) -> str:
        return self._document_id

    def _find(self) -> Optional[Tuple[int, Dict[str, str]]]:
        for number, row in self._rows():
            if row.get("id") == self._document_id:
                return number, row
        return None

    def fetch(self) -> Optional[StateDocument]:
        found = self._find()
        if found is None:
            return None
        _number, row = found
        payload = _decode_json(row.get("data", ""), context=f"{self._title}/{self._document_id}")
        if not isinstance(payload, dict):
            raise RemoteStoreError(f"State document {self._document_id!r} is not an object")
        return StateDocument(
            state=InventoryState.from_dict(payload),
            updated_at=row.get("updated_at", ""),
            origin=row.get("origin", ""),
            write_token=row.get("write_token", ""),
        )

    def fetch_version(self) -> Optional[str]:
        """Return a token that changes whenever the document is rewritten."""

        found = self._find()
        if found is None:
            return None
        _number, row = found
        return f"{row.get('updated_at', '')}|{row.get('write_token', '')}"

    def upsert(self, state: InventoryState, *, origin: str = "") -> StateDocument:
        document = StateDocument(
            state=state,
            updated_at=_utc_now_iso(),
            origin=origin,
            write_token=_new_id(),
        )
        values = [
            self._document_id,
            _encode_json(state.to_dict()),
            document.updated_at,
            document.origin,
            document.write_token,
        ]
        found = self._find()
        if found is None:
            self._client.append_rows(self._title, self.headers, [values])
        else:
            self._client.update_row(self._title, found[0], values)
        logger.debug("Upserted %s/%s (%s)", self._title, self._document_id, document.write_token)
        return document


class _HistoryTable(_Table):
    """Append-only log ordered by ``created_at``; rows are only ever deleted."""

    def _parse(self, row: Dict[str, str]) -> Any:
        raise NotImplementedError

    def list_recent(self, limit: int) -> List[Any]:
        rows = self._rows()
        rows.sort(key=lambda entry: (entry[1].get("created_at", ""), entry[0]), reverse=True)
        records = []
        for _number, row in rows[: max(0, limit)]:
            try:
                records.append(self._parse(row))
            except RemoteStoreError:
                logger.warning("Skipping unreadable row %s in %s", row.get("id"), self._title)
        return records

    def delete(self, record_id: str) -> bool:
        """Delete the row holding ``record_id``; returns ``False`` when no such row existed.

        Only that row is removed, so rows other clients append meanwhile are
        kept.  When rows shift between the lookup and the delete the lookup
        is repeated.
        """

        for _attempt in range(_DELETE_ATTEMPTS):
            number = next((n for n, row in self._rows() if row.get("id") == record_id), None)
            if number is None:
                return False
            if self._client.delete_row(self._title, number, expected_id=record_id):
                logger.info("Deleted %s from %s", record_id, self._title)
                return True
            logger.debug("Row %s of %s moved before it was deleted; looking it up again", number, self._title)
        raise RemoteStoreError(f"Could not delete {record_id} from {self._title}: its row keeps moving")

    def _insert(self, values: Dict[str, str]) -> Dict[str, str]:
        self._prepare()
        row = {"id": _new_id(), "created_at": _utc_now_iso(), **values}
        self._client.append_rows(self._title, self.headers, [self._row_values(row)])
        return row


class SnapshotStore(_HistoryTable):
    headers = SNAPSHOT_HEADERS

    def insert(self, title: Optional[str], state: InventoryState) -> Snapshot:
        row = self._insert({"title": title or "", "data": _encode_json(state.to_dict())})
        return self._parse(row)

    def _parse(self, row: Dict[str, str]) -> Snapshot:
        payload = _decode_json(row.get("data", ""), context=f"{self._title}/{row.get('id')}")
        return Snapshot.from_dict({**row, "data": payload})


class AreaInventoryStore(_HistoryTable):
    headers = AREA_INVENTORY_HEADERS

    def insert(
        self,
        area_name: str,
        area_index: int,
        inventory_date: str,
        lines: Sequence[AreaInventoryLine],
    ) -> AreaInventory:
        row = self._insert(
            {
                "area_name": area_name,
                "area_index": str(area_index),
                "inventory_date": inventory_date,
                "items": _encode_json([line.to_dict() for line in lines]),
            }
        )
        return self._parse(row)

    def _parse(self, row: Dict[str, str]) -> AreaInventory:
        items = _decode_json(row.get("items", "") or "[]", context=f"{self._title}/{row.get('id')}")
        return AreaInventory.from_dict({**row, "items": items if isinstance(items, list) else []})


def build_lines(state: InventoryState, column: int) -> List[AreaInventoryLine]:
    """Return the ``(item name, qty)`` pairs of one area column."""

    return [
        AreaInventoryLine(name=item.name, qty=row[column])
        for item, row in zip(state.items, state.quantities)
    ]


__all__ = [
    "AREA_INVENTORY_HEADERS",
    "AreaInventoryStore",
    "RemoteStateStore",
    "RemoteStoreError",
    "SNAPSHOT_HEADERS",
    "STATE_HEADERS",
    "SnapshotStore",
    "StateDocument",
    "build_lines",
]
