"""Data containers shared by the synchronizer, the stores and the UI."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence


def coerce_quantity(value: Any) -> int:
    """Return ``value`` as a non-negative integer; anything invalid becomes 0."""

    if isinstance(value, bool):
        return 0
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return 0
    try:
        number = int(float(value))
    except (TypeError, ValueError, OverflowError):
        return 0
    return max(number, 0)


def coerce_threshold(value: Any) -> float:
    if isinstance(value, bool) or value in (None, ""):
        return 0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if number != number or number < 0:  # NaN or negative
        return 0
    return int(number) if number.is_integer() else number


@dataclass(frozen=True)
class Item:
    name: str
    threshold: float = 0

    def is_low(self, quantity: int) -> bool:
        return self.threshold > 0 and quantity < self.threshold

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "threshold": self.threshold}

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Item":
        return cls(
            name=str(payload.get("name") or "").strip(),
            threshold=coerce_threshold(payload.get("threshold")),
        )


@dataclass(frozen=True)
class InventoryState:
    """The canonical document: areas, items and the items x areas matrix.

    Instances are treated as immutable; every mutation in
    :mod:`core.inventory` returns a new state.
    """

    areas: List[str] = field(default_factory=list)
    items: List[Item] = field(default_factory=list)
    quantities: List[List[int]] = field(default_factory=list)

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------
    def quantity(self, row: int, column: int) -> int:
        return self.quantities[row][column]

    def row_totals(self) -> List[int]:
        return [sum(row) for row in self.quantities]

    def column_totals(self) -> List[int]:
        return [
            sum(row[column] for row in self.quantities)
            for column in range(len(self.areas))
        ]

    def grand_total(self) -> int:
        return sum(self.column_totals())

    def column(self, column: int) -> List[int]:
        return [row[column] for row in self.quantities]

    def is_low(self, row: int, column: int) -> bool:
        return self.items[row].is_low(self.quantities[row][column])

    def filter_items(self, query: str) -> List[int]:
        """Return the row indexes whose item name contains ``query``."""

        needle = (query or "").strip().lower()
        return [
            index
            for index, item in enumerate(self.items)
            if needle in item.name.lower()
        ]

    def value_at(self, item_name: str, area_name: str) -> int:
        row = [item.name for item in self.items].index(item_name)
        column = self.areas.index(area_name)
        return self.quantities[row][column]

    def is_consistent(self) -> bool:
        if len(self.quantities) != len(self.items):
            return False
        return all(len(row) == len(self.areas) for row in self.quantities)

    # ------------------------------------------------------------------
    # Serialisation
    # ------------------------------------------------------------------
    def to_dict(self) -> Dict[str, Any]:
        return {
            "areas": list(self.areas),
            "items": [item.to_dict() for item in self.items],
            "quantities": [list(row) for row in self.quantities],
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "InventoryState":
        """Build a state from JSON, repairing the matrix shape if needed.

        Missing fields become empty lists; rows are padded with zeros or
        truncated so the result always satisfies :meth:`is_consistent`.
        """

        areas = [str(area) for area in payload.get("areas") or []]
        items = [
            Item.from_dict(entry)
            for entry in payload.get("items") or []
            if isinstance(entry, Mapping)
        ]
        raw_rows = payload.get("quantities") or []
        quantities: List[List[int]] = []
        for index in range(len(items)):
            raw = raw_rows[index] if index < len(raw_rows) else []
            if not isinstance(raw, Sequence) or isinstance(raw, str):
                raw = []
            row = [coerce_quantity(value) for value in list(raw)[: len(areas)]]
            row.extend([0] * (len(areas) - len(row)))
            quantities.append(row)
        return cls(areas=areas, items=items, quantities=quantities)

    @staticmethod
    def is_valid_payload(payload: Any) -> bool:
        """Return ``True`` when ``payload`` carries all three state fields."""

        if not isinstance(payload, Mapping):
            return False
        return all(
            isinstance(payload.get(key), list) for key in ("areas", "items", "quantities")
        )


def default_state() -> InventoryState:
    """The inventory seeded on the very first run."""

    return InventoryState(
        areas=["Kitchen", "Spa", "Front Desk", "Office"],
        items=[Item("Broom", 2), Item("Towels", 10), Item("Pencils", 5)],
        quantities=[[3, 5, 0, 0], [20, 40, 0, 0], [0, 0, 0, 15]],
    )


@dataclass(frozen=True)
class Snapshot:
    """A full copy of the inventory saved from the matrix view."""

    id: str
    created_at: str
    data: InventoryState
    title: Optional[str] = None

    def display_name(self) -> str:
        return self.title or self.created_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "created_at": self.created_at,
            "title": self.title,
            "data": self.data.to_dict(),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Snapshot":
        data = payload.get("data")
        return cls(
            id=str(payload.get("id") or ""),
            created_at=str(payload.get("created_at") or ""),
            title=payload.get("title") or None,
            data=InventoryState.from_dict(data if isinstance(data, Mapping) else {}),
        )


@dataclass(frozen=True)
class AreaInventoryLine:
    name: str
    qty: int

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "qty": self.qty}


@dataclass(frozen=True)
class AreaInventory:
    """A dated count of a single area."""

    id: str
    area_name: str
    area_index: int
    inventory_date: str
    items: List[AreaInventoryLine]
    created_at: str

    def display_name(self) -> str:
        return f"{self.area_name} · {self.inventory_date}"

    def total(self) -> int:
        return sum(line.qty for line in self.items)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "area_name": self.area_name,
            "area_index": self.area_index,
            "inventory_date": self.inventory_date,
            "items": [line.to_dict() for line in self.items],
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "AreaInventory":
        lines = [
            AreaInventoryLine(name=str(entry.get("name") or ""), qty=coerce_quantity(entry.get("qty")))
            for entry in payload.get("items") or []
            if isinstance(entry, Mapping)
        ]
        try:
            area_index = int(payload.get("area_index") or 0)
        except (TypeError, ValueError):
            area_index = 0
        return cls(
            id=str(payload.get("id") or ""),
            area_name=str(payload.get("area_name") or ""),
            area_index=area_index,
            inventory_date=str(payload.get("inventory_date") or ""),
            items=lines,
            created_at=str(payload.get("created_at") or ""),
        )


def normalise_inventory_date(value: Any) -> str:
    """Return ``value`` as ``YYYY-MM-DD`` or raise :class:`ValueError`."""

    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    text = str(value or "").strip()
    if not text:
        raise ValueError("Inventory date is required")
    return date.fromisoformat(text).isoformat()


__all__ = [
    "AreaInventory",
    "AreaInventoryLine",
    "InventoryState",
    "Item",
    "Snapshot",
    "coerce_quantity",
    "coerce_threshold",
    "default_state",
    "normalise_inventory_date",
]
