"""Structural edits on :class:`~core.models.InventoryState`.

Every function validates its input first and raises
:class:`InventoryValidationError` before touching anything, then returns a
brand new state.  The quantity matrix always keeps one row per item and one
column per area.
"""
from __future__ import annotations

from typing import List, Optional, Sequence, TypeVar

from core.models import InventoryState, Item, coerce_quantity, coerce_threshold

T = TypeVar("T")


class InventoryValidationError(ValueError):
    """Raised when a user edit is rejected before any state change."""


def _copy_rows(state: InventoryState) -> List[List[int]]:
    return [list(row) for row in state.quantities]


def _clean_name(name: str, *, kind: str) -> str:
    cleaned = (name or "").strip()
    if not cleaned:
        raise InventoryValidationError(f"{kind} name cannot be empty.")
    return cleaned


def _check_index(index: int, size: int, *, kind: str) -> None:
    if not isinstance(index, int) or isinstance(index, bool) or not 0 <= index < size:
        raise InventoryValidationError(f"{kind} index {index!r} is out of range.")


def _collides(
    candidate: str,
    names: Sequence[str],
    *,
    case_sensitive: bool,
    skip: Optional[int] = None,
) -> bool:
    key = candidate if case_sensitive else candidate.lower()
    for index, name in enumerate(names):
        if index == skip:
            continue
        if (name if case_sensitive else name.lower()) == key:
            return True
    return False


def _move(sequence: Sequence[T], source: int, destination: int) -> List[T]:
    moved = list(sequence)
    entry = moved.pop(source)
    moved.insert(destination, entry)
    return moved


# ----------------------------------------------------------------------
# Areas
# ----------------------------------------------------------------------
def add_area(state: InventoryState, name: str, *, case_sensitive: bool = True) -> InventoryState:
    label = _clean_name(name, kind="Area")
    if _collides(label, state.areas, case_sensitive=case_sensitive):
        raise InventoryValidationError(f'Area "{label}" already exists.')
    return InventoryState(
        areas=[*state.areas, label],
        items=list(state.items),
        quantities=[[*row, 0] for row in state.quantities],
    )


def rename_area(
    state: InventoryState, index: int, name: str, *, case_sensitive: bool = False
) -> InventoryState:
    _check_index(index, len(state.areas), kind="Area")
    label = _clean_name(name, kind="Area")
    if _collides(label, state.areas, case_sensitive=case_sensitive, skip=index):
        raise InventoryValidationError(f'Area "{label}" already exists.')
    areas = list(state.areas)
    areas[index] = label
    return InventoryState(areas=areas, items=list(state.items), quantities=_copy_rows(state))


def remove_area(
    state: InventoryState, index: int, *, reassign_to: Optional[int] = None
) -> InventoryState:
    """Drop the area at ``index``.

    With ``reassign_to`` set, each row's value in the removed column is added
    to the destination column first, so the grand total is unchanged.
    """

    _check_index(index, len(state.areas), kind="Area")
    if reassign_to is not None:
        _check_index(reassign_to, len(state.areas), kind="Destination area")
        if reassign_to == index:
            raise InventoryValidationError("An area cannot be reassigned to itself.")

    quantities: List[List[int]] = []
    for row in state.quantities:
        copy = list(row)
        if reassign_to is not None:
            copy[reassign_to] += copy[index]
        del copy[index]
        quantities.append(copy)

    areas = [area for position, area in enumerate(state.areas) if position != index]
    return InventoryState(areas=areas, items=list(state.items), quantities=quantities)


def move_area(state: InventoryState, source: int, destination: int) -> InventoryState:
    _check_index(source, len(state.areas), kind="Area")
    _check_index(destination, len(state.areas), kind="Area")
    return InventoryState(
        areas=_move(state.areas, source, destination),
        items=list(state.items),
        quantities=[_move(row, source, destination) for row in state.quantities],
    )


# ----------------------------------------------------------------------
# Items
# ----------------------------------------------------------------------
def add_item(state: InventoryState, name: str, threshold: object = 0) -> InventoryState:
    label = _clean_name(name, kind="Item")
    if _collides(label, [item.name for item in state.items], case_sensitive=False):
        raise InventoryValidationError(f'Item "{label}" already exists.')
    return InventoryState(
        areas=list(state.areas),
        items=[*state.items, Item(label, coerce_threshold(threshold))],
        quantities=[*_copy_rows(state), [0] * len(state.areas)],
    )


def rename_item(state: InventoryState, index: int, name: str) -> InventoryState:
    _check_index(index, len(state.items), kind="Item")
    label = _clean_name(name, kind="Item")
    names = [item.name for item in state.items]
    if _collides(label, names, case_sensitive=False, skip=index):
        raise InventoryValidationError(f'Item "{label}" already exists.')
    items = list(state.items)
    items[index] = Item(label, items[index].threshold)
    return InventoryState(areas=list(state.areas), items=items, quantities=_copy_rows(state))


def set_threshold(state: InventoryState, index: int, threshold: object) -> InventoryState:
    _check_index(index, len(state.items), kind="Item")
    items = list(state.items)
    items[index] = Item(items[index].name, coerce_threshold(threshold))
    return InventoryState(areas=list(state.areas), items=items, quantities=_copy_rows(state))


def remove_item(state: InventoryState, index: int) -> InventoryState:
    _check_index(index, len(state.items), kind="Item")
    return InventoryState(
        areas=list(state.areas),
        items=[item for position, item in enumerate(state.items) if position != index],
        quantities=[list(row) for position, row in enumerate(state.quantities) if position != index],
    )


def move_item(state: InventoryState, source: int, destination: int) -> InventoryState:
    _check_index(source, len(state.items), kind="Item")
    _check_index(destination, len(state.items), kind="Item")
    return InventoryState(
        areas=list(state.areas),
        items=_move(state.items, source, destination),
        quantities=_move(_copy_rows(state), source, destination),
    )


# ----------------------------------------------------------------------
# Quantities
# ----------------------------------------------------------------------
def set_quantity(state: InventoryState, row: int, column: int, value: object) -> InventoryState:
    _check_index(row, len(state.items), kind="Item")
    _check_index(column, len(state.areas), kind="Area")
    quantities = _copy_rows(state)
    quantities[row][column] = coerce_quantity(value)
    return InventoryState(areas=list(state.areas), items=list(state.items), quantities=quantities)


__all__ = [
    "InventoryValidationError",
    "add_area",
    "add_item",
    "move_area",
    "move_item",
    "remove_area",
    "remove_item",
    "rename_area",
    "rename_item",
    "set_quantity",
    "set_threshold",
]
