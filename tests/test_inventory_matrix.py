import pytest

from core import inventory
from core.inventory import InventoryValidationError
from core.models import InventoryState, Item, coerce_quantity, default_state


def _state() -> InventoryState:
    return default_state()


def test_default_state_matches_first_run_seed():
    state = _state()
    assert state.areas == ["Kitchen", "Spa", "Front Desk", "Office"]
    assert [item.name for item in state.items] == ["Broom", "Towels", "Pencils"]
    assert state.quantities == [[3, 5, 0, 0], [20, 40, 0, 0], [0, 0, 0, 15]]
    assert state.is_consistent()


@pytest.mark.parametrize(
    "raw, expected",
    [("7", 7), (" 12 ", 12), ("", 0), ("abc", 0), (-4, 0), (3.9, 3), (None, 0), (True, 0)],
)
def test_coerce_quantity_never_goes_negative(raw, expected):
    assert coerce_quantity(raw) == expected


def test_add_area_appends_zero_column():
    state = inventory.add_area(_state(), "  Garage ")
    assert state.areas[-1] == "Garage"
    assert all(row[-1] == 0 for row in state.quantities)
    assert state.is_consistent()


def test_add_area_rejects_empty_and_duplicates():
    with pytest.raises(InventoryValidationError):
        inventory.add_area(_state(), "   ")
    with pytest.raises(InventoryValidationError):
        inventory.add_area(_state(), "Kitchen")
    # Case-sensitive by default, so a differently cased name is allowed.
    assert inventory.add_area(_state(), "kitchen").areas[-1] == "kitchen"


def test_add_item_is_case_insensitive():
    with pytest.raises(InventoryValidationError):
        inventory.add_item(_state(), "broom")
    state = inventory.add_item(_state(), "Mop", "3")
    assert state.items[-1] == Item("Mop", 3)
    assert state.quantities[-1] == [0, 0, 0, 0]


def test_add_then_remove_area_restores_state():
    original = _state()
    grown = inventory.add_area(original, "Garage")
    assert inventory.remove_area(grown, len(grown.areas) - 1) == original


def test_add_then_remove_item_restores_state():
    original = _state()
    grown = inventory.add_item(original, "Mop")
    assert inventory.remove_item(grown, len(grown.items) - 1) == original


def test_remove_area_with_reassignment_preserves_grand_total():
    original = _state()
    state = inventory.remove_area(original, 1, reassign_to=0)
    assert state.grand_total() == original.grand_total()
    assert state.areas == ["Kitchen", "Front Desk", "Office"]
    assert state.value_at("Broom", "Kitchen") == 8
    assert state.value_at("Towels", "Kitchen") == 60


def test_remove_area_discarding_drops_column_total():
    original = _state()
    state = inventory.remove_area(original, 1)
    assert state.grand_total() == original.grand_total() - original.column_totals()[1]


def test_remove_area_rejects_self_reassignment():
    with pytest.raises(InventoryValidationError):
        inventory.remove_area(_state(), 1, reassign_to=1)


def test_rename_area_keeps_quantities():
    original = _state()
    state = inventory.rename_area(original, 0, "Cocina")
    assert state.areas[0] == "Cocina"
    assert state.quantities == original.quantities


def test_rename_area_collision_policy():
    with pytest.raises(InventoryValidationError):
        inventory.rename_area(_state(), 0, "spa")
    state = inventory.rename_area(_state(), 0, "spa", case_sensitive=True)
    assert state.areas[:2] == ["spa", "Spa"]
    # Renaming an entry to its own name is not a collision.
    assert inventory.rename_area(_state(), 1, "Spa").areas[1] == "Spa"


def test_rename_item_rejects_collision_and_keeps_threshold():
    with pytest.raises(InventoryValidationError):
        inventory.rename_item(_state(), 0, "TOWELS")
    state = inventory.rename_item(_state(), 0, "Push broom")
    assert state.items[0] == Item("Push broom", 2)


def test_move_area_keeps_values_with_their_area():
    original = _state()
    state = inventory.move_area(original, 3, 0)
    assert state.areas == ["Office", "Kitchen", "Spa", "Front Desk"]
    for item in original.items:
        for area in original.areas:
            assert state.value_at(item.name, area) == original.value_at(item.name, area)


def test_move_item_keeps_rows_with_their_item():
    original = _state()
    state = inventory.move_item(original, 0, 2)
    assert [item.name for item in state.items] == ["Towels", "Pencils", "Broom"]
    assert state.value_at("Broom", "Spa") == 5


def test_set_quantity_and_low_stock_flag():
    state = inventory.set_quantity(_state(), 0, 0, "1")
    assert state.quantity(0, 0) == 1
    assert state.is_low(0, 0) is True
    state = inventory.set_quantity(state, 0, 0, "-5")
    assert state.quantity(0, 0) == 0
    # Pencils threshold 5 and qty 15 in Office is fine.
    assert state.is_low(2, 3) is False


def test_set_threshold_zero_disables_warning():
    state = inventory.set_threshold(_state(), 0, 0)
    assert state.is_low(0, 2) is False


def test_out_of_range_indexes_are_rejected():
    with pytest.raises(InventoryValidationError):
        inventory.set_quantity(_state(), 9, 0, 1)
    with pytest.raises(InventoryValidationError):
        inventory.move_area(_state(), 0, 4)


def test_totals_and_filter():
    state = _state()
    assert state.row_totals() == [8, 60, 15]
    assert state.column_totals() == [23, 45, 0, 15]
    assert state.grand_total() == 83
    assert state.filter_items("TOW") == [1]
    assert state.filter_items("") == [0, 1, 2]


def test_from_dict_repairs_matrix_shape():
    state = InventoryState.from_dict(
        {
            "areas": ["A", "B"],
            "items": [{"name": "X", "threshold": 1}, {"name": "Y"}],
            "quantities": [[1, 2, 3]],
        }
    )
    assert state.quantities == [[1, 2], [0, 0]]
    assert state.is_consistent()
