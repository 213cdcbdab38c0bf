import re
import zipfile
from datetime import datetime

import pytest

from core.excel import Workbook, default_export_name, export_inventory
from core.models import default_state


def _sheet_xml(path, index):
    with zipfile.ZipFile(path) as archive:
        return archive.read(f"xl/worksheets/sheet{index}.xml").decode("utf-8")


def _inline_strings(xml):
    return re.findall(r'<t xml:space="preserve">([^<]*)</t>', xml)


def test_export_writes_inventory_and_meta_sheets(tmp_path):
    target = export_inventory(default_state(), tmp_path / "out.xlsx")

    with zipfile.ZipFile(target) as archive:
        workbook_xml = archive.read("xl/workbook.xml").decode("utf-8")
    assert 'name="Inventory"' in workbook_xml
    assert 'name="Meta"' in workbook_xml

    inventory = _sheet_xml(target, 1)
    assert _inline_strings(inventory)[:6] == ["Item", "Kitchen", "Spa", "Front Desk", "Office", "Total"]
    assert "TOTAL" in _inline_strings(inventory)
    # Broom row total and the grand total.
    assert '<c r="F2"><v>8</v></c>' in inventory
    assert '<c r="F5"><v>83</v></c>' in inventory

    meta = _sheet_xml(target, 2)
    assert _inline_strings(meta)[0] == "Date"
    assert '<c r="B4"><v>83</v></c>' in meta


def test_export_into_directory_uses_timestamped_name(tmp_path):
    moment = datetime(2024, 1, 15, 9, 30, 5)
    target = export_inventory(default_state(), tmp_path, exported_at=moment)
    assert target.name == "inventory_2024-01-15_09-30-05.xlsx"
    assert default_export_name(moment) == target.name


def test_workbook_rejects_duplicate_sheet_titles():
    workbook = Workbook("Inventory")
    with pytest.raises(ValueError):
        workbook.create_sheet("Inventory")


def test_cell_values_are_escaped(tmp_path):
    workbook = Workbook("Data")
    workbook.active.append(["<Rags & Mops>", None, True, 1.5])
    workbook.save(tmp_path / "escaped.xlsx")

    xml = _sheet_xml(tmp_path / "escaped.xlsx", 1)
    assert "&lt;Rags &amp; Mops&gt;" in xml
    assert '<c r="B1"/>' in xml
    assert '<c r="C1" t="b"><v>1</v></c>' in xml
    assert '<c r="D1"><v>1.5</v></c>' in xml
