"""Small XLSX writer and the inventory export built on top of it."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, List, Optional, Union
from xml.sax.saxutils import escape, quoteattr
import zipfile

from core.models import InventoryState

EXPORT_FILENAME_FORMAT = "inventory_%Y-%m-%d_%H-%M-%S.xlsx"


def _column_letter(index: int) -> str:
    """Convert a 1-based column index to its Excel column letter."""
    if index < 1:
        raise ValueError("Column index must be 1 or greater")

    letters = []
    while index > 0:
        index, remainder = divmod(index - 1, 26)
        letters.append(chr(65 + remainder))
    return "".join(reversed(letters))


def _format_cell(reference: str, value: object) -> str:
    if value is None:
        return f'<c r="{reference}"/>'

    if isinstance(value, bool):
        return f'<c r="{reference}" t="b"><v>{1 if value else 0}</v></c>'

    if isinstance(value, (int, float)):
        return f'<c r="{reference}"><v>{value}</v></c>'

    text = escape(str(value))
    return (
        f'<c r="{reference}" t="inlineStr"><is><t xml:space="preserve">{text}'
        "</t></is></c>"
    )


class Worksheet:
    """A named worksheet holding plain row values."""

    def __init__(self, title: str) -> None:
        self.title = title
        self.rows: List[List[object]] = []

    def append(self, values: Iterable[object]) -> None:
        self.rows.append(list(values))

    def render(self) -> str:
        row_fragments: List[str] = []
        for row_index, row in enumerate(self.rows, start=1):
            cells = "".join(
                _format_cell(f"{_column_letter(column_index)}{row_index}", value)
                for column_index, value in enumerate(row, start=1)
            )
            row_fragments.append(f'<row r="{row_index}">{cells}</row>')

        return (
            "<?xml version=\"1.0\" encoding=\"UTF-8\" standalone=\"yes\"?>"
            "<worksheet xmlns=\"http://schemas.openxmlformats.org/spreadsheetml/2006/main\" "
            "xmlns:r=\"http://schemas.openxmlformats.org/officeDocument/2006/relationships\">"
            f"<sheetData>{''.join(row_fragments)}</sheetData>"
            "</worksheet>"
        )


class Workbook:
    """A tiny XLSX workbook with one or more worksheets."""

    def __init__(self, title: str = "Sheet1") -> None:
        self.worksheets: List[Worksheet] = [Worksheet(title)]

    @property
    def active(self) -> Worksheet:
        return self.worksheets[0]

    def create_sheet(self, title: str) -> Worksheet:
        if any(sheet.title == title for sheet in self.worksheets):
            raise ValueError(f"Worksheet {title!r} already exists")
        sheet = Worksheet(title)
        self.worksheets.append(sheet)
        return sheet

    def save(self, filename: Union[str, Path]) -> None:
        timestamp = datetime.now(timezone.utc).replace(microsecond=0, tzinfo=None).isoformat() + "Z"
        count = len(self.worksheets)

        overrides = "".join(
            f'  <Override PartName="/xl/worksheets/sheet{index}.xml" '
            'ContentType="application/vnd.openxmlformats-officedocument.spreadsheetml.worksheet+xml"/>\n'
            for index in range(1, count + 1)
        )
        sheets = "".join(
            f"    <sheet name={quoteattr(sheet.title)} sheetId=\"{index}\" r:id=\"rId{index}\"/>\n"
            for index, sheet in enumerate(self.worksheets, start=1)
        )
        relationships = "".join(
            f'  <Relationship Id="rId{index}" '
            'Type="http://schemas.openxmlformats.org/officeDocument/2006/relationships/worksheet" '
            f'Target="worksheets/sheet{index}.xml"/>\n'
            for index in range(1, count + 1)
        )
        titles = "".join(
            f"      <vt:lpstr>{escape(sheet.title)}</vt:lpstr>\n" for sheet in self.worksheets
        )

        with zipfile.ZipFile(filename, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            archive.writestr("[Content_Types].xml", _CONTENT_TYPES_TEMPLATE.format(overrides=overrides))
            archive.writestr("_rels/.rels", _PACKAGE_RELS_XML)
            archive.writestr(
                "docProps/app.xml", _APP_PROPERTIES_TEMPLATE.format(count=count, titles=titles)
            )
            archive.writestr("docProps/core.xml", _CORE_PROPERTIES_TEMPLATE.format(timestamp=timestamp))
            archive.writestr("xl/workbook.xml", _WORKBOOK_TEMPLATE.format(sheets=sheets))
            archive.writestr(
                "xl/_rels/workbook.xml.rels", _WORKBOOK_RELS_TEMPLATE.format(relationships=relationships)
            )
            for index, sheet in enumerate(self.worksheets, start=1):
                archive.writestr(f"xl/worksheets/sheet{index}.xml", sheet.render())


def default_export_name(moment: Optional[datetime] = None) -> str:
    return (moment or datetime.now()).strftime(EXPORT_FILENAME_FORMAT)


def export_inventory(
    state: InventoryState,
    path: Union[str, Path],
    *,
    exported_at: Optional[datetime] = None,
) -> Path:
    """Write ``state`` to ``path`` as an ``Inventory`` + ``Meta`` workbook.

    The Inventory sheet has one row per item with a per-row total and a
    ``TOTAL`` footer carrying the column totals and the grand total.
    """

    target = Path(path)
    if target.is_dir():
        target = target / default_export_name(exported_at)
    target.parent.mkdir(parents=True, exist_ok=True)

    workbook = Workbook("Inventory")
    sheet = workbook.active
    sheet.append(["Item", *state.areas, "Total"])
    for item, row, total in zip(state.items, state.quantities, state.row_totals()):
        sheet.append([item.name, *row, total])
    sheet.append(["TOTAL", *state.column_totals(), state.grand_total()])

    meta = workbook.create_sheet("Meta")
    meta.append(["Date", (exported_at or datetime.now()).isoformat(sep=" ", timespec="seconds")])
    meta.append(["Areas", len(state.areas)])
    meta.append(["Items", len(state.items)])
    meta.append(["Grand total", state.grand_total()])

    workbook.save(target)
    return target


_CONTENT_TYPES_TEMPLATE = """<?xml version="1.0" encoding="UTF-8" standalone="yes"?>
<Types xmlns="http://schemas.openxmlformats.org/package/2006/content-types">
  <Default Extension="rels" ContentType="application/vnd.openxmlformats-package.relationships+xml"/>
  <Default Extension="xml" ContentType="application/xml"/>
  <Override PartName="/xl/workbook.xml" ContentType="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet.main+xml"/>
{overrides}  <Override PartName="/docProps/core.xml" ContentType="application/vnd.openxmlformats-package.core-properties+xml"/>
  <Override PartName="/docProps/app.xml" ContentType="application/vnd.openxmlformats-officedocument.extended-properties+xml"/>
</Types>
"""


_PACKAGE_RELS_XML = """<?xml version="1.0" encoding="UTF-8" standalone="yes"?>
<Relationships xmlns="http://schemas.openxmlformats.org/package/2006/relationships">
  <Relationship Id="rId1" Type="http://schemas.openxmlformats.org/officeDocument/2006/relationships/officeDocument" Target="xl/workbook.xml"/>
  <Relationship Id="rId2" Type="http://schemas.openxmlformats.org/officeDocument/2006/relationships/extended-properties" Target="docProps/app.xml"/>
  <Relationship Id="rId3" Type="http://schemas.openxmlformats.org/package/2006/relationships/metadata/core-properties" Target="docProps/core.xml"/>
</Relationships>
"""


_APP_PROPERTIES_TEMPLATE = """<?xml version="1.0" encoding="UTF-8" standalone="yes"?>
<Properties xmlns="http://schemas.openxmlformats.org/officeDocument/2006/extended-properties" xmlns:vt="http://schemas.openxmlformats.org/officeDocument/2006/docPropsVTypes">
  <Application>StockGrid</Application>
  <DocSecurity>0</DocSecurity>
  <ScaleCrop>false</ScaleCrop>
  <HeadingPairs>
    <vt:vector size="2" baseType="variant">
      <vt:variant>
        <vt:lpstr>Worksheets</vt:lpstr>
      </vt:variant>
      <vt:variant>
        <vt:i4>{count}</vt:i4>
      </vt:variant>
    </vt:vector>
  </HeadingPairs>
  <TitlesOfParts>
    <vt:vector size="{count}" baseType="lpstr">
{titles}    </vt:vector>
  </TitlesOfParts>
</Properties>
"""


_CORE_PROPERTIES_TEMPLATE = """<?xml version="1.0" encoding="UTF-8" standalone="yes"?>
<cp:coreProperties xmlns:cp="http://schemas.openxmlformats.org/package/2006/metadata/core-properties" xmlns:dc="http://purl.org/dc/elements/1.1/" xmlns:dcterms="http://purl.org/dc/terms/" xmlns:dcmitype="http://purl.org/dc/dcmitype/" xmlns:xsi="http://www.w3.org/2001/XMLSchema-instance">
  <dc:creator>StockGrid</dc:creator>
  <cp:lastModifiedBy>StockGrid</cp:lastModifiedBy>
  <dcterms:created xsi:type="dcterms:W3CDTF">{timestamp}</dcterms:created>
  <dcterms:modified xsi:type="dcterms:W3CDTF">{timestamp}</dcterms:modified>
</cp:coreProperties>
"""


_WORKBOOK_TEMPLATE = """<?xml version="1.0" encoding="UTF-8" standalone="yes"?>
<workbook xmlns="http://schemas.openxmlformats.org/spreadsheetml/2006/main" xmlns:r="http://schemas.openxmlformats.org/officeDocument/2006/relationships">
  <sheets>
{sheets}  </sheets>
</workbook>
"""


_WORKBOOK_RELS_TEMPLATE = """<?xml version="1.0" encoding="UTF-8" standalone="yes"?>
<Relationships xmlns="http://schemas.openxmlformats.org/package/2006/relationships">
{relationships}</Relationships>
"""


__all__ = ["Workbook", "Worksheet", "default_export_name", "export_inventory"]
