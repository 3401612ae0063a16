"""Sample ratebook layouts and helpers for building them in memory.

Each layout is a list of rows as a funder would type them. Tests turn them
into ``RawSheet`` objects for unit tests of the classifier and extractors,
or into real ``.xlsx`` bytes with openpyxl for reader, importer and API
tests.

Example usage:
    from tests.fixtures import TUCSON_SHEET, TUCSON_ROWS, build_xlsx, raw_sheet

    sheet = raw_sheet(TUCSON_SHEET, TUCSON_ROWS)
    content = build_xlsx({TUCSON_SHEET: TUCSON_ROWS})
"""

import io
from collections.abc import Mapping, Sequence
from typing import Any

from openpyxl import Workbook

from ratebook_import.workbook import RawSheet, RawWorkbook

# One rate per row under a header row
TABULAR_SHEET = "Rates"
TABULAR_ROWS: list[list[Any]] = [
    ["CAP Code", "Manufacturer", "Model", "Term", "Mileage", "Monthly Rental"],
    ["HYTU16TNL5HPTA", "Hyundai", "Tucson", 36, 10000, 250.0],
    ["KISP16GTL5HPTA", "Kia", "Sportage", 48, 8000, "£312.45"],
    [None, "Ford", "Puma", 36, 10000, 199],
    ["VACO12SE5HPTA", "Vauxhall", "Corsa", 24, 5000, 0],
]

# Payment profiles down, mileage bands across, identity above the grid
TUCSON_SHEET = "HYUNDAI TUCSON 1.6 T-GDi SE"
TUCSON_ROWS: list[list[Any]] = [
    ["CAP Code", "HYTU16TNL5HPTA", None, "OTR", 32000],
    [],
    ["Profile", "5k", "8k", "10k"],
    ["1+35", 250, 260, 270],
    ["3+35", 240, None, 255],
    ["6+35", 230, 235, 0],
]

# Each mileage band split into maintained and non-maintained sub-columns
SPLIT_SHEET = "KIA SPORTAGE 1.6 T-GDi GT-Line"
SPLIT_ROWS: list[list[Any]] = [
    ["Profile", "5k", None, "10k", None],
    [None, "Maintained", "Non-Maintained", "Maintained", "Non-Maintained"],
    ["1+35", 300, 250, 320, 270],
    ["3+35", 290, 240, 310, 260],
    ["6+35", 280, 230, 300, 250],
]

# Two contract types stacked under marker rows
SECTIONED_SHEET = "FORD PUMA 1.0 EcoBoost ST-Line"
SECTIONED_ROWS: list[list[Any]] = [
    ["BCH"],
    ["Profile", "5k", "10k"],
    ["1+35", 200, 220],
    ["3+35", 190, 210],
    ["PCH"],
    ["Profile", "5k", "10k"],
    ["1+35", 240, 260],
    ["3+35", 230, 250],
]

# Mileage bands down, payment profiles across
MIRRORED_SHEET = "VAUXHALL CORSA 1.2 SE"
MIRRORED_ROWS: list[list[Any]] = [
    ["Mileage", "1+35", "3+35", "6+35"],
    [5000, 200, 190, 180],
    [8000, 210, 200, 190],
    [10000, 220, 210, 200],
]

# Neither a header row nor a grid
NOTES_SHEET = "Notes"
NOTES_ROWS: list[list[Any]] = [
    ["Prices valid until the end of the month"],
    ["Subject to status"],
    ["All rentals exclude VAT"],
]


def raw_sheet(name: str, rows: Sequence[Sequence[Any]]) -> RawSheet:
    """Build a RawSheet directly from row lists."""
    return RawSheet(name=name, rows=tuple(tuple(row) for row in rows))


def raw_workbook(sheets: Mapping[str, Sequence[Sequence[Any]]]) -> RawWorkbook:
    """Build a RawWorkbook from ``{sheet name: rows}``."""
    return RawWorkbook(
        sheets=tuple(raw_sheet(name, rows) for name, rows in sheets.items()),
        source="xlsx",
    )


def build_xlsx(sheets: Mapping[str, Sequence[Sequence[Any]]]) -> bytes:
    """Write ``{sheet name: rows}`` to an in-memory .xlsx file.

    Args:
        sheets: Sheet names mapped to their rows, in workbook order.

    Returns:
        The workbook file bytes.
    """
    workbook = Workbook()
    workbook.remove(workbook.active)
    for name, rows in sheets.items():
        worksheet = workbook.create_sheet(title=name)
        for row in rows:
            worksheet.append(list(row))

    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def build_csv(rows: Sequence[Sequence[Any]], delimiter: str = ",") -> bytes:
    """Render rows as delimited UTF-8 text."""
    lines = [
        delimiter.join("" if value is None else str(value) for value in row)
        for row in rows
    ]
    return ("\n".join(lines) + "\n").encode("utf-8")
