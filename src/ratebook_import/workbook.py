"""Dataclasses representing a workbook read into plain cell grids."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Any

CellValue = str | int | float | bool | datetime | date | time | None


@dataclass(frozen=True)
class RawSheet:
    """A single worksheet as a 2-D grid of cell values.

    Row 0 is spreadsheet row 1 and column 0 is column A. Rows may have
    different lengths; missing trailing cells read as None.
    """

    name: str
    rows: tuple[tuple[CellValue, ...], ...]

    @property
    def row_count(self) -> int:
        return len(self.rows)

    @property
    def column_count(self) -> int:
        return max((len(row) for row in self.rows), default=0)

    def cell(self, row: int, col: int) -> CellValue:
        """Return the value at (row, col), or None outside the grid."""
        if row < 0 or col < 0 or row >= len(self.rows):
            return None
        values = self.rows[row]
        if col >= len(values):
            return None
        return values[col]

    def row(self, row: int) -> tuple[CellValue, ...]:
        """Return a row, or an empty tuple outside the grid."""
        if row < 0 or row >= len(self.rows):
            return ()
        return self.rows[row]


@dataclass(frozen=True)
class RawWorkbook:
    """A workbook's sheets in their original order."""

    sheets: tuple[RawSheet, ...]
    source: str
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def sheet_names(self) -> list[str]:
        return [sheet.name for sheet in self.sheets]
