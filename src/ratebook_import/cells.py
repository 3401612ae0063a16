"""Helpers for reading typed values out of raw spreadsheet cells.

Funders type the same quantity in many ways: ``250``, ``250.0``,
``"£250.00"``, ``"1,250"``. These helpers collapse them to Python values.
Money is converted to integer minor units (pence) with half-up rounding
so that ``12.50`` always becomes ``1250``.
"""

import math
import re
from datetime import date, datetime, time
from decimal import ROUND_HALF_UP, Decimal

from ratebook_import.workbook import CellValue

_CURRENCY_CHARS = re.compile(r"[£$€,\s]")
_WHITESPACE = re.compile(r"\s+")


def is_blank(value: CellValue) -> bool:
    """Check whether a cell is empty or holds only whitespace."""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, float):
        return math.isnan(value)
    return False


def cell_text(value: CellValue) -> str:
    """Render a cell as trimmed text.

    Integral floats drop their fractional part so a CAP id read as
    ``108321.0`` renders as ``"108321"``.
    """
    if is_blank(value):
        return ""
    if isinstance(value, bool):
        return str(value)
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, datetime | date | time):
        return value.isoformat()
    return _WHITESPACE.sub(" ", str(value)).strip()


def normalize_label(value: CellValue) -> str:
    """Lowercase trimmed text used for pattern matching."""
    return cell_text(value).lower()


def parse_number(value: CellValue) -> float | None:
    """Parse a numeric cell, tolerating currency symbols and separators.

    Returns:
        The number, or None when the cell is blank, boolean or not numeric.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        number = float(value)
        return None if math.isnan(number) or math.isinf(number) else number
    if not isinstance(value, str):
        return None

    cleaned = _CURRENCY_CHARS.sub("", value)
    if not cleaned:
        return None
    try:
        number = float(cleaned)
    except ValueError:
        return None
    return None if math.isnan(number) or math.isinf(number) else number


def _round_half_up(number: float, scale: int = 1) -> int:
    # str() first so 12.5 is exact rather than its binary approximation
    scaled = Decimal(str(number)) * scale
    return int(scaled.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def to_minor_units(value: CellValue) -> int | None:
    """Convert a money cell in major units to integer pence."""
    number = parse_number(value)
    if number is None:
        return None
    return _round_half_up(number, 100)


def to_int(value: CellValue) -> int | None:
    """Convert a cell to an integer, rounding half up."""
    number = parse_number(value)
    if number is None:
        return None
    return _round_half_up(number)


def to_text(value: CellValue) -> str | None:
    """Trimmed text, or None for blank cells."""
    text = cell_text(value)
    return text or None
