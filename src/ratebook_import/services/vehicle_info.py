"""Resolve vehicle identity from a sheet's name and header block.

Matrix ratebooks describe one vehicle per sheet. The identity is spread
over the sheet name ("HYUNDAI TUCSON 1.6 T-GDi Premium") and a few
label/value pairs above the grid ("CAP Code" | "HYTU16TNL5HPTA"). Header
cells are more specific than sheet names, so they win when both exist.
"""

from __future__ import annotations

import re
from collections.abc import Sequence

from ratebook_import.cells import (
    cell_text,
    normalize_label,
    parse_number,
    to_minor_units,
)
from ratebook_import.config import settings
from ratebook_import.models import ExtractedVehicleInfo, VehicleInfoSource
from ratebook_import.patterns import DEFAULT_PATTERNS, PatternLibrary
from ratebook_import.utils.logging import get_logger
from ratebook_import.workbook import CellValue

logger = get_logger(__name__)

HEADER_SCAN_ROWS = 5

# Labels after which a bare six-digit number is a CAP id
_CAP_ID_LABEL_RE = re.compile(r"\bcap(?:[\s_-]*id)?\b|\bid\b")

_IDENTITY_FIELDS = (
    "manufacturer",
    "model",
    "variant",
    "cap_code",
    "cap_id",
    "quote_number",
    "otr",
)


class VehicleInfoResolver:
    """Extract manufacturer, model, variant and identifiers for a sheet."""

    def __init__(
        self,
        patterns: PatternLibrary = DEFAULT_PATTERNS,
        min_plausible_otr: int | None = None,
        header_scan_rows: int = HEADER_SCAN_ROWS,
    ) -> None:
        """Initialize the resolver.

        Args:
            patterns: Vocabulary of manufacturers and model names.
            min_plausible_otr: Smallest OTR (major units) accepted from cells.
            header_scan_rows: Leading rows searched for label/value pairs.
        """
        self._patterns = patterns
        self._min_otr = (
            min_plausible_otr
            if min_plausible_otr is not None
            else settings.min_plausible_otr
        )
        self._header_scan_rows = header_scan_rows

    def resolve(
        self,
        sheet_name: str,
        rows: Sequence[Sequence[CellValue]] = (),
    ) -> ExtractedVehicleInfo | None:
        """Merge sheet-name and header-cell identity.

        Args:
            sheet_name: The worksheet name.
            rows: The sheet's rows; only the first few are inspected.

        Returns:
            The merged identity, or None when nothing beyond a bare variant
            string was found.
        """
        from_name = self.from_sheet_name(sheet_name)
        from_cells = self.from_header_cells(rows)

        if from_cells is None:
            return from_name if _has_identity(from_name) else None
        if from_name is None:
            return from_cells

        merged = {
            field: getattr(from_cells, field) or getattr(from_name, field)
            for field in _IDENTITY_FIELDS
        }
        source = (
            VehicleInfoSource.BOTH
            if _has_identity(from_name) or from_name.variant
            else VehicleInfoSource.HEADER_CELLS
        )
        return ExtractedVehicleInfo(**merged, source=source)

    def from_sheet_name(self, sheet_name: str) -> ExtractedVehicleInfo | None:
        """Read manufacturer, model and variant from a sheet name.

        The longest known manufacturer prefix wins; the rest of the name is
        the variant. Without a manufacturer the whole name is the variant.
        """
        name = " ".join(sheet_name.split())
        if not name:
            return None

        matched = self._patterns.match_manufacturer(name)
        if matched is None:
            manufacturer, variant = None, name
        else:
            manufacturer, variant = matched[0], matched[1] or None

        model = self._patterns.find_model(variant) if variant else None
        return ExtractedVehicleInfo(
            manufacturer=manufacturer,
            model=model,
            variant=variant,
            source=VehicleInfoSource.SHEET_NAME,
        )

    def from_header_cells(
        self, rows: Sequence[Sequence[CellValue]]
    ) -> ExtractedVehicleInfo | None:
        """Read label/value pairs from the first rows of a sheet.

        Returns:
            The identity found, or None when no pair was recognised.
        """
        found: dict[str, str | int] = {}

        for row in list(rows)[: self._header_scan_rows]:
            texts = [cell_text(value) for value in row]
            for col, text in enumerate(texts):
                if not text:
                    continue
                label = text.lower().rstrip(":").strip()
                following = _next_value(texts, col)
                previous = normalize_label(row[col - 1]) if col > 0 else ""
                self._read_pair(label, text, following, previous, row, col, found)

        if not found:
            return None

        logger.debug("Vehicle identity found in header cells", fields=list(found))
        return ExtractedVehicleInfo(
            manufacturer=_as_str(found.get("manufacturer")),
            model=_as_str(found.get("model")),
            variant=_as_str(found.get("variant")),
            cap_code=_as_str(found.get("cap_code")),
            cap_id=_as_str(found.get("cap_id")),
            quote_number=_as_str(found.get("quote_number")),
            otr=found.get("otr") if isinstance(found.get("otr"), int) else None,
            source=VehicleInfoSource.HEADER_CELLS,
        )

    # ------------------------------------------------------------------ #
    # Internal helpers
    # ------------------------------------------------------------------ #

    def _read_pair(
        self,
        label: str,
        text: str,
        following: str,
        previous: str,
        row: Sequence[CellValue],
        col: int,
        found: dict[str, str | int],
    ) -> None:
        """Record any identity carried by one cell and its neighbour."""
        patterns = self._patterns

        if "cap code" in label or label == "capcode":
            if following and patterns.is_cap_code(following):
                found.setdefault("cap_code", following.upper())
            return

        if "cap id" in label or label == "capid":
            embedded = patterns.find_cap_id(text)
            if embedded:
                found.setdefault("cap_id", embedded)
            elif following and patterns.is_cap_id(following):
                found.setdefault("cap_id", following)
            return

        if patterns.is_cap_id(text) and _CAP_ID_LABEL_RE.search(previous):
            found.setdefault("cap_id", text)
            return

        if "quote" in label:
            quote = patterns.find_quote_number(following) if following else None
            if quote:
                found.setdefault("quote_number", quote)
            return

        if label in ("otr", "otr price", "on the road", "on the road price"):
            amount = parse_number(_next_raw(row, col))
            if amount is not None and amount > self._min_otr:
                found.setdefault("otr", to_minor_units(amount))
            return

        if not following or patterns.match_header(following) is not None:
            return
        if label in ("manufacturer", "make"):
            found.setdefault("manufacturer", following)
        elif label == "model":
            found.setdefault("model", following)
        elif label in ("variant", "derivative"):
            found.setdefault("variant", following)


def _next_value(texts: list[str], col: int) -> str:
    return texts[col + 1] if col + 1 < len(texts) else ""


def _next_raw(row: Sequence[CellValue], col: int) -> CellValue:
    return row[col + 1] if col + 1 < len(row) else None


def _as_str(value: str | int | None) -> str | None:
    return str(value) if value is not None else None


def _has_identity(info: ExtractedVehicleInfo | None) -> bool:
    """True when the info carries more than a bare variant string."""
    if info is None:
        return False
    return any(
        getattr(info, field) is not None
        for field in _IDENTITY_FIELDS
        if field != "variant"
    )
