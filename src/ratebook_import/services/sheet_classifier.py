"""Sheet classification for ratebook workbooks.

Every sheet is classified independently as tabular, matrix or unknown:

* **Tabular**: a header row within the first few rows names at least three
  distinct known fields, and each following row is one rate.
* **Matrix**: one vehicle per sheet, payment profiles ("3+35") down the
  first column and mileage bands across a header row, or the mirror of
  that layout.

Tabular is tested first. A tabular sheet can carry a profile-shaped string
in a data cell, while a matrix sheet rarely has three recognisable column
headers in one row.

The workbook verdict is a pure fold over the per-sheet analyses
(``summarize_detection``), so sheets can be classified in any order.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Sequence
from typing import Any

from ratebook_import.cells import cell_text, is_blank
from ratebook_import.config import settings
from ratebook_import.models import (
    AxisKind,
    ColumnMapping,
    ContractType,
    DetectionResult,
    MatrixInfo,
    MatrixSection,
    MatrixSheetAnalysis,
    RatebookFormat,
    SheetAnalysis,
    TabularSheetAnalysis,
    UnknownSheetAnalysis,
)
from ratebook_import.patterns import DEFAULT_PATTERNS, PatternLibrary
from ratebook_import.services.vehicle_info import VehicleInfoResolver
from ratebook_import.utils.logging import get_logger
from ratebook_import.workbook import RawSheet, RawWorkbook

logger = get_logger(__name__)

MIN_SHEET_ROWS = 3
MIN_PROFILE_ROWS = 3
MIN_MILEAGE_COLUMNS = 2
MIN_MIRRORED_AXIS_LABELS = 3
SAMPLE_ROW_COUNT = 3

ALL_AGREE_CONFIDENCE = 90
MAJORITY_CONFIDENCE = 70
UNDETERMINED_CONFIDENCE = 30


class SheetClassifier:
    """Classifies sheets as tabular, matrix or unknown.

    The classifier is stateless after construction: classifying the same
    sheet twice yields equal analyses.
    """

    def __init__(
        self,
        patterns: PatternLibrary = DEFAULT_PATTERNS,
        resolver: VehicleInfoResolver | None = None,
        header_scan_rows: int | None = None,
        min_headers: int | None = None,
        matrix_scan_rows: int | None = None,
    ) -> None:
        """Initialize the classifier.

        Args:
            patterns: Header, axis and vehicle vocabulary.
            resolver: Vehicle identity resolver. Built from ``patterns`` if
                omitted.
            header_scan_rows: Leading rows searched for a tabular header.
            min_headers: Distinct fields needed to accept a header row.
            matrix_scan_rows: Leading rows searched for matrix axis labels.
        """
        self._patterns = patterns
        self._resolver = resolver or VehicleInfoResolver(patterns=patterns)
        self._header_scan_rows = header_scan_rows or settings.tabular_header_scan_rows
        self._min_headers = min_headers or settings.min_tabular_headers
        self._matrix_scan_rows = matrix_scan_rows or settings.matrix_scan_rows

    def classify(self, sheet: RawSheet) -> SheetAnalysis:
        """Classify one sheet.

        Args:
            sheet: The sheet's raw cell grid.

        Returns:
            A tabular, matrix or unknown analysis.
        """
        if sheet.row_count < MIN_SHEET_ROWS:
            return UnknownSheetAnalysis(
                name=sheet.name,
                reason=f"Sheet has fewer than {MIN_SHEET_ROWS} rows",
                vehicle_info=self._resolver.resolve(sheet.name),
            )

        tabular = self.detect_tabular(sheet)
        if tabular is not None:
            logger.debug(
                "Sheet classified as tabular",
                sheet=sheet.name,
                header_row=tabular.header_row,
                columns=len(tabular.columns),
            )
            return tabular

        matrix_info = self.detect_matrix(sheet)
        if matrix_info is not None:
            logger.debug(
                "Sheet classified as matrix",
                sheet=sheet.name,
                row_axis=matrix_info.row_axis.value,
                bands=len(matrix_info.col_labels),
                sections=len(matrix_info.sections),
            )
            return MatrixSheetAnalysis(
                name=sheet.name,
                matrix_info=matrix_info,
                vehicle_info=self._resolver.resolve(sheet.name, sheet.rows),
            )

        return UnknownSheetAnalysis(
            name=sheet.name,
            reason=(
                f"No header row with {self._min_headers} recognised fields "
                "and no payment profile by mileage grid found"
            ),
            vehicle_info=self._resolver.resolve(sheet.name),
        )

    def detect_format(self, workbook: RawWorkbook) -> DetectionResult:
        """Classify every sheet and compute the workbook verdict."""
        analyses = [self.classify(sheet) for sheet in workbook.sheets]
        result = summarize_detection(analyses)
        logger.info(
            "Workbook format detected",
            format=result.format.value,
            confidence=result.confidence,
            sheets=len(analyses),
        )
        return result

    # ------------------------------------------------------------------ #
    # Tabular detection
    # ------------------------------------------------------------------ #

    def detect_tabular(self, sheet: RawSheet) -> TabularSheetAnalysis | None:
        """Find a header row naming enough distinct fields.

        Returns:
            The tabular analysis, or None when no row qualifies.
        """
        for row_idx in range(min(self._header_scan_rows, sheet.row_count)):
            columns = self._map_header_row(sheet.row(row_idx))
            distinct = {c.target_field for c in columns if c.target_field}
            if len(distinct) >= self._min_headers:
                return TabularSheetAnalysis(
                    name=sheet.name,
                    header_row=row_idx,
                    columns=tuple(columns),
                    vehicle_info=self._resolver.resolve(sheet.name),
                    sample_rows=_sample_rows(sheet, row_idx),
                )
        return None

    def _map_header_row(self, row: Sequence[Any]) -> list[ColumnMapping]:
        columns: list[ColumnMapping] = []
        for col_idx, value in enumerate(row):
            text = cell_text(value)
            if not text:
                continue
            match = self._patterns.match_header(text)
            columns.append(
                ColumnMapping(
                    source_column_index=col_idx,
                    source_header_text=text,
                    target_field=match.target_field if match else None,
                    confidence=match.confidence if match else 0,
                )
            )
        return columns

    # ------------------------------------------------------------------ #
    # Matrix detection
    # ------------------------------------------------------------------ #

    def detect_matrix(self, sheet: RawSheet) -> MatrixInfo | None:
        """Find a payment profile by mileage grid in either orientation.

        Returns:
            The matrix geometry, or None when no grid was found.
        """
        return self._detect_profile_rows(sheet) or self._detect_mileage_rows(sheet)

    def _detect_profile_rows(self, sheet: RawSheet) -> MatrixInfo | None:
        """Profiles down the first column, mileage bands across."""
        profile_rows: list[tuple[int, str]] = []
        for row_idx in range(min(self._matrix_scan_rows, sheet.row_count)):
            label = self._profile_label(cell_text(sheet.cell(row_idx, 0)))
            if label:
                profile_rows.append((row_idx, label))

        if len(profile_rows) < MIN_PROFILE_ROWS:
            return None

        first_row = profile_rows[0][0]
        for offset in (1, 2):
            header_row = first_row - offset
            if header_row < 0:
                break
            bands = self._mileage_bands(sheet.row(header_row))
            if len(bands) < MIN_MILEAGE_COLUMNS:
                continue

            sub_labels = self._maintenance_sub_labels(sheet, first_row - 1)
            return MatrixInfo(
                data_start_row=first_row,
                data_start_col=bands[0][0],
                row_axis=AxisKind.PAYMENT_PROFILE,
                row_labels=tuple(label for _, label in profile_rows),
                col_axis=AxisKind.MILEAGE,
                col_labels=tuple(str(mileage) for _, mileage in bands),
                column_header_row=header_row,
                column_positions=tuple(col for col, _ in bands),
                has_maintenance_split=bool(sub_labels),
                maintenance_sub_labels=sub_labels,
                sections=self._detect_sections(sheet),
            )
        return None

    def _detect_mileage_rows(self, sheet: RawSheet) -> MatrixInfo | None:
        """Mileage bands down the first column, profiles across."""
        mileage_rows: list[tuple[int, int]] = []
        for row_idx in range(min(self._matrix_scan_rows, sheet.row_count)):
            mileage = self._patterns.parse_mileage(cell_text(sheet.cell(row_idx, 0)))
            if mileage is not None:
                mileage_rows.append((row_idx, mileage))

        if len(mileage_rows) < MIN_MIRRORED_AXIS_LABELS:
            return None

        first_row = mileage_rows[0][0]
        header_row = first_row - 1
        if header_row < 0:
            return None

        profiles: list[tuple[int, str]] = []
        for col_idx, value in enumerate(sheet.row(header_row)):
            if col_idx == 0:
                continue
            label = self._profile_label(cell_text(value))
            if label:
                profiles.append((col_idx, label))

        if len(profiles) < MIN_MIRRORED_AXIS_LABELS:
            return None

        return MatrixInfo(
            data_start_row=first_row,
            data_start_col=profiles[0][0],
            row_axis=AxisKind.MILEAGE,
            row_labels=tuple(str(mileage) for _, mileage in mileage_rows),
            col_axis=AxisKind.PAYMENT_PROFILE,
            col_labels=tuple(label for _, label in profiles),
            column_header_row=header_row,
            column_positions=tuple(col for col, _ in profiles),
            sections=self._detect_sections(sheet),
        )

    def _profile_label(self, text: str) -> str | None:
        """Canonical ``"3+35"`` label for a payment profile cell."""
        parsed = self._patterns.parse_payment_profile(text)
        if parsed is None:
            return None
        return f"{parsed[0]}+{parsed[1]}"

    def _mileage_bands(self, row: Sequence[Any]) -> list[tuple[int, int]]:
        """(column, mileage) pairs from a header row, first column per band."""
        bands: list[tuple[int, int]] = []
        seen: set[int] = set()
        for col_idx, value in enumerate(row):
            if col_idx == 0:
                continue
            mileage = self._patterns.parse_mileage(cell_text(value))
            if mileage is None or mileage in seen:
                continue
            seen.add(mileage)
            bands.append((col_idx, mileage))
        return bands

    def _maintenance_sub_labels(self, sheet: RawSheet, row_idx: int) -> tuple[str, ...]:
        """Distinct maintenance sub-header labels in a row, in column order."""
        if row_idx < 0:
            return ()
        labels: list[str] = []
        for col_idx, value in enumerate(sheet.row(row_idx)):
            if col_idx == 0:
                continue
            text = cell_text(value)
            if self._patterns.is_maintenance_label(text) and text not in labels:
                labels.append(text)
        return tuple(labels)

    def _detect_sections(self, sheet: RawSheet) -> tuple[MatrixSection, ...]:
        """Split the sheet at rows carrying a contract-type marker."""
        markers: list[tuple[int, ContractType]] = []
        for row_idx, row in enumerate(sheet.rows):
            for value in row:
                if is_blank(value) or not isinstance(value, str):
                    continue
                contract_type = self._patterns.match_contract_type(value)
                if contract_type is not None:
                    markers.append((row_idx, contract_type))
                    break

        last_row = sheet.row_count - 1
        sections = []
        for i, (start_row, contract_type) in enumerate(markers):
            end_row = markers[i + 1][0] - 1 if i + 1 < len(markers) else last_row
            sections.append(
                MatrixSection(
                    contract_type=contract_type, start_row=start_row, end_row=end_row
                )
            )
        return tuple(sections)


# ---------------------------------------------------------------------------
# Workbook verdict
# ---------------------------------------------------------------------------


def summarize_detection(analyses: Sequence[SheetAnalysis]) -> DetectionResult:
    """Fold per-sheet analyses into a workbook-level verdict.

    Unknown sheets do not vote. A single recognised format scores 90, a
    strict majority 70, anything else is undetermined at 30.

    Args:
        analyses: One analysis per sheet, in workbook order.

    Returns:
        The verdict with a human-readable reason.
    """
    counts = Counter(analysis.format for analysis in analyses)
    tabular = counts[RatebookFormat.TABULAR]
    matrix = counts[RatebookFormat.MATRIX]
    total = len(analyses)

    if tabular and not matrix:
        verdict, confidence = RatebookFormat.TABULAR, ALL_AGREE_CONFIDENCE
        reason = _agreement_reason(tabular, total, "tabular structure with column headers")
    elif matrix and not tabular:
        verdict, confidence = RatebookFormat.MATRIX, ALL_AGREE_CONFIDENCE
        reason = _agreement_reason(matrix, total, "matrix structure with payment profiles")
    elif matrix > tabular:
        verdict, confidence = RatebookFormat.MATRIX, MAJORITY_CONFIDENCE
        reason = f"{matrix}/{total} sheets are matrix format ({tabular} tabular)"
    elif tabular > matrix:
        verdict, confidence = RatebookFormat.TABULAR, MAJORITY_CONFIDENCE
        reason = f"{tabular}/{total} sheets are tabular format ({matrix} matrix)"
    elif not tabular:
        verdict, confidence = RatebookFormat.UNKNOWN, UNDETERMINED_CONFIDENCE
        reason = "No sheet has a recognisable tabular or matrix structure"
    else:
        verdict, confidence = RatebookFormat.UNKNOWN, UNDETERMINED_CONFIDENCE
        reason = (
            f"Could not determine a consistent format: {tabular} tabular and "
            f"{matrix} matrix sheets"
        )

    return DetectionResult(
        format=verdict, confidence=confidence, reason=reason, sheets=tuple(analyses)
    )


def _agreement_reason(count: int, total: int, description: str) -> str:
    if count == total:
        return f"All {count} sheets have {description}"
    return (
        f"{count} of {total} sheets have {description}; "
        f"{total - count} could not be classified"
    )


def _sample_rows(sheet: RawSheet, header_row: int) -> tuple[dict[str, Any], ...]:
    """First data rows after the header, keyed by header text."""
    headers = sheet.row(header_row)
    samples: list[dict[str, Any]] = []
    for row_idx in range(header_row + 1, header_row + 1 + SAMPLE_ROW_COUNT):
        row = sheet.row(row_idx)
        if all(is_blank(value) for value in row):
            continue
        record: dict[str, Any] = {}
        for col_idx, header in enumerate(headers):
            key = cell_text(header) or f"col_{col_idx}"
            value = sheet.cell(row_idx, col_idx)
            record[key] = None if is_blank(value) else value
        samples.append(record)
    return tuple(samples)
