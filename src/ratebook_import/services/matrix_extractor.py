"""Extraction of payment profile by mileage grids.

A matrix sheet prices one vehicle. Every populated grid cell is one rate:
the row label gives the payment profile ("3+35", so a 38 month term with
3 rentals up front) and the column label the annual mileage band, or the
other way round for mirrored sheets. Gaps are normal, since funders leave
cells empty for combinations they do not offer.

Some funders split each mileage band into maintained and non-maintained
sub-columns, and some stack several contract types in one grid under
marker rows such as "BCH" or "Personal Contract Hire".
"""

from __future__ import annotations

from dataclasses import dataclass

from ratebook_import.cells import cell_text, parse_number, to_minor_units
from ratebook_import.config import settings
from ratebook_import.models import (
    ContractType,
    ExtractedVehicleInfo,
    MatrixInfo,
    MatrixSheetAnalysis,
    ParsedRate,
)
from ratebook_import.patterns import DEFAULT_PATTERNS, PatternLibrary
from ratebook_import.services.sheet_extraction import SheetExtraction
from ratebook_import.utils.logging import get_logger
from ratebook_import.workbook import RawSheet

logger = get_logger(__name__)


@dataclass(frozen=True)
class _Vehicle:
    """Sheet-level identity copied onto every rate."""

    manufacturer: str
    model: str
    variant: str
    cap_code: str | None = None
    cap_id: str | None = None
    quote_number: str | None = None
    otr: int | None = None


class MatrixExtractor:
    """Turns the populated cells of a matrix sheet into rates."""

    def __init__(
        self,
        patterns: PatternLibrary = DEFAULT_PATTERNS,
        default_manufacturer: str | None = None,
    ) -> None:
        """Initialize the extractor.

        Args:
            patterns: Vocabulary for axis labels and maintenance sub-headers.
            default_manufacturer: Placeholder when the sheet names no make.
        """
        self._patterns = patterns
        self._default_manufacturer = (
            default_manufacturer or settings.default_manufacturer
        )

    def extract(
        self,
        sheet: RawSheet,
        analysis: MatrixSheetAnalysis,
        contract_type: ContractType | None = None,
        vehicle_info: ExtractedVehicleInfo | None = None,
    ) -> SheetExtraction:
        """Extract one rate per populated grid cell.

        Args:
            sheet: The sheet's raw cell grid.
            analysis: The sheet's matrix analysis.
            contract_type: Contract type for rows outside any section.
                Defaults to the configured fallback.
            vehicle_info: Sheet identity. Defaults to the analysis' own.

        Returns:
            The extracted rates with the number of skipped cells.
        """
        info = analysis.matrix_info
        fallback = contract_type or ContractType(settings.default_contract_type)
        vehicle = self._vehicle(sheet.name, vehicle_info or analysis.vehicle_info)
        result = SheetExtraction(sheet_name=sheet.name)

        if info.is_mirrored:
            self._extract_mileage_rows(sheet, info, vehicle, fallback, result)
        else:
            self._extract_profile_rows(sheet, info, vehicle, fallback, result)

        logger.debug(
            "Matrix sheet extracted",
            sheet=sheet.name,
            rates=result.rate_count,
            skipped_cells=result.skipped,
            mirrored=info.is_mirrored,
        )
        return result

    # ------------------------------------------------------------------ #
    # Orientations
    # ------------------------------------------------------------------ #

    def _extract_profile_rows(
        self,
        sheet: RawSheet,
        info: MatrixInfo,
        vehicle: _Vehicle,
        fallback: ContractType,
        result: SheetExtraction,
    ) -> None:
        """Payment profiles down the rows, mileage bands across."""
        bands = self._mileage_bands(sheet, info)
        if not bands:
            result.warnings.append(f'No mileage bands found in sheet "{sheet.name}"')
            return

        sub_columns = (
            self._maintenance_columns(sheet, info, bands)
            if info.has_maintenance_split
            else {}
        )

        for row_idx in range(info.data_start_row, sheet.row_count):
            profile = self._patterns.parse_payment_profile(
                cell_text(sheet.cell(row_idx, 0))
            )
            if profile is None:
                continue
            active_type = self._contract_type(info, row_idx, fallback)

            for band_col, mileage in bands:
                for col, maintained in self._cells_for_band(
                    band_col, sub_columns.get(mileage, {}), active_type
                ):
                    self._emit(
                        sheet,
                        row_idx,
                        col,
                        profile,
                        mileage,
                        active_type,
                        maintained,
                        vehicle,
                        result,
                    )

    def _extract_mileage_rows(
        self,
        sheet: RawSheet,
        info: MatrixInfo,
        vehicle: _Vehicle,
        fallback: ContractType,
        result: SheetExtraction,
    ) -> None:
        """Mileage bands down the rows, payment profiles across."""
        profiles: list[tuple[int, tuple[int, int]]] = []
        for col, label in zip(info.column_positions, info.col_labels, strict=True):
            parsed = self._patterns.parse_payment_profile(label)
            if parsed is not None:
                profiles.append((col, parsed))
        if not profiles:
            result.warnings.append(f'No payment profiles found in sheet "{sheet.name}"')
            return

        for row_idx in range(info.data_start_row, sheet.row_count):
            mileage = self._patterns.parse_mileage(cell_text(sheet.cell(row_idx, 0)))
            if mileage is None:
                continue
            active_type = self._contract_type(info, row_idx, fallback)
            for col, profile in profiles:
                self._emit(
                    sheet,
                    row_idx,
                    col,
                    profile,
                    mileage,
                    active_type,
                    active_type.includes_maintenance,
                    vehicle,
                    result,
                )

    # ------------------------------------------------------------------ #
    # Internal helpers
    # ------------------------------------------------------------------ #

    def _emit(
        self,
        sheet: RawSheet,
        row_idx: int,
        col: int,
        profile: tuple[int, int],
        mileage: int,
        contract_type: ContractType,
        maintained: bool,
        vehicle: _Vehicle,
        result: SheetExtraction,
    ) -> None:
        """Append the rate held in one cell, or count the cell as skipped."""
        value = sheet.cell(row_idx, col)
        amount = parse_number(value)
        rental = to_minor_units(value) if amount is not None and amount > 0 else None
        if not rental:
            result.skipped += 1
            return

        initial_months, payments = profile
        result.rates.append(
            ParsedRate(
                cap_code=vehicle.cap_code,
                cap_id=vehicle.cap_id,
                manufacturer=vehicle.manufacturer,
                model=vehicle.model,
                variant=vehicle.variant,
                term=initial_months + payments,
                annual_mileage=mileage,
                initial_months=initial_months,
                payment_profile_label=f"{initial_months}+{payments}",
                contract_type=contract_type,
                monthly_rental=rental,
                is_maintained=maintained,
                otr=vehicle.otr,
                quote_number=vehicle.quote_number,
                source_sheet=sheet.name,
                source_row=row_idx,
                source_col=col,
            )
        )

    def _mileage_bands(self, sheet: RawSheet, info: MatrixInfo) -> list[tuple[int, int]]:
        """(column, mileage) for each band, read back from the header row."""
        bands: list[tuple[int, int]] = []
        for col, label in zip(info.column_positions, info.col_labels, strict=True):
            mileage = self._patterns.parse_mileage(
                cell_text(sheet.cell(info.column_header_row, col))
            ) or self._patterns.parse_mileage(label)
            if mileage is not None:
                bands.append((col, mileage))
        return sorted(bands)

    def _maintenance_columns(
        self,
        sheet: RawSheet,
        info: MatrixInfo,
        bands: list[tuple[int, int]],
    ) -> dict[int, dict[bool, int]]:
        """Map each band's mileage to its maintained/non-maintained columns.

        A sub-column belongs to the nearest band at or left of it.
        """
        columns: dict[int, dict[bool, int]] = {}
        sub_row = sheet.row(info.data_start_row - 1)
        for col, value in enumerate(sub_row):
            if col == 0:
                continue
            owner = [mileage for band_col, mileage in bands if band_col <= col]
            if not owner:
                continue
            state = self._patterns.maintenance_state(cell_text(value))
            if state is None:
                continue
            columns.setdefault(owner[-1], {}).setdefault(state, col)
        return columns

    @staticmethod
    def _cells_for_band(
        band_col: int,
        sub_columns: dict[bool, int],
        contract_type: ContractType,
    ) -> list[tuple[int, bool]]:
        """Columns to read for one band with the maintenance state of each."""
        if True in sub_columns and False in sub_columns:
            return [(sub_columns[True], True), (sub_columns[False], False)]
        if len(sub_columns) == 1:
            ((state, col),) = sub_columns.items()
            return [(col, state)]
        return [(band_col, contract_type.includes_maintenance)]

    @staticmethod
    def _contract_type(
        info: MatrixInfo, row_idx: int, fallback: ContractType
    ) -> ContractType:
        section = info.section_for_row(row_idx)
        return section.contract_type if section is not None else fallback

    def _vehicle(
        self, sheet_name: str, info: ExtractedVehicleInfo | None
    ) -> _Vehicle:
        """Sheet identity with placeholders for anything not found."""
        variant = (info.variant if info else None) or sheet_name
        model = (
            (info.model if info else None)
            or self._patterns.find_model(variant)
            or (variant.split()[0] if variant.split() else None)
            or self._default_manufacturer
        )
        if info is None:
            return _Vehicle(
                manufacturer=self._default_manufacturer, model=model, variant=variant
            )
        return _Vehicle(
            manufacturer=info.manufacturer or self._default_manufacturer,
            model=model,
            variant=variant,
            cap_code=info.cap_code,
            cap_id=info.cap_id,
            quote_number=info.quote_number,
            otr=info.otr,
        )
