"""Extraction of one-rate-per-row ratebook sheets.

A tabular sheet carries vehicle identity on every row, so each data row
below the header maps directly to a ``ParsedRate`` through the column map
built by the classifier. Rows without a price or without a CAP code/id are
skipped silently: they are usually subtotals, notes or blank spacer rows.
"""

from __future__ import annotations

from collections.abc import Mapping

from pydantic import ValidationError as PydanticValidationError

from ratebook_import.cells import (
    is_blank,
    to_int,
    to_minor_units,
    to_text,
)
from ratebook_import.config import settings
from ratebook_import.models import ContractType, ParsedRate, TabularSheetAnalysis
from ratebook_import.patterns import DEFAULT_PATTERNS, PatternLibrary
from ratebook_import.services.sheet_extraction import SheetExtraction
from ratebook_import.utils.logging import get_logger
from ratebook_import.workbook import CellValue, RawSheet

logger = get_logger(__name__)

MONEY_FIELDS = ("otr", "p11d", "lease_rental", "service_rental")
INTEGER_FIELDS = ("co2", "excess_mileage_ppm", "model_year")
TEXT_FIELDS = ("variant", "fuel_type", "transmission", "body_style")


class TabularExtractor:
    """Turns the data rows of a tabular sheet into rates."""

    def __init__(
        self,
        patterns: PatternLibrary = DEFAULT_PATTERNS,
        default_term: int | None = None,
        default_annual_mileage: int | None = None,
        default_manufacturer: str | None = None,
    ) -> None:
        """Initialize the extractor.

        Args:
            patterns: Vocabulary used to read payment profile cells.
            default_term: Term used when a row has none.
            default_annual_mileage: Mileage used when a row has none.
            default_manufacturer: Placeholder when no manufacturer is known.
        """
        self._patterns = patterns
        self._default_term = default_term or settings.default_term
        self._default_mileage = default_annual_mileage or settings.default_annual_mileage
        self._default_manufacturer = (
            default_manufacturer or settings.default_manufacturer
        )

    def extract(
        self,
        sheet: RawSheet,
        analysis: TabularSheetAnalysis,
        contract_type: ContractType | None = None,
        column_overrides: Mapping[int, str] | None = None,
    ) -> SheetExtraction:
        """Extract one rate per qualifying data row.

        Args:
            sheet: The sheet's raw cell grid.
            analysis: The sheet's tabular analysis.
            contract_type: Contract type for every rate. Defaults to the
                configured fallback.
            column_overrides: ``{column index: target field}``. When given,
                replaces the detected column map entirely.

        Returns:
            The extracted rates with skipped-row counts and row errors.
        """
        result = SheetExtraction(sheet_name=sheet.name)
        columns = self._column_map(analysis, column_overrides)

        rental_col = columns.get("monthly_rental")
        if rental_col is None:
            result.warnings.append(f'Sheet "{sheet.name}" has no monthly rental column')
            return result

        active_type = contract_type or ContractType(settings.default_contract_type)

        for row_idx in range(analysis.header_row + 1, sheet.row_count):
            if all(is_blank(cell) for cell in sheet.row(row_idx)):
                continue

            values = {
                target: sheet.cell(row_idx, col) for target, col in columns.items()
            }
            rental = to_minor_units(values["monthly_rental"])
            cap_code = to_text(values.get("cap_code"))
            cap_id = to_text(values.get("cap_id"))
            if rental is None or rental <= 0 or not (cap_code or cap_id):
                result.skipped += 1
                continue

            try:
                rate = self._build_rate(
                    sheet, analysis, row_idx, rental_col, values, active_type
                )
            except PydanticValidationError as e:
                result.errors.append(
                    f"Row {row_idx + 1} in {sheet.name}: "
                    f"{e.errors()[0].get('msg', str(e))}"
                )
                continue
            result.rates.append(rate)

        logger.debug(
            "Tabular sheet extracted",
            sheet=sheet.name,
            rates=result.rate_count,
            skipped=result.skipped,
            errors=len(result.errors),
        )
        return result

    # ------------------------------------------------------------------ #
    # Internal helpers
    # ------------------------------------------------------------------ #

    @staticmethod
    def _column_map(
        analysis: TabularSheetAnalysis,
        column_overrides: Mapping[int, str] | None,
    ) -> dict[str, int]:
        if column_overrides:
            return {
                target: int(col)
                for col, target in sorted(column_overrides.items())
                if target
            }
        return analysis.mapped_fields()

    def _build_rate(
        self,
        sheet: RawSheet,
        analysis: TabularSheetAnalysis,
        row_idx: int,
        rental_col: int,
        values: dict[str, CellValue],
        contract_type: ContractType,
    ) -> ParsedRate:
        term = to_int(values.get("term")) or self._default_term
        mileage = to_int(values.get("annual_mileage")) or self._default_mileage

        profile_text = to_text(values.get("payment_profile"))
        profile = (
            self._patterns.parse_payment_profile(profile_text) if profile_text else None
        )
        if profile is not None:
            initial_months, payments = profile
            profile_label = f"{initial_months}+{payments}"
            if to_int(values.get("term")) is None:
                term = initial_months + payments
        else:
            initial_months = 1
            profile_label = f"1+{term - 1}"

        vehicle = analysis.vehicle_info
        manufacturer = (
            to_text(values.get("manufacturer"))
            or (vehicle.manufacturer if vehicle else None)
            or self._default_manufacturer
        )
        model = (
            to_text(values.get("model"))
            or (vehicle.model if vehicle else None)
            or self._default_manufacturer
        )

        optional: dict[str, object] = {}
        for name in MONEY_FIELDS:
            optional[name] = to_minor_units(values.get(name))
        for name in INTEGER_FIELDS:
            optional[name] = to_int(values.get(name))
        for name in TEXT_FIELDS:
            optional[name] = to_text(values.get(name))

        return ParsedRate(
            cap_code=to_text(values.get("cap_code")),
            cap_id=to_text(values.get("cap_id")),
            manufacturer=manufacturer,
            model=model,
            term=term,
            annual_mileage=mileage,
            initial_months=initial_months,
            payment_profile_label=profile_label,
            contract_type=contract_type,
            monthly_rental=to_minor_units(values.get("monthly_rental")),
            is_maintained=contract_type.includes_maintenance,
            source_sheet=sheet.name,
            source_row=row_idx,
            source_col=rental_col,
            **optional,
        )
