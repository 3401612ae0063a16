"""Tests for the vehicle info resolver."""

import pytest

from ratebook_import.models import VehicleInfoSource
from ratebook_import.services.vehicle_info import VehicleInfoResolver
from tests.fixtures import SECTIONED_ROWS, SECTIONED_SHEET, TUCSON_ROWS, TUCSON_SHEET


@pytest.fixture
def resolver() -> VehicleInfoResolver:
    """Create a resolver with the default OTR threshold."""
    return VehicleInfoResolver(min_plausible_otr=10000)


class TestSheetName:
    """Tests for identity read from sheet names."""

    def test_manufacturer_model_and_variant(self, resolver: VehicleInfoResolver) -> None:
        """The manufacturer prefix is split off and the model found."""
        info = resolver.from_sheet_name("HYUNDAI  TUCSON 1.6 T-GDi SE")
        assert info is not None
        assert info.manufacturer == "Hyundai"
        assert info.model == "Tucson"
        assert info.variant == "TUCSON 1.6 T-GDi SE"
        assert info.source == VehicleInfoSource.SHEET_NAME

    def test_unknown_manufacturer_keeps_name_as_variant(
        self, resolver: VehicleInfoResolver
    ) -> None:
        """Without a known make the whole name is the variant."""
        info = resolver.from_sheet_name("Rates")
        assert info is not None
        assert info.manufacturer is None
        assert info.model is None
        assert info.variant == "Rates"

    def test_blank_sheet_name(self, resolver: VehicleInfoResolver) -> None:
        """A blank name carries nothing."""
        assert resolver.from_sheet_name("   ") is None


class TestHeaderCells:
    """Tests for identity read from label/value pairs above the grid."""

    def test_cap_code_and_otr(self, resolver: VehicleInfoResolver) -> None:
        """Label cells are paired with the value to their right."""
        info = resolver.from_header_cells(TUCSON_ROWS)
        assert info is not None
        assert info.cap_code == "HYTU16TNL5HPTA"
        assert info.otr == 3200000
        assert info.source == VehicleInfoSource.HEADER_CELLS

    def test_make_model_and_derivative(self, resolver: VehicleInfoResolver) -> None:
        """Make, model and derivative labels are recognised."""
        rows = [["Make", "Kia"], ["Model", "Niro"], ["Derivative:", "1.6 GDi 2"]]
        info = resolver.from_header_cells(rows)
        assert info is not None
        assert info.manufacturer == "Kia"
        assert info.model == "Niro"
        assert info.variant == "1.6 GDi 2"

    def test_cap_id_forms(self, resolver: VehicleInfoResolver) -> None:
        """CAP ids are read next to, inside, or below their label."""
        beside = resolver.from_header_cells([["CAP ID", 108321]])
        inside = resolver.from_header_cells([["CAP ID: 108321"]])
        after_label = resolver.from_header_cells([["Cap", 108321]])

        assert beside is not None and beside.cap_id == "108321"
        assert inside is not None and inside.cap_id == "108321"
        assert after_label is not None and after_label.cap_id == "108321"

    def test_cap_id_label_is_a_whole_word(
        self, resolver: VehicleInfoResolver
    ) -> None:
        """Digits after labels that merely contain "id" are not CAP ids."""
        rows = [["Provider", "010125"], ["Valid from", "010125"]]
        assert resolver.from_header_cells(rows) is None

        info = resolver.from_header_cells([["Vehicle ID", "108321"]])
        assert info is not None
        assert info.cap_id == "108321"

    def test_quote_number(self, resolver: VehicleInfoResolver) -> None:
        """Quote numbers are digit runs after a quote label."""
        info = resolver.from_header_cells([["Quote Number", "Q-12345678"]])
        assert info is not None
        assert info.quote_number == "12345678"

    def test_implausible_otr_is_ignored(self, resolver: VehicleInfoResolver) -> None:
        """Small numbers next to an OTR label are not prices."""
        assert resolver.from_header_cells([["OTR", 500]]) is None

    def test_header_text_is_not_a_value(self, resolver: VehicleInfoResolver) -> None:
        """A neighbouring column header is not taken as the value."""
        assert resolver.from_header_cells([["Make", "Model", "Rental"]]) is None

    def test_only_leading_rows_are_scanned(self) -> None:
        """Pairs below the header block are ignored."""
        resolver = VehicleInfoResolver(header_scan_rows=2)
        rows = [[], [], ["CAP Code", "HYTU16TNL5HPTA"]]
        assert resolver.from_header_cells(rows) is None


class TestResolve:
    """Tests for merging both sources."""

    def test_header_cells_and_sheet_name_merge(
        self, resolver: VehicleInfoResolver
    ) -> None:
        """Both sources contribute and the result records it."""
        info = resolver.resolve(TUCSON_SHEET, TUCSON_ROWS)
        assert info is not None
        assert info.manufacturer == "Hyundai"
        assert info.model == "Tucson"
        assert info.variant == "TUCSON 1.6 T-GDi SE"
        assert info.cap_code == "HYTU16TNL5HPTA"
        assert info.otr == 3200000
        assert info.source == VehicleInfoSource.BOTH

    def test_header_cells_win_over_sheet_name(
        self, resolver: VehicleInfoResolver
    ) -> None:
        """Header cells are more specific than the sheet name."""
        info = resolver.resolve("KIA SPORTAGE", [["Model", "Niro"]])
        assert info is not None
        assert info.manufacturer == "Kia"
        assert info.model == "Niro"

    def test_sheet_name_only(self, resolver: VehicleInfoResolver) -> None:
        """Grid cells that are not label/value pairs leave the name alone."""
        info = resolver.resolve(SECTIONED_SHEET, SECTIONED_ROWS)
        assert info is not None
        assert info.manufacturer == "Ford"
        assert info.model == "Puma"
        assert info.source == VehicleInfoSource.SHEET_NAME

    def test_bare_variant_is_not_an_identity(
        self, resolver: VehicleInfoResolver
    ) -> None:
        """A name that matches nothing known resolves to None."""
        assert resolver.resolve("Rates") is None
