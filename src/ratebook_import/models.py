"""Pydantic models for sheet analysis, parsed rates and API payloads."""

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator


class RatebookFormat(str, Enum):
    """Layout of a sheet or of a whole workbook."""

    TABULAR = "tabular"
    MATRIX = "matrix"
    UNKNOWN = "unknown"


class AxisKind(str, Enum):
    """What the labels along one matrix axis mean."""

    PAYMENT_PROFILE = "payment_profile"
    MILEAGE = "mileage"
    UNKNOWN = "unknown"


class ContractType(str, Enum):
    """Lease product codes used by UK funders."""

    BCH = "BCH"
    PCH = "PCH"
    CH = "CH"
    CHNM = "CHNM"
    PCHNM = "PCHNM"
    BSSNL = "BSSNL"
    HCH = "HCH"

    @property
    def includes_maintenance(self) -> bool:
        """Whether rates of this contract type are maintained by default."""
        return self in (ContractType.BCH, ContractType.PCH, ContractType.CH)


class VehicleInfoSource(str, Enum):
    """Where the vehicle identity of a sheet was read from."""

    SHEET_NAME = "sheet_name"
    HEADER_CELLS = "header_cells"
    BOTH = "both"


class ImportStatus(str, Enum):
    """Lifecycle of a persisted import batch."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


# Initial rental count -> payment plan code used by downstream pricing
PAYMENT_PLANS: dict[int, str] = {
    1: "monthly_in_advance",
    3: "spread_3_down",
    6: "spread_6_down",
    9: "spread_9_down",
    12: "spread_12_down",
}


# =============================================================================
# Sheet analysis
# =============================================================================


class ColumnMapping(BaseModel):
    """Association of one source header cell with a target field."""

    model_config = ConfigDict(frozen=True)

    source_column_index: int = Field(..., ge=0, description="0-based column index")
    source_header_text: str = Field(..., description="Header text as found")
    target_field: str | None = Field(
        default=None, description="Canonical field name, None when unrecognised"
    )
    confidence: int = Field(default=0, ge=0, le=100, description="Match confidence")


class MatrixSection(BaseModel):
    """A contract-type block inside a matrix sheet (inclusive row range)."""

    model_config = ConfigDict(frozen=True)

    contract_type: ContractType
    start_row: int = Field(..., ge=0)
    end_row: int = Field(..., ge=0)

    def contains(self, row: int) -> bool:
        """Check whether a row index falls inside this section."""
        return self.start_row <= row <= self.end_row


class MatrixInfo(BaseModel):
    """Geometry of a matrix sheet."""

    model_config = ConfigDict(frozen=True)

    data_start_row: int = Field(..., ge=0, description="First row holding rentals")
    data_start_col: int = Field(..., ge=0, description="First column holding rentals")
    row_axis: AxisKind
    row_labels: tuple[str, ...] = Field(
        ..., description="Row-axis labels seen within the scan window"
    )
    col_axis: AxisKind
    col_labels: tuple[str, ...] = Field(..., description="Column-axis labels")
    column_header_row: int = Field(
        ..., ge=0, description="Row index holding the column-axis labels"
    )
    column_positions: tuple[int, ...] = Field(
        ..., description="Column index of each column-axis label"
    )
    has_maintenance_split: bool = False
    maintenance_sub_labels: tuple[str, ...] = ()
    sections: tuple[MatrixSection, ...] = ()

    @model_validator(mode="after")
    def validate_axes(self) -> "MatrixInfo":
        """Ensure one axis is payment profiles and the other mileage bands."""
        if self.row_axis == self.col_axis:
            raise ValueError("Matrix row and column axes must differ")
        if {self.row_axis, self.col_axis} != {
            AxisKind.PAYMENT_PROFILE,
            AxisKind.MILEAGE,
        }:
            raise ValueError(
                "Matrix axes must be one payment_profile and one mileage axis"
            )
        if len(self.column_positions) != len(self.col_labels):
            raise ValueError("Each column label needs exactly one column position")
        return self

    @property
    def is_mirrored(self) -> bool:
        """True when mileage bands run down the rows."""
        return self.row_axis == AxisKind.MILEAGE

    def section_for_row(self, row: int) -> MatrixSection | None:
        """Return the section containing a row, if any."""
        for section in self.sections:
            if section.contains(row):
                return section
        return None


class ExtractedVehicleInfo(BaseModel):
    """Vehicle identity found in a sheet name or header block."""

    model_config = ConfigDict(frozen=True)

    manufacturer: str | None = None
    model: str | None = None
    variant: str | None = None
    cap_code: str | None = None
    cap_id: str | None = None
    quote_number: str | None = None
    otr: int | None = Field(default=None, description="OTR price in pence")
    source: VehicleInfoSource


class TabularSheetAnalysis(BaseModel):
    """A sheet holding one rate per row under a header row."""

    model_config = ConfigDict(frozen=True)

    format: Literal[RatebookFormat.TABULAR] = RatebookFormat.TABULAR
    name: str
    header_row: int = Field(..., ge=0)
    columns: tuple[ColumnMapping, ...]
    vehicle_info: ExtractedVehicleInfo | None = None
    sample_rows: tuple[dict[str, Any], ...] = Field(
        default=(), description="First data rows keyed by header text"
    )

    def mapped_fields(self) -> dict[str, int]:
        """Map each recognised target field to its first source column."""
        fields: dict[str, int] = {}
        for column in self.columns:
            if column.target_field and column.target_field not in fields:
                fields[column.target_field] = column.source_column_index
        return fields


class MatrixSheetAnalysis(BaseModel):
    """A sheet holding a profile by mileage grid for one vehicle."""

    model_config = ConfigDict(frozen=True)

    format: Literal[RatebookFormat.MATRIX] = RatebookFormat.MATRIX
    name: str
    matrix_info: MatrixInfo
    vehicle_info: ExtractedVehicleInfo | None = None


class UnknownSheetAnalysis(BaseModel):
    """A sheet whose layout could not be recognised."""

    model_config = ConfigDict(frozen=True)

    format: Literal[RatebookFormat.UNKNOWN] = RatebookFormat.UNKNOWN
    name: str
    reason: str = ""
    vehicle_info: ExtractedVehicleInfo | None = None


SheetAnalysis = Annotated[
    TabularSheetAnalysis | MatrixSheetAnalysis | UnknownSheetAnalysis,
    Field(discriminator="format"),
]


class DetectionResult(BaseModel):
    """Workbook-level format verdict plus per-sheet analyses."""

    model_config = ConfigDict(frozen=True)

    format: RatebookFormat
    confidence: int = Field(..., ge=0, le=100)
    reason: str
    sheets: tuple[SheetAnalysis, ...]


# =============================================================================
# Extracted rates
# =============================================================================


class ParsedRate(BaseModel):
    """One normalized lease rate. Money is held in integer pence."""

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    cap_code: str | None = None
    cap_id: str | None = None
    manufacturer: str
    model: str
    variant: str | None = None
    term: int = Field(..., ge=1, description="Total contract length in months")
    annual_mileage: int = Field(..., ge=0)
    initial_months: int = Field(..., ge=0, description="Rentals paid up front")
    payment_profile_label: str = Field(..., description="e.g. '3+35'")
    contract_type: ContractType
    monthly_rental: int = Field(..., gt=0, description="Monthly rental in pence")
    is_maintained: bool
    otr: int | None = Field(default=None, description="OTR price in pence")
    p11d: int | None = Field(default=None, description="P11D value in pence")
    co2: int | None = None
    fuel_type: str | None = None
    transmission: str | None = None
    quote_number: str | None = None
    lease_rental: int | None = Field(default=None, description="Finance element")
    service_rental: int | None = Field(
        default=None, description="Maintenance element"
    )
    excess_mileage_ppm: int | None = Field(
        default=None, description="Excess mileage charge, pence per mile"
    )
    body_style: str | None = None
    model_year: int | None = None
    source_sheet: str
    source_row: int = Field(..., ge=0, description="0-based source row")
    source_col: int = Field(..., ge=0, description="0-based source column")

    @computed_field  # type: ignore[prop-decorator]
    @property
    def payment_plan(self) -> str:
        """Payment plan code derived from the number of initial rentals."""
        return PAYMENT_PLANS.get(self.initial_months, "monthly_in_advance")


class SmartImportResult(BaseModel):
    """Outcome of a smart import run."""

    model_config = ConfigDict(frozen=True)

    success: bool
    format: RatebookFormat
    total_sheets: int = 0
    processed_sheets: int = 0
    total_rates: int = 0
    success_rates: int = 0
    error_rates: int = 0
    rates: list[ParsedRate] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    import_id: str | None = None
    batch_id: str | None = None
    file_hash: str | None = None
    error_code: str | None = Field(
        default=None, description="Error code when the import failed structurally"
    )


class AnalysisResult(BaseModel):
    """Side-effect-free preview of what an import would produce."""

    model_config = ConfigDict(frozen=True)

    file_name: str
    file_hash: str
    format: RatebookFormat
    confidence: int
    reason: str
    sheets: tuple[SheetAnalysis, ...]
    preview: list[ParsedRate] = Field(default_factory=list)
    total_preview_rates: int = Field(
        default=0, description="Rates extracted before the preview was truncated"
    )
    errors: list[str] = Field(
        default_factory=list, description="Sheets that failed during the preview"
    )
    warnings: list[str] = Field(default_factory=list)


# =============================================================================
# API payloads
# =============================================================================


class HealthResponse(BaseModel):
    """Response model for health check endpoint."""

    status: str
    timestamp: str
    version: str


class ErrorDetail(BaseModel):
    """Standard error response body."""

    detail: str = Field(..., description="Human-readable error message")
    error_code: str | None = Field(default=None, description="Application error code")
    details: dict[str, Any] | None = Field(
        default=None, description="Additional structured error details"
    )
    request_id: str | None = Field(
        default=None, description="Request ID for correlation"
    )


class ImportResponse(BaseModel):
    """Response model for the import endpoint."""

    success: bool
    dry_run: bool
    file_name: str
    format: RatebookFormat
    total_sheets: int
    processed_sheets: int
    total_rates: int
    success_rates: int
    error_rates: int
    errors: list[str] = Field(..., description="First 20 errors")
    warnings: list[str] = Field(..., description="First 20 warnings")
    sample_rates: list[ParsedRate] = Field(..., description="First 10 rates")
    import_id: str | None = None
    batch_id: str | None = None
    file_hash: str | None = None
    error_code: str | None = None


class ImportSummary(BaseModel):
    """Stored import batch as exposed by the API."""

    import_id: str
    batch_id: str
    provider_code: str
    contract_type: ContractType
    file_name: str
    file_hash: str
    status: ImportStatus
    total_rows: int
    success_rows: int
    error_rows: int
    unique_cap_codes: int
    is_latest: bool
    superseded_import_id: str | None = None
    created_at: datetime
    completed_at: datetime | None = None


class ProviderInfo(BaseModel):
    """A known ratebook provider."""

    code: str
    name: str


class FormatsResponse(BaseModel):
    """Reference data describing what the importer understands."""

    formats: list[RatebookFormat]
    providers: list[ProviderInfo]
    contract_types: list[ContractType]
    header_patterns: dict[str, list[str]]
    payment_profiles: list[str]
    mileage_bands: list[int]
