"""Smart import: detect a ratebook's layout, extract its rates, persist them.

The importer coordinates the pipeline:

1. Decode the upload and fingerprint it (SHA-256 of the raw bytes).
2. Refuse files that were already imported, unless forced. Failed or stuck
   imports of the same file are removed and retried.
3. Read the workbook, classify every sheet and take the workbook verdict.
4. Extract every sheet that agrees with the verdict. Other sheets are
   skipped with a warning rather than read under the wrong rules.
5. Commit all rates in one batch, or none of them.

Structural problems (unreadable file, undetermined format, duplicate file)
abort before extraction and come back as a failed result carrying an error
code. Sheet, row and cell problems are collected next to whatever rates
were produced.
"""

import hashlib
import time
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field

from ratebook_import.config import settings
from ratebook_import.models import (
    AnalysisResult,
    ContractType,
    DetectionResult,
    ImportStatus,
    MatrixSheetAnalysis,
    ParsedRate,
    RatebookFormat,
    SheetAnalysis,
    SmartImportResult,
    TabularSheetAnalysis,
    UnknownSheetAnalysis,
)
from ratebook_import.patterns import DEFAULT_PATTERNS, PatternLibrary
from ratebook_import.services.import_store import ImportStore, get_import_store
from ratebook_import.services.matrix_extractor import MatrixExtractor
from ratebook_import.services.sheet_classifier import SheetClassifier
from ratebook_import.services.sheet_extraction import SheetExtraction
from ratebook_import.services.tabular_extractor import TabularExtractor
from ratebook_import.services.workbook_reader import WorkbookReader, decode_content
from ratebook_import.utils.exceptions import (
    DuplicateImportError,
    ErrorCode,
    ExtractionError,
    FormatUndeterminedError,
    PersistenceError,
    RatebookError,
)
from ratebook_import.utils.logging import (
    LogContext,
    PerformanceMetrics,
    get_logger,
    timed_operation,
)
from ratebook_import.workbook import RawWorkbook

logger = get_logger(__name__)

RETRYABLE_STATUSES = (ImportStatus.FAILED, ImportStatus.PROCESSING)


def fingerprint(content: bytes) -> str:
    """SHA-256 hex digest used to recognise re-submitted files."""
    return hashlib.sha256(content).hexdigest()


def make_batch_id(provider_code: str) -> str:
    """Build a readable, unique batch identifier for a provider."""
    return f"smart_{provider_code}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"


@dataclass
class _ExtractionRun:
    """Rates and diagnostics gathered across the sheets of one workbook."""

    rates: list[ParsedRate] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    processed_sheets: int = 0
    skipped_cells: int = 0

    def add(self, extraction: SheetExtraction) -> None:
        self.rates.extend(extraction.rates)
        self.errors.extend(extraction.errors)
        self.warnings.extend(extraction.warnings)
        self.skipped_cells += extraction.skipped
        self.processed_sheets += 1
        if not extraction.rates:
            self.warnings.append(
                f'No rates extracted from sheet "{extraction.sheet_name}"'
            )


class SmartImporter:
    """Entry point for importing and previewing ratebooks."""

    def __init__(
        self,
        store: ImportStore | None = None,
        patterns: PatternLibrary = DEFAULT_PATTERNS,
        reader: WorkbookReader | None = None,
        classifier: SheetClassifier | None = None,
        tabular_extractor: TabularExtractor | None = None,
        matrix_extractor: MatrixExtractor | None = None,
    ) -> None:
        """Initialize the importer.

        Args:
            store: Persistence collaborator. Defaults to the global store.
            patterns: Vocabulary shared by the classifier and extractors.
            reader: Workbook reader.
            classifier: Sheet classifier.
            tabular_extractor: Extractor for tabular sheets.
            matrix_extractor: Extractor for matrix sheets.
        """
        self._store = store if store is not None else get_import_store()
        self._reader = reader or WorkbookReader()
        self._classifier = classifier or SheetClassifier(patterns=patterns)
        self._tabular = tabular_extractor or TabularExtractor(patterns=patterns)
        self._matrix = matrix_extractor or MatrixExtractor(patterns=patterns)

    @property
    def store(self) -> ImportStore:
        return self._store

    def smart_import(
        self,
        content: bytes | str,
        file_name: str,
        provider_code: str,
        contract_type: ContractType | None = None,
        force_reimport: bool = False,
        dry_run: bool = False,
        column_overrides: Mapping[int, str] | None = None,
        user_id: str | None = None,
    ) -> SmartImportResult:
        """Detect, extract and persist the rates of one ratebook.

        Args:
            content: File bytes, or base64 text of them.
            file_name: Declared file name, used for provenance only.
            provider_code: Funder the ratebook came from.
            contract_type: Contract type override. Matrix section markers
                still take precedence for the rows they cover.
            force_reimport: Import even if the file was imported before.
            dry_run: Extract without checking for or writing anything.
            column_overrides: ``{column index: target field}`` replacing the
                detected column map of tabular sheets.
            user_id: User recorded on the import batch.

        Returns:
            The outcome, including every extracted rate.
        """
        with LogContext(provider_code=provider_code, file_name=file_name):
            with timed_operation(logger, "smart_import") as metrics:
                result = self._import(
                    content,
                    file_name,
                    provider_code,
                    contract_type,
                    force_reimport,
                    dry_run,
                    column_overrides,
                    user_id,
                    metrics,
                )
                metrics.sheets_processed = result.processed_sheets
                metrics.rates_extracted = result.total_rates

        logger.log_import_result(
            file_name=file_name,
            success=result.success,
            format=result.format.value,
            total_rates=result.total_rates,
            processed_sheets=result.processed_sheets,
            error_count=len(result.errors),
            warning_count=len(result.warnings),
            import_id=result.import_id,
            dry_run=dry_run,
        )
        return result

    def analyze_file(
        self,
        content: bytes | str,
        file_name: str,
        contract_type: ContractType | None = None,
    ) -> AnalysisResult:
        """Detect the layout and preview the first rates without writing.

        Args:
            content: File bytes, or base64 text of them.
            file_name: Declared file name.
            contract_type: Contract type override used for the preview.

        Returns:
            The detection result with a bounded rate preview.

        Raises:
            RatebookError: If the file cannot be decoded or read.
        """
        with LogContext(file_name=file_name):
            data = decode_content(content, file_name)
            file_hash = fingerprint(data)
            workbook = self._reader.read(data, file_name)
            detection = self._classifier.detect_format(workbook)

            run = _ExtractionRun()
            if detection.format == RatebookFormat.UNKNOWN:
                run.warnings.append(detection.reason)
            else:
                run = self._extract(workbook, detection, contract_type, None)

        limit = settings.preview_limit
        logger.info(
            "File analyzed",
            format=detection.format.value,
            confidence=detection.confidence,
            preview_rates=min(limit, len(run.rates)),
        )
        return AnalysisResult(
            file_name=file_name,
            file_hash=file_hash,
            format=detection.format,
            confidence=detection.confidence,
            reason=detection.reason,
            sheets=detection.sheets,
            preview=run.rates[:limit],
            total_preview_rates=len(run.rates),
            errors=run.errors,
            warnings=run.warnings,
        )

    # ------------------------------------------------------------------ #
    # Pipeline
    # ------------------------------------------------------------------ #

    def _import(
        self,
        content: bytes | str,
        file_name: str,
        provider_code: str,
        contract_type: ContractType | None,
        force_reimport: bool,
        dry_run: bool,
        column_overrides: Mapping[int, str] | None,
        user_id: str | None,
        metrics: PerformanceMetrics,
    ) -> SmartImportResult:
        file_hash: str | None = None
        detection: DetectionResult | None = None
        warnings: list[str] = []
        total_sheets = 0

        try:
            data = decode_content(content, file_name)
            file_hash = fingerprint(data)
            if not dry_run and not force_reimport:
                warnings.extend(self._check_duplicate(file_hash))

            workbook = self._reader.read(data, file_name)
            total_sheets = len(workbook.sheets)
            detection = self._classifier.detect_format(workbook)
            if detection.format == RatebookFormat.UNKNOWN:
                raise FormatUndeterminedError(
                    "Please ensure the file has recognizable headers or matrix "
                    f"structure ({detection.reason})."
                )
        except RatebookError as e:
            logger.warning(
                "Import aborted",
                error_code=e.error_code.value,
                error=e.message,
            )
            return SmartImportResult(
                success=False,
                format=detection.format if detection else RatebookFormat.UNKNOWN,
                total_sheets=total_sheets,
                errors=[e.message],
                warnings=warnings,
                file_hash=file_hash,
                error_code=e.error_code.value,
            )

        run = self._extract(workbook, detection, contract_type, column_overrides)
        metrics.cells_skipped = run.skipped_cells
        run.warnings[:0] = warnings
        if not run.rates:
            run.errors.append("No rates were extracted from the workbook")
        result = SmartImportResult(
            success=bool(run.rates),
            format=detection.format,
            total_sheets=total_sheets,
            processed_sheets=run.processed_sheets,
            total_rates=len(run.rates),
            success_rates=len(run.rates),
            error_rates=0,
            rates=run.rates,
            errors=run.errors,
            warnings=run.warnings,
            file_hash=file_hash,
            error_code=None if run.rates else ErrorCode.NO_RATES_EXTRACTED.value,
        )

        if dry_run or not run.rates:
            return result
        return self._persist(
            result,
            file_name=file_name,
            provider_code=provider_code,
            contract_type=contract_type
            or ContractType(settings.default_contract_type),
            force_reimport=force_reimport,
            user_id=user_id,
        )

    def _check_duplicate(self, file_hash: str) -> list[str]:
        """Reject a known fingerprint, clearing failed or stuck imports.

        Returns:
            Warnings about removed imports.

        Raises:
            DuplicateImportError: If the file was already imported.
        """
        existing = self._store.find_by_hash(file_hash)
        if existing is None:
            return []
        if existing.status not in RETRYABLE_STATUSES:
            raise DuplicateImportError(
                file_hash=file_hash,
                existing_import_id=existing.import_id,
                imported_at=existing.created_at.isoformat(),
            )

        self._store.delete_import(existing.import_id)
        logger.info(
            "Removed previous import before retrying",
            import_id=existing.import_id,
            status=existing.status.value,
        )
        return [
            f"Previous {existing.status.value} import of this file "
            f"({existing.import_id}) was removed before retrying"
        ]

    def _extract(
        self,
        workbook: RawWorkbook,
        detection: DetectionResult,
        contract_type: ContractType | None,
        column_overrides: Mapping[int, str] | None,
    ) -> _ExtractionRun:
        """Extract every sheet whose own format matches the verdict."""
        run = _ExtractionRun()
        for sheet, analysis in zip(workbook.sheets, detection.sheets, strict=True):
            if analysis.format != detection.format:
                run.warnings.append(_skip_warning(analysis, detection.format))
                continue

            try:
                if isinstance(analysis, TabularSheetAnalysis):
                    extraction = self._tabular.extract(
                        sheet,
                        analysis,
                        contract_type=contract_type,
                        column_overrides=column_overrides,
                    )
                elif isinstance(analysis, MatrixSheetAnalysis):
                    extraction = self._matrix.extract(
                        sheet, analysis, contract_type=contract_type
                    )
                else:
                    continue
            except Exception as e:
                error = ExtractionError(
                    f'Sheet "{sheet.name}" could not be extracted: {e}',
                    sheet_name=sheet.name,
                )
                logger.exception(
                    "Sheet extraction failed",
                    sheet=sheet.name,
                    error_code=error.error_code.value,
                    error_type=type(e).__name__,
                )
                run.errors.append(error.message)
                continue
            run.add(extraction)
        return run

    def _persist(
        self,
        result: SmartImportResult,
        file_name: str,
        provider_code: str,
        contract_type: ContractType,
        force_reimport: bool,
        user_id: str | None,
    ) -> SmartImportResult:
        """Write the batch and its rates, all or nothing."""
        batch_id = make_batch_id(provider_code)
        try:
            batch = self._store.create_import(
                provider_code=provider_code,
                contract_type=contract_type,
                batch_id=batch_id,
                file_name=file_name,
                file_hash=result.file_hash or "",
                created_by=user_id,
                allow_duplicate=force_reimport,
            )
        except DuplicateImportError as e:
            # Another import of the same file won the race since the check
            return result.model_copy(
                update={
                    "success": False,
                    "success_rates": 0,
                    "errors": [*result.errors, e.message],
                    "error_code": e.error_code.value,
                }
            )

        with LogContext(import_id=batch.import_id, batch_id=batch_id):
            try:
                saved = self._store.save_rates(batch.import_id, result.rates)
            except PersistenceError as e:
                self._store.fail_import(batch.import_id, e.message)
                return result.model_copy(
                    update={
                        "success": False,
                        "success_rates": 0,
                        "error_rates": result.total_rates,
                        "errors": [*result.errors, e.message],
                        "import_id": batch.import_id,
                        "batch_id": batch_id,
                        "error_code": e.error_code.value,
                    }
                )

            self._store.complete_import(
                batch.import_id,
                total_rows=result.total_rates,
                success_rows=saved,
                error_rows=result.total_rates - saved,
                errors=result.errors,
            )

        return result.model_copy(
            update={
                "success_rates": saved,
                "error_rates": result.total_rates - saved,
                "import_id": batch.import_id,
                "batch_id": batch_id,
            }
        )


def _skip_warning(analysis: SheetAnalysis, verdict: RatebookFormat) -> str:
    if isinstance(analysis, UnknownSheetAnalysis):
        reason = analysis.reason or "layout not recognised"
        return f'Sheet "{analysis.name}" skipped: {reason}'
    return (
        f'Sheet "{analysis.name}" skipped: classified as {analysis.format.value} '
        f"but the workbook is {verdict.value}"
    )
