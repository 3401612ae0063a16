"""FastAPI application for ratebook smart import."""

import uuid
from datetime import UTC, datetime
from typing import Annotated, Any

from fastapi import (
    FastAPI,
    File,
    Form,
    HTTPException,
    Query,
    Request,
    UploadFile,
    status,
)
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ratebook_import.config import settings, validate_settings_on_startup
from ratebook_import.models import (
    AnalysisResult,
    ContractType,
    ErrorDetail,
    FormatsResponse,
    HealthResponse,
    ImportResponse,
    ImportSummary,
    ProviderInfo,
    RatebookFormat,
)
from ratebook_import.patterns import (
    COMMON_MILEAGE_BANDS,
    COMMON_PAYMENT_PROFILES,
    DEFAULT_PATTERNS,
)
from ratebook_import.services.import_store import get_import_store
from ratebook_import.services.smart_importer import SmartImporter
from ratebook_import.utils.exceptions import (
    ErrorCode,
    FileTooLargeError,
    RatebookError,
    ValidationError,
)
from ratebook_import.utils.logging import (
    clear_context,
    configure_logging,
    get_logger,
    get_request_id,
    set_request_id,
)

# Configure structured logging using settings
configure_logging(
    level=settings.log_level_int,
    use_structured_formatter=True,
)
logger = get_logger(__name__)

API_VERSION = "0.1.0"
RESPONSE_MESSAGE_LIMIT = 20
RESPONSE_SAMPLE_RATES = 10

PROVIDERS: tuple[ProviderInfo, ...] = (
    ProviderInfo(code="lex", name="Lex Autolease"),
    ProviderInfo(code="ogilvie", name="Ogilvie Fleet"),
    ProviderInfo(code="venus", name="Venus"),
    ProviderInfo(code="ald", name="ALD Automotive"),
    ProviderInfo(code="drivalia", name="Drivalia"),
    ProviderInfo(code="arval", name="Arval"),
    ProviderInfo(code="zenith", name="Zenith"),
    ProviderInfo(code="alphabet", name="Alphabet"),
    ProviderInfo(code="dealer", name="Dealer"),
    ProviderInfo(code="other", name="Other"),
)


async def _read_upload(file: UploadFile) -> bytes:
    """Read an uploaded ratebook, enforcing the configured size limit."""
    if file.filename is None or file.filename == "":
        raise ValidationError(message="A ratebook file must be provided", field="file")

    content = await file.read()
    if len(content) > settings.max_file_size_bytes:
        raise FileTooLargeError(
            file_size=len(content),
            max_size=settings.max_file_size_bytes,
            file_name=file.filename,
        )
    if not content:
        raise ValidationError(message="The uploaded file is empty", field="file")
    return content


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Ratebook Smart Import API",
        description=(
            "Detects the layout of vehicle leasing ratebooks supplied by funders "
            "and converts them into normalized, de-duplicated lease rates."
        ),
        version=API_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    # Configure CORS using settings
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Validate settings on startup
    validate_settings_on_startup(settings)

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next: Any) -> Any:
        """Assign a request ID, expose it on the response and clear log context."""
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        set_request_id(request_id)
        request.state.request_id = request_id

        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            clear_context()

    @app.exception_handler(RatebookError)
    async def ratebook_exception_handler(
        request: Request, exc: RatebookError
    ) -> JSONResponse:
        """Map application errors to their HTTP status and an error body."""
        request_id = getattr(request.state, "request_id", get_request_id())
        logger.error(
            f"Ratebook Error: {exc.message}",
            error_code=exc.error_code.value,
            http_status=exc.http_status,
        )
        return JSONResponse(
            status_code=exc.http_status,
            content=ErrorDetail(
                detail=exc.message,
                error_code=exc.error_code.value,
                details=exc.details if exc.details else None,
                request_id=request_id,
            ).model_dump(exclude_none=True),
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(
        request: Request, exc: HTTPException
    ) -> JSONResponse:
        """Custom exception handler for HTTP exceptions."""
        request_id = getattr(request.state, "request_id", get_request_id())
        logger.warning(
            f"HTTP Error: {exc.detail}",
            status_code=exc.status_code,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorDetail(
                detail=str(exc.detail),
                request_id=request_id,
            ).model_dump(exclude_none=True),
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Catch-all handler that hides internals outside debug mode."""
        request_id = getattr(request.state, "request_id", get_request_id())
        logger.exception(
            f"Unexpected error: {type(exc).__name__}",
            error_type=type(exc).__name__,
        )
        if settings.debug:
            detail = f"Internal server error: {type(exc).__name__}: {exc}"
        else:
            detail = "Internal server error. Please try again later."

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=ErrorDetail(
                detail=detail,
                error_code=ErrorCode.INTERNAL_ERROR.value,
                request_id=request_id,
            ).model_dump(exclude_none=True),
        )

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    async def health_check(request: Request) -> dict[str, Any]:
        """Check the health status of the service.

        Returns:
            HealthResponse: Service status, timestamp and version.
        """
        request_id = getattr(request.state, "request_id", None)
        logger.debug("Health check requested", request_id=request_id)
        return {
            "status": "healthy",
            "timestamp": datetime.now(UTC).isoformat(),
            "version": API_VERSION,
        }

    @app.get("/ratebooks/formats", response_model=FormatsResponse, tags=["Ratebooks"])
    async def get_formats() -> FormatsResponse:
        """List the layouts, providers and header vocabulary the importer knows."""
        return FormatsResponse(
            formats=[RatebookFormat.TABULAR, RatebookFormat.MATRIX],
            providers=list(PROVIDERS),
            contract_types=list(ContractType),
            header_patterns=DEFAULT_PATTERNS.header_pattern_dict(),
            payment_profiles=list(COMMON_PAYMENT_PROFILES),
            mileage_bands=list(COMMON_MILEAGE_BANDS),
        )

    @app.post(
        "/ratebooks/analyze",
        response_model=AnalysisResult,
        tags=["Ratebooks"],
        responses={
            400: {"model": ErrorDetail, "description": "Missing or empty file"},
            413: {"model": ErrorDetail, "description": "File too large"},
            415: {"model": ErrorDetail, "description": "Not a spreadsheet"},
            422: {"model": ErrorDetail, "description": "Unreadable workbook"},
        },
    )
    async def analyze_ratebook(
        request: Request,
        file: Annotated[UploadFile, File(description="Ratebook workbook or CSV")],
        contract_type: Annotated[
            ContractType | None,
            Form(description="Contract type used for the preview"),
        ] = None,
    ) -> AnalysisResult:
        """Detect a ratebook's layout and preview its first rates.

        Nothing is written: use this before importing to check how each
        sheet was classified and which columns were recognised.
        """
        request_id = getattr(request.state, "request_id", None)
        content = await _read_upload(file)
        file_name = file.filename or "unknown"

        importer = SmartImporter(store=get_import_store())
        analysis = await run_in_threadpool(
            importer.analyze_file, content, file_name, contract_type
        )

        logger.info(
            "Ratebook analyzed",
            file_name=file_name,
            format=analysis.format.value,
            confidence=analysis.confidence,
            preview_rates=len(analysis.preview),
            request_id=request_id,
        )
        return analysis

    @app.post(
        "/ratebooks/import",
        response_model=ImportResponse,
        tags=["Ratebooks"],
        responses={
            400: {"model": ErrorDetail, "description": "Missing fields"},
            413: {"model": ErrorDetail, "description": "File too large"},
            415: {"model": ErrorDetail, "description": "Not a spreadsheet"},
        },
    )
    async def import_ratebook(
        request: Request,
        file: Annotated[UploadFile, File(description="Ratebook workbook or CSV")],
        provider_code: Annotated[str, Form(description="Funder the ratebook is from")],
        contract_type: Annotated[
            ContractType | None,
            Form(description="Contract type for rows outside any section"),
        ] = None,
        dry_run: Annotated[
            bool, Form(description="Extract without storing anything")
        ] = False,
        force_reimport: Annotated[
            bool, Form(description="Import even if this file was imported before")
        ] = False,
    ) -> ImportResponse:
        """Import a ratebook.

        Structural failures (unreadable file, undetermined format, duplicate
        file) are reported in the body with ``success`` false and an
        ``error_code`` rather than as HTTP errors, so callers can show the
        warnings gathered before the failure.
        """
        request_id = getattr(request.state, "request_id", None)
        provider = provider_code.strip().lower()
        if not provider:
            raise ValidationError(
                message="A provider code must be provided", field="provider_code"
            )
        content = await _read_upload(file)
        file_name = file.filename or "unknown"

        importer = SmartImporter(store=get_import_store())
        result = await run_in_threadpool(
            importer.smart_import,
            content,
            file_name,
            provider,
            contract_type,
            force_reimport,
            dry_run,
        )

        logger.info(
            "Ratebook import finished",
            file_name=file_name,
            provider_code=provider,
            success=result.success,
            import_id=result.import_id,
            request_id=request_id,
        )

        return ImportResponse(
            success=result.success,
            dry_run=dry_run,
            file_name=file_name,
            format=result.format,
            total_sheets=result.total_sheets,
            processed_sheets=result.processed_sheets,
            total_rates=result.total_rates,
            success_rates=result.success_rates,
            error_rates=result.error_rates,
            errors=result.errors[:RESPONSE_MESSAGE_LIMIT],
            warnings=result.warnings[:RESPONSE_MESSAGE_LIMIT],
            sample_rates=result.rates[:RESPONSE_SAMPLE_RATES],
            import_id=result.import_id,
            batch_id=result.batch_id,
            file_hash=result.file_hash,
            error_code=result.error_code,
        )

    @app.get(
        "/ratebooks/imports",
        response_model=list[ImportSummary],
        tags=["Ratebooks"],
    )
    async def list_imports(
        provider_code: Annotated[
            str | None, Query(description="Only imports from this funder")
        ] = None,
    ) -> list[ImportSummary]:
        """List stored import batches, newest first."""
        batches = get_import_store().list_imports(
            provider_code.strip().lower() if provider_code else None
        )
        return [batch.to_summary() for batch in batches]

    @app.get(
        "/ratebooks/imports/{import_id}",
        response_model=ImportSummary,
        tags=["Ratebooks"],
        responses={404: {"model": ErrorDetail, "description": "Import not found"}},
    )
    async def get_import(import_id: str) -> ImportSummary:
        """Get one stored import batch."""
        return get_import_store().get_import(import_id).to_summary()

    logger.info("FastAPI application created successfully")
    return app


# Create the application instance
app = create_app()
