"""Tests for the centralized exception classes."""

from ratebook_import.utils.exceptions import (
    ContentDecodingError,
    DetectionError,
    DuplicateImportError,
    ErrorCode,
    ExtractionError,
    FileError,
    FileTooLargeError,
    FormatUndeterminedError,
    ImportBatchError,
    ImportNotFoundError,
    PersistenceError,
    RatebookError,
    UnsupportedFormatError,
    ValidationError,
    WorkbookReadError,
)


class TestErrorCode:
    """Tests for ErrorCode enumeration."""

    def test_error_codes_are_unique(self) -> None:
        """All error codes should have unique values."""
        values = [code.value for code in ErrorCode]
        assert len(values) == len(set(values))

    def test_error_code_format(self) -> None:
        """Error codes should follow Exxxx format."""
        for code in ErrorCode:
            assert code.value.startswith("E")
            assert len(code.value) == 5
            assert code.value[1:].isdigit()

    def test_error_code_groups(self) -> None:
        """Error codes should be grouped by their leading digit."""
        groups = {
            "E1": [
                ErrorCode.FILE_TOO_LARGE,
                ErrorCode.UNSUPPORTED_FORMAT,
                ErrorCode.FILE_READ_ERROR,
                ErrorCode.ENCODING_ERROR,
                ErrorCode.EMPTY_WORKBOOK,
            ],
            "E2": [ErrorCode.FORMAT_UNDETERMINED],
            "E3": [
                ErrorCode.IMPORT_NOT_FOUND,
                ErrorCode.DUPLICATE_IMPORT,
                ErrorCode.IMPORT_FAILED,
                ErrorCode.PERSISTENCE_FAILED,
            ],
            "E4": [ErrorCode.EXTRACTION_FAILED, ErrorCode.NO_RATES_EXTRACTED],
        }
        for prefix, codes in groups.items():
            for code in codes:
                assert code.value.startswith(prefix), code


class TestRatebookError:
    """Tests for base RatebookError class."""

    def test_basic_initialization(self) -> None:
        """Test basic error initialization."""
        error = RatebookError("Test error message")
        assert str(error) == "[E9001] Test error message"
        assert error.message == "Test error message"
        assert error.error_code == ErrorCode.INTERNAL_ERROR
        assert error.details == {}
        assert error.http_status == 500

    def test_to_dict(self) -> None:
        """Test to_dict conversion."""
        error = RatebookError(
            "Test error",
            error_code=ErrorCode.FILE_READ_ERROR,
            details={"sheet": "Rates"},
        )
        result = error.to_dict()
        assert result == {
            "error_code": "E1004",
            "message": "Test error",
            "details": {"sheet": "Rates"},
        }

    def test_to_dict_without_details(self) -> None:
        """Test to_dict without details."""
        assert "details" not in RatebookError("Test error").to_dict()

    def test_get_http_status(self) -> None:
        """Test get_http_status method."""
        assert RatebookError("Test").get_http_status() == 500


class TestFileErrors:
    """Tests for file-related exceptions."""

    def test_file_too_large_error(self) -> None:
        """Test FileTooLargeError."""
        error = FileTooLargeError(
            file_size=30_000_000, max_size=25_000_000, file_name="lex.xlsx"
        )
        assert isinstance(error, FileError)
        assert error.error_code == ErrorCode.FILE_TOO_LARGE
        assert error.http_status == 413
        assert error.details == {
            "file_size_bytes": 30_000_000,
            "max_size_bytes": 25_000_000,
            "file_name": "lex.xlsx",
        }

    def test_unsupported_format_error(self) -> None:
        """Test UnsupportedFormatError."""
        error = UnsupportedFormatError(
            "Unsupported format", detected_mime="application/pdf"
        )
        assert error.error_code == ErrorCode.UNSUPPORTED_FORMAT
        assert error.http_status == 415
        assert error.details["detected_mime_type"] == "application/pdf"

    def test_workbook_read_error_codes(self) -> None:
        """WorkbookReadError should accept the empty-workbook code."""
        error = WorkbookReadError(
            "File is empty", file_name="x.xlsx", error_code=ErrorCode.EMPTY_WORKBOOK
        )
        assert error.error_code == ErrorCode.EMPTY_WORKBOOK
        assert error.http_status == 422
        assert error.details["file_name"] == "x.xlsx"

    def test_content_decoding_error(self) -> None:
        """Test ContentDecodingError."""
        error = ContentDecodingError("Bad base64", encoding="base64")
        assert error.error_code == ErrorCode.ENCODING_ERROR
        assert error.http_status == 400
        assert error.details["encoding"] == "base64"


class TestDetectionErrors:
    """Tests for format detection exceptions."""

    def test_format_undetermined_error(self) -> None:
        """FormatUndeterminedError should carry the detector's reason."""
        error = FormatUndeterminedError("No sheet has a recognisable structure")
        assert isinstance(error, DetectionError)
        assert error.error_code == ErrorCode.FORMAT_UNDETERMINED
        assert error.http_status == 422
        assert error.reason == "No sheet has a recognisable structure"
        assert error.message.startswith("Could not detect file format.")
        assert error.details["reason"] == error.reason


class TestImportErrors:
    """Tests for import batch exceptions."""

    def test_duplicate_import_error(self) -> None:
        """DuplicateImportError should point at the existing import."""
        error = DuplicateImportError(
            file_hash="abc123",
            existing_import_id="imp-1",
            imported_at="2024-05-01T10:00:00+00:00",
        )
        assert isinstance(error, ImportBatchError)
        assert error.error_code == ErrorCode.DUPLICATE_IMPORT
        assert error.http_status == 409
        assert error.existing_import_id == "imp-1"
        assert error.details["import_id"] == "imp-1"
        assert error.details["file_hash"] == "abc123"
        assert "2024-05-01T10:00:00+00:00" in error.message
        assert "Force Reimport" in error.message

    def test_import_not_found_error(self) -> None:
        """Test ImportNotFoundError."""
        error = ImportNotFoundError("imp-404")
        assert error.error_code == ErrorCode.IMPORT_NOT_FOUND
        assert error.http_status == 404
        assert "imp-404" in str(error)

    def test_persistence_error(self) -> None:
        """Test PersistenceError."""
        error = PersistenceError("Commit failed", import_id="imp-1")
        assert error.error_code == ErrorCode.PERSISTENCE_FAILED
        assert error.http_status == 500
        assert error.import_id == "imp-1"


class TestOtherErrors:
    """Tests for extraction and validation exceptions."""

    def test_extraction_error(self) -> None:
        """Test ExtractionError."""
        error = ExtractionError("Grid unreadable", sheet_name="Tucson")
        assert error.error_code == ErrorCode.EXTRACTION_FAILED
        assert error.details["sheet_name"] == "Tucson"

    def test_validation_error(self) -> None:
        """Test ValidationError."""
        error = ValidationError("Provider code required", field="provider_code")
        assert error.error_code == ErrorCode.INVALID_REQUEST
        assert error.http_status == 400
        assert error.field == "provider_code"
        assert error.details["field"] == "provider_code"

    def test_all_errors_inherit_from_base(self) -> None:
        """Every custom error should be catchable as RatebookError."""
        errors = [
            FileTooLargeError(file_size=2, max_size=1),
            UnsupportedFormatError("x"),
            WorkbookReadError("x"),
            ContentDecodingError("x"),
            FormatUndeterminedError("x"),
            DuplicateImportError("h", "i", "t"),
            ImportNotFoundError("i"),
            PersistenceError("x"),
            ExtractionError("x"),
            ValidationError("x"),
        ]
        for error in errors:
            assert isinstance(error, RatebookError)
