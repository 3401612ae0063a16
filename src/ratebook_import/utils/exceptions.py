"""Centralized exception classes for ratebook import.

This module provides a hierarchy of custom exceptions with error codes,
HTTP status code mapping, and structured error details for consistent
error handling across the reader, the extractors and the import pipeline.

Exception Hierarchy:
    RatebookError (base)
    ├── FileError
    │   ├── FileTooLargeError
    │   ├── UnsupportedFormatError
    │   ├── WorkbookReadError
    │   └── ContentDecodingError
    ├── DetectionError
    │   └── FormatUndeterminedError
    ├── ImportBatchError
    │   ├── DuplicateImportError
    │   ├── ImportNotFoundError
    │   └── PersistenceError
    ├── ExtractionError
    └── ValidationError

Error Codes:
    All errors have a unique error code (e.g., "E1001") that is surfaced on
    failed import results and API error bodies.
"""

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Enumeration of all error codes used in the application.

    Error codes are grouped by category:
    - E1xxx: File/container errors
    - E2xxx: Format detection errors
    - E3xxx: Import batch and store errors
    - E4xxx: Extraction errors
    - E9xxx: Internal/unexpected errors
    """

    # File errors (E1xxx)
    FILE_TOO_LARGE = "E1002"
    UNSUPPORTED_FORMAT = "E1003"
    FILE_READ_ERROR = "E1004"
    ENCODING_ERROR = "E1006"
    EMPTY_WORKBOOK = "E1007"

    # Detection errors (E2xxx)
    FORMAT_UNDETERMINED = "E2001"

    # Import errors (E3xxx)
    IMPORT_NOT_FOUND = "E3001"
    DUPLICATE_IMPORT = "E3003"
    IMPORT_FAILED = "E3004"
    PERSISTENCE_FAILED = "E3006"

    # Extraction errors (E4xxx)
    EXTRACTION_FAILED = "E4001"
    NO_RATES_EXTRACTED = "E4002"

    # Internal errors (E9xxx)
    INTERNAL_ERROR = "E9001"
    INVALID_REQUEST = "E9003"


class HTTPStatusMixin:
    """Mixin that provides HTTP status code for exceptions.

    Subclasses set the `http_status` class attribute so the API layer can
    map an error to a response without knowing its concrete type.
    """

    http_status: int = 500

    def get_http_status(self) -> int:
        """Get the HTTP status code for this exception.

        Returns:
            HTTP status code appropriate for this error.
        """
        return self.http_status


class RatebookError(Exception, HTTPStatusMixin):
    """Base exception for all ratebook import errors.

    Attributes:
        message: Human-readable error message.
        error_code: Unique error code from ErrorCode enum.
        details: Optional dictionary with additional error details.
        http_status: HTTP status code for API responses (default 500).
    """

    http_status: int = 500

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize the exception.

        Args:
            message: Human-readable error description.
            error_code: Error code from ErrorCode enum.
            details: Optional additional details about the error.
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert the exception to a dictionary for API responses.

        Returns:
            Dictionary with error information.
        """
        result: dict[str, Any] = {
            "error_code": self.error_code.value,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result

    def __str__(self) -> str:
        """Return string representation with error code."""
        return f"[{self.error_code.value}] {self.message}"


# =============================================================================
# File Errors (E1xxx)
# =============================================================================


class FileError(RatebookError):
    """Base class for errors about the uploaded container itself."""

    http_status: int = 400

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.FILE_READ_ERROR,
        file_name: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize with file name information.

        Args:
            message: Error message.
            error_code: Error code.
            file_name: Declared name of the problematic file.
            details: Additional details.
        """
        details = details or {}
        if file_name:
            details["file_name"] = file_name
        super().__init__(message, error_code, details)
        self.file_name = file_name


class FileTooLargeError(FileError):
    """Raised when a file exceeds the maximum allowed size."""

    http_status: int = 413

    def __init__(
        self,
        file_size: int,
        max_size: int,
        file_name: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize with size information.

        Args:
            file_size: Actual file size in bytes.
            max_size: Maximum allowed size in bytes.
            file_name: Optional declared file name.
            details: Additional details.
        """
        details = details or {}
        details["file_size_bytes"] = file_size
        details["max_size_bytes"] = max_size
        message = (
            f"File size ({file_size} bytes) exceeds maximum "
            f"allowed size ({max_size} bytes)"
        )
        super().__init__(
            message=message,
            error_code=ErrorCode.FILE_TOO_LARGE,
            file_name=file_name,
            details=details,
        )
        self.file_size = file_size
        self.max_size = max_size


class UnsupportedFormatError(FileError):
    """Raised when the uploaded content is not a workbook we can read."""

    http_status: int = 415

    def __init__(
        self,
        message: str,
        detected_mime: str | None = None,
        file_name: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize with format information.

        Args:
            message: Error message.
            detected_mime: MIME type that was sniffed from the content.
            file_name: Optional declared file name.
            details: Additional details.
        """
        details = details or {}
        if detected_mime:
            details["detected_mime_type"] = detected_mime
        super().__init__(
            message=message,
            error_code=ErrorCode.UNSUPPORTED_FORMAT,
            file_name=file_name,
            details=details,
        )
        self.detected_mime = detected_mime


class WorkbookReadError(FileError):
    """Raised when a workbook is corrupt, empty or cannot be parsed."""

    http_status: int = 422

    def __init__(
        self,
        message: str,
        file_name: str | None = None,
        error_code: ErrorCode = ErrorCode.FILE_READ_ERROR,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize with read failure information.

        Args:
            message: Error message.
            file_name: Optional declared file name.
            error_code: FILE_READ_ERROR or EMPTY_WORKBOOK.
            details: Additional details.
        """
        super().__init__(
            message=message,
            error_code=error_code,
            file_name=file_name,
            details=details,
        )


class ContentDecodingError(FileError):
    """Raised when base64 or text content cannot be decoded."""

    http_status: int = 400

    def __init__(
        self,
        message: str,
        encoding: str | None = None,
        file_name: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize with encoding information.

        Args:
            message: Error message.
            encoding: The encoding that failed (e.g. "base64").
            file_name: Optional declared file name.
            details: Additional details.
        """
        details = details or {}
        if encoding:
            details["encoding"] = encoding
        super().__init__(
            message=message,
            error_code=ErrorCode.ENCODING_ERROR,
            file_name=file_name,
            details=details,
        )
        self.encoding = encoding


# =============================================================================
# Detection Errors (E2xxx)
# =============================================================================


class DetectionError(RatebookError):
    """Base class for format detection errors."""

    http_status: int = 422

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.FORMAT_UNDETERMINED,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize the detection error.

        Args:
            message: Error message.
            error_code: Error code.
            details: Additional details.
        """
        super().__init__(message, error_code, details)


class FormatUndeterminedError(DetectionError):
    """Raised when no sheet layout wins the workbook vote."""

    def __init__(
        self,
        reason: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize with the detector's reason.

        Args:
            reason: Human-readable reason produced by the detector.
            details: Additional details.
        """
        details = details or {}
        details["reason"] = reason
        super().__init__(
            message=f"Could not detect file format. {reason}",
            error_code=ErrorCode.FORMAT_UNDETERMINED,
            details=details,
        )
        self.reason = reason


# =============================================================================
# Import Errors (E3xxx)
# =============================================================================


class ImportBatchError(RatebookError):
    """Base class for import batch and store errors."""

    http_status: int = 400

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.IMPORT_FAILED,
        import_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize with import information.

        Args:
            message: Error message.
            error_code: Error code.
            import_id: The related import identifier.
            details: Additional details.
        """
        details = details or {}
        if import_id:
            details["import_id"] = import_id
        super().__init__(message, error_code, details)
        self.import_id = import_id


class DuplicateImportError(ImportBatchError):
    """Raised when a file with the same fingerprint was already imported."""

    http_status: int = 409

    def __init__(
        self,
        file_hash: str,
        existing_import_id: str,
        imported_at: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize with the colliding import.

        Args:
            file_hash: SHA-256 fingerprint of the submitted file.
            existing_import_id: The import that already holds this fingerprint.
            imported_at: When the existing import was created (ISO format).
            details: Additional details.
        """
        details = details or {}
        details["file_hash"] = file_hash
        details["imported_at"] = imported_at
        super().__init__(
            message=(
                f"Duplicate file - already imported on {imported_at}. "
                'Use "Force Reimport" to import again.'
            ),
            error_code=ErrorCode.DUPLICATE_IMPORT,
            import_id=existing_import_id,
            details=details,
        )
        self.file_hash = file_hash
        self.existing_import_id = existing_import_id


class ImportNotFoundError(ImportBatchError):
    """Raised when an import batch does not exist."""

    http_status: int = 404

    def __init__(
        self,
        import_id: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize with import ID.

        Args:
            import_id: The import ID that was not found.
            details: Additional details.
        """
        super().__init__(
            message=f"Import not found: {import_id}",
            error_code=ErrorCode.IMPORT_NOT_FOUND,
            import_id=import_id,
            details=details,
        )


class PersistenceError(ImportBatchError):
    """Raised when rates cannot be committed for an import."""

    http_status: int = 500

    def __init__(
        self,
        message: str,
        import_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize the persistence error.

        Args:
            message: Error message.
            import_id: The import being written.
            details: Additional details.
        """
        super().__init__(
            message=message,
            error_code=ErrorCode.PERSISTENCE_FAILED,
            import_id=import_id,
            details=details,
        )


# =============================================================================
# Extraction Errors (E4xxx)
# =============================================================================


class ExtractionError(RatebookError):
    """Raised when a sheet cannot be extracted."""

    http_status: int = 500

    def __init__(
        self,
        message: str,
        sheet_name: str | None = None,
        error_code: ErrorCode = ErrorCode.EXTRACTION_FAILED,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize with sheet information.

        Args:
            message: Error message.
            sheet_name: The sheet being extracted.
            error_code: Error code.
            details: Additional details.
        """
        details = details or {}
        if sheet_name:
            details["sheet_name"] = sheet_name
        super().__init__(message, error_code, details)
        self.sheet_name = sheet_name


# =============================================================================
# Validation Errors
# =============================================================================


class ValidationError(RatebookError):
    """Raised when request input fails validation."""

    http_status: int = 400

    def __init__(
        self,
        message: str,
        field: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize with field information.

        Args:
            message: Error message.
            field: The offending input field.
            details: Additional details.
        """
        details = details or {}
        if field:
            details["field"] = field
        super().__init__(message, ErrorCode.INVALID_REQUEST, details)
        self.field = field
