"""Utilities package for ratebook import.

This package provides:
- Centralized exception classes (exceptions.py)
- Structured logging utilities (logging.py)
"""

from ratebook_import.utils.exceptions import (
    ContentDecodingError,
    DuplicateImportError,
    ErrorCode,
    ExtractionError,
    FileError,
    FileTooLargeError,
    FormatUndeterminedError,
    HTTPStatusMixin,
    ImportBatchError,
    ImportNotFoundError,
    PersistenceError,
    RatebookError,
    UnsupportedFormatError,
    ValidationError,
    WorkbookReadError,
)
from ratebook_import.utils.logging import (
    LogContext,
    StructuredLogger,
    get_logger,
    get_request_id,
    set_request_id,
)

__all__ = [
    # Exceptions
    "ContentDecodingError",
    "DuplicateImportError",
    "ErrorCode",
    "ExtractionError",
    "FileError",
    "FileTooLargeError",
    "FormatUndeterminedError",
    "HTTPStatusMixin",
    "ImportBatchError",
    "ImportNotFoundError",
    "PersistenceError",
    "RatebookError",
    "UnsupportedFormatError",
    "ValidationError",
    "WorkbookReadError",
    # Logging
    "LogContext",
    "StructuredLogger",
    "get_logger",
    "get_request_id",
    "set_request_id",
]
