"""Container detection for uploaded ratebooks.

Ratebooks arrive as OOXML workbooks, legacy BIFF (.xls) workbooks or
delimited text. The declared file name is only a hint: the container is
sniffed from magic bytes, and the extension is consulted only when the
content is ambiguous (OOXML files are ZIP archives and older libmagic builds
report them as plain ZIP).
"""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path

import magic

from ratebook_import.utils.exceptions import UnsupportedFormatError
from ratebook_import.utils.logging import get_logger

logger = get_logger(__name__)


class ContainerKind(str, Enum):
    """Physical container of a ratebook."""

    XLSX = "xlsx"
    XLS = "xls"
    CSV = "csv"


XLSX_MIME = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
XLS_MIME = "application/vnd.ms-excel"

# MIME types accepted as OOXML workbooks
WORKBOOK_MIME_TYPES: set[str] = {
    XLSX_MIME,
    "application/vnd.ms-excel.sheet.macroenabled.12",
    "application/vnd.ms-excel.sheet.macroEnabled.12",
}

# ZIP-based MIME types that need the extension to disambiguate
ZIP_MIME_TYPES: set[str] = {
    "application/zip",
    "application/x-zip-compressed",
    "application/octet-stream",
}

# MIME types libmagic reports for OLE2 compound documents such as .xls
XLS_MIME_TYPES: set[str] = {
    XLS_MIME,
    "application/x-ole-storage",
    "application/CDFV2",
    "application/cdfv2",
}

TEXT_MIME_PREFIX = "text/"

# Delimited-text MIME types some libmagic builds report outside text/
CSV_MIME_TYPES: set[str] = {"application/csv", "application/x-csv"}

EXTENSION_TO_CONTAINER: dict[str, ContainerKind] = {
    ".xlsx": ContainerKind.XLSX,
    ".xlsm": ContainerKind.XLSX,
    ".xls": ContainerKind.XLS,
    ".csv": ContainerKind.CSV,
    ".txt": ContainerKind.CSV,
}

_ZIP_SIGNATURE = b"PK\x03\x04"
_OLE_SIGNATURE = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"

CONTAINER_MIME: dict[ContainerKind, str] = {
    ContainerKind.XLSX: XLSX_MIME,
    ContainerKind.XLS: XLS_MIME,
    ContainerKind.CSV: "text/csv",
}


@dataclass(frozen=True)
class ContainerInfo:
    """Result of sniffing an uploaded file."""

    kind: ContainerKind
    mime_type: str
    detected_from_content: bool


class ContentDetector:
    """Detects whether uploaded bytes are a workbook or delimited text."""

    def __init__(self) -> None:
        """Initialize the detector with a magic instance."""
        self._magic = magic.Magic(mime=True)

    def detect(self, content: bytes, file_name: str | None = None) -> ContainerInfo:
        """Detect the container of uploaded content.

        Args:
            content: Raw file bytes.
            file_name: Declared file name, used only to disambiguate.

        Returns:
            ContainerInfo describing how to read the content.

        Raises:
            UnsupportedFormatError: If the content is not a workbook or text.
        """
        extension = Path(file_name).suffix.lower() if file_name else ""
        from_extension = EXTENSION_TO_CONTAINER.get(extension)
        detected_mime = self._detect_mime(content)

        if detected_mime in WORKBOOK_MIME_TYPES:
            return ContainerInfo(ContainerKind.XLSX, XLSX_MIME, True)

        if detected_mime in ZIP_MIME_TYPES and content.startswith(_ZIP_SIGNATURE):
            # Any ZIP is handed to the workbook reader, which rejects
            # archives that are not OOXML.
            if from_extension is not None and from_extension != ContainerKind.XLSX:
                logger.warning(
                    "File extension does not match detected content",
                    extension=extension,
                    detected_mime=detected_mime,
                )
            return ContainerInfo(ContainerKind.XLSX, XLSX_MIME, True)

        if detected_mime in XLS_MIME_TYPES or (
            detected_mime in ZIP_MIME_TYPES and content.startswith(_OLE_SIGNATURE)
        ):
            return ContainerInfo(ContainerKind.XLS, XLS_MIME, True)

        if detected_mime and (
            detected_mime.startswith(TEXT_MIME_PREFIX)
            or detected_mime in CSV_MIME_TYPES
        ):
            return ContainerInfo(ContainerKind.CSV, "text/csv", True)

        if detected_mime is None and from_extension is not None:
            return ContainerInfo(from_extension, CONTAINER_MIME[from_extension], False)

        raise UnsupportedFormatError(
            "Unsupported file format. Supported extensions: "
            + ", ".join(self.get_supported_extensions()),
            detected_mime=detected_mime,
            file_name=file_name,
        )

    def _detect_mime(self, content: bytes) -> str | None:
        """Detect MIME type from content using magic bytes.

        Args:
            content: File content as bytes.

        Returns:
            Detected MIME type or None if detection fails.
        """
        if not content:
            return None

        try:
            return str(self._magic.from_buffer(content))
        except magic.MagicException as e:
            logger.warning(
                "Magic detection failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            return None

    @staticmethod
    def get_supported_extensions() -> list[str]:
        """Get list of supported file extensions."""
        return sorted(EXTENSION_TO_CONTAINER.keys())
