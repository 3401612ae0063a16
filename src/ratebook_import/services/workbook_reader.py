"""Read uploaded ratebooks into raw cell grids.

OOXML workbooks are loaded with openpyxl using cached values (a ratebook's
formulas are never re-evaluated). Legacy .xls workbooks go through pandas
with the xlrd engine. Delimited text is decoded with chardet, its delimiter
sniffed, and parsed with pandas into a single sheet.
"""

from __future__ import annotations

import base64
import binascii
import csv
import io
import math
import zipfile
from dataclasses import dataclass
from pathlib import Path

import chardet
import pandas as pd
from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException
from openpyxl.worksheet.worksheet import Worksheet
from xlrd import XLRDError

from ratebook_import.cells import parse_number
from ratebook_import.config import settings
from ratebook_import.services.content_detector import ContainerKind, ContentDetector
from ratebook_import.utils.exceptions import (
    ContentDecodingError,
    ErrorCode,
    FileTooLargeError,
    WorkbookReadError,
)
from ratebook_import.utils.logging import get_logger
from ratebook_import.workbook import CellValue, RawSheet, RawWorkbook

logger = get_logger(__name__)

MIN_ENCODING_CONFIDENCE = 0.7
FALLBACK_ENCODINGS = ("cp1252",)


@dataclass
class WorkbookReadOptions:
    """Options controlling how a workbook is read."""

    max_file_size_bytes: int | None = None
    max_rows: int | None = None
    max_columns: int | None = None


def decode_content(content: bytes | str, file_name: str | None = None) -> bytes:
    """Return raw bytes for uploaded content, decoding base64 text.

    Args:
        content: Raw bytes, or base64 text as sent by browser clients.
        file_name: Declared file name for error details.

    Returns:
        The file bytes.

    Raises:
        ContentDecodingError: If text content is not valid base64.
    """
    if isinstance(content, bytes | bytearray):
        return bytes(content)

    text = content.strip()
    # Data URLs carry a "data:<mime>;base64," prefix
    if text.startswith("data:") and "," in text:
        text = text.split(",", 1)[1]
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ContentDecodingError(
            f"File content is not valid base64: {e}",
            encoding="base64",
            file_name=file_name,
        ) from e


class WorkbookReader:
    """Turn uploaded bytes into a RawWorkbook."""

    def __init__(self, detector: ContentDetector | None = None) -> None:
        """Initialize the reader.

        Args:
            detector: Container detector. A default one is created if omitted.
        """
        self._detector = detector or ContentDetector()

    def read(
        self,
        content: bytes,
        file_name: str | None = None,
        options: WorkbookReadOptions | None = None,
    ) -> RawWorkbook:
        """Read a ratebook from bytes.

        Args:
            content: File bytes.
            file_name: Declared file name (used for CSV sheet naming).
            options: Optional read limits.

        Returns:
            RawWorkbook with every sheet as a cell grid.

        Raises:
            FileTooLargeError: If the content exceeds the size limit.
            UnsupportedFormatError: If the content is not a workbook or CSV.
            WorkbookReadError: If the content cannot be parsed or has no sheets.
        """
        opts = options or WorkbookReadOptions()
        max_size = opts.max_file_size_bytes or settings.max_file_size_bytes
        if len(content) > max_size:
            raise FileTooLargeError(
                file_size=len(content), max_size=max_size, file_name=file_name
            )
        if not content:
            raise WorkbookReadError(
                "File is empty",
                file_name=file_name,
                error_code=ErrorCode.EMPTY_WORKBOOK,
            )

        container = self._detector.detect(content, file_name)
        if container.kind == ContainerKind.CSV:
            workbook = self._read_csv(content, file_name, opts)
        elif container.kind == ContainerKind.XLS:
            workbook = self._read_xls(content, file_name, opts)
        else:
            workbook = self._read_xlsx(content, file_name, opts)

        if not workbook.sheets or all(
            sheet.row_count == 0 for sheet in workbook.sheets
        ):
            raise WorkbookReadError(
                "Workbook contains no data",
                file_name=file_name,
                error_code=ErrorCode.EMPTY_WORKBOOK,
            )

        logger.info(
            "Workbook read",
            file_name=file_name,
            source=workbook.source,
            sheets=len(workbook.sheets),
        )
        return workbook

    # ------------------------------------------------------------------ #
    # Internal helpers
    # ------------------------------------------------------------------ #

    def _read_xlsx(
        self,
        content: bytes,
        file_name: str | None,
        opts: WorkbookReadOptions,
    ) -> RawWorkbook:
        """Load every worksheet of an OOXML workbook."""
        try:
            workbook = load_workbook(
                filename=io.BytesIO(content), data_only=True, read_only=False
            )
        except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as e:
            raise WorkbookReadError(
                f"Could not read workbook: {e}",
                file_name=file_name,
                details={"error_type": type(e).__name__},
            ) from e

        # Chartsheets carry no cells and are not part of worksheets
        sheets = tuple(
            self._extract_sheet(worksheet, opts) for worksheet in workbook.worksheets
        )
        workbook.close()
        return RawWorkbook(
            sheets=sheets,
            source=ContainerKind.XLSX.value,
            metadata={"sheet_names": [sheet.name for sheet in sheets]},
        )

    @staticmethod
    def _extract_sheet(sheet: Worksheet, opts: WorkbookReadOptions) -> RawSheet:
        """Extract a worksheet's cached values, anchored at cell A1."""
        max_row = sheet.max_row
        max_col = sheet.max_column
        if opts.max_rows is not None:
            max_row = min(max_row, opts.max_rows)
        if opts.max_columns is not None:
            max_col = min(max_col, opts.max_columns)

        rows: list[tuple[CellValue, ...]] = []
        for values in sheet.iter_rows(
            min_row=1, max_row=max_row, min_col=1, max_col=max_col, values_only=True
        ):
            rows.append(_trim_trailing_blanks(values))

        # openpyxl reports a 1x1 sheet for an empty worksheet
        while rows and not rows[-1]:
            rows.pop()
        return RawSheet(name=sheet.title, rows=tuple(rows))

    def _read_xls(
        self,
        content: bytes,
        file_name: str | None,
        opts: WorkbookReadOptions,
    ) -> RawWorkbook:
        """Load every worksheet of a legacy BIFF workbook."""
        try:
            frames = pd.read_excel(
                io.BytesIO(content),
                sheet_name=None,
                header=None,
                engine="xlrd",
                nrows=opts.max_rows,
            )
        except (XLRDError, ValueError, OSError) as e:
            raise WorkbookReadError(
                f"Could not read workbook: {e}",
                file_name=file_name,
                details={"error_type": type(e).__name__},
            ) from e

        sheets = []
        for name, df in frames.items():
            if opts.max_columns is not None:
                df = df.iloc[:, : opts.max_columns]
            rows = [
                _trim_trailing_blanks(tuple(_coerce_xls_cell(v) for v in record))
                for record in df.itertuples(index=False, name=None)
            ]
            while rows and not rows[-1]:
                rows.pop()
            sheets.append(RawSheet(name=str(name), rows=tuple(rows)))

        return RawWorkbook(
            sheets=tuple(sheets),
            source=ContainerKind.XLS.value,
            metadata={"sheet_names": [sheet.name for sheet in sheets]},
        )

    def _read_csv(
        self,
        content: bytes,
        file_name: str | None,
        opts: WorkbookReadOptions,
    ) -> RawWorkbook:
        """Parse delimited text as a single sheet."""
        encoding = self._detect_encoding(content)
        try:
            text = content.decode(encoding)
        except (UnicodeDecodeError, LookupError) as e:
            raise ContentDecodingError(
                f"Could not decode text file as {encoding}",
                encoding=encoding,
                file_name=file_name,
            ) from e

        delimiter = self._detect_csv_delimiter(text)
        width = max(
            (len(record) for record in csv.reader(io.StringIO(text), delimiter=delimiter)),
            default=0,
        )
        if width == 0:
            raise WorkbookReadError(
                "CSV file contains no data",
                file_name=file_name,
                error_code=ErrorCode.EMPTY_WORKBOOK,
            )

        try:
            df = pd.read_csv(
                io.StringIO(text),
                sep=delimiter,
                header=None,
                names=list(range(width)),
                dtype=str,
                keep_default_na=False,
                skip_blank_lines=False,
                nrows=opts.max_rows,
            )
        except (pd.errors.ParserError, pd.errors.EmptyDataError) as e:
            raise WorkbookReadError(
                f"Could not parse CSV file: {e}",
                file_name=file_name,
            ) from e

        if opts.max_columns is not None:
            df = df.iloc[:, : opts.max_columns]

        rows = tuple(
            _trim_trailing_blanks(tuple(_coerce_text_cell(v) for v in record))
            for record in df.itertuples(index=False, name=None)
        )
        name = Path(file_name).stem if file_name else "Sheet1"
        return RawWorkbook(
            sheets=(RawSheet(name=name or "Sheet1", rows=rows),),
            source=ContainerKind.CSV.value,
            metadata={"encoding": encoding, "delimiter": delimiter},
        )

    @staticmethod
    def _detect_encoding(content: bytes) -> str:
        """Detect text encoding with chardet, falling back to common codecs.

        Valid UTF-8 is accepted before asking chardet, which tends to report
        mostly-ASCII files with a few pound signs as Latin-1.
        """
        try:
            content.decode("utf-8")
            return "utf-8"
        except UnicodeDecodeError:
            pass

        result = chardet.detect(content)
        encoding = result.get("encoding")
        confidence = result.get("confidence") or 0.0
        if encoding and confidence >= MIN_ENCODING_CONFIDENCE:
            return "utf-8" if encoding.lower() == "ascii" else encoding

        for fallback in FALLBACK_ENCODINGS:
            try:
                content.decode(fallback)
                return fallback
            except UnicodeDecodeError:
                continue
        logger.warning("Could not detect encoding, falling back to latin-1")
        return "latin-1"

    @staticmethod
    def _detect_csv_delimiter(text: str) -> str:
        """Detect the delimiter used in a CSV file."""
        try:
            dialect = csv.Sniffer().sniff(text[:8192], delimiters=",;\t|")
            return dialect.delimiter
        except csv.Error:
            logger.debug("CSV delimiter detection failed, defaulting to comma")
            return ","


def _trim_trailing_blanks(values: tuple[CellValue, ...]) -> tuple[CellValue, ...]:
    end = len(values)
    while end and (values[end - 1] is None or values[end - 1] == ""):
        end -= 1
    return tuple(values[:end])


def _coerce_xls_cell(value: object) -> CellValue:
    """Map pandas cell values back to plain workbook types.

    BIFF stores every number as a float, so whole numbers are returned as
    int to match what openpyxl gives for the same cell.
    """
    if value is None or value is pd.NaT:
        return None
    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime()
    if isinstance(value, float):
        if math.isnan(value):
            return None
        return int(value) if value.is_integer() else value
    if isinstance(value, bool | int | str):
        return value
    return str(value)


def _coerce_text_cell(value: object) -> CellValue:
    """Give CSV cells the types a workbook would have stored."""
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text:
        return None
    # Keep zero-padded identifiers as text
    if len(text) > 1 and text[0] == "0" and text[1].isdigit():
        return text
    number = parse_number(text) if text[0].isdigit() or text[0] in "-." else None
    if number is None or any(c in text for c in "£$€"):
        return text
    if "," in text:
        return text
    return int(number) if number.is_integer() and "." not in text else number
