"""Services for ratebook smart import."""

from ratebook_import.services.import_store import (
    ImportStore,
    InMemoryImportStore,
    get_import_store,
)
from ratebook_import.services.sheet_classifier import SheetClassifier
from ratebook_import.services.smart_importer import SmartImporter
from ratebook_import.services.workbook_reader import WorkbookReader

__all__ = [
    "ImportStore",
    "InMemoryImportStore",
    "SheetClassifier",
    "SmartImporter",
    "WorkbookReader",
    "get_import_store",
]
