from __future__ import annotations

from collections.abc import Iterator

import pytest

from ratebook_import.patterns import DEFAULT_PATTERNS, PatternLibrary
from ratebook_import.services.import_store import (
    InMemoryImportStore,
    reset_import_store,
)
from ratebook_import.services.smart_importer import SmartImporter


@pytest.fixture(autouse=True)
def cleanup_global_store() -> Iterator[None]:
    """Reset the global import store after each test."""
    yield
    reset_import_store()


@pytest.fixture
def patterns() -> PatternLibrary:
    return DEFAULT_PATTERNS


@pytest.fixture
def store() -> InMemoryImportStore:
    """Fresh in-memory store, isolated from the global one."""
    return InMemoryImportStore()


@pytest.fixture
def importer(store: InMemoryImportStore) -> SmartImporter:
    return SmartImporter(store=store)
