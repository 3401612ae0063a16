"""Storage of import batches and their rates.

This module defines the ``ImportStore`` protocol the importer persists
through, and a thread-safe in-memory implementation. Batches progress
through states: processing -> completed/failed.

Key features:
- File fingerprint uniqueness among non-failed imports, checked under the
  same lock as the insert so two concurrent imports of one file cannot
  both be stored
- All-or-nothing rate commits per import
- Superseding: completing an import marks the previous completed import of
  the same provider and contract type as no longer latest
"""

import threading
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol, runtime_checkable

from ratebook_import.config import settings
from ratebook_import.models import (
    ContractType,
    ImportStatus,
    ImportSummary,
    ParsedRate,
)
from ratebook_import.utils.exceptions import (
    DuplicateImportError,
    ImportNotFoundError,
    PersistenceError,
)
from ratebook_import.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class ImportBatch:
    """Internal record of one import batch."""

    import_id: str
    batch_id: str
    provider_code: str
    contract_type: ContractType
    file_name: str
    file_hash: str
    status: ImportStatus
    created_at: datetime
    created_by: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    total_rows: int = 0
    success_rows: int = 0
    error_rows: int = 0
    unique_cap_codes: int = 0
    is_latest: bool = False
    superseded_import_id: str | None = None
    error_log: list[str] = field(default_factory=list)

    def to_summary(self) -> ImportSummary:
        """Convert the batch to its API representation."""
        return ImportSummary(
            import_id=self.import_id,
            batch_id=self.batch_id,
            provider_code=self.provider_code,
            contract_type=self.contract_type,
            file_name=self.file_name,
            file_hash=self.file_hash,
            status=self.status,
            total_rows=self.total_rows,
            success_rows=self.success_rows,
            error_rows=self.error_rows,
            unique_cap_codes=self.unique_cap_codes,
            is_latest=self.is_latest,
            superseded_import_id=self.superseded_import_id,
            created_at=self.created_at,
            completed_at=self.completed_at,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert the batch to a dictionary.

        Returns:
            Dictionary representation of the batch.
        """
        return {
            **self.to_summary().model_dump(mode="json"),
            "created_by": self.created_by,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "error_log": list(self.error_log),
        }


@runtime_checkable
class ImportStore(Protocol):
    """Persistence collaborator used by the importer."""

    def find_by_hash(self, file_hash: str) -> ImportBatch | None: ...

    def create_import(
        self,
        provider_code: str,
        contract_type: ContractType,
        batch_id: str,
        file_name: str,
        file_hash: str,
        created_by: str | None = None,
        allow_duplicate: bool = False,
    ) -> ImportBatch: ...

    def save_rates(self, import_id: str, rates: Sequence[ParsedRate]) -> int: ...

    def complete_import(
        self,
        import_id: str,
        total_rows: int,
        success_rows: int,
        error_rows: int = 0,
        errors: Sequence[str] = (),
    ) -> ImportBatch: ...

    def fail_import(self, import_id: str, error: str) -> ImportBatch: ...

    def delete_import(self, import_id: str) -> None: ...

    def get_import(self, import_id: str) -> ImportBatch: ...

    def get_rates(self, import_id: str) -> list[ParsedRate]: ...

    def list_imports(self, provider_code: str | None = None) -> list[ImportBatch]: ...


class InMemoryImportStore:
    """Thread-safe in-memory import store.

    Suitable for a single process, for dry deployments and for tests. A
    database-backed store should enforce the same fingerprint uniqueness with
    a unique index on ``file_hash`` for non-failed rows.
    """

    def __init__(self, error_log_limit: int | None = None) -> None:
        """Initialize an empty store.

        Args:
            error_log_limit: Errors kept per batch. Defaults to settings.
        """
        self._error_log_limit = error_log_limit or settings.error_log_limit
        self._imports: dict[str, ImportBatch] = {}
        self._rates: dict[str, tuple[ParsedRate, ...]] = {}
        self._lock = threading.RLock()

    def find_by_hash(self, file_hash: str) -> ImportBatch | None:
        """Find the most recent import of a file fingerprint.

        Args:
            file_hash: SHA-256 hex digest of the file bytes.

        Returns:
            The newest matching batch, or None.
        """
        with self._lock:
            matches = [b for b in self._imports.values() if b.file_hash == file_hash]
            if not matches:
                return None
            return max(matches, key=lambda b: b.created_at)

    def create_import(
        self,
        provider_code: str,
        contract_type: ContractType,
        batch_id: str,
        file_name: str,
        file_hash: str,
        created_by: str | None = None,
        allow_duplicate: bool = False,
    ) -> ImportBatch:
        """Create a batch in the processing state.

        Args:
            provider_code: Funder the ratebook came from.
            contract_type: Contract type recorded on the batch.
            batch_id: Human-readable batch identifier.
            file_name: Declared file name.
            file_hash: SHA-256 hex digest of the file bytes.
            created_by: User who started the import.
            allow_duplicate: Skip the fingerprint check (forced re-import).

        Raises:
            DuplicateImportError: If a non-failed import holds the fingerprint.
        """
        now = datetime.now(UTC)
        with self._lock:
            for existing in self._imports.values():
                if (
                    not allow_duplicate
                    and existing.file_hash == file_hash
                    and existing.status != ImportStatus.FAILED
                ):
                    raise DuplicateImportError(
                        file_hash=file_hash,
                        existing_import_id=existing.import_id,
                        imported_at=existing.created_at.isoformat(),
                    )

            batch = ImportBatch(
                import_id=str(uuid.uuid4()),
                batch_id=batch_id,
                provider_code=provider_code,
                contract_type=contract_type,
                file_name=file_name,
                file_hash=file_hash,
                status=ImportStatus.PROCESSING,
                created_at=now,
                created_by=created_by,
                started_at=now,
            )
            self._imports[batch.import_id] = batch

        logger.info(
            "Import created",
            import_id=batch.import_id,
            provider_code=provider_code,
            file_name=file_name,
        )
        return batch

    def save_rates(self, import_id: str, rates: Sequence[ParsedRate]) -> int:
        """Commit all rates of an import at once.

        Returns:
            Number of rates stored.

        Raises:
            ImportNotFoundError: If the import doesn't exist.
            PersistenceError: If the import is not processing or already
                holds rates. Nothing is written in that case.
        """
        with self._lock:
            batch = self.get_import(import_id)
            if batch.status != ImportStatus.PROCESSING:
                raise PersistenceError(
                    f"Cannot save rates for an import in state {batch.status.value}",
                    import_id=import_id,
                )
            if import_id in self._rates:
                raise PersistenceError(
                    "Rates were already saved for this import", import_id=import_id
                )
            self._rates[import_id] = tuple(rates)

        logger.debug("Rates saved", import_id=import_id, rates=len(rates))
        return len(rates)

    def complete_import(
        self,
        import_id: str,
        total_rows: int,
        success_rows: int,
        error_rows: int = 0,
        errors: Sequence[str] = (),
    ) -> ImportBatch:
        """Mark an import completed and make it the latest for its provider.

        Raises:
            ImportNotFoundError: If the import doesn't exist.
        """
        with self._lock:
            batch = self.get_import(import_id)
            previous = self._latest_completed(batch.provider_code, batch.contract_type)
            if previous is not None and previous.import_id != import_id:
                previous.is_latest = False
                batch.superseded_import_id = previous.import_id

            rates = self._rates.get(import_id, ())
            batch.status = ImportStatus.COMPLETED
            batch.total_rows = total_rows
            batch.success_rows = success_rows
            batch.error_rows = error_rows
            batch.unique_cap_codes = len({r.cap_code for r in rates if r.cap_code})
            batch.is_latest = True
            batch.completed_at = datetime.now(UTC)
            batch.error_log = list(errors)[: self._error_log_limit]

        logger.info(
            "Import completed",
            import_id=import_id,
            success_rows=success_rows,
            superseded=batch.superseded_import_id,
        )
        return batch

    def fail_import(self, import_id: str, error: str) -> ImportBatch:
        """Mark an import failed and discard any rates it holds.

        Raises:
            ImportNotFoundError: If the import doesn't exist.
        """
        with self._lock:
            batch = self.get_import(import_id)
            batch.status = ImportStatus.FAILED
            batch.is_latest = False
            batch.completed_at = datetime.now(UTC)
            batch.error_log = [error, *batch.error_log][: self._error_log_limit]
            self._rates.pop(import_id, None)

        logger.error("Import failed", import_id=import_id, error=error)
        return batch

    def delete_import(self, import_id: str) -> None:
        """Remove an import and its rates.

        Raises:
            ImportNotFoundError: If the import doesn't exist.
        """
        with self._lock:
            if import_id not in self._imports:
                raise ImportNotFoundError(import_id)
            del self._imports[import_id]
            self._rates.pop(import_id, None)

        logger.info("Import deleted", import_id=import_id)

    def get_import(self, import_id: str) -> ImportBatch:
        """Get an import by ID.

        Raises:
            ImportNotFoundError: If the import doesn't exist.
        """
        with self._lock:
            batch = self._imports.get(import_id)
            if batch is None:
                raise ImportNotFoundError(import_id)
            return batch

    def get_rates(self, import_id: str) -> list[ParsedRate]:
        """Get the rates committed for an import."""
        with self._lock:
            self.get_import(import_id)
            return list(self._rates.get(import_id, ()))

    def list_imports(self, provider_code: str | None = None) -> list[ImportBatch]:
        """List imports, newest first."""
        with self._lock:
            batches = [
                b
                for b in self._imports.values()
                if provider_code is None or b.provider_code == provider_code
            ]
        return sorted(batches, key=lambda b: b.created_at, reverse=True)

    def clear_all(self) -> None:
        """Clear all imports from storage. Used primarily for testing."""
        with self._lock:
            self._imports.clear()
            self._rates.clear()
        logger.info("All imports cleared")

    def _latest_completed(
        self, provider_code: str, contract_type: ContractType
    ) -> ImportBatch | None:
        for batch in self._imports.values():
            if (
                batch.is_latest
                and batch.status == ImportStatus.COMPLETED
                and batch.provider_code == provider_code
                and batch.contract_type == contract_type
            ):
                return batch
        return None


# Global import store instance
_import_store: InMemoryImportStore | None = None


def get_import_store() -> InMemoryImportStore:
    """Get the global import store instance.

    Creates the instance on first call (lazy initialization).

    Returns:
        The global InMemoryImportStore instance.
    """
    global _import_store
    if _import_store is None:
        _import_store = InMemoryImportStore()
    return _import_store


def reset_import_store() -> None:
    """Reset the global import store. Used primarily for testing."""
    global _import_store
    _import_store = None
