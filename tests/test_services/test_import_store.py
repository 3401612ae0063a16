"""Tests for the in-memory import store."""

import threading

import pytest

from ratebook_import.models import ContractType, ImportStatus, ParsedRate
from ratebook_import.services.import_store import (
    ImportBatch,
    ImportStore,
    InMemoryImportStore,
    get_import_store,
    reset_import_store,
)
from ratebook_import.utils.exceptions import (
    DuplicateImportError,
    ImportNotFoundError,
    PersistenceError,
)


def _rate(cap_code: str | None = "HYTU16TNL5HPTA", rental: int = 25000) -> ParsedRate:
    return ParsedRate(
        cap_code=cap_code,
        manufacturer="Hyundai",
        model="Tucson",
        term=36,
        annual_mileage=10000,
        initial_months=1,
        payment_profile_label="1+35",
        contract_type=ContractType.BCH,
        monthly_rental=rental,
        is_maintained=True,
        source_sheet="Rates",
        source_row=1,
        source_col=5,
    )


def _create(
    store: InMemoryImportStore,
    file_hash: str = "hash-1",
    provider_code: str = "lex",
    contract_type: ContractType = ContractType.BCH,
    allow_duplicate: bool = False,
) -> ImportBatch:
    return store.create_import(
        provider_code=provider_code,
        contract_type=contract_type,
        batch_id=f"smart_{provider_code}_1",
        file_name="lex.xlsx",
        file_hash=file_hash,
        created_by="user-1",
        allow_duplicate=allow_duplicate,
    )


def _complete(store: InMemoryImportStore, batch: ImportBatch) -> ImportBatch:
    saved = store.save_rates(batch.import_id, [_rate()])
    return store.complete_import(batch.import_id, total_rows=1, success_rows=saved)


class TestCreateImport:
    """Tests for creating import batches."""

    def test_new_batch_is_processing(self, store: InMemoryImportStore) -> None:
        """A new batch starts in the processing state."""
        batch = _create(store)

        assert batch.status == ImportStatus.PROCESSING
        assert batch.created_by == "user-1"
        assert batch.started_at is not None
        assert not batch.is_latest
        assert store.get_import(batch.import_id) is batch

    def test_duplicate_hash_is_rejected(self, store: InMemoryImportStore) -> None:
        """A fingerprint held by a live import cannot be reused."""
        first = _create(store)

        with pytest.raises(DuplicateImportError) as exc_info:
            _create(store)

        assert exc_info.value.existing_import_id == first.import_id

    def test_failed_import_does_not_block(self, store: InMemoryImportStore) -> None:
        """A failed import's fingerprint is free again."""
        first = _create(store)
        store.fail_import(first.import_id, "boom")

        second = _create(store)

        assert second.import_id != first.import_id

    def test_allow_duplicate(self, store: InMemoryImportStore) -> None:
        """Forced re-imports may share a fingerprint."""
        first = _complete(store, _create(store))
        second = _create(store, allow_duplicate=True)

        assert second.file_hash == first.file_hash

    def test_concurrent_creates_store_one_batch(
        self, store: InMemoryImportStore
    ) -> None:
        """Racing imports of one file cannot both be stored."""
        outcomes: list[str] = []

        def worker() -> None:
            try:
                _create(store, file_hash="racy")
                outcomes.append("created")
            except DuplicateImportError:
                outcomes.append("duplicate")

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert outcomes.count("created") == 1
        assert outcomes.count("duplicate") == 7


class TestRatesAndCompletion:
    """Tests for committing rates and completing batches."""

    def test_save_and_complete(self, store: InMemoryImportStore) -> None:
        """Completed batches record their counts and become latest."""
        batch = _create(store)
        rates = [_rate(), _rate(rental=26000), _rate(cap_code="KISP16GTL5HPTA")]

        saved = store.save_rates(batch.import_id, rates)
        store.complete_import(
            batch.import_id, total_rows=3, success_rows=saved, errors=["e1"]
        )

        assert saved == 3
        assert store.get_rates(batch.import_id) == rates
        assert batch.status == ImportStatus.COMPLETED
        assert batch.is_latest
        assert batch.unique_cap_codes == 2
        assert batch.success_rows == 3
        assert batch.error_log == ["e1"]
        assert batch.completed_at is not None

    def test_rates_are_committed_once(self, store: InMemoryImportStore) -> None:
        """A second commit for the same batch is refused."""
        batch = _create(store)
        store.save_rates(batch.import_id, [_rate()])

        with pytest.raises(PersistenceError):
            store.save_rates(batch.import_id, [_rate()])
        assert len(store.get_rates(batch.import_id)) == 1

    def test_rates_need_processing_batch(self, store: InMemoryImportStore) -> None:
        """Completed batches accept no more rates."""
        batch = _complete(store, _create(store))

        with pytest.raises(PersistenceError, match="completed"):
            store.save_rates(batch.import_id, [_rate()])

    def test_completion_supersedes_previous(self, store: InMemoryImportStore) -> None:
        """The newest completed import per provider and contract type is latest."""
        first = _complete(store, _create(store, file_hash="a"))
        other_provider = _complete(store, _create(store, "b", provider_code="ogilvie"))
        other_type = _complete(
            store, _create(store, "c", contract_type=ContractType.PCH)
        )
        second = _complete(store, _create(store, file_hash="d"))

        assert not first.is_latest
        assert second.is_latest
        assert second.superseded_import_id == first.import_id
        assert other_provider.is_latest
        assert other_type.is_latest

    def test_error_log_is_bounded(self) -> None:
        """Only the configured number of errors is kept."""
        store = InMemoryImportStore(error_log_limit=2)
        batch = _create(store)
        store.complete_import(
            batch.import_id, total_rows=0, success_rows=0, errors=["a", "b", "c"]
        )
        assert batch.error_log == ["a", "b"]


class TestFailAndDelete:
    """Tests for failing and removing batches."""

    def test_fail_discards_rates(self, store: InMemoryImportStore) -> None:
        """A failed batch holds no rates."""
        batch = _create(store)
        store.save_rates(batch.import_id, [_rate()])

        store.fail_import(batch.import_id, "Commit failed")

        assert batch.status == ImportStatus.FAILED
        assert batch.error_log[0] == "Commit failed"
        assert store.get_rates(batch.import_id) == []

    def test_delete(self, store: InMemoryImportStore) -> None:
        """Deleted batches are gone with their rates."""
        batch = _complete(store, _create(store))

        store.delete_import(batch.import_id)

        with pytest.raises(ImportNotFoundError):
            store.get_import(batch.import_id)
        assert store.find_by_hash("hash-1") is None

    def test_unknown_import(self, store: InMemoryImportStore) -> None:
        """Operations on unknown ids raise ImportNotFoundError."""
        with pytest.raises(ImportNotFoundError):
            store.get_import("missing")
        with pytest.raises(ImportNotFoundError):
            store.delete_import("missing")
        with pytest.raises(ImportNotFoundError):
            store.save_rates("missing", [])


class TestQueries:
    """Tests for lookups and listings."""

    def test_find_by_hash(self, store: InMemoryImportStore) -> None:
        """Batches are found by fingerprint."""
        batch = _create(store, file_hash="abc")
        assert store.find_by_hash("abc") is batch
        assert store.find_by_hash("other") is None

    def test_list_imports_filters_by_provider(
        self, store: InMemoryImportStore
    ) -> None:
        """Listings can be narrowed to one provider."""
        lex = _create(store, file_hash="a")
        ogilvie = _create(store, file_hash="b", provider_code="ogilvie")

        assert {b.import_id for b in store.list_imports()} == {
            lex.import_id,
            ogilvie.import_id,
        }
        assert [b.import_id for b in store.list_imports("ogilvie")] == [
            ogilvie.import_id
        ]

    def test_clear_all(self, store: InMemoryImportStore) -> None:
        """Clearing the store removes everything."""
        _create(store)
        store.clear_all()
        assert store.list_imports() == []

    def test_summary_and_dict(self, store: InMemoryImportStore) -> None:
        """Batches convert to their API and dictionary forms."""
        batch = _complete(store, _create(store))

        summary = batch.to_summary()
        data = batch.to_dict()

        assert summary.import_id == batch.import_id
        assert summary.status == ImportStatus.COMPLETED
        assert data["status"] == "completed"
        assert data["created_by"] == "user-1"
        assert data["error_log"] == []


class TestGlobalStore:
    """Tests for the process-wide store."""

    def test_store_satisfies_protocol(self) -> None:
        """The in-memory store implements the ImportStore protocol."""
        assert isinstance(InMemoryImportStore(), ImportStore)

    def test_get_import_store_is_singleton(self) -> None:
        """The global store is created once and can be reset."""
        first = get_import_store()
        assert get_import_store() is first

        reset_import_store()

        assert get_import_store() is not first
