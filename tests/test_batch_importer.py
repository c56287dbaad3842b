from __future__ import annotations

from sheetbridge.migration.pipeline import BatchImporter, PipelineSettings, ProgressTracker
from sheetbridge.migration.store import TargetStore, eq
from sheetbridge.migration.transformers import CompanyTransformer, UserTransformer


def companies(*source_ids):
    return [{"_id": source_id, "Name": f"Company {source_id}"} for source_id in source_ids]


class FlakyStore(TargetStore):
    """Fails the first ``failures`` inserts with a transient network error."""

    def __init__(self, failures, **kwargs):
        super().__init__(**kwargs)
        self.failures = failures
        self.insert_calls = 0

    def insert(self, table_name, rows):
        self.insert_calls += 1
        if self.failures:
            self.failures -= 1
            raise ConnectionError("connection reset by peer")
        return super().insert(table_name, rows)


def test_imports_records_and_records_mappings(store, cache):
    importer = BatchImporter(store, cache, CompanyTransformer(), PipelineSettings(chunk_size=2))

    stats = importer.run(companies("c1", "c2", "c3"), total=3)

    assert stats.to_dict() == {"migrated": 3, "skipped": 0, "failed": 0}
    assert store.count("companies") == 3
    row = store.select("companies", ["id", "source_id", "name"], [eq("source_id", "c2")])[0]
    assert cache.resolve("c2", "company") == row["id"]
    assert row["name"] == "Company c2"


def test_rerun_skips_migrated_records(store, cache):
    importer = BatchImporter(store, cache, CompanyTransformer())
    importer.run(companies("c1", "c2"))

    stats = importer.run(companies("c1", "c2", "c3"))

    assert stats.to_dict() == {"migrated": 1, "skipped": 2, "failed": 0}
    assert store.count("companies") == 3


def test_missing_ids_fail_and_repeated_ids_skip(store, cache):
    records = companies("c1") + [{"Name": "No id"}] + companies("c1")

    stats = BatchImporter(store, cache, CompanyTransformer()).run(records)

    assert stats.to_dict() == {"migrated": 1, "skipped": 1, "failed": 1}
    assert stats.processed == 3


def test_dry_run_transforms_without_writing(store, cache):
    settings = PipelineSettings(dry_run=True)

    stats = BatchImporter(store, cache, CompanyTransformer(), settings).run(companies("c1", "c2"))

    assert stats.migrated == 2
    assert store.count("companies") == 0
    assert cache.resolve("c1", "company") is None


def test_invalid_records_are_counted_not_raised(store, cache):
    records = [
        {"_id": "u1", "authentication": {"email": {"email": "ops@acme-industries.com"}}},
        {"_id": "u2"},
    ]

    stats = BatchImporter(store, cache, UserTransformer()).run(records)

    assert stats.to_dict() == {"migrated": 1, "skipped": 0, "failed": 1}
    assert store.count("users") == 1


def test_transient_errors_retry_the_whole_chunk(app, cache, sleeps):
    store = FlakyStore(failures=1)
    settings = PipelineSettings(chunk_size=10, retry_limit=3, retry_delay=0.5)

    stats = BatchImporter(store, cache, CompanyTransformer(), settings, sleep_fn=sleeps.append).run(
        companies("c1", "c2")
    )

    assert stats.migrated == 2
    assert sleeps == [0.5]
    assert store.count("companies") == 2


def test_transient_errors_fail_the_chunk_after_retry_limit(app, cache, sleeps):
    store = FlakyStore(failures=10)
    settings = PipelineSettings(chunk_size=10, retry_limit=2, retry_delay=0.1)

    stats = BatchImporter(store, cache, CompanyTransformer(), settings, sleep_fn=sleeps.append).run(
        companies("c1", "c2")
    )

    assert stats.to_dict() == {"migrated": 0, "skipped": 0, "failed": 2}
    assert sleeps == [0.1, 0.1]
    assert store.insert_calls == 3
    assert cache.resolve("c1", "company") is None
    assert store.count("companies") == 0


def test_row_failures_are_isolated(store, cache):
    # A row left behind outside the mapping table collides on source_id.
    store.insert("companies", [{"name": "Orphan", "source_id": "c2"}])
    store.commit()

    stats = BatchImporter(store, cache, CompanyTransformer()).run(companies("c1", "c2", "c3"))

    assert stats.to_dict() == {"migrated": 2, "skipped": 0, "failed": 1}
    assert store.count("companies") == 3
    assert cache.resolve("c1", "company") is not None
    assert cache.resolve("c3", "company") is not None
    assert cache.resolve("c2", "company") is None


def test_chunk_fails_whole_when_isolation_is_disabled(store, cache):
    store.insert("companies", [{"name": "Orphan", "source_id": "c2"}])
    store.commit()
    settings = PipelineSettings(isolate_row_failures=False)

    stats = BatchImporter(store, cache, CompanyTransformer(), settings).run(companies("c1", "c2", "c3"))

    assert stats.to_dict() == {"migrated": 0, "skipped": 0, "failed": 3}
    assert store.count("companies") == 1


class PrepareFailsOnCall(CompanyTransformer):
    """Raises from ``prepare_chunk`` on the given call number."""

    calls = 0

    def __init__(self, failing_call):
        super().__init__()
        self.failing_call = failing_call

    def prepare_chunk(self, records, cache, store):
        self.calls += 1
        if self.calls == self.failing_call:
            raise RuntimeError("lookup table unavailable")
        return super().prepare_chunk(records, cache, store)


def test_row_by_row_prepare_error_fails_the_chunk_and_continues(store, cache, caplog):
    store.insert("companies", [{"name": "Orphan", "source_id": "c2"}])
    store.commit()
    # Call 1 prepares the chunk, call 2 is the row-by-row retry.
    transformer = PrepareFailsOnCall(failing_call=2)

    with caplog.at_level("ERROR"):
        stats = BatchImporter(store, cache, transformer, PipelineSettings(chunk_size=2)).run(
            companies("c1", "c2", "c3")
        )

    assert stats.to_dict() == {"migrated": 1, "skipped": 0, "failed": 2}
    assert cache.resolve("c1", "company") is None
    assert cache.resolve("c3", "company") is not None
    assert store.count("companies") == 2
    message = "Chunk could not be prepared for row-by-row insert"
    record = next(entry for entry in caplog.records if entry.getMessage() == message)
    assert record.exc_info is not None


def test_dry_run_prepare_error_fails_the_chunk_and_continues(store, cache):
    settings = PipelineSettings(dry_run=True, chunk_size=2)

    stats = BatchImporter(store, cache, PrepareFailsOnCall(failing_call=1), settings).run(
        companies("c1", "c2", "c3")
    )

    assert stats.to_dict() == {"migrated": 1, "skipped": 0, "failed": 2}
    assert store.count("companies") == 0


def test_settings_from_config():
    settings = PipelineSettings.from_config(
        {"MIGRATION_CHUNK_SIZE": 0, "MIGRATION_RETRY_LIMIT": 5, "MIGRATION_DRY_RUN": True},
    )

    assert settings.chunk_size == 1
    assert settings.retry_limit == 5
    assert settings.dry_run is True
    assert PipelineSettings.from_config({"MIGRATION_DRY_RUN": True}, dry_run=False).dry_run is False


def test_progress_tracker_reports_rate_and_eta():
    ticks = iter([0.0, 10.0])
    tracker = ProgressTracker("answers", total=100, interval=5, clock=lambda: next(ticks))

    tracker.advance(50)
    snapshot = tracker.snapshot()

    assert snapshot["processed"] == 50
    assert snapshot["rate_per_second"] == 5.0
    assert snapshot["percent"] == 50.0
    assert snapshot["eta_minutes"] == 0.2
