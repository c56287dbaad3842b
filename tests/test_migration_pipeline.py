from __future__ import annotations

from collections import OrderedDict

import pytest

from sheetbridge.migration.errors import MigrationAbortedError, StageOrderError
from sheetbridge.migration.pipeline import RunOptions, create_run, execute_run
from sheetbridge.migration.pipeline.batch import StageStats
from sheetbridge.migration.pipeline.orchestrator import DRY_RUN_NOTE, MigrationReport
from sheetbridge.migration.registry import (
    StageDescriptor,
    get_stage_registry,
    referenced_entity_types,
    resolve_stages,
    validate_stage_order,
)
from sheetbridge.migration.store import eq
from sheetbridge.models import MigrationIdMap, MigrationRun, MigrationRunStatus, db

EXPECTED_STAGE_ORDER = [
    "associations",
    "stacks",
    "companies",
    "association_companies",
    "users",
    "list_tables",
    "list_table_columns",
    "sections",
    "subsections",
    "tags",
    "questions",
    "section_questions",
    "choices",
    "sheets",
    "list_table_rows",
    "answers",
    "requests",
    "sheet_statuses",
    "sheet_lineage",
]


def no_sleep(_seconds):
    return None


def seed_companies_and_users(client):
    client.add("company", {"_id": "c1", "Name": "Acme"}, {"_id": "c2", "Name": "Beta"})
    client.add(
        "user",
        {"_id": "u1", "authentication": {"email": {"email": "ops@acme-industries.com"}}, "Company": "c1"},
        {"_id": "u2", "authentication": {"email": {"email": "broken"}}},
    )


def run(app, client, **options):
    return execute_run(app.config, RunOptions(**options), client=client, sleep_fn=no_sleep)


def test_registry_order_respects_dependencies():
    registry = get_stage_registry()

    assert list(registry) == EXPECTED_STAGE_ORDER
    validate_stage_order(registry)


def test_validate_stage_order_rejects_bad_registries():
    backwards = OrderedDict(
        [
            ("users", StageDescriptor("users", "user", ("companies",))),
            ("companies", StageDescriptor("companies", "company")),
        ]
    )
    dangling = OrderedDict([("users", StageDescriptor("users", "user", ("organisations",)))])

    with pytest.raises(StageOrderError, match="before its dependency"):
        validate_stage_order(backwards)
    with pytest.raises(StageOrderError, match="unknown stage"):
        validate_stage_order(dangling)


def test_resolve_stages_uses_registry_order():
    selected = resolve_stages(["users", "companies"])

    assert [descriptor.name for descriptor in selected] == ["companies", "users"]
    with pytest.raises(ValueError, match="Unknown migration stages: invoices"):
        resolve_stages(["invoices"])


def test_referenced_entity_types_cover_references_and_junctions():
    registry = get_stage_registry()

    answer_types = referenced_entity_types(registry["answers"])
    backfill_types = referenced_entity_types(registry["section_questions"])

    assert answer_types[0] == "answer"
    assert {"sheet", "question", "choice", "company", "user"} <= set(answer_types)
    assert backfill_types == ("section", "stack", "association", "user", "question")
    assert referenced_entity_types(registry["sheet_lineage"]) == ("sheet",)


def test_run_options_from_config(app):
    app.config.update(MIGRATION_STAGES=("companies",), MIGRATION_DRY_RUN=True, MIGRATION_RECORD_LIMIT=5)

    defaults = RunOptions.from_config(app.config)
    explicit = RunOptions.from_config(
        app.config, stages=["users"], dry_run=False, limit=2, source_ids=[" a ", "a", "", "b"]
    )

    assert defaults == RunOptions(stages=("companies",), dry_run=True, limit=5)
    assert explicit == RunOptions(stages=("users",), dry_run=False, limit=2, source_ids=("a", "b"))
    assert explicit.to_params() == {"stages": ["users"], "dry_run": False, "limit": 2, "source_ids": ["a", "b"]}
    with pytest.raises(ValueError):
        RunOptions.from_config(app.config, limit=0)


def test_run_records_counts_and_run_row(app, store, source_client):
    seed_companies_and_users(source_client)

    report = run(app, source_client, stages=("companies", "users"))

    assert report.counts() == {
        "companies": {"migrated": 2, "skipped": 0, "failed": 0},
        "users": {"migrated": 1, "skipped": 0, "failed": 1},
    }
    user = store.select("users", ["company_id", "email"])[0]
    company = store.select("companies", ["id"], [eq("source_id", "c1")])[0]
    assert user == {"company_id": company["id"], "email": "ops@acme-industries.com"}

    migration_run = db.session.query(MigrationRun).one()
    assert migration_run.status == MigrationRunStatus.PARTIALLY_FAILED
    assert migration_run.counts_json == report.counts()
    assert migration_run.stages_json == ["companies", "users"]
    assert migration_run.finished_at is not None
    assert db.session.query(MigrationIdMap).filter_by(run_id=migration_run.id).count() == 3


def test_rerun_is_idempotent(app, store, source_client):
    seed_companies_and_users(source_client)
    run(app, source_client, stages=("companies", "users"))

    report = run(app, source_client, stages=("companies", "users"))

    assert report.counts()["companies"] == {"migrated": 0, "skipped": 2, "failed": 0}
    assert report.counts()["users"] == {"migrated": 0, "skipped": 1, "failed": 1}
    assert store.count("companies") == 2
    assert store.count("users") == 1
    assert db.session.query(MigrationIdMap).count() == 3


def test_dry_run_writes_nothing(app, store, source_client):
    seed_companies_and_users(source_client)

    report = run(app, source_client, stages=("companies", "users"), dry_run=True)

    assert report.dry_run is True
    assert report.counts()["companies"]["migrated"] == 2
    assert store.count("companies") == 0
    assert db.session.query(MigrationRun).count() == 0
    assert db.session.query(MigrationIdMap).count() == 0
    assert report.format_summary().startswith("Migration dry run")
    assert report.format_summary().endswith(DRY_RUN_NOTE)
    assert report.to_dict()["estimated"] is True


def test_limit_and_source_ids_narrow_candidates(app, store, source_client):
    seed_companies_and_users(source_client)

    limited = run(app, source_client, stages=("companies",), limit=1)
    targeted = run(app, source_client, stages=("companies",), source_ids=("c2", "missing"))

    assert limited.counts()["companies"]["migrated"] == 1
    assert targeted.counts()["companies"]["migrated"] == 1
    assert {row["source_id"] for row in store.select("companies", ["source_id"])} == {"c1", "c2"}
    assert ("get_by_id", "company", "missing") in source_client.calls


def test_source_failure_aborts_and_marks_run_failed(app, store, source_client):
    seed_companies_and_users(source_client)
    source_client.failing.add("user")

    with pytest.raises(MigrationAbortedError) as excinfo:
        run(app, source_client, stages=("companies", "users", "sheets"))

    assert excinfo.value.stage == "users"
    partial = excinfo.value.report
    assert list(partial.stages) == ["companies"]
    assert partial.aborted_stage == "users"
    assert store.count("companies") == 2

    migration_run = db.session.query(MigrationRun).one()
    assert migration_run.status == MigrationRunStatus.FAILED
    assert "users" in migration_run.error_summary
    assert migration_run.counts_json == {"companies": {"migrated": 2, "skipped": 0, "failed": 0}}
    assert ("count_all", "sheet") not in source_client.calls


def test_unknown_stage_fails_before_creating_a_run(app, source_client):
    with pytest.raises(ValueError):
        run(app, source_client, stages=("invoices",))

    assert db.session.query(MigrationRun).count() == 0


def test_queued_run_reuses_pending_row(app, source_client):
    seed_companies_and_users(source_client)
    options = RunOptions(stages=("companies",))
    pending = create_run(options)
    assert pending.status == MigrationRunStatus.PENDING

    execute_run(app.config, options, run_id=pending.id, client=source_client, sleep_fn=no_sleep)

    db.session.refresh(pending)
    assert pending.status == MigrationRunStatus.SUCCEEDED
    assert db.session.query(MigrationRun).count() == 1
    assert create_run(RunOptions(dry_run=True)) is None
    with pytest.raises(ValueError, match="not found"):
        execute_run(app.config, options, run_id=999, client=source_client)


def test_report_table_includes_totals():
    report = MigrationReport()
    report.stages["companies"] = StageStats(migrated=2)
    report.stages["users"] = StageStats(migrated=1, failed=1)

    table = report.format_table()

    assert table.splitlines()[0].split() == ["Entity", "Migrated", "Skipped", "Failed"]
    assert table.splitlines()[-1].split() == ["TOTAL", "3", "0", "1"]
    assert report.failed_records == 1
    assert report.to_dict()["totals"] == {"migrated": 3, "skipped": 0, "failed": 1}


def full_dataset(client):
    client.add("associations", {"_id": "as1", "Name": "Chemical Association", "Companies": ["c1"]})
    client.add("stack", {"_id": "st1", "Name": "Core", "a_Association": "as1"})
    client.add("company", {"_id": "c1", "Name": "Acme"})
    client.add("user", {"_id": "u1", "authentication": {"email": {"email": "ops@acme-industries.com"}}, "Company": "c1"})
    client.add("section", {"_id": "sec1", "Name": "Safety", "Stack": "st1", "Questions": ["q1"]})
    client.add("question", {"_id": "q1", "Name": "Flash point", "Parent Section": "sec1"})
    client.add("choice", {"_id": "ch1", "Content": "Yes", "Parent Question": "q1"})
    client.add(
        "sheet",
        {"_id": "sh1", "Name": "SDS", "Company": "c1"},
        {"_id": "sh2", "Name": "SDS", "Company": "c1", "Version Father Sheet": "sh1", "Version Prev. Sheet": "sh1"},
    )
    client.add(
        "answer",
        {"_id": "a1", "Sheet": "sh2", "Originating Question": "q1", "List of Text Choices": ["Yes"]},
    )
    client.add("request", {"_id": "r1", "Sheet": "sh2", "Requesting company": "c1"})
    client.add("sheetstatuses", {"_id": "ss1", "Sheet": "sh2", "Status": "Approved", "Version": 2})


def target_id(store, table, source_id):
    return store.select(table, ["id"], [eq("source_id", source_id)])[0]["id"]


def test_full_run_links_deferred_references(app, store, source_client):
    full_dataset(source_client)

    report = run(app, source_client)

    assert list(report.stages) == EXPECTED_STAGE_ORDER
    assert report.failed_records == 0
    assert report.stages["association_companies"].migrated == 1
    assert report.stages["section_questions"].migrated == 1
    assert report.stages["sheet_lineage"].to_dict() == {"migrated": 1, "skipped": 1, "failed": 0}

    assert store.select("association_companies", ["association_id", "company_id"]) == [
        {"association_id": target_id(store, "associations", "as1"), "company_id": target_id(store, "companies", "c1")}
    ]
    assert store.select("section_questions", ["question_id", "order_number"]) == [
        {"question_id": target_id(store, "questions", "q1"), "order_number": 0}
    ]
    sheet_one = target_id(store, "sheets", "sh1")
    lineage = store.select("sheets", ["father_sheet_id", "prev_sheet_id"], [eq("source_id", "sh2")])[0]
    assert lineage == {"father_sheet_id": sheet_one, "prev_sheet_id": sheet_one}
    answer = store.select("answers", ["sheet_id", "choice_id"])[0]
    assert answer == {"sheet_id": target_id(store, "sheets", "sh2"), "choice_id": target_id(store, "choices", "ch1")}
    assert db.session.query(MigrationIdMap).count() == 12
    assert db.session.query(MigrationRun).one().status == MigrationRunStatus.SUCCEEDED

    rerun = run(app, source_client)

    assert rerun.totals.migrated == 2
    assert rerun.stages["association_companies"].migrated == 1
    assert store.count("association_companies") == 1
    assert store.count("sheets") == 2
    assert db.session.query(MigrationIdMap).count() == 12
