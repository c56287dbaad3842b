import json
from unittest.mock import Mock, patch

import pytest

from sheetbridge.migration.store import eq
from sheetbridge.models import MigrationRun, MigrationRunStatus, db


@pytest.fixture
def patched_client(monkeypatch, source_client):
    monkeypatch.setattr(
        "sheetbridge.migration.pipeline.service.create_source_client", lambda config: source_client
    )
    return source_client


def _seed_companies(client):
    client.add("company", {"_id": "c1", "Name": "Acme"}, {"_id": "c2", "Name": "Beta"})


def test_stages_lists_registry_in_order(runner):
    result = runner.invoke(args=["migration", "stages"])

    assert result.exit_code == 0, result.output
    assert " 1. associations" in result.output
    assert "19. sheet_lineage" in result.output
    assert "depends on: sections, questions" in result.output


def test_run_inline_prints_summary_and_json(runner, patched_client, store):
    _seed_companies(patched_client)

    result = runner.invoke(args=["migration", "run", "--stage", "Companies", "--summary-json"])

    assert result.exit_code == 0, result.output
    summary, _, payload = result.output.partition("\n{")
    assert summary.startswith("Migration run")
    report = json.loads("{" + payload)
    assert report["stages"] == {"companies": {"migrated": 2, "skipped": 0, "failed": 0}}
    assert store.count("companies") == 2
    assert db.session.query(MigrationRun).one().status == MigrationRunStatus.SUCCEEDED


def test_run_dry_run_writes_nothing(runner, patched_client, store):
    _seed_companies(patched_client)

    result = runner.invoke(args=["migration", "run", "--stage", "companies", "--dry-run", "--limit", "1"])

    assert result.exit_code == 0, result.output
    assert result.output.startswith("Migration dry run")
    assert "Counts are estimates." in result.output
    assert store.count("companies") == 0
    assert db.session.query(MigrationRun).count() == 0


def test_run_with_source_ids(runner, patched_client, store):
    _seed_companies(patched_client)

    result = runner.invoke(args=["migration", "run", "--stage", "companies", "--source-id", "c2"])

    assert result.exit_code == 0, result.output
    assert [row["source_id"] for row in store.select("companies", ["source_id"])] == ["c2"]


def test_run_rejects_unknown_stage(runner, patched_client):
    result = runner.invoke(args=["migration", "run", "--stage", "invoices"])

    assert result.exit_code != 0
    assert "Unknown migration stages: invoices" in result.output


def test_run_abort_prints_partial_report(runner, patched_client):
    _seed_companies(patched_client)
    patched_client.failing.add("user")

    result = runner.invoke(args=["migration", "run", "--stage", "companies", "--stage", "users"])

    assert result.exit_code == 1
    assert "Aborted at stage 'users'" in result.output
    assert "Stage 'users' could not fetch its candidates" in result.output
    assert db.session.query(MigrationRun).one().status == MigrationRunStatus.FAILED


def test_run_queue_creates_pending_run(runner):
    async_result = Mock()
    async_result.id = "celery-task-42"
    celery_app = Mock()
    celery_app.send_task.return_value = async_result

    with patch("sheetbridge.migration.cli._resolve_celery", return_value=celery_app):
        result = runner.invoke(args=["migration", "run", "--stage", "companies", "--queue"])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output.strip())
    assert payload["status"] == "queued"
    assert payload["task_id"] == "celery-task-42"
    assert payload["stages"] == ["companies"]

    run = db.session.get(MigrationRun, payload["run_id"])
    assert run.status == MigrationRunStatus.PENDING
    celery_app.send_task.assert_called_once_with(
        "migration.pipeline.run",
        kwargs={"run_id": run.id, "stages": ["companies"], "dry_run": False, "limit": None, "source_ids": []},
    )


def test_run_queue_dry_run_has_no_run_row(runner):
    celery_app = Mock()
    celery_app.send_task.return_value = Mock(id="celery-task-7")

    with patch("sheetbridge.migration.cli._resolve_celery", return_value=celery_app):
        result = runner.invoke(args=["migration", "run", "--queue", "--dry-run"])

    assert result.exit_code == 0, result.output
    assert json.loads(result.output.strip())["run_id"] is None
    assert db.session.query(MigrationRun).count() == 0


def test_summary_json_requires_inline_run(runner):
    with patch("sheetbridge.migration.cli._resolve_celery") as mock_resolve:
        result = runner.invoke(args=["migration", "run", "--queue", "--summary-json"])

    assert result.exit_code != 0
    assert "--summary-json is only available for inline runs" in result.output
    mock_resolve.assert_not_called()


def test_lineage_command_links_migrated_sheets(runner, patched_client, store):
    patched_client.add(
        "sheet",
        {"_id": "sh1", "Name": "SDS"},
        {"_id": "sh2", "Name": "SDS", "Version Father Sheet": "sh1"},
    )
    assert runner.invoke(args=["migration", "run", "--stage", "sheets"]).exit_code == 0

    result = runner.invoke(args=["migration", "lineage"])

    assert result.exit_code == 0, result.output
    father = store.select("sheets", ["id"], [eq("source_id", "sh1")])[0]["id"]
    assert store.select("sheets", ["father_sheet_id"], [eq("source_id", "sh2")]) == [{"father_sheet_id": father}]


def test_count_prints_source_total(runner, monkeypatch, source_client):
    _seed_companies(source_client)
    monkeypatch.setattr("sheetbridge.migration.cli.create_source_client", lambda config: source_client)

    result = runner.invoke(args=["migration", "count", "company"])
    source_client.failing.add("user")
    failed = runner.invoke(args=["migration", "count", "user"])

    assert result.exit_code == 0, result.output
    assert result.output.strip() == "company: 2"
    assert failed.exit_code == 1
    assert "Could not count 'user'" in failed.output


def _seed_duplicate_sheets(store):
    store.insert(
        "sheets",
        [
            {"id": "s1", "name": "SDS", "company_id": "c1"},
            {"id": "s2", "name": "SDS", "company_id": "c1"},
            {"id": "s3", "name": "Unique", "company_id": "c1"},
        ],
    )
    store.insert("sheet_statuses", [{"sheet_id": "s1", "status": "Approved", "version": 1}])
    store.commit()


def test_reconcile_analyze_text(runner, store):
    _seed_duplicate_sheets(store)

    result = runner.invoke(args=["reconcile", "analyze"])

    assert result.exit_code == 0, result.output
    assert "SDS (c1): 2 sheets" in result.output
    assert "KEEP   s1" in result.output
    assert "DELETE s2" in result.output
    assert "1 duplicate group(s); 1 sheet(s) marked for deletion (0 internal, 0 test, 1 duplicate)." in result.output
    assert store.count("sheets") == 3


def test_reconcile_analyze_json(runner, store):
    _seed_duplicate_sheets(store)

    result = runner.invoke(args=["reconcile", "analyze", "--json", "--company-id", "c1"])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert payload["cleanup"] == []
    group = payload["duplicate_groups"][0]
    assert group["duplicate_group"] == "c1:SDS"
    assert group["keep"] == "s1"
    assert group["delete"] == ["s2"]
    assert group["members"][0]["reasons"] == "Best: approved status"


def test_reconcile_analyze_marks_cleanup_sheets(runner, store, tmp_path):
    _seed_duplicate_sheets(store)
    store.insert("companies", [{"id": "c1", "name": "Acme"}, {"id": "c9", "name": "Stacks Internal"}])
    store.insert(
        "sheets",
        [
            {"id": "s8", "name": "Example Upload", "company_id": "c1"},
            {"id": "s9", "name": "SDS", "company_id": "c9"},
        ],
    )
    store.commit()
    audit_path = tmp_path / "audit.csv"

    result = runner.invoke(args=["reconcile", "analyze", "--audit-file", str(audit_path)])
    rules_skipped = runner.invoke(args=["reconcile", "analyze", "--duplicates-only", "--json"])

    assert result.exit_code == 0, result.output
    assert "Cleanup: 2 sheet(s)" in result.output
    assert "DELETE s9  SDS  Internal company sheet (Stacks Internal)" in result.output
    assert "DELETE s8  Example Upload  Test/example sheet name" in result.output
    assert "3 sheet(s) marked for deletion (1 internal, 1 test, 1 duplicate)." in result.output
    assert f"Audit written to {audit_path} (4 rows)." in result.output
    assert json.loads(rules_skipped.output)["cleanup"] == []

    confirmed = runner.invoke(args=["reconcile", "apply", "--audit-file", str(audit_path), "--confirm"])

    assert confirmed.exit_code == 0, confirmed.output
    assert json.loads(confirmed.output)["sheets_deleted"] == 3
    assert sorted(row["id"] for row in store.select("sheets", ["id"])) == ["s1", "s3"]


def test_reconcile_apply_needs_confirm(runner, store, tmp_path):
    _seed_duplicate_sheets(store)
    audit_path = tmp_path / "audit.csv"

    analyzed = runner.invoke(args=["reconcile", "analyze", "--audit-file", str(audit_path)])
    unconfirmed = runner.invoke(args=["reconcile", "apply", "--audit-file", str(audit_path)])

    assert analyzed.exit_code == 0, analyzed.output
    assert f"Audit written to {audit_path} (2 rows)." in analyzed.output
    assert unconfirmed.exit_code == 1
    assert "1 sheet(s) would be deleted" in unconfirmed.output
    assert store.count("sheets") == 3

    confirmed = runner.invoke(args=["reconcile", "apply", "--audit-file", str(audit_path), "--confirm"])

    assert confirmed.exit_code == 0, confirmed.output
    assert json.loads(confirmed.output)["sheets_deleted"] == 1
    assert sorted(row["id"] for row in store.select("sheets", ["id"])) == ["s1", "s3"]


def test_reconcile_apply_rejects_bad_audit(runner, tmp_path):
    audit_path = tmp_path / "audit.csv"
    audit_path.write_text("duplicate_group,sheet_id,decision\ng,s2,delete\n", encoding="utf-8")

    result = runner.invoke(args=["reconcile", "apply", "--audit-file", str(audit_path), "--confirm"])

    assert result.exit_code == 1
    assert "must keep exactly one sheet" in result.output


def test_verify_reports_counts_and_orphans(runner, store):
    store.insert("companies", [{"id": "c1", "name": "Acme"}])
    store.insert(
        "sheets",
        [{"id": "s1", "name": "SDS", "company_id": "c1"}, {"id": "s2", "name": "SDS", "company_id": "gone"}],
    )
    store.insert("questions", [{"id": "q1", "name": "Flash point"}])
    store.insert(
        "answers",
        [
            {"id": "a1", "sheet_id": "s1", "originating_question_id": "q1"},
            {"id": "a2", "sheet_id": "missing-sheet", "originating_question_id": "q1"},
        ],
    )
    store.insert("migration_id_map", [{"entity_type": "company", "source_id": "c1", "target_id": "c1"}])
    store.commit()

    text = runner.invoke(args=["migration", "verify"])
    result = runner.invoke(args=["migration", "verify", "--json"])
    strict = runner.invoke(args=["migration", "verify", "--strict"])

    assert text.exit_code == 0, text.output
    assert "Orphaned references" in text.output
    assert "2 orphaned reference(s)." in text.output
    report = json.loads(result.output)
    assert report["table_counts"]["companies"] == 1
    assert report["table_counts"]["sheets"] == 2
    assert report["table_counts"]["answers"] == 2
    assert report["mapping_counts"]["company"] == 1
    assert report["mapping_counts"]["sheet"] == 0
    assert report["orphans"]["answers.sheet_id -> sheets"] == 1
    assert report["orphans"]["sheets.company_id -> companies"] == 1
    assert report["orphans"]["answers.originating_question_id -> questions"] == 0
    assert report["orphan_total"] == 2
    assert strict.exit_code == 1
    assert "2 orphaned reference(s) found." in strict.output


def test_reconcile_rejects_bad_scoring_profile(app, runner, tmp_path):
    profile_path = tmp_path / "profile.yaml"
    profile_path.write_text("chemical_bonus: lots\n", encoding="utf-8")
    app.config["RECONCILE_SCORING_PROFILE_PATH"] = str(profile_path)

    result = runner.invoke(args=["reconcile", "analyze"])

    assert result.exit_code == 1
    assert "chemical_bonus" in result.output
