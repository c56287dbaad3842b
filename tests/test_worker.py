import json
from typing import Any, Dict

from conftest import FakeSourceClient, build_migration_app
from sheetbridge.migration import get_celery_app
from sheetbridge.migration.celery_app import DEFAULT_QUEUE_NAME, RUN_TASK_NAME
from sheetbridge.migration.pipeline import RunOptions, create_run
from sheetbridge.models import MigrationRun, MigrationRunStatus, db

EAGER_CELERY = {"task_always_eager": True, "task_eager_propagates": True}


def test_celery_defaults_to_sqlite_transport(tmp_path):
    sqlite_path = tmp_path / "broker" / "custom.sqlite"

    app = build_migration_app(tmp_path, CELERY_SQLITE_PATH=str(sqlite_path), CELERY_CONFIG=EAGER_CELERY)

    celery_app = get_celery_app(app)
    assert celery_app is not None
    assert celery_app.conf.broker_url.startswith("sqla+sqlite:///")
    assert sqlite_path.name in celery_app.conf.broker_url
    assert sqlite_path.parent.is_dir()
    assert celery_app.conf.result_backend.startswith("db+sqlite:///")
    assert celery_app.conf.task_default_queue == DEFAULT_QUEUE_NAME
    assert celery_app.conf.worker_prefetch_multiplier == 1
    assert celery_app.conf.task_routes == {RUN_TASK_NAME: {"queue": DEFAULT_QUEUE_NAME}}
    assert celery_app.conf.task_always_eager is True


def test_worker_queue_setting_routes_runs_and_defaults_cli(tmp_path, monkeypatch):
    app = build_migration_app(
        tmp_path, MIGRATION_WORKER_ENABLED=True, MIGRATION_WORKER_QUEUE="backfill", CELERY_CONFIG=EAGER_CELERY
    )
    celery_app = get_celery_app(app)
    calls: Dict[str, Any] = {}
    monkeypatch.setattr(celery_app, "worker_main", lambda argv=None: calls.update(argv=argv))

    result = app.test_cli_runner().invoke(args=["migration", "worker", "run"])

    assert result.exit_code == 0, result.output
    assert celery_app.conf.task_default_queue == "backfill"
    assert celery_app.conf.task_routes[RUN_TASK_NAME] == {"queue": "backfill"}
    assert calls["argv"] == ["worker", "--loglevel", "info", "-Q", "backfill"]


def test_celery_config_accepts_json_string(tmp_path):
    app = build_migration_app(
        tmp_path,
        CELERY_BROKER_URL="memory://",
        CELERY_RESULT_BACKEND="cache+memory://",
        CELERY_CONFIG='{"task_always_eager": true}',
    )

    celery_app = get_celery_app(app)

    assert celery_app.conf.broker_url == "memory://"
    assert celery_app.conf.task_always_eager is True


def test_worker_ping_cli(tmp_path):
    app = build_migration_app(tmp_path, MIGRATION_WORKER_ENABLED=True, CELERY_CONFIG=EAGER_CELERY)

    runner = app.test_cli_runner()
    result = runner.invoke(args=["migration", "worker", "ping"])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert payload["status"] == "ok"
    assert "timestamp" in payload
    assert "worker_hostname" in payload


def test_worker_group_warns_when_disabled(tmp_path, monkeypatch):
    app = build_migration_app(tmp_path, CELERY_CONFIG=EAGER_CELERY)
    monkeypatch.setattr(get_celery_app(app), "worker_main", lambda argv=None: None)

    result = app.test_cli_runner().invoke(args=["migration", "worker", "run"])

    assert result.exit_code == 0, result.output
    assert "MIGRATION_WORKER_ENABLED is false" in result.output


def test_worker_run_invokes_celery(tmp_path, monkeypatch):
    app = build_migration_app(tmp_path, MIGRATION_WORKER_ENABLED=True, CELERY_CONFIG=EAGER_CELERY)
    celery_app = get_celery_app(app)
    assert celery_app is not None

    calls: Dict[str, Any] = {}

    def fake_worker_main(argv=None):
        calls["argv"] = argv

    monkeypatch.setattr(celery_app, "worker_main", fake_worker_main)

    runner = app.test_cli_runner()
    result = runner.invoke(
        args=[
            "migration",
            "worker",
            "run",
            "--loglevel",
            "debug",
            "--concurrency",
            "2",
            "--pool",
            "solo",
            "--queues",
            "backfill",
        ]
    )

    assert result.exit_code == 0, result.output
    assert calls["argv"] == [
        "worker",
        "--loglevel",
        "debug",
        "-Q",
        "backfill",
        "--concurrency",
        "2",
        "--pool",
        "solo",
    ]


def test_pipeline_task_executes_queued_run(tmp_path, monkeypatch):
    app = build_migration_app(tmp_path, MIGRATION_WORKER_ENABLED=True, CELERY_CONFIG=EAGER_CELERY)
    client = FakeSourceClient({"company": [{"_id": "c1", "Name": "Acme"}]})
    monkeypatch.setattr("sheetbridge.migration.pipeline.service.create_source_client", lambda config: client)
    options = RunOptions(stages=("companies",))

    with app.app_context():
        run_id = create_run(options).id
        # The task commits from its own app context; release this session's read lock first.
        db.session.close()
        task = get_celery_app(app).tasks["migration.pipeline.run"]

        payload = task.apply(kwargs={"run_id": run_id, **options.to_params()}).get()

        db.session.expire_all()
        run = db.session.get(MigrationRun, run_id)
        assert run.status == MigrationRunStatus.SUCCEEDED
        assert run.counts_json == {"companies": {"migrated": 1, "skipped": 0, "failed": 0}}
        db.session.remove()
        db.engine.dispose()

    assert payload["run_id"] == run_id
    assert payload["totals"] == {"migrated": 1, "skipped": 0, "failed": 0}
