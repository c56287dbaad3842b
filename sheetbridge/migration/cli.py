"""
CLI commands for migration runs and duplicate reconciliation.

``flask migration run`` executes inline by default and prints the per-stage
summary table; ``--queue`` hands the run to the Celery worker instead.
``flask migration verify`` checks the target afterwards. ``flask reconcile
analyze`` only reads; ``flask reconcile apply`` deletes and requires ``--confirm``.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional, Sequence

import click
from celery import Celery
from celery.exceptions import TimeoutError as CeleryTimeoutError
from flask.cli import ScriptInfo, with_appcontext

from config.reconciliation import ReconciliationConfigError, load_scoring_profile
from sheetbridge.migration.celery_app import HEALTHCHECK_TASK_NAME, RUN_TASK_NAME, get_celery_app
from sheetbridge.migration.errors import MigrationAbortedError, MigrationError, SourceApiError
from sheetbridge.migration.pipeline.orchestrator import MigrationReport
from sheetbridge.migration.pipeline.service import RunOptions, create_run, execute_run
from sheetbridge.migration.reconcile import (
    ReconciliationScorer,
    apply_resolutions,
    plan_cleanup,
    read_delete_ids,
    write_audit_csv,
)
from sheetbridge.migration.registry import get_stage_registry
from sheetbridge.migration.source import create_source_client
from sheetbridge.migration.store import TargetStore
from sheetbridge.migration.verify import verify_target
from sheetbridge.models.base import db
from sheetbridge.models.migration import MigrationRun


def _load_app(ctx: click.Context):
    info = ctx.ensure_object(ScriptInfo)
    return info.load_app()


def _resolve_celery(app) -> Celery:
    celery_app = get_celery_app(app)
    if celery_app is None:
        raise click.ClickException(
            "Migration Celery app is unavailable. Ensure init_migration(app) runs before worker commands."
        )
    return celery_app


@click.group(name="migration")
def migration_cli():
    """Migrate legacy platform records into the relational store."""


@migration_cli.command("run")
@click.option("--stage", "stages", multiple=True, help="Stage to run (repeatable). Defaults to every stage.")
@click.option(
    "--dry-run/--no-dry-run",
    default=None,
    help="Transform and count without writing. Defaults to MIGRATION_DRY_RUN.",
)
@click.option(
    "--limit",
    type=click.IntRange(min=1),
    help="Maximum records per stage. Defaults to MIGRATION_RECORD_LIMIT.",
)
@click.option("--source-id", "source_ids", multiple=True, help="Only migrate these source ids (repeatable).")
@click.option("--queue", is_flag=True, help="Queue the run on the Celery worker instead of running inline.")
@click.option("--summary-json", is_flag=True, help="Also print the report as JSON (inline runs only).")
@with_appcontext
@click.pass_context
def migration_run(
    ctx,
    stages: Sequence[str],
    dry_run: Optional[bool],
    limit: Optional[int],
    source_ids: Sequence[str],
    queue: bool,
    summary_json: bool,
):
    """Run the migration stages in dependency order."""
    app = _load_app(ctx)
    if queue and summary_json:
        raise click.ClickException("--summary-json is only available for inline runs.")
    try:
        options = RunOptions.from_config(
            app.config,
            stages=[stage.strip().lower() for stage in stages],
            dry_run=dry_run,
            limit=limit,
            source_ids=source_ids,
        )
    except ValueError as exc:
        raise click.ClickException(str(exc)) from exc

    if queue:
        _queue_run(app, options)
        return

    try:
        report = execute_run(app.config, options)
    except MigrationAbortedError as exc:
        if exc.report is not None:
            click.echo(exc.report.format_summary())
        raise click.ClickException(str(exc)) from exc
    except (MigrationError, ValueError) as exc:
        raise click.ClickException(f"Migration run failed: {exc}") from exc
    _echo_report(report, summary_json=summary_json)


def _queue_run(app, options: RunOptions) -> None:
    celery_app = _resolve_celery(app)
    try:
        run = create_run(options)
    except ValueError as exc:
        raise click.ClickException(str(exc)) from exc
    run_id = run.id if run is not None else None
    try:
        async_result = celery_app.send_task(
            RUN_TASK_NAME,
            kwargs={"run_id": run_id, **options.to_params()},
        )
    except Exception as exc:  # pragma: no cover - broker unreachable
        if run_id is not None:
            queued = db.session.get(MigrationRun, run_id)
            if queued is not None:
                queued.mark_failed(f"Failed to enqueue: {exc}")
                db.session.commit()
        raise click.ClickException(f"Failed to enqueue migration run: {exc}") from exc

    payload = {
        "run_id": run_id,
        "task_id": async_result.id,
        "status": "queued",
        "dry_run": options.dry_run,
        "stages": list(options.stages),
    }
    app.logger.info(
        "Migration run queued via CLI",
        extra={
            "migration_run_id": run_id,
            "migration_task_id": async_result.id,
            "migration_dry_run": options.dry_run,
        },
    )
    click.echo(json.dumps(payload))


def _echo_report(report: MigrationReport, *, summary_json: bool) -> None:
    click.echo(report.format_summary())
    if report.failed_records:
        click.echo(f"Warning: {report.failed_records} record(s) failed; see the log for details.", err=True)
    if summary_json:
        click.echo(json.dumps(report.to_dict(), indent=2, sort_keys=True))


@migration_cli.command("lineage")
@click.option("--dry-run/--no-dry-run", default=None, help="Resolve lineage without updating sheets.")
@click.option("--limit", type=click.IntRange(min=1), help="Maximum source sheets to examine.")
@with_appcontext
@click.pass_context
def migration_lineage(ctx, dry_run: Optional[bool], limit: Optional[int]):
    """Link father/previous sheet versions for already migrated sheets."""
    app = _load_app(ctx)
    options = RunOptions.from_config(app.config, stages=("sheet_lineage",), dry_run=dry_run, limit=limit)
    try:
        report = execute_run(app.config, options)
    except MigrationError as exc:
        raise click.ClickException(f"Lineage pass failed: {exc}") from exc
    _echo_report(report, summary_json=False)


@migration_cli.command("stages")
def migration_stages():
    """List registered stages in execution order."""
    for index, descriptor in enumerate(get_stage_registry().values(), start=1):
        depends = ", ".join(descriptor.depends_on) or "-"
        click.echo(f"{index:>2}. {descriptor.name:<24} [{descriptor.kind}] depends on: {depends}")
        if descriptor.summary:
            click.echo(f"    {descriptor.summary}")


@migration_cli.command("verify")
@click.option("--json", "as_json", is_flag=True, help="Print the report as JSON.")
@click.option("--strict", is_flag=True, help="Exit with status 1 when any reference is orphaned.")
@with_appcontext
def migration_verify(as_json: bool, strict: bool):
    """Report target row counts, identity mappings and orphaned references."""
    report = verify_target(TargetStore())
    if as_json:
        click.echo(json.dumps(report.to_dict(), indent=2))
    else:
        click.echo(report.format_summary())
    if strict and report.orphan_total:
        raise click.ClickException(f"{report.orphan_total} orphaned reference(s) found.")


@migration_cli.command("count")
@click.argument("source_type")
@with_appcontext
@click.pass_context
def migration_count(ctx, source_type: str):
    """Print how many records of SOURCE_TYPE the legacy platform holds."""
    app = _load_app(ctx)
    try:
        client = create_source_client(app.config)
        total = client.count_all(source_type)
    except (SourceApiError, MigrationError) as exc:
        raise click.ClickException(f"Could not count '{source_type}': {exc}") from exc
    click.echo(f"{source_type}: {total}")


@migration_cli.group(name="worker")
@click.pass_context
def worker_group(ctx):
    """Manage the migration background worker."""
    app = _load_app(ctx)
    if not app.config.get("MIGRATION_WORKER_ENABLED"):
        click.echo(
            "Warning: MIGRATION_WORKER_ENABLED is false. Commands will still run, "
            "but enable the flag to surface accurate health status.",
            err=True,
        )


@worker_group.command("run")
@click.option("--loglevel", default="info", show_default=True)
@click.option("--concurrency", type=int, help="Number of worker processes/threads.")
@click.option("--pool", type=str, help="Celery pool implementation (e.g., 'prefork', 'solo', 'threads').")
@click.option("--queues", help="Comma-separated queue list to consume. Defaults to MIGRATION_WORKER_QUEUE.")
@click.pass_context
def worker_run(ctx, loglevel: str, concurrency: Optional[int], pool: Optional[str], queues: Optional[str]):
    """Start the Celery worker in the current process."""
    app = _load_app(ctx)
    celery_app = _resolve_celery(app)
    queues = queues or celery_app.conf.task_default_queue

    argv = ["worker", "--loglevel", loglevel, "-Q", queues]
    if concurrency:
        argv.extend(["--concurrency", str(concurrency)])
    if pool:
        argv.extend(["--pool", pool])

    click.echo(f"Starting migration worker (queues: {queues}, loglevel: {loglevel})")
    try:
        celery_app.worker_main(argv=argv)
    except KeyboardInterrupt:
        click.echo("Worker shutdown requested. Exiting...")


@worker_group.command("ping")
@click.option("--timeout", default=10.0, show_default=True, help="Seconds to wait for a response.")
@click.pass_context
def worker_ping(ctx, timeout: float):
    """Execute the heartbeat task and print its payload."""
    app = _load_app(ctx)
    celery_app = _resolve_celery(app)
    task = celery_app.tasks.get(HEALTHCHECK_TASK_NAME)
    if task is None:
        raise click.ClickException(f"Heartbeat task '{HEALTHCHECK_TASK_NAME}' is not registered.")

    result = task.apply_async()
    try:
        payload = result.get(timeout=timeout)
    except CeleryTimeoutError as exc:
        raise click.ClickException(f"Worker did not respond within {timeout}s") from exc
    click.echo(json.dumps(payload, indent=2))


@click.group(name="reconcile")
def reconcile_cli():
    """Find and resolve duplicate sheets in the migrated data."""


@reconcile_cli.command("analyze")
@click.option("--company-id", help="Only analyse sheets owned by this company.")
@click.option(
    "--audit-file",
    type=click.Path(path_type=Path, dir_okay=False, writable=True),
    help="Write the keep/delete audit CSV to this path.",
)
@click.option(
    "--duplicates-only",
    is_flag=True,
    help="Skip the internal-company and test-name cleanup rules.",
)
@click.option("--json", "as_json", is_flag=True, help="Print decisions as JSON.")
@with_appcontext
@click.pass_context
def reconcile_analyze(
    ctx, company_id: Optional[str], audit_file: Optional[Path], duplicates_only: bool, as_json: bool
):
    """Mark cleanup sheets and score duplicate groups. Never deletes."""
    app = _load_app(ctx)
    try:
        profile = load_scoring_profile(app.config)
    except ReconciliationConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    plan = plan_cleanup(
        TargetStore(),
        company_id=company_id,
        scorer=ReconciliationScorer(profile),
        include_rules=not duplicates_only,
    )
    resolutions = plan.resolutions

    if as_json:
        payload = {
            "cleanup": [
                {
                    "sheet_id": candidate.sheet_id,
                    "name": candidate.name,
                    "company_id": candidate.company_id,
                    "category": candidate.category,
                    "reasons": candidate.reason,
                }
                for candidate in plan.cleanup
            ],
            "duplicate_groups": [
                {
                    "duplicate_group": resolution.group.key,
                    "keep": resolution.keep.sheet_id,
                    "delete": list(resolution.delete_ids),
                    "members": [
                        {"sheet_id": scored.sheet_id, "score": scored.score, "decision": decision, "reasons": reason}
                        for scored, decision, reason in resolution.decisions()
                    ],
                }
                for resolution in resolutions
            ],
        }
        click.echo(json.dumps(payload, indent=2))
    else:
        if plan.cleanup:
            click.echo(f"Cleanup: {len(plan.cleanup)} sheet(s)")
            for candidate in plan.cleanup:
                click.echo(f"  DELETE {candidate.sheet_id}  {candidate.name}  {candidate.reason}")
        for resolution in resolutions:
            click.echo(f"{resolution.group.name} ({resolution.group.company_id}): {len(resolution.group)} sheets")
            for scored, decision, reason in resolution.decisions():
                click.echo(f"  {decision.upper():<6} {scored.sheet_id}  {scored.score:>7.2f}  {reason}")
        counts = plan.counts()
        click.echo(
            f"{len(resolutions)} duplicate group(s); {len(plan.delete_ids)} sheet(s) marked for deletion "
            f"({counts['internal_company']} internal, {counts['test_name']} test, {counts['duplicate']} duplicate)."
        )

    if audit_file is not None:
        rows = write_audit_csv(plan, audit_file)
        click.echo(f"Audit written to {audit_file} ({rows} rows).", err=as_json)


@reconcile_cli.command("apply")
@click.option(
    "--audit-file",
    required=True,
    type=click.Path(path_type=Path, exists=True, dir_okay=False),
    help="Audit CSV produced by 'reconcile analyze'.",
)
@click.option("--confirm", is_flag=True, help="Actually delete the sheets marked 'delete'.")
@with_appcontext
@click.pass_context
def reconcile_apply(ctx, audit_file: Path, confirm: bool):
    """Delete the sheets an audit file marks for deletion."""
    try:
        delete_ids = read_delete_ids(audit_file)
        if not confirm:
            raise click.ClickException(
                f"{len(delete_ids)} sheet(s) would be deleted. Re-run with --confirm to delete them."
            )
        summary = apply_resolutions(TargetStore(), delete_ids, confirm=confirm)
    except MigrationError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(json.dumps(summary.to_dict(), indent=2, sort_keys=True))


__all__ = ["migration_cli", "reconcile_cli"]
