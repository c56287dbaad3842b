"""
Celery tasks for queued migration runs.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Sequence

from celery import shared_task
from flask import current_app

from sheetbridge.migration.celery_app import HEALTHCHECK_TASK_NAME, RUN_TASK_NAME
from sheetbridge.migration.pipeline.service import RunOptions, execute_run


@shared_task(name=HEALTHCHECK_TASK_NAME, bind=True)
def migration_healthcheck(self) -> dict[str, Any]:
    """Heartbeat used by ``flask migration worker ping``."""
    now = datetime.now(timezone.utc)
    return {
        "status": "ok",
        "timestamp": now.isoformat(),
        "worker_hostname": self.request.hostname,
    }


@shared_task(name=RUN_TASK_NAME, bind=True)
def run_migration(
    self,
    *,
    run_id: int | None = None,
    stages: Sequence[str] = (),
    dry_run: bool = False,
    limit: int | None = None,
    source_ids: Sequence[str] = (),
) -> dict[str, Any]:
    """Execute one orchestrated run; the ``MigrationRun`` row is created by the caller."""

    options = RunOptions(
        stages=tuple(stages),
        dry_run=dry_run,
        limit=limit,
        source_ids=tuple(source_ids),
    )
    report = execute_run(current_app.config, options, run_id=run_id)
    current_app.logger.info(
        "Queued migration run completed",
        extra={
            "migration_run_id": run_id,
            "migration_task_id": self.request.id,
            "migration_dry_run": dry_run,
            **report.totals.to_dict(),
        },
    )
    payload = report.to_dict()
    payload["run_id"] = run_id
    return payload


__all__ = ["migration_healthcheck", "run_migration"]
