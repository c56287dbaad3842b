"""
Run bookkeeping around the orchestrator.

``execute_run`` is the single entry point used by both the CLI and the Celery
task: it wires the source client, target store and identity cache together,
runs the selected stages and records the outcome on a ``MigrationRun`` row.
Dry runs leave no row behind.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from sqlalchemy.orm import Session

from sheetbridge.migration.identity import IdentityCache, SqlMappingStore
from sheetbridge.migration.registry import resolve_stages, stage_names
from sheetbridge.migration.source import create_source_client
from sheetbridge.migration.store import TargetStore
from sheetbridge.models.base import db
from sheetbridge.models.migration import MigrationRun, MigrationRunStatus

from .batch import PipelineSettings
from .orchestrator import MigrationOrchestrator, MigrationReport
from .stages import StageContext


@dataclass(frozen=True)
class RunOptions:
    """Operator choices for one run."""

    stages: tuple[str, ...] = ()
    dry_run: bool = False
    limit: int | None = None
    source_ids: tuple[str, ...] = ()

    @classmethod
    def from_config(
        cls,
        config: Mapping[str, Any],
        *,
        stages: Sequence[str] | None = None,
        dry_run: bool | None = None,
        limit: int | None = None,
        source_ids: Sequence[str] = (),
    ) -> "RunOptions":
        """Fill unset options from ``MIGRATION_STAGES``/``MIGRATION_DRY_RUN``/``MIGRATION_RECORD_LIMIT``."""

        if limit is not None and limit < 1:
            raise ValueError("Record limit must be a positive integer.")
        return cls(
            stages=tuple(stages) if stages else tuple(config.get("MIGRATION_STAGES") or ()),
            dry_run=bool(config.get("MIGRATION_DRY_RUN", False)) if dry_run is None else dry_run,
            limit=limit if limit is not None else config.get("MIGRATION_RECORD_LIMIT"),
            source_ids=tuple(dict.fromkeys(source_id.strip() for source_id in source_ids if source_id.strip())),
        )

    def to_params(self) -> dict[str, Any]:
        return {
            "stages": list(self.stages),
            "dry_run": self.dry_run,
            "limit": self.limit,
            "source_ids": list(self.source_ids),
        }


def create_run(options: RunOptions, *, session: Session | None = None) -> MigrationRun | None:
    """Persist a pending ``MigrationRun`` for ``options``; dry runs get none."""

    if options.dry_run:
        return None
    session = session if session is not None else db.session
    selected = stage_names(resolve_stages(options.stages))
    run = MigrationRun(
        status=MigrationRunStatus.PENDING,
        dry_run=False,
        stages_json=list(selected),
        params_json=options.to_params(),
    )
    session.add(run)
    session.commit()
    return run


def execute_run(
    config: Mapping[str, Any],
    options: RunOptions,
    *,
    run_id: int | None = None,
    client=None,
    session: Session | None = None,
    sleep_fn=time.sleep,
    logger: logging.Logger | None = None,
) -> MigrationReport:
    """
    Run the migration described by ``options`` and return its report.

    When ``run_id`` is given the existing run row is reused (queued runs);
    otherwise a new one is created for non-dry runs. Failures mark the run
    failed and propagate.
    """

    session = session if session is not None else db.session
    logger = logger or logging.getLogger("sheetbridge.migration")
    resolve_stages(options.stages)
    client = client if client is not None else create_source_client(config)

    run: MigrationRun | None
    if run_id is not None:
        run = session.get(MigrationRun, run_id)
        if run is None:
            raise ValueError(f"Migration run {run_id} not found.")
    else:
        run = create_run(options, session=session)
    run_id = run.id if run is not None else None

    cache = IdentityCache(SqlMappingStore(session, run_id=run_id), logger=logger)
    context = StageContext(
        client=client,
        store=TargetStore(session),
        cache=cache,
        settings=PipelineSettings.from_config(config, dry_run=options.dry_run),
        limit=options.limit,
        source_ids=options.source_ids,
        sleep_fn=sleep_fn,
        logger=logger,
    )
    orchestrator = MigrationOrchestrator(context, logger=logger)

    if run is not None:
        run.mark_running()
        session.commit()

    try:
        report = orchestrator.run(options.stages)
    except Exception as exc:
        session.rollback()
        if run_id is not None:
            failed_run = session.get(MigrationRun, run_id)
            if failed_run is not None:
                failed_run.mark_failed(str(exc))
                partial = getattr(exc, "report", None)
                if partial is not None:
                    failed_run.counts_json = partial.counts()
                session.commit()
        logger.error("Migration run failed", extra={"migration_run_id": run_id, "error": str(exc)})
        raise

    if run is not None:
        run.mark_finished(counts=report.counts(), failed_records=report.failed_records)
        session.commit()
    return report


__all__ = ["RunOptions", "create_run", "execute_run"]
