"""
Runs the registered stages in dependency order and collects their statistics.
"""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Callable, Mapping, Sequence

from sheetbridge.migration.errors import MigrationAbortedError, SourceApiError
from sheetbridge.migration.metrics import record_mapping_cache_sizes, record_stage_duration, record_stage_records
from sheetbridge.migration.registry import (
    StageDescriptor,
    get_stage_registry,
    referenced_entity_types,
    resolve_stages,
    validate_stage_order,
)

from .batch import StageStats
from .stages import StageContext

REPORT_HEADERS = ("Entity", "Migrated", "Skipped", "Failed")
DRY_RUN_NOTE = (
    "Dry run: nothing was written, so records that require an entity created "
    "earlier in this run count as failed. Counts are estimates."
)


@dataclass
class MigrationReport:
    """Per-stage counts for one orchestrated run."""

    stages: "OrderedDict[str, StageStats]" = field(default_factory=OrderedDict)
    dry_run: bool = False
    duration_seconds: float = 0.0
    aborted_stage: str | None = None
    error: str | None = None

    @property
    def totals(self) -> StageStats:
        total = StageStats()
        for stats in self.stages.values():
            total.merge(stats)
        return total

    @property
    def failed_records(self) -> int:
        return self.totals.failed

    def counts(self) -> dict[str, dict[str, int]]:
        return {name: stats.to_dict() for name, stats in self.stages.items()}

    def format_table(self) -> str:
        rows = [(name, stats.migrated, stats.skipped, stats.failed) for name, stats in self.stages.items()]
        totals = self.totals
        rows.append(("TOTAL", totals.migrated, totals.skipped, totals.failed))
        widths = [len(header) for header in REPORT_HEADERS]
        for row in rows:
            for index, value in enumerate(row):
                widths[index] = max(widths[index], len(str(value)))

        def render(values) -> str:
            cells = [str(values[0]).ljust(widths[0])]
            cells.extend(str(value).rjust(widths[index]) for index, value in enumerate(values[1:], start=1))
            return "  ".join(cells)

        separator = "  ".join("-" * width for width in widths)
        lines = [render(REPORT_HEADERS), separator]
        lines.extend(render(row) for row in rows[:-1])
        lines.extend([separator, render(rows[-1])])
        return "\n".join(lines)

    def format_summary(self) -> str:
        heading = "Migration dry run" if self.dry_run else "Migration run"
        lines = [heading, "", self.format_table(), "", f"Duration: {self.duration_seconds:.1f}s"]
        if self.aborted_stage:
            lines.append(f"Aborted at stage '{self.aborted_stage}': {self.error}")
        if self.dry_run:
            lines.extend(["", DRY_RUN_NOTE])
        return "\n".join(lines)

    def to_dict(self) -> dict[str, object]:
        return {
            "dry_run": self.dry_run,
            "estimated": self.dry_run,
            "duration_seconds": round(self.duration_seconds, 3),
            "stages": self.counts(),
            "totals": self.totals.to_dict(),
            "aborted_stage": self.aborted_stage,
            "error": self.error,
        }


class MigrationOrchestrator:
    """Execute stages sequentially against one shared identity cache."""

    def __init__(
        self,
        context: StageContext,
        *,
        registry: Mapping[str, StageDescriptor] | None = None,
        logger: logging.Logger | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.context = context
        self.registry = registry or get_stage_registry()
        validate_stage_order(self.registry)
        self.logger = logger or logging.getLogger(__name__)
        self.clock = clock

    def run(self, stages: Sequence[str] | None = None) -> MigrationReport:
        """
        Run the selected stages (all when ``stages`` is empty).

        A source failure while reading a stage's records raises
        ``MigrationAbortedError``; the partial report is attached to it.
        """

        selected = resolve_stages(stages, self.registry)
        report = MigrationReport(dry_run=self.context.settings.dry_run)
        run_started = self.clock()
        self.logger.info(
            "Migration started",
            extra={
                "stages": [descriptor.name for descriptor in selected],
                "dry_run": report.dry_run,
                "record_limit": self.context.limit,
                "source_id_count": len(self.context.source_ids),
            },
        )
        try:
            for descriptor in selected:
                report.stages[descriptor.name] = self._run_stage(descriptor)
        except MigrationAbortedError as exc:
            report.aborted_stage = exc.stage
            report.error = str(exc.cause)
            report.duration_seconds = self.clock() - run_started
            exc.report = report
            raise
        report.duration_seconds = self.clock() - run_started

        record_mapping_cache_sizes(self.context.cache.stats())
        totals = report.totals
        log_extra = {"duration_seconds": round(report.duration_seconds, 1), **totals.to_dict()}
        if totals.failed:
            self.logger.warning("Migration finished with failures", extra=log_extra)
        else:
            self.logger.info("Migration finished", extra=log_extra)
        return report

    def _run_stage(self, descriptor: StageDescriptor) -> StageStats:
        started = self.clock()
        for entity_type in referenced_entity_types(descriptor):
            if not self.context.cache.is_preloaded(entity_type):
                self.context.cache.preload(entity_type)
        try:
            stats = descriptor.run(self.context)
        except SourceApiError as exc:
            self.logger.error(
                "Stage aborted: source records could not be read",
                extra={"stage": descriptor.name, "error": str(exc)},
            )
            raise MigrationAbortedError(descriptor.name, exc) from exc
        duration = self.clock() - started
        record_stage_duration(descriptor.name, duration)
        record_stage_records(descriptor.name, **stats.to_dict())
        self.logger.info(
            "Stage finished",
            extra={"stage": descriptor.name, "duration_seconds": round(duration, 2), **stats.to_dict()},
        )
        return stats


__all__ = ["DRY_RUN_NOTE", "MigrationOrchestrator", "MigrationReport", "REPORT_HEADERS"]
