"""
Chunked transform-and-insert with retry for one entity type.

Each chunk is transformed, inserted, mapped and linked to its junction rows in
one transaction. Transient failures (network, TLS, timeouts, locked database)
roll the chunk back and retry it whole; anything else falls back to row-level
inserts so one bad row cannot sink its neighbours.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Sequence

from sheetbridge.migration.errors import is_transient_error
from sheetbridge.migration.metrics import record_chunk, record_chunk_retry
from sheetbridge.migration.source.client import chunk_records
from sheetbridge.migration.transformers.base import ChunkOutcome, EntityTransformer, PreparedRow, source_id_of


@dataclass
class StageStats:
    """Per-stage record counts."""

    migrated: int = 0
    skipped: int = 0
    failed: int = 0

    @property
    def processed(self) -> int:
        return self.migrated + self.skipped + self.failed

    def merge(self, other: "StageStats") -> "StageStats":
        self.migrated += other.migrated
        self.skipped += other.skipped
        self.failed += other.failed
        return self

    def to_dict(self) -> dict[str, int]:
        return {"migrated": self.migrated, "skipped": self.skipped, "failed": self.failed}


@dataclass(frozen=True)
class PipelineSettings:
    chunk_size: int = 50
    retry_limit: int = 3
    retry_delay: float = 2.0
    progress_interval: int = 10
    isolate_row_failures: bool = True
    dry_run: bool = False

    @classmethod
    def from_config(cls, config: Mapping[str, Any], *, dry_run: bool | None = None) -> "PipelineSettings":
        return cls(
            chunk_size=max(1, int(config.get("MIGRATION_CHUNK_SIZE", 50))),
            retry_limit=max(0, int(config.get("MIGRATION_RETRY_LIMIT", 3))),
            retry_delay=float(config.get("MIGRATION_RETRY_DELAY_SECONDS", 2.0)),
            progress_interval=max(1, int(config.get("MIGRATION_PROGRESS_INTERVAL", 10))),
            isolate_row_failures=bool(config.get("MIGRATION_ISOLATE_ROW_FAILURES", True)),
            dry_run=bool(config.get("MIGRATION_DRY_RUN", False)) if dry_run is None else dry_run,
        )


class ProgressTracker:
    """Logs processed count, throughput and ETA every ``interval`` chunks."""

    def __init__(
        self,
        label: str,
        *,
        total: int | None = None,
        interval: int = 10,
        logger: logging.Logger | None = None,
        clock=time.monotonic,
    ) -> None:
        self.label = label
        self.total = total
        self.interval = max(1, interval)
        self.logger = logger or logging.getLogger(__name__)
        self.clock = clock
        self.started = clock()
        self.processed = 0
        self.chunks = 0

    def advance(self, count: int) -> None:
        self.processed += count
        self.chunks += 1
        if self.chunks % self.interval == 0:
            self.log()

    def snapshot(self) -> dict[str, Any]:
        elapsed = max(self.clock() - self.started, 1e-9)
        rate = self.processed / elapsed
        payload: dict[str, Any] = {
            "stage": self.label,
            "processed": self.processed,
            "rate_per_second": round(rate, 2),
        }
        if self.total:
            payload["total"] = self.total
            payload["percent"] = round(min(self.processed / self.total, 1.0) * 100, 1)
            remaining = max(self.total - self.processed, 0)
            payload["eta_minutes"] = round(remaining / rate / 60, 1) if rate > 0 else None
        return payload

    def log(self) -> None:
        self.logger.info("Migration progress", extra=self.snapshot())


class BatchImporter:
    """Import an iterable of legacy records for one transformer."""

    def __init__(
        self,
        store,
        cache,
        transformer: EntityTransformer,
        settings: PipelineSettings | None = None,
        *,
        stage: str | None = None,
        sleep_fn=time.sleep,
        logger: logging.Logger | None = None,
    ) -> None:
        self.store = store
        self.cache = cache
        self.transformer = transformer
        self.settings = settings or PipelineSettings()
        self.stage = stage or transformer.entity_type
        self.sleep = sleep_fn
        self.logger = logger or logging.getLogger(__name__)
        self._junction_specs = {junction.table: junction for junction in transformer.junctions}

    # Public API -----------------------------------------------------------------

    def run(self, records: Iterable[Mapping[str, Any]], *, total: int | None = None) -> StageStats:
        """
        Import ``records`` and return the stage counts.

        Errors raised while iterating ``records`` propagate; per-chunk failures
        are counted and never abort the stage.
        """

        stats = StageStats()
        tracker = ProgressTracker(
            self.stage,
            total=total,
            interval=self.settings.progress_interval,
            logger=self.logger,
        )
        seen: set[str] = set()
        for chunk in chunk_records(records, self.settings.chunk_size):
            candidates = self._select_candidates(chunk, stats, seen)
            if candidates:
                self._process_chunk(candidates, stats)
            tracker.advance(len(chunk))
        if tracker.chunks % tracker.interval:
            tracker.log()
        self.logger.info("Stage import finished", extra={"stage": self.stage, **stats.to_dict()})
        return stats

    # Internal helpers -----------------------------------------------------------

    def _select_candidates(
        self,
        chunk: Sequence[Mapping[str, Any]],
        stats: StageStats,
        seen: set[str],
    ) -> list[Mapping[str, Any]]:
        with_ids: list[tuple[str, Mapping[str, Any]]] = []
        for record in chunk:
            source_id = source_id_of(record)
            if source_id is None:
                stats.failed += 1
                self.logger.warning("Skipping record without _id", extra={"stage": self.stage})
                continue
            if source_id in seen:
                stats.skipped += 1
                continue
            seen.add(source_id)
            with_ids.append((source_id, record))

        existing = self.cache.resolve_many([source_id for source_id, _ in with_ids], self.transformer.entity_type)
        candidates: list[Mapping[str, Any]] = []
        for (source_id, record), target_id in zip(with_ids, existing):
            if target_id is not None:
                stats.skipped += 1
            else:
                candidates.append(record)
        return candidates

    def _process_chunk(self, candidates: list[Mapping[str, Any]], stats: StageStats) -> None:
        started = time.perf_counter()
        if self.settings.dry_run:
            try:
                outcome = self.transformer.prepare_chunk(candidates, self.cache, self.store)
            except Exception as exc:
                self.store.rollback()
                stats.failed += len(candidates)
                self.logger.error(
                    "Dry-run chunk could not be prepared",
                    exc_info=True,
                    extra={"stage": self.stage, "chunk_size": len(candidates), "error": str(exc)},
                )
                record_chunk(self.stage, status="failure", duration_seconds=time.perf_counter() - started)
                return
            self._count_outcome(outcome, stats)
            record_chunk(self.stage, status="dry_run", duration_seconds=time.perf_counter() - started)
            return

        attempt = 0
        while True:
            try:
                outcome = self._import_chunk(candidates)
            except Exception as exc:
                self._rollback(candidates)
                if is_transient_error(exc):
                    if attempt < self.settings.retry_limit:
                        attempt += 1
                        record_chunk_retry(self.stage)
                        self.logger.warning(
                            "Transient error importing chunk; retrying",
                            extra={
                                "stage": self.stage,
                                "attempt": attempt,
                                "retry_limit": self.settings.retry_limit,
                                "error": str(exc),
                            },
                        )
                        self.sleep(self.settings.retry_delay)
                        continue
                    self.logger.error(
                        "Chunk failed after retries",
                        extra={"stage": self.stage, "chunk_size": len(candidates), "error": str(exc)},
                    )
                    stats.failed += len(candidates)
                    record_chunk(self.stage, status="failure", duration_seconds=time.perf_counter() - started)
                    return
                if not self.settings.isolate_row_failures:
                    self.logger.error(
                        "Chunk insert failed",
                        extra={"stage": self.stage, "chunk_size": len(candidates), "error": str(exc)},
                    )
                    stats.failed += len(candidates)
                    record_chunk(self.stage, status="failure", duration_seconds=time.perf_counter() - started)
                    return
                self.logger.warning(
                    "Chunk insert failed; retrying row by row",
                    extra={"stage": self.stage, "chunk_size": len(candidates), "error": str(exc)},
                )
                status = self._import_rows_individually(candidates, stats)
                record_chunk(self.stage, status=status, duration_seconds=time.perf_counter() - started)
                return
            self._count_outcome(outcome, stats)
            record_chunk(self.stage, status="success", duration_seconds=time.perf_counter() - started)
            return

    def _import_chunk(self, candidates: Sequence[Mapping[str, Any]]) -> ChunkOutcome:
        outcome = self.transformer.prepare_chunk(candidates, self.cache, self.store)
        if outcome.prepared:
            self.store.insert(self.transformer.table, [prepared.row for prepared in outcome.prepared])
            self._write_junctions(outcome.prepared)
            self.cache.record_batch(
                [(prepared.source_id, prepared.target_id) for prepared in outcome.prepared],
                self.transformer.entity_type,
            )
        self.store.commit()
        return outcome

    def _import_rows_individually(self, candidates: Sequence[Mapping[str, Any]], stats: StageStats) -> str:
        """Insert row by row under savepoints; returns the chunk status to record."""

        try:
            outcome = self.transformer.prepare_chunk(candidates, self.cache, self.store)
        except Exception as exc:
            self._rollback(candidates)
            stats.failed += len(candidates)
            self.logger.error(
                "Chunk could not be prepared for row-by-row insert",
                exc_info=True,
                extra={"stage": self.stage, "chunk_size": len(candidates), "error": str(exc)},
            )
            return "failure"
        self._log_failures(outcome)
        stats.failed += len(outcome.failures)
        migrated = 0
        for prepared in outcome.prepared:
            try:
                with self.store.savepoint():
                    self.store.insert(self.transformer.table, [prepared.row])
                    self._write_junctions([prepared])
                    self.cache.record_batch([(prepared.source_id, prepared.target_id)], self.transformer.entity_type)
            except Exception as exc:
                self.cache.discard([prepared.source_id], self.transformer.entity_type)
                stats.failed += 1
                self.logger.warning(
                    "Row insert failed",
                    extra={"stage": self.stage, "source_id": prepared.source_id, "error": str(exc)},
                )
                continue
            migrated += 1
        try:
            self.store.commit()
        except Exception as exc:
            self._rollback(candidates)
            stats.failed += migrated
            self.logger.error(
                "Row-by-row commit failed",
                exc_info=True,
                extra={"stage": self.stage, "rows": migrated, "error": str(exc)},
            )
            return "failure"
        stats.migrated += migrated
        return "partial"

    def _write_junctions(self, prepared_rows: Sequence[PreparedRow]) -> None:
        by_table: dict[str, list[dict[str, Any]]] = {}
        for prepared in prepared_rows:
            for table, rows in prepared.junctions.items():
                by_table.setdefault(table, []).extend(rows)
        for table, rows in by_table.items():
            spec = self._junction_specs[table]
            self.store.upsert(table, rows, on_conflict=spec.conflict_columns)

    def _rollback(self, candidates: Sequence[Mapping[str, Any]]) -> None:
        self.store.rollback()
        self.cache.discard(
            [source_id for source_id in (source_id_of(record) for record in candidates) if source_id],
            self.transformer.entity_type,
        )

    def _count_outcome(self, outcome: ChunkOutcome, stats: StageStats) -> None:
        stats.migrated += len(outcome.prepared)
        stats.failed += len(outcome.failures)
        self._log_failures(outcome)

    def _log_failures(self, outcome: ChunkOutcome) -> None:
        for failure in outcome.failures:
            self.logger.warning(
                "Dropped invalid record",
                extra={"stage": self.stage, "source_id": failure.source_id, "reason": failure.reason},
            )


__all__ = ["BatchImporter", "PipelineSettings", "ProgressTracker", "StageStats"]
