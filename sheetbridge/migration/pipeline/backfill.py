"""
Junction backfill for many-to-many fields whose right side is migrated later
than their owner (association companies, section questions).
"""

from __future__ import annotations

import logging
import time
from typing import Any, Iterable, Mapping, Sequence

from sheetbridge.migration.errors import is_transient_error
from sheetbridge.migration.metrics import record_chunk, record_chunk_retry
from sheetbridge.migration.source.client import chunk_records
from sheetbridge.migration.transformers.base import EntityTransformer, source_id_of, to_text_list

from .batch import PipelineSettings, StageStats


def backfill_junctions(
    records: Iterable[Mapping[str, Any]],
    *,
    store,
    cache,
    transformer: EntityTransformer,
    tables: Sequence[str],
    settings: PipelineSettings | None = None,
    stage: str | None = None,
    sleep_fn=time.sleep,
    logger: logging.Logger | None = None,
) -> StageStats:
    """
    Upsert junction rows in ``tables`` for owners that are already migrated.

    ``migrated`` counts owners that gained at least one link, ``skipped`` owners
    that are not migrated or have nothing resolvable, ``failed`` owners in
    chunks that could not be written.
    """

    settings = settings or PipelineSettings()
    logger = logger or logging.getLogger(__name__)
    stage = stage or f"{transformer.entity_type}_junctions"
    specs = {junction.table: junction for junction in transformer.junctions if junction.table in tables}
    missing = set(tables) - set(specs)
    if missing:
        raise ValueError(f"{type(transformer).__name__} has no junctions named {sorted(missing)}.")

    stats = StageStats()
    for chunk in chunk_records(records, settings.chunk_size):
        started = time.perf_counter()
        source_ids = [source_id_of(record) for record in chunk]
        owners = cache.resolve_many(source_ids, transformer.entity_type)
        lookups: dict[str, dict[str, str]] = {}
        for junction in specs.values():
            if junction.entity_type is None:
                continue
            wanted = list(
                dict.fromkeys(value for record in chunk for value in to_text_list(record.get(junction.source_key)))
            )
            targets = cache.resolve_many(wanted, junction.entity_type)
            lookups.setdefault(junction.entity_type, {}).update(
                {source_id: target_id for source_id, target_id in zip(wanted, targets) if target_id}
            )

        rows_by_table: dict[str, list[dict[str, Any]]] = {}
        linked = 0
        for record, owner_id in zip(chunk, owners):
            if owner_id is None:
                stats.skipped += 1
                continue
            rows = {
                table: entries
                for table, entries in transformer.junction_rows(record, owner_id, lookups).items()
                if table in specs
            }
            if not rows:
                stats.skipped += 1
                continue
            linked += 1
            for table, entries in rows.items():
                rows_by_table.setdefault(table, []).extend(entries)

        if settings.dry_run or not rows_by_table:
            stats.migrated += linked
            status = "dry_run" if settings.dry_run else "success"
            record_chunk(stage, status=status, duration_seconds=time.perf_counter() - started)
            continue

        attempt = 0
        while True:
            try:
                for table, entries in rows_by_table.items():
                    store.upsert(table, entries, on_conflict=specs[table].conflict_columns)
                store.commit()
            except Exception as exc:
                store.rollback()
                if is_transient_error(exc) and attempt < settings.retry_limit:
                    attempt += 1
                    record_chunk_retry(stage)
                    logger.warning(
                        "Transient error writing junction rows; retrying",
                        extra={"stage": stage, "attempt": attempt, "error": str(exc)},
                    )
                    sleep_fn(settings.retry_delay)
                    continue
                logger.error(
                    "Junction backfill chunk failed",
                    extra={"stage": stage, "owner_count": linked, "error": str(exc)},
                )
                stats.failed += linked
                record_chunk(stage, status="failure", duration_seconds=time.perf_counter() - started)
                break
            stats.migrated += linked
            record_chunk(stage, status="success", duration_seconds=time.perf_counter() - started)
            break

    logger.info("Junction backfill finished", extra={"stage": stage, **stats.to_dict()})
    return stats


__all__ = ["backfill_junctions"]
