"""Prometheus metrics helpers for the migration engine."""

from __future__ import annotations

from typing import Literal

from prometheus_client import Counter, Gauge, Histogram

_source_requests = Counter(
    "migration_source_requests_total",
    "Legacy API requests by source type and outcome.",
    ["source_type", "outcome"],
)
_source_retries = Counter(
    "migration_source_retries_total",
    "Legacy API requests retried after a 429, 5xx or network error.",
    ["source_type", "reason"],
)
_stage_records = Counter(
    "migration_stage_records_total",
    "Records processed per stage by outcome.",
    ["stage", "outcome"],
)
_stage_duration = Histogram(
    "migration_stage_duration_seconds",
    "Wall-clock duration of a migration stage.",
    ["stage"],
    buckets=(1, 5, 15, 30, 60, 300, 900, 1800, 3600, 7200),
)
_chunk_counter = Counter(
    "migration_chunks_total",
    "Chunks processed per stage by status.",
    ["stage", "status"],
)
_chunk_duration = Histogram(
    "migration_chunk_duration_seconds",
    "Duration of one chunk transform-and-insert.",
    ["stage"],
    buckets=(0.05, 0.1, 0.5, 1, 2, 5, 10, 30, 60),
)
_chunk_retries = Counter(
    "migration_chunk_retries_total",
    "Chunk retries triggered by transient errors.",
    ["stage"],
)
_mapping_cache_size = Gauge(
    "migration_mapping_cache_entries",
    "Entries held in the identity cache per entity type.",
    ["entity_type"],
)
_reconcile_decisions = Counter(
    "migration_reconcile_decisions_total",
    "Duplicate-resolution decisions by outcome.",
    ["decision"],
)


def record_source_request(source_type: str, outcome: Literal["success", "failure", "not_found"]) -> None:
    _source_requests.labels(source_type=source_type, outcome=outcome).inc()


def record_source_retry(source_type: str, reason: str) -> None:
    _source_retries.labels(source_type=source_type, reason=reason).inc()


def record_stage_records(stage: str, *, migrated: int, skipped: int, failed: int) -> None:
    """Add a stage's final counts to the per-outcome record counter."""

    for outcome, count in (("migrated", migrated), ("skipped", skipped), ("failed", failed)):
        if count:
            _stage_records.labels(stage=stage, outcome=outcome).inc(count)


def record_stage_duration(stage: str, duration_seconds: float) -> None:
    _stage_duration.labels(stage=stage).observe(duration_seconds)


def record_chunk(
    stage: str,
    *,
    status: Literal["success", "partial", "failure", "dry_run"],
    duration_seconds: float,
) -> None:
    """Capture metrics for one processed chunk."""

    _chunk_counter.labels(stage=stage, status=status).inc()
    _chunk_duration.labels(stage=stage).observe(duration_seconds)


def record_chunk_retry(stage: str) -> None:
    _chunk_retries.labels(stage=stage).inc()


def record_mapping_cache_sizes(sizes: dict[str, int]) -> None:
    for entity_type, size in sizes.items():
        _mapping_cache_size.labels(entity_type=entity_type).set(size)


def record_reconcile_decisions(*, keep: int, delete: int) -> None:
    if keep:
        _reconcile_decisions.labels(decision="keep").inc(keep)
    if delete:
        _reconcile_decisions.labels(decision="delete").inc(delete)
