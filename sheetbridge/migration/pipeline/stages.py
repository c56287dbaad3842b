"""
Stage runners invoked by the orchestrator.

Each runner fetches its candidate records from the source platform and hands
them to the matching pipeline: entity import, junction backfill or lineage.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Iterator, Mapping, Sequence

from sheetbridge.migration.transformers import get_transformer

from .backfill import backfill_junctions
from .batch import BatchImporter, PipelineSettings, StageStats
from .lineage import link_sheet_lineage

if TYPE_CHECKING:  # pragma: no cover
    from sheetbridge.migration.registry import StageDescriptor


@dataclass
class StageContext:
    """Everything a stage needs; shared by all stages of one run."""

    client: Any
    store: Any
    cache: Any
    settings: PipelineSettings
    limit: int | None = None
    source_ids: Sequence[str] = ()
    sleep_fn: Any = time.sleep
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger(__name__))

    def candidates(self, source_type: str) -> tuple[Iterator[Mapping[str, Any]], int | None]:
        """
        Return the records to process and their expected total.

        The total is read before any record is fetched so a failing source is
        detected up front.
        """

        if self.source_ids:
            return self._records_by_id(source_type), len(self.source_ids)
        total = self.client.count_all(source_type)
        if self.limit is not None:
            total = min(total, self.limit)
        return self.client.iter_records(source_type, limit=self.limit), total

    def _records_by_id(self, source_type: str) -> Iterator[Mapping[str, Any]]:
        for source_id in self.source_ids:
            record = self.client.get_by_id(source_type, source_id)
            if record is None:
                self.logger.warning(
                    "Source record not found",
                    extra={"source_type": source_type, "source_id": source_id},
                )
                continue
            yield record


def run_entity_stage(descriptor: "StageDescriptor", context: StageContext) -> StageStats:
    transformer = get_transformer(descriptor.entity_type)
    records, total = context.candidates(transformer.source_type)
    importer = BatchImporter(
        context.store,
        context.cache,
        transformer,
        context.settings,
        stage=descriptor.name,
        sleep_fn=context.sleep_fn,
        logger=context.logger,
    )
    return importer.run(records, total=total)


def run_junction_backfill(descriptor: "StageDescriptor", context: StageContext) -> StageStats:
    transformer = get_transformer(descriptor.entity_type)
    records, _ = context.candidates(transformer.source_type)
    return backfill_junctions(
        records,
        store=context.store,
        cache=context.cache,
        transformer=transformer,
        tables=descriptor.junction_tables,
        settings=context.settings,
        stage=descriptor.name,
        sleep_fn=context.sleep_fn,
        logger=context.logger,
    )


def run_lineage_stage(descriptor: "StageDescriptor", context: StageContext) -> StageStats:
    transformer = get_transformer(descriptor.entity_type)
    records, _ = context.candidates(transformer.source_type)
    lineage = link_sheet_lineage(
        records,
        store=context.store,
        cache=context.cache,
        chunk_size=context.settings.chunk_size,
        dry_run=context.settings.dry_run,
        logger=context.logger,
    )
    return lineage.to_stage_stats()


__all__ = ["StageContext", "run_entity_stage", "run_junction_backfill", "run_lineage_stage"]
