"""Migration pipeline: batch import, junction backfill, lineage linking and orchestration."""

from .backfill import backfill_junctions
from .batch import BatchImporter, PipelineSettings, ProgressTracker, StageStats
from .lineage import LineageGraph, LineageStats, link_sheet_lineage
from .orchestrator import MigrationOrchestrator, MigrationReport
from .service import RunOptions, create_run, execute_run
from .stages import StageContext

__all__ = [
    "BatchImporter",
    "LineageGraph",
    "LineageStats",
    "MigrationOrchestrator",
    "MigrationReport",
    "PipelineSettings",
    "ProgressTracker",
    "RunOptions",
    "StageContext",
    "StageStats",
    "backfill_junctions",
    "create_run",
    "execute_run",
    "link_sheet_lineage",
]
