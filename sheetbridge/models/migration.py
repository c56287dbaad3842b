"""
SQLAlchemy models for migration bookkeeping.

``MigrationIdMap`` is the durable half of the identity-resolution cache: one row
per migrated legacy record. ``MigrationRun`` records what each orchestrated run
did so operators can compare runs and resume after a failure.
"""

from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import Enum, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import BaseModel, db


class MigrationRunStatus(str, enum.Enum):
    """Lifecycle states for a migration run."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    PARTIALLY_FAILED = "partially_failed"
    FAILED = "failed"


class MigrationRun(BaseModel):
    """Metadata describing a single orchestrated migration."""

    __tablename__ = "migration_runs"

    id: Mapped[int] = mapped_column(primary_key=True)
    status: Mapped[MigrationRunStatus] = mapped_column(
        Enum(MigrationRunStatus, name="migration_run_status_enum"),
        nullable=False,
        default=MigrationRunStatus.PENDING,
        index=True,
    )
    dry_run: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    started_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True))
    finished_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    stages_json: Mapped[list | None] = mapped_column(db.JSON, nullable=True)
    params_json: Mapped[dict | None] = mapped_column(
        db.JSON,
        nullable=True,
        comment="Options the run was started with (stages, limit, source_ids, dry_run)",
    )
    counts_json: Mapped[dict | None] = mapped_column(db.JSON, nullable=True)
    error_summary: Mapped[str | None] = mapped_column(db.Text, nullable=True)

    id_mappings = relationship("MigrationIdMap", back_populates="migration_run")

    def mark_running(self) -> None:
        self.status = MigrationRunStatus.RUNNING
        self.started_at = datetime.now(timezone.utc)

    def mark_finished(self, *, counts: dict, failed_records: int) -> None:
        self.counts_json = counts
        self.finished_at = datetime.now(timezone.utc)
        self.status = MigrationRunStatus.PARTIALLY_FAILED if failed_records else MigrationRunStatus.SUCCEEDED

    def mark_failed(self, error: str) -> None:
        self.status = MigrationRunStatus.FAILED
        self.error_summary = error
        self.finished_at = datetime.now(timezone.utc)


class MigrationIdMap(BaseModel):
    """
    Maps a legacy record identifier to the target row it produced.

    Rows are append-only. Uniqueness on both ``(entity_type, source_id)`` and
    ``(entity_type, target_id)`` keeps the mapping bijective per entity type.
    """

    __tablename__ = "migration_id_map"

    id: Mapped[int] = mapped_column(db.Integer, primary_key=True, autoincrement=True)
    entity_type: Mapped[str] = mapped_column(db.String(50), nullable=False)
    source_id: Mapped[str] = mapped_column(db.String(64), nullable=False)
    target_id: Mapped[str] = mapped_column(db.String(36), nullable=False)
    run_id: Mapped[int | None] = mapped_column(ForeignKey("migration_runs.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    migration_run = relationship("MigrationRun", back_populates="id_mappings")

    __table_args__ = (
        UniqueConstraint("entity_type", "source_id", name="uq_migration_id_map_source"),
        UniqueConstraint("entity_type", "target_id", name="uq_migration_id_map_target"),
        Index("idx_migration_id_map_entity", "entity_type"),
    )
