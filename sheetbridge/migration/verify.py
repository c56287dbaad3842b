"""
Post-run verification of the target store.

Reports row counts for every migrated table, identity mappings per entity
type, and orphaned foreign keys for each reference the transformers resolve
plus the sheet lineage pointers. Reads only.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Mapping

from .registry import get_stage_registry
from .transformers import TRANSFORMERS


@dataclass(frozen=True)
class IntegrityCheck:
    """One foreign key: ``table.column`` must name an existing ``target_table.id``."""

    table: str
    column: str
    target_table: str

    @property
    def label(self) -> str:
        return f"{self.table}.{self.column} -> {self.target_table}"


LINEAGE_CHECKS = (
    IntegrityCheck("sheets", "father_sheet_id", "sheets"),
    IntegrityCheck("sheets", "prev_sheet_id", "sheets"),
)


def integrity_checks() -> tuple[IntegrityCheck, ...]:
    checks: list[IntegrityCheck] = []
    for transformer_cls in TRANSFORMERS.values():
        for reference in transformer_cls.references:
            checks.append(IntegrityCheck(transformer_cls.table, reference.column, reference.table))
    checks.extend(LINEAGE_CHECKS)
    return tuple(dict.fromkeys(checks))


def migrated_tables() -> tuple[str, ...]:
    """Entity tables in stage order, each followed by the junction tables its stages fill."""

    tables: list[str] = []
    for descriptor in get_stage_registry().values():
        if descriptor.kind == "lineage":
            continue
        transformer_cls = TRANSFORMERS[descriptor.entity_type]
        tables.append(transformer_cls.table)
        tables.extend(junction.table for junction in transformer_cls.junctions)
    return tuple(dict.fromkeys(tables))


@dataclass
class VerificationReport:
    table_counts: dict[str, int] = field(default_factory=dict)
    mapping_counts: dict[str, int] = field(default_factory=dict)
    orphans: dict[str, int] = field(default_factory=dict)

    @property
    def orphan_total(self) -> int:
        return sum(self.orphans.values())

    def format_summary(self) -> str:
        width = max((len(name) for name in [*self.table_counts, *self.orphans]), default=10)
        lines = ["Record counts"]
        lines.extend(f"  {name:<{width}}  {count:>8}" for name, count in self.table_counts.items())
        lines.append("")
        lines.append("Identity mappings")
        lines.extend(f"  {name:<{width}}  {count:>8}" for name, count in self.mapping_counts.items())
        lines.append("")
        lines.append("Orphaned references")
        lines.extend(f"  {label:<{width}}  {count:>8}" for label, count in self.orphans.items())
        lines.append("")
        lines.append(f"{self.orphan_total} orphaned reference(s).")
        return "\n".join(lines)

    def to_dict(self) -> dict[str, object]:
        return {
            "table_counts": dict(self.table_counts),
            "mapping_counts": dict(self.mapping_counts),
            "orphans": dict(self.orphans),
            "orphan_total": self.orphan_total,
        }


def verify_target(
    store,
    *,
    tables: Iterable[str] | None = None,
    checks: Iterable[IntegrityCheck] | None = None,
) -> VerificationReport:
    entity_types = list(TRANSFORMERS)
    mapped: Mapping[str, int] = store.count_by("migration_id_map", "entity_type", entity_types)
    return VerificationReport(
        table_counts=store.table_counts(tables if tables is not None else migrated_tables()),
        mapping_counts={entity_type: mapped.get(entity_type, 0) for entity_type in entity_types},
        orphans={
            check.label: store.count_orphans(check.table, check.column, check.target_table)
            for check in (checks if checks is not None else integrity_checks())
        },
    )


__all__ = ["IntegrityCheck", "VerificationReport", "integrity_checks", "migrated_tables", "verify_target"]
