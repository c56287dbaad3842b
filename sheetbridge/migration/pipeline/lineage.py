"""
Second-pass linking of sheet version lineage.

Sheets point at a father sheet and a previous sheet. Both pointers may name
sheets that were migrated after the referencing sheet, so they are written only
once every sheet row exists. The pointers are treated as one directed graph:
a link that points a sheet at itself or at one of its own descendants is
rejected.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from sheetbridge.migration.source.client import chunk_records
from sheetbridge.migration.store import eq, is_null
from sheetbridge.migration.transformers.base import source_id_of, to_text
from sheetbridge.migration.transformers.sheets import FATHER_SHEET_KEY, PREVIOUS_SHEET_KEY

from .batch import StageStats

LINEAGE_COLUMNS: tuple[tuple[str, str], ...] = (
    ("father_sheet_id", FATHER_SHEET_KEY),
    ("prev_sheet_id", PREVIOUS_SHEET_KEY),
)


@dataclass
class LineageStats:
    examined: int = 0
    linked: int = 0
    unchanged: int = 0
    no_lineage: int = 0
    unresolved: int = 0
    cycles_rejected: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "examined": self.examined,
            "linked": self.linked,
            "unchanged": self.unchanged,
            "no_lineage": self.no_lineage,
            "unresolved": self.unresolved,
            "cycles_rejected": self.cycles_rejected,
        }

    def to_stage_stats(self) -> StageStats:
        """Sheets linked count as migrated, rejected pointers as failed, the rest as skipped."""

        return StageStats(
            migrated=self.linked,
            skipped=max(self.examined - self.linked - self.cycles_rejected, 0),
            failed=self.cycles_rejected,
        )


class LineageGraph:
    """Parent edges (father and previous) between target sheet ids."""

    def __init__(self) -> None:
        self.pointers: dict[str, dict[str, str | None]] = defaultdict(dict)
        self._parents: dict[str, dict[str, int]] = defaultdict(dict)

    @classmethod
    def load(cls, store) -> "LineageGraph":
        graph = cls()
        columns = ["id", *(column for column, _ in LINEAGE_COLUMNS)]
        for column, _ in LINEAGE_COLUMNS:
            for row in store.select("sheets", columns, [is_null(column, False)]):
                graph.set(row["id"], column, row[column])
        return graph

    def current(self, sheet_id: str, column: str) -> str | None:
        return self.pointers.get(sheet_id, {}).get(column)

    def set(self, sheet_id: str, column: str, target_id: str | None) -> None:
        previous = self.current(sheet_id, column)
        if previous == target_id:
            return
        if previous is not None:
            self._remove_edge(sheet_id, previous)
        self.pointers[sheet_id][column] = target_id
        if target_id is not None:
            parents = self._parents[sheet_id]
            parents[target_id] = parents.get(target_id, 0) + 1

    def would_cycle(self, sheet_id: str, target_id: str) -> bool:
        """True if ``target_id`` already reaches ``sheet_id`` through parent edges."""

        stack = [target_id]
        visited: set[str] = set()
        while stack:
            node = stack.pop()
            if node == sheet_id:
                return True
            if node in visited:
                continue
            visited.add(node)
            stack.extend(self._parents.get(node, {}))
        return False

    def _remove_edge(self, sheet_id: str, target_id: str) -> None:
        parents = self._parents.get(sheet_id, {})
        remaining = parents.get(target_id, 0) - 1
        if remaining > 0:
            parents[target_id] = remaining
        else:
            parents.pop(target_id, None)


def link_sheet_lineage(
    records: Iterable[Mapping[str, Any]],
    *,
    store,
    cache,
    chunk_size: int = 50,
    dry_run: bool = False,
    logger: logging.Logger | None = None,
) -> LineageStats:
    """Resolve lineage pointers for every source sheet and update the target rows."""

    logger = logger or logging.getLogger(__name__)
    stats = LineageStats()
    graph = LineageGraph.load(store)

    for chunk in chunk_records(records, chunk_size):
        for record in chunk:
            stats.examined += 1
            sheet_id = cache.resolve(source_id_of(record), "sheet")
            lineage_sources = {column: to_text(record.get(key)) for column, key in LINEAGE_COLUMNS}
            if not any(lineage_sources.values()):
                stats.no_lineage += 1
                continue
            if sheet_id is None:
                stats.unresolved += 1
                logger.debug("Lineage source sheet not migrated", extra={"source_id": source_id_of(record)})
                continue

            values: dict[str, str] = {}
            for column, source_value in lineage_sources.items():
                if source_value is None:
                    continue
                target_id = cache.resolve(source_value, "sheet")
                if target_id is None:
                    stats.unresolved += 1
                    continue
                if graph.current(sheet_id, column) == target_id:
                    continue
                if graph.would_cycle(sheet_id, target_id):
                    stats.cycles_rejected += 1
                    logger.warning(
                        "Rejected lineage link that would form a cycle",
                        extra={
                            "sheet_id": sheet_id,
                            "column": column,
                            "target_sheet_id": target_id,
                            "self_link": target_id == sheet_id,
                        },
                    )
                    continue
                graph.set(sheet_id, column, target_id)
                values[column] = target_id

            if not values:
                stats.unchanged += 1
                continue
            stats.linked += 1
            if not dry_run:
                store.update("sheets", values, [eq("id", sheet_id)])
        if not dry_run:
            store.commit()

    logger.info("Sheet lineage linked", extra={"dry_run": dry_run, **stats.to_dict()})
    return stats


__all__ = ["LineageGraph", "LineageStats", "link_sheet_lineage"]
