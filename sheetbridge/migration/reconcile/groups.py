"""
Duplicate-group detection over migrated sheets.

Sheets are duplicates when they share an owning company and an exact name.
Each member is loaded with the signals the scorer needs: latest workflow
status and its version, chemical data presence and answer count.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Sequence

from sheetbridge.migration.store import IN_LIST_CHUNK, eq, in_, is_null

SHEET_COLUMNS = ("id", "name", "company_id", "new_status", "version", "created_at", "modified_at")

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; they are stored in UTC."""

    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class SheetCandidate:
    """One member of a duplicate group and the signals it is scored on."""

    sheet_id: str
    name: str
    company_id: str | None
    status: str | None = None
    status_version: int | None = None
    new_status: str | None = None
    version: int | None = None
    answer_count: int = 0
    has_chemicals: bool = False
    modified_at: datetime | None = None
    created_at: datetime | None = None

    @property
    def has_status_row(self) -> bool:
        return self.status is not None or self.status_version is not None

    @property
    def last_touched(self) -> datetime | None:
        return as_utc(self.modified_at) or as_utc(self.created_at)


@dataclass(frozen=True)
class DuplicateGroup:
    company_id: str | None
    name: str
    members: tuple[SheetCandidate, ...]

    @property
    def key(self) -> str:
        return f"{self.company_id}:{self.name}"

    def __len__(self) -> int:
        return len(self.members)


def find_duplicate_groups(
    store,
    company_id: str | None = None,
    *,
    exclude: Iterable[str] = (),
) -> list[DuplicateGroup]:
    """
    Return every ``(company_id, name)`` group with at least two sheets.

    Sheets without an owning company are never grouped, nor are sheets in
    ``exclude`` (already marked by the cleanup rules). Groups come back ordered
    by company id then name; members by sheet id.
    """

    filters = [is_null("company_id", False)]
    if company_id:
        filters.append(eq("company_id", company_id))
    rows = store.select("sheets", SHEET_COLUMNS, filters, order_by=("company_id", "name", "id"))

    excluded = set(exclude)
    grouped: "OrderedDict[tuple[str, str], list[dict]]" = OrderedDict()
    for row in rows:
        if row["name"] is None or row["id"] in excluded:
            continue
        grouped.setdefault((row["company_id"], row["name"]), []).append(row)
    duplicates = {key: members for key, members in grouped.items() if len(members) > 1}
    if not duplicates:
        return []

    sheet_ids = [row["id"] for members in duplicates.values() for row in members]
    statuses = latest_status_rows(store, sheet_ids)
    answer_counts = store.count_by("answers", "sheet_id", sheet_ids)
    chemical_counts = store.count_by("sheet_chemicals", "sheet_id", sheet_ids)

    groups: list[DuplicateGroup] = []
    for (owner_id, name), members in duplicates.items():
        candidates = []
        for row in members:
            status, status_version = statuses.get(row["id"], (None, None))
            candidates.append(
                SheetCandidate(
                    sheet_id=row["id"],
                    name=row["name"],
                    company_id=row["company_id"],
                    status=status,
                    status_version=status_version,
                    new_status=row["new_status"],
                    version=row["version"],
                    answer_count=answer_counts.get(row["id"], 0),
                    has_chemicals=chemical_counts.get(row["id"], 0) > 0,
                    modified_at=as_utc(row["modified_at"]),
                    created_at=as_utc(row["created_at"]),
                )
            )
        groups.append(DuplicateGroup(company_id=owner_id, name=name, members=tuple(candidates)))
    return groups


def latest_status_rows(store, sheet_ids: Sequence[str]) -> dict[str, tuple[str | None, int | None]]:
    """
    Map each sheet to ``(status, version)`` of its latest workflow status row.

    Latest means highest version, then most recently modified, then most
    recently created.
    """

    latest: dict[str, tuple] = {}
    for batch in _batches(list(dict.fromkeys(sheet_ids))):
        rows = store.select(
            "sheet_statuses",
            ("sheet_id", "status", "version", "modified_at", "created_at"),
            [in_("sheet_id", batch)],
        )
        for row in rows:
            rank = (
                row["version"] or 0,
                as_utc(row["modified_at"]) or _EPOCH,
                as_utc(row["created_at"]) or _EPOCH,
            )
            current = latest.get(row["sheet_id"])
            if current is None or rank > current[0]:
                latest[row["sheet_id"]] = (rank, (row["status"], row["version"]))
    return {sheet_id: status_row for sheet_id, (_, status_row) in latest.items()}


def latest_statuses(store, sheet_ids: Sequence[str]) -> dict[str, str | None]:
    return {sheet_id: status for sheet_id, (status, _) in latest_status_rows(store, sheet_ids).items()}


def _batches(values: Sequence[str]) -> Iterable[Sequence[str]]:
    for start in range(0, len(values), IN_LIST_CHUNK):
        yield values[start : start + IN_LIST_CHUNK]


__all__ = [
    "DuplicateGroup",
    "SheetCandidate",
    "as_utc",
    "find_duplicate_groups",
    "latest_status_rows",
    "latest_statuses",
]
