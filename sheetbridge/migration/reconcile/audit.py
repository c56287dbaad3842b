"""
Audit export and operator-gated deletion for reconciliation decisions.

Analysis never deletes anything. The audit CSV is the hand-off: an operator
reviews it, then passes it back to ``apply_resolutions`` with ``confirm=True``.
Rule-based cleanup rows carry no duplicate group; flipping one to ``keep``
spares that sheet.
"""

from __future__ import annotations

import csv
import logging
from collections import defaultdict
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Iterable, Sequence, Union

from sheetbridge.migration.errors import ReconciliationError
from sheetbridge.migration.store import IN_LIST_CHUNK, in_

from .cleanup import CLEANUP_CATEGORIES, DUPLICATE, CleanupCandidate, CleanupPlan
from .scoring import GroupResolution

AUDIT_COLUMNS = (
    "duplicate_group",
    "category",
    "sheet_id",
    "sheet_name",
    "company_id",
    "status",
    "status_version",
    "new_status",
    "version",
    "answer_count",
    "has_chemicals",
    "modified_at",
    "score",
    "decision",
    "reasons",
)

LEADING_FORMULA_CHARACTERS = ("=", "+", "-", "@")

SHEET_JUNCTIONS = (
    "sheet_shareable_companies",
    "sheet_tags",
    "sheet_questions",
    "sheet_supplier_users_assigned",
)
ANSWER_JUNCTIONS = ("answer_shareable_companies", "answer_text_choices")


def _sanitize_csv(value: object) -> str:
    if value is None:
        return ""
    text = str(value)
    if text and text[0] in LEADING_FORMULA_CHARACTERS:
        return f"'{text}"
    return text


AuditSource = Union[CleanupPlan, Iterable[GroupResolution]]


def _split_source(source: AuditSource) -> tuple[Sequence[CleanupCandidate], Iterable[GroupResolution]]:
    if isinstance(source, CleanupPlan):
        return source.cleanup, source.resolutions
    return (), source


def _cleanup_row(candidate: CleanupCandidate) -> dict[str, str]:
    return {
        "duplicate_group": "",
        "category": candidate.category,
        "sheet_id": candidate.sheet_id,
        "sheet_name": _sanitize_csv(candidate.name),
        "company_id": candidate.company_id or "",
        "status": "",
        "status_version": "",
        "new_status": _sanitize_csv(candidate.new_status),
        "version": "",
        "answer_count": "",
        "has_chemicals": "",
        "modified_at": candidate.modified_at.isoformat() if candidate.modified_at else "",
        "score": "",
        "decision": "delete",
        "reasons": _sanitize_csv(candidate.reason),
    }


def audit_rows(source: AuditSource) -> list[dict[str, str]]:
    """Cleanup rows first, then every duplicate group member in rank order."""

    cleanup, resolutions = _split_source(source)
    rows = [_cleanup_row(candidate) for candidate in cleanup]
    for resolution in resolutions:
        for scored, decision, reason in resolution.decisions():
            candidate = scored.candidate
            rows.append(
                {
                    "duplicate_group": _sanitize_csv(resolution.group.key),
                    "category": DUPLICATE,
                    "sheet_id": candidate.sheet_id,
                    "sheet_name": _sanitize_csv(candidate.name),
                    "company_id": candidate.company_id or "",
                    "status": _sanitize_csv(candidate.status),
                    "status_version": "" if candidate.status_version is None else str(candidate.status_version),
                    "new_status": _sanitize_csv(candidate.new_status),
                    "version": "" if candidate.version is None else str(candidate.version),
                    "answer_count": str(candidate.answer_count),
                    "has_chemicals": "true" if candidate.has_chemicals else "false",
                    "modified_at": candidate.last_touched.isoformat() if candidate.last_touched else "",
                    "score": f"{scored.score:.2f}",
                    "decision": decision,
                    "reasons": _sanitize_csv(reason),
                }
            )
    return rows


def write_audit_csv(source: AuditSource, target: str | Path | IO[str]) -> int:
    """Write the audit for a plan or a list of resolutions; returns the number of rows written."""

    rows = audit_rows(source)
    if isinstance(target, (str, Path)):
        with Path(target).open("w", encoding="utf-8", newline="") as handle:
            _write_rows(handle, rows)
    else:
        _write_rows(target, rows)
    return len(rows)


def _write_rows(handle: IO[str], rows: Sequence[dict[str, str]]) -> None:
    writer = csv.DictWriter(handle, fieldnames=AUDIT_COLUMNS)
    writer.writeheader()
    writer.writerows(rows)


def read_delete_ids(path: str | Path) -> list[str]:
    """
    Return the sheet ids marked ``delete`` in an audit file.

    Every duplicate group that deletes something must still keep exactly one
    sheet, and a sheet may not be both kept and deleted. Cleanup rows stand
    alone. Files without a ``category`` column are read as duplicate rows only.
    """

    keeps: dict[str, list[str]] = defaultdict(list)
    deletes: dict[str, list[str]] = defaultdict(list)
    cleanup_deletes: list[str] = []
    spared: set[str] = set()
    with Path(path).open("r", encoding="utf-8", newline="") as handle:
        reader = csv.DictReader(handle)
        missing = {"duplicate_group", "sheet_id", "decision"} - set(reader.fieldnames or ())
        if missing:
            raise ReconciliationError(f"Audit file {path} is missing columns: {', '.join(sorted(missing))}.")
        for line_number, row in enumerate(reader, start=2):
            sheet_id = (row.get("sheet_id") or "").strip()
            decision = (row.get("decision") or "").strip().lower()
            category = (row.get("category") or DUPLICATE).strip().lower()
            group = row.get("duplicate_group") or ""
            if not sheet_id:
                raise ReconciliationError(f"Audit file {path} line {line_number} has no sheet_id.")
            if decision not in ("keep", "delete"):
                raise ReconciliationError(
                    f"Audit file {path} line {line_number} has unknown decision {row.get('decision')!r}."
                )
            if category in CLEANUP_CATEGORIES:
                if decision == "delete":
                    cleanup_deletes.append(sheet_id)
                else:
                    spared.add(sheet_id)
            elif category == DUPLICATE:
                if decision == "delete":
                    deletes[group].append(sheet_id)
                else:
                    keeps[group].append(sheet_id)
            else:
                raise ReconciliationError(
                    f"Audit file {path} line {line_number} has unknown category {row.get('category')!r}."
                )

    for group in deletes:
        if len(keeps.get(group, ())) != 1:
            raise ReconciliationError(f"Duplicate group {group!r} must keep exactly one sheet.")
    kept = spared.union(sheet_id for sheet_ids in keeps.values() for sheet_id in sheet_ids)
    delete_ids = list(
        dict.fromkeys([*cleanup_deletes, *(sheet_id for sheet_ids in deletes.values() for sheet_id in sheet_ids)])
    )
    overlap = kept.intersection(delete_ids)
    if overlap:
        raise ReconciliationError(f"Sheets marked both keep and delete: {', '.join(sorted(overlap))}.")
    return delete_ids


@dataclass
class DeletionSummary:
    sheets_deleted: int = 0
    answers_deleted: int = 0
    statuses_deleted: int = 0
    chemicals_deleted: int = 0
    junction_rows_deleted: int = 0
    references_cleared: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "sheets_deleted": self.sheets_deleted,
            "answers_deleted": self.answers_deleted,
            "statuses_deleted": self.statuses_deleted,
            "chemicals_deleted": self.chemicals_deleted,
            "junction_rows_deleted": self.junction_rows_deleted,
            "references_cleared": self.references_cleared,
        }


def apply_resolutions(
    store,
    resolutions: CleanupPlan | Iterable[GroupResolution | CleanupCandidate | str],
    *,
    confirm: bool = False,
    logger: logging.Logger | None = None,
) -> DeletionSummary:
    """
    Delete what ``resolutions`` marks: a whole ``CleanupPlan``, group
    resolutions, cleanup candidates, or plain sheet ids.

    Dependent answers, statuses, chemical rows and junction rows go with each
    sheet; lineage pointers, status back-references and request links that name
    a deleted sheet are nulled. Everything is committed in one transaction.
    """

    logger = logger or logging.getLogger(__name__)
    if not confirm:
        raise ReconciliationError("Refusing to delete sheets without confirmation.")

    if isinstance(resolutions, CleanupPlan):
        resolutions = resolutions.delete_ids
    wanted: list[str] = []
    for item in resolutions:
        if isinstance(item, GroupResolution):
            wanted.extend(item.delete_ids)
        elif isinstance(item, CleanupCandidate):
            wanted.append(item.sheet_id)
        else:
            wanted.append(item)
    sheet_ids = [sheet_id for sheet_id in dict.fromkeys(wanted) if sheet_id]
    existing = store.existing_ids("sheets", sheet_ids)
    sheet_ids = [sheet_id for sheet_id in sheet_ids if sheet_id in existing]

    summary = DeletionSummary()
    try:
        for start in range(0, len(sheet_ids), IN_LIST_CHUNK):
            _delete_sheets(store, sheet_ids[start : start + IN_LIST_CHUNK], summary)
        store.commit()
    except Exception:
        store.rollback()
        logger.exception("Sheet deletion rolled back", extra={"sheet_count": len(sheet_ids)})
        raise

    logger.info("Reconciled sheets deleted", extra=summary.to_dict())
    return summary


def _delete_sheets(store, batch: Sequence[str], summary: DeletionSummary) -> None:
    answer_ids = [row["id"] for row in store.select("answers", ("id",), [in_("sheet_id", batch)])]
    for start in range(0, len(answer_ids), IN_LIST_CHUNK):
        answer_batch = answer_ids[start : start + IN_LIST_CHUNK]
        for table in ANSWER_JUNCTIONS:
            summary.junction_rows_deleted += store.delete(table, [in_("answer_id", answer_batch)])
        summary.answers_deleted += store.delete("answers", [in_("id", answer_batch)])

    for table in SHEET_JUNCTIONS:
        summary.junction_rows_deleted += store.delete(table, [in_("sheet_id", batch)])
    summary.statuses_deleted += store.delete("sheet_statuses", [in_("sheet_id", batch)])
    summary.chemicals_deleted += store.delete("sheet_chemicals", [in_("sheet_id", batch)])

    summary.references_cleared += store.update(
        "sheet_statuses", {"father_of_sheet_id": None}, [in_("father_of_sheet_id", batch)]
    )
    summary.references_cleared += store.update("requests", {"sheet_id": None}, [in_("sheet_id", batch)])
    for column in ("father_sheet_id", "prev_sheet_id"):
        summary.references_cleared += store.update("sheets", {column: None}, [in_(column, batch)])

    summary.sheets_deleted += store.delete("sheets", [in_("id", batch)])


__all__ = [
    "AUDIT_COLUMNS",
    "DeletionSummary",
    "apply_resolutions",
    "audit_rows",
    "read_delete_ids",
    "write_audit_csv",
]
