"""
Sheets deleted outright by name rules, ahead of duplicate scoring.

Two rules come from the scoring profile's name fragments: every sheet owned by
an internal company, and any other sheet whose own name marks it as test or
example data. Sheets caught here are left out of duplicate grouping, so a
cleanup candidate never becomes a group's keeper.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from config.reconciliation import DEFAULT_PROFILE, ScoringProfile
from sheetbridge.migration.metrics import record_reconcile_decisions
from sheetbridge.migration.store import eq

from .groups import as_utc
from .scoring import GroupResolution, ReconciliationScorer, resolve_duplicates

INTERNAL_COMPANY = "internal_company"
TEST_NAME = "test_name"
DUPLICATE = "duplicate"
CLEANUP_CATEGORIES = (INTERNAL_COMPANY, TEST_NAME)

_REASONS = {
    INTERNAL_COMPANY: "Internal company sheet",
    TEST_NAME: "Test/example sheet name",
}


@dataclass(frozen=True)
class CleanupCandidate:
    sheet_id: str
    name: str | None
    company_id: str | None
    company_name: str | None
    category: str
    new_status: str | None = None
    modified_at: datetime | None = None

    @property
    def reason(self) -> str:
        label = _REASONS[self.category]
        if self.category == INTERNAL_COMPANY and self.company_name:
            return f"{label} ({self.company_name})"
        return label


def find_cleanup_candidates(
    store,
    profile: ScoringProfile | None = None,
    *,
    company_id: str | None = None,
) -> list[CleanupCandidate]:
    """Internal-company sheets first, then test/example sheets; each ordered by company, name, id."""

    profile = profile or DEFAULT_PROFILE
    company_filters = [eq("id", company_id)] if company_id else []
    company_names = {row["id"]: row["name"] for row in store.select("companies", ("id", "name"), company_filters)}
    internal = {owner for owner, name in company_names.items() if profile.is_internal_company(name)}

    sheet_filters = [eq("company_id", company_id)] if company_id else []
    rows = store.select(
        "sheets",
        ("id", "name", "company_id", "new_status", "modified_at", "created_at"),
        sheet_filters,
        order_by=("company_id", "name", "id"),
    )

    candidates: list[CleanupCandidate] = []
    for row in rows:
        if row["company_id"] in internal:
            category = INTERNAL_COMPANY
        elif profile.is_test_sheet(row["name"]):
            category = TEST_NAME
        else:
            continue
        candidates.append(
            CleanupCandidate(
                sheet_id=row["id"],
                name=row["name"],
                company_id=row["company_id"],
                company_name=company_names.get(row["company_id"]),
                category=category,
                new_status=row["new_status"],
                modified_at=as_utc(row["modified_at"]) or as_utc(row["created_at"]),
            )
        )
    candidates.sort(key=lambda candidate: candidate.category != INTERNAL_COMPANY)
    return candidates


@dataclass(frozen=True)
class CleanupPlan:
    """Everything one ``reconcile analyze`` pass marks: rule-based deletions plus duplicate resolutions."""

    cleanup: tuple[CleanupCandidate, ...]
    resolutions: tuple[GroupResolution, ...]

    @property
    def delete_ids(self) -> tuple[str, ...]:
        ids = [candidate.sheet_id for candidate in self.cleanup]
        for resolution in self.resolutions:
            ids.extend(resolution.delete_ids)
        return tuple(dict.fromkeys(ids))

    def counts(self) -> dict[str, int]:
        return {
            INTERNAL_COMPANY: sum(1 for candidate in self.cleanup if candidate.category == INTERNAL_COMPANY),
            TEST_NAME: sum(1 for candidate in self.cleanup if candidate.category == TEST_NAME),
            DUPLICATE: sum(len(resolution.delete) for resolution in self.resolutions),
        }


def plan_cleanup(
    store,
    *,
    company_id: str | None = None,
    scorer: ReconciliationScorer | None = None,
    include_rules: bool = True,
    logger: logging.Logger | None = None,
) -> CleanupPlan:
    """Build the full deletion plan. Reads only."""

    logger = logger or logging.getLogger(__name__)
    scorer = scorer or ReconciliationScorer()
    cleanup: list[CleanupCandidate] = []
    if include_rules:
        cleanup = find_cleanup_candidates(store, scorer.profile, company_id=company_id)
        record_reconcile_decisions(keep=0, delete=len(cleanup))
    resolutions = resolve_duplicates(
        store,
        company_id=company_id,
        scorer=scorer,
        exclude=[candidate.sheet_id for candidate in cleanup],
        logger=logger,
    )
    plan = CleanupPlan(cleanup=tuple(cleanup), resolutions=tuple(resolutions))
    logger.info("Cleanup plan built", extra={"company_id": company_id, **plan.counts()})
    return plan


__all__ = [
    "CLEANUP_CATEGORIES",
    "CleanupCandidate",
    "CleanupPlan",
    "DUPLICATE",
    "INTERNAL_COMPANY",
    "TEST_NAME",
    "find_cleanup_candidates",
    "plan_cleanup",
]
