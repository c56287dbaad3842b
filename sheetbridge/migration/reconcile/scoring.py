"""
Composite scoring that picks one sheet to keep per duplicate group.

Signals are summed in a fixed tier order (workflow status plus its version
bonus, chemical data, completeness, recency) and the same order breaks ties
before falling back to the sheet id, so the outcome depends only on member
attributes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Literal, Sequence

from config.reconciliation import DEFAULT_PROFILE, ScoringProfile
from sheetbridge.migration.metrics import record_reconcile_decisions

from .groups import DuplicateGroup, SheetCandidate, as_utc, find_duplicate_groups

Decision = Literal["keep", "delete"]


@dataclass(frozen=True)
class ScoreBreakdown:
    status: float = 0.0
    chemical: float = 0.0
    completeness: float = 0.0
    recency: float = 0.0

    @property
    def total(self) -> float:
        return self.status + self.chemical + self.completeness + self.recency


@dataclass(frozen=True)
class ScoredCandidate:
    candidate: SheetCandidate
    breakdown: ScoreBreakdown
    reasons: tuple[str, ...]

    @property
    def sheet_id(self) -> str:
        return self.candidate.sheet_id

    @property
    def score(self) -> float:
        return round(self.breakdown.total, 2)

    def rank_key(self) -> tuple:
        breakdown = self.breakdown
        return (
            -breakdown.total,
            -breakdown.status,
            -breakdown.chemical,
            -breakdown.completeness,
            -breakdown.recency,
            self.sheet_id,
        )


@dataclass(frozen=True)
class GroupResolution:
    """Exactly one keeper and the remaining members marked for deletion."""

    group: DuplicateGroup
    keep: ScoredCandidate
    delete: tuple[ScoredCandidate, ...]

    @property
    def delete_ids(self) -> tuple[str, ...]:
        return tuple(scored.sheet_id for scored in self.delete)

    def decisions(self) -> list[tuple[ScoredCandidate, Decision, str]]:
        """Members in rank order with their decision and audit explanation."""

        keep_reason = "Best: " + _join_reasons(self.keep.reasons)
        entries: list[tuple[ScoredCandidate, Decision, str]] = [(self.keep, "keep", keep_reason)]
        for scored in self.delete:
            entries.append(
                (scored, "delete", f"Duplicate of {self.keep.sheet_id}: " + _join_reasons(scored.reasons))
            )
        return entries


def _join_reasons(reasons: Sequence[str]) -> str:
    return ", ".join(reasons) if reasons else "no distinguishing signals"


class ReconciliationScorer:
    """
    Score and resolve duplicate groups.

    ``now`` is fixed at construction so repeated resolutions agree.
    """

    def __init__(self, profile: ScoringProfile | None = None, *, now: datetime | None = None) -> None:
        self.profile = profile or DEFAULT_PROFILE
        self.now = as_utc(now) if now is not None else datetime.now(timezone.utc)

    def score(self, candidate: SheetCandidate) -> ScoredCandidate:
        profile = self.profile
        reasons: list[str] = []

        status_points = profile.status_points(candidate.status)
        status_label = candidate.status
        if status_points is None:
            status_points = profile.new_status_points(candidate.new_status)
            status_label = candidate.new_status
        if status_points is None:
            status_points = 0.0
        elif status_label:
            reasons.append(f"{status_label.strip().lower()} status")
        if candidate.has_status_row:
            status_points += profile.version_points(candidate.status_version)
            if (candidate.status_version or 1) > 1:
                reasons.append(f"version {candidate.status_version}")

        chemical_points = profile.chemical_bonus if candidate.has_chemicals else 0.0
        if candidate.has_chemicals:
            reasons.append("has chemical data")

        completeness_points = min(candidate.answer_count * profile.answer_weight, profile.answer_cap)
        if candidate.answer_count > 0:
            reasons.append(f"{candidate.answer_count} answers")

        recency_points = 0.0
        touched = candidate.last_touched
        if touched is not None:
            age_days = max((self.now - touched).total_seconds() / 86400.0, 0.0)
            decay = age_days / profile.recency_window_days * profile.recency_max
            recency_points = max(0.0, profile.recency_max - decay)
            if age_days < profile.recently_updated_days:
                reasons.append("recently updated")

        return ScoredCandidate(
            candidate=candidate,
            breakdown=ScoreBreakdown(
                status=status_points,
                chemical=chemical_points,
                completeness=completeness_points,
                recency=recency_points,
            ),
            reasons=tuple(reasons),
        )

    def rank(self, members: Iterable[SheetCandidate]) -> list[ScoredCandidate]:
        return sorted((self.score(member) for member in members), key=ScoredCandidate.rank_key)

    def resolve(self, group: DuplicateGroup) -> GroupResolution:
        ranked = self.rank(group.members)
        if not ranked:
            raise ValueError(f"Duplicate group {group.key} has no members.")
        return GroupResolution(group=group, keep=ranked[0], delete=tuple(ranked[1:]))

    def resolve_all(self, groups: Iterable[DuplicateGroup]) -> list[GroupResolution]:
        resolutions = [self.resolve(group) for group in groups]
        record_reconcile_decisions(
            keep=len(resolutions),
            delete=sum(len(resolution.delete) for resolution in resolutions),
        )
        return resolutions


def resolve_duplicates(
    store,
    *,
    company_id: str | None = None,
    scorer: ReconciliationScorer | None = None,
    exclude: Iterable[str] = (),
    logger: logging.Logger | None = None,
) -> list[GroupResolution]:
    """Find and resolve every duplicate group in the target store. Reads only."""

    logger = logger or logging.getLogger(__name__)
    scorer = scorer or ReconciliationScorer()
    groups = find_duplicate_groups(store, company_id=company_id, exclude=exclude)
    resolutions = scorer.resolve_all(groups)
    logger.info(
        "Duplicate sheets analysed",
        extra={
            "company_id": company_id,
            "duplicate_groups": len(resolutions),
            "delete_candidates": sum(len(resolution.delete) for resolution in resolutions),
            "scoring_profile": scorer.profile.key,
        },
    )
    return resolutions


__all__ = [
    "GroupResolution",
    "ReconciliationScorer",
    "ScoreBreakdown",
    "ScoredCandidate",
    "resolve_duplicates",
]
