"""Sheet reconciliation: cleanup rules, duplicate grouping and scoring, audit export and gated deletion."""

from .audit import AUDIT_COLUMNS, DeletionSummary, apply_resolutions, audit_rows, read_delete_ids, write_audit_csv
from .cleanup import CleanupCandidate, CleanupPlan, find_cleanup_candidates, plan_cleanup
from .groups import DuplicateGroup, SheetCandidate, find_duplicate_groups
from .scoring import GroupResolution, ReconciliationScorer, ScoreBreakdown, ScoredCandidate, resolve_duplicates

__all__ = [
    "AUDIT_COLUMNS",
    "CleanupCandidate",
    "CleanupPlan",
    "DeletionSummary",
    "DuplicateGroup",
    "GroupResolution",
    "ReconciliationScorer",
    "ScoreBreakdown",
    "ScoredCandidate",
    "SheetCandidate",
    "apply_resolutions",
    "audit_rows",
    "find_cleanup_candidates",
    "find_duplicate_groups",
    "plan_cleanup",
    "read_delete_ids",
    "resolve_duplicates",
    "write_audit_csv",
]
