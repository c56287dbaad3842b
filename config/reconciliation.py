"""
Scoring profile for duplicate-sheet reconciliation.

The reconciliation scorer loads this module to decide how much each signal
contributes when it ranks the members of a duplicate group. Signals are summed
in a fixed tier order: workflow status, chemical data, completeness, recency.
The same file carries the name patterns that mark internal and test sheets
for cleanup before duplicates are grouped.

Configuration is file-backed so we do not require database tables or migrations.
Operators can override the defaults by providing a JSON or YAML file path
through the ``RECONCILE_SCORING_PROFILE_PATH`` environment variable.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, MutableMapping

import yaml

# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------


def _default_status_scores() -> dict[str, float]:
    return {
        "approved": 100.0,
        "ready for review": 50.0,
        "under review": 25.0,
        "rejected": 0.0,
        "canceled": 0.0,
    }


def _default_new_status_scores() -> dict[str, float]:
    return {
        "approved": 100.0,
        "completed": 90.0,
    }


@dataclass(frozen=True)
class ScoringProfile:
    """
    Weights for each scoring tier.

    Attributes:
        status_scores: Points per workflow status (keys are lower-cased).
        new_status_scores: Fallback points keyed on the sheet's own status
            column, used when no workflow status row exists.
        version_weight: Points per status version, added whenever a workflow
            status row exists (an unversioned row counts as version 1).
        chemical_bonus: Flat bonus when the sheet has chemical records.
        answer_weight: Points per attached answer.
        answer_cap: Ceiling for the completeness tier.
        recency_max: Points for a sheet modified right now.
        recency_window_days: Days over which the recency bonus decays to zero.
        recently_updated_days: Age under which "recently updated" is reported.
        internal_company_patterns: Case-insensitive substrings of company
            names whose sheets are all internal test data.
        test_name_patterns: Case-insensitive substrings of sheet names that
            mark a test or example sheet.
    """

    key: str = "default"
    label: str = "Default reconciliation scoring"
    status_scores: Mapping[str, float] = field(default_factory=_default_status_scores)
    new_status_scores: Mapping[str, float] = field(default_factory=_default_new_status_scores)
    version_weight: float = 10.0
    chemical_bonus: float = 50.0
    answer_weight: float = 1.0
    answer_cap: float = 50.0
    recency_max: float = 10.0
    recency_window_days: float = 365.0
    recently_updated_days: float = 30.0
    internal_company_patterns: tuple[str, ...] = ("stacks",)
    test_name_patterns: tuple[str, ...] = ("test", "example", "stacks")

    def status_points(self, status: str | None) -> float | None:
        if not status:
            return None
        return self.status_scores.get(status.strip().lower())

    def new_status_points(self, status: str | None) -> float | None:
        if not status:
            return None
        return self.new_status_scores.get(status.strip().lower())

    def version_points(self, version: int | None) -> float:
        return (version or 1) * self.version_weight

    def is_internal_company(self, company_name: str | None) -> bool:
        return _contains_any(company_name, self.internal_company_patterns)

    def is_test_sheet(self, sheet_name: str | None) -> bool:
        return _contains_any(sheet_name, self.test_name_patterns)


def _contains_any(value: str | None, patterns: tuple[str, ...]) -> bool:
    if not value:
        return False
    lowered = value.lower()
    return any(pattern.lower() in lowered for pattern in patterns if pattern)


DEFAULT_PROFILE = ScoringProfile()


# ---------------------------------------------------------------------------
# Loading helpers
# ---------------------------------------------------------------------------


class ReconciliationConfigError(RuntimeError):
    """Raised when a scoring override cannot be parsed."""


def _load_override(path: Path) -> MutableMapping[str, object]:
    if not path.exists():
        raise ReconciliationConfigError(f"Scoring override file {path} does not exist.")
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:  # pragma: no cover - filesystem failure
        raise ReconciliationConfigError(f"Unable to read scoring override file {path}: {exc}") from exc

    if path.suffix.lower() in {".yaml", ".yml"}:
        data = yaml.safe_load(text)
    else:
        data = json.loads(text)

    if not isinstance(data, Mapping):
        raise ReconciliationConfigError("Scoring override must be a JSON/YAML object.")
    return dict(data)


def _coerce_number(raw: Mapping[str, object], key: str, default: float) -> float:
    value = raw.get(key)
    if value is None:
        return default
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise ReconciliationConfigError(f"{key} must be numeric, got {value!r}.") from exc
    if number < 0:
        raise ReconciliationConfigError(f"{key} must not be negative.")
    return number


def _coerce_scores(raw: object, *, name: str, default: Mapping[str, float]) -> dict[str, float]:
    if raw is None:
        return dict(default)
    if not isinstance(raw, Mapping):
        raise ReconciliationConfigError(f"{name} must be a mapping of status to points.")
    scores: dict[str, float] = {}
    for status, points in raw.items():
        label = str(status).strip().lower()
        if not label:
            raise ReconciliationConfigError(f"{name} contains an empty status label.")
        try:
            scores[label] = float(points)  # type: ignore[arg-type]
        except (TypeError, ValueError) as exc:
            raise ReconciliationConfigError(f"{name}.{label} must be numeric.") from exc
    return scores


def _coerce_patterns(raw: object, *, name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    if raw is None:
        return default
    if isinstance(raw, str):
        raw = [raw]
    if not isinstance(raw, (list, tuple)):
        raise ReconciliationConfigError(f"{name} must be a list of name fragments.")
    return tuple(dict.fromkeys(str(item).strip().lower() for item in raw if str(item).strip()))


def _coerce_profile(raw: Mapping[str, object]) -> ScoringProfile:
    key = str(raw.get("key") or DEFAULT_PROFILE.key).strip() or DEFAULT_PROFILE.key
    label = str(raw.get("label") or DEFAULT_PROFILE.label).strip() or DEFAULT_PROFILE.label
    window = _coerce_number(raw, "recency_window_days", DEFAULT_PROFILE.recency_window_days)
    if window == 0:
        raise ReconciliationConfigError("recency_window_days must be greater than zero.")
    return ScoringProfile(
        key=key,
        label=label,
        status_scores=_coerce_scores(
            raw.get("status_scores"), name="status_scores", default=DEFAULT_PROFILE.status_scores
        ),
        new_status_scores=_coerce_scores(
            raw.get("new_status_scores"),
            name="new_status_scores",
            default=DEFAULT_PROFILE.new_status_scores,
        ),
        version_weight=_coerce_number(raw, "version_weight", DEFAULT_PROFILE.version_weight),
        chemical_bonus=_coerce_number(raw, "chemical_bonus", DEFAULT_PROFILE.chemical_bonus),
        answer_weight=_coerce_number(raw, "answer_weight", DEFAULT_PROFILE.answer_weight),
        answer_cap=_coerce_number(raw, "answer_cap", DEFAULT_PROFILE.answer_cap),
        recency_max=_coerce_number(raw, "recency_max", DEFAULT_PROFILE.recency_max),
        recency_window_days=window,
        recently_updated_days=_coerce_number(
            raw, "recently_updated_days", DEFAULT_PROFILE.recently_updated_days
        ),
        internal_company_patterns=_coerce_patterns(
            raw.get("internal_company_patterns"),
            name="internal_company_patterns",
            default=DEFAULT_PROFILE.internal_company_patterns,
        ),
        test_name_patterns=_coerce_patterns(
            raw.get("test_name_patterns"),
            name="test_name_patterns",
            default=DEFAULT_PROFILE.test_name_patterns,
        ),
    )


def load_scoring_profile(env: Mapping[str, str] | None = None) -> ScoringProfile:
    """
    Load the active scoring profile.

    If ``RECONCILE_SCORING_PROFILE_PATH`` is set, its JSON/YAML content
    overrides the defaults. Otherwise the built-in profile is used.
    """

    env_map = env or {}
    override_path = env_map.get("RECONCILE_SCORING_PROFILE_PATH")
    if not override_path:
        return DEFAULT_PROFILE
    return _coerce_profile(_load_override(Path(override_path)))


__all__ = [
    "DEFAULT_PROFILE",
    "ReconciliationConfigError",
    "ScoringProfile",
    "load_scoring_profile",
]
