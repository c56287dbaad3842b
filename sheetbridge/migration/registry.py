"""
Ordered registry of migration stages.

Stage order follows foreign-key dependencies: a stage only runs after every
stage whose rows it references. ``validate_stage_order`` checks that at startup.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterable, Literal, Mapping, Sequence, Tuple

from .errors import StageOrderError
from .transformers import TRANSFORMERS

if TYPE_CHECKING:  # pragma: no cover
    from .pipeline.batch import StageStats
    from .pipeline.stages import StageContext

StageKind = Literal["entities", "junctions", "lineage"]

RUNNER_NAMES: dict[str, str] = {
    "entities": "run_entity_stage",
    "junctions": "run_junction_backfill",
    "lineage": "run_lineage_stage",
}


@dataclass(frozen=True)
class StageDescriptor:
    """Metadata describing one migration stage."""

    name: str
    entity_type: str
    depends_on: Tuple[str, ...] = ()
    kind: StageKind = "entities"
    junction_tables: Tuple[str, ...] = ()
    summary: str | None = None

    def run(self, context: "StageContext") -> "StageStats":
        from .pipeline import stages

        return getattr(stages, RUNNER_NAMES[self.kind])(self, context)


def _stage(name: str, entity_type: str, *depends_on: str, summary: str, **kwargs) -> tuple[str, StageDescriptor]:
    return name, StageDescriptor(name=name, entity_type=entity_type, depends_on=depends_on, summary=summary, **kwargs)


def get_stage_registry() -> Mapping[str, StageDescriptor]:
    """Return every stage in execution order."""

    return OrderedDict(
        (
            _stage("associations", "association", summary="Industry associations."),
            _stage("stacks", "stack", "associations", summary="Questionnaire stacks."),
            _stage("companies", "company", summary="Companies (owners, requestors, suppliers)."),
            _stage(
                "association_companies",
                "association",
                "associations",
                "companies",
                kind="junctions",
                junction_tables=("association_companies",),
                summary="Link associations to member companies.",
            ),
            _stage("users", "user", "companies", summary="User profiles."),
            _stage("list_tables", "list_table", summary="List tables."),
            _stage("list_table_columns", "list_table_column", "list_tables", summary="List table columns."),
            _stage("sections", "section", "stacks", "associations", summary="Questionnaire sections."),
            _stage("subsections", "subsection", "sections", summary="Questionnaire subsections."),
            _stage("tags", "tag", "companies", summary="Tags and their hidden-company lists."),
            _stage(
                "questions",
                "question",
                "companies",
                "sections",
                "subsections",
                "list_tables",
                "tags",
                summary="Questions with tag and company links.",
            ),
            _stage(
                "section_questions",
                "section",
                "sections",
                "questions",
                kind="junctions",
                junction_tables=("section_questions",),
                summary="Ordered questions per section.",
            ),
            _stage("choices", "choice", "questions", summary="Question choices."),
            _stage(
                "sheets",
                "sheet",
                "companies",
                "users",
                "tags",
                "questions",
                summary="Sheets without lineage pointers.",
            ),
            _stage("list_table_rows", "list_table_row", "list_tables", summary="List table rows."),
            _stage(
                "answers",
                "answer",
                "sheets",
                "questions",
                "choices",
                "companies",
                "users",
                "list_table_columns",
                "list_table_rows",
                "stacks",
                "subsections",
                summary="Answers (references verified before insert).",
            ),
            _stage("requests", "request", "companies", "sheets", "tags", summary="Sheet requests."),
            _stage("sheet_statuses", "sheet_status", "sheets", "companies", summary="Sheet workflow statuses."),
            _stage(
                "sheet_lineage",
                "sheet",
                "sheets",
                kind="lineage",
                summary="Link father/previous sheet versions.",
            ),
        )
    )


def validate_stage_order(registry: Mapping[str, StageDescriptor] | None = None) -> None:
    """Raise ``StageOrderError`` if a stage depends on an unknown or later stage."""

    registry = registry or get_stage_registry()
    seen: set[str] = set()
    for name, descriptor in registry.items():
        for dependency in descriptor.depends_on:
            if dependency not in registry:
                raise StageOrderError(f"Stage '{name}' depends on unknown stage '{dependency}'.")
            if dependency not in seen:
                raise StageOrderError(f"Stage '{name}' is registered before its dependency '{dependency}'.")
        seen.add(name)


def resolve_stages(
    selected: Sequence[str] | None,
    registry: Mapping[str, StageDescriptor] | None = None,
) -> Tuple[StageDescriptor, ...]:
    """
    Map selected stage names to descriptors in registry order, raising on unknowns.

    Dependencies are not added automatically; an empty selection means every stage.
    """

    registry = registry or get_stage_registry()
    if not selected:
        return tuple(registry.values())
    unknown = sorted({name for name in selected if name not in registry})
    if unknown:
        raise ValueError(
            "Unknown migration stages: " + ", ".join(unknown) + f". Choose from: {', '.join(registry)}."
        )
    wanted = set(selected)
    return tuple(descriptor for name, descriptor in registry.items() if name in wanted)


def referenced_entity_types(descriptor: StageDescriptor) -> Tuple[str, ...]:
    """Entity types whose mappings a stage reads: its own plus every reference and junction target."""

    if descriptor.kind == "lineage":
        return (descriptor.entity_type,)
    transformer_cls = TRANSFORMERS[descriptor.entity_type]
    types: list[str] = [descriptor.entity_type]
    types.extend(reference.entity_type for reference in transformer_cls.references)
    types.extend(
        junction.entity_type
        for junction in transformer_cls.junctions
        if junction.entity_type is not None
        and (descriptor.kind != "junctions" or junction.table in descriptor.junction_tables)
    )
    return tuple(dict.fromkeys(types))


def stage_names(descriptors: Iterable[StageDescriptor]) -> Tuple[str, ...]:
    return tuple(descriptor.name for descriptor in descriptors)


__all__ = [
    "StageDescriptor",
    "get_stage_registry",
    "referenced_entity_types",
    "resolve_stages",
    "stage_names",
    "validate_stage_order",
]
