"""Per-entity transformers from legacy records to target rows."""

from __future__ import annotations

from collections import OrderedDict
from typing import Dict, Type

from .answers import AnswerTransformer
from .base import ChunkOutcome, EntityTransformer, Field, Junction, PreparedRow, Reference
from .organizations import AssociationTransformer, CompanyTransformer, StackTransformer
from .questionnaire import (
    ChoiceTransformer,
    ListTableColumnTransformer,
    ListTableRowTransformer,
    ListTableTransformer,
    QuestionTransformer,
    SectionTransformer,
    SubsectionTransformer,
    TagTransformer,
)
from .sheets import RequestTransformer, SheetStatusTransformer, SheetTransformer
from .users import UserTransformer

TRANSFORMERS: "OrderedDict[str, Type[EntityTransformer]]" = OrderedDict(
    (cls.entity_type, cls)
    for cls in (
        AssociationTransformer,
        StackTransformer,
        CompanyTransformer,
        UserTransformer,
        ListTableTransformer,
        ListTableColumnTransformer,
        SectionTransformer,
        SubsectionTransformer,
        TagTransformer,
        QuestionTransformer,
        ChoiceTransformer,
        SheetTransformer,
        ListTableRowTransformer,
        AnswerTransformer,
        RequestTransformer,
        SheetStatusTransformer,
    )
)


def get_transformer(entity_type: str, **kwargs) -> EntityTransformer:
    try:
        transformer_cls = TRANSFORMERS[entity_type]
    except KeyError as exc:
        raise ValueError(f"No transformer registered for entity type '{entity_type}'.") from exc
    return transformer_cls(**kwargs)


def source_types() -> Dict[str, str]:
    """Map entity types to the legacy API type names they are read from."""

    return {entity_type: cls.source_type for entity_type, cls in TRANSFORMERS.items()}


__all__ = [
    "AnswerTransformer",
    "AssociationTransformer",
    "ChoiceTransformer",
    "ChunkOutcome",
    "CompanyTransformer",
    "EntityTransformer",
    "Field",
    "Junction",
    "ListTableColumnTransformer",
    "ListTableRowTransformer",
    "ListTableTransformer",
    "PreparedRow",
    "QuestionTransformer",
    "Reference",
    "RequestTransformer",
    "SectionTransformer",
    "SheetStatusTransformer",
    "SheetTransformer",
    "StackTransformer",
    "SubsectionTransformer",
    "TRANSFORMERS",
    "TagTransformer",
    "UserTransformer",
    "get_transformer",
    "source_types",
]
