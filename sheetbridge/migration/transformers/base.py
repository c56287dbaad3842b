"""
Schema-driven conversion of loosely typed legacy records into target rows.

Every transformer declares its columns explicitly (``Field``), the foreign keys
it has to resolve through the identity cache (``Reference``) and the many-to-many
fields it expands into junction rows (``Junction``). Field access never raises:
missing keys, empty strings and unparseable values fall back to the field's
declared default.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Literal, Mapping, Sequence

from sheetbridge.models.base import new_id
from sheetbridge.migration.errors import RecordValidationError

FieldKind = Literal["text", "int", "float", "bool", "date", "text_list"]

TRUE_STRINGS = frozenset({"true", "yes", "y", "1", "on"})
FALSE_STRINGS = frozenset({"false", "no", "n", "0", "off"})

SourcePath = str | tuple[str, ...]


@dataclass(frozen=True)
class Field:
    """A scalar column copied from the source record."""

    column: str
    source_key: SourcePath
    kind: FieldKind = "text"
    default: Any = None


@dataclass(frozen=True)
class Reference:
    """A foreign key resolved through the identity cache."""

    column: str
    source_key: str
    entity_type: str
    table: str
    required: bool = False


@dataclass(frozen=True)
class Junction:
    """
    A list field expanded into junction rows.

    With an ``entity_type`` the list holds source ids that are resolved and
    keyed on ``(left, right)``; without one the raw values are stored in order
    and keyed on ``(left, order_column)``.
    """

    table: str
    left_column: str
    right_column: str
    source_key: str
    entity_type: str | None = None
    ordered: bool = False
    order_column: str = "order_number"

    @property
    def conflict_columns(self) -> tuple[str, ...]:
        if self.entity_type is None:
            return (self.left_column, self.order_column)
        return (self.left_column, self.right_column)


@dataclass
class PreparedRow:
    source_id: str
    row: dict[str, Any]
    junctions: dict[str, list[dict[str, Any]]] = field(default_factory=dict)

    @property
    def target_id(self) -> str:
        return self.row["id"]


@dataclass
class ChunkOutcome:
    prepared: list[PreparedRow] = field(default_factory=list)
    failures: list[RecordValidationError] = field(default_factory=list)


# Coercion helpers ------------------------------------------------------------


def get_value(record: Mapping[str, Any], path: SourcePath) -> Any:
    """Read a top-level label or a nested path; anything missing is None."""

    if isinstance(path, str):
        return record.get(path)
    current: Any = record
    for key in path:
        if not isinstance(current, Mapping):
            return None
        current = current.get(key)
    return current


def to_text(value: Any) -> str | None:
    if value is None or isinstance(value, (dict, list)):
        return None
    text = value if isinstance(value, str) else str(value)
    return text if text.strip() else None


def to_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError, OverflowError):
        return None


def to_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def to_bool(value: Any) -> bool | None:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        if value in (0, 1):
            return bool(value)
        return None
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in TRUE_STRINGS:
            return True
        if lowered in FALSE_STRINGS:
            return False
    return None


def to_datetime(value: Any) -> datetime | None:
    """Parse ISO-8601 strings (``Z`` suffix allowed) and epoch milliseconds."""

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        try:
            parsed = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def to_text_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, (str, int, float)) and not isinstance(value, bool):
        value = [value]
    if not isinstance(value, (list, tuple)):
        return []
    return [text for text in (to_text(item) for item in value) if text is not None]


_COERCERS = {
    "text": to_text,
    "int": to_int,
    "float": to_float,
    "bool": to_bool,
    "date": to_datetime,
    "text_list": to_text_list,
}


def coerce(value: Any, kind: FieldKind, default: Any = None) -> Any:
    converted = _COERCERS[kind](value)
    if converted is None or converted == []:
        return default
    return converted


def source_id_of(record: Mapping[str, Any]) -> str | None:
    return to_text(record.get("_id"))


# Shared field sets -------------------------------------------------------------

AUDIT_FIELDS: tuple[Field, ...] = (
    Field("created_at", "Created Date", "date"),
    Field("modified_at", "Modified Date", "date"),
)
SLUG_FIELD = Field("slug", "Slug")


def created_by(required: bool = False) -> Reference:
    return Reference("created_by", "Created By", "user", "users", required=required)


class EntityTransformer:
    """
    Base transformer. Subclasses set the class attributes and may override
    ``validate`` and ``derive``.
    """

    source_type: str = ""
    entity_type: str = ""
    table: str = ""
    fields: tuple[Field, ...] = ()
    references: tuple[Reference, ...] = ()
    junctions: tuple[Junction, ...] = ()
    # Confirm that resolved ids still exist in their tables before using them.
    verify_references: bool = False

    def __init__(self, *, logger: logging.Logger | None = None) -> None:
        self.logger = logger or logging.getLogger(f"{__name__}.{self.entity_type or type(self).__name__}")

    # Hooks ----------------------------------------------------------------------

    def validate(self, record: Mapping[str, Any]) -> None:
        """Raise ``RecordValidationError`` to drop a record before it is transformed."""

    def derive(self, record: Mapping[str, Any], row: dict[str, Any]) -> None:
        """Fill columns computed from other columns; mutates ``row``."""

    def begin_chunk(self, store) -> None:
        """Load per-chunk lookup state that is not part of the identity cache."""

    # Transformation -------------------------------------------------------------

    def transform(self, record: Mapping[str, Any], resolved: Mapping[str, str | None]) -> dict[str, Any]:
        """
        Build the target row from ``record`` and already-resolved references.

        ``resolved`` maps reference column names to target ids. References whose
        id is missing are left out of the row.
        """

        source_id = source_id_of(record)
        row: dict[str, Any] = {"source_id": source_id}
        for spec in self.fields:
            row[spec.column] = coerce(get_value(record, spec.source_key), spec.kind, spec.default)
        for reference in self.references:
            target_id = resolved.get(reference.column)
            if target_id is None:
                if reference.required:
                    raise RecordValidationError(
                        source_id,
                        f"required reference '{reference.source_key}' could not be resolved",
                    )
                continue
            row[reference.column] = target_id
        self.derive(record, row)
        return row

    def junction_rows(
        self,
        record: Mapping[str, Any],
        left_id: str,
        lookups: Mapping[str, Mapping[str, str]],
    ) -> dict[str, list[dict[str, Any]]]:
        rows: dict[str, list[dict[str, Any]]] = {}
        for junction in self.junctions:
            values = to_text_list(record.get(junction.source_key))
            entries: list[dict[str, Any]] = []
            seen: set[str] = set()
            for position, value in enumerate(values):
                if junction.entity_type is None:
                    right = value
                else:
                    right = lookups.get(junction.entity_type, {}).get(value)
                    if right is None or right in seen:
                        continue
                    seen.add(right)
                entry = {junction.left_column: left_id, junction.right_column: right}
                if junction.ordered:
                    entry[junction.order_column] = position
                entries.append(entry)
            if entries:
                rows[junction.table] = entries
        return rows

    def prepare_chunk(self, records: Sequence[Mapping[str, Any]], cache, store) -> ChunkOutcome:
        """
        Resolve every reference for the chunk at once, then build rows.

        One ``resolve_many`` call is issued per referenced entity type. Each
        prepared row gets its primary key here so junction rows can point at it
        before the insert.
        """

        self.begin_chunk(store)
        lookups = self.resolve_chunk_references(records, cache, store)
        outcome = ChunkOutcome()
        for record in records:
            source_id = source_id_of(record)
            try:
                if source_id is None:
                    raise RecordValidationError(None, "record has no _id")
                self.validate(record)
                resolved = {
                    reference.column: lookups.get(reference.entity_type, {}).get(
                        to_text(record.get(reference.source_key)) or ""
                    )
                    for reference in self.references
                }
                row = self.transform(record, resolved)
            except RecordValidationError as exc:
                outcome.failures.append(exc)
                continue
            row["id"] = new_id()
            outcome.prepared.append(
                PreparedRow(
                    source_id=source_id,
                    row=row,
                    junctions=self.junction_rows(record, row["id"], lookups),
                )
            )
        return outcome

    def resolve_chunk_references(
        self,
        records: Iterable[Mapping[str, Any]],
        cache,
        store,
    ) -> dict[str, dict[str, str]]:
        """Return ``{entity_type: {source_id: target_id}}`` for every id the chunk mentions."""

        wanted: dict[str, list[str]] = defaultdict(list)
        tables: dict[str, str] = {}
        for record in records:
            for reference in self.references:
                value = to_text(record.get(reference.source_key))
                if value:
                    wanted[reference.entity_type].append(value)
                    tables[reference.entity_type] = reference.table
            for junction in self.junctions:
                if junction.entity_type is not None:
                    wanted[junction.entity_type].extend(to_text_list(record.get(junction.source_key)))

        lookups: dict[str, dict[str, str]] = {}
        for entity_type, source_ids in wanted.items():
            unique_ids = list(dict.fromkeys(source_ids))
            targets = cache.resolve_many(unique_ids, entity_type)
            lookups[entity_type] = {
                source_id: target_id for source_id, target_id in zip(unique_ids, targets) if target_id
            }

        if self.verify_references:
            for entity_type, table in tables.items():
                mapping = lookups.get(entity_type, {})
                existing = store.existing_ids(table, mapping.values())
                dangling = [source_id for source_id, target_id in mapping.items() if target_id not in existing]
                for source_id in dangling:
                    mapping.pop(source_id)
                if dangling:
                    self.logger.debug(
                        "Dropped dangling references",
                        extra={"entity_type": entity_type, "dangling_count": len(dangling)},
                    )
        return lookups


__all__ = [
    "AUDIT_FIELDS",
    "ChunkOutcome",
    "EntityTransformer",
    "Field",
    "Junction",
    "PreparedRow",
    "Reference",
    "SLUG_FIELD",
    "coerce",
    "created_by",
    "get_value",
    "source_id_of",
    "to_bool",
    "to_datetime",
    "to_float",
    "to_int",
    "to_text",
    "to_text_list",
]
