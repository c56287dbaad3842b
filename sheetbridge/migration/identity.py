"""
Identity resolution between legacy record ids and target primary keys.

``IdentityCache`` is the only shared mutable state of a migration run. It is
append-only: a source id is mapped once and never re-pointed. Persistence goes
through a ``MappingStore`` so tests can swap the SQL table for a dict.
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from typing import Iterable, Mapping, Protocol, Sequence

from sqlalchemy import insert, select
from sqlalchemy.orm import Session

from sheetbridge.models.base import db
from sheetbridge.models.migration import MigrationIdMap

from .errors import MappingConflictError

ENTITY_TYPES: tuple[str, ...] = (
    "association",
    "stack",
    "company",
    "user",
    "list_table",
    "list_table_column",
    "list_table_row",
    "section",
    "subsection",
    "tag",
    "question",
    "choice",
    "sheet",
    "answer",
    "request",
    "sheet_status",
)

LOOKUP_CHUNK = 500


class MappingStore(Protocol):
    """Durable backend for mapping records."""

    def load_all(self, entity_type: str) -> dict[str, str]: ...

    def lookup(self, entity_type: str, source_ids: Sequence[str]) -> dict[str, str]: ...

    def lookup_targets(self, entity_type: str, target_ids: Sequence[str]) -> dict[str, str]: ...

    def save(self, entity_type: str, pairs: Sequence[tuple[str, str]]) -> None: ...


class SqlMappingStore:
    """Mapping records stored in the ``migration_id_map`` table."""

    def __init__(self, session: Session | None = None, *, run_id: int | None = None) -> None:
        self.session = session if session is not None else db.session
        self.run_id = run_id

    def load_all(self, entity_type: str) -> dict[str, str]:
        stmt = select(MigrationIdMap.source_id, MigrationIdMap.target_id).where(
            MigrationIdMap.entity_type == entity_type
        )
        return {source_id: target_id for source_id, target_id in self.session.execute(stmt)}

    def lookup(self, entity_type: str, source_ids: Sequence[str]) -> dict[str, str]:
        found: dict[str, str] = {}
        for start in range(0, len(source_ids), LOOKUP_CHUNK):
            batch = list(source_ids[start : start + LOOKUP_CHUNK])
            stmt = select(MigrationIdMap.source_id, MigrationIdMap.target_id).where(
                MigrationIdMap.entity_type == entity_type,
                MigrationIdMap.source_id.in_(batch),
            )
            found.update({source_id: target_id for source_id, target_id in self.session.execute(stmt)})
        return found

    def lookup_targets(self, entity_type: str, target_ids: Sequence[str]) -> dict[str, str]:
        found: dict[str, str] = {}
        for start in range(0, len(target_ids), LOOKUP_CHUNK):
            batch = list(target_ids[start : start + LOOKUP_CHUNK])
            stmt = select(MigrationIdMap.target_id, MigrationIdMap.source_id).where(
                MigrationIdMap.entity_type == entity_type,
                MigrationIdMap.target_id.in_(batch),
            )
            found.update({target_id: source_id for target_id, source_id in self.session.execute(stmt)})
        return found

    def save(self, entity_type: str, pairs: Sequence[tuple[str, str]]) -> None:
        if not pairs:
            return
        self.session.execute(
            insert(MigrationIdMap),
            [
                {
                    "entity_type": entity_type,
                    "source_id": source_id,
                    "target_id": target_id,
                    "run_id": self.run_id,
                }
                for source_id, target_id in pairs
            ],
        )


class IdentityCache:
    """
    In-memory view over the mapping records, keyed by entity type.

    ``preload`` pulls a whole entity type into memory; for preloaded types a
    cache miss is authoritative. Other types fall back to a live lookup.
    """

    def __init__(self, store: MappingStore, *, logger: logging.Logger | None = None) -> None:
        self.store = store
        self.logger = logger or logging.getLogger(__name__)
        self._forward: dict[str, dict[str, str]] = defaultdict(dict)
        self._reverse: dict[str, dict[str, str]] = defaultdict(dict)
        self._preloaded: set[str] = set()
        self._lock = threading.RLock()

    # Loading ------------------------------------------------------------------

    def preload(self, entity_type: str) -> int:
        """Load every mapping for ``entity_type``; returns the number cached."""

        mappings = self.store.load_all(entity_type)
        with self._lock:
            forward = self._forward[entity_type]
            reverse = self._reverse[entity_type]
            forward.update(mappings)
            reverse.update({target_id: source_id for source_id, target_id in mappings.items()})
            self._preloaded.add(entity_type)
            size = len(forward)
        self.logger.info(
            "Preloaded id mappings",
            extra={"entity_type": entity_type, "mapping_count": size},
        )
        return size

    def is_preloaded(self, entity_type: str) -> bool:
        return entity_type in self._preloaded

    # Lookups ------------------------------------------------------------------

    def resolve(self, source_id: str | None, entity_type: str) -> str | None:
        if not source_id:
            return None
        with self._lock:
            target_id = self._forward[entity_type].get(source_id)
            if target_id is not None or entity_type in self._preloaded:
                return target_id
        found = self.store.lookup(entity_type, [source_id])
        target_id = found.get(source_id)
        if target_id is None:
            self.logger.debug(
                "No id mapping found",
                extra={"entity_type": entity_type, "source_id": source_id},
            )
            return None
        self._remember(entity_type, {source_id: target_id})
        return target_id

    def resolve_many(self, source_ids: Sequence[str | None], entity_type: str) -> list[str | None]:
        """Resolve ids in order; unresolved positions are ``None``."""

        with self._lock:
            forward = self._forward[entity_type]
            missing = [
                source_id
                for source_id in dict.fromkeys(source_ids)
                if source_id and source_id not in forward
            ]
            preloaded = entity_type in self._preloaded
        if missing and not preloaded:
            found = self.store.lookup(entity_type, missing)
            if found:
                self._remember(entity_type, found)
        with self._lock:
            forward = self._forward[entity_type]
            return [forward.get(source_id) if source_id else None for source_id in source_ids]

    def is_already_migrated(self, source_id: str | None, entity_type: str) -> bool:
        return self.resolve(source_id, entity_type) is not None

    # Writes -------------------------------------------------------------------

    def record(self, source_id: str, target_id: str, entity_type: str) -> None:
        self.record_batch([(source_id, target_id)], entity_type)

    def record_batch(self, pairs: Iterable[tuple[str, str]], entity_type: str) -> int:
        """
        Persist and cache new mappings. Identical re-records are ignored.

        Raises ``MappingConflictError`` if any pair would map one source id to
        two targets or let two source ids share a target. Nothing is written
        when a conflict is found.
        """

        new_pairs = self._validate_pairs(list(pairs), entity_type)
        if not new_pairs:
            return 0
        self.store.save(entity_type, new_pairs)
        self._remember(entity_type, dict(new_pairs))
        return len(new_pairs)

    def discard(self, source_ids: Iterable[str], entity_type: str) -> None:
        """Forget cached mappings whose write was rolled back."""

        with self._lock:
            forward = self._forward[entity_type]
            reverse = self._reverse[entity_type]
            for source_id in source_ids:
                target_id = forward.pop(source_id, None)
                if target_id is not None:
                    reverse.pop(target_id, None)

    # Introspection ------------------------------------------------------------

    def stats(self) -> dict[str, int]:
        with self._lock:
            return {entity_type: len(mapping) for entity_type, mapping in self._forward.items() if mapping}

    def clear(self) -> None:
        """Drop the in-memory view only; persisted mappings are untouched."""

        with self._lock:
            self._forward.clear()
            self._reverse.clear()
            self._preloaded.clear()

    # Internal helpers ---------------------------------------------------------

    def _remember(self, entity_type: str, mappings: Mapping[str, str]) -> None:
        with self._lock:
            self._forward[entity_type].update(mappings)
            self._reverse[entity_type].update({target_id: source_id for source_id, target_id in mappings.items()})

    def _validate_pairs(self, pairs: list[tuple[str, str]], entity_type: str) -> list[tuple[str, str]]:
        batch_forward: dict[str, str] = {}
        batch_reverse: dict[str, str] = {}
        for source_id, target_id in pairs:
            if not source_id or not target_id:
                raise MappingConflictError(f"Cannot record an empty id for {entity_type}: {source_id!r} -> {target_id!r}")
            if batch_forward.setdefault(source_id, target_id) != target_id:
                raise MappingConflictError(f"{entity_type} {source_id} appears twice with different targets.")
            if batch_reverse.setdefault(target_id, source_id) != source_id:
                raise MappingConflictError(f"{entity_type} target {target_id} claimed by two source ids.")

        with self._lock:
            known_forward = {s: self._forward[entity_type].get(s) for s in batch_forward}
            known_reverse = {t: self._reverse[entity_type].get(t) for t in batch_reverse}
            preloaded = entity_type in self._preloaded
        if not preloaded:
            unknown_sources = [s for s, t in known_forward.items() if t is None]
            unknown_targets = [t for t, s in known_reverse.items() if s is None]
            if unknown_sources:
                known_forward.update(self.store.lookup(entity_type, unknown_sources))
            if unknown_targets:
                known_reverse.update(self.store.lookup_targets(entity_type, unknown_targets))

        new_pairs: list[tuple[str, str]] = []
        for source_id, target_id in batch_forward.items():
            existing_target = known_forward.get(source_id)
            existing_source = known_reverse.get(target_id)
            if existing_target == target_id:
                continue
            if existing_target is not None:
                raise MappingConflictError(
                    f"{entity_type} {source_id} is already mapped to {existing_target}, not {target_id}."
                )
            if existing_source is not None:
                raise MappingConflictError(
                    f"{entity_type} target {target_id} already belongs to source {existing_source}."
                )
            new_pairs.append((source_id, target_id))
        return new_pairs


def _normalize_content(value: str | None) -> str:
    return (value or "").strip().lower()


class ChoiceContentIndex:
    """
    Look up a migrated choice by its parent question and visible text.

    Used when an answer stores the chosen label instead of the choice id.
    Both ``content`` and ``import_map`` are indexed; matching ignores case and
    surrounding whitespace.
    """

    def __init__(self, rows: Iterable[Mapping[str, str | None]] = ()) -> None:
        self._index: dict[tuple[str, str], str] = {}
        for row in rows:
            self.add(row)

    @classmethod
    def load(cls, store) -> "ChoiceContentIndex":
        rows = store.select("choices", ["id", "parent_question_id", "content", "import_map"])
        return cls(rows)

    def add(self, row: Mapping[str, str | None]) -> None:
        question_id = row.get("parent_question_id")
        choice_id = row.get("id")
        if not question_id or not choice_id:
            return
        for label in (row.get("content"), row.get("import_map")):
            key = _normalize_content(label)
            if key:
                self._index.setdefault((question_id, key), choice_id)

    def lookup(self, question_id: str | None, content: str | None) -> str | None:
        key = _normalize_content(content)
        if not question_id or not key:
            return None
        return self._index.get((question_id, key))

    def __len__(self) -> int:
        return len(self._index)


__all__ = [
    "ChoiceContentIndex",
    "ENTITY_TYPES",
    "IdentityCache",
    "MappingStore",
    "SqlMappingStore",
]
