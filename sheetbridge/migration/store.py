"""
Table-scoped access to the target relational store.

The migration engine never touches ORM instances for migrated data; it speaks
to tables by name with plain ``dict`` rows, the same way a REST-style database
client would. Filters are small value objects built with :func:`eq`,
:func:`in_` and :func:`is_null`.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterable, Iterator, Literal, Mapping, Sequence

from sqlalchemy import Table, delete, exists, func, insert, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from sheetbridge.models.base import db, new_id

from .errors import TargetStoreError

# Keeps IN-lists well under SQLite's bound-parameter ceiling.
IN_LIST_CHUNK = 500


@dataclass(frozen=True)
class Filter:
    """A single predicate applied to a table-scoped query."""

    column: str
    op: Literal["eq", "in", "is_null", "not_null"]
    value: Any = None


def eq(column: str, value: Any) -> Filter:
    return Filter(column, "eq", value)


def in_(column: str, values: Iterable[Any]) -> Filter:
    return Filter(column, "in", tuple(values))


def is_null(column: str, null: bool = True) -> Filter:
    return Filter(column, "is_null" if null else "not_null")


class TargetStore:
    """Insert/upsert/select/update/delete/count against tables of the target schema."""

    def __init__(self, session: Session | None = None, *, logger: logging.Logger | None = None) -> None:
        self.session = session if session is not None else db.session
        self.metadata = db.metadata
        self.logger = logger or logging.getLogger(__name__)

    # Schema helpers -----------------------------------------------------------

    def table(self, name: str) -> Table:
        try:
            return self.metadata.tables[name]
        except KeyError as exc:
            raise TargetStoreError(f"Unknown target table '{name}'.") from exc

    def _column(self, table: Table, name: str):
        try:
            return table.c[name]
        except KeyError as exc:
            raise TargetStoreError(f"Unknown column '{name}' on table '{table.name}'.") from exc

    def _where(self, table: Table, filters: Sequence[Filter]) -> list:
        clauses = []
        for condition in filters:
            column = self._column(table, condition.column)
            if condition.op == "eq":
                clauses.append(column == condition.value)
            elif condition.op == "in":
                clauses.append(column.in_(list(condition.value)))
            elif condition.op == "is_null":
                clauses.append(column.is_(None))
            elif condition.op == "not_null":
                clauses.append(column.is_not(None))
            else:  # pragma: no cover - Filter.op is a closed set
                raise TargetStoreError(f"Unsupported filter operator '{condition.op}'.")
        return clauses

    # Writes -------------------------------------------------------------------

    def insert(self, table_name: str, rows: Sequence[Mapping[str, Any]]) -> list[dict[str, Any]]:
        """
        Insert ``rows`` and return them with their primary keys filled in.

        Rows that leave a column out get the column default rather than NULL;
        rows are grouped by key set so one sparse row cannot blank out another.
        """

        if not rows:
            return []
        table = self.table(table_name)
        prepared: list[dict[str, Any]] = []
        for row in rows:
            payload = dict(row)
            if "id" in table.c and payload.get("id") is None and table.c.id.type.python_type is str:
                payload["id"] = new_id()
            prepared.append(payload)

        for key_set, group in self._group_by_keys(prepared).items():
            for name in key_set:
                self._column(table, name)
            self.session.execute(insert(table), group)
        return prepared

    def upsert(
        self,
        table_name: str,
        rows: Sequence[Mapping[str, Any]],
        *,
        on_conflict: Sequence[str],
        ignore_duplicates: bool = True,
    ) -> int:
        """
        Insert rows, resolving conflicts on ``on_conflict`` columns.

        With ``ignore_duplicates`` the existing row wins (junction semantics);
        otherwise the non-key columns are overwritten. Returns the number of
        rows the database reports as written, so ignored duplicates are not
        counted.
        """

        if not rows:
            return 0
        table = self.table(table_name)
        dialect_insert = self._dialect_insert()
        # Duplicate keys inside one statement trip ON CONFLICT on PostgreSQL.
        unique_rows: "OrderedDict[tuple, dict[str, Any]]" = OrderedDict()
        for row in rows:
            key = tuple(row.get(column) for column in on_conflict)
            unique_rows.setdefault(key, dict(row))
        written = 0
        for key_set, group in self._group_by_keys(list(unique_rows.values())).items():
            stmt = dialect_insert(table)
            if ignore_duplicates:
                stmt = stmt.on_conflict_do_nothing(index_elements=list(on_conflict))
            else:
                update_columns = {name: stmt.excluded[name] for name in key_set if name not in on_conflict}
                if update_columns:
                    stmt = stmt.on_conflict_do_update(index_elements=list(on_conflict), set_=update_columns)
                else:
                    stmt = stmt.on_conflict_do_nothing(index_elements=list(on_conflict))
            result = self.session.execute(stmt, group)
            # Drivers report -1 when they cannot count an executemany.
            written += result.rowcount if result.rowcount is not None and result.rowcount >= 0 else len(group)
        return written

    def update(self, table_name: str, values: Mapping[str, Any], filters: Sequence[Filter]) -> int:
        if not filters:
            raise TargetStoreError("Refusing to update without filters.")
        table = self.table(table_name)
        result = self.session.execute(update(table).where(*self._where(table, filters)).values(**values))
        return result.rowcount or 0

    def delete(self, table_name: str, filters: Sequence[Filter]) -> int:
        if not filters:
            raise TargetStoreError("Refusing to delete without filters.")
        table = self.table(table_name)
        result = self.session.execute(delete(table).where(*self._where(table, filters)))
        self.logger.debug("Deleted target rows", extra={"table": table_name, "rows": result.rowcount})
        return result.rowcount or 0

    # Reads --------------------------------------------------------------------

    def select(
        self,
        table_name: str,
        columns: Sequence[str] | None = None,
        filters: Sequence[Filter] = (),
        *,
        order_by: Sequence[str] = (),
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        table = self.table(table_name)
        selected = [self._column(table, name) for name in columns] if columns else list(table.c)
        stmt = select(*selected).where(*self._where(table, filters))
        for name in order_by:
            descending = name.startswith("-")
            column = self._column(table, name.lstrip("-"))
            stmt = stmt.order_by(column.desc() if descending else column.asc())
        if limit is not None:
            stmt = stmt.limit(limit)
        return [dict(row) for row in self.session.execute(stmt).mappings()]

    def count(self, table_name: str, filters: Sequence[Filter] = ()) -> int:
        table = self.table(table_name)
        stmt = select(func.count()).select_from(table).where(*self._where(table, filters))
        return int(self.session.execute(stmt).scalar_one())

    def count_by(self, table_name: str, column: str, values: Iterable[Any]) -> dict[Any, int]:
        """Return ``{value: row_count}`` for rows whose ``column`` is in ``values``."""

        table = self.table(table_name)
        target = self._column(table, column)
        counts: dict[Any, int] = {}
        for batch in _chunked(list(dict.fromkeys(values)), IN_LIST_CHUNK):
            stmt = select(target, func.count()).where(target.in_(batch)).group_by(target)
            for value, total in self.session.execute(stmt):
                counts[value] = int(total)
        return counts

    def existing_ids(self, table_name: str, ids: Iterable[str], *, column: str = "id") -> set[str]:
        """Return the subset of ``ids`` present in ``table_name``."""

        wanted = [value for value in dict.fromkeys(ids) if value]
        if not wanted:
            return set()
        table = self.table(table_name)
        target = self._column(table, column)
        found: set[str] = set()
        for batch in _chunked(wanted, IN_LIST_CHUNK):
            found.update(self.session.execute(select(target).where(target.in_(batch))).scalars())
        return found

    def table_counts(self, table_names: Iterable[str] | None = None) -> dict[str, int]:
        names = list(table_names) if table_names is not None else sorted(self.metadata.tables)
        return {name: self.count(name) for name in names}

    def count_orphans(self, table_name: str, column: str, target_table: str, *, target_column: str = "id") -> int:
        """Count rows whose non-null ``column`` names no row of ``target_table``."""

        table = self.table(table_name)
        source = self._column(table, column)
        referenced = self.table(target_table).alias("referenced")
        target = self._column(referenced, target_column)
        stmt = (
            select(func.count())
            .select_from(table)
            .where(source.is_not(None), ~exists().where(target == source))
        )
        return int(self.session.execute(stmt).scalar_one())

    # Transactions -------------------------------------------------------------

    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()

    @contextmanager
    def savepoint(self) -> Iterator[None]:
        """Run a block in a nested transaction that rolls back on error."""

        nested = self.session.begin_nested()
        try:
            yield
        except Exception:
            nested.rollback()
            raise
        else:
            nested.commit()

    # Internal helpers ---------------------------------------------------------

    def _dialect_insert(self):
        dialect = self.session.get_bind().dialect.name
        if dialect == "postgresql":
            return postgresql.insert
        if dialect == "sqlite":
            return sqlite.insert
        raise TargetStoreError(f"Upsert is not supported on the '{dialect}' dialect.")

    @staticmethod
    def _group_by_keys(rows: Sequence[dict[str, Any]]) -> "OrderedDict[tuple[str, ...], list[dict[str, Any]]]":
        groups: "OrderedDict[tuple[str, ...], list[dict[str, Any]]]" = OrderedDict()
        for row in rows:
            groups.setdefault(tuple(sorted(row)), []).append(row)
        return groups


def _chunked(values: Sequence[Any], size: int) -> Iterator[Sequence[Any]]:
    for start in range(0, len(values), size):
        yield values[start : start + size]


__all__ = ["Filter", "TargetStore", "eq", "in_", "is_null"]
