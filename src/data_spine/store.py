"""SQL store: executes built statements over a ``Connection``.

:class:`SqlStore` is the :class:`~data_spine.protocols.Store` the session,
pagination engine and bulk executor talk to. It pairs a
:class:`~data_spine.protocols.Connection` with a
:class:`~data_spine.dialect.Dialect`, converts result rows to dicts keyed
by column alias and translates driver errors into the
:mod:`data_spine.errors` hierarchy.

Architecture::

    ┌────────────────────────────────────────────────────────────────────┐
    │                          SqlStore                                  │
    │                                                                    │
    │   conn: Connection        ← SqliteConnection / SAConnectionBridge  │
    │   dialect: Dialect        ← from data_spine.dialect                │
    │                                                                    │
    │   execute_read(stmt)      → list[dict]     (stats.reads += 1)      │
    │   execute_write(stmt)     → rowcount       (stats.writes += 1)     │
    │   begin_unit_of_work() / commit() / rollback()                     │
    │   create_tables(registry) → DDL for every registered shape         │
    └────────────────────────────────────────────────────────────────────┘

Usage:
    >>> store = SqlStore.sqlite(":memory:")
    >>> store.create_tables(registry)
    >>> store.execute_read(Statement("SELECT COUNT(*) AS n FROM member"))
    [{'n': 0}]

Tags:
    store, database, sqlite, sqlalchemy, errors, data-spine
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from sqlalchemy import exc as sa_exc

from data_spine.builder import Statement
from data_spine.connection import SAConnectionBridge, SqliteConnection
from data_spine.dialect import Dialect, SQLiteDialect
from data_spine.errors import (
    DataSpineError,
    IntegrityError,
    QueryError,
    StoreUnavailableError,
)
from data_spine.logging import get_logger
from data_spine.protocols import Connection
from data_spine.registry import EntityRegistry, EntityShape

logger = get_logger(__name__)

_UNAVAILABLE_MARKERS = (
    "database is locked",
    "database table is locked",
    "unable to open",
    "disk i/o",
    "busy",
    "closed database",
    "connection",
    "timeout",
)


def _looks_unavailable(message: str) -> bool:
    lowered = message.lower()
    return any(marker in lowered for marker in _UNAVAILABLE_MARKERS)


def translate_error(error: Exception, statement: Statement | None = None) -> DataSpineError | None:
    """Map a driver exception onto the data-spine hierarchy.

    Returns ``None`` for exceptions that are not driver errors so the caller
    re-raises them unchanged.
    """
    sql = statement.sql if statement is not None else None

    if isinstance(error, sa_exc.SQLAlchemyError):
        orig = getattr(error, "orig", None)
        if isinstance(error, sa_exc.IntegrityError):
            translated: DataSpineError = IntegrityError(str(orig or error), cause=error)
        elif isinstance(error, (sa_exc.DisconnectionError, sa_exc.TimeoutError)) or getattr(
            error, "connection_invalidated", False
        ):
            translated = StoreUnavailableError(str(orig or error), cause=error)
        elif isinstance(error, sa_exc.OperationalError) and _looks_unavailable(str(orig or error)):
            translated = StoreUnavailableError(str(orig or error), cause=error)
        else:
            translated = QueryError(str(orig or error), cause=error)
    elif isinstance(error, sqlite3.IntegrityError):
        translated = IntegrityError(str(error), cause=error)
    elif isinstance(error, (sqlite3.OperationalError, sqlite3.ProgrammingError)) and _looks_unavailable(str(error)):
        translated = StoreUnavailableError(str(error), cause=error)
    elif isinstance(error, sqlite3.Error):
        translated = QueryError(str(error), cause=error)
    else:
        return None

    if sql is not None:
        translated.with_context(statement=sql)
    return translated


@dataclass
class StoreStats:
    """Statement counters (read/write round trips)."""

    reads: int = 0
    writes: int = 0

    def reset(self) -> None:
        self.reads = 0
        self.writes = 0


class SqlStore:
    """:class:`~data_spine.protocols.Store` over a DB-API style connection.

    Parameters:
        conn: Any object satisfying the :class:`Connection` protocol.
        dialect: SQL dialect. Defaults to :class:`SQLiteDialect`.
    """

    def __init__(self, conn: Connection, dialect: Dialect | None = None) -> None:
        self.conn = conn
        self.dialect: Dialect = dialect or SQLiteDialect()
        self.stats = StoreStats()
        self._in_unit_of_work = False

    @classmethod
    def sqlite(cls, path: str | Path = ":memory:") -> SqlStore:
        """Store over a fresh :class:`SqliteConnection`."""
        return cls(SqliteConnection(path), SQLiteDialect())

    @classmethod
    def from_session(cls, session: Any, dialect: Dialect | None = None) -> SqlStore:
        """Store backed by a SQLAlchemy ORM session (shares its transaction).

        Example::

            from sqlalchemy.orm import Session

            with Session(engine) as sa_session:
                store = SqlStore.from_session(sa_session)
        """
        return cls(SAConnectionBridge(session), dialect)  # type: ignore[arg-type]

    # -- Store protocol ----------------------------------------------------

    def execute_read(self, statement: Statement) -> list[dict[str, Any]]:
        self.stats.reads += 1
        try:
            cursor = self.conn.execute(statement.sql, statement.params)
            rows = cursor.fetchall()
        except (sqlite3.Error, sa_exc.SQLAlchemyError) as e:
            raise translate_error(e, statement) from e
        return self._to_dicts(cursor, rows)

    def execute_write(self, statement: Statement) -> int:
        self.stats.writes += 1
        try:
            cursor = self.conn.execute(statement.sql, statement.params)
        except (sqlite3.Error, sa_exc.SQLAlchemyError) as e:
            raise translate_error(e, statement) from e
        return getattr(cursor, "rowcount", -1)

    def begin_unit_of_work(self) -> None:
        # Both adapters begin transactions implicitly on the first statement.
        self._in_unit_of_work = True

    def commit(self) -> None:
        try:
            self.conn.commit()
        except (sqlite3.Error, sa_exc.SQLAlchemyError) as e:
            raise translate_error(e) from e
        self._in_unit_of_work = False

    def rollback(self) -> None:
        try:
            self.conn.rollback()
        except (sqlite3.Error, sa_exc.SQLAlchemyError) as e:
            raise translate_error(e) from e
        self._in_unit_of_work = False

    @property
    def in_unit_of_work(self) -> bool:
        return self._in_unit_of_work

    def close(self) -> None:
        close = getattr(self.conn, "close", None)
        if close is not None:
            close()

    # -- rows --------------------------------------------------------------

    @staticmethod
    def _to_dicts(cursor: Any, rows: list) -> list[dict[str, Any]]:
        if not rows:
            return []
        if hasattr(rows[0], "keys"):
            return [dict(row) for row in rows]
        description = getattr(cursor, "description", None)
        if description:
            columns = [desc[0] for desc in description]
            return [dict(zip(columns, row, strict=False)) for row in rows]
        return [{i: v for i, v in enumerate(row)} for row in rows]

    # -- DDL ---------------------------------------------------------------

    def create_tables(self, registry: EntityRegistry) -> list[str]:
        """Create a table (and foreign-key indexes) for every registered shape.

        Tables are created referenced-first. Returns the created table names.
        """
        shapes = _dependency_order(list(registry))
        created = []
        for shape in shapes:
            for sql in self._ddl(shape, registry):
                self.execute_write(Statement(sql))
            created.append(shape.table)
        self.commit()
        logger.info("tables_created", tables=created)
        return created

    def _ddl(self, shape: EntityShape, registry: EntityRegistry) -> list[str]:
        columns = [f"{shape.identity.column} {self.dialect.identity_column(shape.identity.python_type)}"]
        for spec in shape.fields[1:]:
            null = "" if spec.nullable else " NOT NULL"
            columns.append(f"{spec.column} {self.dialect.column_type(spec.python_type)}{null}")
        statements = []
        indexes = []
        for assoc in shape.to_one:
            target = registry.describe(assoc.target)
            fk_type = self.dialect.column_type(target.identity.python_type)
            columns.append(
                f"{assoc.foreign_key} {fk_type} REFERENCES {target.table}({target.identity.column})"
            )
            indexes.append(
                f"CREATE INDEX IF NOT EXISTS ix_{shape.table}_{assoc.foreign_key} "
                f"ON {shape.table} ({assoc.foreign_key})"
            )
        statements.append(f"CREATE TABLE IF NOT EXISTS {shape.table} ({', '.join(columns)})")
        statements.extend(indexes)
        return statements

    def __repr__(self) -> str:
        return f"SqlStore({self.conn!r}, dialect={self.dialect.name})"


def _dependency_order(shapes: list[EntityShape]) -> list[EntityShape]:
    ordered: list[EntityShape] = []
    done: set[str] = set()
    remaining = list(shapes)
    while remaining:
        progressed = False
        for shape in list(remaining):
            deps = {a.target for a in shape.to_one if a.target != shape.name}
            if deps <= done:
                ordered.append(shape)
                done.add(shape.name)
                remaining.remove(shape)
                progressed = True
        if not progressed:
            # reference cycle: fall back to registration order
            ordered.extend(remaining)
            break
    return ordered


__all__ = ["SqlStore", "StoreStats", "translate_error"]
