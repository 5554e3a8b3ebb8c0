"""Connection adapters satisfying :class:`~data_spine.protocols.Connection`.

This module provides:

* ``SqliteConnection``    -- wraps ``sqlite3.Connection`` so ``fetchone`` /
  ``fetchall`` work at the connection level and rows come back as
  ``sqlite3.Row`` (dict-convertible).
* ``SAConnectionBridge``  -- wraps a SQLAlchemy ``Session`` so a store can
  share the caller's ORM session and transaction.
* ``create_engine``       -- SQLAlchemy engine factory with SQLite pragmas.

Usage::

    from data_spine.connection import SqliteConnection

    conn = SqliteConnection(":memory:")
    conn.execute("CREATE TABLE t (id INTEGER)")
    conn.execute("INSERT INTO t VALUES (?)", (1,))
    conn.execute("SELECT * FROM t")
    row = conn.fetchone()
    conn.commit()
    conn.close()

Tags:
    connection, sqlite, sqlalchemy, bridge, data-spine
"""

from __future__ import annotations

import sqlite3
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from sqlalchemy import create_engine as _sa_create_engine
from sqlalchemy import event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session


class SqliteConnection:
    """Adapter: ``sqlite3.Connection`` → ``Connection`` protocol.

    Maintains a single cursor so that ``execute`` / ``fetchone`` /
    ``fetchall`` operate on the same result set.
    """

    def __init__(
        self,
        path: str | Path = ":memory:",
        *,
        row_factory: Any = sqlite3.Row,
        timeout: float = 5.0,
    ) -> None:
        if str(path) != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(path), timeout=timeout, check_same_thread=False)
        self._conn.row_factory = row_factory
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._cursor = self._conn.cursor()

    # -- Connection protocol -----------------------------------------------

    def execute(self, sql: str, params: tuple = ()) -> Any:
        self._cursor.execute(sql, params)
        return self._cursor

    def executemany(self, sql: str, params: list[tuple]) -> Any:
        self._cursor.executemany(sql, params)
        return self._cursor

    def fetchone(self) -> Any:
        return self._cursor.fetchone()

    def fetchall(self) -> list:
        return self._cursor.fetchall()

    def commit(self) -> None:
        self._conn.commit()

    def rollback(self) -> None:
        self._conn.rollback()

    def close(self) -> None:
        self._conn.close()

    # -- convenience -------------------------------------------------------

    @property
    def raw(self) -> sqlite3.Connection:
        """Access the underlying ``sqlite3.Connection`` (e.g. for pragmas)."""
        return self._conn

    def __repr__(self) -> str:
        return f"SqliteConnection({self._conn!r})"


def create_engine(url: str = "sqlite:///:memory:", *, echo: bool = False, **kwargs: Any) -> Engine:
    """Create a SQLAlchemy engine; SQLite engines get ``foreign_keys=ON``."""
    if url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
        engine = _sa_create_engine(url, echo=echo, **kwargs)

        @event.listens_for(engine, "connect")
        def _set_sqlite_pragma(dbapi_connection: Any, _rec: Any) -> None:
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    return _sa_create_engine(url, echo=echo, **kwargs)


def _named_params(sql: str) -> str:
    """Rewrite ``?`` placeholders to ``:p0, :p1, …`` for ``sqlalchemy.text``."""
    rewritten, idx = [], 0
    in_literal = False
    for ch in sql:
        if ch == "'":
            in_literal = not in_literal
        if ch == "?" and not in_literal:
            rewritten.append(f":p{idx}")
            idx += 1
        else:
            rewritten.append(ch)
    return "".join(rewritten)


class SAConnectionBridge:
    """Adapter that makes a SQLAlchemy ``Session`` look like ``Connection``.

    Statements must use qmark (``?``) placeholders, i.e. be built with
    :class:`~data_spine.dialect.SQLiteDialect`; the bridge rewrites them to
    named binds.
    """

    def __init__(self, session: Session) -> None:
        self._session = session
        self._last_result: Any = None

    # --- execute / executemany ---

    def execute(self, sql: str, parameters: Sequence[Any] | None = None) -> SAConnectionBridge:
        if parameters:
            mapping = {f"p{i}": v for i, v in enumerate(parameters)}
            self._last_result = self._session.execute(text(_named_params(sql)), mapping)
        else:
            self._last_result = self._session.execute(text(sql))
        return self

    def executemany(self, sql: str, seq_of_parameters: Sequence[Sequence[Any]]) -> None:
        for params in seq_of_parameters:
            self.execute(sql, params)

    # --- fetch ---

    def fetchone(self) -> tuple[Any, ...] | None:
        if self._last_result is None:
            return None
        row = self._last_result.fetchone()
        return tuple(row) if row is not None else None

    def fetchall(self) -> list[tuple[Any, ...]]:
        if self._last_result is None:
            return []
        return [tuple(r) for r in self._last_result.fetchall()]

    # --- transaction ---

    def commit(self) -> None:
        self._session.commit()

    def rollback(self) -> None:
        self._session.rollback()

    # --- properties ---

    @property
    def rowcount(self) -> int:
        if self._last_result is None:
            return -1
        return self._last_result.rowcount

    @property
    def description(self) -> list[tuple[str, ...]] | None:
        """DB-API 2.0 compatible description from the last result."""
        if self._last_result is None or not self._last_result.returns_rows:
            return None
        keys = list(self._last_result.keys())
        return [(k, None, None, None, None, None, None) for k in keys]

    @property
    def session(self) -> Session:
        """Access the underlying SA session."""
        return self._session


__all__ = ["SqliteConnection", "SAConnectionBridge", "create_engine"]
