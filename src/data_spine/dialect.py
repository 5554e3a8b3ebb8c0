"""SQL dialect abstraction for the query builder and store.

Provides a ``Dialect`` protocol and concrete implementations for the
supported backends. The :class:`~data_spine.builder.QueryBuilder` uses
dialect methods to generate SQL fragments (placeholders, row windows,
column types) so plans never reference a database driver.

Manifesto:
    - **One interface:** Dialect protocol for all SQL fragment generation
    - **Zero coupling:** The builder never imports database drivers
    - **Testable:** SQLiteDialect for tests, PostgreSQLDialect for prod

Architecture::

    ┌──────────────┐   ┌──────────────────┐   ┌──────────────┐
    │ SQLite       │   │ PostgreSQL       │   │ MySQL        │
    │ ?, ?, ?      │   │ %s, %s, %s       │   │ %s, %s       │
    │ LIMIT/OFFSET │   │ LIMIT/OFFSET     │   │ LIMIT/OFFSET │
    └──────────────┘   └──────────────────┘   └──────────────┘

Examples:
    >>> from data_spine.dialect import SQLiteDialect
    >>> d = SQLiteDialect()
    >>> d.placeholders(3)
    '?, ?, ?'
    >>> d.limit_offset(10, 20)
    'LIMIT 10 OFFSET 20'

Tags:
    dialect, sql, abstraction, portability, data-spine
"""

from __future__ import annotations

import datetime
from typing import Protocol, runtime_checkable


@runtime_checkable
class Dialect(Protocol):
    """SQL dialect contract.

    Every method returns a **SQL fragment** (string) valid for the target
    database.
    """

    @property
    def name(self) -> str:
        """Human-readable dialect name (e.g. ``'sqlite'``)."""
        ...

    def placeholder(self, index: int) -> str:
        """Single positional placeholder (0-based index)."""
        ...

    def placeholders(self, count: int) -> str:
        """Comma-separated placeholder list."""
        ...

    def limit_offset(self, limit: int | None, offset: int) -> str:
        """Row-window clause appended after ``ORDER BY``.

        Returns an empty string when neither bound applies.
        """
        ...

    def column_type(self, python_type: type) -> str:
        """DDL column type for a Python scalar type."""
        ...

    def identity_column(self, python_type: type) -> str:
        """DDL type + constraint for the identity column."""
        ...


_BASE_TYPES: dict[type, str] = {
    int: "INTEGER",
    float: "REAL",
    str: "TEXT",
    bool: "INTEGER",
    datetime.datetime: "TIMESTAMP",
    datetime.date: "DATE",
}


class SQLiteDialect:
    """SQLite dialect — ``?`` placeholders."""

    @property
    def name(self) -> str:
        return "sqlite"

    def placeholder(self, index: int) -> str:  # noqa: ARG002
        return "?"

    def placeholders(self, count: int) -> str:
        return ", ".join("?" for _ in range(count))

    def limit_offset(self, limit: int | None, offset: int) -> str:
        if limit is None:
            # SQLite requires a LIMIT before OFFSET; -1 means unbounded
            return f"LIMIT -1 OFFSET {offset}" if offset else ""
        return f"LIMIT {limit} OFFSET {offset}"

    def column_type(self, python_type: type) -> str:
        return _BASE_TYPES.get(python_type, "TEXT")

    def identity_column(self, python_type: type) -> str:
        return f"{self.column_type(python_type)} PRIMARY KEY"


class PostgreSQLDialect:
    """PostgreSQL dialect — ``%s`` placeholders (psycopg2)."""

    @property
    def name(self) -> str:
        return "postgresql"

    def placeholder(self, index: int) -> str:  # noqa: ARG002
        return "%s"

    def placeholders(self, count: int) -> str:
        return ", ".join("%s" for _ in range(count))

    def limit_offset(self, limit: int | None, offset: int) -> str:
        parts = []
        if limit is not None:
            parts.append(f"LIMIT {limit}")
        if offset:
            parts.append(f"OFFSET {offset}")
        return " ".join(parts)

    def column_type(self, python_type: type) -> str:
        if python_type is bool:
            return "BOOLEAN"
        if python_type is float:
            return "DOUBLE PRECISION"
        return _BASE_TYPES.get(python_type, "TEXT")

    def identity_column(self, python_type: type) -> str:
        if python_type is int:
            return "BIGINT PRIMARY KEY"
        return f"{self.column_type(python_type)} PRIMARY KEY"


class MySQLDialect:
    """MySQL dialect — ``%s`` placeholders (mysql.connector / PyMySQL)."""

    @property
    def name(self) -> str:
        return "mysql"

    def placeholder(self, index: int) -> str:  # noqa: ARG002
        return "%s"

    def placeholders(self, count: int) -> str:
        return ", ".join("%s" for _ in range(count))

    def limit_offset(self, limit: int | None, offset: int) -> str:
        if limit is None:
            # MySQL has no unbounded LIMIT keyword; use the documented max
            return f"LIMIT 18446744073709551615 OFFSET {offset}" if offset else ""
        return f"LIMIT {limit} OFFSET {offset}"

    def column_type(self, python_type: type) -> str:
        if python_type is str:
            return "VARCHAR(255)"
        if python_type is float:
            return "DOUBLE"
        return _BASE_TYPES.get(python_type, "TEXT")

    def identity_column(self, python_type: type) -> str:
        if python_type is int:
            return "BIGINT PRIMARY KEY"
        return f"{self.column_type(python_type)} PRIMARY KEY"


# Pre-instantiated singletons (dialects are stateless)
_DIALECTS: dict[str, Dialect] = {
    "sqlite": SQLiteDialect(),
    "postgresql": PostgreSQLDialect(),
    "postgres": PostgreSQLDialect(),  # alias
    "mysql": MySQLDialect(),
}


def get_dialect(db_type: str) -> Dialect:
    """Get a dialect by database type name.

    Raises:
        ValueError: If ``db_type`` is not recognised.
    """
    key = db_type.lower()
    if key not in _DIALECTS:
        raise ValueError(
            f"Unknown dialect '{db_type}'. "
            f"Supported: {sorted(set(_DIALECTS) - {'postgres'})}"
        )
    return _DIALECTS[key]


def register_dialect(name: str, dialect: Dialect) -> None:
    """Register a custom dialect implementation (third-party drivers, test doubles)."""
    _DIALECTS[name.lower()] = dialect


__all__ = [
    "Dialect",
    "SQLiteDialect",
    "PostgreSQLDialect",
    "MySQLDialect",
    "get_dialect",
    "register_dialect",
]
