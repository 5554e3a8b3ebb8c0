"""
Canonical protocol definitions for data-spine.

The engine talks to the outside world through exactly two seams:

- :class:`Connection` — the DB-API-shaped, synchronous connection a
  :class:`~data_spine.store.SqlStore` drives (``sqlite3`` via
  :class:`~data_spine.connection.SqliteConnection`, or a SQLAlchemy session
  via :class:`~data_spine.connection.SAConnectionBridge`).
- :class:`Store` — what the session, pagination engine and bulk executor
  call. It executes built statements and owns the transaction boundary.

Architecture:
    ::

        Session / PaginationEngine / BulkMutationExecutor
                         │
                         ▼
        ┌────────────────────────────────────────────────────┐
        │ Store                                              │
        │   execute_read(statement)  → list[dict]            │
        │   execute_write(statement) → affected row count    │
        │   begin_unit_of_work() / commit() / rollback()     │
        └────────────────────────────────────────────────────┘
                         │  (SqlStore)
                         ▼
        ┌────────────────────────────────────────────────────┐
        │ Connection                                         │
        │   execute / executemany / fetchone / fetchall      │
        │   commit / rollback                                │
        └────────────────────────────────────────────────────┘

Guardrails:
    ❌ DON'T: Add async methods to these protocols
    ✅ DO: Keep the engine synchronous; one session per thread of work

    ❌ DON'T: Put implementation logic in protocol classes
    ✅ DO: Implement in ``store.py`` / ``connection.py``

Tags:
    protocol, connection, store, contracts, data-spine
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from data_spine.builder import Statement


@runtime_checkable
class Connection(Protocol):
    """
    Minimal SYNCHRONOUS connection interface for database operations.

    Examples:
        >>> conn.execute("SELECT * FROM member WHERE id = ?", (1,))
        >>> row = conn.fetchone()
    """

    def execute(self, sql: str, params: tuple = ()) -> Any:
        """Execute SQL statement with optional parameters. SYNC."""
        ...

    def executemany(self, sql: str, params: list[tuple]) -> Any:
        """Execute SQL statement for multiple parameter sets. SYNC."""
        ...

    def fetchone(self) -> Any:
        """Fetch one row from last query. SYNC."""
        ...

    def fetchall(self) -> list:
        """Fetch all rows from last query. SYNC."""
        ...

    def commit(self) -> None:
        """Commit current transaction. SYNC."""
        ...

    def rollback(self) -> None:
        """Rollback current transaction. SYNC."""
        ...


@runtime_checkable
class Store(Protocol):
    """
    Backing store the engine executes built statements against.

    Retry and timeout policy belong to the store; the engine surfaces its
    errors unchanged.
    """

    def execute_read(self, statement: Statement) -> list[dict[str, Any]]:
        """Run a SELECT and return rows as dicts keyed by column alias."""
        ...

    def execute_write(self, statement: Statement) -> int:
        """Run an INSERT/UPDATE/DELETE and return the affected row count."""
        ...

    def begin_unit_of_work(self) -> None:
        """Open a transaction boundary."""
        ...

    def commit(self) -> None:
        """Commit the current unit of work."""
        ...

    def rollback(self) -> None:
        """Roll back the current unit of work."""
        ...


__all__ = ["Connection", "Store"]
