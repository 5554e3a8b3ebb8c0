"""Bulk mutation executor.

Set-based UPDATE / DELETE statements bypass the identity map, so every bulk
write ends with a reconciliation step:

- ``auto_reconcile=True``: loaded entities are dropped from the identity map
  right after the write; later reads load fresh rows. Buffered writes (and
  the instances they insert) are kept.
- ``auto_reconcile=False`` (default): the entity type's generation counter
  is bumped. Instances tracked before the bump are *stale*; a read that
  would return one refreshes it (clean) or raises
  :class:`~data_spine.errors.StaleWriteConflictError` (dirty, or strict
  sessions).
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from data_spine.errors import InvalidRequestError
from data_spine.logging import get_logger
from data_spine.query import Predicate

if TYPE_CHECKING:
    from data_spine.session import Session

logger = get_logger(__name__)


class BulkMutationExecutor:
    """Executes set-based writes for one session and reconciles it."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def bulk_update(
        self,
        entity_type: Any,
        predicate: Predicate,
        assignments: Mapping[str, Any],
        *,
        auto_reconcile: bool | None = None,
    ) -> int:
        """One UPDATE over every row matching ``predicate``.

        Returns:
            Number of affected rows as reported by the store.
        """
        session = self._session
        shape = session.describe(entity_type)
        if not isinstance(assignments, Mapping):
            raise InvalidRequestError("Bulk update assignments must be a mapping of field → value")
        statement = session.builder.build_update(shape, predicate, assignments)

        session.flush_for_write()
        affected = session.store.execute_write(statement)
        reconciled = session.after_bulk_write(shape, auto_reconcile)
        logger.info(
            "bulk_update_executed",
            entity=shape.name,
            predicate=str(predicate),
            fields=sorted(assignments),
            affected=affected,
            reconciled=reconciled,
        )
        return affected

    def bulk_delete(
        self,
        entity_type: Any,
        predicate: Predicate,
        *,
        auto_reconcile: bool | None = None,
    ) -> int:
        """One DELETE over every row matching ``predicate``."""
        session = self._session
        shape = session.describe(entity_type)
        statement = session.builder.build_delete(shape, predicate)

        session.flush_for_write()
        affected = session.store.execute_write(statement)
        reconciled = session.after_bulk_write(shape, auto_reconcile)
        logger.info(
            "bulk_delete_executed",
            entity=shape.name,
            predicate=str(predicate),
            affected=affected,
            reconciled=reconciled,
        )
        return affected


__all__ = ["BulkMutationExecutor"]
