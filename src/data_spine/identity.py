"""Identity allocation for persisted entities.

Identities are assigned at ``persist`` time, before any store write, so a
pending entity is addressable (and findable in the identity map) before
flush.

- ``sequence``: per-type int counter, seeded once from ``MAX(identity)``
- ``uuid``: random UUID4 string
- ``assigned``: the caller sets the identity; a missing one is an error
"""

from __future__ import annotations

import threading
import uuid
from typing import Any

from data_spine.builder import QueryBuilder
from data_spine.errors import InvalidRequestError
from data_spine.logging import get_logger
from data_spine.protocols import Store
from data_spine.registry import EntityShape, IdentityStrategy

logger = get_logger(__name__)


class IdentityAllocator:
    """Lock-protected allocator shared by all sessions of a factory."""

    def __init__(self, store: Store, builder: QueryBuilder) -> None:
        self._store = store
        self._builder = builder
        self._counters: dict[str, int] = {}
        self._lock = threading.Lock()

    def allocate(self, shape: EntityShape) -> Any:
        strategy = shape.identity_strategy
        if strategy is IdentityStrategy.UUID:
            return str(uuid.uuid4())
        if strategy is IdentityStrategy.ASSIGNED:
            raise InvalidRequestError(
                f"{shape.name} uses assigned identities; set '{shape.identity.name}' before persisting"
            ).with_context(entity_type=shape.name, field=shape.identity.name)

        with self._lock:
            current = self._current(shape) + 1
            self._counters[shape.name] = current
            return current

    def _current(self, shape: EntityShape) -> int:
        current = self._counters.get(shape.name)
        if current is None:
            rows = self._store.execute_read(self._builder.max_identity_statement(shape))
            current = (rows[0]["max_id"] if rows else None) or 0
            self._counters[shape.name] = current
            logger.debug("sequence_seeded", entity=shape.name, start=current)
        return current

    def observe(self, shape: EntityShape, identity: Any) -> None:
        """Keep the sequence ahead of an explicitly assigned int identity."""
        if shape.identity_strategy is not IdentityStrategy.SEQUENCE or not isinstance(identity, int):
            return
        with self._lock:
            if identity > self._current(shape):
                self._counters[shape.name] = identity

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()


__all__ = ["IdentityAllocator"]
