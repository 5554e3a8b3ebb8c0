"""
Session: unit of work with an identity map and a pending-write buffer.

A :class:`Session` is created by a :class:`SessionFactory` at the start of
a unit of work. It guarantees one in-memory instance per (type, identity),
buffers inserts and deletes in issue order, detects changes to tracked
entities, and executes query plans through the store.

Manifesto:
    - **Identity map:** two loads of the same row return the same object
    - **Buffered writes:** nothing reaches the store before ``flush()``;
      an abandoned session writes nothing
    - **Read-your-writes:** in ``FlushMode.AUTO`` pending writes are flushed
      before every query and bulk write
    - **No silent staleness:** instances bypassed by a bulk write are
      refreshed (clean) or rejected (dirty), never served as-is

Architecture:
    ::

        SessionFactory(store, registry, settings)
        ├── QueryBuilder (plan LRU)        shared
        ├── IdentityAllocator (locked)     shared
        └── session() → Session            one per unit of work
                         ├── identity map  {(type, id): record}
                         ├── pending       [INSERT | DELETE, ...]
                         ├── generations   {type: bulk write counter}
                         ├── PaginationEngine
                         └── BulkMutationExecutor

        lifecycle: transient ──persist/load──▶ tracked ──clear/close──▶ detached

Examples:
    >>> factory = SessionFactory(SqlStore.sqlite(), registry)
    >>> with factory.session() as session:
    ...     team = Team("teamA")
    ...     session.persist(team)
    ...     session.persist(Member("member1", 10, team))
    >>> with factory.session() as session:
    ...     member = session.get(Member, 1)
    ...     member.team.name
    'teamA'

Guardrails:
    ❌ DON'T: Share a session between threads
    ✅ DO: One session per thread of work; share the factory

    ❌ DON'T: Keep using entities after ``clear()`` and expect lazy loading
    ✅ DO: Fetch-hint what you need, or reload in the new unit of work

Tags:
    session, unit-of-work, identity-map, flush, staleness, data-spine
"""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from types import TracebackType
from typing import Any

from data_spine.associations import CollectionReference, Reference, install, reference_of
from data_spine.builder import ROOT, Join, QueryBuilder, QueryPlan, column_alias
from data_spine.bulk import BulkMutationExecutor
from data_spine.dialect import get_dialect
from data_spine.errors import (
    DuplicateIdentityError,
    InvalidRequestError,
    NonUniqueResultError,
    NotFoundError,
    StaleWriteConflictError,
    StateError,
)
from data_spine.identity import IdentityAllocator
from data_spine.logging import LogContext, get_logger
from data_spine.paging import Page, PaginationEngine, Slice, resolve_pageable
from data_spine.protocols import Store
from data_spine.query import PageRequest, Predicate, QueryRequest, Window, where
from data_spine.registry import EntityRegistry, EntityShape, FetchMode
from data_spine.settings import DataSpineSettings, get_settings

logger = get_logger(__name__)


class FlushMode(str, Enum):
    AUTO = "auto"
    COMMIT = "commit"


@dataclass(slots=True)
class _Record:
    entity: Any
    shape: EntityShape
    snapshot: dict[str, Any] | None  # None until the INSERT is flushed
    generation: int


@dataclass(slots=True)
class _PendingWrite:
    kind: str  # "insert" | "delete"
    shape: EntityShape
    entity: Any
    identity: Any

    @property
    def key(self) -> tuple[str, Any]:
        return (self.shape.name, self.identity)


class Session:
    """Unit of work. Not thread-safe."""

    def __init__(
        self,
        factory: SessionFactory,
        *,
        flush_mode: FlushMode | str = FlushMode.AUTO,
        auto_reconcile: bool = False,
        strict_staleness: bool = False,
    ) -> None:
        self.factory = factory
        self.store: Store = factory.store
        self.registry: EntityRegistry = factory.registry
        self.builder: QueryBuilder = factory.builder
        self.flush_mode = FlushMode(flush_mode)
        self.auto_reconcile = auto_reconcile
        self.strict_staleness = strict_staleness
        self.id = uuid.uuid4().hex[:8]
        self.epoch = 0
        self.closed = False

        self._identity_map: dict[tuple[str, Any], _Record] = {}
        self._pending: list[_PendingWrite] = []
        self._removed: set[tuple[str, Any]] = set()
        self._generations: dict[str, int] = {}
        self._pagination = PaginationEngine(self)
        self._bulk = BulkMutationExecutor(self)
        self._log_context = LogContext(session_id=self.id)

    # -- lifecycle ---------------------------------------------------------

    def __enter__(self) -> Session:
        self.begin()
        self._log_context.__enter__()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        try:
            if exc_type is None:
                try:
                    self.commit()
                except BaseException:
                    self.rollback()
                    raise
            else:
                self.rollback()
        finally:
            self.close()
            self._log_context.__exit__(exc_type, exc, tb)

    def begin(self) -> None:
        self._check_open()
        self.store.begin_unit_of_work()

    def commit(self) -> None:
        """Flush pending writes, then commit the store's unit of work."""
        self.flush()
        self.store.commit()
        logger.debug("session_committed", session_id=self.id)

    def rollback(self) -> None:
        """Roll back the store and discard all session state."""
        self.store.rollback()
        if not self.closed:
            self.clear()
        logger.debug("session_rolled_back", session_id=self.id)

    def clear(self) -> None:
        """Discard the identity map and the buffer without flushing.

        References loaded earlier become detached.
        """
        discarded = len(self._pending)
        self._identity_map.clear()
        self._pending.clear()
        self._removed.clear()
        self._generations.clear()
        self.epoch += 1
        logger.debug("session_cleared", session_id=self.id, discarded_writes=discarded)

    def _reconcile(self) -> None:
        """Forget loaded entities after a bulk write; buffered writes and their instances stay."""
        inserts = {w.key for w in self._pending if w.kind == "insert"}
        self._identity_map = {k: r for k, r in self._identity_map.items() if k in inserts}
        self._removed = {w.key for w in self._pending if w.kind == "delete"}
        self.epoch += 1
        logger.debug("session_reconciled", session_id=self.id, kept_writes=len(self._pending))

    def close(self) -> None:
        if self.closed:
            return
        self.clear()
        self.closed = True
        logger.debug("session_closed", session_id=self.id)

    def _check_open(self) -> None:
        if self.closed:
            raise StateError(f"Session {self.id} is closed")

    # -- identity map ------------------------------------------------------

    def describe(self, entity_type: Any) -> EntityShape:
        return self.registry.describe(entity_type)

    def _key_of(self, entity: Any) -> tuple[EntityShape, tuple[str, Any]]:
        shape = self.registry.shape_of(entity)
        return shape, (shape.name, shape.identity_of(entity))

    def _generation(self, name: str) -> int:
        return self._generations.get(name, 0)

    def contains(self, entity: Any) -> bool:
        """Whether this exact instance is tracked (pending or loaded)."""
        _, key = self._key_of(entity)
        record = self._identity_map.get(key)
        return record is not None and record.entity is entity

    def __contains__(self, entity: Any) -> bool:
        return self.contains(entity)

    def __len__(self) -> int:
        return len(self._identity_map)

    @property
    def pending_writes(self) -> int:
        return len(self._pending)

    def is_stale(self, entity: Any) -> bool:
        """Whether a bulk write touched this instance's type after it was loaded."""
        _, key = self._key_of(entity)
        record = self._identity_map.get(key)
        return record is not None and record.entity is entity and self._is_stale(record)

    def _is_stale(self, record: _Record) -> bool:
        return record.snapshot is not None and record.generation < self._generation(record.shape.name)

    def _is_dirty(self, record: _Record) -> bool:
        if record.snapshot is None:
            return True
        return self.registry.column_values(record.shape, record.entity) != record.snapshot

    # -- persist / remove --------------------------------------------------

    def persist(self, entity: Any) -> Any:
        """Track a transient entity and buffer its INSERT.

        Returns:
            The entity's identity (assigned now when absent).

        Raises:
            DuplicateIdentityError: Another instance with this identity is tracked.
            InvalidRequestError: Assigned identity strategy and no identity set.
        """
        self._check_open()
        shape = self.registry.shape_of(entity)
        identity = shape.identity_of(entity)

        if identity is not None:
            existing = self._identity_map.get((shape.name, identity))
            if existing is not None:
                if existing.entity is entity:
                    return identity
                raise DuplicateIdentityError(shape.name, identity)
            self.factory.allocator.observe(shape, identity)
        else:
            identity = self.factory.allocator.allocate(shape)
            setattr(entity, shape.identity.name, identity)

        key = (shape.name, identity)
        self._removed.discard(key)
        self._identity_map[key] = _Record(entity, shape, None, self._generation(shape.name))
        self._pending.append(_PendingWrite("insert", shape, entity, identity))
        logger.debug("entity_persisted", session_id=self.id, entity=shape.name, identity=identity)
        return identity

    def remove(self, entity: Any) -> None:
        """Untrack ``entity`` and buffer its DELETE.

        A pending persist is cancelled instead. An untracked instance is
        looked up by identity first; an instance without identity is ignored.
        """
        self._check_open()
        shape = self.registry.shape_of(entity)
        identity = shape.identity_of(entity)
        if identity is None:
            return

        key = (shape.name, identity)
        if key not in self._identity_map and self.find(shape, identity) is None:
            return

        record = self._identity_map.pop(key)
        if record.snapshot is None:
            self._pending = [w for w in self._pending if not (w.kind == "insert" and w.key == key)]
            logger.debug("persist_cancelled", session_id=self.id, entity=shape.name, identity=identity)
            return

        self._pending.append(_PendingWrite("delete", shape, record.entity, identity))
        self._removed.add(key)
        logger.debug("entity_removed", session_id=self.id, entity=shape.name, identity=identity)

    # -- flush -------------------------------------------------------------

    def flush(self) -> int:
        """Write buffered inserts/deletes in order, then updates for dirty entities.

        Each written item leaves the buffer. On failure the error propagates
        and the failing item (and everything after it) stays pending.

        Returns:
            Number of statements written.
        """
        self._check_open()
        written = 0

        while self._pending:
            write = self._pending[0]
            if write.kind == "insert":
                values = self.registry.column_values(write.shape, write.entity)
                self.store.execute_write(self.builder.build_insert(write.shape, values))
                record = self._identity_map.get(write.key)
                if record is not None and record.entity is write.entity:
                    record.snapshot = values
                    record.generation = self._generation(write.shape.name)
            else:
                self.store.execute_write(self.builder.build_delete_by_id(write.shape, write.identity))
                self._removed.discard(write.key)
            self._pending.pop(0)
            written += 1

        for key, record in list(self._identity_map.items()):
            if record.snapshot is None:
                continue
            values = self.registry.column_values(record.shape, record.entity)
            changes = {col: v for col, v in values.items() if record.snapshot.get(col) != v}
            if not changes:
                continue
            shape = record.shape
            if shape.identity.column in changes:
                raise InvalidRequestError(
                    f"Identity of tracked {shape.name} {key[1]!r} was changed"
                ).with_context(entity_type=shape.name, identity=key[1])
            if self._is_stale(record):
                raise StaleWriteConflictError(
                    shape.name, key[1], f"{shape.name} {key[1]!r} was modified after a bulk write touched it"
                )
            self.store.execute_write(self.builder.build_update_by_id(shape, key[1], changes))
            record.snapshot = values
            written += 1

        if written:
            logger.debug("session_flushed", session_id=self.id, statements=written)
        return written

    def _auto_flush(self) -> None:
        if self.flush_mode is FlushMode.AUTO:
            self.flush()

    def flush_for_write(self) -> None:
        """Flush ahead of a bulk write (``FlushMode.AUTO`` only)."""
        self._check_open()
        self._auto_flush()

    # -- lookups -----------------------------------------------------------

    def _identity_plan(self, shape: EntityShape, identity: Any) -> QueryPlan:
        return self.builder.build(QueryRequest(shape.name, where(**{shape.identity.name: identity})), cached=False)

    def find(self, entity_type: Any, identity: Any) -> Any | None:
        """Entity by identity: identity map first, then one single-row read.

        Returns ``None`` when no row exists.
        """
        self._check_open()
        shape = self.describe(entity_type)
        if identity is None:
            return None
        key = (shape.name, identity)
        if key in self._removed:
            return None

        record = self._identity_map.get(key)
        if record is not None and (record.snapshot is None or not self._is_stale(record)):
            return record.entity

        plan = self._identity_plan(shape, identity)
        rows = self.store.execute_read(plan.statement())
        if not rows:
            if record is not None:
                self._untrack(key)
            return None
        entities = self.materialize(plan, rows)
        return entities[0] if entities else None

    def get(self, entity_type: Any, identity: Any) -> Any:
        """Like :meth:`find` but absence raises :class:`NotFoundError`."""
        entity = self.find(entity_type, identity)
        if entity is None:
            raise NotFoundError(self.describe(entity_type).name, identity)
        return entity

    def refresh(self, entity: Any) -> Any:
        """Overwrite a tracked entity from its current row, discarding local changes.

        Raises:
            InvalidRequestError: The instance is not tracked, or not flushed yet.
            NotFoundError: The row no longer exists (the entity is untracked).
        """
        self._check_open()
        shape, key = self._key_of(entity)
        record = self._identity_map.get(key)
        if record is None or record.entity is not entity:
            raise InvalidRequestError(f"{shape.name} {key[1]!r} is not tracked by this session")
        if record.snapshot is None:
            raise InvalidRequestError(f"{shape.name} {key[1]!r} is pending insert; flush before refresh")

        plan = self._identity_plan(shape, key[1])
        rows = self.store.execute_read(plan.statement())
        if not rows:
            self._untrack(key)
            raise NotFoundError(shape.name, key[1])
        fresh: list[Any] = []
        self._apply_row(record, ROOT, rows[0], self._root_joins(plan), fresh)
        self._resolve_eager(fresh)
        return entity

    def _untrack(self, key: tuple[str, Any]) -> None:
        self._identity_map.pop(key, None)

    # -- queries -----------------------------------------------------------

    def plan(self, request: QueryRequest) -> QueryPlan:
        return self.builder.build(request)

    def fetch(self, plan: QueryPlan, window: Window | None = None) -> list[dict[str, Any]]:
        """Raw rows for ``plan`` (flushing first in ``FlushMode.AUTO``)."""
        self._check_open()
        self._auto_flush()
        return self.store.execute_read(plan.statement(window))

    def count_plan(self, plan: QueryPlan) -> int:
        self._check_open()
        self._auto_flush()
        rows = self.store.execute_read(plan.count_statement())
        return int(rows[0]["total"]) if rows else 0

    def execute(self, request: QueryRequest) -> list[Any]:
        """All results of ``request``: entities, or dicts for projections."""
        plan = self.plan(request)
        rows = self.fetch(plan)
        if plan.is_projection:
            return plan.project(rows)
        return self.materialize(plan, rows)

    def execute_one(self, request: QueryRequest) -> Any | None:
        """Single result or ``None``.

        Raises:
            NonUniqueResultError: More than one row matched.
        """
        results = self.execute(request)
        if len(results) > 1:
            raise NonUniqueResultError(self.describe(request.entity).name, len(results))
        return results[0] if results else None

    def count(self, request: QueryRequest | Any, predicate: Predicate | None = None) -> int:
        """Number of rows matching a request (or an entity type and predicate)."""
        if not isinstance(request, QueryRequest):
            request = QueryRequest(request, predicate or Predicate())
        return self.count_plan(self.plan(request))

    def page(self, request: QueryRequest, pageable: PageRequest | Window) -> Page:
        request, window = resolve_pageable(request, pageable)
        return self._pagination.execute_page(self.plan(request), window)

    def slice(self, request: QueryRequest, pageable: PageRequest | Window) -> Slice:
        request, window = resolve_pageable(request, pageable)
        return self._pagination.execute_slice(self.plan(request), window)

    def load_collection(self, target: Any, mapped_by: str, owner_identity: Any) -> list[Any]:
        """Target entities whose ``mapped_by`` reference points at ``owner_identity``."""
        request = QueryRequest(target, where(**{mapped_by: owner_identity}))
        plan = self.builder.build(request, cached=False)
        return self.materialize(plan, self.fetch(plan))

    # -- bulk --------------------------------------------------------------

    def bulk_update(
        self,
        entity_type: Any,
        predicate: Predicate,
        assignments: Mapping[str, Any],
        *,
        auto_reconcile: bool | None = None,
    ) -> int:
        return self._bulk.bulk_update(entity_type, predicate, assignments, auto_reconcile=auto_reconcile)

    def bulk_delete(self, entity_type: Any, predicate: Predicate, *, auto_reconcile: bool | None = None) -> int:
        return self._bulk.bulk_delete(entity_type, predicate, auto_reconcile=auto_reconcile)

    def after_bulk_write(self, shape: EntityShape, auto_reconcile: bool | None) -> bool:
        """Reconcile the identity map after a bulk write. Returns whether loaded entities were dropped."""
        reconcile = self.auto_reconcile if auto_reconcile is None else auto_reconcile
        if reconcile:
            self._reconcile()
            return True
        self._generations[shape.name] = self._generation(shape.name) + 1
        return False

    # -- materialization ---------------------------------------------------

    @staticmethod
    def _root_joins(plan: QueryPlan) -> dict[str, Join]:
        return {j.path: j for j in plan.joins if j.fetched and j.parent_alias == ROOT}

    def materialize(self, plan: QueryPlan, rows: list[dict[str, Any]]) -> list[Any]:
        """Entities for ``rows`` of an entity plan, merged into the identity map."""
        joins = self._root_joins(plan)
        fresh: list[Any] = []
        entities = []
        for row in rows:
            entity = self._materialize_row(plan.shape, ROOT, row, joins, fresh)
            if entity is not None:
                entities.append(entity)
        if plan.collections and entities:
            self._load_collections(plan, entities, fresh)
        self._resolve_eager(fresh)
        return entities

    def _materialize_row(
        self,
        shape: EntityShape,
        alias: str,
        row: dict[str, Any],
        joins: dict[str, Join],
        fresh: list[Any],
    ) -> Any | None:
        identity = shape.identity.to_python(row[column_alias(alias, shape.identity.column)])
        if identity is None:
            return None
        key = (shape.name, identity)
        if key in self._removed:
            return None

        record = self._identity_map.get(key)
        if record is None:
            record = _Record(shape.instantiate(), shape, None, self._generation(shape.name))
            self._identity_map[key] = record
            self._apply_row(record, alias, row, joins, fresh)
            return record.entity

        if self._is_stale(record):
            if self.strict_staleness or self._is_dirty(record):
                raise StaleWriteConflictError(shape.name, identity)
            self._apply_row(record, alias, row, joins, fresh)
            logger.debug("stale_entity_refreshed", session_id=self.id, entity=shape.name, identity=identity)
        elif joins:
            self._merge_fetched(record, alias, row, joins, fresh)
        return record.entity

    def _apply_row(
        self,
        record: _Record,
        alias: str,
        row: dict[str, Any],
        joins: dict[str, Join],
        fresh: list[Any],
    ) -> None:
        shape, entity = record.shape, record.entity
        for spec in shape.fields:
            setattr(entity, spec.name, spec.to_python(row[column_alias(alias, spec.column)]))

        for assoc in shape.to_one:
            target_shape = self.describe(assoc.target)
            fk = target_shape.identity.to_python(row[column_alias(alias, assoc.foreign_key)])
            join = joins.get(assoc.name)
            target = None
            if join is not None and fk is not None:
                target = self._materialize_row(join.shape, join.alias, row, {}, fresh)
            if target is not None:
                ref = Reference.loaded(assoc.name, assoc.target, target, fk)
            elif fk is None:
                ref = Reference.loaded(assoc.name, assoc.target, None)
            else:
                ref = Reference(assoc.name, assoc.target, fk)
            install(entity, assoc.name, ref.bind(self))

        identity = shape.identity_of(entity)
        for assoc in shape.to_many:
            install(entity, assoc.name, CollectionReference(assoc.name, assoc.target, identity, assoc.mapped_by).bind(self))

        record.snapshot = self.registry.column_values(shape, entity)
        record.generation = self._generation(shape.name)
        fresh.append(entity)

    def _merge_fetched(
        self,
        record: _Record,
        alias: str,
        row: dict[str, Any],
        joins: dict[str, Join],
        fresh: list[Any],
    ) -> None:
        entity = record.entity
        for name, join in joins.items():
            ref = reference_of(entity, name)
            if ref is None or ref.is_loaded:
                continue
            target = self._materialize_row(join.shape, join.alias, row, {}, fresh)
            if target is not None and self.registry.identity_of(target) == ref.identity:
                install(entity, name, Reference.loaded(name, ref.target, target, ref.identity).bind(self))

    def _load_collections(self, plan: QueryPlan, owners: list[Any], fresh: list[Any]) -> None:
        for fetch in plan.collections:
            assoc = fetch.association
            pending = {}
            for owner in owners:
                ref = reference_of(owner, assoc.name)
                if ref is None or not ref.is_loaded:
                    pending[plan.shape.identity_of(owner)] = owner
            if not pending:
                continue

            sub = self.builder.collection_plan(fetch, list(pending))
            rows = self.store.execute_read(sub.statement())
            groups: dict[Any, list[Any]] = {identity: [] for identity in pending}
            fk_alias = sub.alias_of(assoc.foreign_key)
            sub_joins = self._root_joins(sub)
            children = []
            for row in rows:
                child = self._materialize_row(sub.shape, ROOT, row, sub_joins, fresh)
                owner_id = plan.shape.identity.to_python(row[fk_alias])
                if child is not None and owner_id in groups:
                    groups[owner_id].append(child)
                    children.append(child)

            for identity, items in groups.items():
                ref = CollectionReference.loaded(assoc.name, assoc.target, items, identity)
                ref.mapped_by = assoc.mapped_by
                install(pending[identity], assoc.name, ref.bind(self))
            if sub.collections and children:
                self._load_collections(sub, children, fresh)
            logger.debug(
                "collection_batch_loaded",
                session_id=self.id,
                association=f"{plan.shape.name}.{assoc.name}",
                owners=len(pending),
                rows=len(rows),
            )

    def _resolve_eager(self, entities: list[Any]) -> None:
        for entity in entities:
            shape = self.registry.shape_of(entity)
            for assoc in shape.associations:
                if assoc.fetch is not FetchMode.EAGER:
                    continue
                ref = reference_of(entity, assoc.name)
                if ref is None or ref.is_loaded:
                    continue
                try:
                    ref.get()
                except NotFoundError:
                    # kept on the reference and raised on access
                    continue

    def __repr__(self) -> str:
        state = "closed" if self.closed else f"{len(self._identity_map)} tracked, {len(self._pending)} pending"
        return f"<Session {self.id} {self.flush_mode.value} {state}>"


class SessionFactory:
    """Creates sessions sharing one store, registry, plan cache and allocator."""

    def __init__(
        self,
        store: Store,
        registry: EntityRegistry,
        settings: DataSpineSettings | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.store = store
        self.registry = registry.freeze()
        dialect = getattr(store, "dialect", None) or get_dialect(self.settings.dialect)
        self.builder = QueryBuilder(self.registry, dialect, cache_size=self.settings.plan_cache_size)
        self.allocator = IdentityAllocator(store, self.builder)

    @classmethod
    def sqlite(
        cls,
        registry: EntityRegistry,
        path: str | Path = ":memory:",
        settings: DataSpineSettings | None = None,
        *,
        create_tables: bool = True,
    ) -> SessionFactory:
        """Factory over a SQLite file (or memory) store, creating tables by default."""
        from data_spine.store import SqlStore

        store = SqlStore.sqlite(path)
        if create_tables:
            store.create_tables(registry.freeze())
        return cls(store, registry, settings)

    def session(
        self,
        *,
        flush_mode: FlushMode | str | None = None,
        auto_reconcile: bool | None = None,
        strict_staleness: bool | None = None,
    ) -> Session:
        s = self.settings
        return Session(
            self,
            flush_mode=flush_mode or s.flush_mode,
            auto_reconcile=s.auto_reconcile if auto_reconcile is None else auto_reconcile,
            strict_staleness=s.strict_staleness if strict_staleness is None else strict_staleness,
        )


__all__ = ["FlushMode", "Session", "SessionFactory"]
