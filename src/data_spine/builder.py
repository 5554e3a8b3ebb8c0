"""
Query builder: structured requests → executable plans.

The builder resolves every field path of a :class:`~data_spine.query.QueryRequest`
against registry metadata and produces a :class:`QueryPlan`: one SELECT
(with the row window applied late), the matching COUNT, the joins used to
load fetch-hinted associations in the same round trip, and the batched
collection loads to run after it.

Manifesto:
    - **Structured in, SQL out:** no query language is parsed; requests are values
    - **Deterministic:** same request, same plan, same SQL; the identity is
      always the final sort key so pages never overlap
    - **Bounded round trips:** to-one fetches are LEFT JOINs; every to-many
      fetch is exactly one ``IN`` query, whatever the result size
    - **Cached:** plans are kept in a bounded LRU keyed by the request

Architecture:
    ::

        QueryRequest(Member, age >= 20, sort=-username, fetch={"team"})
                │
                ▼  QueryBuilder.build()
        QueryPlan
          select:  SELECT t0.id AS t0_id, ..., t1.name AS t1_name
                   FROM member t0 LEFT JOIN team t1 ON t1.id = t0.team_id
                   WHERE t0.age >= ? ORDER BY t0.username DESC, t0.id ASC
          count:   SELECT COUNT(*) AS total FROM member t0 WHERE t0.age >= ?
          statement(Window(0, 3)) → select + LIMIT 3 OFFSET 0

Guardrails:
    ❌ DON'T: Filter or sort through a to-many path (row multiplication)
    ✅ DO: Filter on the to-one side (``team.name``) or query the target type

    ❌ DON'T: Interpolate values into SQL
    ✅ DO: Bind every value through the dialect placeholder

Tags:
    query-builder, sql, plan, cache, join, data-spine
"""

from __future__ import annotations

import threading
from collections import OrderedDict
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from data_spine.dialect import Dialect, SQLiteDialect
from data_spine.errors import InvalidRequestError, UnknownFieldError
from data_spine.logging import get_logger
from data_spine.query import Condition, Direction, Expression, F, Op, Predicate, QueryRequest, Window
from data_spine.registry import AssociationSpec, EntityRegistry, EntityShape, FetchMode, FieldSpec

logger = get_logger(__name__)

ROOT = "t0"


@dataclass(frozen=True, slots=True)
class Statement:
    """SQL text plus positional parameters."""

    sql: str
    params: tuple = ()

    def __str__(self) -> str:
        return self.sql


@dataclass(frozen=True, slots=True)
class Join:
    """A to-one LEFT JOIN. ``fetched`` joins also select and materialize the target."""

    path: str
    alias: str
    parent_alias: str
    association: AssociationSpec
    shape: EntityShape
    fetched: bool = False


@dataclass(frozen=True, slots=True)
class CollectionFetch:
    """A to-many association loaded with one batched ``IN`` query."""

    association: AssociationSpec
    target: EntityShape


def column_alias(table_alias: str, column: str) -> str:
    return f"{table_alias}_{column}"


@dataclass(frozen=True)
class QueryPlan:
    """Executable form of a request. Immutable and shareable."""

    request: QueryRequest
    shape: EntityShape
    select_sql: str
    count_sql: str
    params: tuple
    joins: tuple[Join, ...] = ()
    collections: tuple[CollectionFetch, ...] = ()
    projection: tuple[tuple[str, str], ...] = ()
    dialect: Dialect = field(default_factory=SQLiteDialect, repr=False, compare=False)

    @property
    def is_projection(self) -> bool:
        return bool(self.projection)

    @property
    def fetched_joins(self) -> tuple[Join, ...]:
        return tuple(j for j in self.joins if j.fetched)

    def alias_of(self, column: str, table_alias: str = ROOT) -> str:
        return column_alias(table_alias, column)

    def statement(self, window: Window | None = None) -> Statement:
        """The SELECT with ``window`` (default: the request's own window) applied."""
        window = window if window is not None else self.request.window
        if window is None:
            return Statement(self.select_sql, self.params)
        clause = self.dialect.limit_offset(window.limit, window.offset)
        return Statement(f"{self.select_sql} {clause}", self.params)

    def count_statement(self) -> Statement:
        """COUNT over the predicate only (and the joins the predicate needs)."""
        return Statement(self.count_sql, self.params)

    def project(self, rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
        return [{path: row[alias] for path, alias in self.projection} for row in rows]


class _Scope:
    """Join and parameter bookkeeping while one statement is built."""

    def __init__(self, builder: QueryBuilder, shape: EntityShape) -> None:
        self.builder = builder
        self.shape = shape
        self.joins: OrderedDict[str, Join] = OrderedDict()
        self.params: list[Any] = []
        self.predicate_paths: set[str] = set()

    def join(self, path: str, parent_alias: str, assoc: AssociationSpec, *, fetched: bool = False) -> Join:
        existing = self.joins.get(path)
        if existing is not None:
            if fetched and not existing.fetched:
                existing = Join(existing.path, existing.alias, parent_alias, assoc, existing.shape, True)
                self.joins[path] = existing
            return existing
        target = self.builder.registry.describe(assoc.target)
        join = Join(path, f"t{len(self.joins) + 1}", parent_alias, assoc, target, fetched)
        self.joins[path] = join
        return join

    def resolve(self, path: str, *, for_predicate: bool = False) -> tuple[str, str, FieldSpec | None]:
        """``path`` → (table alias, column, field spec or ``None`` for a foreign key)."""
        segments = path.split(".")
        shape, alias = self.shape, ROOT
        prefix: list[str] = []
        for seg in segments[:-1]:
            assoc = shape.association(seg)
            if assoc is None:
                if shape.has_field(seg):
                    raise InvalidRequestError(f"'{shape.name}.{seg}' is not an association (in path '{path}')")
                raise UnknownFieldError(shape.name, seg)
            if assoc.many:
                raise InvalidRequestError(
                    f"Path '{path}' traverses collection '{shape.name}.{seg}'"
                ).with_context(entity_type=self.shape.name, field=path)
            prefix.append(seg)
            joined = ".".join(prefix)
            if for_predicate:
                self.predicate_paths.add(joined)
            join = self.join(joined, alias, assoc)
            shape, alias = join.shape, join.alias

        last = segments[-1]
        if shape.has_field(last):
            spec = shape.field(last)
            return alias, spec.column, spec
        assoc = shape.association(last)
        if assoc is None:
            raise UnknownFieldError(shape.name, last)
        if assoc.many:
            raise InvalidRequestError(
                f"Collection '{shape.name}.{last}' cannot be filtered, sorted or selected"
            ).with_context(entity_type=self.shape.name, field=path)
        return alias, assoc.foreign_key, None

    def bind(self, value: Any, spec: FieldSpec | None) -> str:
        registry = self.builder.registry
        if registry.is_entity(value):
            value = registry.identity_of(value)
        elif spec is not None:
            value = spec.to_db(value)
        self.params.append(value)
        return self.builder.dialect.placeholder(len(self.params) - 1)


class QueryBuilder:
    """Builds and caches :class:`QueryPlan` objects for one registry.

    Thread-safe: the plan cache is guarded by a lock; plans are immutable.
    """

    def __init__(
        self,
        registry: EntityRegistry,
        dialect: Dialect | None = None,
        *,
        cache_size: int = 256,
    ) -> None:
        self.registry = registry.freeze()
        self.dialect: Dialect = dialect or SQLiteDialect()
        self._cache: OrderedDict[QueryRequest, QueryPlan] = OrderedDict()
        self._cache_size = cache_size
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    # -- plan cache --------------------------------------------------------

    def build(self, request: QueryRequest, *, cached: bool = True) -> QueryPlan:
        """Plan for ``request``, served from the LRU cache when possible.

        Pass ``cached=False`` for one-off requests (identity lookups, lazy
        collection loads) that would only churn the cache.

        Raises:
            UnknownEntityTypeError: Entity type not registered.
            UnknownFieldError: A path names a missing field.
            InvalidRequestError: A path traverses a collection.
        """
        if not cached or self._cache_size <= 0:
            return self._build(request)
        try:
            hash(request)
        except TypeError:
            return self._build(request)

        with self._lock:
            plan = self._cache.get(request)
            if plan is not None:
                self._cache.move_to_end(request)
                self._hits += 1
                return plan
            self._misses += 1

        plan = self._build(request)
        with self._lock:
            self._cache[request] = plan
            self._cache.move_to_end(request)
            while len(self._cache) > self._cache_size:
                self._cache.popitem(last=False)
        return plan

    def cache_info(self) -> dict[str, int]:
        with self._lock:
            return {
                "hits": self._hits,
                "misses": self._misses,
                "size": len(self._cache),
                "max_size": self._cache_size,
            }

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()
            self._hits = self._misses = 0

    # -- SELECT ------------------------------------------------------------

    def _build(self, request: QueryRequest) -> QueryPlan:
        shape = self.registry.describe(request.entity)
        scope = _Scope(self, shape)

        collections: list[CollectionFetch] = []
        projection: list[tuple[str, str]] = []
        projected: dict[str, str] = {}

        if request.projection:
            for path in request.projection:
                alias, column, _ = scope.resolve(path)
                name = column_alias(alias, column)
                projection.append((path, name))
                projected[name] = f"{alias}.{column} AS {name}"
        else:
            for name in self._fetch_names(shape, request.fetch):
                assoc = shape.association(name)
                if assoc.many:
                    collections.append(CollectionFetch(assoc, self.registry.describe(assoc.target)))
                else:
                    scope.join(name, ROOT, assoc, fetched=True)

        where = self._where(scope, request.predicate)
        order_by = self._order_by(scope, request)

        if projection:
            selected = list(projected.values())
        else:
            selected = self._select_columns(ROOT, shape)
            for join in scope.joins.values():
                if join.fetched:
                    selected.extend(self._select_columns(join.alias, join.shape))

        from_sql = self._from(shape, scope.joins.values())
        select_sql = f"SELECT {', '.join(selected)} {from_sql}{where} ORDER BY {order_by}"

        needed = [j for j in scope.joins.values() if j.path in scope.predicate_paths]
        count_sql = f"SELECT COUNT(*) AS total {self._from(shape, needed)}{where}"

        plan = QueryPlan(
            request=request,
            shape=shape,
            select_sql=select_sql,
            count_sql=count_sql,
            params=tuple(scope.params),
            joins=tuple(scope.joins.values()),
            collections=tuple(collections),
            projection=tuple(projection),
            dialect=self.dialect,
        )
        logger.debug("query_plan_built", entity=shape.name, sql=select_sql)
        return plan

    def _fetch_names(self, shape: EntityShape, hints: Iterable[str]) -> list[str]:
        names = []
        for name in sorted(hints):
            if "." in name:
                raise InvalidRequestError(f"Fetch hint '{name}' must name an association of {shape.name}")
            if shape.association(name) is None:
                raise UnknownFieldError(shape.name, name)
            names.append(name)
        for assoc in shape.associations:
            if assoc.fetch is FetchMode.EAGER and assoc.name not in names:
                names.append(assoc.name)
        return names

    def _select_columns(self, alias: str, shape: EntityShape) -> list[str]:
        return [f"{alias}.{col} AS {column_alias(alias, col)}" for col in shape.columns]

    def _from(self, shape: EntityShape, joins: Iterable[Join]) -> str:
        parts = [f"FROM {shape.table} {ROOT}"]
        for join in joins:
            parts.append(
                f"LEFT JOIN {join.shape.table} {join.alias} "
                f"ON {join.alias}.{join.shape.identity.column} = {join.parent_alias}.{join.association.foreign_key}"
            )
        return " ".join(parts)

    def _where(self, scope: _Scope, predicate: Predicate, *, qualify: bool = True) -> str:
        if predicate.is_empty:
            return ""
        clauses = []
        for cond in predicate.conditions:
            alias, column, spec = scope.resolve(cond.path, for_predicate=True)
            ref = f"{alias}.{column}" if qualify else column
            clauses.append(self._condition(scope, cond, ref, spec))
        return " WHERE " + " AND ".join(clauses)

    def _condition(self, scope: _Scope, cond: Condition, ref: str, spec: FieldSpec | None) -> str:
        op = cond.op
        if op is Op.EQ and cond.value is None:
            op = Op.IS_NULL
        elif op is Op.NE and cond.value is None:
            op = Op.NOT_NULL

        if op.unary:
            return f"{ref} {op.value}"
        if op is Op.IN:
            if not cond.value:
                return "1 = 0"
            placeholders = ", ".join(scope.bind(v, spec) for v in cond.value)
            return f"{ref} IN ({placeholders})"
        return f"{ref} {op.value} {scope.bind(cond.value, spec)}"

    def _order_by(self, scope: _Scope, request: QueryRequest) -> str:
        shape = scope.shape
        keys = []
        has_identity = False
        for key in request.sort.keys:
            alias, column, _ = scope.resolve(key.path)
            if alias == ROOT and column == shape.identity.column:
                has_identity = True
            keys.append(f"{alias}.{column} {key.direction.value}")
        if not has_identity:
            keys.append(f"{ROOT}.{shape.identity.column} {Direction.ASC.value}")
        return ", ".join(keys)

    def collection_plan(self, fetch: CollectionFetch, owner_ids: Iterable[Any]) -> QueryPlan:
        """Uncached plan loading ``fetch`` for all ``owner_ids`` in one query."""
        assoc = fetch.association
        request = QueryRequest(assoc.target, F(assoc.mapped_by).in_(owner_ids))
        return self._build(request)

    # -- writes ------------------------------------------------------------

    def build_insert(self, shape: EntityShape, values: Mapping[str, Any]) -> Statement:
        columns = list(values)
        return Statement(
            f"INSERT INTO {shape.table} ({', '.join(columns)}) "
            f"VALUES ({self.dialect.placeholders(len(columns))})",
            tuple(values.values()),
        )

    def build_update_by_id(self, shape: EntityShape, identity: Any, changes: Mapping[str, Any]) -> Statement:
        sets = ", ".join(f"{col} = {self.dialect.placeholder(i)}" for i, col in enumerate(changes))
        ph = self.dialect.placeholder(len(changes))
        return Statement(
            f"UPDATE {shape.table} SET {sets} WHERE {shape.identity.column} = {ph}",
            (*changes.values(), shape.identity.to_db(identity)),
        )

    def build_delete_by_id(self, shape: EntityShape, identity: Any) -> Statement:
        return Statement(
            f"DELETE FROM {shape.table} WHERE {shape.identity.column} = {self.dialect.placeholder(0)}",
            (shape.identity.to_db(identity),),
        )

    def max_identity_statement(self, shape: EntityShape) -> Statement:
        return Statement(f"SELECT MAX({shape.identity.column}) AS max_id FROM {shape.table}")

    def build_update(
        self,
        entity_type: Any,
        predicate: Predicate,
        assignments: Mapping[str, Any],
    ) -> Statement:
        """Set-based UPDATE. Values are literals, entities or :class:`Expression`.

        Raises:
            InvalidRequestError: No assignments, or an assignment targets the
                identity, a collection or a dotted path.
            UnknownFieldError: An assignment or condition names a missing field.
        """
        shape = self.registry.describe(entity_type)
        if not assignments:
            raise InvalidRequestError(f"Bulk update of {shape.name} needs at least one assignment")

        scope = _Scope(self, shape)
        sets = []
        for name, value in assignments.items():
            column, spec = self._assignment_target(shape, name)
            if isinstance(value, Expression):
                source = self._assignment_source(shape, value.path)
                sets.append(f"{column} = {source.column} {value.operator} {scope.bind(value.operand, None)}")
            else:
                sets.append(f"{column} = {scope.bind(value, spec)}")

        where = self._bulk_where(scope, shape, predicate)
        return Statement(f"UPDATE {shape.table} SET {', '.join(sets)}{where}", tuple(scope.params))

    def build_delete(self, entity_type: Any, predicate: Predicate) -> Statement:
        """Set-based DELETE over ``predicate``."""
        shape = self.registry.describe(entity_type)
        scope = _Scope(self, shape)
        where = self._bulk_where(scope, shape, predicate)
        return Statement(f"DELETE FROM {shape.table}{where}", tuple(scope.params))

    def _bulk_where(self, scope: _Scope, shape: EntityShape, predicate: Predicate) -> str:
        if not any("." in path for path in predicate.paths()):
            return self._where(scope, predicate, qualify=False)
        # joined predicates go through an identity subquery
        where = self._where(scope, predicate)
        joins = [j for j in scope.joins.values() if j.path in scope.predicate_paths]
        sub = f"SELECT {ROOT}.{shape.identity.column} {self._from(shape, joins)}{where}"
        return f" WHERE {shape.identity.column} IN ({sub})"

    def _assignment_target(self, shape: EntityShape, name: str) -> tuple[str, FieldSpec | None]:
        if "." in name:
            raise InvalidRequestError(f"Cannot assign through path '{name}'")
        if name == shape.identity.name:
            raise InvalidRequestError(f"Identity '{shape.name}.{name}' cannot be assigned")
        if shape.has_field(name):
            spec = shape.field(name)
            return spec.column, spec
        assoc = shape.association(name)
        if assoc is None:
            raise UnknownFieldError(shape.name, name)
        if assoc.many:
            raise InvalidRequestError(f"Collection '{shape.name}.{name}' cannot be assigned")
        return assoc.foreign_key, None

    def _assignment_source(self, shape: EntityShape, path: str) -> FieldSpec:
        if "." in path:
            raise InvalidRequestError(f"Assignment expressions may only read the row's own fields, got '{path}'")
        return shape.field(path)


__all__ = [
    "Statement",
    "Join",
    "CollectionFetch",
    "QueryPlan",
    "QueryBuilder",
    "column_alias",
]
