"""
Query request vocabulary.

A query is an explicit, immutable value instead of a method name to be
parsed: entity type + predicate + sort + window + fetch hints (+ optional
projection). Every value here is frozen and hashable so identical requests
build identical (and cacheable) plans.

Architecture:
    ::

        F("age") >= 20                      → Predicate (one Condition)
        where(username="AAA") & (F("age") > 5) → Predicate (conjunction)
        Sort.by("-username", "id")          → Sort (ordered SortKeys)
        PageRequest.of(0, 3, sort)          → page number + size + sort
        Window(offset=0, limit=3)           → raw row window

        QueryRequest(Member, predicate, sort, window, fetch={"team"})

Examples:
    >>> from data_spine.query import F, QueryRequest, Sort, where
    >>> req = QueryRequest("member", where(age=10), Sort.by("-username"))
    >>> req.predicate.conditions[0].path
    'age'
    >>> (F("age") + 1).operator
    '+'

Tags:
    query, predicate, sort, pagination, data-spine
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from data_spine.errors import InvalidRequestError


class Op(str, Enum):
    """Comparison operators a condition may use."""

    EQ = "="
    NE = "!="
    LT = "<"
    LE = "<="
    GT = ">"
    GE = ">="
    IN = "IN"
    LIKE = "LIKE"
    IS_NULL = "IS NULL"
    NOT_NULL = "IS NOT NULL"

    @property
    def unary(self) -> bool:
        return self in (Op.IS_NULL, Op.NOT_NULL)


def _freeze(value: Any) -> Any:
    if isinstance(value, (list, set, frozenset)):
        return tuple(value)
    return value


@dataclass(frozen=True, slots=True)
class Condition:
    """One field comparison. ``path`` may traverse a to-one association (``team.name``)."""

    path: str
    op: Op
    value: Any = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "op", Op(self.op))
        object.__setattr__(self, "value", _freeze(self.value))
        if self.op is Op.IN and not isinstance(self.value, tuple):
            raise InvalidRequestError(f"IN condition on '{self.path}' needs a sequence of values")

    def __str__(self) -> str:
        if self.op.unary:
            return f"{self.path} {self.op.value}"
        return f"{self.path} {self.op.value} {self.value!r}"


@dataclass(frozen=True, slots=True)
class Predicate:
    """Conjunction of conditions. The empty predicate matches every row."""

    conditions: tuple[Condition, ...] = ()

    def __and__(self, other: Predicate) -> Predicate:
        return Predicate(self.conditions + other.conditions)

    @property
    def is_empty(self) -> bool:
        return not self.conditions

    def paths(self) -> tuple[str, ...]:
        return tuple(c.path for c in self.conditions)

    def __str__(self) -> str:
        return " AND ".join(str(c) for c in self.conditions) or "<all>"


def where(**equals: Any) -> Predicate:
    """Equality predicate from keyword arguments (``None`` means ``IS NULL``)."""
    conditions = []
    for path, value in equals.items():
        if value is None:
            conditions.append(Condition(path, Op.IS_NULL))
        elif isinstance(value, (list, tuple, set, frozenset)):
            conditions.append(Condition(path, Op.IN, value))
        else:
            conditions.append(Condition(path, Op.EQ, value))
    return Predicate(tuple(conditions))


@dataclass(frozen=True, slots=True)
class Expression:
    """Arithmetic over a row's own field, used as a bulk assignment value."""

    path: str
    operator: str
    operand: int | float

    def __post_init__(self) -> None:
        if self.operator not in ("+", "-", "*"):
            raise InvalidRequestError(f"Unsupported operator in expression: {self.operator!r}")


class F:
    """Field reference used to build conditions and assignment expressions.

    >>> F("age") >= 20
    Predicate(conditions=(Condition(path='age', op=<Op.GE: '>='>, value=20),))
    """

    __slots__ = ("path",)
    __hash__ = None  # type: ignore[assignment]

    def __init__(self, path: str) -> None:
        self.path = path

    def _cond(self, op: Op, value: Any = None) -> Predicate:
        return Predicate((Condition(self.path, op, value),))

    def __eq__(self, value: Any) -> Predicate:  # type: ignore[override]
        return self._cond(Op.IS_NULL) if value is None else self._cond(Op.EQ, value)

    def __ne__(self, value: Any) -> Predicate:  # type: ignore[override]
        return self._cond(Op.NOT_NULL) if value is None else self._cond(Op.NE, value)

    def __lt__(self, value: Any) -> Predicate:
        return self._cond(Op.LT, value)

    def __le__(self, value: Any) -> Predicate:
        return self._cond(Op.LE, value)

    def __gt__(self, value: Any) -> Predicate:
        return self._cond(Op.GT, value)

    def __ge__(self, value: Any) -> Predicate:
        return self._cond(Op.GE, value)

    def in_(self, values: Iterable[Any]) -> Predicate:
        return self._cond(Op.IN, tuple(values))

    def like(self, pattern: str) -> Predicate:
        return self._cond(Op.LIKE, pattern)

    def is_null(self) -> Predicate:
        return self._cond(Op.IS_NULL)

    def is_not_null(self) -> Predicate:
        return self._cond(Op.NOT_NULL)

    def __add__(self, operand: int | float) -> Expression:
        return Expression(self.path, "+", operand)

    def __sub__(self, operand: int | float) -> Expression:
        return Expression(self.path, "-", operand)

    def __mul__(self, operand: int | float) -> Expression:
        return Expression(self.path, "*", operand)

    def __repr__(self) -> str:
        return f"F({self.path!r})"


class Direction(str, Enum):
    ASC = "ASC"
    DESC = "DESC"


@dataclass(frozen=True, slots=True)
class SortKey:
    path: str
    direction: Direction = Direction.ASC

    def __str__(self) -> str:
        return f"{'-' if self.direction is Direction.DESC else ''}{self.path}"


@dataclass(frozen=True, slots=True)
class Sort:
    """Ordered sort keys. ``Sort.by("-username", "age")`` sorts username descending, then age."""

    keys: tuple[SortKey, ...] = ()

    @classmethod
    def by(cls, *paths: str) -> Sort:
        keys = []
        for path in paths:
            if path.startswith("-"):
                keys.append(SortKey(path[1:], Direction.DESC))
            else:
                keys.append(SortKey(path.lstrip("+"), Direction.ASC))
        return cls(tuple(keys))

    @classmethod
    def asc(cls, *paths: str) -> Sort:
        return cls(tuple(SortKey(p, Direction.ASC) for p in paths))

    @classmethod
    def desc(cls, *paths: str) -> Sort:
        return cls(tuple(SortKey(p, Direction.DESC) for p in paths))

    def and_(self, other: Sort) -> Sort:
        return Sort(self.keys + other.keys)

    @property
    def is_unsorted(self) -> bool:
        return not self.keys

    def __str__(self) -> str:
        return ",".join(str(k) for k in self.keys)


@dataclass(frozen=True, slots=True)
class Window:
    """Row window ``[offset, offset + limit)``."""

    offset: int = 0
    limit: int = 20

    def __post_init__(self) -> None:
        if self.offset < 0:
            raise InvalidRequestError(f"Window offset must be >= 0, got {self.offset}")
        if self.limit <= 0:
            raise InvalidRequestError(f"Window limit must be > 0, got {self.limit}")

    @property
    def number(self) -> int:
        """Zero-based page number this window corresponds to."""
        return self.offset // self.limit


@dataclass(frozen=True, slots=True)
class PageRequest:
    """Page number + page size + sort, converted to a :class:`Window`."""

    page: int = 0
    size: int = 20
    sort: Sort = field(default_factory=Sort)

    def __post_init__(self) -> None:
        if self.page < 0:
            raise InvalidRequestError(f"Page index must be >= 0, got {self.page}")
        if self.size <= 0:
            raise InvalidRequestError(f"Page size must be > 0, got {self.size}")

    @classmethod
    def of(cls, page: int, size: int, sort: Sort | None = None) -> PageRequest:
        return cls(page, size, sort or Sort())

    @property
    def window(self) -> Window:
        return Window(offset=self.page * self.size, limit=self.size)

    def next(self) -> PageRequest:
        return replace(self, page=self.page + 1)

    def previous_or_first(self) -> PageRequest:
        return replace(self, page=max(self.page - 1, 0))


@dataclass(frozen=True, slots=True)
class QueryRequest:
    """Structured query request.

    Attributes:
        entity: Entity class or registered entity name.
        predicate: Conjunction of conditions.
        sort: Sort keys; the identity is always appended as a final tie-break.
        window: Optional row window (``None`` → all matching rows).
        fetch: Association names to load in the same round trip.
        projection: Field paths to return as dicts instead of entities.
    """

    entity: Any
    predicate: Predicate = field(default_factory=Predicate)
    sort: Sort = field(default_factory=Sort)
    window: Window | None = None
    fetch: frozenset[str] = frozenset()
    projection: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "fetch", frozenset(self.fetch))
        object.__setattr__(self, "projection", tuple(self.projection))
        if self.projection and self.fetch:
            raise InvalidRequestError("Fetch hints do not apply to projection queries")

    def with_window(self, window: Window | None) -> QueryRequest:
        return replace(self, window=window)

    def with_sort(self, sort: Sort) -> QueryRequest:
        return replace(self, sort=sort)

    def describe(self) -> str:
        """Human-readable one-liner used in logs and CLI errors."""
        name = getattr(self.entity, "__name__", self.entity)
        parts = [f"{name} where {self.predicate}"]
        if not self.sort.is_unsorted:
            parts.append(f"sort {self.sort}")
        if self.window is not None:
            parts.append(f"window {self.window.offset}+{self.window.limit}")
        if self.fetch:
            parts.append(f"fetch {','.join(sorted(self.fetch))}")
        if self.projection:
            parts.append(f"select {','.join(self.projection)}")
        return " ".join(parts)


__all__ = [
    "Op",
    "Condition",
    "Predicate",
    "where",
    "Expression",
    "F",
    "Direction",
    "SortKey",
    "Sort",
    "Window",
    "PageRequest",
    "QueryRequest",
]
