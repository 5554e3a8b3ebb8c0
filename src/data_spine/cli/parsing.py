"""
Command-line syntax for predicates, sort keys and assignments.

    predicate    age>=20,username=AAA      conjunction of conditions
                 username~mem%             LIKE
                 username=AAA|BBB          IN
                 team=null / team!=null    IS NULL / IS NOT NULL
    sort         -username,age             descending username, then age
    assignments  age=age+1,username=bob    arithmetic or literal values

Values are coerced to the field's registered type.
"""

from __future__ import annotations

import re
from typing import Any

from data_spine.errors import InvalidRequestError, UnknownFieldError
from data_spine.query import Condition, Expression, Op, Predicate, Sort
from data_spine.registry import EntityRegistry, EntityShape

_CONDITION = re.compile(r"^\s*([A-Za-z_][\w.]*)\s*(>=|<=|!=|=|<|>|~)\s*(.*?)\s*$")
_EXPRESSION = re.compile(r"^([A-Za-z_]\w*)\s*([+\-*])\s*(-?\d+(?:\.\d+)?)$")

_OPS = {
    "=": Op.EQ,
    "!=": Op.NE,
    "<": Op.LT,
    "<=": Op.LE,
    ">": Op.GT,
    ">=": Op.GE,
    "~": Op.LIKE,
}

_TRUE = {"true", "1", "yes", "y"}
_FALSE = {"false", "0", "no", "n"}


def _split(text: str) -> list[str]:
    return [part for part in (p.strip() for p in text.split(",")) if part]


def path_type(registry: EntityRegistry, shape: EntityShape, path: str) -> type | None:
    """Python type stored at ``path`` (a to-one association yields the target identity type)."""
    current = shape
    segments = path.split(".")
    for seg in segments[:-1]:
        assoc = current.association(seg)
        if assoc is None:
            return None
        current = registry.describe(assoc.target)
    last = segments[-1]
    if current.has_field(last):
        return current.field(last).python_type
    assoc = current.association(last)
    if assoc is not None and not assoc.many:
        return registry.describe(assoc.target).identity.python_type
    return None


def coerce(raw: str, python_type: type | None) -> Any:
    """Convert command-line text to ``python_type``."""
    if raw.lower() == "null":
        return None
    try:
        if python_type is bool:
            lowered = raw.lower()
            if lowered in _TRUE:
                return True
            if lowered in _FALSE:
                return False
            raise ValueError(raw)
        if python_type in (int, float):
            return python_type(raw)
    except ValueError:
        raise InvalidRequestError(f"Cannot read {raw!r} as {python_type.__name__}") from None
    return raw


def parse_predicate(text: str | None, registry: EntityRegistry, shape: EntityShape) -> Predicate:
    """``age>=20,username=AAA`` → :class:`Predicate`."""
    if not text:
        return Predicate()
    conditions = []
    for part in _split(text):
        match = _CONDITION.match(part)
        if match is None:
            raise InvalidRequestError(f"Cannot parse condition {part!r} (expected field<op>value)")
        path, symbol, raw = match.groups()
        op = _OPS[symbol]
        if op is Op.LIKE:
            conditions.append(Condition(path, op, raw))
            continue
        python_type = path_type(registry, shape, path)
        if op is Op.EQ and "|" in raw:
            conditions.append(Condition(path, Op.IN, tuple(coerce(v, python_type) for v in raw.split("|"))))
            continue
        conditions.append(Condition(path, op, coerce(raw, python_type)))
    return Predicate(tuple(conditions))


def parse_sort(text: str | None) -> Sort:
    """``-username,age`` → :class:`Sort`."""
    if not text:
        return Sort()
    return Sort.by(*_split(text))


def parse_assignments(text: str, registry: EntityRegistry, shape: EntityShape) -> dict[str, Any]:
    """``age=age+1,username=bob`` → ``{"age": F("age") + 1, "username": "bob"}``."""
    assignments: dict[str, Any] = {}
    for part in _split(text):
        name, sep, raw = part.partition("=")
        name, raw = name.strip(), raw.strip()
        if not sep or not name:
            raise InvalidRequestError(f"Cannot parse assignment {part!r} (expected field=value)")
        if not shape.has_field(name) and shape.association(name) is None:
            raise UnknownFieldError(shape.name, name)

        expr = _EXPRESSION.match(raw)
        if expr is not None and shape.has_field(expr.group(1)):
            source, operator, operand = expr.groups()
            number = float(operand) if "." in operand else int(operand)
            assignments[name] = Expression(source, operator, number)
        else:
            assignments[name] = coerce(raw, path_type(registry, shape, name))
    if not assignments:
        raise InvalidRequestError("No assignments given")
    return assignments


__all__ = ["coerce", "parse_assignments", "parse_predicate", "parse_sort", "path_type"]
