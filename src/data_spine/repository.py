"""Repository facade over a session for one entity type.

:class:`Repository` gives the usual data-access vocabulary (``save``,
``find_by_id``, ``find_page``, ``bulk_update`` ...) on top of explicit
:class:`~data_spine.query.QueryRequest` values, so domain code reads like a
repository while every query stays a plain, cacheable request.

Architecture::

    ┌────────────────────────────────────────────────────────────────────┐
    │                       Repository[Member]                           │
    │                                                                    │
    │   session: Session         ← unit of work                          │
    │   entity_type: Member      ← registered class                      │
    │                                                                    │
    │   save / delete / find_by_id / get_by_id / count                   │
    │   find(predicate, sort, fetch)       → list[Member]                │
    │   find_one / find_first              → Member | None               │
    │   find_page / find_slice             → Page / Slice                │
    │   find_values / project              → scalars / dicts / DTOs      │
    │   bulk_update / bulk_delete          → affected rows               │
    └────────────────────────────────────────────────────────────────────┘

Usage:
    >>> members = Repository(session, Member)
    >>> members.save(Member("AAA", 10))
    >>> members.find(where(username="AAA") & (F("age") > 5))
    [Member(id=1, username='AAA', age=10)]

Tags:
    repository, facade, query, pagination, data-spine
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from typing import Any

from data_spine.paging import Page, Slice
from data_spine.query import PageRequest, Predicate, QueryRequest, Sort, Window
from data_spine.session import Session


class Repository[T]:
    """Data-access operations for one entity type within a session."""

    def __init__(self, session: Session, entity_type: type[T]) -> None:
        self.session = session
        self.entity_type = entity_type
        self.shape = session.describe(entity_type)

    def _request(
        self,
        predicate: Predicate | None = None,
        sort: Sort | None = None,
        fetch: Iterable[str] = (),
        window: Window | None = None,
    ) -> QueryRequest:
        return QueryRequest(
            self.entity_type,
            predicate or Predicate(),
            sort or Sort(),
            window,
            frozenset(fetch),
        )

    # -- CRUD --------------------------------------------------------------

    def save(self, entity: T) -> T:
        self.session.persist(entity)
        return entity

    def save_all(self, entities: Iterable[T]) -> list[T]:
        return [self.save(e) for e in entities]

    def delete(self, entity: T) -> None:
        self.session.remove(entity)

    def find_by_id(self, identity: Any) -> T | None:
        return self.session.find(self.entity_type, identity)

    def get_by_id(self, identity: Any) -> T:
        return self.session.get(self.entity_type, identity)

    def exists_by_id(self, identity: Any) -> bool:
        return self.find_by_id(identity) is not None

    def find_all(self, sort: Sort | None = None, *, fetch: Iterable[str] = ()) -> list[T]:
        return self.session.execute(self._request(sort=sort, fetch=fetch))

    def count(self, predicate: Predicate | None = None) -> int:
        return self.session.count(self._request(predicate))

    # -- queries -----------------------------------------------------------

    def find(
        self,
        predicate: Predicate | None = None,
        sort: Sort | None = None,
        *,
        fetch: Iterable[str] = (),
    ) -> list[T]:
        return self.session.execute(self._request(predicate, sort, fetch))

    def find_one(self, predicate: Predicate, *, fetch: Iterable[str] = ()) -> T | None:
        """Single match or ``None``; several matches raise ``NonUniqueResultError``."""
        return self.session.execute_one(self._request(predicate, fetch=fetch))

    def find_first(self, predicate: Predicate | None = None, sort: Sort | None = None) -> T | None:
        results = self.session.execute(self._request(predicate, sort, window=Window(0, 1)))
        return results[0] if results else None

    def find_page(
        self,
        predicate: Predicate | None,
        pageable: PageRequest | Window,
        *,
        fetch: Iterable[str] = (),
    ) -> Page[T]:
        return self.session.page(self._request(predicate, fetch=fetch), pageable)

    def find_slice(
        self,
        predicate: Predicate | None,
        pageable: PageRequest | Window,
        *,
        fetch: Iterable[str] = (),
    ) -> Slice[T]:
        return self.session.slice(self._request(predicate, fetch=fetch), pageable)

    def find_values(self, path: str, predicate: Predicate | None = None, sort: Sort | None = None) -> list[Any]:
        """One column (``"username"``, ``"team.name"``) instead of entities."""
        request = QueryRequest(self.entity_type, predicate or Predicate(), sort or Sort(), projection=(path,))
        return [row[path] for row in self.session.execute(request)]

    def project(
        self,
        paths: Iterable[str],
        predicate: Predicate | None = None,
        sort: Sort | None = None,
        *,
        into: Callable[..., Any] | None = None,
    ) -> list[Any]:
        """Selected paths as dicts, or built with ``into(**fields)``.

        Dotted paths become underscored keyword names (``team.name`` → ``team_name``).
        """
        request = QueryRequest(self.entity_type, predicate or Predicate(), sort or Sort(), projection=tuple(paths))
        rows = self.session.execute(request)
        if into is None:
            return rows
        return [into(**{path.replace(".", "_"): value for path, value in row.items()}) for row in rows]

    # -- bulk --------------------------------------------------------------

    def bulk_update(
        self,
        predicate: Predicate,
        assignments: Mapping[str, Any],
        *,
        auto_reconcile: bool | None = None,
    ) -> int:
        return self.session.bulk_update(self.entity_type, predicate, assignments, auto_reconcile=auto_reconcile)

    def bulk_delete(self, predicate: Predicate, *, auto_reconcile: bool | None = None) -> int:
        return self.session.bulk_delete(self.entity_type, predicate, auto_reconcile=auto_reconcile)

    def __repr__(self) -> str:
        return f"Repository({self.shape.name})"


__all__ = ["Repository"]
