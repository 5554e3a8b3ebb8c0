"""
Pagination engine: Page and Slice results over a query plan.

Manifesto:
    - **Page** answers "how many in total": one bounded select plus one
      count query; ``total_pages = ceil(total / limit)``
    - **Slice** answers "is there more": one select of ``limit + 1`` rows,
      no count query
    - Both keep the plan's ordering, which always ends with the identity,
      so consecutive windows never overlap or skip rows

Architecture:
    ::

        PageRequest.of(0, 3, Sort.desc("username"))
                │ window = Window(offset=0, limit=3)
                ▼
        PaginationEngine.execute_page(plan, window)
            ├── SELECT ... LIMIT 3 OFFSET 0      → content
            └── SELECT COUNT(*) ...              → total_elements
        Page(content, number=0, size=3, total_elements=5)
            total_pages=2, is_first=True, has_next=True

Examples:
    >>> page = session.page(QueryRequest(Member, where(age=10)),
    ...                     PageRequest.of(0, 3, Sort.desc("username")))
    >>> len(page.content), page.total_elements, page.total_pages
    (3, 5, 2)
    >>> page.map(lambda m: m.username).content
    ['member5', 'member4', 'member3']

Tags:
    pagination, page, slice, window, count, data-spine
"""

from __future__ import annotations

import math
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from data_spine.errors import InvalidRequestError
from data_spine.logging import get_logger
from data_spine.query import PageRequest, QueryRequest, Window

if TYPE_CHECKING:
    from data_spine.builder import QueryPlan
    from data_spine.session import Session

logger = get_logger(__name__)


@dataclass(frozen=True)
class Slice[T]:
    """A window of results that knows whether more rows follow."""

    content: list[T] = field(default_factory=list)
    offset: int = 0
    size: int = 20
    has_next: bool = False

    @property
    def number(self) -> int:
        return self.offset // self.size

    @property
    def number_of_elements(self) -> int:
        return len(self.content)

    @property
    def is_first(self) -> bool:
        return self.offset == 0

    @property
    def is_last(self) -> bool:
        return not self.has_next

    @property
    def has_previous(self) -> bool:
        return self.offset > 0

    @property
    def has_content(self) -> bool:
        return bool(self.content)

    def next_window(self) -> Window:
        return Window(self.offset + self.size, self.size)

    def map[U](self, fn: Callable[[T], U]) -> Slice[U]:
        return Slice([fn(item) for item in self.content], self.offset, self.size, self.has_next)

    def __iter__(self) -> Iterator[T]:
        return iter(self.content)

    def __len__(self) -> int:
        return len(self.content)

    def to_dict(self) -> dict[str, Any]:
        return {
            "number": self.number,
            "size": self.size,
            "number_of_elements": self.number_of_elements,
            "is_first": self.is_first,
            "is_last": self.is_last,
            "has_next": self.has_next,
            "has_previous": self.has_previous,
        }


@dataclass(frozen=True)
class Page[T]:
    """A window of results plus the total count of matching rows."""

    content: list[T] = field(default_factory=list)
    offset: int = 0
    size: int = 20
    total_elements: int = 0

    @property
    def number(self) -> int:
        return self.offset // self.size

    @property
    def number_of_elements(self) -> int:
        return len(self.content)

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total_elements / self.size)

    @property
    def has_next(self) -> bool:
        return self.offset + self.size < self.total_elements

    @property
    def has_previous(self) -> bool:
        return self.offset > 0

    @property
    def is_first(self) -> bool:
        return self.offset == 0

    @property
    def is_last(self) -> bool:
        return not self.has_next

    @property
    def has_content(self) -> bool:
        return bool(self.content)

    def next_window(self) -> Window:
        return Window(self.offset + self.size, self.size)

    def map[U](self, fn: Callable[[T], U]) -> Page[U]:
        return Page([fn(item) for item in self.content], self.offset, self.size, self.total_elements)

    def __iter__(self) -> Iterator[T]:
        return iter(self.content)

    def __len__(self) -> int:
        return len(self.content)

    def to_dict(self) -> dict[str, Any]:
        return {
            "number": self.number,
            "size": self.size,
            "number_of_elements": self.number_of_elements,
            "total_elements": self.total_elements,
            "total_pages": self.total_pages,
            "is_first": self.is_first,
            "is_last": self.is_last,
            "has_next": self.has_next,
            "has_previous": self.has_previous,
        }


def _check_window(window: Any) -> Window:
    offset = getattr(window, "offset", None)
    limit = getattr(window, "limit", None)
    if not isinstance(offset, int) or offset < 0:
        raise InvalidRequestError(f"Window offset must be an int >= 0, got {offset!r}")
    if not isinstance(limit, int) or limit <= 0:
        raise InvalidRequestError(f"Window limit must be an int > 0, got {limit!r}")
    return window if isinstance(window, Window) else Window(offset, limit)


def resolve_pageable(request: QueryRequest, pageable: PageRequest | Window) -> tuple[QueryRequest, Window]:
    """Split a page request into (request with its sort applied, window)."""
    if isinstance(pageable, PageRequest):
        if not pageable.sort.is_unsorted:
            request = request.with_sort(pageable.sort)
        return request.with_window(None), pageable.window
    return request.with_window(None), _check_window(pageable)


class PaginationEngine:
    """Runs plans as pages and slices for one session."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def execute_page(self, plan: QueryPlan, window: Window) -> Page:
        """Bounded select over ``window`` plus a count query.

        Raises:
            InvalidRequestError: ``limit <= 0`` or ``offset < 0``.
        """
        window = _check_window(window)
        rows = self._session.fetch(plan, window)
        content = self._content(plan, rows)
        total = self._session.count_plan(plan)
        logger.debug(
            "page_executed",
            entity=plan.shape.name,
            offset=window.offset,
            limit=window.limit,
            total=total,
        )
        return Page(content, window.offset, window.limit, total)

    def execute_slice(self, plan: QueryPlan, window: Window) -> Slice:
        """Select ``limit + 1`` rows; the extra row only sets ``has_next``.

        Raises:
            InvalidRequestError: ``limit <= 0`` or ``offset < 0``.
        """
        window = _check_window(window)
        rows = self._session.fetch(plan, Window(window.offset, window.limit + 1))
        has_next = len(rows) > window.limit
        content = self._content(plan, rows[: window.limit])
        logger.debug(
            "slice_executed",
            entity=plan.shape.name,
            offset=window.offset,
            limit=window.limit,
            has_next=has_next,
        )
        return Slice(content, window.offset, window.limit, has_next)

    def _content(self, plan: QueryPlan, rows: list[dict[str, Any]]) -> list[Any]:
        if plan.is_projection:
            return plan.project(rows)
        return self._session.materialize(plan, rows)


__all__ = ["Page", "Slice", "PaginationEngine", "resolve_pageable"]
