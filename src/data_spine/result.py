"""
Command result envelopes.

:class:`OperationResult` is the typed success/failure envelope the CLI
renders (as a Rich table or as JSON). :class:`PagedResult` adds the
paging metadata of a :class:`~data_spine.paging.Page` or
:class:`~data_spine.paging.Slice`.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any

from data_spine.associations import ReferenceState, reference_of
from data_spine.errors import DataSpineError, ErrorCategory
from data_spine.paging import Page, Slice
from data_spine.registry import EntityRegistry


@dataclass(frozen=True, slots=True)
class OperationError:
    """Structured error detail for failed operations.

    Attributes:
        code: Error kind (``NotFoundError``, ``UnknownFieldError``, …).
        message: Human-readable description of the error.
        category: Optional :class:`ErrorCategory`.
        details: Extra key/value context (entity type, field, request).
        retryable: Whether the caller may retry.
    """

    code: str
    message: str
    category: ErrorCategory | None = None
    details: dict[str, Any] = field(default_factory=dict)
    retryable: bool = False


@dataclass
class OperationResult[T]:
    """Envelope returned by every CLI operation.

    Attributes:
        success: ``True`` when the operation completed without error.
        data: The typed payload (``None`` on failure).
        error: Structured error (``None`` on success).
        warnings: Non-fatal messages collected during the operation.
        elapsed_ms: Wall-clock time the operation took.
        metadata: Additional key/value pairs (request, statement counts).
    """

    success: bool
    data: T | None = None
    error: OperationError | None = None
    warnings: list[str] = field(default_factory=list)
    elapsed_ms: float = 0.0
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(
        cls,
        data: T,
        *,
        warnings: list[str] | None = None,
        elapsed_ms: float = 0.0,
        metadata: dict[str, Any] | None = None,
    ) -> OperationResult[T]:
        """Create a successful result."""
        return cls(
            success=True,
            data=data,
            warnings=warnings or [],
            elapsed_ms=elapsed_ms,
            metadata=metadata or {},
        )

    @classmethod
    def fail(
        cls,
        code: str,
        message: str,
        *,
        category: ErrorCategory | None = None,
        details: dict[str, Any] | None = None,
        retryable: bool = False,
        elapsed_ms: float = 0.0,
        metadata: dict[str, Any] | None = None,
    ) -> OperationResult[T]:
        """Create a failed result."""
        return cls(
            success=False,
            error=OperationError(
                code=code,
                message=message,
                category=category,
                details=details or {},
                retryable=retryable,
            ),
            elapsed_ms=elapsed_ms,
            metadata=metadata or {},
        )

    @classmethod
    def from_error(cls, error: DataSpineError, *, request: str | None = None, elapsed_ms: float = 0.0) -> OperationResult[T]:
        """Failed result carrying the error kind and the failing request."""
        details = error.context.to_dict()
        if request is not None:
            details.setdefault("request", request)
        return cls.fail(
            error.kind,
            error.message,
            category=error.category,
            details=details,
            retryable=error.retryable,
            elapsed_ms=elapsed_ms,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialise to a plain dict (for JSON output)."""
        d: dict[str, Any] = {"success": self.success}
        if self.data is not None:
            d["data"] = self.data
        if self.error is not None:
            d["error"] = {
                "code": self.error.code,
                "message": self.error.message,
                "retryable": self.error.retryable,
            }
            if self.error.details:
                d["error"]["details"] = self.error.details
        if self.warnings:
            d["warnings"] = self.warnings
        if self.elapsed_ms:
            d["elapsed_ms"] = round(self.elapsed_ms, 2)
        if self.metadata:
            d["metadata"] = self.metadata
        return d


@dataclass
class PagedResult[T](OperationResult[list[T]]):
    """Result of a page or slice query.

    ``total`` is ``None`` for slices, which never run a count query.
    """

    number: int = 0
    size: int = 20
    total: int | None = None
    total_pages: int | None = None
    has_next: bool = False

    @classmethod
    def from_window(cls, window: Page | Slice, items: list[T], *, elapsed_ms: float = 0.0) -> PagedResult[T]:
        total = window.total_elements if isinstance(window, Page) else None
        return cls(
            success=True,
            data=items,
            number=window.number,
            size=window.size,
            total=total,
            total_pages=window.total_pages if isinstance(window, Page) else None,
            has_next=window.has_next,
            elapsed_ms=elapsed_ms,
        )

    def to_dict(self) -> dict[str, Any]:
        d = super().to_dict()
        d["number"] = self.number
        d["size"] = self.size
        if self.total is not None:
            d["total"] = self.total
            d["total_pages"] = self.total_pages
        d["has_next"] = self.has_next
        return d


def entity_to_dict(registry: EntityRegistry, entity: Any) -> dict[str, Any]:
    """Scalar fields plus to-one identities, without resolving any reference."""
    shape = registry.shape_of(entity)
    data = {f.name: getattr(entity, f.name, None) for f in shape.fields}
    for assoc in shape.to_one:
        ref = reference_of(entity, assoc.name)
        if ref is None:
            data[assoc.name] = None
        elif ref.state is ReferenceState.RESOLVED and not ref.failed and ref.peek() is not None:
            data[assoc.name] = registry.identity_of(ref.peek())
        else:
            data[assoc.name] = ref.identity
    return data


class _Timer:
    """Minimal stopwatch for timing operations."""

    __slots__ = ("_start",)

    def __init__(self) -> None:
        self._start = time.perf_counter()

    @property
    def elapsed_ms(self) -> float:
        return (time.perf_counter() - self._start) * 1000


def start_timer() -> _Timer:
    """Return a lightweight timer.  Use ``timer.elapsed_ms`` when done."""
    return _Timer()


__all__ = [
    "OperationError",
    "OperationResult",
    "PagedResult",
    "entity_to_dict",
    "start_timer",
]
