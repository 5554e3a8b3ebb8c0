"""
Structured error types for the data-spine query engine.

Every failure the engine raises is a :class:`DataSpineError` carrying a
category, a retry hint, structured context and an optional chained cause.
Callers (repositories, the CLI, services wrapping the engine) can branch
on the exception type and log ``to_dict()`` without parsing messages.

Manifesto:
    - **Typed hierarchy:** Structural mistakes, lookup misses, staleness and
      store failures are different types, not different messages
    - **Surface, never correct:** Unknown types/fields and duplicate
      identities are programming errors and are raised immediately
    - **No masking:** Store errors propagate unchanged from flush and query
      execution; the engine never retries them itself
    - **Rich context:** entity type, identity, field and statement travel
      with the error for logging

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                       DataSpineError                            │
        │  (category, retryable, context, cause)                          │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                 │
        │  SchemaError              RequestError        LookupFailedError │
        │  (SCHEMA)                 (VALIDATION)        (LOOKUP)          │
        │     │                        │                   │              │
        │  UnknownEntityTypeError   InvalidRequestError NotFoundError     │
        │  UnknownFieldError        DuplicateIdentity   NonUniqueResult   │
        │  RegistryFrozenError      TransientReference                    │
        │                                                                 │
        │  StateError               StoreError                            │
        │  (STATE)                  (DATABASE)                            │
        │     │                        │                                  │
        │  DetachedEntityError      StoreUnavailableError (retryable)     │
        │  AssociationResolution    QueryError                            │
        │  StaleWriteConflictError  IntegrityError                        │
        └─────────────────────────────────────────────────────────────────┘

Examples:
    >>> err = UnknownFieldError("member", "nickname")
    >>> err.category
    <ErrorCategory.SCHEMA: 'SCHEMA'>
    >>> err.to_dict()["context"]["field"]
    'nickname'

Tags:
    error-handling, exception-hierarchy, data-spine, query-engine
"""

from __future__ import annotations

from dataclasses import dataclass, field as dataclass_field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    SCHEMA = "SCHEMA"            # Registry / entity shape problems
    VALIDATION = "VALIDATION"    # Malformed requests, bad identities
    LOOKUP = "LOOKUP"            # Single-result APIs that found 0 or >1 rows
    STATE = "STATE"              # Session / reference lifecycle violations
    DATABASE = "DATABASE"        # Store transport and statement failures
    CONFIG = "CONFIG"            # Settings
    INTERNAL = "INTERNAL"        # Bugs, unexpected state
    UNKNOWN = "UNKNOWN"


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Only the fields relevant to a failure are set; ``to_dict()`` drops the
    rest so log lines stay small.

    Attributes:
        entity_type: Registered entity name involved in the failure
        identity: Identity value of the entity involved
        field: Field or association path involved
        statement: SQL text that failed (store errors only)
        request: Human-readable description of the failing request
        metadata: Additional key/value pairs
    """

    entity_type: str | None = None
    identity: Any = None
    field: str | None = None
    statement: str | None = None
    request: str | None = None

    metadata: dict[str, Any] = dataclass_field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["entity_type", "identity", "field", "statement", "request"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class DataSpineError(Exception):
    """
    Base exception for all data-spine errors.

    Subclasses set ``default_category`` and ``default_retryable``; callers
    may override both per instance.

    Examples:
        >>> err = DataSpineError("boom")
        >>> err.retryable
        False
        >>> err.with_context(entity_type="member").context.entity_type
        'member'
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    @property
    def kind(self) -> str:
        """Short error kind used by CLI output (class name)."""
        return self.__class__.__name__

    def with_context(self, **kwargs: Any) -> DataSpineError:
        """
        Add context to this error (fluent API).

        Usage:
            raise QueryError("Failed").with_context(statement=sql)
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.kind,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# SCHEMA ERRORS (registry / entity shapes)
# =============================================================================


class SchemaError(DataSpineError):
    """Entity registry or entity shape error. Never retryable."""

    default_category = ErrorCategory.SCHEMA


class UnknownEntityTypeError(SchemaError):
    """Entity type was never registered."""

    def __init__(self, entity_type: Any):
        name = getattr(entity_type, "__name__", entity_type)
        self.entity_type = str(name)
        super().__init__(
            f"Unknown entity type: {self.entity_type}",
            context=ErrorContext(entity_type=self.entity_type),
        )


class UnknownFieldError(SchemaError):
    """Predicate, sort key, projection or assignment names a missing field."""

    def __init__(self, entity_type: str, field_name: str):
        self.entity_type = entity_type
        self.field_name = field_name
        super().__init__(
            f"Unknown field '{field_name}' on entity '{entity_type}'",
            context=ErrorContext(entity_type=entity_type, field=field_name),
        )


class RegistryFrozenError(SchemaError):
    """Registration attempted after the registry was frozen."""

    default_category = ErrorCategory.CONFIG


# =============================================================================
# REQUEST ERRORS
# =============================================================================


class RequestError(DataSpineError):
    """Caller supplied an invalid request or entity."""

    default_category = ErrorCategory.VALIDATION


class InvalidRequestError(RequestError):
    """Query request, window or assignment is malformed."""
    pass


class DuplicateIdentityError(RequestError):
    """A different instance with the same identity is already tracked."""

    def __init__(self, entity_type: str, identity: Any):
        self.entity_type = entity_type
        self.identity = identity
        super().__init__(
            f"{entity_type} with identity {identity!r} is already tracked by another instance",
            context=ErrorContext(entity_type=entity_type, identity=identity),
        )


class TransientReferenceError(RequestError):
    """An association points at an entity that has no identity yet."""
    pass


# =============================================================================
# LOOKUP ERRORS (single-result APIs)
# =============================================================================


class LookupFailedError(DataSpineError):
    """Single-result lookup returned zero or several rows."""

    default_category = ErrorCategory.LOOKUP


class NotFoundError(LookupFailedError):
    """No row matched where exactly one was required."""

    def __init__(self, entity_type: str, identity: Any = None, message: str | None = None):
        self.entity_type = entity_type
        self.identity = identity
        super().__init__(
            message or f"{entity_type} not found: {identity!r}",
            context=ErrorContext(entity_type=entity_type, identity=identity),
        )


class NonUniqueResultError(LookupFailedError):
    """More than one row matched a single-result query."""

    def __init__(self, entity_type: str, count: int):
        self.entity_type = entity_type
        self.count = count
        super().__init__(
            f"Expected at most one {entity_type}, query returned {count}",
            context=ErrorContext(entity_type=entity_type),
        )


# =============================================================================
# STATE ERRORS (session / reference lifecycle)
# =============================================================================


class StateError(DataSpineError):
    """Session or entity lifecycle violation."""

    default_category = ErrorCategory.STATE


class DetachedEntityError(StateError):
    """Lazy reference accessed after its owning session was cleared or closed."""
    pass


class AssociationResolutionError(StateError):
    """Association accessed re-entrantly while it was being resolved."""
    pass


class StaleWriteConflictError(StateError):
    """A tracked entity is stale after a bulk write and cannot be trusted."""

    def __init__(self, entity_type: str, identity: Any, message: str | None = None):
        self.entity_type = entity_type
        self.identity = identity
        super().__init__(
            message or f"{entity_type} {identity!r} is stale after a bulk write",
            context=ErrorContext(entity_type=entity_type, identity=identity),
        )


# =============================================================================
# STORE ERRORS
# =============================================================================


class StoreError(DataSpineError):
    """Store statement or transport error."""

    default_category = ErrorCategory.DATABASE


class StoreUnavailableError(StoreError):
    """
    Transport-level store failure (locked, unreachable, timed out).

    Marked retryable so a wrapping layer may retry; the engine itself
    never does.
    """

    default_retryable = True


class QueryError(StoreError):
    """Store rejected a statement."""
    pass


class IntegrityError(StoreError):
    """Store integrity constraint violation."""
    pass


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "DataSpineError",
    "SchemaError",
    "UnknownEntityTypeError",
    "UnknownFieldError",
    "RegistryFrozenError",
    "RequestError",
    "InvalidRequestError",
    "DuplicateIdentityError",
    "TransientReferenceError",
    "LookupFailedError",
    "NotFoundError",
    "NonUniqueResultError",
    "StateError",
    "DetachedEntityError",
    "AssociationResolutionError",
    "StaleWriteConflictError",
    "StoreError",
    "StoreUnavailableError",
    "QueryError",
    "IntegrityError",
]
