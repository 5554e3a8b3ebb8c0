"""
data-spine: a small data-access query engine.

Entities are plain classes registered in an :class:`EntityRegistry`. A
:class:`Session` tracks them in an identity map, buffers pending writes,
compiles :class:`QueryRequest` values into SQL through the
:class:`QueryBuilder`, returns :class:`Page` / :class:`Slice` windows,
runs set-based bulk writes and resolves lazy associations on first access.

Quick start::

    from data_spine import F, PageRequest, QueryRequest, Sort, SessionFactory
    from data_spine.domain import Member, Team, build_registry

    factory = SessionFactory.sqlite(build_registry())
    with factory.session() as session:
        team = Team("teamA")
        session.persist(team)
        session.persist(Member("member1", 10, team))

    with factory.session() as session:
        request = QueryRequest(Member, F("age") == 10, Sort.by("-username"))
        page = session.page(request, PageRequest.of(0, 3))
"""

from data_spine.associations import (
    CollectionReference,
    Reference,
    ReferenceState,
    association,
    is_loaded,
    reference_of,
)
from data_spine.builder import QueryBuilder, QueryPlan, Statement
from data_spine.bulk import BulkMutationExecutor
from data_spine.errors import (
    AssociationResolutionError,
    DataSpineError,
    DetachedEntityError,
    DuplicateIdentityError,
    ErrorCategory,
    IntegrityError,
    InvalidRequestError,
    NonUniqueResultError,
    NotFoundError,
    QueryError,
    RegistryFrozenError,
    StaleWriteConflictError,
    StateError,
    StoreError,
    StoreUnavailableError,
    TransientReferenceError,
    UnknownEntityTypeError,
    UnknownFieldError,
)
from data_spine.paging import Page, PaginationEngine, Slice
from data_spine.query import (
    Condition,
    Direction,
    Expression,
    F,
    Op,
    PageRequest,
    Predicate,
    QueryRequest,
    Sort,
    SortKey,
    Window,
    where,
)
from data_spine.registry import (
    AssociationSpec,
    Cardinality,
    EntityRegistry,
    EntityShape,
    FetchMode,
    FieldSpec,
    IdentityStrategy,
)
from data_spine.repository import Repository
from data_spine.session import FlushMode, Session, SessionFactory
from data_spine.settings import DataSpineSettings, get_settings
from data_spine.store import SqlStore

__version__ = "0.1.0"

__all__ = [
    # registry
    "AssociationSpec",
    "Cardinality",
    "EntityRegistry",
    "EntityShape",
    "FetchMode",
    "FieldSpec",
    "IdentityStrategy",
    # associations
    "CollectionReference",
    "Reference",
    "ReferenceState",
    "association",
    "is_loaded",
    "reference_of",
    # query
    "Condition",
    "Direction",
    "Expression",
    "F",
    "Op",
    "PageRequest",
    "Predicate",
    "QueryRequest",
    "Sort",
    "SortKey",
    "Window",
    "where",
    # engine
    "BulkMutationExecutor",
    "FlushMode",
    "Page",
    "PaginationEngine",
    "QueryBuilder",
    "QueryPlan",
    "Repository",
    "Session",
    "SessionFactory",
    "Slice",
    "SqlStore",
    "Statement",
    # config
    "DataSpineSettings",
    "get_settings",
    # errors
    "AssociationResolutionError",
    "DataSpineError",
    "DetachedEntityError",
    "DuplicateIdentityError",
    "ErrorCategory",
    "IntegrityError",
    "InvalidRequestError",
    "NonUniqueResultError",
    "NotFoundError",
    "QueryError",
    "RegistryFrozenError",
    "StaleWriteConflictError",
    "StateError",
    "StoreError",
    "StoreUnavailableError",
    "TransientReferenceError",
    "UnknownEntityTypeError",
    "UnknownFieldError",
]
