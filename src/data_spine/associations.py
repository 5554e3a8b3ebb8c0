"""
Lazy association resolver.

Associations are declared on plain entity classes with the
:class:`association` descriptor. Each instance holds a :class:`Reference`
(to-one) or :class:`CollectionReference` (to-many) per association, an
explicit tagged state machine instead of a runtime proxy::

    UNRESOLVED(identity) ──access──▶ RESOLVING ──find──▶ RESOLVED(value | error)

Manifesto:
    - **No surprise queries:** an unresolved reference fetches at most once,
      through the owning session's ``find`` (which may hit the identity map)
    - **Errors stick:** a missing target resolves to ``NotFoundError`` and is
      re-raised on every access, never silently ``None``
    - **Session-bound:** references loaded by a session refuse to resolve
      after that session is cleared or closed

Examples:
    >>> class Member:
    ...     team = association("Team", foreign_key="team_id")
    >>> member = session.get(Member, 1)
    >>> reference_of(member, "team").state
    <ReferenceState.UNRESOLVED: 'unresolved'>
    >>> member.team.name          # one Session.find
    'teamA'
    >>> is_loaded(member, "team")
    True

Guardrails:
    ❌ DON'T: Share entities across threads while references are unresolved
    ✅ DO: Resolve (or fetch-hint) associations on the session's thread

Tags:
    association, lazy-loading, reference, state-machine, data-spine
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any

from data_spine.errors import (
    AssociationResolutionError,
    DetachedEntityError,
    NotFoundError,
    UnknownFieldError,
)
from data_spine.logging import get_logger
from data_spine.registry import FetchMode

if TYPE_CHECKING:
    from data_spine.session import Session

logger = get_logger(__name__)


class ReferenceState(str, Enum):
    UNRESOLVED = "unresolved"
    RESOLVING = "resolving"
    RESOLVED = "resolved"


class Reference:
    """To-one association state held on the owning instance."""

    __slots__ = ("name", "target", "identity", "state", "_value", "_error", "_session", "_epoch")

    def __init__(self, name: str, target: Any, identity: Any = None) -> None:
        self.name = name
        self.target = target
        self.identity = identity
        self.state = ReferenceState.UNRESOLVED
        self._value: Any = None
        self._error: Exception | None = None
        self._session: Session | None = None
        self._epoch = -1

    @classmethod
    def loaded(cls, name: str, target: Any, value: Any, identity: Any = None) -> Reference:
        ref = cls(name, target, identity)
        ref._set(value)
        return ref

    def bind(self, session: Session) -> Reference:
        """Attach to the session whose ``find`` will resolve this reference."""
        self._session = session
        self._epoch = session.epoch
        return self

    @property
    def is_loaded(self) -> bool:
        return self.state is ReferenceState.RESOLVED

    @property
    def failed(self) -> bool:
        return self._error is not None

    def peek(self) -> Any:
        """Resolved value without triggering resolution (``None`` otherwise)."""
        return self._value

    def get(self) -> Any:
        if self.state is ReferenceState.RESOLVED:
            if self._error is not None:
                raise self._error
            return self._value
        if self.state is ReferenceState.RESOLVING:
            raise AssociationResolutionError(
                f"Association '{self.name}' accessed while it is being resolved"
            )

        session = self._attached_session()
        self.state = ReferenceState.RESOLVING
        try:
            value = self._load(session)
        except NotFoundError as e:
            self._error = e
            self.state = ReferenceState.RESOLVED
            raise
        except BaseException:
            self.state = ReferenceState.UNRESOLVED
            raise
        self._set(value)
        logger.debug("association_resolved", association=self.name, target=str(self.target), identity=self.identity)
        return value

    def _set(self, value: Any) -> None:
        self._value = value
        self._error = None
        self.state = ReferenceState.RESOLVED

    def _load(self, session: Session) -> Any:
        value = session.find(self.target, self.identity)
        if value is None:
            raise NotFoundError(
                str(self.target),
                self.identity,
                f"{self.name} references missing {self.target} {self.identity!r}",
            )
        return value

    def _attached_session(self) -> Session:
        session = self._session
        if session is None:
            raise DetachedEntityError(f"Association '{self.name}' is not attached to a session")
        if session.closed or session.epoch != self._epoch:
            raise DetachedEntityError(
                f"Association '{self.name}' was loaded by a session that has since been "
                f"{'closed' if session.closed else 'cleared'}"
            )
        return session

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name} -> {self.target}({self.identity!r}) {self.state.value}>"


class CollectionReference(Reference):
    """To-many association: ``identity`` is the owner's identity, the value a list."""

    __slots__ = ("mapped_by",)

    def __init__(self, name: str, target: Any, identity: Any = None, mapped_by: str | None = None) -> None:
        super().__init__(name, target, identity)
        self.mapped_by = mapped_by

    def _load(self, session: Session) -> list[Any]:
        return session.load_collection(self.target, self.mapped_by, self.identity)


class association:  # noqa: N801
    """Association descriptor.

    Args:
        target: Target entity class or registered name.
        foreign_key: Owner-side column for to-one associations
            (default ``<name>_<target identity>``).
        fetch: ``FetchMode.LAZY`` (default) or ``FetchMode.EAGER``.
        many: Declare a to-many (inverse) collection.
        mapped_by: For collections, the target's to-one association back to
            the owner (inferred when there is exactly one).
    """

    def __init__(
        self,
        target: Any,
        *,
        foreign_key: str | None = None,
        fetch: FetchMode | str = FetchMode.LAZY,
        many: bool = False,
        mapped_by: str | None = None,
    ) -> None:
        self.target = target
        self.foreign_key = foreign_key
        self.fetch = FetchMode(fetch)
        self.many = many
        self.mapped_by = mapped_by
        self.name = ""

    def __set_name__(self, owner: type, name: str) -> None:
        self.name = name

    def __get__(self, obj: Any, objtype: type | None = None) -> Any:
        if obj is None:
            return self
        ref = obj.__dict__.get(self.name)
        if ref is None:
            if not self.many:
                return None
            ref = obj.__dict__[self.name] = CollectionReference.loaded(self.name, self.target, [])
        return ref.get()

    def __set__(self, obj: Any, value: Any) -> None:
        if self.many:
            obj.__dict__[self.name] = CollectionReference.loaded(self.name, self.target, list(value or ()))
        else:
            obj.__dict__[self.name] = Reference.loaded(self.name, self.target, value)

    def __repr__(self) -> str:
        kind = "many" if self.many else "one"
        return f"association({self.target!r}, {kind}, {self.fetch.value})"


def _check_association(entity: Any, name: str) -> None:
    if not isinstance(getattr(type(entity), name, None), association):
        raise UnknownFieldError(type(entity).__name__.lower(), name)


def reference_of(entity: Any, name: str) -> Reference | None:
    """The reference behind ``entity.<name>`` without resolving it."""
    _check_association(entity, name)
    return entity.__dict__.get(name)


def is_loaded(entity: Any, name: str) -> bool:
    """Whether reading ``entity.<name>`` would not hit the store."""
    ref = reference_of(entity, name)
    return ref is None or ref.is_loaded


def install(entity: Any, name: str, ref: Reference) -> None:
    """Attach a reference built by a session during materialization."""
    entity.__dict__[name] = ref


__all__ = [
    "ReferenceState",
    "Reference",
    "CollectionReference",
    "association",
    "reference_of",
    "is_loaded",
    "install",
]
