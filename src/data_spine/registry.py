"""
Entity registry: the shape metadata every other component reads.

An entity is a plain Python class registered once with its table, its
scalar fields, its identity field and identity strategy. Associations are
declared on the class with :func:`~data_spine.associations.association` and
discovered at registration; their targets are resolved when the registry
is frozen.

Manifesto:
    - **Built once, then frozen:** registration happens at startup; after
      ``freeze()`` the registry is read-only and safe to share
    - **Explicit metadata:** the builder never inspects instances, only shapes
    - **Plain classes:** no base class, no metaclass; fields come from
      ``fields=`` or from the class annotations

Architecture:
    ::

        EntityRegistry
        ├── register(Member, table="member")   → EntityShape (unresolved)
        ├── freeze()                           → resolves AssociationSpecs
        └── describe(Member | "member")        → EntityShape

        EntityShape
        ├── identity: FieldSpec + IdentityStrategy
        ├── fields:   FieldSpec(name, python_type, nullable)
        └── associations: AssociationSpec(name, target, cardinality,
                                          fetch, foreign_key, mapped_by)

Examples:
    >>> registry = EntityRegistry()
    >>> registry.register(Team)
    >>> registry.register(Member)
    >>> registry.freeze()
    >>> registry.describe("member").association("team").foreign_key
    'team_id'

Tags:
    registry, metadata, entity, schema, data-spine
"""

from __future__ import annotations

import datetime
import threading
import types
import typing
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from data_spine.errors import (
    RegistryFrozenError,
    SchemaError,
    TransientReferenceError,
    UnknownEntityTypeError,
    UnknownFieldError,
)


class Cardinality(str, Enum):
    ONE = "one"
    MANY = "many"


class FetchMode(str, Enum):
    EAGER = "eager"
    LAZY = "lazy"


class IdentityStrategy(str, Enum):
    """How a persisted entity without an identity gets one."""

    SEQUENCE = "sequence"  # int counter, seeded from the store's current maximum
    UUID = "uuid"
    ASSIGNED = "assigned"  # caller must set it


@dataclass(frozen=True, slots=True)
class FieldSpec:
    """One scalar column."""

    name: str
    python_type: type = str
    nullable: bool = True
    column: str = ""

    def __post_init__(self) -> None:
        if not self.column:
            object.__setattr__(self, "column", self.name)

    def to_db(self, value: Any) -> Any:
        if value is None:
            return None
        if self.python_type is bool:
            return int(bool(value))
        if isinstance(value, (datetime.datetime, datetime.date)):
            return value.isoformat()
        return value

    def to_python(self, value: Any) -> Any:
        if value is None:
            return None
        if self.python_type is bool:
            return bool(value)
        if self.python_type is datetime.datetime and isinstance(value, str):
            return datetime.datetime.fromisoformat(value)
        if self.python_type is datetime.date and isinstance(value, str):
            return datetime.date.fromisoformat(value)
        return value


@dataclass(frozen=True, slots=True)
class AssociationSpec:
    """Resolved association metadata.

    ``foreign_key`` is the column holding the link: on the owner table for
    ``ONE``, on the target table for ``MANY`` (where ``mapped_by`` names the
    target's ``ONE`` association back to the owner).
    """

    name: str
    target: str
    cardinality: Cardinality
    fetch: FetchMode = FetchMode.LAZY
    foreign_key: str = ""
    mapped_by: str | None = None

    @property
    def many(self) -> bool:
        return self.cardinality is Cardinality.MANY


@dataclass(frozen=True)
class EntityShape:
    """Registered metadata for one entity type."""

    name: str
    entity_class: type
    table: str
    identity: FieldSpec
    identity_strategy: IdentityStrategy
    fields: tuple[FieldSpec, ...]
    associations: tuple[AssociationSpec, ...] = ()
    _by_name: dict[str, FieldSpec] = field(default_factory=dict, repr=False, compare=False)

    def __post_init__(self) -> None:
        self._by_name.update({f.name: f for f in self.fields})

    def field(self, name: str) -> FieldSpec:
        try:
            return self._by_name[name]
        except KeyError:
            raise UnknownFieldError(self.name, name) from None

    def has_field(self, name: str) -> bool:
        return name in self._by_name

    def association(self, name: str) -> AssociationSpec | None:
        for assoc in self.associations:
            if assoc.name == name:
                return assoc
        return None

    @property
    def to_one(self) -> tuple[AssociationSpec, ...]:
        return tuple(a for a in self.associations if not a.many)

    @property
    def to_many(self) -> tuple[AssociationSpec, ...]:
        return tuple(a for a in self.associations if a.many)

    @property
    def columns(self) -> tuple[str, ...]:
        """Physical columns: scalar fields, then to-one foreign keys."""
        return tuple(f.column for f in self.fields) + tuple(a.foreign_key for a in self.to_one)

    def identity_of(self, entity: Any) -> Any:
        return getattr(entity, self.identity.name, None)

    def instantiate(self) -> Any:
        """Blank instance for materialization (``__init__`` is not called)."""
        return self.entity_class.__new__(self.entity_class)


def _unwrap_optional(hint: Any) -> tuple[Any, bool]:
    origin = typing.get_origin(hint)
    if origin in (typing.Union, types.UnionType):
        args = [a for a in typing.get_args(hint) if a is not type(None)]
        if len(args) == 1:
            return args[0], True
        return object, True
    return hint, False


def _fields_from_annotations(cls: type, skip: set[str]) -> list[FieldSpec]:
    try:
        hints = typing.get_type_hints(cls)
    except NameError as e:
        raise SchemaError(f"Cannot resolve annotations of {cls.__name__}: {e}") from e

    specs = []
    for name, hint in hints.items():
        if name.startswith("_") or name in skip or typing.get_origin(hint) is typing.ClassVar:
            continue
        python_type, nullable = _unwrap_optional(hint)
        if not isinstance(python_type, type):
            python_type = object
        specs.append(FieldSpec(name, python_type, nullable))
    return specs


def _coerce_field(spec: FieldSpec | str | tuple) -> FieldSpec:
    if isinstance(spec, FieldSpec):
        return spec
    if isinstance(spec, str):
        return FieldSpec(spec)
    return FieldSpec(*spec)


@dataclass
class _Pending:
    shape: EntityShape
    descriptors: dict[str, Any]


class EntityRegistry:
    """Registry of entity shapes, frozen before use.

    Thread-safe: registration and freezing take a lock; lookups after
    freezing are plain dict reads.
    """

    def __init__(self) -> None:
        self._shapes: dict[str, EntityShape] = {}
        self._by_class: dict[type, str] = {}
        self._pending: dict[str, _Pending] = {}
        self._frozen = False
        self._lock = threading.Lock()

    @property
    def frozen(self) -> bool:
        return self._frozen

    def register(
        self,
        cls: type,
        *,
        name: str | None = None,
        table: str | None = None,
        fields: Iterable[FieldSpec | str | tuple] | None = None,
        identity: str = "id",
        identity_strategy: IdentityStrategy | str = IdentityStrategy.SEQUENCE,
    ) -> EntityShape:
        """Register an entity class.

        Args:
            cls: Plain class. Association descriptors on it are discovered.
            name: Registered name (default: lower-cased class name).
            table: Table name (default: the registered name).
            fields: Scalar fields; inferred from annotations when omitted.
            identity: Name of the identity field.
            identity_strategy: ``sequence``, ``uuid`` or ``assigned``.

        Raises:
            RegistryFrozenError: If the registry was already frozen.
            SchemaError: If the shape is inconsistent.
        """
        from data_spine.associations import association

        with self._lock:
            if self._frozen:
                raise RegistryFrozenError(
                    f"Cannot register {cls.__name__}: registry is frozen"
                )

            entity_name = (name or cls.__name__).lower()
            if entity_name in self._pending or cls in self._by_class:
                raise SchemaError(f"Entity '{entity_name}' is already registered")

            descriptors = {
                attr: value
                for klass in reversed(cls.__mro__)
                for attr, value in vars(klass).items()
                if isinstance(value, association)
            }

            if fields is None:
                specs = _fields_from_annotations(cls, skip=set(descriptors))
            else:
                specs = [_coerce_field(f) for f in fields]

            strategy = IdentityStrategy(identity_strategy)
            id_spec = next((f for f in specs if f.name == identity), None)
            if id_spec is None:
                default_type = int if strategy is IdentityStrategy.SEQUENCE else str
                id_spec = FieldSpec(identity, default_type, nullable=False)
            else:
                specs.remove(id_spec)
                id_spec = replace(id_spec, nullable=False)
            if strategy is IdentityStrategy.SEQUENCE and id_spec.python_type is not int:
                raise SchemaError(f"Sequence identity on '{entity_name}' must be an int field")
            if strategy is IdentityStrategy.UUID and id_spec.python_type is not str:
                id_spec = replace(id_spec, python_type=str)

            shape = EntityShape(
                name=entity_name,
                entity_class=cls,
                table=table or entity_name,
                identity=id_spec,
                identity_strategy=strategy,
                fields=(id_spec, *specs),
            )
            self._pending[entity_name] = _Pending(shape, descriptors)
            self._by_class[cls] = entity_name
            return shape

    def freeze(self) -> EntityRegistry:
        """Resolve association targets and make the registry read-only.

        Raises:
            UnknownEntityTypeError: If an association targets an unregistered type.
            SchemaError: If a collection has no matching to-one back reference.
        """
        with self._lock:
            if self._frozen:
                return self

            for pending in self._pending.values():
                shape = pending.shape
                specs = []
                for attr, desc in pending.descriptors.items():
                    target = self._pending[self._target_name(desc.target)].shape
                    if desc.many:
                        specs.append(self._collection_spec(shape, attr, desc, target))
                    else:
                        fk = desc.foreign_key or f"{attr}_{target.identity.column}"
                        specs.append(
                            AssociationSpec(attr, target.name, Cardinality.ONE, FetchMode(desc.fetch), fk)
                        )
                pending.shape = replace(shape, associations=tuple(specs), _by_name={})

            self._shapes = {name: p.shape for name, p in self._pending.items()}
            self._frozen = True
            return self

    def _target_name(self, target: Any) -> str:
        if isinstance(target, type):
            if target in self._by_class:
                return self._by_class[target]
            raise UnknownEntityTypeError(target)
        key = str(target).lower()
        if key in self._pending:
            return key
        raise UnknownEntityTypeError(target)

    def _collection_spec(self, owner: EntityShape, attr: str, desc: Any, target: EntityShape) -> AssociationSpec:
        target_pending = self._pending[target.name]
        back_refs = [
            name
            for name, d in target_pending.descriptors.items()
            if not d.many and self._target_name(d.target) == owner.name
        ]
        mapped_by = desc.mapped_by
        if mapped_by is None:
            if len(back_refs) != 1:
                raise SchemaError(
                    f"Collection '{owner.name}.{attr}' needs mapped_by: "
                    f"{target.name} has {len(back_refs)} references to {owner.name}"
                )
            mapped_by = back_refs[0]
        elif mapped_by not in back_refs:
            raise SchemaError(f"'{target.name}.{mapped_by}' is not a reference to {owner.name}")

        back = target_pending.descriptors[mapped_by]
        fk = back.foreign_key or f"{mapped_by}_{owner.identity.column}"
        return AssociationSpec(attr, target.name, Cardinality.MANY, FetchMode(desc.fetch), fk, mapped_by)

    # -- lookups -----------------------------------------------------------

    def describe(self, entity_type: Any) -> EntityShape:
        """Shape for a registered class or name (freezes the registry on first use).

        Raises:
            UnknownEntityTypeError: If the type was never registered.
        """
        if not self._frozen:
            self.freeze()
        if isinstance(entity_type, EntityShape):
            return entity_type
        if isinstance(entity_type, type):
            name = self._by_class.get(entity_type)
            if name is None:
                raise UnknownEntityTypeError(entity_type)
            return self._shapes[name]
        try:
            return self._shapes[str(entity_type).lower()]
        except KeyError:
            raise UnknownEntityTypeError(entity_type) from None

    def shape_of(self, entity: Any) -> EntityShape:
        return self.describe(type(entity))

    def is_entity(self, value: Any) -> bool:
        return type(value) in self._by_class

    def identity_of(self, entity: Any) -> Any:
        return self.shape_of(entity).identity_of(entity)

    def column_values(self, shape: EntityShape, entity: Any) -> dict[str, Any]:
        """Current column values of ``entity`` keyed by column, in store representation.

        To-one associations contribute the target's identity without
        resolving the reference.

        Raises:
            TransientReferenceError: If a to-one target has no identity.
        """
        from data_spine.associations import ReferenceState, reference_of

        values = {f.column: f.to_db(getattr(entity, f.name, None)) for f in shape.fields}
        for assoc in shape.to_one:
            ref = reference_of(entity, assoc.name)
            if ref is None:
                values[assoc.foreign_key] = None
            elif ref.state is ReferenceState.RESOLVED and not ref.failed:
                target = ref.peek()
                if target is None:
                    values[assoc.foreign_key] = None
                    continue
                ident = self.identity_of(target)
                if ident is None:
                    raise TransientReferenceError(
                        f"{shape.name}.{assoc.name} points at a {assoc.target} without an identity"
                    ).with_context(entity_type=shape.name, field=assoc.name)
                values[assoc.foreign_key] = ident
            else:
                values[assoc.foreign_key] = ref.identity
        return values

    def __iter__(self) -> Iterator[EntityShape]:
        if not self._frozen:
            self.freeze()
        return iter(self._shapes.values())

    def __contains__(self, entity_type: Any) -> bool:
        if isinstance(entity_type, type):
            return entity_type in self._by_class
        return str(entity_type).lower() in self._pending

    def __len__(self) -> int:
        return len(self._pending)


__all__ = [
    "Cardinality",
    "FetchMode",
    "IdentityStrategy",
    "FieldSpec",
    "AssociationSpec",
    "EntityShape",
    "EntityRegistry",
]
