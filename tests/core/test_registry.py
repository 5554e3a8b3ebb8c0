"""Tests for data_spine.registry — entity shapes, associations, freezing."""

from __future__ import annotations

import datetime

import pytest

from data_spine.associations import association
from data_spine.domain import Member, Team
from data_spine.errors import (
    RegistryFrozenError,
    SchemaError,
    TransientReferenceError,
    UnknownEntityTypeError,
    UnknownFieldError,
)
from data_spine.registry import (
    Cardinality,
    EntityRegistry,
    FetchMode,
    FieldSpec,
    IdentityStrategy,
)


class Author:
    id: int | None
    name: str
    nickname: str | None


class Book:
    id: int | None
    title: str
    published: datetime.date | None

    author = association(Author, fetch=FetchMode.EAGER)


class Token:
    id: str
    label: str


class Orphanage:
    id: int | None
    kids = association("Kid", many=True)


class Kid:
    id: int | None
    name: str


class Node:
    id: int | None
    parent = association("Node")
    other = association("Node")
    children = association("Node", many=True)


class Ghostly:
    id: int | None
    haunts = association("Ghost")


class TestRegistration:
    """Test register() and field inference."""

    def test_fields_inferred_from_annotations(self, registry):
        shape = registry.describe(Member)
        assert [f.name for f in shape.fields] == ["id", "username", "age"]
        assert shape.identity.name == "id"
        assert shape.identity.python_type is int
        assert shape.identity.nullable is False
        assert shape.field("age").python_type is int

    def test_optional_hint_is_nullable(self):
        registry = EntityRegistry()
        registry.register(Author)
        shape = registry.describe(Author)
        assert shape.field("nickname").nullable is True
        assert shape.field("nickname").python_type is str
        assert shape.field("name").nullable is False

    def test_explicit_fields(self):
        registry = EntityRegistry()
        shape = registry.register(
            Author,
            table="authors",
            fields=["id", ("name", str, False), FieldSpec("nickname", column="nick")],
            identity_strategy="assigned",
        )
        assert shape.table == "authors"
        assert shape.identity_strategy is IdentityStrategy.ASSIGNED
        assert shape.field("nickname").column == "nick"

    def test_default_name_and_table(self):
        registry = EntityRegistry()
        shape = registry.register(Author)
        assert shape.name == "author"
        assert shape.table == "author"

    def test_uuid_identity_is_str(self):
        registry = EntityRegistry()
        shape = registry.register(Author, identity_strategy=IdentityStrategy.UUID)
        assert shape.identity.python_type is str

    def test_sequence_identity_must_be_int(self):
        registry = EntityRegistry()
        with pytest.raises(SchemaError, match="must be an int"):
            registry.register(Token)

    def test_assigned_str_identity(self):
        registry = EntityRegistry()
        shape = registry.register(Token, identity_strategy="assigned")
        assert shape.identity.python_type is str

    def test_duplicate_registration(self):
        registry = EntityRegistry()
        registry.register(Author)
        with pytest.raises(SchemaError, match="already registered"):
            registry.register(Author)

    def test_register_after_freeze(self, registry):
        with pytest.raises(RegistryFrozenError):
            registry.register(Author)


class TestAssociations:
    """Test association resolution at freeze()."""

    def test_to_one_default_foreign_key(self):
        registry = EntityRegistry()
        registry.register(Author)
        registry.register(Book)
        assoc = registry.describe(Book).association("author")
        assert assoc.cardinality is Cardinality.ONE
        assert assoc.target == "author"
        assert assoc.foreign_key == "author_id"
        assert assoc.fetch is FetchMode.EAGER

    def test_explicit_foreign_key(self, registry):
        assoc = registry.describe(Member).association("team")
        assert assoc.foreign_key == "team_id"
        assert assoc.fetch is FetchMode.LAZY
        assert not assoc.many

    def test_collection_uses_back_reference(self, registry):
        assoc = registry.describe(Team).association("members")
        assert assoc.many
        assert assoc.target == "member"
        assert assoc.mapped_by == "team"
        assert assoc.foreign_key == "team_id"

    def test_columns_include_foreign_keys(self, registry):
        assert registry.describe(Member).columns == ("id", "username", "age", "team_id")
        assert registry.describe(Team).columns == ("id", "name")

    def test_to_one_and_to_many(self, registry):
        team = registry.describe(Team)
        assert [a.name for a in team.to_many] == ["members"]
        assert team.to_one == ()

    def test_collection_without_back_reference(self):
        registry = EntityRegistry()
        registry.register(Orphanage)
        registry.register(Kid)
        with pytest.raises(SchemaError, match="needs mapped_by"):
            registry.freeze()

    def test_ambiguous_back_reference(self):
        registry = EntityRegistry()
        registry.register(Node)
        with pytest.raises(SchemaError, match="2 references"):
            registry.freeze()

    def test_unknown_target(self):
        registry = EntityRegistry()
        registry.register(Ghostly)
        with pytest.raises(UnknownEntityTypeError):
            registry.freeze()


class TestLookups:
    """Test describe() and membership."""

    def test_describe_by_class_name_and_shape(self, registry):
        shape = registry.describe(Member)
        assert registry.describe("member") is shape
        assert registry.describe("MEMBER") is shape
        assert registry.describe(shape) is shape

    def test_describe_unknown(self, registry):
        with pytest.raises(UnknownEntityTypeError, match="Unknown entity type: Author"):
            registry.describe(Author)
        with pytest.raises(UnknownEntityTypeError):
            registry.describe("ghost")

    def test_unknown_field(self, registry):
        with pytest.raises(UnknownFieldError) as exc_info:
            registry.describe(Member).field("height")
        assert exc_info.value.context.field == "height"
        assert exc_info.value.context.entity_type == "member"

    def test_describe_freezes(self):
        registry = EntityRegistry()
        registry.register(Author)
        assert not registry.frozen
        registry.describe(Author)
        assert registry.frozen

    def test_membership(self, registry):
        assert Member in registry
        assert "team" in registry
        assert Author not in registry
        assert len(registry) == 2
        assert {s.name for s in registry} == {"member", "team"}

    def test_is_entity(self, registry):
        assert registry.is_entity(Team("t"))
        assert not registry.is_entity("t")


class TestColumnValues:
    """Test column_values() and FieldSpec conversions."""

    def test_values_with_loaded_reference(self, registry):
        team = Team("teamA")
        team.id = 7
        member = Member("member1", 10, team)
        member.id = 1
        values = registry.column_values(registry.describe(Member), member)
        assert values == {"id": 1, "username": "member1", "age": 10, "team_id": 7}

    def test_values_without_reference(self, registry):
        member = Member("member1", 10)
        member.id = 1
        assert registry.column_values(registry.describe(Member), member)["team_id"] is None

    def test_transient_target(self, registry):
        member = Member("member1", 10, Team("unsaved"))
        with pytest.raises(TransientReferenceError):
            registry.column_values(registry.describe(Member), member)

    def test_field_conversions(self):
        flag = FieldSpec("active", bool)
        assert flag.to_db(True) == 1
        assert flag.to_python(0) is False

        day = FieldSpec("published", datetime.date)
        assert day.to_db(datetime.date(2024, 1, 2)) == "2024-01-02"
        assert day.to_python("2024-01-02") == datetime.date(2024, 1, 2)
        assert day.to_db(None) is None

    def test_instantiate_skips_init(self, registry):
        member = registry.describe(Member).instantiate()
        assert isinstance(member, Member)
        assert "username" not in member.__dict__
