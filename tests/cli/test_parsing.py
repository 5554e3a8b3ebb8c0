"""Tests for data_spine.cli.parsing."""

from __future__ import annotations

import pytest

from data_spine.cli.parsing import coerce, parse_assignments, parse_predicate, parse_sort, path_type
from data_spine.errors import InvalidRequestError, UnknownFieldError
from data_spine.query import Condition, Direction, Expression, Op


@pytest.fixture
def member_shape(registry):
    return registry.describe("member")


class TestPathType:
    def test_scalar(self, registry, member_shape):
        assert path_type(registry, member_shape, "age") is int
        assert path_type(registry, member_shape, "username") is str

    def test_through_association(self, registry, member_shape):
        assert path_type(registry, member_shape, "team.name") is str

    def test_to_one_yields_target_identity_type(self, registry, member_shape):
        assert path_type(registry, member_shape, "team") is int

    def test_unknown(self, registry, member_shape):
        assert path_type(registry, member_shape, "nickname") is None
        assert path_type(registry, member_shape, "club.name") is None


class TestCoerce:
    @pytest.mark.parametrize(
        "raw,python_type,expected",
        [
            ("10", int, 10),
            ("1.5", float, 1.5),
            ("yes", bool, True),
            ("0", bool, False),
            ("AAA", str, "AAA"),
            ("AAA", None, "AAA"),
            ("null", int, None),
            ("NULL", str, None),
        ],
    )
    def test_values(self, raw, python_type, expected):
        assert coerce(raw, python_type) == expected

    def test_bad_int(self):
        with pytest.raises(InvalidRequestError, match="int"):
            coerce("ten", int)

    def test_bad_bool(self):
        with pytest.raises(InvalidRequestError):
            coerce("maybe", bool)


class TestParsePredicate:
    def test_empty(self, registry, member_shape):
        assert parse_predicate(None, registry, member_shape).is_empty
        assert parse_predicate("", registry, member_shape).is_empty

    def test_conjunction(self, registry, member_shape):
        predicate = parse_predicate("age>=20, username=AAA", registry, member_shape)
        assert predicate.conditions == (
            Condition("age", Op.GE, 20),
            Condition("username", Op.EQ, "AAA"),
        )

    def test_in(self, registry, member_shape):
        predicate = parse_predicate("age=10|20", registry, member_shape)
        assert predicate.conditions == (Condition("age", Op.IN, (10, 20)),)

    def test_like_keeps_raw_pattern(self, registry, member_shape):
        predicate = parse_predicate("username~mem%", registry, member_shape)
        assert predicate.conditions == (Condition("username", Op.LIKE, "mem%"),)

    def test_null(self, registry, member_shape):
        predicate = parse_predicate("team=null,team.name!=teamA", registry, member_shape)
        assert predicate.conditions == (
            Condition("team", Op.EQ, None),
            Condition("team.name", Op.NE, "teamA"),
        )

    def test_unparsable(self, registry, member_shape):
        with pytest.raises(InvalidRequestError, match="Cannot parse condition"):
            parse_predicate("age", registry, member_shape)


class TestParseSort:
    def test_empty(self):
        assert parse_sort(None).is_unsorted

    def test_keys(self):
        sort = parse_sort("-username, age")
        assert [(k.path, k.direction) for k in sort.keys] == [
            ("username", Direction.DESC),
            ("age", Direction.ASC),
        ]


class TestParseAssignments:
    def test_expression_and_literal(self, registry, member_shape):
        assignments = parse_assignments("age=age+1,username=bob", registry, member_shape)
        assert assignments == {"age": Expression("age", "+", 1), "username": "bob"}

    def test_float_operand(self, registry, member_shape):
        assert parse_assignments("age=age*1.5", registry, member_shape) == {"age": Expression("age", "*", 1.5)}

    def test_association_identity(self, registry, member_shape):
        assert parse_assignments("team=2", registry, member_shape) == {"team": 2}

    def test_unknown_field(self, registry, member_shape):
        with pytest.raises(UnknownFieldError):
            parse_assignments("nickname=x", registry, member_shape)

    def test_malformed(self, registry, member_shape):
        with pytest.raises(InvalidRequestError, match="Cannot parse assignment"):
            parse_assignments("age", registry, member_shape)

    def test_empty(self, registry, member_shape):
        with pytest.raises(InvalidRequestError, match="No assignments"):
            parse_assignments(" , ", registry, member_shape)
