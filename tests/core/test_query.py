"""Tests for data_spine.query — predicates, sorts, windows and requests."""

from __future__ import annotations

import pytest

from data_spine.domain import Member
from data_spine.errors import InvalidRequestError
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


class TestPredicates:
    """Test F, where() and predicate conjunction."""

    def test_field_comparisons(self):
        assert (F("age") >= 20).conditions == (Condition("age", Op.GE, 20),)
        assert (F("age") < 5).conditions[0].op is Op.LT
        assert (F("username") != "AAA").conditions[0].op is Op.NE
        assert (F("username").like("mem%")).conditions[0].value == "mem%"

    def test_none_comparisons_become_null_checks(self):
        assert (F("team") == None).conditions[0].op is Op.IS_NULL  # noqa: E711
        assert (F("team") != None).conditions[0].op is Op.NOT_NULL  # noqa: E711
        assert F("team").is_null().conditions[0].op is Op.IS_NULL
        assert F("team").is_not_null().conditions[0].op is Op.NOT_NULL

    def test_in_freezes_values(self):
        cond = F("username").in_(["AAA", "BBB"]).conditions[0]
        assert cond.op is Op.IN
        assert cond.value == ("AAA", "BBB")

    def test_in_requires_sequence(self):
        with pytest.raises(InvalidRequestError, match="sequence"):
            Condition("username", Op.IN, "AAA")

    def test_where(self):
        pred = where(username="AAA", team=None, age=[10, 20])
        ops = [c.op for c in pred.conditions]
        assert ops == [Op.EQ, Op.IS_NULL, Op.IN]
        assert pred.conditions[2].value == (10, 20)

    def test_conjunction(self):
        pred = where(username="AAA") & (F("age") > 15)
        assert pred.paths() == ("username", "age")
        assert str(pred) == "username = 'AAA' AND age > 15"

    def test_empty_predicate(self):
        assert Predicate().is_empty
        assert str(Predicate()) == "<all>"

    def test_predicates_are_hashable(self):
        assert hash(where(age=10)) == hash(F("age") == 10)
        assert where(age=10) == (F("age") == 10)

    def test_expression(self):
        expr = F("age") + 1
        assert expr == Expression("age", "+", 1)
        assert (F("age") * 2).operator == "*"

    def test_expression_rejects_operator(self):
        with pytest.raises(InvalidRequestError):
            Expression("age", "/", 2)


class TestSort:
    """Test Sort construction."""

    def test_by_parses_prefixes(self):
        sort = Sort.by("-username", "age", "+id")
        assert sort.keys == (
            SortKey("username", Direction.DESC),
            SortKey("age", Direction.ASC),
            SortKey("id", Direction.ASC),
        )
        assert str(sort) == "-username,age,id"

    def test_asc_desc_and(self):
        sort = Sort.desc("age").and_(Sort.asc("username"))
        assert [str(k) for k in sort.keys] == ["-age", "username"]

    def test_unsorted(self):
        assert Sort().is_unsorted
        assert not Sort.by("age").is_unsorted


class TestWindows:
    """Test Window and PageRequest."""

    def test_window_defaults(self):
        window = Window()
        assert (window.offset, window.limit) == (0, 20)

    @pytest.mark.parametrize("offset,limit", [(-1, 10), (0, 0), (0, -5)])
    def test_invalid_window(self, offset, limit):
        with pytest.raises(InvalidRequestError):
            Window(offset, limit)

    def test_window_number(self):
        assert Window(6, 3).number == 2

    def test_page_request_window(self):
        request = PageRequest.of(2, 3)
        assert request.window == Window(6, 3)
        assert request.next().page == 3
        assert request.previous_or_first().page == 1
        assert PageRequest.of(0, 3).previous_or_first().page == 0

    @pytest.mark.parametrize("page,size", [(-1, 3), (0, 0)])
    def test_invalid_page_request(self, page, size):
        with pytest.raises(InvalidRequestError):
            PageRequest.of(page, size)


class TestQueryRequest:
    """Test QueryRequest values."""

    def test_equal_requests_hash_equal(self):
        a = QueryRequest(Member, F("age") >= 20, Sort.by("-username"), fetch={"team"})
        b = QueryRequest(Member, F("age") >= 20, Sort.by("-username"), fetch=["team"])
        assert a == b
        assert hash(a) == hash(b)

    def test_fetch_and_projection_conflict(self):
        with pytest.raises(InvalidRequestError, match="projection"):
            QueryRequest(Member, fetch={"team"}, projection=("username",))

    def test_with_window_and_sort(self):
        request = QueryRequest(Member)
        assert request.with_window(Window(0, 3)).window == Window(0, 3)
        assert request.with_sort(Sort.by("age")).sort == Sort.by("age")
        assert request.window is None

    def test_describe(self):
        request = QueryRequest(Member, F("age") >= 20, Sort.by("-username"), Window(0, 3), {"team"})
        assert request.describe() == "Member where age >= 20 sort -username window 0+3 fetch team"
        assert QueryRequest("member").describe() == "member where <all>"
