"""
Tests for the data-spine CLI.

Each test works on a fresh SQLite file under ``tmp_path`` seeded through the
CLI itself (``init`` + ``add``).
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from data_spine.cli import app

runner = CliRunner()


def _invoke(db: Path, *args: str):
    return runner.invoke(app, [*args, "--database", str(db)])


def _ok(db: Path, *args: str):
    result = _invoke(db, *args)
    assert result.exit_code == 0, result.output
    return result


def _json(db: Path, *args: str):
    return json.loads(_ok(db, *args, "--json").stdout)


@pytest.fixture
def db(tmp_path: Path) -> Path:
    """teamA/teamB and member1..member4 aged 10..40 (two per team)."""
    path = tmp_path / "spine.db"
    _ok(path, "init")
    _ok(path, "add", "team", "name=teamA")
    _ok(path, "add", "team", "name=teamB")
    for i, (age, team) in enumerate([(10, 1), (20, 1), (30, 2), (40, 2)], start=1):
        _ok(path, "add", "member", f"username=member{i},age={age},team={team}")
    return path


class TestGlobalOptions:
    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert result.stdout.startswith("data-spine ")

    def test_help_lists_commands(self):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        for command in ("init", "add", "get", "query", "count", "bulk-update"):
            assert command in result.stdout


class TestInitAndAdd:
    def test_init_creates_tables(self, tmp_path):
        assert _json(tmp_path / "new.db", "init") == {"tables": ["team", "member"]}

    def test_init_is_repeatable(self, db):
        assert _json(db, "init") == {"tables": ["team", "member"]}

    def test_add_returns_entity(self, db):
        created = _json(db, "add", "member", "username=member5,age=50,team=2")
        assert created == {"id": 5, "username": "member5", "age": 50, "team": 2}

    def test_add_without_team(self, db):
        assert _json(db, "add", "member", "username=loner,age=1")["team"] is None

    def test_add_missing_team(self, db):
        result = _invoke(db, "add", "member", "username=member5,age=50,team=99")
        assert result.exit_code == 1
        assert "NotFoundError" in result.output

    def test_add_unknown_field(self, db):
        result = _invoke(db, "add", "member", "nickname=x")
        assert result.exit_code == 1
        assert "UnknownFieldError" in result.output

    def test_add_missing_required_column(self, db):
        result = _invoke(db, "add", "member", "username=noage")
        assert result.exit_code == 1
        assert "IntegrityError" in result.output


class TestGet:
    def test_get_json(self, db):
        assert _json(db, "get", "member", "1") == {"id": 1, "username": "member1", "age": 10, "team": 1}

    def test_get_with_fetch(self, db):
        member = _json(db, "get", "member", "3", "--fetch", "team")
        assert member["team"] == {"id": 2, "name": "teamB"}

    def test_get_collection(self, db):
        team = _json(db, "get", "team", "1", "--fetch", "members")
        assert team["members"] == [1, 2]

    def test_get_table_output(self, db):
        result = _ok(db, "get", "member", "1")
        assert "username: member1" in result.stdout

    def test_get_missing(self, db):
        result = _invoke(db, "get", "member", "99")
        assert result.exit_code == 1
        assert "Error (NotFoundError)" in result.output
        assert "Request: get member 99" in result.output

    def test_get_missing_json(self, db):
        result = _invoke(db, "get", "member", "99", "--json")
        assert result.exit_code == 1
        payload = json.loads(result.stdout)
        assert payload["success"] is False
        assert payload["error"]["code"] == "NotFoundError"
        assert payload["error"]["details"]["request"] == "get member 99"

    def test_bad_identity(self, db):
        result = _invoke(db, "get", "member", "abc")
        assert result.exit_code == 1
        assert "InvalidRequestError" in result.output


class TestQuery:
    def test_all(self, db):
        rows = _json(db, "query", "member")
        assert [r["username"] for r in rows] == ["member1", "member2", "member3", "member4"]

    def test_predicate_and_sort(self, db):
        rows = _json(db, "query", "member", "age>=20", "--sort=-username")
        assert [r["username"] for r in rows] == ["member4", "member3", "member2"]

    def test_join_predicate(self, db):
        rows = _json(db, "query", "member", "team.name=teamB")
        assert [r["id"] for r in rows] == [3, 4]

    def test_in_and_like(self, db):
        assert len(_json(db, "query", "member", "username=member1|member4")) == 2
        assert len(_json(db, "query", "member", "username~member%")) == 4

    def test_page(self, db):
        page = _json(db, "query", "member", "--sort=-username", "--page", "0", "--size", "3")
        assert [r["username"] for r in page["items"]] == ["member4", "member3", "member2"]
        assert (page["number"], page["size"], page["total"], page["total_pages"]) == (0, 3, 4, 2)
        assert page["has_next"] is True

    def test_slice(self, db):
        chunk = _json(db, "query", "member", "--slice", "1", "--size", "3")
        assert [r["username"] for r in chunk["items"]] == ["member4"]
        assert chunk["has_next"] is False
        assert "total" not in chunk

    def test_page_and_slice_conflict(self, db):
        result = _invoke(db, "query", "member", "--page", "0", "--slice", "0")
        assert result.exit_code == 2

    def test_fetch(self, db):
        rows = _json(db, "query", "member", "age<20", "--fetch", "team")
        assert rows[0]["team"] == {"id": 1, "name": "teamA"}

    def test_select(self, db):
        rows = _json(db, "query", "member", "age>30", "--select", "username,team.name")
        assert rows == [{"username": "member4", "team.name": "teamB"}]

    def test_table_output(self, db):
        result = _ok(db, "query", "member", "--page", "0", "--size", "2")
        assert "member1" in result.stdout
        assert "Page 1 of 2" in result.stdout

    def test_no_results(self, db):
        result = _ok(db, "query", "member", "age>100")
        assert "No items." in result.stdout

    def test_unknown_field(self, db):
        result = _invoke(db, "query", "member", "nickname=x")
        assert result.exit_code == 1
        assert "UnknownFieldError" in result.output

    def test_unparsable_predicate(self, db):
        result = _invoke(db, "query", "member", "age")
        assert result.exit_code == 1
        assert "InvalidRequestError" in result.output


class TestCountAndBulkUpdate:
    def test_count(self, db):
        assert _json(db, "count", "member") == {"entity": "member", "count": 4}
        assert _json(db, "count", "member", "team.name=teamA")["count"] == 2

    def test_count_unknown_entity(self, db):
        result = _invoke(db, "count", "ghost")
        assert result.exit_code == 1
        assert "UnknownEntityTypeError" in result.output

    def test_bulk_update(self, db):
        outcome = _json(db, "bulk-update", "member", "age>=20", "age=age+1")
        assert outcome == {"entity": "member", "affected": 3, "reconciled": False}
        rows = _json(db, "query", "member", "--sort=age")
        assert [r["age"] for r in rows] == [10, 21, 31, 41]

    def test_bulk_update_reconcile(self, db):
        outcome = _json(db, "bulk-update", "member", "team.name=teamA", "age=0", "--reconcile")
        assert outcome["affected"] == 2
        assert outcome["reconciled"] is True
        assert _json(db, "count", "member", "age=0")["count"] == 2

    def test_bulk_update_unknown_field(self, db):
        result = _invoke(db, "bulk-update", "member", "age>=20", "nickname=x")
        assert result.exit_code == 1
        assert "UnknownFieldError" in result.output


class TestRegistryOption:
    def test_explicit_registry(self, db):
        result = _invoke(db, "count", "member", "--registry", "data_spine.domain:build_registry", "--json")
        assert json.loads(result.stdout)["count"] == 4

    def test_bad_registry(self, db):
        result = _invoke(db, "count", "member", "--registry", "not-a-spec")
        assert result.exit_code == 1
        assert "InvalidRequestError" in result.output
