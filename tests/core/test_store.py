"""Tests for data_spine.store and data_spine.connection."""

from __future__ import annotations

import sqlite3

import pytest
from sqlalchemy import exc as sa_exc
from sqlalchemy.orm import Session as SASession

from data_spine.builder import Statement
from data_spine.connection import SAConnectionBridge, SqliteConnection, create_engine
from data_spine.domain import Member, Team
from data_spine.errors import IntegrityError, QueryError, StoreUnavailableError
from data_spine.session import SessionFactory
from data_spine.store import SqlStore, translate_error


class TestTranslateError:
    """Test driver error translation."""

    def test_sqlite_integrity(self):
        err = translate_error(sqlite3.IntegrityError("UNIQUE constraint failed: team.id"))
        assert isinstance(err, IntegrityError)
        assert not err.retryable

    def test_sqlite_locked_is_unavailable(self):
        err = translate_error(sqlite3.OperationalError("database is locked"))
        assert isinstance(err, StoreUnavailableError)
        assert err.retryable

    def test_sqlite_other_is_query_error(self):
        err = translate_error(sqlite3.OperationalError("no such table: nowhere"))
        assert isinstance(err, QueryError)

    def test_statement_in_context(self):
        err = translate_error(sqlite3.OperationalError("near FROM: syntax error"), Statement("SELECT FROM"))
        assert err.context.statement == "SELECT FROM"

    def test_cause_preserved(self):
        original = sqlite3.IntegrityError("NOT NULL constraint failed")
        assert translate_error(original).cause is original

    def test_sqlalchemy_integrity(self):
        wrapped = sa_exc.IntegrityError("INSERT", {}, sqlite3.IntegrityError("UNIQUE constraint failed"))
        err = translate_error(wrapped)
        assert isinstance(err, IntegrityError)
        assert err.message == "UNIQUE constraint failed"

    def test_sqlalchemy_locked(self):
        wrapped = sa_exc.OperationalError("SELECT 1", {}, sqlite3.OperationalError("database is locked"))
        assert isinstance(translate_error(wrapped), StoreUnavailableError)

    def test_sqlalchemy_other(self):
        wrapped = sa_exc.ProgrammingError("SELECT", {}, sqlite3.ProgrammingError("bad parameter"))
        assert isinstance(translate_error(wrapped), QueryError)

    def test_non_driver_error(self):
        assert translate_error(ValueError("not a driver error")) is None


class TestSqlStore:
    """Test SqlStore over a plain sqlite3 connection."""

    def test_read_returns_dicts(self, store):
        store.execute_write(Statement("INSERT INTO team (id, name) VALUES (?, ?)", (1, "teamA")))
        rows = store.execute_read(Statement("SELECT id, name FROM team"))
        assert rows == [{"id": 1, "name": "teamA"}]

    def test_empty_read(self, store):
        assert store.execute_read(Statement("SELECT id FROM team")) == []

    def test_stats(self, store):
        store.execute_write(Statement("INSERT INTO team (id, name) VALUES (?, ?)", (1, "teamA")))
        store.execute_read(Statement("SELECT id FROM team"))
        store.execute_read(Statement("SELECT id FROM team"))
        assert (store.stats.reads, store.stats.writes) == (2, 1)
        store.stats.reset()
        assert (store.stats.reads, store.stats.writes) == (0, 0)

    def test_write_returns_rowcount(self, store, seeded):
        assert store.execute_write(Statement("UPDATE member SET age = age + 1")) == 4

    def test_bad_sql(self, store):
        with pytest.raises(QueryError) as exc_info:
            store.execute_read(Statement("SELECT * FROM nowhere"))
        assert exc_info.value.context.statement == "SELECT * FROM nowhere"
        assert isinstance(exc_info.value.__cause__, sqlite3.OperationalError)

    def test_foreign_keys_enforced(self, store):
        with pytest.raises(IntegrityError):
            store.execute_write(
                Statement("INSERT INTO member (id, username, age, team_id) VALUES (?, ?, ?, ?)", (1, "x", 1, 99))
            )

    def test_rollback(self, store):
        store.execute_write(Statement("INSERT INTO team (id, name) VALUES (?, ?)", (1, "teamA")))
        store.rollback()
        assert store.execute_read(Statement("SELECT id FROM team")) == []

    def test_unit_of_work_flag(self, store):
        store.begin_unit_of_work()
        assert store.in_unit_of_work
        store.commit()
        assert not store.in_unit_of_work

    def test_create_tables_order_and_idempotence(self, store, registry):
        assert store.create_tables(registry) == ["team", "member"]

    def test_create_tables_ddl(self, registry):
        s = SqlStore.sqlite(":memory:")
        s.create_tables(registry)
        rows = s.execute_read(Statement("SELECT sql FROM sqlite_master WHERE name = 'member'"))
        assert "team_id INTEGER REFERENCES team(id)" in rows[0]["sql"]
        assert "username TEXT NOT NULL" in rows[0]["sql"]
        indexes = s.execute_read(Statement("SELECT name FROM sqlite_master WHERE type = 'index'"))
        assert {"name": "ix_member_team_id"} in indexes
        s.close()

    def test_file_store(self, tmp_path, registry):
        path = tmp_path / "nested" / "spine.db"
        s = SqlStore.sqlite(path)
        s.create_tables(registry)
        s.close()
        assert path.exists()

    def test_repr(self, store):
        assert "sqlite" in repr(store)


class TestSqliteConnection:
    """Test the sqlite3 adapter."""

    def test_fetch_through_connection(self):
        conn = SqliteConnection(":memory:")
        conn.execute("CREATE TABLE t (id INTEGER)")
        conn.executemany("INSERT INTO t VALUES (?)", [(1,), (2,)])
        conn.execute("SELECT id FROM t ORDER BY id")
        assert conn.fetchone()["id"] == 1
        assert [r["id"] for r in conn.fetchall()] == [2]
        conn.close()

    def test_foreign_keys_pragma(self):
        conn = SqliteConnection(":memory:")
        assert conn.raw.execute("PRAGMA foreign_keys").fetchone()[0] == 1
        conn.close()


class TestSQLAlchemyBridge:
    """Test a store sharing a SQLAlchemy session."""

    @pytest.fixture
    def sa_session(self):
        engine = create_engine("sqlite:///:memory:")
        with SASession(engine) as sa_session:
            yield sa_session
        engine.dispose()

    def test_named_params(self, sa_session):
        bridge = SAConnectionBridge(sa_session)
        bridge.execute("SELECT ? AS a, '?' AS b, ? AS c", (1, 2))
        assert bridge.fetchall() == [(1, "?", 2)]
        assert [d[0] for d in bridge.description] == ["a", "b", "c"]

    def test_empty_bridge(self, sa_session):
        bridge = SAConnectionBridge(sa_session)
        assert bridge.fetchone() is None
        assert bridge.fetchall() == []
        assert bridge.rowcount == -1
        assert bridge.description is None
        assert bridge.session is sa_session

    def test_engine_round_trip(self, sa_session, registry, settings):
        store = SqlStore.from_session(sa_session)
        assert store.create_tables(registry) == ["team", "member"]

        factory = SessionFactory(store, registry, settings)
        with factory.session() as s:
            team = Team("teamA")
            s.persist(team)
            s.persist(Member("member1", 10, team))

        with factory.session() as s:
            member = s.get(Member, 1)
            assert member.team.name == "teamA"
            assert s.count(Member) == 1

    def test_integrity_error_through_bridge(self, sa_session, registry):
        store = SqlStore.from_session(sa_session)
        store.create_tables(registry)
        with pytest.raises(IntegrityError):
            store.execute_write(
                Statement("INSERT INTO member (id, username, age, team_id) VALUES (?, ?, ?, ?)", (1, "x", 1, 99))
            )
