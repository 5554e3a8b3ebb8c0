"""Tests for data_spine.dialect module."""

import datetime

import pytest

from data_spine.dialect import (
    MySQLDialect,
    PostgreSQLDialect,
    SQLiteDialect,
    get_dialect,
    register_dialect,
)


class TestSQLiteDialect:
    def setup_method(self):
        self.d = SQLiteDialect()

    def test_name(self):
        assert self.d.name == "sqlite"

    def test_placeholders(self):
        assert self.d.placeholder(0) == "?"
        assert self.d.placeholders(3) == "?, ?, ?"

    def test_limit_offset(self):
        assert self.d.limit_offset(3, 0) == "LIMIT 3 OFFSET 0"
        assert self.d.limit_offset(3, 6) == "LIMIT 3 OFFSET 6"

    def test_offset_without_limit(self):
        assert self.d.limit_offset(None, 5) == "LIMIT -1 OFFSET 5"
        assert self.d.limit_offset(None, 0) == ""

    def test_column_types(self):
        assert self.d.column_type(int) == "INTEGER"
        assert self.d.column_type(str) == "TEXT"
        assert self.d.column_type(datetime.date) == "DATE"
        assert self.d.column_type(bytes) == "TEXT"

    def test_identity_column(self):
        assert self.d.identity_column(int) == "INTEGER PRIMARY KEY"
        assert self.d.identity_column(str) == "TEXT PRIMARY KEY"


class TestPostgreSQLDialect:
    def setup_method(self):
        self.d = PostgreSQLDialect()

    def test_placeholders(self):
        assert self.d.placeholders(2) == "%s, %s"

    def test_limit_offset(self):
        assert self.d.limit_offset(3, 0) == "LIMIT 3"
        assert self.d.limit_offset(3, 6) == "LIMIT 3 OFFSET 6"
        assert self.d.limit_offset(None, 6) == "OFFSET 6"

    def test_column_types(self):
        assert self.d.column_type(bool) == "BOOLEAN"
        assert self.d.column_type(float) == "DOUBLE PRECISION"
        assert self.d.identity_column(int) == "BIGINT PRIMARY KEY"


class TestMySQLDialect:
    def setup_method(self):
        self.d = MySQLDialect()

    def test_limit_offset(self):
        assert self.d.limit_offset(3, 0) == "LIMIT 3 OFFSET 0"
        assert self.d.limit_offset(None, 4) == "LIMIT 18446744073709551615 OFFSET 4"

    def test_column_types(self):
        assert self.d.column_type(str) == "VARCHAR(255)"
        assert self.d.column_type(float) == "DOUBLE"
        assert self.d.identity_column(int) == "BIGINT PRIMARY KEY"


class TestGetDialect:
    @pytest.mark.parametrize(
        "name,expected",
        [("sqlite", "sqlite"), ("postgresql", "postgresql"), ("postgres", "postgresql"), ("MySQL", "mysql")],
    )
    def test_lookup(self, name, expected):
        assert get_dialect(name).name == expected

    def test_unknown(self):
        with pytest.raises(ValueError, match="Unknown dialect"):
            get_dialect("oracle")

    def test_register(self):
        custom = SQLiteDialect()
        register_dialect("Custom", custom)
        assert get_dialect("custom") is custom
