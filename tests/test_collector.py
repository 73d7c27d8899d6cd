"""Tests for ``row_metrics.collector``: snapshot collection."""

import logging
from contextlib import contextmanager
from decimal import Decimal

import duckdb
import pytest

from row_metrics.collector import RowScanError, SnapshotCollector, parse_counter_row
from row_metrics.connections import DatabaseSession, TargetConnectionError
from row_metrics.dialects import build_counter_queries


class FakeCursor:
    def __init__(self, connection):
        self.connection = connection
        self.closed = False
        self._rows = []

    def execute(self, sql, params):
        connection = self.connection
        connection.executed.append((sql, tuple(params)))
        if connection.aborted:
            raise RuntimeError("current transaction is aborted")
        if connection.fail_on and connection.fail_on in sql:
            connection.aborted = True
            raise RuntimeError("query exploded")
        self._rows = connection.results.get("AUTO_INCREMENT" if "AUTO_INCREMENT" in sql else "TABLE_ROWS", [])

    def fetchall(self):
        return list(self._rows)

    def close(self):
        self.closed = True


class FakeConnection:
    """Like psycopg2: after a failed statement every query fails until rollback."""

    def __init__(self, results, fail_on=None, rollback_error=None):
        self.results = results
        self.fail_on = fail_on
        self.rollback_error = rollback_error
        self.aborted = False
        self.rollbacks = 0
        self.executed = []
        self.cursors = []
        self.closed = False

    def cursor(self):
        cursor = FakeCursor(self)
        self.cursors.append(cursor)
        return cursor

    def rollback(self):
        self.rollbacks += 1
        if self.rollback_error:
            raise self.rollback_error
        self.aborted = False

    def close(self):
        self.closed = True


def session_factory(connection, paramstyle="pyformat"):
    @contextmanager
    def _factory(target):
        try:
            yield DatabaseSession(connection=connection, paramstyle=paramstyle)
        finally:
            connection.close()

    return _factory


class TestParseCounterRow:
    def test_plain_row(self):
        assert parse_counter_row(("orders", 100)) == ("orders", 100)

    def test_bytes_and_decimal(self):
        assert parse_counter_row((b"orders", Decimal("12"))) == ("orders", 12)

    def test_numeric_string(self):
        assert parse_counter_row(("orders", "42")) == ("orders", 42)

    @pytest.mark.parametrize(
        "row",
        [
            ("orders", None),
            ("orders", "abc"),
            ("orders", True),
            ("orders", -1),
            ("orders", Decimal("1.5")),
            ("orders", Decimal("Infinity")),
            ("orders", Decimal("NaN")),
            (b"\xff", 1),
            (None, 1),
            ("orders",),
        ],
    )
    def test_bad_rows(self, row):
        with pytest.raises(RowScanError):
            parse_counter_row(row)


class TestSnapshotCollectorMySQL:
    def test_collects_both_counter_kinds(self, make_target):
        connection = FakeConnection({
            "AUTO_INCREMENT": [("orders", 150)],
            "TABLE_ROWS": [("sessions", 1200)],
        })
        target = make_target(tables={"increment": ["orders"], "row": ["sessions"]})

        snapshot = SnapshotCollector(session_factory(connection)).collect(target)

        assert snapshot.increment_counts == {"orders": 150}
        assert snapshot.row_counts == {"sessions": 1200}
        assert connection.executed[0] == (
            "SELECT TABLE_NAME, AUTO_INCREMENT FROM information_schema.TABLES "
            "WHERE TABLE_NAME IN (%s) AND TABLE_SCHEMA = %s",
            ("orders", "shop"),
        )
        assert connection.closed
        assert all(c.closed for c in connection.cursors)

    def test_bad_rows_are_skipped(self, make_target, caplog):
        connection = FakeConnection({
            "AUTO_INCREMENT": [("orders", 150), ("ghost", None), ("weird", "n/a"), ("users", 7)],
        })
        target = make_target(tables={"increment": ["orders", "ghost", "weird", "users"]})

        with caplog.at_level(logging.ERROR):
            snapshot = SnapshotCollector(session_factory(connection)).collect(target)

        assert snapshot.increment_counts == {"orders": 150, "users": 7}
        assert "ghost" in caplog.text
        assert "weird" in caplog.text

    def test_missing_tables_are_absent(self, make_target):
        connection = FakeConnection({"AUTO_INCREMENT": [("orders", 1)]})
        target = make_target(tables={"increment": ["orders", "dropped"]})

        snapshot = SnapshotCollector(session_factory(connection)).collect(target)

        assert snapshot.increment_counts == {"orders": 1}
        assert "dropped" not in snapshot.increment_counts

    def test_failed_query_leaves_other_kind_intact(self, make_target, caplog):
        connection = FakeConnection({"TABLE_ROWS": [("sessions", 3)]}, fail_on="AUTO_INCREMENT")
        target = make_target(tables={"increment": ["orders"], "row": ["sessions"]})

        with caplog.at_level(logging.ERROR):
            snapshot = SnapshotCollector(session_factory(connection)).collect(target)

        assert snapshot.increment_counts == {}
        assert snapshot.row_counts == {"sessions": 3}
        assert "Failed to query increment counters" in caplog.text
        assert connection.rollbacks == 1
        assert connection.closed

    def test_failed_rollback_is_logged(self, make_target, caplog):
        connection = FakeConnection({}, fail_on="AUTO_INCREMENT", rollback_error=RuntimeError("link lost"))
        target = make_target(tables={"increment": ["orders"], "row": ["sessions"]})

        with caplog.at_level(logging.ERROR):
            snapshot = SnapshotCollector(session_factory(connection)).collect(target)

        assert snapshot.increment_counts == {}
        assert snapshot.row_counts == {}
        assert "Failed to roll back" in caplog.text
        assert connection.closed

    def test_undecodable_table_name_is_skipped(self, make_target, caplog):
        connection = FakeConnection({"AUTO_INCREMENT": [(b"\xff\xfe", 5), ("orders", 150)]})
        target = make_target(tables={"increment": ["orders"]})

        with caplog.at_level(logging.ERROR):
            snapshot = SnapshotCollector(session_factory(connection)).collect(target)

        assert snapshot.increment_counts == {"orders": 150}
        assert "not valid UTF-8" in caplog.text

    def test_no_tables_means_no_connection(self, make_target):
        def factory(target):
            raise AssertionError("should not connect")

        snapshot = SnapshotCollector(factory).collect(make_target())
        assert snapshot.increment_counts == {}
        assert snapshot.row_counts == {}

    def test_connection_failure_propagates(self, make_target):
        @contextmanager
        def factory(target):
            raise TargetConnectionError(target.name, "refused")
            yield

        with pytest.raises(TargetConnectionError, match="refused"):
            SnapshotCollector(factory).collect(make_target(tables={"row": ["sessions"]}))


class TestSnapshotCollectorPostgres:
    @pytest.fixture
    def database(self):
        con = duckdb.connect(":memory:")
        con.execute("CREATE TABLE pg_stat_user_tables (relname VARCHAR, n_live_tup BIGINT, schemaname VARCHAR)")
        con.executemany(
            "INSERT INTO pg_stat_user_tables VALUES (?, ?, ?)",
            [
                ("events", 10, "public"),
                ("audit", None, "public"),
                ("events", 999, "archive"),
                ("users", 4, "public"),
            ],
        )
        yield con
        con.close()

    def test_reads_live_tuples(self, database, make_target, caplog):
        target = make_target(name="events", dialect="postgres", tables={"increment": ["users"], "row": ["events", "audit"]})

        @contextmanager
        def factory(t):
            yield DatabaseSession(connection=database, paramstyle="qmark")

        with caplog.at_level(logging.WARNING):
            snapshot = SnapshotCollector(factory).collect(target)

        assert snapshot.increment_counts == {"users": 4}
        assert snapshot.row_counts == {"events": 10}
        assert "n_live_tup" in caplog.text

    def test_native_dollar_placeholders_execute(self, database):
        plan = build_counter_queries("postgres", "public", ["events", "users"], [])
        rows = database.execute(plan.increment_query.sql, list(plan.increment_query.params)).fetchall()
        assert sorted(rows) == [("events", 10), ("users", 4)]
