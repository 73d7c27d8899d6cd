import logging
from contextlib import closing
from decimal import Decimal
from typing import Any, Sequence

from row_metrics.app_config import DatabaseTarget
from row_metrics.connections import ConnectionFactory, DatabaseSession, open_connection
from row_metrics.dialects import CounterQuery, build_counter_queries
from row_metrics.domain import CounterKind, Snapshot

logger = logging.getLogger(__name__)


class RowScanError(ValueError):
    pass


def _coerce_counter(value: Any) -> int:
    if value is None:
        raise RowScanError("counter is NULL")
    if isinstance(value, bool):
        raise RowScanError(f"counter has unexpected type bool: {value!r}")

    try:
        if isinstance(value, int):
            count = value
        elif isinstance(value, Decimal) and value.is_finite() and value == value.to_integral_value():
            count = int(value)
        elif isinstance(value, (str, bytes)) and value.strip().isdigit():
            count = int(value)
        else:
            raise RowScanError(f"counter is not an integer: {value!r}")
    except RowScanError:
        raise
    except (ValueError, ArithmeticError) as e:
        raise RowScanError(f"counter is not an integer: {value!r}") from e

    if count < 0:
        raise RowScanError(f"counter is negative: {count}")
    return count


def parse_counter_row(row: Sequence[Any]) -> tuple[str, int]:
    """Turn one (table name, counter) result row into typed values."""
    if len(row) != 2:
        raise RowScanError(f"expected 2 columns, got {len(row)}")

    table_name, value = row
    if isinstance(table_name, (bytes, bytearray)):
        try:
            table_name = table_name.decode("utf-8")
        except UnicodeDecodeError as e:
            raise RowScanError(f"table name is not valid UTF-8: {table_name!r}") from e
    if not isinstance(table_name, str) or not table_name:
        raise RowScanError(f"table name is not a string: {table_name!r}")

    return table_name, _coerce_counter(value)


class SnapshotCollector:
    """
    Reads the configured counters of one database into a Snapshot.

    Failure granularity:
      - connection failure -> TargetConnectionError (caller skips or aborts)
      - query failure      -> that counter kind is left empty
      - bad result row     -> row skipped, scan continues
    """

    def __init__(self, connection_factory: ConnectionFactory = open_connection):
        self.connection_factory = connection_factory

    def collect(self, target: DatabaseTarget) -> Snapshot:
        plan = build_counter_queries(
            target.dialect,
            target.resolved_schema,
            target.tables.increment,
            target.tables.row,
        )
        for issue in plan.issues:
            issue.log(logger)

        if not plan.queries:
            logger.info("No tables configured for database %s, nothing to collect", target.name)
            return Snapshot()

        counts: dict[CounterKind, dict[str, int]] = {kind: {} for kind in CounterKind}

        with self.connection_factory(target) as session:
            for query in plan.queries:
                counts[query.counter_kind] = self._run_query(target, session, query)

        return Snapshot(
            increment_counts=counts[CounterKind.INCREMENT],
            row_counts=counts[CounterKind.ROW],
        )

    def _rollback(self, target: DatabaseTarget, session: DatabaseSession) -> None:
        # An aborted transaction would fail every later query on this connection.
        try:
            session.connection.rollback()
        except Exception:
            logger.exception("Failed to roll back after query error in database %s", target.name)

    def _run_query(self, target: DatabaseTarget, session: DatabaseSession, query: CounterQuery) -> dict[str, int]:
        sql = query.render(session.paramstyle)

        try:
            with closing(session.connection.cursor()) as cursor:
                cursor.execute(sql, query.params)
                rows = cursor.fetchall()
        except Exception:
            logger.exception("Failed to query %s counters in database %s", query.counter_kind.value, target.name)
            self._rollback(target, session)
            return {}

        counts: dict[str, int] = {}
        for row in rows:
            try:
                table_name, count = parse_counter_row(row)
            except RowScanError as e:
                logger.error("Failed to obtain %s value in database %s for row %r: %s",
                             query.counter_kind.value, target.name, row, e)
                continue

            counts[table_name] = count
            logger.info("Obtained %s value in database %s for table %s with count %s",
                        query.counter_kind.value, target.name, table_name, count)

        requested = query.params[:-1]
        if missing := [t for t in requested if t not in counts]:
            logger.debug("Database %s returned no %s counter for tables: %s",
                         target.name, query.counter_kind.value, missing)

        return counts
