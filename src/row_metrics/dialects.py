from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable

from core.settings import DEFAULT_POSTGRES_SCHEMA
from row_metrics.domain import CounterKind, Issue, Severity

# Canonical placeholder used by every query template before rebinding.
PLACEHOLDER = "?"


class Dialect(str, Enum):
    MYSQL = "mysql"
    POSTGRES = "postgres"

    @classmethod
    def parse(cls, value: "Dialect | str | None") -> "Dialect | None":
        """Case-insensitive lookup. Empty means MYSQL, unknown means None."""
        if isinstance(value, Dialect):
            return value
        if value is None or not str(value).strip():
            return cls.MYSQL
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return None


def rebind(sql: str, paramstyle: str) -> str:
    """
    Rewrite `?` placeholders into another placeholder syntax.

    Supports the PEP 249 styles used by positional drivers (qmark, numeric,
    format, pyformat) plus "dollar" ($1, $2, ...) for PostgreSQL-native SQL.
    """
    if paramstyle == "qmark":
        return sql

    if paramstyle in ("format", "pyformat"):
        def marker(_: int) -> str:
            return "%s"
    elif paramstyle == "numeric":
        def marker(i: int) -> str:
            return f":{i}"
    elif paramstyle == "dollar":
        def marker(i: int) -> str:
            return f"${i}"
    else:
        raise ValueError(f"Unsupported paramstyle: {paramstyle!r}")

    head, *rest = sql.split(PLACEHOLDER)
    chunks = [head]
    for position, chunk in enumerate(rest, start=1):
        chunks.append(marker(position))
        chunks.append(chunk)
    return "".join(chunks)


@dataclass(frozen=True)
class CounterQuery:
    # SQL with `?` placeholders, rendered on demand
    template: str
    params: tuple[str, ...]
    counter_kind: CounterKind
    paramstyle: str = "qmark"

    @property
    def sql(self) -> str:
        """The query in the dialect's native placeholder syntax."""
        return self.render(self.paramstyle)

    def render(self, paramstyle: str) -> str:
        return rebind(self.template, paramstyle)


@dataclass(frozen=True)
class CounterQueryPlan:
    increment_query: CounterQuery | None
    row_query: CounterQuery | None
    issues: tuple[Issue, ...] = field(default_factory=tuple)

    @property
    def queries(self) -> list[CounterQuery]:
        return [q for q in (self.increment_query, self.row_query) if q is not None]


def _unique(tables: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(tables))


class DialectStrategy(ABC):
    dialect: Dialect
    placeholder_style: str

    @abstractmethod
    def increment_counter_sql(self, in_list: str) -> str: ...

    @abstractmethod
    def row_counter_sql(self, in_list: str) -> str: ...

    @abstractmethod
    def default_schema(self, database: str) -> str: ...

    def build_query(self, counter_kind: CounterKind, schema: str, tables: Iterable[str]) -> CounterQuery | None:
        names = _unique(tables)
        if not names:
            return None

        in_list = ", ".join(PLACEHOLDER for _ in names)
        if counter_kind is CounterKind.INCREMENT:
            template = self.increment_counter_sql(in_list)
        else:
            template = self.row_counter_sql(in_list)

        return CounterQuery(
            template=template,
            params=(*names, schema),
            counter_kind=counter_kind,
            paramstyle=self.placeholder_style,
        )

    def plan(self, schema: str, increment_tables: Iterable[str], row_tables: Iterable[str]) -> CounterQueryPlan:
        return CounterQueryPlan(
            increment_query=self.build_query(CounterKind.INCREMENT, schema, increment_tables),
            row_query=self.build_query(CounterKind.ROW, schema, row_tables),
        )


class MySQLDialect(DialectStrategy):
    dialect = Dialect.MYSQL
    placeholder_style = "qmark"

    def increment_counter_sql(self, in_list: str) -> str:
        return (
            "SELECT TABLE_NAME, AUTO_INCREMENT FROM information_schema.TABLES "
            f"WHERE TABLE_NAME IN ({in_list}) AND TABLE_SCHEMA = ?"
        )

    def row_counter_sql(self, in_list: str) -> str:
        return (
            "SELECT TABLE_NAME, TABLE_ROWS FROM information_schema.TABLES "
            f"WHERE TABLE_NAME IN ({in_list}) AND TABLE_SCHEMA = ?"
        )

    def default_schema(self, database: str) -> str:
        return database


class PostgresDialect(DialectStrategy):
    """
    Both counter kinds read the statistics collector's live tuple count.

    There is no cheap, portable way to read a sequence watermark per table, so
    the increment metric is a row-count approximation on PostgreSQL.
    """
    dialect = Dialect.POSTGRES
    placeholder_style = "dollar"

    def _live_tuples_sql(self, in_list: str) -> str:
        return (
            "SELECT relname, n_live_tup FROM pg_stat_user_tables "
            f"WHERE relname IN ({in_list}) AND schemaname = ?"
        )

    def increment_counter_sql(self, in_list: str) -> str:
        return self._live_tuples_sql(in_list)

    def row_counter_sql(self, in_list: str) -> str:
        return self._live_tuples_sql(in_list)

    def default_schema(self, database: str) -> str:
        return DEFAULT_POSTGRES_SCHEMA

    def plan(self, schema: str, increment_tables: Iterable[str], row_tables: Iterable[str]) -> CounterQueryPlan:
        plan = super().plan(schema, increment_tables, row_tables)
        if plan.increment_query is None:
            return plan

        issue = Issue(
            severity=Severity.WARNING,
            message="PostgreSQL has no per-table AUTO_INCREMENT; increment counters use n_live_tup instead",
            context={"schema": schema, "tables": ",".join(plan.increment_query.params[:-1])},
        )
        return CounterQueryPlan(plan.increment_query, plan.row_query, issues=plan.issues + (issue,))


DIALECT_STRATEGIES: dict[Dialect, DialectStrategy] = {
    Dialect.MYSQL: MySQLDialect(),
    Dialect.POSTGRES: PostgresDialect(),
}


def get_dialect_strategy(dialect: Dialect | str | None) -> DialectStrategy:
    """Unknown dialects get the MySQL strategy."""
    parsed = Dialect.parse(dialect)
    return DIALECT_STRATEGIES[parsed or Dialect.MYSQL]


def build_counter_queries(
    dialect: Dialect | str | None,
    schema: str,
    increment_tables: Iterable[str],
    row_tables: Iterable[str],
) -> CounterQueryPlan:
    """
    Build the increment and row counter queries for one database.

    Each query selects (table name, counter) pairs for the requested tables in
    `schema`. A counter kind with no tables gets no query.
    """
    strategy = get_dialect_strategy(dialect)
    plan = strategy.plan(schema, increment_tables, row_tables)

    if Dialect.parse(dialect) is None:
        issue = Issue(
            severity=Severity.WARNING,
            message="Unknown database dialect, falling back to MySQL queries",
            context={"dialect": dialect},
        )
        plan = CounterQueryPlan(plan.increment_query, plan.row_query, issues=(issue,) + plan.issues)

    return plan
