import logging
from contextlib import closing, contextmanager
from dataclasses import dataclass
from typing import Any, Callable, ContextManager, Iterator

from core.settings import CONNECT_TIMEOUT_SECONDS
from row_metrics.app_config import DatabaseTarget
from row_metrics.dialects import Dialect
from row_metrics.domain import RowMetricsError

logger = logging.getLogger(__name__)


class TargetConnectionError(RowMetricsError):
    def __init__(self, target_name: str, message: str):
        super().__init__(f"Failed to connect to database {target_name}: {message}")
        self.target_name = target_name


@dataclass(frozen=True)
class DatabaseSession:
    """An open DB-API connection plus the placeholder syntax its driver expects."""
    connection: Any
    paramstyle: str


ConnectionFactory = Callable[[DatabaseTarget], ContextManager[DatabaseSession]]

MYSQL_DISABLE_STATS_CACHE = "SET SESSION information_schema_stats_expiry = 0"


def _connect_mysql(target: DatabaseTarget) -> DatabaseSession:
    import mysql.connector

    hostname, port = target.endpoint
    connection = mysql.connector.connect(
        host=hostname,
        port=port,
        user=target.user,
        password=target.password,
        database=target.database or None,
        connection_timeout=CONNECT_TIMEOUT_SECONDS,
    )
    # MySQL 8 caches information_schema.TABLES statistics for a day by default.
    try:
        with closing(connection.cursor()) as cursor:
            cursor.execute(MYSQL_DISABLE_STATS_CACHE)
    except mysql.connector.Error as e:
        logger.debug("Could not disable statistics caching in database %s: %s", target.name, e)
    return DatabaseSession(connection=connection, paramstyle=mysql.connector.paramstyle)


def _connect_postgres(target: DatabaseTarget) -> DatabaseSession:
    import psycopg2

    hostname, port = target.endpoint
    connection = psycopg2.connect(
        host=hostname,
        port=port,
        user=target.user,
        password=target.password,
        dbname=target.database or None,
        connect_timeout=CONNECT_TIMEOUT_SECONDS,
    )
    return DatabaseSession(connection=connection, paramstyle=psycopg2.paramstyle)


DRIVER_CONNECTORS: dict[Dialect, Callable[[DatabaseTarget], DatabaseSession]] = {
    Dialect.MYSQL: _connect_mysql,
    Dialect.POSTGRES: _connect_postgres,
}


@contextmanager
def open_connection(target: DatabaseTarget) -> Iterator[DatabaseSession]:
    """
    Open a read-only session for `target` and close it on exit.

    Any failure to load the driver or to connect is reported as
    TargetConnectionError so the caller can skip the target.
    """
    connector = DRIVER_CONNECTORS.get(target.dialect, _connect_mysql)
    hostname, port = target.endpoint

    try:
        session = connector(target)
    except ImportError as e:
        raise TargetConnectionError(target.name, f"database driver not installed ({e})") from e
    except Exception as e:
        raise TargetConnectionError(target.name, str(e)) from e

    logger.debug("Connected to database %s (%s at %s:%s)", target.name, target.dialect.value, hostname, port)
    try:
        yield session
    finally:
        try:
            session.connection.close()
        except Exception:
            logger.exception("Failed to close connection to database %s", target.name)
