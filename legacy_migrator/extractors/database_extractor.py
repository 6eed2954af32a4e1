"""Relational source extractor with retry-and-reconnect."""

import logging
import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar

from sqlalchemy import create_engine, func, inspect, literal_column, select, text
from sqlalchemy import table as sql_table
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.sql.elements import ColumnElement

from ..models.connection import DatabaseSettings
from ..models.record import SourceRow
from .base import (
    BaseExtractor,
    ExtractionResult,
    RetryPolicy,
    SourceConnectionError,
    SourceTableMissing,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Per-query timeout for the legacy MySQL server, in seconds
MYSQL_QUERY_TIMEOUT = 60

# Can't connect, server gone away, lost connection during query, lost connection at handshake
MYSQL_CONNECTION_ERRORS = {2003, 2006, 2013, 2055}

CONNECTION_ERROR_MARKERS = (
    "lost connection",
    "server has gone away",
    "connection refused",
    "connection reset",
    "server closed the connection",
    "connection is closed",
    "connection already closed",
    "timed out",
    "timeout",
)


class DatabaseExtractor(BaseExtractor):
    """
    Reads whole tables from a relational source through SQLAlchemy.

    Every query goes through ``execute_with_retry``: lost connections and
    timeouts are retried with exponential backoff after disposing the
    connection pool, up to the retry policy's attempt limit.
    """

    def __init__(
        self,
        engine: Engine,
        retry: Optional[RetryPolicy] = None,
        sleep: Callable[[float], None] = time.sleep,
        name: str = "source",
        owns_engine: bool = False,
    ):
        super().__init__(retry)
        self.engine = engine
        self.name = name
        self._sleep = sleep
        self._owns_engine = owns_engine

    @classmethod
    def from_settings(
        cls,
        settings: DatabaseSettings,
        retry: Optional[RetryPolicy] = None,
        name: str = "source",
    ) -> "DatabaseExtractor":
        connect_args: Dict[str, Any] = {}
        if settings.dialect == "mysql":
            connect_args = {
                "charset": "utf8mb4",
                "connect_timeout": MYSQL_QUERY_TIMEOUT,
                "read_timeout": MYSQL_QUERY_TIMEOUT,
            }
        engine = create_engine(settings.url(), pool_pre_ping=True, connect_args=connect_args)
        logger.info(f"Source {name}: {settings.safe_description()}")
        return cls(engine, retry=retry, name=name, owns_engine=True)

    def connect(self) -> None:
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            raise SourceConnectionError(f"Cannot connect to {self.name}: {e}") from e
        logger.info(f"Connected to {self.name} ({self.engine.dialect.name})")

    def close(self) -> None:
        if self._owns_engine:
            self.engine.dispose()

    def execute_with_retry(self, fn: Callable[[Connection], T], description: str) -> T:
        """
        Run ``fn`` on a fresh connection, retrying transient failures.

        Raises:
            SourceConnectionError: when every attempt has failed
        """
        delays = self.retry.delays()
        attempt = 0
        while True:
            attempt += 1
            try:
                with self.engine.connect() as conn:
                    return fn(conn)
            except DBAPIError as e:
                if not self._is_transient(e):
                    raise
                delay = next(delays, None)
                if delay is None:
                    raise SourceConnectionError(
                        f"{description} failed after {attempt} attempts: {e.orig or e}"
                    ) from e
                logger.warning(
                    f"{description}: connection problem (attempt {attempt}/{self.retry.max_attempts}), "
                    f"reconnecting in {delay:.1f}s: {e.orig or e}"
                )
                self._reconnect()
                self._sleep(delay)

    def _reconnect(self) -> None:
        self.engine.dispose()

    @staticmethod
    def _is_transient(error: DBAPIError) -> bool:
        """Lost connections and timeouts only; SQL errors are never retried."""
        if error.connection_invalidated:
            return True
        args = getattr(error.orig, "args", None) or ()
        if args and isinstance(args[0], int) and args[0] in MYSQL_CONNECTION_ERRORS:
            return True
        message = str(error.orig or error).lower()
        return any(marker in message for marker in CONNECTION_ERROR_MARKERS)

    def table_exists(self, table: str) -> bool:
        return self.execute_with_retry(
            lambda conn: inspect(conn).has_table(table),
            f"Checking {table}",
        )

    def fetch_rows(
        self,
        table: str,
        where: Optional[ColumnElement] = None,
        entity: Optional[str] = None,
    ) -> ExtractionResult:
        if not self.table_exists(table):
            raise SourceTableMissing(table)

        result = ExtractionResult(table=table, started_at=datetime.utcnow())
        query = select(literal_column("*")).select_from(sql_table(table))
        if where is not None:
            query = query.where(where)

        def run(conn: Connection) -> Tuple[List[str], List[Dict[str, Any]]]:
            cursor = conn.execute(query)
            return list(cursor.keys()), [dict(r) for r in cursor.mappings()]

        columns, records = self.execute_with_retry(run, f"Reading {table}")
        result.columns = columns
        result.rows = [SourceRow(entity or table, record) for record in records]
        result.completed_at = datetime.utcnow()
        logger.info(f"Found {result.total_extracted} rows in {table}")
        return result

    def count(self, table: str, where: Optional[ColumnElement] = None) -> int:
        query = select(func.count()).select_from(sql_table(table))
        if where is not None:
            query = query.where(where)
        return self.execute_with_retry(
            lambda conn: int(conn.execute(query).scalar() or 0),
            f"Counting {table}",
        )
