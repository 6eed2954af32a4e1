"""Relational target loader built on SQLAlchemy Core."""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import MetaData, Table, and_, create_engine, func, select, text
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import NoSuchTableError, SQLAlchemyError

from ..models.connection import DatabaseSettings
from ..models.record import BatchOutcome, ExistingRow
from .base import BaseLoader, TargetConnectionError

logger = logging.getLogger(__name__)

# dialect -> (disable, enable)
CONSTRAINT_TOGGLES = {
    "postgresql": (
        "SET session_replication_role = replica",
        "SET session_replication_role = DEFAULT",
    ),
    "mysql": ("SET FOREIGN_KEY_CHECKS = 0", "SET FOREIGN_KEY_CHECKS = 1"),
    "sqlite": ("PRAGMA foreign_keys = OFF", "PRAGMA foreign_keys = ON"),
}


class DatabaseLoader(BaseLoader):
    """
    Writes rows to a relational target.

    Holds one connection for the whole run so session-level settings (such
    as relaxed foreign-key checks) apply to every statement. Each write is
    committed on its own.
    """

    def __init__(self, engine: Engine, name: str = "target", owns_engine: bool = False):
        self.engine = engine
        self.name = name
        self._owns_engine = owns_engine
        self._conn: Optional[Connection] = None
        self._metadata = MetaData()
        self._tables: Dict[str, Optional[Table]] = {}

    @classmethod
    def from_settings(cls, settings: DatabaseSettings, name: str = "target") -> "DatabaseLoader":
        engine = create_engine(settings.url(), pool_pre_ping=True)
        logger.info(f"Target {name}: {settings.safe_description()}")
        return cls(engine, name=name, owns_engine=True)

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    @property
    def conn(self) -> Connection:
        if self._conn is None:
            raise RuntimeError(f"{self.name} loader is not connected")
        return self._conn

    def connect(self) -> None:
        try:
            self._conn = self.engine.connect()
            self._conn.execute(text("SELECT 1"))
            self._conn.commit()
        except SQLAlchemyError as e:
            self._conn = None
            raise TargetConnectionError(f"Cannot connect to {self.name}: {e}") from e
        logger.info(f"Connected to {self.name} ({self.dialect})")

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
        if self._owns_engine:
            self.engine.dispose()

    def rollback(self) -> None:
        if self._conn is not None:
            self._conn.rollback()

    def get_table(self, name: str) -> Optional[Table]:
        """Reflect a target table once; None if it does not exist."""
        if name not in self._tables:
            try:
                self._tables[name] = Table(name, self._metadata, autoload_with=self.conn)
            except NoSuchTableError:
                self._tables[name] = None
            self.conn.commit()
        return self._tables[name]

    def _require_table(self, name: str) -> Table:
        table = self.get_table(name)
        if table is None:
            raise LookupError(f"Target table {name} does not exist")
        return table

    def column_names(self, table: str) -> List[str]:
        reflected = self.get_table(table)
        return [c.name for c in reflected.columns] if reflected is not None else []

    def column_types(self, table: str) -> Dict[str, Any]:
        reflected = self.get_table(table)
        return {c.name: c.type for c in reflected.columns} if reflected is not None else {}

    def primary_key(self, table: str) -> List[str]:
        reflected = self.get_table(table)
        return [c.name for c in reflected.primary_key.columns] if reflected is not None else []

    def count(self, table: str) -> int:
        reflected = self._require_table(table)
        value = self.conn.execute(select(func.count()).select_from(reflected)).scalar()
        self.conn.commit()
        return int(value or 0)

    def find_existing(
        self,
        table: str,
        criteria: Dict[str, Any],
        timestamp_column: Optional[str] = None,
    ) -> Optional[ExistingRow]:
        reflected = self._require_table(table)
        pk_columns = list(reflected.primary_key.columns)
        if not pk_columns:
            raise LookupError(f"Target table {table} has no primary key")

        columns = [pk_columns[0]]
        ts_column = reflected.c.get(timestamp_column) if timestamp_column else None
        if ts_column is not None:
            columns.append(ts_column)

        query = select(*columns).where(
            and_(*[reflected.c[name] == value for name, value in criteria.items()])
        ).limit(1)
        row = self.conn.execute(query).first()
        if row is None:
            return None
        return ExistingRow(id=row[0], updated_at=row[1] if ts_column is not None else None)

    def insert(self, table: str, values: Dict[str, Any]) -> Any:
        reflected = self._require_table(table)
        result = self.conn.execute(reflected.insert().values(**values))
        key = result.inserted_primary_key
        self.conn.commit()
        return key[0] if key else None

    def update(self, table: str, row_id: Any, values: Dict[str, Any]) -> None:
        reflected = self._require_table(table)
        pk = list(reflected.primary_key.columns)[0]
        self.conn.execute(reflected.update().where(pk == row_id).values(**values))
        self.conn.commit()

    def insert_batch(self, table: str, rows: List[Dict[str, Any]], skip_conflicts: bool = True) -> BatchOutcome:
        """
        Insert rows as-is (primary keys included).

        The whole batch is tried in one statement first; if that fails the
        rows are retried one at a time so a single bad row only costs itself.
        """
        reflected = self._require_table(table)
        outcome = BatchOutcome()
        if not rows:
            return outcome

        known = set(reflected.c.keys())
        prepared = [{k: v for k, v in row.items() if k in known} for row in rows]

        if self._supports_conflict_skip():
            try:
                result = self.conn.execute(self._insert_statement(reflected, skip_conflicts).values(prepared))
                inserted = result.rowcount if result.rowcount is not None and result.rowcount >= 0 else len(prepared)
                self.conn.commit()
                outcome.inserted += inserted
                outcome.duplicates += len(prepared) - inserted
                return outcome
            except SQLAlchemyError as e:
                self.conn.rollback()
                logger.warning(f"Batch insert into {table} failed, retrying row by row: {e}")

        for values in prepared:
            try:
                result = self.conn.execute(self._insert_statement(reflected, skip_conflicts).values(**values))
                self.conn.commit()
                if result.rowcount == 0:
                    outcome.duplicates += 1
                else:
                    outcome.inserted += 1
            except SQLAlchemyError as e:
                self.conn.rollback()
                outcome.errors += 1
                outcome.error_messages.append(str(e))
                logger.error(f"Failed to insert into {table}: {e}")
        return outcome

    def _supports_conflict_skip(self) -> bool:
        return self.dialect in ("postgresql", "sqlite")

    def _insert_statement(self, table: Table, skip_conflicts: bool):
        if skip_conflicts and self.dialect == "postgresql":
            return pg_insert(table).on_conflict_do_nothing()
        if skip_conflicts and self.dialect == "sqlite":
            return table.insert().prefix_with("OR IGNORE")
        return table.insert()

    def clear_table(self, table: str) -> bool:
        if self.get_table(table) is None:
            logger.warning(f"Table {table} does not exist, skipping clear")
            return False
        quoted = self.engine.dialect.identifier_preparer.quote(table)
        if self.dialect == "postgresql":
            self.conn.execute(text(f"TRUNCATE TABLE {quoted} RESTART IDENTITY CASCADE"))
        else:
            self.conn.execute(text(f"DELETE FROM {quoted}"))
        self.conn.commit()
        logger.info(f"Cleared {table}")
        return True

    def _set_constraints(self, enabled: bool) -> None:
        toggle = CONSTRAINT_TOGGLES.get(self.dialect)
        if toggle is None:
            logger.warning(f"Cannot toggle foreign key checks on {self.dialect}")
            return
        # a failed statement must not swallow the toggle
        self.conn.rollback()
        self.conn.execute(text(toggle[1] if enabled else toggle[0]))
        self.conn.commit()

    def reset_sequence(self, table: str, pk: str) -> None:
        if self.dialect != "postgresql":
            return
        preparer = self.engine.dialect.identifier_preparer
        quoted_table = preparer.quote(table)
        quoted_pk = preparer.quote(pk)
        try:
            self.conn.execute(
                text(
                    f"SELECT setval(pg_get_serial_sequence(:table, :pk), "
                    f"COALESCE((SELECT MAX({quoted_pk}) FROM {quoted_table}), 1))"
                ),
                {"table": quoted_table, "pk": pk},
            )
            self.conn.commit()
        except SQLAlchemyError as e:
            self.conn.rollback()
            logger.warning(f"Could not reset sequence for {table}.{pk}: {e}")
