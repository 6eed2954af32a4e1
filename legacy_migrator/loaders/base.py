"""Base loader interface for target databases."""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional
import logging

from ..models.record import BatchOutcome, ExistingRow

logger = logging.getLogger(__name__)


class TargetConnectionError(RuntimeError):
    """The target database is unreachable."""


class ConstraintRestoreError(RuntimeError):
    """Foreign-key checking could not be switched back on."""


class BaseLoader(ABC):
    """
    Base class for target writers.

    Loaders own a single read-write session on the target. Writes are
    committed one statement (or one batch) at a time; there is no
    transaction spanning a whole entity kind.
    """

    @abstractmethod
    def connect(self) -> None:
        """
        Open and validate the session.

        Raises:
            TargetConnectionError: if the target cannot be reached
        """

    @abstractmethod
    def close(self) -> None:
        pass

    @abstractmethod
    def column_names(self, table: str) -> List[str]:
        """Columns of ``table``, or an empty list if it does not exist."""

    @abstractmethod
    def column_types(self, table: str) -> Dict[str, Any]:
        """Column name -> SQLAlchemy type for ``table``."""

    @abstractmethod
    def primary_key(self, table: str) -> List[str]:
        pass

    @abstractmethod
    def find_existing(
        self,
        table: str,
        criteria: Dict[str, Any],
        timestamp_column: Optional[str] = None,
    ) -> Optional[ExistingRow]:
        """Return the first row matching ``criteria``, or None."""

    @abstractmethod
    def insert(self, table: str, values: Dict[str, Any]) -> Any:
        """Insert one row and return its new primary key."""

    @abstractmethod
    def update(self, table: str, row_id: Any, values: Dict[str, Any]) -> None:
        pass

    @abstractmethod
    def insert_batch(self, table: str, rows: List[Dict[str, Any]], skip_conflicts: bool = True) -> BatchOutcome:
        """Insert rows verbatim, counting conflicts as duplicates."""

    @abstractmethod
    def clear_table(self, table: str) -> bool:
        """Empty ``table``. Returns False when the table does not exist."""

    @abstractmethod
    def rollback(self) -> None:
        """Discard the current failed statement so the session can continue."""

    @contextmanager
    def relaxed_constraints(self) -> Iterator[None]:
        """
        Turn foreign-key checking off for the duration of the block.

        Checking is always switched back on, even when the block raises.

        Raises:
            ConstraintRestoreError: if checking cannot be restored
        """
        self._set_constraints(enabled=False)
        logger.info("Foreign key checks disabled")
        try:
            yield
        finally:
            try:
                self._set_constraints(enabled=True)
            except Exception as e:
                raise ConstraintRestoreError(f"Failed to re-enable foreign key checks: {e}") from e
            logger.info("Foreign key checks restored")

    @abstractmethod
    def _set_constraints(self, enabled: bool) -> None:
        pass

    def reset_sequence(self, table: str, pk: str) -> None:
        """Move the id sequence past the highest copied key, where the target has sequences."""

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
