"""Base extractor interface."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional
from datetime import datetime
import logging

from ..models.record import SourceRow

logger = logging.getLogger(__name__)


class SourceConnectionError(RuntimeError):
    """The source database is unreachable, at startup or after every retry."""


class SourceTableMissing(LookupError):
    """A source table does not exist."""

    def __init__(self, table: str):
        super().__init__(f"Source table {table} does not exist")
        self.table = table


@dataclass
class RetryPolicy:
    """Bounded exponential backoff for source queries."""
    max_attempts: int = 3
    initial_delay: float = 2.0
    backoff: float = 1.5
    max_delay: float = 30.0

    def delays(self) -> Iterator[float]:
        """Delays to wait between attempts (one fewer than max_attempts)."""
        delay = self.initial_delay
        for _ in range(max(self.max_attempts - 1, 0)):
            yield delay
            delay = min(delay * self.backoff, self.max_delay)


@dataclass
class ExtractionResult:
    """Rows read from one source table."""
    table: str
    columns: List[str] = field(default_factory=list)
    rows: List[SourceRow] = field(default_factory=list)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def total_extracted(self) -> int:
        return len(self.rows)

    @property
    def duration_seconds(self) -> Optional[float]:
        """Get duration in seconds."""
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "table": self.table,
            "columns": self.columns,
            "total_extracted": self.total_extracted,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
            "metadata": self.metadata,
        }


class BaseExtractor(ABC):
    """
    Base class for source readers.

    Extractors are read-only: they select whole rows from named tables and
    hand them over as SourceRow objects.
    """

    def __init__(self, retry: Optional[RetryPolicy] = None):
        self.retry = retry or RetryPolicy()

    @abstractmethod
    def connect(self) -> None:
        """
        Open and validate the connection.

        Raises:
            SourceConnectionError: if the source cannot be reached
        """

    @abstractmethod
    def fetch_rows(
        self,
        table: str,
        where: Optional[Any] = None,
        entity: Optional[str] = None,
    ) -> ExtractionResult:
        """
        Read every row of ``table``, optionally filtered by a SQLAlchemy expression.

        Raises:
            SourceTableMissing: if the table does not exist
            SourceConnectionError: if retries are exhausted
        """

    @abstractmethod
    def table_exists(self, table: str) -> bool:
        pass

    @abstractmethod
    def count(self, table: str, where: Optional[Any] = None) -> int:
        pass

    def close(self) -> None:
        """Release the connection."""

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
