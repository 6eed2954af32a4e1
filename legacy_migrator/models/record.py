"""Row models for migration data."""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Mapping, Optional
from enum import Enum
from datetime import datetime


class RowStatus(str, Enum):
    """Outcome of processing a single source row."""
    IMPORTED = "imported"
    UPDATED = "updated"
    SKIPPED = "skipped"
    DUPLICATE = "duplicate"
    FAILED = "failed"


class SourceRow(Mapping[str, Any]):
    """
    A row read verbatim from a source table.

    Read-only: importers look values up by column name, they never write
    back into the row.
    """

    def __init__(self, entity: str, data: Dict[str, Any], id_column: Optional[str] = None):
        self.entity = entity
        self._data = dict(data)
        self.id_column = id_column

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"SourceRow({self.entity!r}, id={self.old_id!r})"

    @property
    def old_id(self) -> Any:
        """The legacy primary key value, if the id column is known."""
        if self.id_column is None:
            return None
        return self._data.get(self.id_column)

    def first(self, *columns: str) -> Any:
        """Return the first non-null value among the given columns."""
        for column in columns:
            value = self._data.get(column)
            if value is not None:
                return value
        return None

    def to_dict(self) -> Dict[str, Any]:
        return dict(self._data)


@dataclass
class TargetRow:
    """A row ready to be written to the target table."""
    entity: str
    table: str
    values: Dict[str, Any]
    natural_key: Dict[str, Any] = field(default_factory=dict)
    old_id: Any = None
    deferred: Dict[str, Any] = field(default_factory=dict)  # column -> raw value for post-processing

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "entity": self.entity,
            "table": self.table,
            "values": self.values,
            "natural_key": self.natural_key,
            "old_id": self.old_id,
        }


@dataclass
class RowOutcome:
    """
    Result of building a target row.

    Either ``row`` is set, or ``skip_reason`` explains why the source row
    cannot be imported (usually an unresolved required reference).
    """
    row: Optional[TargetRow] = None
    skip_reason: Optional[str] = None

    @property
    def skipped(self) -> bool:
        return self.row is None


@dataclass
class ExistingRow:
    """A matching row already present in the target."""
    id: Any
    updated_at: Optional[datetime] = None


@dataclass
class BatchOutcome:
    """Counters for a batched insert."""
    inserted: int = 0
    duplicates: int = 0
    errors: int = 0
    error_messages: List[str] = field(default_factory=list)

    def merge(self, other: "BatchOutcome") -> None:
        self.inserted += other.inserted
        self.duplicates += other.duplicates
        self.errors += other.errors
        self.error_messages.extend(other.error_messages)
