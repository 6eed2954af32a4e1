"""Per-entity import counters."""

from dataclasses import dataclass
from typing import Any, Dict


@dataclass
class ImportStats:
    """Counters for one entity kind. Only ever incremented during a run."""
    entity: str
    label: str = ""
    total: int = 0
    imported: int = 0
    updated: int = 0
    skipped: int = 0
    duplicates: int = 0
    errors: int = 0

    def __post_init__(self):
        if not self.label:
            self.label = self.entity

    @property
    def processed(self) -> int:
        """Rows that reached a final outcome."""
        return self.imported + self.updated + self.skipped + self.duplicates + self.errors

    def add(self, other: "ImportStats") -> None:
        """Fold another set of counters into this one."""
        self.total += other.total
        self.imported += other.imported
        self.updated += other.updated
        self.skipped += other.skipped
        self.duplicates += other.duplicates
        self.errors += other.errors

    def summary_line(self) -> str:
        return (
            f"{self.label}: {self.imported} imported, {self.updated} updated, "
            f"{self.skipped} skipped, {self.duplicates} duplicates, {self.errors} errors"
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "entity": self.entity,
            "label": self.label,
            "total": self.total,
            "imported": self.imported,
            "updated": self.updated,
            "skipped": self.skipped,
            "duplicates": self.duplicates,
            "errors": self.errors,
        }
