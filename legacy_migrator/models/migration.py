"""Migration execution models."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
from enum import Enum
from datetime import datetime
import uuid

from .schema import StepKind
from .stats import ImportStats


class MigrationStatus(str, Enum):
    """Status of a migration run."""
    IDLE = "idle"
    CONNECTING = "connecting"
    IMPORTING = "importing"
    SUMMARIZING = "summarizing"
    DONE = "done"
    FAILED = "failed"


# Allowed state transitions. IMPORTING loops onto itself once per entity kind.
TRANSITIONS: Dict[MigrationStatus, Tuple[MigrationStatus, ...]] = {
    MigrationStatus.IDLE: (MigrationStatus.CONNECTING,),
    MigrationStatus.CONNECTING: (MigrationStatus.IMPORTING, MigrationStatus.FAILED),
    MigrationStatus.IMPORTING: (
        MigrationStatus.IMPORTING,
        MigrationStatus.SUMMARIZING,
        MigrationStatus.FAILED,
    ),
    MigrationStatus.SUMMARIZING: (MigrationStatus.DONE, MigrationStatus.FAILED),
    MigrationStatus.DONE: (),
    MigrationStatus.FAILED: (),
}


# December 2024, the window the legacy attendance export covers
DEFAULT_ATTENDANCE_WINDOW = (
    datetime(2024, 12, 1, 0, 0, 0),
    datetime(2024, 12, 31, 23, 59, 59, 999000),
)


@dataclass
class MigrationStep:
    """Import of a single entity kind."""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    name: str = ""
    entity: str = ""
    status: MigrationStatus = MigrationStatus.IDLE
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    stats: Optional[ImportStats] = None
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "name": self.name,
            "entity": self.entity,
            "status": self.status.value,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "stats": self.stats.to_dict() if self.stats else None,
            "warnings": self.warnings,
        }

    @property
    def duration_seconds(self) -> Optional[float]:
        """Get duration in seconds."""
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None


@dataclass
class MigrationRun:
    """A complete migration run."""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    mode: str = StepKind.MYSQL_TO_LOCAL.value
    status: MigrationStatus = MigrationStatus.IDLE
    dry_run: bool = False

    # Timing
    created_at: datetime = field(default_factory=datetime.utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    # Progress
    steps: List[MigrationStep] = field(default_factory=list)
    current_step: Optional[str] = None
    history: List[Dict[str, Any]] = field(default_factory=list)

    errors: List[Dict[str, Any]] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def transition(self, status: MigrationStatus, entity: Optional[str] = None) -> None:
        """Move to a new state, refusing transitions the state machine does not allow."""
        if status not in TRANSITIONS[self.status]:
            raise RuntimeError(f"Invalid transition {self.status.value} -> {status.value}")
        self.status = status
        self.history.append({
            "status": status.value,
            "entity": entity,
            "timestamp": datetime.utcnow().isoformat(),
        })

    def fail(self, error: Exception, entity: Optional[str] = None) -> None:
        """Record a fatal error and move to FAILED from any non-terminal state."""
        self.errors.append({
            "phase": self.status.value,
            "entity": entity,
            "error": str(error),
            "type": type(error).__name__,
            "timestamp": datetime.utcnow().isoformat(),
        })
        if self.status not in (MigrationStatus.DONE, MigrationStatus.FAILED):
            self.status = MigrationStatus.FAILED
            self.history.append({
                "status": MigrationStatus.FAILED.value,
                "entity": entity,
                "timestamp": datetime.utcnow().isoformat(),
            })

    def add_step(self, name: str, entity: str) -> MigrationStep:
        """Add a new step to the migration."""
        step = MigrationStep(name=name, entity=entity)
        self.steps.append(step)
        self.current_step = step.id
        return step

    def get_step(self, entity: str) -> Optional[MigrationStep]:
        """Get the step for an entity kind."""
        for step in self.steps:
            if step.entity == entity:
                return step
        return None

    @property
    def duration_seconds(self) -> Optional[float]:
        """Get duration in seconds."""
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "mode": self.mode,
            "status": self.status.value,
            "dry_run": self.dry_run,
            "created_at": self.created_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
            "steps": [s.to_dict() for s in self.steps],
            "history": self.history,
            "errors": self.errors,
            "metadata": self.metadata,
        }


@dataclass
class MigrationConfig:
    """Configuration for a migration run."""
    step: StepKind = StepKind.MYSQL_TO_LOCAL
    dry_run: bool = False
    only: List[str] = field(default_factory=list)
    verbose: bool = False
    truncate: bool = False
    batch_size: int = 100
    report_path: Optional[str] = None
    attendance_window: Tuple[datetime, datetime] = DEFAULT_ATTENDANCE_WINDOW

    @staticmethod
    def parse_only(value: Optional[str]) -> List[str]:
        """Split a comma-separated --only value."""
        if not value:
            return []
        return [part.strip() for part in value.split(",") if part.strip()]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "step": self.step.value,
            "dry_run": self.dry_run,
            "only": self.only,
            "verbose": self.verbose,
            "truncate": self.truncate,
            "batch_size": self.batch_size,
            "report_path": self.report_path,
            "attendance_window": [d.isoformat() for d in self.attendance_window],
        }
