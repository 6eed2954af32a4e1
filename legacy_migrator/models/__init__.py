"""Data models for the migration."""

from .connection import DatabaseSettings
from .migration import (
    MigrationConfig,
    MigrationRun,
    MigrationStep,
    MigrationStatus,
)
from .record import (
    BatchOutcome,
    ExistingRow,
    RowOutcome,
    RowStatus,
    SourceRow,
    TargetRow,
)
from .schema import (
    ArrayForeignKey,
    DuplicatePolicy,
    EntitySpec,
    ForeignKey,
    RemoteTable,
    ResolvedSchema,
    StepKind,
    UnmappedPolicy,
)
from .stats import ImportStats

__all__ = [
    "DatabaseSettings",
    "MigrationConfig",
    "MigrationRun",
    "MigrationStep",
    "MigrationStatus",
    "BatchOutcome",
    "ExistingRow",
    "RowOutcome",
    "RowStatus",
    "SourceRow",
    "TargetRow",
    "ArrayForeignKey",
    "DuplicatePolicy",
    "EntitySpec",
    "ForeignKey",
    "RemoteTable",
    "ResolvedSchema",
    "StepKind",
    "UnmappedPolicy",
    "ImportStats",
]
