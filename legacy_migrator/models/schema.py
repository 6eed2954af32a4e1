"""Declarative schema models describing how a legacy table maps onto the target."""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Union
from enum import Enum

from sqlalchemy import and_


class DuplicatePolicy(str, Enum):
    """What to do when a row with the same natural key already exists."""
    SKIP = "skip"
    UPDATE_IF_NEWER = "update_if_newer"


class UnmappedPolicy(str, Enum):
    """What to do with array elements that have no mapping entry."""
    PRESERVE = "preserve"  # keep the legacy id verbatim
    DROP = "drop"


class StepKind(str, Enum):
    """Source/target pairing of a migrate run."""
    MYSQL_TO_LOCAL = "mysql-to-local"
    LOCAL_TO_REMOTE = "local-to-remote"


# A fallback is either a constant or a function of the source row.
Fallback = Union[Any, Callable[..., Any]]


@dataclass
class ForeignKey:
    """
    A scalar reference to another entity kind.

    ``columns`` lists the physical column names the legacy schema may have
    used for this reference; the first one present in the source table wins.
    The resolved id is written to every column in ``targets``.
    """
    targets: List[str]
    mapping: str
    columns: List[str]
    required: bool = True
    as_string: bool = False

    @property
    def name(self) -> str:
        return self.targets[0]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "targets": self.targets,
            "mapping": self.mapping,
            "columns": self.columns,
            "required": self.required,
            "as_string": self.as_string,
        }


@dataclass
class ArrayForeignKey:
    """
    A list of references stored in a single column (JSON array or CSV).

    Deferred arrays point at the entity's own kind and are remapped after
    every row of that kind has been imported.
    """
    target: str
    mapping: str
    columns: List[str]
    policy: UnmappedPolicy = UnmappedPolicy.DROP
    deferred: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target": self.target,
            "mapping": self.mapping,
            "columns": self.columns,
            "policy": self.policy.value,
            "deferred": self.deferred,
        }


@dataclass
class EntitySpec:
    """Mapping definition for one entity kind."""
    key: str
    group: str
    label: str
    source_table: str
    target_table: Optional[str] = None
    id_columns: List[str] = field(default_factory=lambda: ["uid", "id"])
    foreign_keys: List[ForeignKey] = field(default_factory=list)
    array_keys: List[ArrayForeignKey] = field(default_factory=list)
    fields: Dict[str, List[str]] = field(default_factory=dict)  # target column -> source candidates
    defaults: Dict[str, Fallback] = field(default_factory=dict)  # used when value is None
    fallbacks: Dict[str, Fallback] = field(default_factory=dict)  # used when value is None or ''
    json_fields: List[str] = field(default_factory=list)
    transforms: Dict[str, Callable[..., Any]] = field(default_factory=dict)  # column -> fn(value, row)
    exclude: List[str] = field(default_factory=list)
    natural_keys: List[List[str]] = field(default_factory=list)
    duplicate_policy: DuplicatePolicy = DuplicatePolicy.SKIP
    timestamp_column: str = "updatedAt"
    source_filter: Optional[Any] = None  # SQLAlchemy expression on source columns
    step_filters: Dict[StepKind, Any] = field(default_factory=dict)  # extra filter for one step
    existing_filter: Dict[str, Any] = field(default_factory=dict)
    record_mapping: bool = True
    optional_table: bool = False
    steps: List[StepKind] = field(default_factory=lambda: [StepKind.MYSQL_TO_LOCAL])

    def __post_init__(self):
        if self.target_table is None:
            self.target_table = self.source_table

    def source_table_for(self, step: StepKind) -> str:
        """The table rows are read from. Local-to-remote reads the already migrated schema."""
        if step == StepKind.LOCAL_TO_REMOTE:
            return self.target_table
        return self.source_table

    def source_filter_for(self, step: StepKind) -> Optional[Any]:
        """The source filter combined with the filter for ``step``, if there is one."""
        step_filter = self.step_filters.get(step)
        if step_filter is None:
            return self.source_filter
        if self.source_filter is None:
            return step_filter
        return and_(self.source_filter, step_filter)

    @property
    def depends_on(self) -> List[str]:
        """Entity kinds that must be imported before this one."""
        deps: List[str] = []
        for fk in self.foreign_keys:
            if fk.mapping != self.key and fk.mapping not in deps:
                deps.append(fk.mapping)
        for ak in self.array_keys:
            if not ak.deferred and ak.mapping != self.key and ak.mapping not in deps:
                deps.append(ak.mapping)
        return deps

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "key": self.key,
            "group": self.group,
            "label": self.label,
            "source_table": self.source_table,
            "target_table": self.target_table,
            "id_columns": self.id_columns,
            "foreign_keys": [fk.to_dict() for fk in self.foreign_keys],
            "array_keys": [ak.to_dict() for ak in self.array_keys],
            "fields": self.fields,
            "json_fields": self.json_fields,
            "natural_keys": self.natural_keys,
            "duplicate_policy": self.duplicate_policy.value,
            "timestamp_column": self.timestamp_column,
            "source_filter": str(self.source_filter) if self.source_filter is not None else None,
            "step_filters": {step.value: str(f) for step, f in self.step_filters.items()},
            "record_mapping": self.record_mapping,
            "optional_table": self.optional_table,
            "steps": [s.value for s in self.steps],
        }


@dataclass
class ResolvedSchema:
    """
    An EntitySpec bound to the physical columns of one source and one target table.

    Built once per table so no row has to guess column names.
    """
    spec: EntitySpec
    id_column: Optional[str]
    columns: Dict[str, str]  # target column -> source column
    foreign_keys: Dict[str, Optional[str]]  # fk name -> source column
    array_keys: Dict[str, Optional[str]]  # target column -> source column
    target_columns: List[str]
    target_types: Dict[str, Any] = field(default_factory=dict)
    unresolved: List[str] = field(default_factory=list)

    def has_target(self, column: str) -> bool:
        return column in self.target_columns


@dataclass
class RemoteTable:
    """A table copied verbatim by fetch-remote."""
    key: str
    table: str
    label: str
    pk: str = "uid"
    depends_on: List[str] = field(default_factory=list)
