"""Service layer for the migration."""

from .mapping import MappingConflictError, MappingRegistry, MappingTable
from .schema_registry import SchemaRegistry
from .statistics import StatisticsAggregator
from .transformer import TransformEngine

__all__ = [
    "MappingConflictError",
    "MappingRegistry",
    "MappingTable",
    "SchemaRegistry",
    "StatisticsAggregator",
    "TransformEngine",
]
