"""Generic per-entity importer."""

import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Tuple

from sqlalchemy.exc import DBAPIError

from ..extractors.base import ExtractionResult
from ..loaders.base import BaseLoader, TargetConnectionError
from ..models.migration import MigrationConfig
from ..models.record import ExistingRow, RowStatus, SourceRow, TargetRow
from ..models.schema import DuplicatePolicy, EntitySpec, ResolvedSchema
from ..models.stats import ImportStats
from ..services.mapping import MappingConflictError, MappingRegistry
from ..services.schema_registry import SchemaRegistry
from ..services.statistics import StatisticsAggregator
from ..services.transformer import TransformEngine, is_newer

logger = logging.getLogger(__name__)


@dataclass
class ImportContext:
    """
    Everything an importer needs for one run, resolved once at startup.

    Passed explicitly into every import call instead of living on the
    importer instances.
    """
    loader: BaseLoader
    mappings: MappingRegistry
    stats: StatisticsAggregator
    registry: SchemaRegistry
    config: MigrationConfig = field(default_factory=MigrationConfig)
    transformer: TransformEngine = field(default_factory=TransformEngine)
    # entity -> new id -> column -> raw legacy value, for references resolved after the fact
    deferred: Dict[str, Dict[Any, Dict[str, Any]]] = field(default_factory=dict)
    # dry run only: natural keys this run would already have inserted
    pending: Dict[str, Dict[Tuple, ExistingRow]] = field(default_factory=dict)
    # entity -> target ids matched or written this run, in order
    mapped_ids: Dict[str, List[Any]] = field(default_factory=dict)
    _synthetic_ids: Iterator[int] = field(default_factory=lambda: itertools.count(-1, -1))

    @property
    def dry_run(self) -> bool:
        return self.config.dry_run

    @property
    def verbose(self) -> bool:
        return self.config.verbose

    def next_synthetic_id(self) -> int:
        """Placeholder id for rows a dry run would insert."""
        return next(self._synthetic_ids)

    def pending_match(self, entity: str, natural_key: Dict[str, Any]) -> Optional[ExistingRow]:
        """A row this dry run would already have inserted under ``natural_key``."""
        return self.pending.get(entity, {}).get(_key_tuple(natural_key))

    def remember_pending(self, entity: str, natural_key: Dict[str, Any], row: ExistingRow) -> None:
        self.pending.setdefault(entity, {})[_key_tuple(natural_key)] = row


def _key_tuple(natural_key: Dict[str, Any]) -> Tuple:
    return tuple(sorted(natural_key.items()))


class EntityImporter:
    """
    Imports every row of one entity kind.

    For each row: resolve references (skip if a required one is missing),
    look for an existing row by natural key (duplicate or update-if-newer),
    otherwise insert and record the old -> new id mapping. A failure on
    one row is counted and logged; the loop always moves on.
    """

    def __init__(self, spec: EntitySpec):
        self.spec = spec

    def source_filter(self, config: MigrationConfig) -> Optional[Any]:
        """SQLAlchemy expression restricting which source rows are read."""
        return self.spec.source_filter_for(config.step)

    def resolve(self, extraction: ExtractionResult, context: ImportContext) -> ResolvedSchema:
        table = self.spec.target_table
        loader = context.loader
        return context.registry.resolve(
            self.spec,
            extraction.columns,
            loader.column_names(table),
            target_types=loader.column_types(table),
            target_primary_key=loader.primary_key(table),
        )

    def import_entity(self, extraction: ExtractionResult, context: ImportContext) -> ImportStats:
        """Import the extracted rows and return this entity's counters."""
        spec = self.spec
        stats = context.stats.for_entity(spec.key, spec.label)
        resolved = self.resolve(extraction, context)

        if not resolved.target_columns:
            stats.total += len(extraction.rows)
            stats.errors += len(extraction.rows)
            if extraction.rows:
                logger.error(f"Target table {spec.target_table} does not exist, {len(extraction.rows)} {spec.key} rows not imported")
            return stats

        for row in extraction.rows:
            stats.total += 1
            row.id_column = resolved.id_column
            try:
                status = self.process_row(row, resolved, context)
            except TargetConnectionError:
                raise
            except DBAPIError as e:
                if e.connection_invalidated:
                    raise TargetConnectionError(f"Lost connection to target while importing {spec.key}: {e}") from e
                status = self._row_failed(row, e, context)
            except Exception as e:
                status = self._row_failed(row, e, context)
            self._count(stats, status)

        logger.info(stats.summary_line())
        return stats

    def process_row(self, row: SourceRow, resolved: ResolvedSchema, context: ImportContext) -> RowStatus:
        spec = self.spec
        outcome = context.transformer.build(resolved, row, context.mappings)
        if outcome.skipped:
            log = logger.info if context.verbose else logger.debug
            log(f"Skipped {spec.key} {row.old_id}: {outcome.skip_reason}")
            return RowStatus.SKIPPED

        target = outcome.row
        existing = self.find_existing(target, context)
        if existing is not None:
            self.record_mapping(context, row.old_id, existing.id)
            if spec.duplicate_policy == DuplicatePolicy.UPDATE_IF_NEWER and is_newer(
                target.values.get(spec.timestamp_column), existing.updated_at
            ):
                if not context.dry_run:
                    context.loader.update(spec.target_table, existing.id, self.update_values(target))
                self.after_write(target, existing.id, context)
                logger.debug(f"Updated {spec.key} {row.old_id} -> {existing.id}")
                return RowStatus.UPDATED
            logger.debug(f"Duplicate {spec.key} {row.old_id} matches existing {existing.id}")
            return RowStatus.DUPLICATE

        self.check_mapping(context, row.old_id)
        if context.dry_run:
            new_id = context.next_synthetic_id()
            if target.natural_key:
                context.remember_pending(spec.key, target.natural_key, ExistingRow(
                    id=new_id, updated_at=target.values.get(spec.timestamp_column)
                ))
        else:
            new_id = context.loader.insert(spec.target_table, target.values)
        self.record_mapping(context, row.old_id, new_id)
        self.after_write(target, new_id, context)
        logger.debug(f"Imported {spec.key} {row.old_id} -> {new_id}")
        return RowStatus.IMPORTED

    def find_existing(self, target: TargetRow, context: ImportContext) -> Optional[ExistingRow]:
        if not target.natural_key:
            return None
        if context.dry_run:
            pending = context.pending_match(self.spec.key, target.natural_key)
            if pending is not None:
                return pending
        return context.loader.find_existing(
            self.spec.target_table, target.natural_key, self.spec.timestamp_column
        )

    def update_values(self, target: TargetRow) -> Dict[str, Any]:
        """Columns overwritten on update-if-newer. Deferred references are left alone."""
        return {k: v for k, v in target.values.items() if k not in target.deferred}

    def check_mapping(self, context: ImportContext, old_id: Any) -> None:
        """
        Refuse to insert a row whose legacy id is already mapped.

        Raises:
            MappingConflictError: if ``old_id`` already has a target row
        """
        if not self.spec.record_mapping:
            return
        current = context.mappings.get(self.spec.key, old_id)
        if current is not None:
            raise MappingConflictError(
                f"{self.spec.key} {old_id} already mapped to {current}, not inserting a second row"
            )

    def record_mapping(self, context: ImportContext, old_id: Any, new_id: Any) -> None:
        if new_id is not None:
            context.mapped_ids.setdefault(self.spec.key, []).append(new_id)
        if self.spec.record_mapping and old_id is not None and new_id is not None:
            context.mappings.table(self.spec.key).set(old_id, new_id)

    def after_write(self, target: TargetRow, new_id: Any, context: ImportContext) -> None:
        if target.deferred:
            context.deferred.setdefault(self.spec.key, {})[new_id] = dict(target.deferred)

    def _row_failed(self, row: SourceRow, error: Exception, context: ImportContext) -> RowStatus:
        context.loader.rollback()
        logger.error(f"Error importing {self.spec.key} {row.old_id}: {error}")
        return RowStatus.FAILED

    @staticmethod
    def _count(stats: ImportStats, status: RowStatus) -> None:
        if status == RowStatus.IMPORTED:
            stats.imported += 1
        elif status == RowStatus.UPDATED:
            stats.updated += 1
        elif status == RowStatus.SKIPPED:
            stats.skipped += 1
        elif status == RowStatus.DUPLICATE:
            stats.duplicates += 1
        else:
            stats.errors += 1

