"""Migration orchestrator - drives one run from connection to summary."""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional

from .entities import REMOTE_TABLES, build_registry
from .extractors.base import BaseExtractor, SourceTableMissing
from .importers import (
    DefaultOrgHoursCreator,
    DeferredReferenceProcessor,
    ImportContext,
    TableCopier,
    importer_for,
    select_remote_tables,
)
from .loaders.base import BaseLoader
from .models.migration import MigrationConfig, MigrationRun, MigrationStatus
from .models.schema import EntitySpec, RemoteTable, StepKind
from .services.mapping import MappingRegistry
from .services.schema_registry import SchemaRegistry
from .services.statistics import StatisticsAggregator

logger = logging.getLogger(__name__)

FETCH_REMOTE = "fetch-remote"

# local-to-remote fills in opening hours once the hours import is done
DEFAULT_HOURS_AFTER = "organisation_hours"


class MigrationOrchestrator:
    """
    Runs a migration through its states.

    Idle -> Connecting -> Importing (once per entity kind) -> Summarizing -> Done.
    Any fatal error moves the run to Failed and is re-raised; row-level
    errors only show up in the statistics.
    """

    def __init__(
        self,
        config: MigrationConfig,
        extractor: BaseExtractor,
        loader: BaseLoader,
        registry: Optional[SchemaRegistry] = None,
        remote_tables: Optional[List[RemoteTable]] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            config: Run configuration
            extractor: Source reader, not yet connected
            loader: Target writer, not yet connected
            registry: Entity definitions, defaults to every known entity kind
            remote_tables: Tables for fetch-remote, defaults to REMOTE_TABLES
        """
        self.config = config
        self.extractor = extractor
        self.loader = loader
        self.registry = registry or build_registry()
        self.remote_tables = remote_tables if remote_tables is not None else REMOTE_TABLES

        self.mappings = MappingRegistry()
        self.stats = StatisticsAggregator()
        self.run: Optional[MigrationRun] = None
        self.summary: str = ""
        self._current_entity: Optional[str] = None

    def run_migration(self) -> MigrationRun:
        """Import the selected entity kinds for the configured step."""
        return self._execute(self.config.step.value, self._import_entities)

    def run_fetch_remote(self) -> MigrationRun:
        """Copy the remote tables verbatim into the target."""
        return self._execute(FETCH_REMOTE, self._copy_tables)

    def _execute(self, mode: str, body: Callable[[], None]) -> MigrationRun:
        self.run = MigrationRun(mode=mode, dry_run=self.config.dry_run)
        self.run.metadata["config"] = self.config.to_dict()
        self.run.started_at = datetime.utcnow()

        if self.config.dry_run:
            logger.info("DRY RUN - no data will be written")

        try:
            logger.info("=== PHASE 1: CONNECTING ===")
            self.run.transition(MigrationStatus.CONNECTING)
            self.extractor.connect()
            self.loader.connect()

            logger.info("=== PHASE 2: IMPORTING ===")
            self.run.transition(MigrationStatus.IMPORTING)
            body()
            self._current_entity = None

            logger.info("=== PHASE 3: SUMMARIZING ===")
            self.run.transition(MigrationStatus.SUMMARIZING)
            elapsed = (datetime.utcnow() - self.run.started_at).total_seconds()
            self.summary = self.stats.render_table(elapsed)
            self.run.metadata["stats"] = [s.to_dict() for s in self.stats.all()]
            self.run.metadata["totals"] = self.stats.totals().to_dict()
            logger.info(f"Summary:\n{self.summary}")

            self.run.transition(MigrationStatus.DONE)
            logger.info("=== MIGRATION COMPLETED ===")

        except Exception as e:
            logger.error(f"Migration failed: {e}")
            self.run.fail(e, entity=self._current_entity)
            raise

        finally:
            self.run.completed_at = datetime.utcnow()
            self._close()
            self._save_report()

        return self.run

    def _import_entities(self):
        self.registry.validate_order()
        specs = self.registry.select(self.config.step, self.config.only)
        logger.info(f"Importing {len(specs)} entity kinds: {', '.join(s.key for s in specs)}")

        for key, absent in self.registry.missing_dependencies(specs).items():
            logger.warning(
                f"{key} depends on {', '.join(absent)}, which this run does not import; "
                f"references to them will not resolve"
            )
        self._log_source_counts(specs)

        if self.config.truncate and not self.config.dry_run:
            self._clear_targets(specs)

        context = ImportContext(
            loader=self.loader,
            mappings=self.mappings,
            stats=self.stats,
            registry=self.registry,
            config=self.config,
        )
        for spec in specs:
            self._import_spec(spec, context)
            if spec.key == DEFAULT_HOURS_AFTER and self.config.step == StepKind.LOCAL_TO_REMOTE:
                self._create_default_hours(context)

        logger.info("=== POST-PROCESSING ===")
        DeferredReferenceProcessor().run(specs, context)

    def _log_source_counts(self, specs: List[EntitySpec]):
        """Row counts of every selected source table, before anything is imported."""
        logger.info("=== PRE-MIGRATION SUMMARY ===")
        for spec in specs:
            table = spec.source_table_for(self.config.step)
            if not self.extractor.table_exists(table):
                logger.info(f"  {spec.label}: table {table} not found")
                continue
            where = importer_for(spec).source_filter(self.config)
            logger.info(f"  {spec.label}: {self.extractor.count(table, where)}")

    def _create_default_hours(self, context: ImportContext):
        creator = DefaultOrgHoursCreator()
        self._current_entity = creator.entity
        self.run.transition(MigrationStatus.IMPORTING, entity=creator.entity)
        step = self.run.add_step(name=f"Create {creator.label}", entity=creator.entity)
        step.status = MigrationStatus.IMPORTING
        step.started_at = datetime.utcnow()
        logger.info("Creating default hours for organisations without any...")

        step.stats = creator.run(context)
        step.status = MigrationStatus.DONE
        step.completed_at = datetime.utcnow()

    def _clear_targets(self, specs: List[EntitySpec]):
        # dependents first
        for spec in reversed(specs):
            self._current_entity = spec.key
            self.loader.clear_table(spec.target_table)

    def _import_spec(self, spec: EntitySpec, context: ImportContext):
        self._current_entity = spec.key
        self.run.transition(MigrationStatus.IMPORTING, entity=spec.key)
        step = self.run.add_step(name=f"Import {spec.label}", entity=spec.key)
        step.status = MigrationStatus.IMPORTING
        step.started_at = datetime.utcnow()
        logger.info(f"Importing {spec.label}...")

        importer = importer_for(spec)
        source_table = spec.source_table_for(self.config.step)
        try:
            extraction = self.extractor.fetch_rows(
                source_table,
                where=importer.source_filter(self.config),
                entity=spec.key,
            )
        except SourceTableMissing:
            step.stats = self.stats.for_entity(spec.key, spec.label)
            step.completed_at = datetime.utcnow()
            if spec.optional_table:
                logger.warning(f"Source table {source_table} does not exist, skipping {spec.label}")
                step.warnings.append(f"source table {source_table} missing")
                step.status = MigrationStatus.DONE
            else:
                logger.error(f"Source table {source_table} does not exist, {spec.label} not imported")
                step.warnings.append(f"required source table {source_table} missing")
                step.status = MigrationStatus.FAILED
            return

        step.stats = importer.import_entity(extraction, context)
        step.status = MigrationStatus.DONE
        step.completed_at = datetime.utcnow()

    def _copy_tables(self):
        tables = select_remote_tables(self.remote_tables, self.config.only)
        logger.info(f"Copying {len(tables)} tables: {', '.join(t.table for t in tables)}")
        copier = TableCopier(
            self.extractor,
            self.loader,
            batch_size=self.config.batch_size,
            dry_run=self.config.dry_run,
        )

        if self.config.dry_run:
            for table in tables:
                self._copy_table(copier, table)
            return

        with self.loader.relaxed_constraints():
            for table in tables:
                self._copy_table(copier, table)

    def _copy_table(self, copier: TableCopier, table: RemoteTable):
        self._current_entity = table.table
        self.run.transition(MigrationStatus.IMPORTING, entity=table.table)
        step = self.run.add_step(name=f"Copy {table.label}", entity=table.table)
        step.status = MigrationStatus.IMPORTING
        step.started_at = datetime.utcnow()
        logger.info(f"Copying {table.label}...")

        step.stats = copier.copy(table, self.stats.for_entity(table.table, table.label))
        step.status = MigrationStatus.DONE
        step.completed_at = datetime.utcnow()

    def _close(self):
        for resource in (self.loader, self.extractor):
            try:
                resource.close()
            except Exception as e:
                logger.warning(f"Error closing {type(resource).__name__}: {e}")

    def _save_report(self):
        """Write the run report as JSON, if a report path is configured."""
        if not self.config.report_path or self.run is None:
            return
        path = Path(self.config.report_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.run.to_dict(), f, indent=2, default=str)
        logger.info(f"Report saved to {path}")
