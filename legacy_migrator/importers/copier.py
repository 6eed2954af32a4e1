"""Verbatim table copy between two databases of the same schema."""

import logging
from typing import List, Optional

from ..extractors.base import BaseExtractor, SourceTableMissing
from ..loaders.base import BaseLoader
from ..models.record import BatchOutcome
from ..models.schema import RemoteTable
from ..models.stats import ImportStats

logger = logging.getLogger(__name__)


def select_remote_tables(tables: List[RemoteTable], only: Optional[List[str]] = None) -> List[RemoteTable]:
    """
    Tables to copy, in declaration order, restricted to the ``only`` keys.

    Raises:
        ValueError: if ``only`` names a key no table has
    """
    if not only:
        return list(tables)
    known = {t.key for t in tables} | {t.table for t in tables}
    unknown = [name for name in only if name not in known]
    if unknown:
        raise ValueError(
            f"Unknown table group(s) for fetch-remote: {', '.join(unknown)}. "
            f"Available: {', '.join(sorted({t.key for t in tables}))}"
        )
    wanted = set(only)
    return [t for t in tables if t.key in wanted or t.table in wanted]


class TableCopier:
    """
    Copies whole tables, primary keys included.

    Rows go over in batches with conflicts skipped, so copying into a
    table that already holds some of the rows only adds the missing ones.
    """

    def __init__(self, extractor: BaseExtractor, loader: BaseLoader, batch_size: int = 100, dry_run: bool = False):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.extractor = extractor
        self.loader = loader
        self.batch_size = batch_size
        self.dry_run = dry_run

    def copy(self, table: RemoteTable, stats: ImportStats) -> ImportStats:
        if self.dry_run:
            if not self.extractor.table_exists(table.table):
                logger.warning(f"Remote table {table.table} does not exist, skipping")
                return stats
            stats.total += self.extractor.count(table.table)
            logger.info(f"Would copy {stats.total} {table.label} rows")
            return stats

        try:
            extraction = self.extractor.fetch_rows(table.table, entity=table.key)
        except SourceTableMissing:
            logger.warning(f"Remote table {table.table} does not exist, skipping")
            return stats

        rows = [row.to_dict() for row in extraction.rows]
        stats.total += len(rows)
        if not rows:
            return stats

        outcome = BatchOutcome()
        for start in range(0, len(rows), self.batch_size):
            batch = rows[start:start + self.batch_size]
            outcome.merge(self.loader.insert_batch(table.table, batch, skip_conflicts=True))
            logger.debug(f"{table.table}: {min(start + self.batch_size, len(rows))}/{len(rows)}")

        stats.imported += outcome.inserted
        stats.duplicates += outcome.duplicates
        stats.errors += outcome.errors
        self.loader.reset_sequence(table.table, table.pk)
        logger.info(stats.summary_line())
        return stats
