"""Statistics aggregation and the end-of-run summary table."""

from typing import Dict, List, Optional

from ..models.stats import ImportStats

COLUMNS = ("Entity", "Total", "Imported", "Updated", "Skipped", "Duplicates", "Errors")


class StatisticsAggregator:
    """
    Collects one ImportStats per entity kind, in the order they were first seen.

    Importers receive the ImportStats object for their entity and increment
    it; nothing else writes to the counters.
    """

    def __init__(self):
        self._stats: Dict[str, ImportStats] = {}

    def for_entity(self, entity: str, label: Optional[str] = None) -> ImportStats:
        if entity not in self._stats:
            self._stats[entity] = ImportStats(entity=entity, label=label or entity)
        return self._stats[entity]

    def get(self, entity: str) -> Optional[ImportStats]:
        return self._stats.get(entity)

    def all(self) -> List[ImportStats]:
        return list(self._stats.values())

    def totals(self) -> ImportStats:
        total = ImportStats(entity="total", label="TOTAL")
        for stats in self._stats.values():
            total.add(stats)
        return total

    @property
    def has_errors(self) -> bool:
        return any(s.errors for s in self._stats.values())

    def render_table(self, elapsed_seconds: Optional[float] = None) -> str:
        """Render the summary as a fixed-width text table."""
        rows = [self._row(s) for s in self._stats.values()]
        total_row = self._row(self.totals())

        widths = [len(c) for c in COLUMNS]
        for row in rows + [total_row]:
            for i, cell in enumerate(row):
                widths[i] = max(widths[i], len(cell))

        def fmt(row) -> str:
            cells = [row[0].ljust(widths[0])]
            cells += [cell.rjust(widths[i]) for i, cell in enumerate(row) if i > 0]
            return "  ".join(cells)

        rule = "-" * len(fmt(COLUMNS))
        lines = [fmt(COLUMNS), rule]
        lines.extend(fmt(row) for row in rows)
        lines.append(rule)
        lines.append(fmt(total_row))
        if elapsed_seconds is not None:
            lines.append("")
            lines.append(f"Duration: {elapsed_seconds:.2f}s")
        return "\n".join(lines)

    @staticmethod
    def _row(stats: ImportStats) -> List[str]:
        return [
            stats.label,
            str(stats.total),
            str(stats.imported),
            str(stats.updated),
            str(stats.skipped),
            str(stats.duplicates),
            str(stats.errors),
        ]
