"""Rows created for organisations that arrive without them."""

import logging
from datetime import time
from typing import Any, Dict

from ..models.record import ExistingRow
from ..models.stats import ImportStats
from .base import ImportContext

logger = logging.getLogger(__name__)

DEFAULT_WEEKLY_SCHEDULE = {
    "monday": True,
    "tuesday": True,
    "wednesday": True,
    "thursday": True,
    "friday": True,
    "saturday": False,
    "sunday": False,
}

DEFAULT_TIMEZONE = "Africa/Johannesburg"


class DefaultOrgHoursCreator:
    """
    Gives every organisation imported this run an opening-hours row.

    Organisations that already have one, in the target or from the hours
    import just before, are left alone. New rows open Monday to Friday,
    07:00 to 16:30.
    """

    entity = "default_org_hours"
    label = "Default Org Hours"
    table = "organisation_hours"
    hours_entity = "organisation_hours"

    def default_values(self, org_id: Any) -> Dict[str, Any]:
        return {
            "ref": f"ORG-{org_id}",
            "openTime": time(7, 0),
            "closeTime": time(16, 30),
            "weeklySchedule": dict(DEFAULT_WEEKLY_SCHEDULE),
            "timezone": DEFAULT_TIMEZONE,
            "holidayMode": False,
            "isDeleted": False,
            "organisationUid": org_id,
        }

    def run(self, context: ImportContext) -> ImportStats:
        stats = context.stats.for_entity(self.entity, self.label)
        columns = context.loader.column_names(self.table)
        if not columns:
            logger.warning(f"Target table {self.table} does not exist, no default hours created")
            return stats

        org_ids = list(dict.fromkeys(context.mapped_ids.get("organisation", [])))
        for org_id in org_ids:
            stats.total += 1
            key = {"organisationUid": org_id}
            try:
                if self._has_hours(context, key):
                    stats.skipped += 1
                    continue
                if context.dry_run:
                    context.remember_pending(self.hours_entity, key, ExistingRow(id=context.next_synthetic_id()))
                else:
                    values = {k: v for k, v in self.default_values(org_id).items() if k in columns}
                    context.loader.insert(self.table, values)
                stats.imported += 1
                if context.verbose:
                    logger.info(f"Created default hours for organisation {org_id}")
            except Exception as e:
                context.loader.rollback()
                stats.errors += 1
                logger.error(f"Error creating default hours for organisation {org_id}: {e}")

        verb = "Would create" if context.dry_run else "Created"
        logger.info(f"{verb} default hours for {stats.imported} organisations")
        return stats

    def _has_hours(self, context: ImportContext, key: Dict[str, Any]) -> bool:
        if context.dry_run and context.pending_match(self.hours_entity, key) is not None:
            return True
        return context.loader.find_existing(self.table, key) is not None
