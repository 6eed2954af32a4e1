"""Second pass for references an entity kind makes to itself."""

import logging
from typing import List

from ..models.schema import EntitySpec
from ..services.transformer import remap_id_list
from .base import ImportContext

logger = logging.getLogger(__name__)


class DeferredReferenceProcessor:
    """
    Remaps deferred id-list columns once their entity kind is fully imported.

    A user's managed staff are other users, so the list can only be
    remapped after the last user row has a mapping entry.
    """

    def run(self, specs: List[EntitySpec], context: ImportContext) -> int:
        updated = 0
        for spec in specs:
            pending = context.deferred.get(spec.key)
            if not pending:
                continue
            deferred_keys = [ak for ak in spec.array_keys if ak.deferred]
            types = context.loader.column_types(spec.target_table)

            for new_id, raw_values in pending.items():
                values = {}
                for ak in deferred_keys:
                    if ak.target not in raw_values:
                        continue
                    remapped = remap_id_list(raw_values[ak.target], context.mappings.table(ak.mapping), ak.policy)
                    if remapped:
                        values[ak.target] = context.transformer.coerce(remapped, types.get(ak.target))
                if not values:
                    continue
                try:
                    if not context.dry_run:
                        context.loader.update(spec.target_table, new_id, values)
                    updated += 1
                except Exception as e:
                    context.loader.rollback()
                    context.stats.for_entity(spec.key, spec.label).errors += 1
                    logger.error(f"Error updating {spec.key} {new_id} references: {e}")

        verb = "Would update" if context.dry_run else "Updated"
        logger.info(f"{verb} {updated} deferred references")
        return updated
