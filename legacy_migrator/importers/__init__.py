"""Per-entity importers."""

from typing import Dict, Type

from ..models.schema import EntitySpec
from .attendance import AttendanceImporter
from .base import EntityImporter, ImportContext
from .copier import TableCopier, select_remote_tables
from .defaults import DefaultOrgHoursCreator
from .relationships import DeferredReferenceProcessor

# Entity kinds that need more than the generic importer
IMPORTERS: Dict[str, Type[EntityImporter]] = {
    "attendance": AttendanceImporter,
}


def importer_for(spec: EntitySpec) -> EntityImporter:
    return IMPORTERS.get(spec.key, EntityImporter)(spec)


__all__ = [
    "EntityImporter",
    "ImportContext",
    "AttendanceImporter",
    "DeferredReferenceProcessor",
    "DefaultOrgHoursCreator",
    "TableCopier",
    "select_remote_tables",
    "importer_for",
]
