"""In-memory old-id -> new-id mapping tables."""

import logging
from decimal import Decimal
from typing import Any, Dict, Hashable, Optional

logger = logging.getLogger(__name__)


class MappingConflictError(ValueError):
    """An old id was already mapped to a different new id."""


def normalize_id(value: Any) -> Optional[Hashable]:
    """
    Normalise a legacy id so ``5``, ``"5"`` and ``Decimal(5)`` hit the same entry.

    Non-numeric ids are kept verbatim (stripped, for strings).
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else value
    if isinstance(value, float):
        return int(value) if value.is_integer() else value
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return int(text)
        except ValueError:
            return text
    return value


class MappingTable:
    """
    Old id -> new id for one entity kind.

    Entries are set once and never changed or removed. Lookups are the only
    way to read the table; absence is a normal answer, returned as ``None``.
    """

    def __init__(self, entity: str):
        self.entity = entity
        self._entries: Dict[Hashable, Any] = {}

    def set(self, old_id: Any, new_id: Any) -> None:
        key = normalize_id(old_id)
        if key is None:
            return
        current = self._entries.get(key)
        if current is not None:
            if current != new_id:
                raise MappingConflictError(
                    f"{self.entity} {key} already mapped to {current}, refusing {new_id}"
                )
            return
        self._entries[key] = new_id

    def get(self, old_id: Any) -> Optional[Any]:
        key = normalize_id(old_id)
        if key is None:
            return None
        return self._entries.get(key)

    def __contains__(self, old_id: Any) -> bool:
        return self.get(old_id) is not None

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"MappingTable({self.entity!r}, entries={len(self._entries)})"


class MappingRegistry:
    """One MappingTable per entity kind, created on first use."""

    def __init__(self):
        self._tables: Dict[str, MappingTable] = {}

    def table(self, entity: str) -> MappingTable:
        if entity not in self._tables:
            self._tables[entity] = MappingTable(entity)
        return self._tables[entity]

    def get(self, entity: str, old_id: Any) -> Optional[Any]:
        """Look up an old id without creating an empty table."""
        table = self._tables.get(entity)
        if table is None:
            return None
        return table.get(old_id)

    def sizes(self) -> Dict[str, int]:
        return {name: len(table) for name, table in self._tables.items()}
