"""Schema registry for entity mapping definitions."""

import logging
from typing import Any, Dict, Iterable, List, Optional

from ..models.schema import EntitySpec, ResolvedSchema, StepKind

logger = logging.getLogger(__name__)


class SchemaRegistry:
    """
    Registry of entity mapping definitions, kept in dependency order.

    Supports:
    - Validating that every entity is declared after the entities it references
    - Selecting the entities for a step, restricted by ``--only`` groups
    - Resolving a definition against the real source and target columns
    """

    def __init__(self, specs: Optional[Iterable[EntitySpec]] = None):
        self._specs: List[EntitySpec] = []
        self._by_key: Dict[str, EntitySpec] = {}
        for spec in specs or []:
            self.register(spec)

    def register(self, spec: EntitySpec) -> None:
        if spec.key in self._by_key:
            raise ValueError(f"Entity {spec.key} registered twice")
        self._specs.append(spec)
        self._by_key[spec.key] = spec

    def get(self, key: str) -> Optional[EntitySpec]:
        return self._by_key.get(key)

    @property
    def specs(self) -> List[EntitySpec]:
        return list(self._specs)

    @property
    def groups(self) -> List[str]:
        seen: List[str] = []
        for spec in self._specs:
            if spec.group not in seen:
                seen.append(spec.group)
        return seen

    def validate_order(self) -> None:
        """
        Check that every dependency is declared before its dependents.

        Raises:
            ValueError: if a spec references an unknown or later entity kind
        """
        position = {spec.key: i for i, spec in enumerate(self._specs)}
        for i, spec in enumerate(self._specs):
            for dep in spec.depends_on:
                if dep not in position:
                    raise ValueError(f"{spec.key} depends on unknown entity {dep}")
                if position[dep] >= i:
                    raise ValueError(f"{spec.key} is declared before its dependency {dep}")

    def select(self, step: StepKind, only: Optional[List[str]] = None) -> List[EntitySpec]:
        """
        Specs that run for ``step``, in declaration order.

        ``only`` restricts the run to the named groups (or entity keys);
        an unknown name is a configuration error.
        """
        candidates = [spec for spec in self._specs if step in spec.steps]
        if not only:
            return candidates

        known = {spec.group for spec in candidates} | {spec.key for spec in candidates}
        unknown = [name for name in only if name not in known]
        if unknown:
            raise ValueError(
                f"Unknown entity kind(s) for {step.value}: {', '.join(unknown)}. "
                f"Available: {', '.join(sorted({s.group for s in candidates}))}"
            )
        wanted = set(only)
        return [spec for spec in candidates if spec.group in wanted or spec.key in wanted]

    def missing_dependencies(self, selected: List[EntitySpec]) -> Dict[str, List[str]]:
        """Dependencies of the selected specs that are not part of the selection."""
        chosen = {spec.key for spec in selected}
        missing: Dict[str, List[str]] = {}
        for spec in selected:
            absent = [dep for dep in spec.depends_on if dep not in chosen]
            if absent:
                missing[spec.key] = absent
        return missing

    def resolve(
        self,
        spec: EntitySpec,
        source_columns: Iterable[str],
        target_columns: Iterable[str],
        target_types: Optional[Dict[str, Any]] = None,
        target_primary_key: Optional[Iterable[str]] = None,
    ) -> ResolvedSchema:
        """
        Bind a spec to physical columns.

        Column names are matched case-insensitively. Target primary-key
        columns are left out so the target can assign new ids.
        """
        source_lookup = _case_insensitive(source_columns)
        target_list = list(target_columns)
        target_lookup = _case_insensitive(target_list)
        pk = {c.lower() for c in (target_primary_key or [])}

        def pick(candidates: Iterable[str]) -> Optional[str]:
            for candidate in candidates:
                found = source_lookup.get(candidate.lower())
                if found is not None:
                    return found
            return None

        id_column = pick(spec.id_columns)

        foreign_keys: Dict[str, Optional[str]] = {}
        reference_columns = set()
        unresolved: List[str] = []
        for fk in spec.foreign_keys:
            column = pick(fk.columns)
            foreign_keys[fk.name] = column
            if column:
                reference_columns.add(column.lower())
            elif fk.required:
                unresolved.append(fk.name)

        array_keys: Dict[str, Optional[str]] = {}
        for ak in spec.array_keys:
            column = pick(ak.columns)
            array_keys[ak.target] = column
            if column:
                reference_columns.add(column.lower())

        columns: Dict[str, str] = {}
        for name_lower, target_col in target_lookup.items():
            if name_lower in pk or name_lower in reference_columns:
                continue
            source_col = source_lookup.get(name_lower)
            if source_col is not None:
                columns[target_col] = source_col

        for target, candidates in spec.fields.items():
            target_col = target_lookup.get(target.lower())
            source_col = pick(candidates)
            if target_col is None or source_col is None:
                continue
            columns[target_col] = source_col

        if unresolved:
            logger.warning(
                f"{spec.source_table}: no source column for required reference(s) "
                f"{', '.join(unresolved)}; every row will be skipped"
            )
        if id_column is None and spec.record_mapping:
            logger.warning(f"{spec.source_table}: no id column among {spec.id_columns}, mappings will not be recorded")

        return ResolvedSchema(
            spec=spec,
            id_column=id_column,
            columns=columns,
            foreign_keys=foreign_keys,
            array_keys=array_keys,
            target_columns=target_list,
            target_types=dict(target_types or {}),
            unresolved=unresolved,
        )


def _case_insensitive(columns: Iterable[str]) -> Dict[str, str]:
    lookup: Dict[str, str] = {}
    for column in columns:
        lookup.setdefault(column.lower(), column)
    return lookup
