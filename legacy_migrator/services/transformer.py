"""Transformation of legacy rows into target rows."""

import json
import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from dateutil import parser as date_parser
from sqlalchemy import types as sqltypes

from ..models.record import RowOutcome, SourceRow, TargetRow
from ..models.schema import EntitySpec, ResolvedSchema, UnmappedPolicy
from .mapping import MappingRegistry, MappingTable, normalize_id

logger = logging.getLogger(__name__)

NULL_TOKENS = ("", "null", "undefined")


def preserve_field(value: Any, default: Any = None) -> Any:
    """Return ``value`` unless it is None. ``0``, ``''`` and ``False`` survive."""
    if value is None:
        return default
    return value


def preserve_with_fallback(value: Any, fallback: Any) -> Any:
    """Like preserve_field, but an empty string also takes the fallback."""
    if value is None or (isinstance(value, str) and value == ""):
        return fallback
    return value


def parse_json(value: Any, default: Any = None) -> Any:
    """Decode a JSON column. Already-decoded dicts and lists pass through."""
    if value is None:
        return default
    if isinstance(value, (dict, list)):
        return value
    if isinstance(value, (bytes, bytearray)):
        value = value.decode("utf-8")
    if isinstance(value, str):
        if not value.strip():
            return default
        try:
            return json.loads(value)
        except ValueError:
            return default
    return default


def parse_id_list(value: Any) -> List[int]:
    """
    Read a list of numeric ids from whatever shape the legacy column holds.

    Accepts a JSON array, a comma-separated string, a single value, a list
    or a number. Blank, ``'null'`` and non-numeric elements are dropped;
    ``0`` is kept.
    """
    if value is None or isinstance(value, bool):
        return []

    if isinstance(value, (bytes, bytearray)):
        value = value.decode("utf-8")

    if isinstance(value, str):
        text = value.strip()
        if not text:
            return []
        try:
            items = json.loads(text)
        except ValueError:
            items = text.split(",")
        if not isinstance(items, list):
            items = [items]
    elif isinstance(value, (list, tuple)):
        items = list(value)
    elif isinstance(value, (int, float, Decimal)):
        items = [value]
    else:
        logger.debug(f"Unexpected id list type {type(value).__name__}, ignoring")
        return []

    ids: List[int] = []
    for item in items:
        if item is None or isinstance(item, bool):
            continue
        if isinstance(item, str) and item.strip().lower() in NULL_TOKENS:
            continue
        key = normalize_id(item)
        if isinstance(key, int):
            ids.append(key)
        else:
            logger.debug(f"Dropping non-numeric id {item!r}")
    return ids


def remap_id_list(
    value: Any,
    mapping: MappingTable,
    policy: UnmappedPolicy,
    allow_empty: bool = True,
) -> Optional[List[int]]:
    """
    Remap a list of legacy ids element-wise.

    Unmapped elements are kept verbatim under PRESERVE and removed under
    DROP. An empty result is returned as None when ``allow_empty`` is set.
    """
    remapped: List[int] = []
    for old_id in parse_id_list(value):
        new_id = mapping.get(old_id)
        if new_id is not None:
            remapped.append(new_id)
        elif policy == UnmappedPolicy.PRESERVE:
            remapped.append(old_id)
        else:
            logger.debug(f"{mapping.entity} {old_id} not mapped, dropping from list")

    if not remapped:
        return None if allow_empty else []
    return remapped


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse a timestamp column into a datetime, or None if it cannot be read."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, (int, float)):
        # epoch milliseconds
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    if isinstance(value, str) and value.strip():
        try:
            return date_parser.parse(value)
        except (ValueError, OverflowError):
            return None
    return None


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def is_newer(source_value: Any, existing_value: Any) -> bool:
    """True when the source timestamp is strictly later than the existing one."""
    source_ts = parse_timestamp(source_value)
    existing_ts = parse_timestamp(existing_value)
    if source_ts is None or existing_ts is None:
        return False
    return _naive_utc(source_ts) > _naive_utc(existing_ts)


def _evaluate(fallback: Any, row: SourceRow) -> Any:
    if callable(fallback):
        return fallback(row)
    return fallback


class TransformEngine:
    """
    Builds TargetRows from SourceRows using a ResolvedSchema.

    Handles:
    - Scalar copy with falsy values preserved
    - Documented defaults and fallbacks
    - Foreign-key resolution through mapping tables
    - Element-wise remapping of id-list columns
    - Coercion to the reflected target column types
    """

    def __init__(self):
        self._coercers: Dict[type, Callable[[Any], Any]] = {
            sqltypes.Boolean: self._to_bool,
            sqltypes.DateTime: self._to_datetime,
            sqltypes.Date: self._to_date,
            sqltypes.JSON: self._to_json,
            sqltypes.ARRAY: self._to_array,
            sqltypes.String: self._to_text,
        }

    def build(
        self,
        resolved: ResolvedSchema,
        row: SourceRow,
        mappings: MappingRegistry,
    ) -> RowOutcome:
        """
        Build the target row for one source row.

        Returns a skip outcome when a required reference cannot be resolved.
        Nothing is ever guessed for a missing reference.
        """
        spec = resolved.spec
        values: Dict[str, Any] = {}
        deferred: Dict[str, Any] = {}

        for target_col, source_col in resolved.columns.items():
            values[target_col] = row.get(source_col)

        for fk in spec.foreign_keys:
            source_col = resolved.foreign_keys.get(fk.name)
            raw = row.get(source_col) if source_col else None
            new_id = mappings.get(fk.mapping, raw) if raw is not None else None
            if new_id is None:
                if fk.required:
                    if raw is None:
                        return RowOutcome(skip_reason=f"no {fk.mapping} reference")
                    return RowOutcome(skip_reason=f"{fk.mapping} {raw!r} not found in mapping")
                if raw is not None:
                    logger.debug(f"{spec.key} {row.old_id}: optional {fk.mapping} {raw!r} not mapped, nulling")
                resolved_value = None
            else:
                resolved_value = str(new_id) if fk.as_string else new_id
            for target in fk.targets:
                if resolved.has_target(target):
                    values[target] = resolved_value

        for ak in spec.array_keys:
            if not resolved.has_target(ak.target):
                continue
            source_col = resolved.array_keys.get(ak.target)
            raw = row.get(source_col) if source_col else None
            if ak.deferred:
                values[ak.target] = None
                if raw is not None:
                    deferred[ak.target] = raw
            else:
                values[ak.target] = remap_id_list(raw, mappings.table(ak.mapping), ak.policy)

        for column in spec.json_fields:
            if column in values:
                values[column] = parse_json(values[column], None)

        for column, transform in spec.transforms.items():
            if resolved.has_target(column):
                values[column] = transform(values.get(column), row)

        for column, default in spec.defaults.items():
            if resolved.has_target(column) and values.get(column) is None:
                values[column] = _evaluate(default, row)

        for column, fallback in spec.fallbacks.items():
            if resolved.has_target(column):
                values[column] = preserve_with_fallback(values.get(column), None)
                if values[column] is None:
                    values[column] = _evaluate(fallback, row)

        for column in spec.exclude:
            values.pop(column, None)

        for column in list(values):
            values[column] = self.coerce(values[column], resolved.target_types.get(column))

        return RowOutcome(row=TargetRow(
            entity=spec.key,
            table=spec.target_table,
            values=values,
            natural_key=self._natural_key(spec, resolved, values),
            old_id=row.old_id,
            deferred=deferred,
        ))

    @staticmethod
    def _natural_key(spec: EntitySpec, resolved: ResolvedSchema, values: Dict[str, Any]) -> Dict[str, Any]:
        """Pick the first natural-key alternative whose values are all present."""
        for alternative in spec.natural_keys:
            if all(resolved.has_target(c) and values.get(c) is not None for c in alternative):
                key = {c: values[c] for c in alternative}
                for column, value in spec.existing_filter.items():
                    if resolved.has_target(column):
                        key[column] = value
                return key
        return {}

    def coerce(self, value: Any, column_type: Any) -> Any:
        """Adapt a legacy value to the reflected target column type."""
        if value is None or column_type is None:
            return value
        for type_class, coercer in self._coercers.items():
            if isinstance(column_type, type_class):
                return coercer(value)
        return value

    @staticmethod
    def _to_bool(value: Any) -> Any:
        if isinstance(value, bool):
            return value
        if isinstance(value, (int, Decimal)):
            return bool(value)
        if isinstance(value, (bytes, bytearray)):
            return any(value)
        if isinstance(value, str) and value.strip().lower() in ("0", "1", "true", "false"):
            return value.strip().lower() in ("1", "true")
        return value

    @staticmethod
    def _to_datetime(value: Any) -> Any:
        if isinstance(value, str):
            return parse_timestamp(value) or value
        if isinstance(value, date) and not isinstance(value, datetime):
            return datetime(value.year, value.month, value.day)
        return value

    @staticmethod
    def _to_date(value: Any) -> Any:
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, str):
            parsed = parse_timestamp(value)
            return parsed.date() if parsed else value
        return value

    @staticmethod
    def _to_json(value: Any) -> Any:
        if isinstance(value, (str, bytes, bytearray)):
            return parse_json(value, value)
        return value

    @staticmethod
    def _to_array(value: Any) -> Any:
        if isinstance(value, (list, tuple)):
            return list(value)
        if isinstance(value, str):
            return parse_id_list(value)
        return value

    @staticmethod
    def _to_text(value: Any) -> Any:
        # simple-array columns store comma-joined ids
        if isinstance(value, (list, tuple)):
            return ",".join(str(v) for v in value)
        if isinstance(value, dict):
            return json.dumps(value)
        return value
